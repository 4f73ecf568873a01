"""Endpoint URL validation and SSRF protection."""

import asyncio
import ipaddress
import socket
from typing import Any
from urllib.parse import urlsplit

import httpcore
import httpx

from fasthook.errors import ValidationError

# Private and reserved IP ranges that endpoints may not point at
BLOCKED_IP_RANGES = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),  # includes cloud metadata 169.254.169.254
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("255.255.255.255/32"),
]

DEFAULT_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=20)

BLOCKED_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "metadata.google.internal",
    "metadata",
}


class BlockedAddressError(ValidationError):
    """Raised when an endpoint URL targets a blocked network location."""


def is_ip_blocked(ip_str: str) -> bool:
    """Check if an IP address is in a blocked range.

    Invalid addresses are not considered blocked.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in network for network in BLOCKED_IP_RANGES)


def is_domain_allowed(host: str, allowed_domains: list[str] | set[str]) -> bool:
    """Exact or subdomain match against an allowlist."""
    host = host.lower().rstrip(".")
    for allowed in allowed_domains:
        allowed = allowed.lower()
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


def check_host(host: str) -> None:
    """Reject blocked hostnames and literal IPs in blocked ranges.

    Raises:
        BlockedAddressError: If the host is blocked.
    """
    if host.lower().rstrip(".") in BLOCKED_HOSTNAMES:
        raise BlockedAddressError(f"Hostname '{host}' is blocked")
    if is_ip_blocked(host):
        raise BlockedAddressError(f"IP address '{host}' is in a blocked range")


def validate_endpoint_url(
    url: str,
    allowed_schemes: list[str] | tuple[str, ...] = ("https", "http"),
    block_private: bool = True,
    allowed_internal_domains: list[str] | None = None,
    resolve_dns: bool = False,
) -> str:
    """Validate an endpoint URL before it is stored.

    Args:
        url: URL to validate
        allowed_schemes: Accepted schemes, lowercase
        block_private: Reject loopback/private/metadata targets
        allowed_internal_domains: Hosts exempt from private network blocking
        resolve_dns: Also resolve the hostname and check every address

    Returns:
        The URL, stripped of surrounding whitespace.

    Raises:
        ValidationError: If the URL is malformed or uses a disallowed scheme
        BlockedAddressError: If the URL targets a blocked network location
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("URL must be a non-empty string")
    url = url.strip()

    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError as e:
        raise ValidationError(f"Invalid URL format: {e}") from e

    scheme = parsed.scheme.lower()
    if scheme not in allowed_schemes:
        allowed = ", ".join(allowed_schemes)
        raise ValidationError(f"URL scheme must be one of {allowed}, got: '{parsed.scheme}'")

    hostname = parsed.hostname
    if not hostname:
        raise ValidationError("URL must have a hostname")
    if parsed.username or parsed.password:
        raise ValidationError("URL must not embed credentials")

    if not block_private or is_domain_allowed(hostname, allowed_internal_domains or []):
        return url

    check_host(hostname)

    if resolve_dns:
        try:
            addrinfo = socket.getaddrinfo(
                hostname,
                port or (443 if scheme == "https" else 80),
                proto=socket.IPPROTO_TCP,
            )
        except socket.gaierror:
            # Unresolvable now; delivery attempts will fail and be retried
            return url
        for _family, _, _, _, sockaddr in addrinfo:
            ip_str = str(sockaddr[0])
            if is_ip_blocked(ip_str):
                raise BlockedAddressError(
                    f"Hostname '{hostname}' resolves to blocked IP '{ip_str}'"
                )

    return url


def is_url_safe(url: str, **kwargs: Any) -> tuple[bool, str | None]:
    """Check a URL without raising.

    Returns:
        Tuple of (is_safe, error_message)
    """
    try:
        validate_endpoint_url(url, **kwargs)
        return True, None
    except ValidationError as e:
        return False, str(e)


class GuardedConnectionPool(httpcore.AsyncConnectionPool):
    """Connection pool that re-checks resolved addresses at connect time.

    Registration-time validation alone is open to DNS rebinding, where the
    name resolves to a public address when checked and a private one when
    connecting.
    """

    def __init__(self, allowed_internal_domains: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._allowed_domains = {d.lower() for d in (allowed_internal_domains or [])}

    async def handle_async_request(self, request: httpcore.Request) -> httpcore.Response:
        host = request.url.host
        if isinstance(host, bytes):
            host = host.decode("ascii")
        if not host:
            raise BlockedAddressError("Request has no host")

        if not is_domain_allowed(host, self._allowed_domains):
            check_host(host)
            try:
                ipaddress.ip_address(host)
            except ValueError:
                port = request.url.port or (443 if request.url.scheme == b"https" else 80)
                loop = asyncio.get_running_loop()
                try:
                    addrinfo = await loop.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)
                except socket.gaierror:
                    addrinfo = []  # let the connection attempt report the DNS failure
                for _family, _, _, _, sockaddr in addrinfo:
                    if is_ip_blocked(str(sockaddr[0])):
                        raise BlockedAddressError(
                            f"Hostname '{host}' resolves to blocked IP '{sockaddr[0]}'"
                        )

        return await super().handle_async_request(request)


class GuardedTransport(httpx.AsyncHTTPTransport):
    """httpx transport using GuardedConnectionPool."""

    def __init__(
        self,
        allowed_internal_domains: list[str] | None = None,
        limits: httpx.Limits = DEFAULT_LIMITS,
    ) -> None:
        super().__init__(limits=limits)
        self._pool = GuardedConnectionPool(
            allowed_internal_domains=allowed_internal_domains,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
        )


def create_delivery_client(
    timeout: float,
    block_private: bool = True,
    allowed_internal_domains: list[str] | None = None,
    limits: httpx.Limits = DEFAULT_LIMITS,
) -> httpx.AsyncClient:
    """Create the httpx client used for outbound deliveries.

    Redirects are not followed; a 3xx answer is recorded as a terminal
    failure rather than silently delivering somewhere else.
    """
    if block_private:
        transport: httpx.AsyncBaseTransport = GuardedTransport(
            allowed_internal_domains=allowed_internal_domains, limits=limits
        )
    else:
        transport = httpx.AsyncHTTPTransport(limits=limits)
    return httpx.AsyncClient(transport=transport, timeout=timeout, follow_redirects=False)
