"""HMAC-SHA256 signing of webhook payloads.

Everything here is a pure function: the dispatcher uses ``sign`` when sending
and receivers (or tests) use ``verify``. The signed message is the unix
timestamp in ASCII followed directly by the canonical payload bytes::

    HMAC_SHA256(secret, str(timestamp).encode() + body)

Receivers should reject signatures whose timestamp is older than a freshness
window (``DEFAULT_TOLERANCE`` seconds) to defend against replay.
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from typing import Any, NamedTuple

SIGNATURE_PREFIX = "sha256="
SECRET_PREFIX = "whsec_"
DEFAULT_TOLERANCE = 300
ENCODINGS = ("hex", "base64")


class Signature(NamedTuple):
    """A computed signature and the timestamp it covers."""

    value: str
    timestamp: int


def canonicalize(payload: Any) -> bytes:
    """Serialize a payload deterministically.

    Dict keys are sorted and separators are compact, so the same logical
    payload always yields the same bytes. ``bytes`` are passed through
    unchanged (already serialized bodies).

    Raises:
        ValueError: If the payload is not JSON-serializable (NaN included).
    """
    if isinstance(payload, bytes):
        return payload
    try:
        return json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except TypeError as e:
        raise ValueError(f"Payload is not JSON-serializable: {e}") from e


def _digest(secret: str, body: bytes, timestamp: int) -> bytes:
    message = str(timestamp).encode("ascii") + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def _encode(digest: bytes, encoding: str) -> str:
    if encoding == "hex":
        return digest.hex()
    if encoding == "base64":
        return base64.b64encode(digest).decode("ascii")
    raise ValueError(f"Unknown signature encoding: {encoding}")


def sign(
    secret: str,
    payload: Any,
    timestamp: int | None = None,
    encoding: str = "hex",
) -> Signature:
    """Sign a payload with an endpoint secret.

    Args:
        secret: Endpoint signing secret.
        payload: Canonical payload bytes, or a JSON-serializable value that
            is canonicalized first.
        timestamp: Unix seconds to sign; defaults to the current time.
        encoding: ``hex`` or ``base64``.

    Returns:
        Signature with the encoded MAC and the timestamp used.
    """
    if timestamp is None:
        timestamp = int(time.time())
    digest = _digest(secret, canonicalize(payload), int(timestamp))
    return Signature(value=_encode(digest, encoding), timestamp=int(timestamp))


def _decode(signature: str, encoding: str) -> bytes | None:
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX) :]
    try:
        if encoding == "hex":
            return bytes.fromhex(signature)
        if encoding == "base64":
            return base64.b64decode(signature, validate=True)
    except (ValueError, binascii.Error):
        return None
    return None


def verify(
    secret: str,
    payload: Any,
    timestamp: int | str,
    signature: str,
    tolerance: int | None = None,
    now: float | None = None,
    encoding: str = "hex",
) -> bool:
    """Check a signature in constant time.

    Fails closed: a malformed signature or timestamp, an unknown encoding,
    or a timestamp outside ``tolerance`` seconds of ``now`` all return
    False instead of raising.
    """
    try:
        ts = int(timestamp)
        body = canonicalize(payload)
    except (TypeError, ValueError):
        return False

    if tolerance is not None:
        current = time.time() if now is None else now
        if abs(current - ts) > tolerance:
            return False

    if not isinstance(secret, str) or not isinstance(signature, str):
        return False
    provided = _decode(signature.strip(), encoding)
    if provided is None:
        return False

    expected = _digest(secret, body, ts)
    return hmac.compare_digest(expected, provided)


def generate_secret() -> str:
    """Generate a new random endpoint signing secret."""
    return f"{SECRET_PREFIX}{secrets.token_hex(32)}"
