"""Exception hierarchy for webhook delivery."""


class FastHookError(Exception):
    """Base class for all FastHook errors."""


class ValidationError(FastHookError):
    """Raised when an endpoint registration or update is malformed.

    Raised before any storage mutation takes place.
    """


class NotFoundError(FastHookError):
    """Raised when a referenced record does not exist."""


class EndpointNotFoundError(NotFoundError):
    """Raised when an endpoint id is unknown."""


class DeliveryNotFoundError(NotFoundError):
    """Raised when a delivery id is unknown."""


class TransportError(FastHookError):
    """Network-level failure talking to an endpoint.

    Retryable, except for requests refused because the target resolved to a
    blocked address.
    """

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.kind != "blocked"

    def summary(self) -> str:
        return f"{self.kind}: {self.message}"


class HTTPError(FastHookError):
    """Endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429

    def summary(self) -> str:
        if self.body:
            return f"HTTP {self.status_code}: {self.body[:200]}"
        return f"HTTP {self.status_code}"


class StorageError(FastHookError):
    """The underlying queue or log store is unavailable.

    Propagated to the worker loop; the affected delivery is not marked failed.
    """


class QueueFullError(FastHookError):
    """Raised when the pending queue exceeds its configured limit."""
