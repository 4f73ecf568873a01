"""FastHook middleware modules."""

from fasthook.middleware.logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
