"""Authentication module."""

from fasthook.auth.dependencies import Auth, require_api_key

__all__ = ["Auth", "require_api_key"]
