"""FastHook - outgoing webhook delivery service."""

__version__ = "0.1.0"
