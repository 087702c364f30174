"""Exceptions raised inside the daemon API proxy."""
from typing import Any, Optional


class ProxyError(Exception):
    """Base class for proxy errors."""


class UpstreamError(ProxyError):
    """A daemon or pool could not be reached, timed out or answered garbage."""

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message)
        self.endpoint = endpoint


class UpstreamRPCError(UpstreamError):
    """The daemon answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None,
                 endpoint: Optional[str] = None, data: Any = None):
        super().__init__(message, endpoint=endpoint)
        self.code = code
        self.data = data


class LocalStoreError(ProxyError):
    """The local replicated store is absent, failing or lacks the record."""


class FallbackExhaustedError(ProxyError):
    """Both the local store and the live upstream failed for an operation."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failure encountered: {operation} failed on every tier")
        self.operation = operation
        self.cause = cause


class InvalidRequestError(ProxyError):
    """A JSON-RPC request without a usable method."""


class InvalidParamsError(InvalidRequestError):
    """A recognized JSON-RPC method called without its required parameters."""
