"""Exception hierarchy for davsync."""

from typing import Optional


class DavSyncError(Exception):
    """Base exception for all davsync errors."""


class DavConfigError(DavSyncError):
    """Raised when the session configuration is invalid."""


class ProxyFormatError(DavConfigError):
    """Raised when the --httpproxy value cannot be parsed."""

    def __init__(self, proxy: str):
        self.proxy = proxy
        super().__init__(
            f"Could not read httpproxy '{proxy}'. "
            'The proxy should have the format "http://hostname:port".'
        )


class ExcludeListError(DavConfigError):
    """Raised when an exclude list cannot be loaded."""


class JournalError(DavSyncError):
    """Raised when the local sync journal cannot be opened or written."""


class DavAPIError(DavSyncError):
    """Base exception for errors talking to the server."""


class DavAuthenticationError(DavAPIError):
    """Raised when the server rejects the credentials."""


class DavPermissionError(DavAPIError):
    """Raised when access to a resource is forbidden."""


class DavNotFoundError(DavAPIError):
    """Raised when a remote resource does not exist."""


class DavRateLimitError(DavAPIError):
    """Raised when the server reports too many requests."""


class DavNetworkError(DavAPIError):
    """Raised on transport level failures (DNS, TLS, connection reset...)."""


class DavInvalidResponseError(DavAPIError):
    """Raised when the server answers with something we cannot parse."""


class BootstrapError(DavSyncError):
    """Raised when the pre-sync negotiation with the server fails.

    Attributes:
        step: Which call failed, ``"capabilities"`` or ``"identity"``
    """

    def __init__(self, step: str, cause: Optional[Exception] = None):
        self.step = step
        self.cause = cause
        message = f"Bootstrap {step} request failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
