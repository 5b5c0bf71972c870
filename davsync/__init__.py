"""davsync - command line sync client for ownCloud/Nextcloud style servers."""

__version__ = "0.1.0"

from .api import DavClient  # noqa: E402
from .exceptions import (  # noqa: E402
    BootstrapError,
    DavAPIError,
    DavAuthenticationError,
    DavConfigError,
    DavInvalidResponseError,
    DavNetworkError,
    DavNotFoundError,
    DavPermissionError,
    DavRateLimitError,
    DavSyncError,
    ExcludeListError,
    JournalError,
    ProxyFormatError,
)

__all__ = [
    "__version__",
    "DavClient",
    "DavSyncError",
    "DavConfigError",
    "ProxyFormatError",
    "ExcludeListError",
    "JournalError",
    "DavAPIError",
    "DavAuthenticationError",
    "DavPermissionError",
    "DavNotFoundError",
    "DavRateLimitError",
    "DavNetworkError",
    "DavInvalidResponseError",
    "BootstrapError",
]
