"""Utility functions for davsync."""

from email.utils import parsedate_to_datetime
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Retry configuration for transient HTTP errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 2.0  # seconds

# Size of the blocks streamed during uploads and downloads (64 KB)
TRANSFER_BLOCK_SIZE: int = 64 * 1024


# =============================================================================
# Path utilities
# =============================================================================


def ensure_trailing_slash(path: str) -> str:
    """Append a ``/`` to a folder path unless it already ends with one.

    Args:
        path: Folder path

    Returns:
        The folder path ending with ``/``

    Examples:
        >>> ensure_trailing_slash("foo/bar")
        'foo/bar/'
        >>> ensure_trailing_slash("/")
        '/'
    """
    if path.endswith("/"):
        return path
    return path + "/"


def normalize_remote_folder(path: str) -> str:
    """Normalize a remote folder so it starts with ``/`` and has no trailing one.

    The root folder stays ``/``.

    Examples:
        >>> normalize_remote_folder("Photos/")
        '/Photos'
        >>> normalize_remote_folder("")
        '/'
    """
    folder = "/" + path.lstrip("/")
    if folder.endswith("/") and folder != "/":
        folder = folder.rstrip("/") or "/"
    return folder


def is_hidden(relative_path: str) -> bool:
    """Check whether the last component of a path is a dot file."""
    name = relative_path.rstrip("/").rsplit("/", 1)[-1]
    return name.startswith(".")


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_http_date(value: Optional[str]) -> Optional[float]:
    """Parse an HTTP date (RFC 1123) as sent in ``getlastmodified``.

    Args:
        value: Date string (e.g., "Wed, 15 Jan 2025 10:30:00 GMT")

    Returns:
        Unix timestamp or None if parsing fails
    """
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None


def format_oc_mtime(timestamp: float) -> str:
    """Format a Unix timestamp for the ``X-OC-Mtime`` request header."""
    return str(int(timestamp))


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
