"""Data models shared across the sync session."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Credentials:
    """Resolved login pair for the account."""

    user: str = ""
    password: str = ""

    def __repr__(self) -> str:
        return f"Credentials(user={self.user!r}, password='***')"


@dataclass(frozen=True)
class ProxySettings:
    """Manual HTTP proxy given with ``--httpproxy``."""

    host: str
    port: int

    @property
    def url(self) -> str:
        """Proxy URL in the form accepted by httpx."""
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class SyncTarget:
    """Where the session syncs to, derived once from the target URL."""

    dav_url: str
    """Target URL with the dav path appended"""

    url: str
    """Server base URL (dav path and folder stripped)"""

    credential_free_url: str
    """``url`` without user and password, used for display and the journal"""

    folder: str
    """Remote folder, starts with ``/`` and only ends with one if it is ``/``"""

    user: str
    """Effective user name"""


@dataclass(frozen=True)
class BootstrapResult:
    """What the server told us before the sync could start."""

    capabilities: dict[str, Any]
    server_version: str
    user_id: str
    display_name: str


@dataclass
class Account:
    """The server account a session syncs against.

    The account is created before the bootstrap negotiation, which fills in
    capabilities, server version and identity.
    """

    url: str
    dav_path: str
    credentials: Credentials = field(default_factory=Credentials)
    trust_ssl: bool = False
    proxy: Optional[ProxySettings] = None
    capabilities: dict[str, Any] = field(default_factory=dict)
    server_version: str = ""
    dav_user: str = ""
    dav_display_name: str = ""

    @property
    def dav_url(self) -> str:
        """Base URL of the WebDAV endpoint, always ending with ``/``."""
        return f"{self.url.rstrip('/')}/{self.dav_path.strip('/')}/"


@dataclass(frozen=True)
class DavResource:
    """An entry of a WebDAV folder listing."""

    path: str
    """Path relative to the sync folder, without leading or trailing ``/``"""

    is_dir: bool
    etag: str = ""
    size: int = 0
    mtime: Optional[float] = None
