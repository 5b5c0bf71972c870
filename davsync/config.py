"""Configuration for davsync.

Two layers are kept apart here: :class:`Config` reads process-wide defaults
from ``DAVSYNC_*`` environment variables, and :class:`SessionOptions` holds
the options of a single invocation as parsed from the command line.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY

DEFAULT_DAV_PATH = "remote.php/webdav/"
DEFAULT_SYSTEM_EXCLUDE_FILE = "/etc/davsync/sync-exclude.lst"
BUNDLED_EXCLUDE_FILE = Path(__file__).parent / "data" / "sync-exclude.lst"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_SYNC_RETRIES = 3


class Config:
    """Environment backed configuration."""

    @property
    def system_exclude_file(self) -> Path:
        """Path of the exclude list of the system installation.

        Falls back to the list bundled with the package when no system wide
        list is installed.
        """
        env_path = os.environ.get("DAVSYNC_SYSTEM_EXCLUDE_FILE")
        if env_path:
            return Path(env_path)
        system_path = Path(DEFAULT_SYSTEM_EXCLUDE_FILE)
        if system_path.exists():
            return system_path
        return BUNDLED_EXCLUDE_FILE

    @property
    def timeout(self) -> float:
        """HTTP timeout in seconds."""
        return _float_env("DAVSYNC_TIMEOUT", DEFAULT_TIMEOUT)

    @property
    def max_retries(self) -> int:
        """Transport level retries for transient HTTP failures."""
        return int(_float_env("DAVSYNC_HTTP_RETRIES", DEFAULT_MAX_RETRIES))

    @property
    def retry_delay(self) -> float:
        """Initial delay between transport retries in seconds."""
        return _float_env("DAVSYNC_RETRY_DELAY", DEFAULT_RETRY_DELAY)

    @property
    def netrc_path(self) -> Path:
        """Location of the netrc file used with ``-n``."""
        env_path = os.environ.get("NETRC")
        if env_path:
            return Path(env_path)
        return Path.home() / ".netrc"


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


config = Config()


@dataclass(frozen=True)
class SessionOptions:
    """Options of one sync invocation, parsed once from the command line."""

    source_dir: Path
    """Absolute path of the local directory to sync"""

    target_url: str
    """Server URL as given by the user (may contain credentials and dav path)"""

    user: Optional[str] = None
    password: Optional[str] = None

    proxy: Optional[str] = None
    """Manual proxy in the form ``http://host:port``"""

    trust_ssl: bool = False
    use_netrc: bool = False
    interactive: bool = True

    ignore_hidden_files: bool = True
    """Hidden files are skipped unless ``-h`` is given"""

    exclude_file: Optional[Path] = None
    unsynced_folders_file: Optional[Path] = None
    dav_path: Optional[str] = None

    max_sync_retries: int = DEFAULT_MAX_SYNC_RETRIES
    """How often a follow-up sync is started before giving up"""

    uplimit: int = 0
    """Upload limit in bytes per second, 0 means unlimited"""

    downlimit: int = 0
    """Download limit in bytes per second, 0 means unlimited"""

    silent: bool = False
    log_debug: bool = False

    @property
    def effective_dav_path(self) -> str:
        """The dav path to use, the override or the default one."""
        return self.dav_path or DEFAULT_DAV_PATH
