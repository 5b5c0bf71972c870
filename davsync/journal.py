"""Local sync journal.

The journal remembers what the previous sync saw, so the next one can tell
local from remote changes. It is a JSON file inside the source directory whose
name is derived from the source directory, server URL, remote folder and user,
so several accounts can sync into different folders without clashing.
"""

import hashlib
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from .exceptions import JournalError

logger = logging.getLogger(__name__)

JOURNAL_VERSION = 1


@dataclass
class FileRecord:
    """State of a file after it was last synced."""

    etag: str
    """Remote ETag"""

    size: int
    """File size in bytes"""

    mtime: float
    """Local modification time (Unix timestamp)"""

    remote_mtime: Optional[float] = None
    """Remote modification time (Unix timestamp) if the server sent one"""

    @classmethod
    def from_dict(cls, data: dict) -> "FileRecord":
        return cls(
            etag=data.get("etag", ""),
            size=int(data.get("size", 0)),
            mtime=float(data.get("mtime", 0.0)),
            remote_mtime=data.get("remote_mtime"),
        )


_LIST_KEYS = ("selective_sync_blacklist", "remote_discovery")
_DICT_KEYS = ("files", "folders")


def _has_valid_shape(data: dict[str, Any]) -> bool:
    """Check the types of the stored sections; missing sections are fine."""
    for key in _LIST_KEYS:
        value = data.get(key, [])
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            return False
    for key in _DICT_KEYS:
        if not isinstance(data.get(key, {}), dict):
            return False
    for record in data.get("files", {}).values():
        if not isinstance(record, dict):
            return False
        try:
            FileRecord.from_dict(record)
        except (TypeError, ValueError):
            return False
    return all(isinstance(etag, str) for etag in data.get("folders", {}).values())


class SyncJournal:
    """Persisted state of one (source dir, server, folder, user) combination.

    Use :meth:`open` as a context manager; changes are written back when the
    block is left.

    Examples:
        >>> with SyncJournal.open(path) as journal:
        ...     journal.set_selective_sync_list(["Photos/"])
    """

    def __init__(self, path: Path, data: Optional[dict[str, Any]] = None):
        self.path = path
        self._data: dict[str, Any] = data or {}
        self._data.setdefault("version", JOURNAL_VERSION)
        self._data.setdefault("selective_sync_blacklist", [])
        self._data.setdefault("remote_discovery", [])
        self._data.setdefault("files", {})
        self._data.setdefault("folders", {})
        self._dirty = False

    @staticmethod
    def make_db_name(source_dir: Path, url: str, folder: str, user: str) -> str:
        """Name of the journal file for a sync combination.

        Args:
            source_dir: Local directory that is synced
            url: Credential free server URL
            folder: Remote folder
            user: User name

        Returns:
            File name like ``._sync_0123456789ab.json``
        """
        key = f"{Path(source_dir).resolve()}|{user}@{url}:{folder}"
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
        return f"._sync_{digest}.json"

    @classmethod
    def path_for(cls, source_dir: Path, url: str, folder: str, user: str) -> Path:
        return Path(source_dir) / cls.make_db_name(source_dir, url, folder, user)

    @classmethod
    def open(cls, path: Path) -> "SyncJournal":
        """Open the journal at ``path``, creating an empty one if missing.

        Raises:
            JournalError: If the file exists but cannot be read or parsed,
                holds sections of the wrong type, or its directory does
                not exist
        """
        if not path.parent.is_dir():
            raise JournalError(f"Journal directory does not exist: {path.parent}")
        if not path.exists():
            logger.debug(f"Creating new sync journal at {path}")
            return cls(path)

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise JournalError(f"Cannot open sync journal {path}: {e}") from e
        if not isinstance(data, dict) or not _has_valid_shape(data):
            raise JournalError(f"Sync journal {path} is corrupt")
        return cls(path, data)

    def __enter__(self) -> "SyncJournal":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._dirty:
            self.save()

    def save(self) -> None:
        """Write the journal to disk.

        Raises:
            JournalError: If the file cannot be written
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise JournalError(f"Cannot write sync journal {self.path}: {e}") from e
        self._dirty = False
        logger.debug(f"Saved sync journal {self.path}")

    # =========================
    # Selective sync
    # =========================

    def get_selective_sync_list(self) -> list[str]:
        """Folders excluded from the sync, each ending with ``/``."""
        return list(self._data["selective_sync_blacklist"])

    def set_selective_sync_list(self, paths: Iterable[str]) -> None:
        self._data["selective_sync_blacklist"] = sorted(set(paths))
        self._dirty = True

    def is_blacklisted(self, relative_path: str) -> bool:
        """Check if a path lies in (or is) a folder excluded from the sync."""
        check = relative_path.strip("/") + "/"
        return any(
            check.startswith(p.lstrip("/"))
            for p in self._data["selective_sync_blacklist"]
        )

    # =========================
    # Remote discovery
    # =========================

    def schedule_path_for_remote_discovery(self, path: str) -> None:
        """Force a fresh remote listing of ``path`` on the next sync.

        The folder and all of its ancestors are listed again instead of
        being taken from the cached state.
        """
        scheduled = self._data["remote_discovery"]
        if path not in scheduled:
            scheduled.append(path)
            self._dirty = True

    def remote_discovery_paths(self) -> set[str]:
        return set(self._data["remote_discovery"])

    def needs_remote_discovery(self, folder: str) -> bool:
        """Whether ``folder`` (relative, without slashes) must be listed again."""
        check = folder.strip("/") + "/" if folder.strip("/") else ""
        for path in self._data["remote_discovery"]:
            path = path.lstrip("/")
            if check.startswith(path) or path.startswith(check):
                return True
        return False

    def clear_remote_discovery(self) -> None:
        if self._data["remote_discovery"]:
            self._data["remote_discovery"] = []
            self._dirty = True

    # =========================
    # File and folder records
    # =========================

    def get_file_record(self, path: str) -> Optional[FileRecord]:
        data = self._data["files"].get(path)
        if data is None:
            return None
        return FileRecord.from_dict(data)

    def set_file_record(self, path: str, record: FileRecord) -> None:
        self._data["files"][path] = asdict(record)
        self._dirty = True

    def delete_file_record(self, path: str) -> None:
        if self._data["files"].pop(path, None) is not None:
            self._dirty = True

    def file_records(self, prefix: str = "") -> dict[str, FileRecord]:
        """All file records, optionally limited to paths below ``prefix``."""
        return {
            path: FileRecord.from_dict(data)
            for path, data in self._data["files"].items()
            if path.startswith(prefix)
        }

    def get_folder_etag(self, folder: str) -> Optional[str]:
        return self._data["folders"].get(folder)

    def set_folder_etag(self, folder: str, etag: str) -> None:
        if self._data["folders"].get(folder) != etag:
            self._data["folders"][folder] = etag
            self._dirty = True

    def replace_folder_etags(self, etags: dict[str, str]) -> None:
        """Replace all cached folder ETags after a complete sync."""
        if self._data["folders"] != etags:
            self._data["folders"] = dict(etags)
            self._dirty = True

    def forget_blacklisted(self) -> None:
        """Drop file and folder state below the selective sync blacklist.

        Folders removed from the blacklist later are then treated as new
        instead of as deleted on one side.
        """
        for entry in self._data["selective_sync_blacklist"]:
            prefix = entry.lstrip("/")
            folder = prefix.rstrip("/")
            for path in list(self._data["files"]):
                if path.startswith(prefix):
                    del self._data["files"][path]
                    self._dirty = True
            for path in list(self._data["folders"]):
                if path == folder or path.startswith(prefix):
                    del self._data["folders"][path]
                    self._dirty = True

    def folder_paths(self, prefix: str = "") -> list[str]:
        """Folders with a cached ETag, optionally limited to ``prefix``."""
        return [path for path in self._data["folders"] if path.startswith(prefix)]
