"""File comparison logic for sync operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..journal import FileRecord, SyncJournal
from ..models import DavResource
from .scanner import LocalFile


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    UPLOAD = "upload"
    """Upload local file to remote"""

    DOWNLOAD = "download"
    """Download remote file to local"""

    DELETE_LOCAL = "delete_local"
    """Delete local file"""

    DELETE_REMOTE = "delete_remote"
    """Delete remote file"""

    SKIP = "skip"
    """Skip file (no action needed)"""

    CONFLICT = "conflict"
    """Both sides changed; the local version is kept as a conflict copy"""


@dataclass
class SyncDecision:
    """Represents a decision about how to sync a file."""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    local_file: Optional[LocalFile]
    """Local file (if exists)"""

    remote_file: Optional[DavResource]
    """Remote file (if exists)"""

    relative_path: str
    """Relative path of the file"""


class FileComparator:
    """Compares local and remote files against the journal.

    The journal holds the state of each file after the last sync; a side
    whose state differs from it has changed since.
    """

    def __init__(self, journal: SyncJournal):
        self.journal = journal

    def compare_files(
        self,
        local_files: dict[str, LocalFile],
        remote_files: dict[str, DavResource],
    ) -> list[SyncDecision]:
        """Compare local and remote files and determine sync actions.

        Args:
            local_files: Dictionary mapping relative_path to LocalFile
            remote_files: Dictionary mapping relative_path to DavResource

        Returns:
            List of SyncDecision objects, sorted by path
        """
        decisions: list[SyncDecision] = []
        all_paths = set(local_files) | set(remote_files)

        for path in sorted(all_paths):
            local_file = local_files.get(path)
            remote_file = remote_files.get(path)
            record = self.journal.get_file_record(path)
            decisions.append(
                self._compare_single_file(path, local_file, remote_file, record)
            )

        return decisions

    @staticmethod
    def _local_changed(local_file: LocalFile, record: FileRecord) -> bool:
        return local_file.size != record.size or local_file.mtime != record.mtime

    @staticmethod
    def _same_content(local_file: LocalFile, remote_file: DavResource) -> bool:
        """Size and mtime match; the server keeps mtimes in whole seconds."""
        if remote_file.mtime is None or local_file.size != remote_file.size:
            return False
        return int(local_file.mtime) == int(remote_file.mtime)

    def _compare_single_file(
        self,
        path: str,
        local_file: Optional[LocalFile],
        remote_file: Optional[DavResource],
        record: Optional[FileRecord],
    ) -> SyncDecision:
        def decide(action: SyncAction, reason: str) -> SyncDecision:
            return SyncDecision(
                action=action,
                reason=reason,
                local_file=local_file,
                remote_file=remote_file,
                relative_path=path,
            )

        # Case 1: File exists in both locations
        if local_file and remote_file:
            if record is None:
                if self._same_content(local_file, remote_file):
                    return decide(
                        SyncAction.SKIP, "Files are identical (same size and mtime)"
                    )
                return decide(SyncAction.CONFLICT, "New on both sides and different")

            local_changed = self._local_changed(local_file, record)
            remote_changed = remote_file.etag != record.etag
            if local_changed and remote_changed:
                if self._same_content(local_file, remote_file):
                    return decide(SyncAction.SKIP, "Changed identically on both sides")
                return decide(SyncAction.CONFLICT, "Changed on both sides")
            if local_changed:
                return decide(SyncAction.UPLOAD, "Local file changed")
            if remote_changed:
                return decide(SyncAction.DOWNLOAD, "Remote file changed")
            return decide(SyncAction.SKIP, "Unchanged")

        # Case 2: File only exists locally
        if local_file:
            if record is not None and not self._local_changed(local_file, record):
                return decide(SyncAction.DELETE_LOCAL, "Deleted on the server")
            return decide(SyncAction.UPLOAD, "New local file")

        # Case 3: File only exists remotely
        if remote_file:
            if record is not None and remote_file.etag == record.etag:
                return decide(SyncAction.DELETE_REMOTE, "Deleted locally")
            return decide(SyncAction.DOWNLOAD, "New remote file")

        return decide(SyncAction.SKIP, "No file found")
