"""Local and remote tree scanning for sync runs."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from ..api import DavClient
from ..exclude import ExcludedFiles
from ..journal import SyncJournal
from ..models import DavResource
from ..utils import is_hidden

logger = logging.getLogger(__name__)


@dataclass
class LocalFile:
    """Represents a local file with metadata."""

    path: Path
    """Absolute path to the file"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    size: int
    """File size in bytes"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    @classmethod
    def from_path(cls, file_path: Path, base_path: Path) -> "LocalFile":
        stat = file_path.stat()
        return cls(
            path=file_path,
            relative_path=file_path.relative_to(base_path).as_posix(),
            size=stat.st_size,
            mtime=stat.st_mtime,
        )


@dataclass
class LocalTree:
    files: dict[str, LocalFile] = field(default_factory=dict)
    folders: set[str] = field(default_factory=set)


@dataclass
class RemoteTree:
    files: dict[str, DavResource] = field(default_factory=dict)
    folders: dict[str, str] = field(default_factory=dict)
    """Folder path -> ETag"""

    cached_folders: int = 0
    """Folders taken from the journal instead of being listed"""


class DirectoryScanner:
    """Builds the local and remote trees, applying all exclusion rules.

    A path is skipped when it matches the exclude list, lies in a folder of
    the selective sync blacklist, or is hidden while hidden files are
    ignored.
    """

    def __init__(
        self,
        excluded: ExcludedFiles,
        journal: SyncJournal,
        ignore_hidden_files: bool = True,
    ):
        self.excluded = excluded
        self.journal = journal
        self.ignore_hidden_files = ignore_hidden_files

    def is_skipped(self, relative_path: str, is_dir: bool) -> bool:
        if self.ignore_hidden_files and is_hidden(relative_path):
            return True
        if is_dir and self.journal.is_blacklisted(relative_path):
            return True
        return self.excluded.is_excluded(relative_path, is_dir=is_dir)

    def scan_local(self, root: Path) -> LocalTree:
        """Scan the local source directory.

        Args:
            root: Source directory

        Returns:
            Files and folders relative to ``root``
        """
        tree = LocalTree()
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            relative_dir = current.relative_to(root).as_posix()
            relative_dir = "" if relative_dir == "." else relative_dir

            kept = []
            for name in sorted(dirnames):
                rel = f"{relative_dir}/{name}" if relative_dir else name
                if (current / name).is_symlink() or self.is_skipped(rel, True):
                    continue
                kept.append(name)
                tree.folders.add(rel)
            # Prune in place so os.walk does not descend into skipped folders
            dirnames[:] = kept

            for name in filenames:
                rel = f"{relative_dir}/{name}" if relative_dir else name
                path = current / name
                if path.is_symlink() or self.is_skipped(rel, False):
                    continue
                try:
                    tree.files[rel] = LocalFile.from_path(path, root)
                except OSError as e:
                    logger.warning(f"Cannot stat {path}: {e}")

        logger.debug(
            f"Found {len(tree.files)} local file(s) in {len(tree.folders)} folder(s)"
        )
        return tree

    def _cached_subtree(self, folder: str, tree: RemoteTree) -> None:
        """Fill ``tree`` below ``folder`` from the journal."""
        prefix = folder + "/"
        for path, record in self.journal.file_records(prefix).items():
            if self.is_skipped(path, False):
                continue
            tree.files[path] = DavResource(
                path=path,
                is_dir=False,
                etag=record.etag,
                size=record.size,
                mtime=record.remote_mtime,
            )
        for path in self.journal.folder_paths(prefix):
            if not self.is_skipped(path, True):
                tree.folders[path] = self.journal.get_folder_etag(path) or ""
        tree.cached_folders += 1

    async def scan_remote(self, client: DavClient) -> RemoteTree:
        """List the remote folder tree.

        Sub folders whose ETag matches the one stored in the journal are
        taken from the journal, unless they were scheduled for remote
        discovery.
        """
        tree = RemoteTree()
        pending = [""]
        while pending:
            folder = pending.pop(0)
            for resource in await client.list_folder(folder):
                if resource.path == folder:
                    if folder:
                        tree.folders[folder] = resource.etag
                    continue
                if self.is_skipped(resource.path, resource.is_dir):
                    continue
                if not resource.is_dir:
                    tree.files[resource.path] = resource
                    continue

                tree.folders[resource.path] = resource.etag
                cached_etag = self.journal.get_folder_etag(resource.path)
                if (
                    resource.etag
                    and cached_etag == resource.etag
                    and not self.journal.needs_remote_discovery(resource.path)
                ):
                    self._cached_subtree(resource.path, tree)
                else:
                    pending.append(resource.path)

        logger.debug(
            f"Found {len(tree.files)} remote file(s) in {len(tree.folders)} "
            f"folder(s), {tree.cached_folders} taken from the journal"
        )
        return tree
