"""Core sync engine for executing sync operations."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..api import DavClient
from ..exceptions import DavSyncError, JournalError
from ..exclude import ExcludedFiles
from ..journal import FileRecord, SyncJournal
from .comparator import FileComparator, SyncAction, SyncDecision
from .operations import SyncOperations
from .progress import SyncProgressEvent, SyncProgressInfo
from .scanner import DirectoryScanner, LocalTree, RemoteTree

logger = logging.getLogger(__name__)

TRANSFER_ACTIONS = (SyncAction.UPLOAD, SyncAction.DOWNLOAD, SyncAction.CONFLICT)


def conflict_file_name(path: Path, when: Optional[datetime] = None) -> Path:
    """Name of the copy a conflicting local file is moved to.

    Examples:
        >>> conflict_file_name(Path("a/report.txt"), datetime(2024, 5, 1, 12, 0))
        PosixPath('a/report (conflicted copy 2024-05-01 120000).txt')
    """
    stamp = (when or datetime.now()).strftime("%Y-%m-%d %H%M%S")
    return path.with_name(f"{path.stem} (conflicted copy {stamp}){path.suffix}")


class SyncEngine:
    """Runs a single sync pass between the source directory and the server.

    The run is started with :meth:`start` and reports through three
    channels: the returned task resolves to True or False when the run
    finished, ``progress_callback`` receives transmission progress and
    ``error_callback`` receives errors that did not stop the run. After the
    run :meth:`is_another_sync_needed` tells whether something changed while
    it was going on.
    """

    def __init__(
        self,
        client: DavClient,
        source_dir: Path,
        journal_path: Path,
        excluded: ExcludedFiles,
        ignore_hidden_files: bool = True,
        uplimit: int = 0,
        downlimit: int = 0,
        progress_callback: Optional[Callable[[SyncProgressInfo], None]] = None,
        error_callback: Optional[Callable[[str], None]] = None,
    ):
        """Initialize sync engine.

        Args:
            client: DAV client of the remote folder
            source_dir: Local directory to sync
            journal_path: Location of the sync journal
            excluded: Exclude rules (already loaded)
            ignore_hidden_files: Skip dot files on both sides
            uplimit: Upload limit in bytes per second (0 = unlimited)
            downlimit: Download limit in bytes per second (0 = unlimited)
            progress_callback: Receives progress events
            error_callback: Receives error messages
        """
        self.client = client
        self.source_dir = source_dir
        self.journal_path = journal_path
        self.excluded = excluded
        self.ignore_hidden_files = ignore_hidden_files
        self.operations = SyncOperations(client, uplimit=uplimit, downlimit=downlimit)
        self.progress_callback = progress_callback
        self.error_callback = error_callback
        self.stats = self._create_empty_stats()
        self._another_sync_needed = False
        self._task: Optional["asyncio.Task[bool]"] = None
        self._progress = SyncProgressInfo(event=SyncProgressEvent.SYNC_START)

    def start(self) -> "asyncio.Task[bool]":
        """Start the run on the running event loop.

        Returns:
            Task resolving to True on success and False on failure
        """
        if self._task is not None:
            raise RuntimeError("SyncEngine can only be started once")
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def is_another_sync_needed(self) -> bool:
        return self._another_sync_needed

    def _emit_error(self, message: str) -> None:
        if self.error_callback is not None:
            self.error_callback(message)
        else:
            logger.warning(f"Sync error: {message}")

    def _emit_progress(self, event: SyncProgressEvent, **changes) -> None:
        for key, value in changes.items():
            setattr(self._progress, key, value)
        self._progress.event = event
        if self.progress_callback is not None:
            self.progress_callback(self._progress)

    @staticmethod
    def _create_empty_stats() -> dict:
        """Create an empty statistics dictionary."""
        return {
            "uploads": 0,
            "downloads": 0,
            "deletes_local": 0,
            "deletes_remote": 0,
            "skips": 0,
            "conflicts": 0,
            "errors": 0,
        }

    def _categorize_decisions(self, decisions: list[SyncDecision]) -> dict:
        stats = self._create_empty_stats()
        keys = {
            SyncAction.UPLOAD: "uploads",
            SyncAction.DOWNLOAD: "downloads",
            SyncAction.DELETE_LOCAL: "deletes_local",
            SyncAction.DELETE_REMOTE: "deletes_remote",
            SyncAction.SKIP: "skips",
            SyncAction.CONFLICT: "conflicts",
        }
        for decision in decisions:
            stats[keys[decision.action]] += 1
        return stats

    async def _run(self) -> bool:
        try:
            journal = SyncJournal.open(self.journal_path)
        except JournalError as e:
            logger.warning(f"{e}; starting with an empty journal")
            journal = SyncJournal(self.journal_path)

        try:
            with journal:
                return await self._sync(journal)
        except (DavSyncError, OSError) as e:
            self._emit_error(str(e))
            return False

    async def _sync(self, journal: SyncJournal) -> bool:
        journal.forget_blacklisted()
        scanner = DirectoryScanner(self.excluded, journal, self.ignore_hidden_files)
        local = scanner.scan_local(self.source_dir)
        remote = await scanner.scan_remote(self.client)

        decisions = FileComparator(journal).compare_files(local.files, remote.files)
        self.stats = self._categorize_decisions(decisions)
        logger.info(
            f"Sync plan: {self.stats['uploads']} upload(s), "
            f"{self.stats['downloads']} download(s), "
            f"{self.stats['deletes_local'] + self.stats['deletes_remote']} "
            f"deletion(s), {self.stats['conflicts']} conflict(s)"
        )

        transfers = [d for d in decisions if d.action in TRANSFER_ACTIONS]
        self._emit_progress(
            SyncProgressEvent.SYNC_START,
            files_total=len(transfers),
            bytes_total=sum(self._transfer_size(d) for d in transfers),
        )

        success = await self._sync_folders(local, remote, decisions, journal)
        for decision in decisions:
            try:
                await self._execute(decision, journal)
            except (DavSyncError, OSError) as e:
                self.stats["errors"] += 1
                self._emit_error(f"{decision.relative_path}: {e}")
                success = False
        if not await self._remove_deleted_folders(local, remote, decisions, journal):
            success = False

        self._emit_progress(SyncProgressEvent.SYNC_COMPLETE)
        if success:
            journal.replace_folder_etags(remote.folders)
            journal.clear_remote_discovery()
        return success

    @staticmethod
    def _transfer_size(decision: SyncDecision) -> int:
        if decision.action == SyncAction.UPLOAD and decision.local_file:
            return decision.local_file.size
        if decision.remote_file:
            return decision.remote_file.size
        return 0

    # =========================
    # Folders
    # =========================

    async def _sync_folders(
        self,
        local: LocalTree,
        remote: RemoteTree,
        decisions: list[SyncDecision],
        journal: SyncJournal,
    ) -> bool:
        """Create folders that exist on one side only and are new there.

        A known folder missing remotely is recreated when new files are
        uploaded into it.
        """
        known = set(journal.folder_paths())
        uploads = [d.relative_path for d in decisions if d.action == SyncAction.UPLOAD]
        success = True

        for folder in sorted(local.folders - remote.folders.keys()):
            prefix = folder + "/"
            if folder in known and not any(p.startswith(prefix) for p in uploads):
                continue
            try:
                await self.operations.make_remote_folder(folder)
                remote.folders[folder] = ""
            except DavSyncError as e:
                self._emit_error(f"{folder}: {e}")
                success = False

        for folder in sorted(remote.folders.keys() - local.folders):
            if folder in known:
                continue
            self.operations.make_local_folder(self.source_dir, folder)
            local.folders.add(folder)
        return success

    async def _remove_deleted_folders(
        self,
        local: LocalTree,
        remote: RemoteTree,
        decisions: list[SyncDecision],
        journal: SyncJournal,
    ) -> bool:
        """Propagate deletions of folders that were known from the last sync."""
        known = set(journal.folder_paths())
        deleted_remotely = sorted(
            (local.folders - remote.folders.keys()) & known, reverse=True
        )
        for folder in deleted_remotely:
            try:
                (self.source_dir / folder).rmdir()
            except OSError:
                logger.debug(f"Keeping non-empty local folder {folder}")

        deleted_files = {
            d.relative_path for d in decisions if d.action == SyncAction.DELETE_REMOTE
        }
        remaining = set(remote.files) - deleted_files
        deleted_locally = (remote.folders.keys() - local.folders) & known
        success = True
        for folder in sorted(deleted_locally):
            parent = folder.rsplit("/", 1)[0] if "/" in folder else ""
            if parent in deleted_locally:
                continue
            prefix = folder + "/"
            if any(path.startswith(prefix) for path in remaining) or any(
                path.startswith(prefix) and path not in known for path in remote.folders
            ):
                logger.debug(f"Keeping remote folder {folder} with new content")
                continue
            try:
                await self.client.delete(folder)
            except DavSyncError as e:
                self._emit_error(f"{folder}: {e}")
                success = False
                continue
            for path in [folder, *(p for p in remote.folders if p.startswith(prefix))]:
                remote.folders.pop(path, None)
        return success

    # =========================
    # Files
    # =========================

    def _progress_callback(self, path: str, total: int) -> Callable[[int], None]:
        self._emit_progress(
            SyncProgressEvent.FILE_START,
            path=path,
            file_bytes_done=0,
            file_bytes_total=total,
        )

        def advance(nbytes: int) -> None:
            self._emit_progress(
                SyncProgressEvent.FILE_PROGRESS,
                file_bytes_done=self._progress.file_bytes_done + nbytes,
                bytes_done=self._progress.bytes_done + nbytes,
            )

        return advance

    def _file_complete(self) -> None:
        self._emit_progress(
            SyncProgressEvent.FILE_COMPLETE,
            files_done=self._progress.files_done + 1,
        )

    async def _download(self, decision: SyncDecision, journal: SyncJournal) -> None:
        remote_file = decision.remote_file
        assert remote_file is not None
        local_path = self.source_dir / decision.relative_path
        etag = await self.operations.download_file(
            remote_file,
            local_path,
            self._progress_callback(decision.relative_path, remote_file.size),
        )
        if remote_file.etag and etag != remote_file.etag:
            logger.info(f"{decision.relative_path} changed on the server during sync")
            self._another_sync_needed = True

        stat = local_path.stat()
        journal.set_file_record(
            decision.relative_path,
            FileRecord(
                etag=etag,
                size=stat.st_size,
                mtime=stat.st_mtime,
                remote_mtime=remote_file.mtime,
            ),
        )
        self._file_complete()

    async def _execute(self, decision: SyncDecision, journal: SyncJournal) -> None:
        path = decision.relative_path
        local_file = decision.local_file
        remote_file = decision.remote_file
        action = decision.action
        logger.debug(f"{action.value}: {path} ({decision.reason})")

        if action == SyncAction.SKIP:
            if local_file and remote_file:
                record = FileRecord(
                    etag=remote_file.etag,
                    size=local_file.size,
                    mtime=local_file.mtime,
                    remote_mtime=remote_file.mtime,
                )
                if journal.get_file_record(path) != record:
                    journal.set_file_record(path, record)

        elif action == SyncAction.UPLOAD:
            assert local_file is not None
            etag, changed = await self.operations.upload_file(
                local_file, self._progress_callback(path, local_file.size)
            )
            if changed:
                logger.info(f"{path} changed locally during upload")
                self._another_sync_needed = True
            else:
                journal.set_file_record(
                    path,
                    FileRecord(
                        etag=etag, size=local_file.size, mtime=local_file.mtime
                    ),
                )
            self._file_complete()

        elif action == SyncAction.DOWNLOAD:
            await self._download(decision, journal)

        elif action == SyncAction.CONFLICT:
            assert local_file is not None
            conflict_path = conflict_file_name(local_file.path)
            local_file.path.rename(conflict_path)
            logger.warning(f"Conflict on {path}, local version kept as {conflict_path.name}")
            await self._download(decision, journal)
            # The conflict copy is uploaded by the next pass
            self._another_sync_needed = True

        elif action == SyncAction.DELETE_LOCAL:
            assert local_file is not None
            self.operations.delete_local(local_file)
            journal.delete_file_record(path)

        elif action == SyncAction.DELETE_REMOTE:
            assert remote_file is not None
            await self.operations.delete_remote(remote_file)
            journal.delete_file_record(path)
