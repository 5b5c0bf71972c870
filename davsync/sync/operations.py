"""Transfer operations with bandwidth limiting."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Callable, Optional

from ..api import DavClient
from ..models import DavResource
from ..utils import TRANSFER_BLOCK_SIZE
from .scanner import LocalFile

logger = logging.getLogger(__name__)

PART_SUFFIX = ".davsync-part"


class BandwidthLimiter:
    """Keeps the average transfer rate below ``limit`` bytes per second.

    A limit of 0 disables throttling.
    """

    def __init__(self, limit: int = 0):
        self.limit = limit
        self._start: Optional[float] = None
        self._transferred = 0

    async def throttle(self, nbytes: int) -> None:
        if self.limit <= 0:
            return
        now = asyncio.get_running_loop().time()
        if self._start is None:
            self._start = now
        self._transferred += nbytes
        expected = self._transferred / self.limit
        elapsed = now - self._start
        if expected > elapsed:
            await asyncio.sleep(expected - elapsed)


class SyncOperations:
    """Unified operations for upload/download with common interface."""

    def __init__(self, client: DavClient, uplimit: int = 0, downlimit: int = 0):
        """Initialize sync operations.

        Args:
            client: DAV client of the sync folder
            uplimit: Upload limit in bytes per second (0 = unlimited)
            downlimit: Download limit in bytes per second (0 = unlimited)
        """
        self.client = client
        self.upload_limiter = BandwidthLimiter(uplimit)
        self.download_limiter = BandwidthLimiter(downlimit)

    async def _read_blocks(
        self, path: Path, progress_callback: Optional[Callable[[int], None]]
    ) -> AsyncIterator[bytes]:
        with open(path, "rb") as f:
            while True:
                block = f.read(TRANSFER_BLOCK_SIZE)
                if not block:
                    break
                await self.upload_limiter.throttle(len(block))
                if progress_callback:
                    progress_callback(len(block))
                yield block

    async def upload_file(
        self,
        local_file: LocalFile,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> tuple[str, bool]:
        """Upload a local file. Its parent folder must exist remotely.

        Args:
            local_file: Local file to upload
            progress_callback: Called with the size of every block sent

        Returns:
            Tuple of (new remote ETag, whether the local file changed while
            it was uploaded)
        """
        etag = await self.client.upload(
            local_file.relative_path,
            self._read_blocks(local_file.path, progress_callback),
            size=local_file.size,
            mtime=local_file.mtime,
        )
        stat = local_file.path.stat()
        changed = stat.st_size != local_file.size or stat.st_mtime != local_file.mtime
        return etag, changed

    async def download_file(
        self,
        remote_file: DavResource,
        local_path: Path,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> str:
        """Download a remote file to local storage.

        The content is written to a temporary ``.davsync-part`` file next to
        the target which replaces the target once complete.

        Returns:
            ETag of the downloaded version
        """
        local_path.parent.mkdir(parents=True, exist_ok=True)
        part_path = local_path.with_name(local_path.name + PART_SUFFIX)

        try:
            with open(part_path, "wb") as f:

                async def sink(chunk: bytes) -> None:
                    await self.download_limiter.throttle(len(chunk))
                    f.write(chunk)
                    if progress_callback:
                        progress_callback(len(chunk))

                etag = await self.client.download(remote_file.path, sink)
            if remote_file.mtime is not None:
                os.utime(part_path, (remote_file.mtime, remote_file.mtime))
            os.replace(part_path, local_path)
        finally:
            if part_path.exists():
                part_path.unlink()
        return etag or remote_file.etag

    async def delete_remote(self, remote_file: DavResource) -> None:
        await self.client.delete(remote_file.path)

    def delete_local(self, local_file: LocalFile) -> None:
        local_file.path.unlink()

    async def make_remote_folder(self, path: str) -> None:
        await self.client.make_folder(path)

    def make_local_folder(self, root: Path, path: str) -> None:
        (root / path).mkdir(parents=True, exist_ok=True)
