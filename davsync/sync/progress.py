"""Progress events emitted by the sync engine."""

from dataclasses import dataclass
from enum import Enum


class SyncProgressEvent(str, Enum):
    """Kinds of progress events."""

    SYNC_START = "sync_start"
    """Local and remote trees compared, transfers are about to start"""

    FILE_START = "file_start"
    FILE_PROGRESS = "file_progress"
    FILE_COMPLETE = "file_complete"

    SYNC_COMPLETE = "sync_complete"


@dataclass
class SyncProgressInfo:
    """Transmission progress of a sync run."""

    event: SyncProgressEvent
    path: str = ""
    action: str = ""

    file_bytes_done: int = 0
    file_bytes_total: int = 0

    bytes_done: int = 0
    """Bytes transferred so far in this run"""

    bytes_total: int = 0
    """Bytes to transfer in this run"""

    files_done: int = 0
    files_total: int = 0
