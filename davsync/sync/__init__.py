"""Sync engine for davsync - scan, compare and transfer a single sync pass."""

from .comparator import FileComparator, SyncAction, SyncDecision
from .engine import SyncEngine, conflict_file_name
from .operations import BandwidthLimiter, SyncOperations
from .progress import SyncProgressEvent, SyncProgressInfo
from .scanner import DirectoryScanner, LocalFile, LocalTree, RemoteTree

__all__ = [
    "SyncEngine",
    "SyncOperations",
    "BandwidthLimiter",
    "DirectoryScanner",
    "FileComparator",
    "SyncAction",
    "SyncDecision",
    "LocalFile",
    "LocalTree",
    "RemoteTree",
    "SyncProgressEvent",
    "SyncProgressInfo",
    "conflict_file_name",
]
