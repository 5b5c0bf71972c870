"""Selective sync: folders the user does not want to sync.

The list of unsynced folders is read from a file on every run. When it
differs from the list stored in the journal, all folders that entered or left
the list are scheduled for a fresh remote listing, since cached metadata about
them can no longer be trusted.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from .exceptions import JournalError
from .journal import SyncJournal
from .utils import ensure_trailing_slash

logger = logging.getLogger(__name__)


def parse_unsynced_folders(text: str) -> list[str]:
    """Parse the content of an unsynced-folders file.

    Blank lines and lines starting with ``#`` are skipped; every remaining
    path is normalized to end with ``/``.

    Examples:
        >>> parse_unsynced_folders("foo/bar\\n# comment\\n\\nbaz\\n")
        ['foo/bar/', 'baz/']
    """
    folders = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        folders.append(ensure_trailing_slash(line))
    return folders


def read_unsynced_folders(path: Optional[Path]) -> list[str]:
    """Read the unsynced-folders file given with ``--unsyncedfolders``.

    An unreadable file is logged and treated like an empty one, which
    leaves selective sync untouched.
    """
    if path is None:
        return []
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.error(
            f"Could not open file containing the list of unsynced folders: {path} ({e})"
        )
        return []
    return parse_unsynced_folders(text)


def selective_sync_changes(old: Iterable[str], new: Iterable[str]) -> set[str]:
    """Folders present in exactly one of the two lists."""
    return set(old) ^ set(new)


def selective_sync_fixup(
    open_journal: Callable[[], SyncJournal], new_list: list[str]
) -> set[str]:
    """Bring the journal's blacklist in line with ``new_list``.

    Every folder that was added to or removed from the blacklist is scheduled
    for remote discovery exactly once, then the stored blacklist is replaced
    by ``new_list``. Nothing happens for an empty list. If the journal cannot
    be opened the step is skipped; the sync engine rebuilds it.

    Args:
        open_journal: Opens the journal of the session
        new_list: Normalized list of unsynced folders

    Returns:
        The folders that were scheduled for remote discovery
    """
    if not new_list:
        return set()

    try:
        journal = open_journal()
    except JournalError as e:
        logger.debug(f"Skipping selective sync fixup: {e}")
        return set()

    try:
        with journal:
            changes = selective_sync_changes(
                journal.get_selective_sync_list(), new_list
            )
            for path in changes:
                journal.schedule_path_for_remote_discovery(path)
            journal.set_selective_sync_list(new_list)
    except JournalError as e:
        logger.warning(f"Could not store selective sync list: {e}")
        return set()

    if changes:
        logger.info(f"Selective sync changed for {len(changes)} folder(s)")
    return changes
