"""Exclude lists: which files to load and how their patterns match.

Exclude files hold one glob pattern per line. Blank lines and lines starting
with ``#`` are ignored. A leading ``]`` marks a pattern whose matches may be
removed when their parent folder is deleted; for matching it behaves like a
plain pattern. A trailing ``/`` restricts a pattern to directories. Patterns
containing a ``/`` are matched against the path relative to the sync root,
all others against the file name only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Sequence

from .exceptions import ExcludeListError

logger = logging.getLogger(__name__)

# Files the sync itself writes into the source directory
BUILTIN_PATTERNS: tuple[str, ...] = (
    "._sync_*.json",
    "._sync_*.json.tmp",
    "*.davsync-part",
)


def compose_exclude_files(
    user_file: Path | None, system_file: Path
) -> list[Path]:
    """Decide which exclude files to load, in load order.

    The user supplied file is always loaded when given. The system file is
    loaded when there is no user file, or when it exists and can supplement
    the user rules.

    Args:
        user_file: File given with ``--exclude``
        system_file: Exclude list of the system installation

    Returns:
        Ordered list of exclude files, user file first
    """
    files: list[Path] = []
    if user_file is not None:
        files.append(user_file)
    if user_file is None or system_file.exists():
        files.append(system_file)
    return files


@dataclass(frozen=True)
class ExcludeRule:
    """A single parsed exclude pattern."""

    pattern: str
    dir_only: bool = False
    removable: bool = False

    @classmethod
    def parse(cls, line: str) -> ExcludeRule:
        """Parse one non-comment line of an exclude file.

        Raises:
            ValueError: If the line is not a usable pattern
        """
        removable = line.startswith("]")
        if removable:
            line = line[1:]
        if "\x00" in line:
            raise ValueError("pattern contains a NUL byte")
        dir_only = line.endswith("/")
        pattern = line.rstrip("/")
        if not pattern.strip("/"):
            raise ValueError(f"empty pattern {line!r}")
        return cls(pattern=pattern, dir_only=dir_only, removable=removable)

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        if self.dir_only and not is_dir:
            return False
        if "/" in self.pattern:
            return fnmatchcase(relative_path, self.pattern.lstrip("/"))
        name = relative_path.rsplit("/", 1)[-1]
        return fnmatchcase(name, self.pattern)


def parse_exclude_lines(lines: Sequence[str]) -> list[ExcludeRule]:
    """Parse the lines of an exclude file into rules.

    Raises:
        ValueError: If a line holds a malformed pattern
    """
    rules = []
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        rules.append(ExcludeRule.parse(line))
    return rules


class ExcludedFiles:
    """The set of exclude rules the sync engine consults."""

    def __init__(self) -> None:
        self._files: list[Path] = []
        self._rules: list[ExcludeRule] = [
            ExcludeRule(pattern=p) for p in BUILTIN_PATTERNS
        ]

    @property
    def files(self) -> list[Path]:
        """Exclude files registered so far, in load order."""
        return list(self._files)

    @property
    def rules(self) -> list[ExcludeRule]:
        return list(self._rules)

    def add_exclude_file_path(self, path: Path) -> None:
        if path not in self._files:
            self._files.append(path)

    def reload_exclude_files(self) -> None:
        """Re-read all registered exclude files.

        Raises:
            ExcludeListError: If a file cannot be read or holds a malformed
                pattern. The previous rules stay in place in that case.
        """
        rules = [ExcludeRule(pattern=p) for p in BUILTIN_PATTERNS]
        for path in self._files:
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as e:
                raise ExcludeListError(f"Cannot read exclude list {path}: {e}") from e
            try:
                rules.extend(parse_exclude_lines(lines))
            except ValueError as e:
                raise ExcludeListError(f"Invalid exclude list {path}: {e}") from e
            logger.debug(f"Loaded exclude list {path}")
        self._rules = rules

    def is_excluded(self, relative_path: str, is_dir: bool = False) -> bool:
        """Check a path relative to the sync root against all rules."""
        relative_path = relative_path.strip("/")
        return any(rule.matches(relative_path, is_dir) for rule in self._rules)
