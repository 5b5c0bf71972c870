"""Unit tests for the file comparator."""

from pathlib import Path

import pytest

from davsync.journal import FileRecord, SyncJournal
from davsync.models import DavResource
from davsync.sync.comparator import FileComparator, SyncAction
from davsync.sync.scanner import LocalFile


def local(path="a.txt", size=10, mtime=100.0):
    return LocalFile(path=Path("/src") / path, relative_path=path, size=size, mtime=mtime)


def remote(path="a.txt", size=10, etag="e1", mtime=50.0):
    return DavResource(path=path, is_dir=False, etag=etag, size=size, mtime=mtime)


@pytest.fixture
def journal(tmp_path):
    return SyncJournal(tmp_path / "._sync_test.json")


def decide(journal, local_file=None, remote_file=None, record=None):
    if record is not None:
        journal.set_file_record("a.txt", record)
    local_files = {"a.txt": local_file} if local_file else {}
    remote_files = {"a.txt": remote_file} if remote_file else {}
    decisions = FileComparator(journal).compare_files(local_files, remote_files)
    assert len(decisions) == 1
    return decisions[0].action


RECORD = FileRecord(etag="e1", size=10, mtime=100.0)


class TestFileComparator:
    """Tests for FileComparator decisions."""

    def test_new_local_file(self, journal):
        assert decide(journal, local_file=local()) == SyncAction.UPLOAD

    def test_new_remote_file(self, journal):
        assert decide(journal, remote_file=remote()) == SyncAction.DOWNLOAD

    def test_new_on_both_sides_identical(self, journal):
        """Test that sub-second local mtimes match the server's whole seconds."""
        action = decide(journal, local(mtime=100.7), remote(mtime=100.0))
        assert action == SyncAction.SKIP

    def test_new_on_both_sides_same_size_different_mtime(self, journal):
        """Test that equal sizes alone do not make two new files identical."""
        assert decide(journal, local(), remote()) == SyncAction.CONFLICT

    def test_new_on_both_sides_without_remote_mtime(self, journal):
        assert decide(journal, local(), remote(mtime=None)) == SyncAction.CONFLICT

    def test_new_on_both_sides_different_size(self, journal):
        assert decide(journal, local(size=3), remote()) == SyncAction.CONFLICT

    def test_unchanged(self, journal):
        assert decide(journal, local(), remote(), RECORD) == SyncAction.SKIP

    def test_local_change(self, journal):
        assert decide(journal, local(mtime=200.0), remote(), RECORD) == SyncAction.UPLOAD

    def test_remote_change(self, journal):
        assert decide(journal, local(), remote(etag="e2"), RECORD) == SyncAction.DOWNLOAD

    def test_both_changed(self, journal):
        action = decide(journal, local(size=11, mtime=200.0), remote(etag="e2"), RECORD)
        assert action == SyncAction.CONFLICT

    def test_both_changed_same_size(self, journal):
        action = decide(journal, local(mtime=200.0), remote(etag="e2"), RECORD)
        assert action == SyncAction.CONFLICT

    def test_both_changed_identically(self, journal):
        action = decide(
            journal, local(mtime=200.0), remote(etag="e2", mtime=200.0), RECORD
        )
        assert action == SyncAction.SKIP

    def test_deleted_remotely(self, journal):
        assert decide(journal, local_file=local(), record=RECORD) == SyncAction.DELETE_LOCAL

    def test_deleted_remotely_but_changed_locally(self, journal):
        """Test that a locally modified file is uploaded again."""
        action = decide(journal, local_file=local(mtime=300.0), record=RECORD)
        assert action == SyncAction.UPLOAD

    def test_deleted_locally(self, journal):
        assert decide(journal, remote_file=remote(), record=RECORD) == SyncAction.DELETE_REMOTE

    def test_deleted_locally_but_changed_remotely(self, journal):
        action = decide(journal, remote_file=remote(etag="e9"), record=RECORD)
        assert action == SyncAction.DOWNLOAD

    def test_decisions_are_sorted(self, journal):
        decisions = FileComparator(journal).compare_files(
            {"b.txt": local("b.txt")}, {"a.txt": remote("a.txt")}
        )
        assert [d.relative_path for d in decisions] == ["a.txt", "b.txt"]
