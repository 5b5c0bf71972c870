"""Tests for the sync engine against the in-memory server."""

import asyncio
import dataclasses
import json
import os
import shutil
from datetime import datetime
from pathlib import Path

import httpx
import pytest

from davsync.api import DavClient
from davsync.exclude import ExcludedFiles
from davsync.journal import SyncJournal
from davsync.sync import SyncEngine, SyncProgressEvent, conflict_file_name

SERVER_URL = "https://cloud.example.com"


class TestConflictFileName:
    """Tests for conflict_file_name function."""

    def test_keeps_extension(self):
        path = conflict_file_name(Path("a/report.txt"), datetime(2024, 5, 1, 12, 0))
        assert path == Path("a/report (conflicted copy 2024-05-01 120000).txt")

    def test_no_extension(self):
        path = conflict_file_name(Path("Makefile"))
        assert path.name.startswith("Makefile (conflicted copy ")


class TestSyncEngine:
    """Test SyncEngine functionality."""

    @pytest.fixture
    def source(self, tmp_path):
        source = tmp_path / "source"
        source.mkdir()
        return source

    @pytest.fixture
    def journal_path(self, source):
        return SyncJournal.path_for(source, SERVER_URL, "/", "alice")

    @pytest.fixture
    def errors(self):
        return []

    @pytest.fixture
    def make_engine(self, account, dav_server, source, journal_path, errors):
        def factory(transport=None, excluded=None, **kwargs):
            client = DavClient(
                account,
                transport=transport or dav_server.transport(),
                max_retries=0,
                retry_delay=0,
            )
            return SyncEngine(
                client,
                source_dir=source,
                journal_path=journal_path,
                excluded=excluded or ExcludedFiles(),
                error_callback=errors.append,
                **kwargs,
            )

        return factory

    @staticmethod
    def run(engine: SyncEngine) -> bool:
        async def scenario():
            async with engine.client:
                return await engine.start()

        return asyncio.run(scenario())

    def local_files(self, source: Path) -> dict[str, bytes]:
        return {
            p.relative_to(source).as_posix(): p.read_bytes()
            for p in source.rglob("*")
            if p.is_file() and not p.name.startswith("._sync_")
        }

    def test_start_twice_raises(self, make_engine):
        engine = make_engine()

        async def scenario():
            async with engine.client:
                task = engine.start()
                with pytest.raises(RuntimeError):
                    engine.start()
                return await task

        assert asyncio.run(scenario()) is True

    def test_initial_sync_both_directions(self, make_engine, dav_server, source, errors):
        (source / "a.txt").write_bytes(b"alpha")
        (source / "sub").mkdir()
        (source / "sub" / "b.txt").write_bytes(b"beta")
        dav_server.add_file("c.txt", b"gamma")
        dav_server.add_file("docs/d.txt", b"delta")

        engine = make_engine()
        assert self.run(engine) is True
        assert errors == []
        assert not engine.is_another_sync_needed()

        assert dav_server.files["a.txt"]["content"] == b"alpha"
        assert dav_server.files["sub/b.txt"]["content"] == b"beta"
        assert self.local_files(source) == {
            "a.txt": b"alpha",
            "sub/b.txt": b"beta",
            "c.txt": b"gamma",
            "docs/d.txt": b"delta",
        }
        assert engine.stats["uploads"] == 2
        assert engine.stats["downloads"] == 2

    def test_download_keeps_remote_mtime(self, make_engine, dav_server, source):
        dav_server.add_file("c.txt", b"gamma", mtime=1600000000)
        assert self.run(make_engine()) is True
        assert (source / "c.txt").stat().st_mtime == 1600000000

    def test_second_run_transfers_nothing(self, make_engine, dav_server, source):
        (source / "a.txt").write_bytes(b"alpha")
        dav_server.add_file("c.txt", b"gamma")
        assert self.run(make_engine()) is True

        dav_server.requests.clear()
        engine = make_engine()
        assert self.run(engine) is True
        assert dav_server.count("PUT") == 0
        assert dav_server.count("GET") == 0
        assert dav_server.count("DELETE") == 0
        assert engine.stats["skips"] == 2

    def test_unchanged_folders_taken_from_journal(self, make_engine, dav_server):
        dav_server.add_file("docs/d.txt", b"delta")
        dav_server.add_file("docs/deep/e.txt", b"epsilon")
        assert self.run(make_engine()) is True

        dav_server.requests.clear()
        assert self.run(make_engine()) is True
        assert dav_server.requests == [("PROPFIND", "")]

    def test_scheduled_folder_is_listed_again(
        self, make_engine, dav_server, journal_path
    ):
        dav_server.add_file("docs/d.txt", b"delta")
        assert self.run(make_engine()) is True

        with SyncJournal.open(journal_path) as journal:
            journal.schedule_path_for_remote_discovery("docs/")

        dav_server.requests.clear()
        assert self.run(make_engine()) is True
        assert ("PROPFIND", "docs") in dav_server.requests
        assert SyncJournal.open(journal_path).remote_discovery_paths() == set()

    def test_local_delete_propagates(self, make_engine, dav_server, source):
        (source / "a.txt").write_bytes(b"alpha")
        assert self.run(make_engine()) is True

        (source / "a.txt").unlink()
        assert self.run(make_engine()) is True
        assert "a.txt" not in dav_server.files

    def test_remote_delete_propagates(self, make_engine, dav_server, source):
        dav_server.add_file("c.txt", b"gamma")
        assert self.run(make_engine()) is True

        dav_server.remove("c.txt")
        assert self.run(make_engine()) is True
        assert not (source / "c.txt").exists()

    def test_local_folder_delete_propagates(self, make_engine, dav_server, source):
        dav_server.add_file("docs/d.txt", b"delta")
        assert self.run(make_engine()) is True

        shutil.rmtree(source / "docs")
        assert self.run(make_engine()) is True
        assert "docs" not in dav_server.folders
        assert "docs/d.txt" not in dav_server.files

    def test_remote_folder_delete_propagates(self, make_engine, dav_server, source):
        dav_server.add_file("docs/d.txt", b"delta")
        assert self.run(make_engine()) is True

        dav_server.remove("docs")
        assert self.run(make_engine()) is True
        assert not (source / "docs").exists()

    def test_conflict_creates_copy(self, make_engine, dav_server, source):
        (source / "a.txt").write_bytes(b"local version")
        dav_server.add_file("a.txt", b"remote")

        engine = make_engine()
        assert self.run(engine) is True
        assert engine.is_another_sync_needed()

        files = self.local_files(source)
        assert files.pop("a.txt") == b"remote"
        [(name, content)] = files.items()
        assert name.startswith("a (conflicted copy ")
        assert name.endswith(").txt")
        assert content == b"local version"

    def test_same_size_new_files_conflict(self, make_engine, dav_server, source):
        """Test that two new files of equal size but other content conflict."""
        (source / "a.txt").write_bytes(b"LOCAL")
        dav_server.add_file("a.txt", b"REMOT")

        engine = make_engine()
        assert self.run(engine) is True
        assert engine.is_another_sync_needed()

        files = self.local_files(source)
        assert files.pop("a.txt") == b"REMOT"
        assert list(files.values()) == [b"LOCAL"]

    def test_identical_new_files_are_kept(self, make_engine, dav_server, source):
        path = source / "a.txt"
        path.write_bytes(b"same")
        os.utime(path, (1600000000.5, 1600000000.5))
        dav_server.add_file("a.txt", b"same", mtime=1600000000)

        engine = make_engine()
        assert self.run(engine) is True
        assert not engine.is_another_sync_needed()
        assert dav_server.count("GET") == 0
        assert dav_server.count("PUT") == 0

    def test_hidden_files_are_ignored_by_default(self, make_engine, dav_server, source):
        (source / ".hidden").write_bytes(b"h")
        (source / "visible.txt").write_bytes(b"v")
        dav_server.add_file(".remote-hidden", b"r")

        assert self.run(make_engine()) is True
        assert ".hidden" not in dav_server.files
        assert "visible.txt" in dav_server.files
        assert not (source / ".remote-hidden").exists()

    def test_hidden_files_synced_on_request(self, make_engine, dav_server, source):
        """Test that hidden files sync while the journal never does."""
        (source / ".hidden").write_bytes(b"h")

        assert self.run(make_engine(ignore_hidden_files=False)) is True
        assert self.run(make_engine(ignore_hidden_files=False)) is True
        assert ".hidden" in dav_server.files
        assert not any(p.startswith("._sync_") for p in dav_server.files)

    def test_excluded_files_are_skipped(self, make_engine, dav_server, source, tmp_path):
        exclude_file = tmp_path / "exclude.lst"
        exclude_file.write_text("*.log\nbuild/\n")
        excluded = ExcludedFiles()
        excluded.add_exclude_file_path(exclude_file)
        excluded.reload_exclude_files()

        (source / "debug.log").write_bytes(b"log")
        (source / "build").mkdir()
        (source / "build" / "out.bin").write_bytes(b"bin")
        (source / "keep.txt").write_bytes(b"keep")
        dav_server.add_file("remote.log", b"log")

        assert self.run(make_engine(excluded=excluded)) is True
        assert set(dav_server.files) == {"keep.txt", "remote.log"}
        assert "build" not in dav_server.folders
        assert not (source / "remote.log").exists()

    def test_blacklisted_folder_is_not_synced(
        self, make_engine, dav_server, source, journal_path
    ):
        with SyncJournal.open(journal_path) as journal:
            journal.set_selective_sync_list(["Private/"])
        dav_server.add_file("Private/secret.txt", b"s")
        dav_server.add_file("pub.txt", b"p")

        assert self.run(make_engine()) is True
        assert self.local_files(source) == {"pub.txt": b"p"}
        assert ("PROPFIND", "Private") not in dav_server.requests

    def test_file_error_does_not_stop_run(self, make_engine, dav_server, source, errors):
        (source / "a.txt").write_bytes(b"alpha")
        (source / "b.txt").write_bytes(b"beta")
        (source / "c.txt").write_bytes(b"gamma")
        dav_server.fail[("PUT", "b.txt")] = 403

        engine = make_engine()
        assert self.run(engine) is False
        assert "a.txt" in dav_server.files
        assert "c.txt" in dav_server.files
        assert len(errors) == 1
        assert errors[0].startswith("b.txt")
        assert engine.stats["errors"] == 1

    def test_listing_failure_fails_run(self, make_engine, dav_server, errors):
        dav_server.fail[("PROPFIND", "")] = 403
        assert self.run(make_engine()) is False
        assert len(errors) == 1

    def test_change_during_upload_needs_another_sync(
        self, make_engine, dav_server, source, journal_path
    ):
        path = source / "a.txt"
        path.write_bytes(b"alpha")

        def touch(info):
            if info.event == SyncProgressEvent.FILE_PROGRESS:
                os.utime(path, (1, 1))

        engine = make_engine(progress_callback=touch)
        assert self.run(engine) is True
        assert engine.is_another_sync_needed()
        assert SyncJournal.open(journal_path).get_file_record("a.txt") is None

    def test_change_on_server_during_download(self, make_engine, dav_server):
        dav_server.add_file("c.txt", b"gamma")
        changed = []

        def handler(request):
            if request.method == "GET" and not changed:
                changed.append(True)
                dav_server.add_file("c.txt", b"gamma 2")
            return dav_server.handler(request)

        engine = make_engine(transport=httpx.MockTransport(handler))
        assert self.run(engine) is True
        assert engine.is_another_sync_needed()

    def test_progress_events(self, make_engine, source):
        (source / "a.txt").write_bytes(b"alpha")
        events = []

        engine = make_engine(progress_callback=lambda i: events.append(dataclasses.replace(i)))
        assert self.run(engine) is True

        assert events[0].event == SyncProgressEvent.SYNC_START
        assert events[0].files_total == 1
        assert events[0].bytes_total == 5
        assert SyncProgressEvent.FILE_START in [e.event for e in events]
        assert events[-1].event == SyncProgressEvent.SYNC_COMPLETE
        assert events[-1].files_done == 1
        assert events[-1].bytes_done == 5

    def test_corrupt_journal_is_replaced(self, make_engine, source, journal_path):
        (source / "a.txt").write_bytes(b"alpha")
        journal_path.write_text("{broken")

        assert self.run(make_engine()) is True
        data = json.loads(journal_path.read_text())
        assert "a.txt" in data["files"]
