"""Tests for the backup engine request pipeline."""

import asyncio
import errno
import shutil
import threading
from dataclasses import replace
from unittest.mock import patch

import pytest

from repo_backup import BackupEngine
from repo_backup.exceptions import (
    AuthError,
    BusyError,
    FatalIOError,
    PayloadTooLargeError,
    ValidationError,
)
from repo_backup.store import BackupStore
from tests.utils import AUTH_HEADER, FakeTreeSource


@pytest.fixture
def tree_source():
    return FakeTreeSource({"README.md": b"# repo", "src/app.py": b"print('hi')"})


@pytest.fixture
def engine(config, tree_source):
    return BackupEngine(config, tree_source=tree_source)


class BlockingTreeSource(FakeTreeSource):
    """Holds a clone open until released."""

    def __init__(self, files):
        super().__init__(files)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, target, destination):
        self.started.set()
        await self.release.wait()
        await super().fetch(target, destination)


class TestUploadAndDelete:

    @pytest.mark.asyncio
    async def test_upload_writes_file(self, engine, backup_dir):
        written = await engine.upload(AUTH_HEADER, "org/repo;main;assets/img.png", b"\x89PNG")
        expected = backup_dir / "org" / "repo" / "main" / "assets" / "img.png"
        assert expected.read_bytes() == b"\x89PNG"
        assert written == expected.resolve()

    @pytest.mark.asyncio
    async def test_upload_shorthand_uses_default_ref(self, engine, store, target):
        await engine.upload(AUTH_HEADER, "org/repo;notes.txt", b"n")
        assert store.list_files(target) == ["notes.txt"]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, engine, store, target):
        await engine.upload(AUTH_HEADER, "org/repo;main;a.txt", b"a")
        assert await engine.delete(AUTH_HEADER, "org/repo;main;a.txt") is True
        assert await engine.delete(AUTH_HEADER, "org/repo;main;a.txt") is False
        assert store.list_files(target) == []

    @pytest.mark.asyncio
    async def test_unauthorized_before_decoding(self, engine, backup_dir):
        with pytest.raises(AuthError) as exc_info:
            await engine.upload(None, "not a location", b"x")
        assert exc_info.value.stage == "authorizing"
        assert list(backup_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_wrong_token(self, engine):
        with pytest.raises(AuthError):
            await engine.delete("Bearer wrong-token", "org/repo;main;a.txt")

    @pytest.mark.asyncio
    async def test_bad_location_rejected_while_decoding(self, engine, backup_dir):
        with pytest.raises(ValidationError) as exc_info:
            await engine.upload(AUTH_HEADER, "org/repo;main;../escape.txt", b"x")
        assert exc_info.value.stage == "decoding"
        assert list(backup_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_upload_too_large(self, config):
        engine = BackupEngine(replace(config, max_payload_size=4))
        with pytest.raises(PayloadTooLargeError):
            await engine.upload(AUTH_HEADER, "org/repo;main;a.bin", b"12345")

    @pytest.mark.asyncio
    async def test_upload_over_directory_is_validation_error(self, engine):
        await engine.upload(AUTH_HEADER, "org/repo;main;dir/a.txt", b"a")
        with pytest.raises(ValidationError) as exc_info:
            await engine.upload(AUTH_HEADER, "org/repo;main;dir", b"b")
        assert exc_info.value.stage == "applying"

    @pytest.mark.asyncio
    async def test_disk_full_is_fatal(self, engine):
        def full_disk(self, target, path, content):
            raise OSError(errno.ENOSPC, "No space left on device")

        with patch.object(BackupStore, "write_file", full_disk):
            with pytest.raises(FatalIOError) as exc_info:
                await engine.upload(AUTH_HEADER, "org/repo;main;a.txt", b"a")
        assert exc_info.value.report is None
        assert "No space left on device" in exc_info.value.reason
        assert exc_info.value.stage == "applying"
        assert engine.gate.in_flight == 0


class TestBackup:

    @pytest.mark.asyncio
    async def test_applies_change_set(self, engine, store, target):
        await engine.upload(AUTH_HEADER, "org/repo;main;old.txt", b"old")
        report = await engine.backup(AUTH_HEADER, "org/repo;refs/heads/main", {
            "create": {"new.txt": "hello"},
            "remove": ["old.txt"],
            "download": ["logo.png"],
        })
        assert report.target == "org/repo;main"
        assert report.created == ["new.txt"]
        assert report.removed == ["old.txt"]
        assert report.pending_download == ["logo.png"]
        assert store.list_files(target) == ["new.txt"]

    @pytest.mark.asyncio
    async def test_remove_and_create_same_path(self, engine, store, target):
        await engine.upload(AUTH_HEADER, "org/repo;main;x.txt", b"old")
        await engine.backup(AUTH_HEADER, "org/repo;main", {"create": {"x.txt": "x"}, "remove": ["x.txt"]})
        assert store.read_bytes(target, "x.txt") == b"x"

    @pytest.mark.asyncio
    async def test_conflicts_rejected_when_configured(self, config, store, target):
        engine = BackupEngine(replace(config, reject_conflicts=True))
        with pytest.raises(ValidationError) as exc_info:
            await engine.backup(AUTH_HEADER, "org/repo;main", {"create": {"x.txt": "x"}, "remove": ["x.txt"]})
        assert "x.txt" in exc_info.value.reason
        assert not store.has_root(target)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        {"create": {"a.txt": 1}},
        {"unknown": []},
        {"create": {"../a.txt": "x"}},
    ])
    async def test_invalid_payload(self, engine, store, target, payload):
        with pytest.raises(ValidationError) as exc_info:
            await engine.backup(AUTH_HEADER, "org/repo;main", payload)
        assert exc_info.value.stage == "decoding"
        assert not store.has_root(target)

    @pytest.mark.asyncio
    async def test_target_with_path_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.backup(AUTH_HEADER, "org/repo;main;file.txt", {})

    @pytest.mark.asyncio
    async def test_created_content_counts_against_limit(self, config):
        engine = BackupEngine(replace(config, max_payload_size=10))
        with pytest.raises(PayloadTooLargeError):
            await engine.backup(AUTH_HEADER, "org/repo;main", {"create": {"a.txt": "x" * 11}})

    @pytest.mark.asyncio
    async def test_fatal_error_carries_partial_report(self, engine, store, target):
        real_write = BackupStore.write_file

        def failing_write(self, target, path, content):
            if path == "b.txt":
                raise OSError(errno.ENOSPC, "No space left on device")
            return real_write(self, target, path, content)

        with patch.object(BackupStore, "write_file", failing_write):
            with pytest.raises(FatalIOError) as exc_info:
                await engine.backup(AUTH_HEADER, "org/repo;main", {"create": {"a.txt": "a", "b.txt": "b"}})

        error = exc_info.value
        assert error.stage == "applying"
        assert error.report.created == ["a.txt"]
        assert "No space left on device" in error.report.fatal_error
        assert store.list_files(target) == ["a.txt"]

    @pytest.mark.asyncio
    async def test_auto_clone_when_root_missing(self, config, tree_source, store, target):
        engine = BackupEngine(replace(config, auto_clone=True), tree_source=tree_source)

        report = await engine.backup(AUTH_HEADER, "org/repo;main", {"create": {"ignored.txt": "x"}})
        assert report.cloned is True
        assert store.list_files(target) == ["README.md", "src/app.py"]

        report = await engine.backup(AUTH_HEADER, "org/repo;main", {"create": {"new.txt": "x"}})
        assert report.cloned is False
        assert report.created == ["new.txt"]
        assert len(tree_source.calls) == 1


class TestClone:

    @pytest.mark.asyncio
    async def test_clone_replaces_tree(self, engine, store, target, tree_source):
        await engine.upload(AUTH_HEADER, "org/repo;main;stale.txt", b"old")
        report = await engine.clone(AUTH_HEADER, "org/repo;main")
        assert report.files == 2
        assert report.replaced is True
        assert store.list_files(target) == ["README.md", "src/app.py"]
        assert tree_source.calls == [target]

    @pytest.mark.asyncio
    async def test_scratch_checkout_removed_off_the_event_loop(self, engine, store, target):
        loop_thread = threading.current_thread()
        cleanup_threads = []
        real_rmtree = shutil.rmtree

        def rmtree(path, *args, **kwargs):
            cleanup_threads.append(threading.current_thread())
            return real_rmtree(path, *args, **kwargs)

        with patch("repo_backup.engine.shutil.rmtree", rmtree):
            await engine.clone(AUTH_HEADER, "org/repo;main")

        assert cleanup_threads
        assert loop_thread not in cleanup_threads
        assert store.list_files(target) == ["README.md", "src/app.py"]

    @pytest.mark.asyncio
    async def test_clone_requires_auth(self, engine, tree_source):
        with pytest.raises(AuthError):
            await engine.clone("Bearer nope", "org/repo;main")
        assert tree_source.calls == []


class TestAdmission:

    @pytest.mark.asyncio
    async def test_busy_while_at_capacity(self, config, store, target):
        source = BlockingTreeSource({"a.txt": b"a"})
        engine = BackupEngine(replace(config, max_connections=1), tree_source=source)

        clone = asyncio.create_task(engine.clone(AUTH_HEADER, "org/repo;main"))
        await source.started.wait()

        with pytest.raises(BusyError) as exc_info:
            await engine.upload(AUTH_HEADER, "org/repo;main;b.txt", b"b")
        assert exc_info.value.stage == "admitted"

        source.release.set()
        await clone
        assert engine.gate.in_flight == 0
        await engine.upload(AUTH_HEADER, "org/repo;main;b.txt", b"b")
        assert store.list_files(target) == ["a.txt", "b.txt"]

    @pytest.mark.asyncio
    async def test_permit_returned_after_rejection(self, engine):
        for _ in range(engine.config.max_connections + 2):
            with pytest.raises(ValidationError):
                await engine.upload(AUTH_HEADER, "org/repo;main;", b"x")
        assert engine.gate.in_flight == 0


def _stalled_write(started: threading.Event, release: threading.Event, stall_path: str = None):
    """A ``BackupStore.write_file`` that blocks its worker thread until released."""
    real_write = BackupStore.write_file

    def write_file(self, target, path, content):
        if stall_path is None or path == stall_path:
            started.set()
            release.wait(5)
        return real_write(self, target, path, content)
    return write_file


async def _let_cancellation_land():
    for _ in range(5):
        await asyncio.sleep(0)


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancelled_upload_holds_permit_until_write_ends(self, config, store, target):
        engine = BackupEngine(replace(config, max_connections=1))
        started, release = threading.Event(), threading.Event()

        with patch.object(BackupStore, "write_file", _stalled_write(started, release)):
            upload = asyncio.create_task(engine.upload(AUTH_HEADER, "org/repo;main;a.txt", b"a"))
            assert await asyncio.to_thread(started.wait, 5)
            upload.cancel()
            await _let_cancellation_land()

            # The worker thread is still writing, so the slot stays taken
            assert engine.gate.in_flight == 1
            with pytest.raises(BusyError):
                await engine.delete(AUTH_HEADER, "org/repo;main;b.txt")

            release.set()
            with pytest.raises(asyncio.CancelledError):
                await upload

        assert engine.gate.in_flight == 0
        assert store.list_files(target) == ["a.txt"]
        assert await engine.delete(AUTH_HEADER, "org/repo;main;a.txt") is True

    @pytest.mark.asyncio
    async def test_cancelled_backup_skips_unstarted_items(self, engine, store, target):
        started, release = threading.Event(), threading.Event()

        with patch.object(BackupStore, "write_file", _stalled_write(started, release, "a.txt")):
            backup = asyncio.create_task(engine.backup(AUTH_HEADER, "org/repo;main", {
                "create": {"a.txt": "a", "b.txt": "b", "c.txt": "c"},
            }))
            assert await asyncio.to_thread(started.wait, 5)
            backup.cancel()
            await _let_cancellation_land()
            release.set()
            with pytest.raises(asyncio.CancelledError):
                await backup

        assert engine.gate.in_flight == 0
        assert store.list_files(target) == ["a.txt"]
