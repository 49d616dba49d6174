"""Tests for the update lock."""

from pathlib import Path

import pytest

from xray_updater.errors import LockFileRejectedError, UpdateAlreadyInProgressError
from xray_updater.lock import UpdateLock


class TestUpdateLock:
    """Tests for UpdateLock."""

    def test_acquire_and_release(self, tmp_path: Path):
        lock = UpdateLock(tmp_path / "xray-update.lock")
        lock.acquire()
        assert lock.locked
        assert lock.path.read_text().strip().isdigit()
        lock.release()
        assert not lock.locked

    def test_second_holder_fails_fast(self, tmp_path: Path):
        path = tmp_path / "xray-update.lock"
        with UpdateLock(path):
            with pytest.raises(UpdateAlreadyInProgressError) as exc_info:
                UpdateLock(path).acquire()
        assert exc_info.value.lock_path == str(path)
        assert exc_info.value.exit_code == 50

    def test_reacquire_after_release(self, tmp_path: Path):
        path = tmp_path / "xray-update.lock"
        with UpdateLock(path):
            pass
        with UpdateLock(path) as lock:
            assert lock.locked

    def test_released_on_error(self, tmp_path: Path):
        path = tmp_path / "xray-update.lock"
        with pytest.raises(RuntimeError), UpdateLock(path):
            raise RuntimeError("boom")
        with UpdateLock(path) as lock:
            assert lock.locked

    def test_release_is_idempotent(self, tmp_path: Path):
        lock = UpdateLock(tmp_path / "l")
        lock.release()
        lock.acquire()
        lock.release()
        lock.release()
        assert not lock.locked

    def test_creates_parent_directory(self, tmp_path: Path):
        path = tmp_path / "run" / "xray" / "update.lock"
        with UpdateLock(path):
            assert path.exists()

    def test_symlinked_lock_path_is_refused(self, tmp_path: Path):
        target = tmp_path / "important.conf"
        target.write_text("keep me")
        path = tmp_path / "xray-update.lock"
        path.symlink_to(target)

        with pytest.raises(LockFileRejectedError) as exc_info:
            UpdateLock(path).acquire()

        assert "symbolic link" in str(exc_info.value)
        assert exc_info.value.exit_code == 51
        assert target.read_text() == "keep me"

    def test_directory_at_lock_path_is_refused(self, tmp_path: Path):
        path = tmp_path / "xray-update.lock"
        path.mkdir()
        with pytest.raises(LockFileRejectedError, match="is a directory"):
            UpdateLock(path).acquire()

    def test_lock_file_is_private(self, tmp_path: Path):
        path = tmp_path / "xray-update.lock"
        with UpdateLock(path):
            assert path.stat().st_mode & 0o077 == 0
