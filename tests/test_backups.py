"""Tests for applying outputs with backups, and restoring originals."""

import errno
import os

import pytest

from clop.jobs import backups
from clop.jobs.backups import commit_output, restore_backup
from clop.jobs.models import EngineOutput
from clop.jobs.sources import source_from_path


@pytest.fixture
def source(make_file):
    return source_from_path(make_file("photo.png", b"o" * 100))


def _output(tmp_path, content):
    path = tmp_path / "scratch.png"
    path.write_bytes(content)
    return EngineOutput(path=path, original_size=100, optimised_size=len(content))


class TestCommitOutput:

    def test_replaces_source_and_keeps_backup(self, source, tmp_path):
        output = _output(tmp_path, b"s" * 40)

        result = commit_output("job1", source, output, tmp_path / "backups")

        assert source.path.read_bytes() == b"s" * 40
        assert result.backup_path == tmp_path / "backups" / "job1.png"
        assert result.backup_path.read_bytes() == b"o" * 100
        assert result.saved_bytes == 60
        assert not output.path.exists()

    def test_larger_output_is_discarded(self, source, tmp_path):
        output = _output(tmp_path, b"s" * 150)

        result = commit_output("job1", source, output, tmp_path / "backups")

        assert result.improved is False
        assert result.backup_path is None
        assert source.path.read_bytes() == b"o" * 100
        assert not output.path.exists()

    def test_cross_device_replace_falls_back_to_copy(self, source, tmp_path, monkeypatch):
        def exdev(src, dst):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr(backups.os, "replace", exdev)
        output = _output(tmp_path, b"s" * 40)

        commit_output("job1", source, output, tmp_path / "backups")

        assert source.path.read_bytes() == b"s" * 40
        assert not output.path.exists()

    def test_failed_replace_leaves_source_and_cleans_up(self, source, tmp_path, monkeypatch):
        def full(src, dst):
            raise OSError(errno.ENOSPC, os.strerror(errno.ENOSPC))

        monkeypatch.setattr(backups.os, "replace", full)
        output = _output(tmp_path, b"s" * 40)

        with pytest.raises(OSError):
            commit_output("job1", source, output, tmp_path / "backups")

        assert source.path.read_bytes() == b"o" * 100
        assert not (tmp_path / "backups" / "job1.png").exists()
        assert not output.path.exists()


class TestRestoreBackup:

    def test_restores_original_bytes(self, source, tmp_path):
        result = commit_output("job1", source, _output(tmp_path, b"s" * 40), tmp_path / "backups")

        restore_backup(result)

        assert source.path.read_bytes() == b"o" * 100

    def test_missing_backup(self, source, tmp_path):
        result = commit_output("job1", source, _output(tmp_path, b"s" * 40), tmp_path / "backups")
        result.backup_path.unlink()

        with pytest.raises(FileNotFoundError):
            restore_backup(result)
