"""
Pytest configuration and fixtures.

Ensures src/ is importable without installing the package and provides
settings isolated to a temporary workdir plus a controllable fake engine.
"""
from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from clop.config.settings import Settings, reset_settings  # noqa: E402
from clop.jobs.errors import CancelledError  # noqa: E402
from clop.jobs.models import EngineOutput  # noqa: E402


class FakeEngine:
    """Engine whose jobs block until released, for deterministic scheduling tests.

    Each job writes the first half of its source to a scratch file, so a
    succeeded job always shrinks the source.
    """

    def __init__(self, workdir: Path):
        self.workdir = workdir
        self.workdir.mkdir(parents=True, exist_ok=True)
        self.started: List[str] = []
        self.errors: Dict[str, BaseException] = {}
        self.auto_release = False
        self.ignore_cancel = False
        self.same_size = False
        self._gates: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def _gate(self, job_id: str) -> threading.Event:
        with self._lock:
            return self._gates.setdefault(job_id, threading.Event())

    def release(self, job_id: str) -> None:
        self._gate(job_id).set()

    def release_all(self) -> None:
        with self._lock:
            self.auto_release = True
            gates = list(self._gates.values())
        for gate in gates:
            gate.set()

    def optimise(self, job_id, source, options, cancel_event):
        with self._lock:
            self.started.append(job_id)
        gate = self._gate(job_id)

        while not (self.auto_release or gate.wait(0.005)):
            if cancel_event.is_set() and not self.ignore_cancel:
                raise CancelledError("cancelled")

        error = self.errors.get(source.path.name)
        if error is not None:
            raise error

        data = source.path.read_bytes()
        optimised = data if self.same_size else data[: max(1, len(data) // 2)]
        out = self.workdir / f"{job_id}{source.path.suffix}"
        out.write_bytes(optimised)
        return EngineOutput(path=out, original_size=len(data), optimised_size=len(optimised))


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Keep the developer's environment out of Settings defaults."""
    for key in ("CLOP_IMAGE_DIRS", "CLOP_VIDEO_DIRS", "CLOP_BIN_DIR", "CLOP_LOG_FILE"):
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary workdir with fast polling."""
    return Settings(
        workdir=tmp_path / "workdir",
        bin_dir=None,
        max_concurrent_jobs=2,
        undo_stack_size=3,
        cancel_poll_interval=0.01,
        auto_remove_seconds=0.0,
        tool_timeout=30.0,
        image_dirs=[],
        video_dirs=[],
        watch_interval=0.05,
    )


@pytest.fixture
def fake_engine(tmp_path: Path) -> FakeEngine:
    return FakeEngine(tmp_path / "scratch")


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a source file with the given name and content."""
    source_dir = tmp_path / "sources"
    source_dir.mkdir(exist_ok=True)

    def _make(name: str = "photo.png", content: Optional[bytes] = None) -> Path:
        path = source_dir / name
        path.write_bytes(content if content is not None else name.encode() * 64)
        return path

    return _make


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout expires."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()

    return _wait
