"""Tests for the optimisation engine, image optimisers and codec command lines."""

import sys
import threading
from pathlib import Path

import pytest
from PIL import Image

from clop.jobs import (
    CancelledError,
    OptimisationOptions,
    ToolInvocationError,
    UnsupportedFormatError,
)
from clop.jobs.sources import source_from_path
from clop.optimisation import (
    BinaryManager,
    OptimisationEngine,
    build_ffmpeg_command,
    build_gifsicle_command,
)
from clop.utils.paths import IMAGES, PROCESS_LOGS, VIDEOS

FAKE_FFMPEG = """#!{python}
import sys
import time

args = sys.argv[1:]
src = args[args.index("-i") + 1]
with open(src, "rb") as f:
    data = f.read()
if data.startswith(b"SLOW"):
    time.sleep(30)
if data.startswith(b"FAIL"):
    print("Invalid data found when processing input")
    sys.exit(1)
with open(args[-1], "wb") as f:
    f.write(data[: len(data) // 2])
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake codec is a shebang script")


@pytest.fixture
def no_path_tools(monkeypatch):
    """Hide codec binaries installed on the machine running the tests."""
    monkeypatch.setattr("clop.optimisation.binaries.shutil.which", lambda name: None)


@pytest.fixture
def fake_bin_dir(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    ffmpeg = bin_dir / "ffmpeg"
    ffmpeg.write_text(FAKE_FFMPEG.format(python=sys.executable))
    ffmpeg.chmod(0o755)
    return bin_dir


@pytest.fixture
def engine(settings, no_path_tools):
    return OptimisationEngine(settings, binaries=BinaryManager(None))


def _gradient(size=(256, 256)):
    return Image.linear_gradient("L").resize(size).convert("RGB")


def _optimise(engine, path, options=None, cancel_event=None):
    return engine.optimise(
        "20250101_120000_abcd",
        source_from_path(path),
        options or OptimisationOptions(),
        cancel_event or threading.Event(),
    )


class TestImages:
    """Pillow-backed image optimisation."""

    def test_jpeg_output_is_smaller_and_source_untouched(self, engine, tmp_path):
        path = tmp_path / "photo.jpg"
        _gradient((400, 300)).save(path, quality=100)
        original = path.read_bytes()

        output = _optimise(engine, path)

        assert output.path.parent == engine.paths[IMAGES]
        assert output.path.suffix == ".jpg"
        assert output.optimised_size < output.original_size == len(original)
        assert path.read_bytes() == original
        with Image.open(output.path) as image:
            assert image.format == "JPEG"
            assert image.size == (400, 300)

    def test_multi_picture_jpeg_keeps_primary_frame(self, engine, tmp_path):
        path = tmp_path / "camera.jpg"
        primary = _gradient((400, 300))
        secondary = Image.new("RGB", (400, 300), "white")
        primary.save(path, format="MPO", save_all=True, append_images=[secondary], quality=100)
        with Image.open(path) as image:
            assert image.format == "MPO"

        output = _optimise(engine, path)

        assert output.optimised_size < output.original_size
        with Image.open(output.path) as image:
            assert image.format == "JPEG"
            assert image.size == (400, 300)
            assert image.getpixel((399, 150)) != (255, 255, 255)

    def test_png_lossless_by_default(self, engine, tmp_path):
        path = tmp_path / "shot.png"
        _gradient().save(path, compress_level=0)

        output = _optimise(engine, path)

        assert output.optimised_size < output.original_size
        with Image.open(output.path) as image:
            assert image.mode == "RGB"

    def test_aggressive_png_is_quantized(self, engine, tmp_path):
        path = tmp_path / "shot.png"
        _gradient().save(path, compress_level=0)

        output = _optimise(engine, path, OptimisationOptions(aggressive=True))

        with Image.open(output.path) as image:
            assert image.mode == "P"

    def test_aggressive_default_from_settings(self, engine, settings, tmp_path):
        settings.aggressive_png = True
        path = tmp_path / "shot.png"
        _gradient().save(path, compress_level=0)

        output = _optimise(engine, path)

        with Image.open(output.path) as image:
            assert image.mode == "P"

    def test_downscale(self, engine, tmp_path):
        path = tmp_path / "shot.png"
        _gradient((200, 100)).save(path)

        output = _optimise(engine, path, OptimisationOptions(downscale_factor=0.5))

        with Image.open(output.path) as image:
            assert image.size == (100, 50)

    def test_animated_gif_without_gifsicle(self, engine, tmp_path):
        path = tmp_path / "anim.gif"
        frames = [Image.new("RGB", (64, 64), color) for color in ("red", "green", "blue")]
        frames[0].save(path, save_all=True, append_images=frames[1:], duration=120, loop=0)

        output = _optimise(engine, path, OptimisationOptions(downscale_factor=0.5))

        with Image.open(output.path) as image:
            assert image.n_frames == 3
            assert image.size == (32, 32)

    def test_unsupported_suffix(self, engine, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")

        with pytest.raises(UnsupportedFormatError):
            _optimise(engine, path)

    def test_corrupt_image_leaves_no_scratch(self, engine, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"definitely not a png")

        with pytest.raises(UnsupportedFormatError):
            _optimise(engine, path)
        assert list(engine.paths[IMAGES].iterdir()) == []

    def test_cancelled_before_start(self, engine, tmp_path):
        path = tmp_path / "shot.png"
        _gradient().save(path)
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(CancelledError):
            _optimise(engine, path, cancel_event=cancel_event)
        assert list(engine.paths[IMAGES].iterdir()) == []


class TestVideo:
    """ffmpeg-backed video optimisation."""

    def test_missing_ffmpeg(self, engine, tmp_path):
        path = tmp_path / "clip.mp4"
        path.write_bytes(b"\x00" * 1000)

        with pytest.raises(ToolInvocationError, match="ffmpeg not found"):
            _optimise(engine, path)

    @posix_only
    def test_ffmpeg_success(self, settings, fake_bin_dir, no_path_tools, tmp_path):
        engine = OptimisationEngine(settings, binaries=BinaryManager(fake_bin_dir))
        path = tmp_path / "clip.mov"
        path.write_bytes(b"\x00" * 1000)

        output = _optimise(engine, path)

        assert output.path.parent == engine.paths[VIDEOS]
        assert output.optimised_size == 500
        assert (engine.paths[PROCESS_LOGS] / "20250101_120000_abcd.log").exists()

    @posix_only
    def test_ffmpeg_failure_carries_log_tail(self, settings, fake_bin_dir, no_path_tools, tmp_path):
        engine = OptimisationEngine(settings, binaries=BinaryManager(fake_bin_dir))
        path = tmp_path / "clip.mp4"
        path.write_bytes(b"FAIL" * 100)

        with pytest.raises(ToolInvocationError) as exc_info:
            _optimise(engine, path)

        assert "ffmpeg exited with code 1" in str(exc_info.value)
        assert "Invalid data found" in str(exc_info.value)
        assert list(engine.paths[VIDEOS].iterdir()) == []

    @posix_only
    def test_cancel_kills_ffmpeg(self, settings, fake_bin_dir, no_path_tools, tmp_path):
        engine = OptimisationEngine(settings, binaries=BinaryManager(fake_bin_dir))
        path = tmp_path / "clip.mp4"
        path.write_bytes(b"SLOW" * 100)
        cancel_event = threading.Event()
        threading.Timer(0.3, cancel_event.set).start()

        with pytest.raises(CancelledError):
            _optimise(engine, path, cancel_event=cancel_event)
        assert list(engine.paths[VIDEOS].iterdir()) == []


class TestCommandLines:

    def test_ffmpeg_command(self):
        cmd = build_ffmpeg_command(Path("/bin/ffmpeg"), Path("in.mov"), Path("out.mov"), crf=26)

        assert cmd[0] == "/bin/ffmpeg"
        assert cmd[cmd.index("-crf") + 1] == "26"
        assert cmd[cmd.index("-i") + 1] == "in.mov"
        assert cmd[-1] == "out.mov"
        assert "-vf" not in cmd

    def test_ffmpeg_downscale_keeps_even_dimensions(self):
        cmd = build_ffmpeg_command(
            Path("ffmpeg"), Path("in.mp4"), Path("out.mp4"), crf=32, downscale_factor=0.5
        )

        assert cmd[cmd.index("-vf") + 1] == "scale=trunc(iw*0.5/2)*2:trunc(ih*0.5/2)*2"

    def test_gifsicle_command(self):
        normal = build_gifsicle_command(Path("gifsicle"), Path("a.gif"), Path("b.gif"), aggressive=False)
        lossy = build_gifsicle_command(
            Path("gifsicle"), Path("a.gif"), Path("b.gif"), aggressive=True, downscale_factor=0.75
        )

        assert "--lossy=80" not in normal
        assert "--lossy=80" in lossy
        assert lossy[lossy.index("--scale") + 1] == "0.75"
        assert lossy[-3:] == ["-o", "b.gif", "a.gif"]
