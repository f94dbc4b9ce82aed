# tests/test_extractor.py
import asyncio
import base64
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from yt_analysis.errors import DependencyError, ScreenshotExtractionError, ValidationError
from yt_analysis.extractor import (
    DependencyHandles,
    ScreenshotExtractor,
    ffmpeg_quality,
    screenshot_filename,
    stream_format,
)
from yt_analysis.models import TimestampCandidate

VIDEO_URL = "https://www.youtube.com/watch?v=jNQXAC9IVRw"
YTDLP = "/usr/bin/yt-dlp"
FFMPEG = "/usr/bin/ffmpeg"


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, returncode=0, stdout=b"", stderr=b"", on_run=None, hang=False):
        self._exit_code = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.on_run = on_run
        self.hang = hang
        self.returncode = None
        self.killed = False

    async def communicate(self):
        if self.hang:
            await asyncio.sleep(3600)
        if self.on_run:
            self.on_run()
        self.returncode = self._exit_code
        return self.stdout, self.stderr

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        return self.returncode


class FakeExec:
    """Fake create_subprocess_exec: yt-dlp prints a URL, ffmpeg writes a JPEG."""

    def __init__(self, fail_at=(), stream_output=b"https://stream.example/v\nhttps://stream.example/a\n"):
        self.fail_at = set(fail_at)
        self.stream_output = stream_output
        self.calls = []
        self.processes = []

    async def __call__(self, *cmd, **kwargs):
        self.calls.append(list(cmd))
        if cmd[0] == YTDLP:
            proc = FakeProcess(stdout=self.stream_output)
        else:
            seek = float(cmd[cmd.index("-ss") + 1])
            output = Path(cmd[-1])
            if seek in self.fail_at:
                proc = FakeProcess(returncode=1, stderr=b"x" * 600 + b"Server returned 403 Forbidden")
            else:
                proc = FakeProcess(on_run=lambda: output.write_bytes(b"\xff\xd8jpeg-" + cmd[2].encode()))
        self.processes.append(proc)
        return proc

    def ffmpeg_calls(self):
        return [c for c in self.calls if c[0] == FFMPEG]


def fake_which(name):
    return f"/usr/bin/{name}"


@pytest.fixture
def fake_tools(monkeypatch):
    monkeypatch.delenv("SCREENSHOT_OUTPUT_DIR", raising=False)
    with patch("yt_analysis.extractor.shutil.which", side_effect=fake_which) as which:
        yield which


def candidates(*seconds):
    return [
        TimestampCandidate(time_seconds=s, time_formatted=f"0:{int(s):02d}", description=f"moment {s}")
        for s in seconds
    ]


def test_ffmpeg_quality_bounds():
    assert ffmpeg_quality(100) == 2
    assert ffmpeg_quality(1) == 30
    assert ffmpeg_quality(85) == 5
    values = [ffmpeg_quality(q) for q in range(1, 101)]
    assert all(2 <= v <= 31 for v in values)
    # Higher quality never maps to a worse ffmpeg scale
    assert values == sorted(values, reverse=True)


def test_stream_format():
    assert stream_format("thumbnail") == "bestvideo[height<=160]/best[height<=160]"
    assert stream_format("large") == "bestvideo[height<=1080]/best[height<=1080]"
    assert stream_format("full") == "bestvideo/best"


def test_screenshot_filename():
    assert screenshot_filename("abc123", 42) == "abc123_42s.jpg"
    assert screenshot_filename("abc123", 42.0) == "abc123_42s.jpg"
    assert screenshot_filename("abc123", 2.5) == "abc123_2.5s.jpg"


def test_check_dependencies_caches_result(fake_tools):
    extractor = ScreenshotExtractor()
    deps = extractor.check_dependencies()
    assert deps == DependencyHandles(ytdlp_path=YTDLP, ffmpeg_path=FFMPEG)

    extractor.check_dependencies()
    assert fake_tools.call_count == 2

    # A new instance looks the tools up again
    ScreenshotExtractor().check_dependencies()
    assert fake_tools.call_count == 4


def test_missing_ytdlp():
    with patch("yt_analysis.extractor.shutil.which", return_value=None):
        with pytest.raises(DependencyError) as exc_info:
            ScreenshotExtractor().check_dependencies()
    assert exc_info.value.tool == "yt-dlp"
    assert "pip install yt-dlp" in str(exc_info.value)


def test_missing_ffmpeg():
    def which(name):
        return YTDLP if name == "yt-dlp" else None

    with patch("yt_analysis.extractor.shutil.which", side_effect=which):
        with pytest.raises(DependencyError) as exc_info:
            ScreenshotExtractor().check_dependencies()
    assert exc_info.value.tool == "ffmpeg"
    assert "apt install ffmpeg" in str(exc_info.value)


@pytest.mark.asyncio
async def test_extract_screenshots_missing_tools_runs_nothing(tmp_path, monkeypatch):
    monkeypatch.delenv("SCREENSHOT_OUTPUT_DIR", raising=False)
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.shutil.which", return_value=None), \
            patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        with pytest.raises(DependencyError):
            await ScreenshotExtractor().extract_screenshots(VIDEO_URL, candidates(1, 2))

    assert fake_exec.calls == []
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_extract_screenshots_rejects_control_characters_in_url(fake_tools, tmp_path):
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        with pytest.raises(ValidationError):
            await ScreenshotExtractor().extract_screenshots(
                "https://youtu.be/abc\x00junk", candidates(1), output_dir=str(tmp_path)
            )

    assert fake_exec.calls == []
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_extract_frame_command_line(fake_tools, tmp_path):
    fake_exec = FakeExec()
    output = tmp_path / "frame.jpg"

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        await ScreenshotExtractor().extract_frame(VIDEO_URL, 12.5, output, quality=85, resolution="thumbnail")

    assert fake_exec.calls[0] == [
        YTDLP, "-f", "bestvideo[height<=160]/best[height<=160]", "-g", VIDEO_URL
    ]
    assert fake_exec.calls[1] == [
        FFMPEG,
        "-ss", "12.5",
        "-i", "https://stream.example/v",
        "-vframes", "1",
        "-q:v", "5",
        "-vf", "scale=-1:160",
        "-y", str(output),
    ]
    assert output.exists()


@pytest.mark.asyncio
async def test_extract_frame_full_resolution_has_no_scale(fake_tools, tmp_path):
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        await ScreenshotExtractor().extract_frame(VIDEO_URL, 3, tmp_path / "f.jpg", resolution="full")

    ffmpeg_cmd = fake_exec.ffmpeg_calls()[0]
    assert "-vf" not in ffmpeg_cmd
    assert fake_exec.calls[0][2] == "bestvideo/best"


@pytest.mark.asyncio
async def test_extract_frame_no_stream_url(fake_tools, tmp_path):
    fake_exec = FakeExec(stream_output=b"")

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        with pytest.raises(ScreenshotExtractionError) as exc_info:
            await ScreenshotExtractor().extract_frame(VIDEO_URL, 7, tmp_path / "f.jpg")

    assert exc_info.value.message == "Failed to get video stream URL"
    assert exc_info.value.timestamp == 7
    assert fake_exec.ffmpeg_calls() == []


@pytest.mark.asyncio
async def test_extract_frame_ffmpeg_failure_keeps_stderr_tail(fake_tools, tmp_path):
    fake_exec = FakeExec(fail_at={9})

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        with pytest.raises(ScreenshotExtractionError) as exc_info:
            await ScreenshotExtractor().extract_frame(VIDEO_URL, 9, tmp_path / "f.jpg")

    message = exc_info.value.message
    assert message.startswith("ffmpeg failed (code 1): ")
    assert message.endswith("Server returned 403 Forbidden")
    assert len(message) == len("ffmpeg failed (code 1): ") + 500
    assert exc_info.value.timestamp == 9


@pytest.mark.asyncio
async def test_extract_frame_without_output_file(fake_tools, tmp_path):
    async def exec_no_output(*cmd, **kwargs):
        if cmd[0] == YTDLP:
            return FakeProcess(stdout=b"https://stream.example/v\n")
        return FakeProcess()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", exec_no_output):
        with pytest.raises(ScreenshotExtractionError, match="produced no frame"):
            await ScreenshotExtractor().extract_frame(VIDEO_URL, 500, tmp_path / "f.jpg")


@pytest.mark.asyncio
async def test_extract_frame_spawn_error(fake_tools, tmp_path):
    fake_exec = FakeExec()

    async def exec_or_fail(*cmd, **kwargs):
        if cmd[0] == FFMPEG:
            raise PermissionError("Permission denied")
        return await fake_exec(*cmd, **kwargs)

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", exec_or_fail):
        with pytest.raises(ScreenshotExtractionError, match="ffmpeg spawn error"):
            await ScreenshotExtractor().extract_frame(VIDEO_URL, 1, tmp_path / "f.jpg")


@pytest.mark.asyncio
async def test_extract_frame_timeout_kills_process(fake_tools, tmp_path):
    hanging = FakeProcess(hang=True)

    async def exec_hanging(*cmd, **kwargs):
        if cmd[0] == YTDLP:
            return FakeProcess(stdout=b"https://stream.example/v\n")
        return hanging

    extractor = ScreenshotExtractor(frame_timeout=0.05)
    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", exec_hanging):
        with pytest.raises(ScreenshotExtractionError, match="timed out"):
            await extractor.extract_frame(VIDEO_URL, 1, tmp_path / "f.jpg")

    assert hanging.killed


@pytest.mark.asyncio
async def test_cancelled_extraction_kills_process(fake_tools, tmp_path):
    hanging = FakeProcess(hang=True)
    started = asyncio.Event()

    async def exec_hanging(*cmd, **kwargs):
        if cmd[0] == YTDLP:
            return FakeProcess(stdout=b"https://stream.example/v\n")
        started.set()
        return hanging

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", exec_hanging):
        task = asyncio.create_task(
            ScreenshotExtractor().extract_frame(VIDEO_URL, 1, tmp_path / "f.jpg")
        )
        await started.wait()
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert hanging.killed


@pytest.mark.asyncio
async def test_extract_screenshots_partial_failure(fake_tools, tmp_path):
    fake_exec = FakeExec(fail_at={8})

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        screenshots = await ScreenshotExtractor().extract_screenshots(
            VIDEO_URL, candidates(3, 8, 15, 20), output_dir=str(tmp_path)
        )

    assert [s.timestamp_seconds for s in screenshots] == [3, 15, 20]
    assert [s.description for s in screenshots] == ["moment 3", "moment 15", "moment 20"]


@pytest.mark.asyncio
async def test_extract_screenshots_all_fail(fake_tools, tmp_path):
    fake_exec = FakeExec(fail_at={3, 8, 15})

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        with pytest.raises(ScreenshotExtractionError) as exc_info:
            await ScreenshotExtractor().extract_screenshots(
                VIDEO_URL, candidates(3, 8, 15), output_dir=str(tmp_path)
            )

    message = exc_info.value.message
    assert message.startswith("All extractions failed:\n")
    assert "Timestamp 0:03:" in message
    assert "Timestamp 0:08:" in message
    assert "Timestamp 0:15:" in message


@pytest.mark.asyncio
async def test_extract_screenshots_output_dir_keeps_files(fake_tools, tmp_path):
    output_dir = tmp_path / "shots" / "nested"
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        screenshots = await ScreenshotExtractor().extract_screenshots(
            VIDEO_URL, candidates(2, 10), output_dir=str(output_dir)
        )

    assert len(screenshots) == 2
    for screenshot in screenshots:
        path = Path(screenshot.file_path)
        assert path.parent == output_dir
        assert path.read_bytes() == base64.b64decode(screenshot.base64)
        assert screenshot.mime_type == "image/jpeg"
    assert Path(screenshots[0].file_path).name == "jNQXAC9IVRw_2s.jpg"


@pytest.mark.asyncio
async def test_extract_screenshots_env_output_dir(fake_tools, tmp_path, monkeypatch):
    monkeypatch.setenv("SCREENSHOT_OUTPUT_DIR", str(tmp_path))
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        screenshots = await ScreenshotExtractor().extract_screenshots(VIDEO_URL, candidates(4))

    assert screenshots[0].file_path == str(tmp_path / "jNQXAC9IVRw_4s.jpg")


@pytest.mark.asyncio
async def test_extract_screenshots_without_output_dir_cleans_up(fake_tools, tmp_path, monkeypatch):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        screenshots = await ScreenshotExtractor().extract_screenshots(VIDEO_URL, candidates(1, 2))

    assert len(screenshots) == 2
    assert all(s.file_path is None for s in screenshots)
    assert all(base64.b64decode(s.base64).startswith(b"\xff\xd8") for s in screenshots)
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_extract_frames_at_timestamps_keeps_order(fake_tools, tmp_path):
    fake_exec = FakeExec()

    with patch("yt_analysis.extractor.asyncio.create_subprocess_exec", fake_exec):
        screenshots = await ScreenshotExtractor().extract_frames_at_timestamps(
            VIDEO_URL, [3, 8, 75], output_dir=str(tmp_path)
        )

    assert [s.timestamp_seconds for s in screenshots] == [3, 8, 75]
    assert [s.timestamp_formatted for s in screenshots] == ["0:03", "0:08", "1:15"]
    assert screenshots[2].description == "Frame at 1:15"


@pytest.mark.asyncio
async def test_extract_screenshots_rejects_bad_url(fake_tools):
    from yt_analysis.errors import ValidationError

    with pytest.raises(ValidationError):
        await ScreenshotExtractor().extract_screenshots("https://vimeo.com/123", candidates(1))
