# src/yt_analysis/extractor.py
"""Screenshot extraction from YouTube videos using yt-dlp and ffmpeg."""

import asyncio
import base64
import logging
import os
import shutil
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from yt_analysis.errors import DependencyError, ScreenshotExtractionError
from yt_analysis.models import (
    RESOLUTION_HEIGHTS,
    Resolution,
    Screenshot,
    TimestampCandidate,
    format_seconds,
    format_timestamp,
)
from yt_analysis.validators import resolve_video_id

logger = logging.getLogger(__name__)

YTDLP_INSTALL_HINT = "Install via: brew install yt-dlp (macOS) or pip install yt-dlp"
FFMPEG_INSTALL_HINT = "Install via: brew install ffmpeg (macOS) or apt install ffmpeg (Linux)"

# Keep only the tail of ffmpeg's stderr in error messages
STDERR_TAIL_CHARS = 500


@dataclass(frozen=True)
class DependencyHandles:
    """Resolved paths of the external executables."""
    ytdlp_path: str
    ffmpeg_path: str


def ffmpeg_quality(quality: int) -> int:
    """Map quality 1-100 (higher is better) onto ffmpeg's -q:v 2-31 (lower is better)."""
    return max(2, min(31, round((100 - quality) / 3.33)))


def stream_format(resolution: Resolution) -> str:
    """yt-dlp format selector for the best stream at or below the target height."""
    height = RESOLUTION_HEIGHTS[resolution]
    if height is None:
        return "bestvideo/best"
    return f"bestvideo[height<={height}]/best[height<={height}]"


def screenshot_filename(video_id: str, seconds: float) -> str:
    """Output file name, e.g. abc123_42s.jpg or abc123_2.5s.jpg."""
    return f"{video_id}_{format_seconds(seconds)}s.jpg"


class ScreenshotExtractor:
    """Extract JPEG frames from YouTube videos at given timestamps."""

    def __init__(self, stream_timeout: float = 60, frame_timeout: float = 120):
        self.stream_timeout = stream_timeout
        self.frame_timeout = frame_timeout
        self._dependencies: DependencyHandles | None = None

    def check_dependencies(self) -> DependencyHandles:
        """
        Locate yt-dlp and ffmpeg. The result is cached on this instance.

        Raises:
            DependencyError: If either executable is not on PATH
        """
        if self._dependencies is not None:
            return self._dependencies

        ytdlp_path = shutil.which("yt-dlp")
        if not ytdlp_path:
            raise DependencyError("yt-dlp", YTDLP_INSTALL_HINT)

        ffmpeg_path = shutil.which("ffmpeg")
        if not ffmpeg_path:
            raise DependencyError("ffmpeg", FFMPEG_INSTALL_HINT)

        self._dependencies = DependencyHandles(ytdlp_path=ytdlp_path, ffmpeg_path=ffmpeg_path)
        logger.info(f"Using yt-dlp at {ytdlp_path}, ffmpeg at {ffmpeg_path}")
        return self._dependencies

    async def _run(
        self,
        cmd: list[str],
        timeout: float,
        timestamp: float
    ) -> tuple[int, bytes, bytes]:
        """Run a command with stdin closed; the process is killed on timeout or cancellation."""
        tool = Path(cmd[0]).name
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ScreenshotExtractionError(f"{tool} spawn error: {e}", timestamp)

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise ScreenshotExtractionError(
                f"{tool} timed out after {timeout} seconds", timestamp
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        return proc.returncode, stdout, stderr

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()

    async def get_stream_url(self, url: str, timestamp_seconds: float, resolution: Resolution) -> str:
        """Ask yt-dlp for a direct, time-limited media URL."""
        deps = self.check_dependencies()
        cmd = [deps.ytdlp_path, "-f", stream_format(resolution), "-g", url]

        returncode, stdout, stderr = await self._run(cmd, self.stream_timeout, timestamp_seconds)
        lines = stdout.decode(errors="replace").splitlines()
        stream_url = lines[0].strip() if lines else ""

        if not stream_url:
            tail = stderr.decode(errors="replace")[-STDERR_TAIL_CHARS:]
            logger.debug(f"yt-dlp returned no stream URL (code {returncode}): {tail}")
            raise ScreenshotExtractionError("Failed to get video stream URL", timestamp_seconds)
        return stream_url

    async def extract_frame(
        self,
        url: str,
        timestamp_seconds: float,
        output_path: str | Path,
        quality: int = 85,
        resolution: Resolution = "large"
    ) -> None:
        """
        Extract a single frame to output_path, overwriting any existing file.

        Args:
            url: YouTube video URL
            timestamp_seconds: Seek position
            output_path: JPEG destination
            quality: 1-100, higher is better
            resolution: Target height bucket, "full" keeps the source height

        Raises:
            ScreenshotExtractionError: If the stream URL or the transcode fails
        """
        deps = self.check_dependencies()
        stream_url = await self.get_stream_url(url, timestamp_seconds, resolution)

        # -ss before -i seeks on the input, fast but keyframe-approximate
        cmd = [
            deps.ffmpeg_path,
            "-ss", str(timestamp_seconds),
            "-i", stream_url,
            "-vframes", "1",
            "-q:v", str(ffmpeg_quality(quality)),
        ]

        height = RESOLUTION_HEIGHTS[resolution]
        if height is not None:
            cmd.extend(["-vf", f"scale=-1:{height}"])

        cmd.extend(["-y", str(output_path)])

        returncode, _, stderr = await self._run(cmd, self.frame_timeout, timestamp_seconds)
        if returncode != 0:
            tail = stderr.decode(errors="replace")[-STDERR_TAIL_CHARS:]
            raise ScreenshotExtractionError(
                f"ffmpeg failed (code {returncode}): {tail}", timestamp_seconds
            )

        # ffmpeg exits 0 without writing anything when seeking past the end
        output = Path(output_path)
        if not output.is_file() or output.stat().st_size == 0:
            raise ScreenshotExtractionError(
                "ffmpeg produced no frame (timestamp may be past the end of the video)",
                timestamp_seconds
            )

    async def extract_screenshots(
        self,
        url: str,
        timestamps: Sequence[TimestampCandidate],
        output_dir: str | None = None,
        quality: int = 85,
        resolution: Resolution = "large"
    ) -> list[Screenshot]:
        """
        Extract one screenshot per timestamp, in order.

        Frames are written to output_dir, else $SCREENSHOT_OUTPUT_DIR, and kept
        there. Without either, a temporary directory is used and removed
        afterwards, and the returned screenshots carry no file_path.

        A failed timestamp is logged and skipped. Only when every timestamp
        fails is ScreenshotExtractionError raised, listing each failure.
        """
        self.check_dependencies()
        video_id = resolve_video_id(url)

        user_output_dir = output_dir or os.environ.get("SCREENSHOT_OUTPUT_DIR")
        temp_dir = None
        if user_output_dir:
            work_dir = Path(user_output_dir)
        else:
            temp_dir = Path(tempfile.mkdtemp(prefix="yt-screenshots-"))
            work_dir = temp_dir
        work_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Extracting {len(timestamps)} screenshots from {video_id} into {work_dir}")

        screenshots: list[Screenshot] = []
        errors: list[str] = []

        try:
            for ts in timestamps:
                file_path = work_dir / screenshot_filename(video_id, ts.time_seconds)
                try:
                    await self.extract_frame(url, ts.time_seconds, file_path, quality, resolution)
                    data = file_path.read_bytes()
                except (ScreenshotExtractionError, OSError) as e:
                    message = e.message if isinstance(e, ScreenshotExtractionError) else str(e)
                    errors.append(f"Timestamp {ts.time_formatted}: {message}")
                    logger.warning(f"Failed to extract frame at {ts.time_formatted}: {message}")
                    continue

                screenshots.append(Screenshot(
                    timestamp_seconds=ts.time_seconds,
                    timestamp_formatted=ts.time_formatted,
                    description=ts.description,
                    base64=base64.b64encode(data).decode("ascii"),
                    file_path=str(file_path) if temp_dir is None else None
                ))

                if temp_dir is not None:
                    try:
                        file_path.unlink()
                    except OSError as e:
                        logger.debug(f"Could not remove {file_path}: {e}")
        finally:
            if temp_dir is not None:
                shutil.rmtree(temp_dir, ignore_errors=True)

        if not screenshots and errors:
            raise ScreenshotExtractionError("All extractions failed:\n" + "\n".join(errors))

        if errors:
            logger.warning(f"Extracted {len(screenshots)}/{len(timestamps)} screenshots from {video_id}")
        else:
            logger.info(f"Extracted {len(screenshots)} screenshots from {video_id}")
        return screenshots

    async def extract_frames_at_timestamps(
        self,
        url: str,
        timestamp_seconds: Sequence[float],
        output_dir: str | None = None,
        quality: int = 85,
        resolution: Resolution = "large"
    ) -> list[Screenshot]:
        """Extract frames at bare second offsets, labelled "Frame at M:SS"."""
        timestamps = [
            TimestampCandidate(
                time_seconds=seconds,
                time_formatted=format_timestamp(seconds),
                description=f"Frame at {format_timestamp(seconds)}"
            )
            for seconds in timestamp_seconds
        ]
        return await self.extract_screenshots(url, timestamps, output_dir, quality, resolution)
