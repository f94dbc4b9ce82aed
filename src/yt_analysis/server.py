# src/yt_analysis/server.py
"""MCP server for YouTube video summaries, questions and screenshots."""

import asyncio
import base64
import logging
import os
import sys
from datetime import datetime

from mcp.server.fastmcp import FastMCP, Image
from mcp.server.fastmcp.exceptions import ToolError

from yt_analysis.errors import MetadataError, VideoToolError, format_error
from yt_analysis.extractor import ScreenshotExtractor
from yt_analysis.gemini_client import GeminiVideoClient
from yt_analysis.metadata import YouTubeMetadataClient
from yt_analysis.models import (
    DetailLevel,
    Resolution,
    Screenshot,
    VideoMetadata,
    format_seconds,
    format_timestamp,
)
from yt_analysis.validators import (
    AskInput,
    ExtractFramesInput,
    ExtractScreenshotsInput,
    GetVideoTimestampsInput,
    SummarizeInput,
    parse_input,
)

# Logs go to stderr so stdout stays clean for JSON-RPC
logging.basicConfig(
    level=os.environ.get("YT_ANALYSIS_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# YouTube Data API can share the Gemini key when enabled in the same project
YOUTUBE_API_KEY = os.environ.get("YOUTUBE_API_KEY") or os.environ.get("GEMINI_API_KEY")

mcp = FastMCP("yt-analysis-mcp")

extractor = ScreenshotExtractor()

# Created on first use so the server starts without credentials
_gemini_client: GeminiVideoClient | None = None
_metadata_client: YouTubeMetadataClient | None = None


def get_gemini_client() -> GeminiVideoClient:
    global _gemini_client
    if _gemini_client is None:
        _gemini_client = GeminiVideoClient()
    return _gemini_client


def get_metadata_client() -> YouTubeMetadataClient | None:
    global _metadata_client
    if _metadata_client is None and YOUTUBE_API_KEY:
        try:
            _metadata_client = YouTubeMetadataClient(YOUTUBE_API_KEY)
        except Exception as e:
            logger.warning(f"YouTube metadata disabled: {e}")
    return _metadata_client


async def fetch_metadata(url: str) -> VideoMetadata | None:
    """Best-effort metadata lookup; any failure yields None."""
    client = get_metadata_client()
    if client is None:
        return None
    try:
        return await asyncio.to_thread(client.get_metadata, url)
    except MetadataError as e:
        logger.warning(f"Continuing without metadata: {e}")
        return None


def format_published(value: str) -> str:
    try:
        published = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return f"{published:%B} {published.day}, {published.year}"


def metadata_header(metadata: VideoMetadata | None, include_published: bool) -> str:
    if metadata is None:
        return ""
    header = f"# {metadata.title}\n**Channel:** {metadata.channel_title}\n"
    if include_published and metadata.published_at:
        header += f"**Published:** {format_published(metadata.published_at)}\n"
    return header + "\n---\n\n"


def image_blocks(screenshots: list[Screenshot]) -> list[Image]:
    return [Image(data=base64.b64decode(s.base64), format="jpeg") for s in screenshots]


def tool_error(error: Exception) -> ToolError:
    """Format an error once for the client and log it."""
    message = format_error(error)
    if isinstance(error, VideoToolError):
        logger.error(message)
    else:
        logger.exception(f"Unexpected error: {error}")
    return ToolError(message)


@mcp.tool()
async def summarize_video(youtube_url: str, detail_level: DetailLevel = "medium") -> str:
    """
    Summarize a YouTube video's content. Returns a text summary based on
    the specified detail level.

    Args:
        youtube_url: Full YouTube URL (youtube.com/watch?v=ID, youtu.be/ID,
                     or youtube.com/shorts/ID)
        detail_level: brief (2-3 sentences), medium (key points with
                      timestamps) or detailed (comprehensive breakdown)
    """
    try:
        params = parse_input(SummarizeInput, youtube_url=youtube_url, detail_level=detail_level)
        logger.info(f"Summarizing {params.youtube_url} ({params.detail_level})")

        gemini = get_gemini_client()
        metadata, analysis = await asyncio.gather(
            fetch_metadata(params.youtube_url),
            gemini.summarize(params.youtube_url, params.detail_level),
        )
        return metadata_header(metadata, include_published=True) + analysis
    except Exception as e:
        raise tool_error(e) from e


@mcp.tool()
async def ask_about_video(youtube_url: str, question: str) -> str:
    """
    Ask a specific question about a YouTube video's content. Returns an
    answer based on the video.

    Args:
        youtube_url: Full YouTube URL (youtube.com/watch?v=ID, youtu.be/ID,
                     or youtube.com/shorts/ID)
        question: Your question about the video content
    """
    try:
        params = parse_input(AskInput, youtube_url=youtube_url, question=question)
        logger.info(f"Answering question about {params.youtube_url}")

        gemini = get_gemini_client()
        metadata, answer = await asyncio.gather(
            fetch_metadata(params.youtube_url),
            gemini.ask(params.youtube_url, params.question),
        )
        return metadata_header(metadata, include_published=False) + answer
    except Exception as e:
        raise tool_error(e) from e


@mcp.tool()
async def get_video_timestamps(youtube_url: str, count: int = 5, focus: str | None = None) -> str:
    """
    Identify visually significant moments in a YouTube video without
    extracting frames. Pass the returned seconds to extract_frames.

    Args:
        youtube_url: Full YouTube URL
        count: Number of timestamps to identify (1-20). Default 5
        focus: Optional topic to focus on, e.g. "code examples" or "diagrams"
    """
    try:
        params = parse_input(GetVideoTimestampsInput, youtube_url=youtube_url, count=count, focus=focus)
        result = await get_gemini_client().extract_timestamps(params.youtube_url, params.count, params.focus)

        lines = [
            f"{i}. [{ts.time_formatted}] ({format_seconds(ts.time_seconds)}s) - {ts.description}"
            for i, ts in enumerate(result.timestamps, start=1)
        ]
        return (
            f"Video duration: {format_timestamp(result.video_duration_seconds)}\n\n"
            f"Identified {len(result.timestamps)} key timestamps:\n\n"
            + "\n".join(lines)
            + "\n\nUse extract_frames with these timestamps to extract the frames."
        )
    except Exception as e:
        raise tool_error(e) from e


@mcp.tool()
async def extract_screenshots(
    youtube_url: str,
    count: int = 5,
    focus: str | None = None,
    output_dir: str | None = None,
    quality: int = 85,
    resolution: Resolution = "large"
):
    """
    Extract screenshots at the most visually significant moments of a
    YouTube video. Gemini picks the moments, then one JPEG frame is
    extracted per moment. Requires yt-dlp and ffmpeg.

    Args:
        youtube_url: Full YouTube URL
        count: Number of screenshots (1-20). Default 5
        focus: Optional topic to focus on when choosing moments
        output_dir: Directory to keep the JPEG files in. Defaults to
                    $SCREENSHOT_OUTPUT_DIR; without either, files are not kept
        quality: JPEG quality 1-100. Default 85
        resolution: thumbnail (160p), small (360p), medium (720p),
                    large (1080p) or full (source). Default large
    """
    try:
        params = parse_input(
            ExtractScreenshotsInput,
            youtube_url=youtube_url,
            count=count,
            focus=focus,
            output_dir=output_dir,
            quality=quality,
            resolution=resolution,
        )
        logger.info(f"Extracting {params.count} screenshots from {params.youtube_url}")

        result = await get_gemini_client().extract_timestamps(params.youtube_url, params.count, params.focus)
        screenshots = await extractor.extract_screenshots(
            params.youtube_url,
            result.timestamps,
            output_dir=params.output_dir,
            quality=params.quality,
            resolution=params.resolution,
        )

        lines = []
        for i, s in enumerate(screenshots, start=1):
            line = f"{i}. [{s.timestamp_formatted}] {s.description}"
            if s.file_path:
                line += f"\n   Saved to: {s.file_path}"
            lines.append(line)

        summary = (
            f"Extracted {len(screenshots)} screenshots from video "
            f"(duration: {format_timestamp(result.video_duration_seconds)}, "
            f"resolution: {params.resolution})\n\n" + "\n".join(lines)
        )
        return [summary, *image_blocks(screenshots)]
    except Exception as e:
        raise tool_error(e) from e


@mcp.tool()
async def extract_frames(
    youtube_url: str,
    timestamps: list[float],
    output_dir: str | None = None,
    quality: int = 85,
    resolution: Resolution = "large"
):
    """
    Extract frames from a YouTube video at specific timestamps, e.g. the
    ones returned by get_video_timestamps. Requires yt-dlp and ffmpeg.

    Args:
        youtube_url: Full YouTube URL
        timestamps: Seconds into the video, 1-20 values
        output_dir: Directory to keep the JPEG files in. Defaults to
                    $SCREENSHOT_OUTPUT_DIR; without either, files are not kept
        quality: JPEG quality 1-100. Default 85
        resolution: thumbnail, small, medium, large or full. Default large
    """
    try:
        params = parse_input(
            ExtractFramesInput,
            youtube_url=youtube_url,
            timestamps=timestamps,
            output_dir=output_dir,
            quality=quality,
            resolution=resolution,
        )
        logger.info(f"Extracting {len(params.timestamps)} frames from {params.youtube_url}")

        screenshots = await extractor.extract_frames_at_timestamps(
            params.youtube_url,
            params.timestamps,
            output_dir=params.output_dir,
            quality=params.quality,
            resolution=params.resolution,
        )

        lines = []
        for i, s in enumerate(screenshots, start=1):
            line = f"{i}. [{s.timestamp_formatted}]"
            if s.file_path:
                line += f" - Saved to: {s.file_path}"
            lines.append(line)

        summary = (
            f"Extracted {len(screenshots)} frames (resolution: {params.resolution})\n\n"
            + "\n".join(lines)
        )
        return [summary, *image_blocks(screenshots)]
    except Exception as e:
        raise tool_error(e) from e


def main():
    """Run the MCP server over stdio."""
    logger.info("YouTube Analysis MCP server running on stdio")
    mcp.run()


if __name__ == "__main__":
    main()
