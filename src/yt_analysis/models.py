"""Pydantic models for timestamps, screenshots and video metadata."""

from typing import Literal

from pydantic import BaseModel, Field

Resolution = Literal["thumbnail", "small", "medium", "large", "full"]
DetailLevel = Literal["brief", "medium", "detailed"]

# Target maximum pixel height per resolution; None keeps the source height.
RESOLUTION_HEIGHTS: dict[str, int | None] = {
    "thumbnail": 160,
    "small": 360,
    "medium": 720,
    "large": 1080,
    "full": None,
}


class TimestampCandidate(BaseModel):
    """A moment in the video worth capturing."""
    time_seconds: float = Field(ge=0)
    time_formatted: str
    description: str = ""


class TimestampResult(BaseModel):
    """Timestamps proposed by the model for a video."""
    timestamps: list[TimestampCandidate]
    video_duration_seconds: float = 0.0


class Screenshot(BaseModel):
    """A single extracted frame, base64 encoded."""
    timestamp_seconds: float
    timestamp_formatted: str
    description: str
    base64: str
    mime_type: Literal["image/jpeg"] = "image/jpeg"
    file_path: str | None = None


class VideoMetadata(BaseModel):
    title: str = "Unknown"
    channel_title: str = "Unknown"
    description: str = ""
    published_at: str = ""
    thumbnail_url: str = ""


def format_seconds(seconds: float) -> str:
    """Render seconds exactly: 42.0 -> "42", 2.5 -> "2.5", 10000.25 -> "10000.25"."""
    return str(int(seconds)) if float(seconds).is_integer() else str(seconds)


def format_timestamp(seconds: float) -> str:
    """Format seconds as M:SS timestamp."""
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"
