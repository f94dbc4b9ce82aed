# src/yt_analysis/validators.py
"""YouTube URL validation and tool input models."""

import re
from typing import Annotated, TypeVar

import pydantic
from pydantic import BaseModel, Field, field_validator

from yt_analysis.errors import ValidationError
from yt_analysis.models import DetailLevel, Resolution

INVALID_URL_MESSAGE = (
    "Invalid YouTube URL. Expected format: youtube.com/watch?v=ID, "
    "youtu.be/ID, or youtube.com/shorts/ID"
)

# Anything after the id must start with ? & # or / and hold no whitespace or control characters
_URL_TAIL = r"(?:[?&#/][^\s\x00-\x1f\x7f]*)?\Z"

# Accepted video URL shapes; each captures the video id.
URL_PATTERNS = [
    re.compile(
        r"^(?:https?://)?(?:www\.)?youtube\.com/watch\?(?:[^#\s\x00-\x1f\x7f]*&)?v=(?P<id>[A-Za-z0-9_-]+)"
        + _URL_TAIL
    ),
    re.compile(r"^(?:https?://)?(?:www\.)?youtu\.be/(?P<id>[A-Za-z0-9_-]+)" + _URL_TAIL),
    re.compile(r"^(?:https?://)?(?:www\.)?youtube\.com/shorts/(?P<id>[A-Za-z0-9_-]+)" + _URL_TAIL),
]

MAX_TIMESTAMPS = 20

M = TypeVar("M", bound=BaseModel)


def _match(url: str) -> re.Match | None:
    for pattern in URL_PATTERNS:
        match = pattern.match(url)
        if match:
            return match
    return None


def validate_youtube_url(url: str) -> str:
    """Return the trimmed URL, or raise ValidationError if it is not a video URL."""
    url = url.strip()
    if _match(url) is None:
        raise ValidationError(INVALID_URL_MESSAGE)
    return url


def resolve_video_id(url: str) -> str:
    """
    Extract the video id from a watch, youtu.be or shorts URL.

    The id is restricted to [A-Za-z0-9_-] so it is safe to use in file names.

    Raises:
        ValidationError: If the URL matches none of the accepted shapes
    """
    match = _match(url.strip())
    if match is None:
        raise ValidationError(INVALID_URL_MESSAGE)
    return match.group("id")


class VideoInput(BaseModel):
    youtube_url: str

    @field_validator("youtube_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if _match(value) is None:
            raise ValueError(INVALID_URL_MESSAGE)
        return value


class SummarizeInput(VideoInput):
    detail_level: DetailLevel = "medium"


class AskInput(VideoInput):
    question: str

    @field_validator("question")
    @classmethod
    def _check_question(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Question cannot be empty")
        return value


class GetVideoTimestampsInput(VideoInput):
    count: int = Field(default=5, ge=1, le=MAX_TIMESTAMPS)
    focus: str | None = None


class ExtractScreenshotsInput(GetVideoTimestampsInput):
    output_dir: str | None = None
    quality: int = Field(default=85, ge=1, le=100)
    resolution: Resolution = "large"


class ExtractFramesInput(VideoInput):
    timestamps: list[Annotated[float, Field(ge=0)]] = Field(min_length=1, max_length=MAX_TIMESTAMPS)
    output_dir: str | None = None
    quality: int = Field(default=85, ge=1, le=100)
    resolution: Resolution = "large"


def parse_input(model: type[M], **arguments) -> M:
    """Validate raw tool arguments, converting pydantic errors to ValidationError."""
    try:
        return model(**arguments)
    except pydantic.ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(details) from e
