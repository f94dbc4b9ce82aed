# src/yt_analysis/errors.py
"""Error kinds raised by the video analysis tools."""

from enum import Enum


class ErrorKind(Enum):
    VALIDATION = "validation"
    DEPENDENCY = "dependency"
    EXTRACTION_FAILED = "extraction_failed"
    ANALYSIS_FAILED = "analysis_failed"
    VIDEO_ACCESS = "video_access"
    METADATA = "metadata"
    CONFIGURATION = "configuration"


class VideoToolError(Exception):
    """Base error. Every subclass pins a single ErrorKind."""

    kind: ErrorKind = ErrorKind.ANALYSIS_FAILED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(VideoToolError):
    """Malformed tool input (bad URL, out-of-range value)."""
    kind = ErrorKind.VALIDATION


class DependencyError(VideoToolError):
    """A required external executable is not installed."""
    kind = ErrorKind.DEPENDENCY

    def __init__(self, tool: str, install_hint: str):
        super().__init__(f"Missing required dependency: {tool}. {install_hint}")
        self.tool = tool
        self.install_hint = install_hint


class ScreenshotExtractionError(VideoToolError):
    """Frame extraction failed, for one timestamp or for a whole batch."""
    kind = ErrorKind.EXTRACTION_FAILED

    def __init__(self, message: str, timestamp: float | None = None):
        super().__init__(message)
        self.timestamp = timestamp


class VideoAnalysisError(VideoToolError):
    """Gemini call failed or returned something unusable."""
    kind = ErrorKind.ANALYSIS_FAILED


class VideoAccessError(VideoAnalysisError):
    kind = ErrorKind.VIDEO_ACCESS

    def __init__(self, url: str):
        super().__init__(
            f"Cannot access video: {url}. Ensure video is public and not geo-restricted."
        )
        self.url = url


class MetadataError(VideoToolError):
    kind = ErrorKind.METADATA


class ConfigurationError(VideoToolError):
    kind = ErrorKind.CONFIGURATION


def format_error(error: Exception) -> str:
    """Render an error as the single text message shown to the client."""
    if not isinstance(error, VideoToolError):
        return f"Error: {error}"

    match error.kind:
        case ErrorKind.VALIDATION:
            return f"Validation error: {error.message}"
        case ErrorKind.DEPENDENCY:
            return f"Dependency error: {error.message}"
        case ErrorKind.EXTRACTION_FAILED:
            return f"Screenshot extraction failed: {error.message}"
        case ErrorKind.ANALYSIS_FAILED | ErrorKind.VIDEO_ACCESS:
            return error.message
        case ErrorKind.METADATA | ErrorKind.CONFIGURATION:
            return f"Error: {error.message}"
