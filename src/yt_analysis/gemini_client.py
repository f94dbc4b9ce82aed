# src/yt_analysis/gemini_client.py
"""Gemini client for video summaries, questions and timestamp selection."""

import json
import logging
import os
from datetime import datetime

import pydantic
from google import genai
from google.genai import types

from yt_analysis.errors import (
    ConfigurationError,
    VideoAccessError,
    VideoAnalysisError,
)
from yt_analysis.models import DetailLevel, TimestampResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-3-flash-preview"

DETAIL_PROMPTS: dict[str, str] = {
    "brief": "Summarize this video in 2-3 sentences, capturing the main point.",
    "medium": (
        "Summarize this video with key points. "
        "Include timestamps (MM:SS format) for important moments."
    ),
    "detailed": (
        "Provide a comprehensive breakdown of this video. Include: main topics, "
        "key points with timestamps, important quotes or statements, and a conclusion."
    ),
}

TIMESTAMP_EXTRACTION_PROMPT = """Analyze this video and identify the most visually important moments that would make good screenshots.

Return EXACTLY a JSON object with this structure (no markdown, no code blocks, just raw JSON):
{{
  "timestamps": [
    {{
      "time_seconds": <number>,
      "time_formatted": "<MM:SS or HH:MM:SS>",
      "description": "<brief description of what makes this moment visually significant>"
    }}
  ],
  "video_duration_seconds": <number>
}}

Selection criteria for timestamps:
- Scene changes or transitions
- Key visual demonstrations or examples
- Important diagrams, charts, or text on screen
- Product reveals or feature demonstrations
- Moments with clear, non-blurry frames
- Diverse coverage across the video timeline (not clustered)

Return exactly {count} timestamps, evenly distributed when possible.{focus_instruction}"""


def classify_upstream_error(url: str, error: Exception) -> VideoAnalysisError:
    """
    Map a Gemini SDK exception to a VideoAnalysisError.

    The API exposes no typed codes for these cases, so this matches on the
    message text. Anything unrecognised becomes a generic analysis error.
    """
    message = str(error)
    lowered = message.lower()

    if "video" in lowered or "file" in lowered or "access" in lowered:
        return VideoAccessError(url)

    if "quota" in lowered or "rate" in lowered:
        return VideoAnalysisError("API quota exceeded or rate limited. Please try again later.")

    return VideoAnalysisError(f"Failed to analyze video: {message}")


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ``` or ```json fence, if present."""
    text = text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
        if text.startswith("json"):
            text = text[4:]
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_timestamp_response(response: str) -> TimestampResult:
    """
    Parse the model's JSON timestamp answer.

    Raises:
        VideoAnalysisError: If the text is not JSON of the expected shape, or
            any time_seconds is missing, non-numeric or negative
    """
    try:
        data = json.loads(strip_code_fence(response))
        if not isinstance(data, dict) or not isinstance(data.get("timestamps"), list):
            raise ValueError("Invalid response: timestamps must be an array")

        for ts in data["timestamps"]:
            seconds = ts.get("time_seconds") if isinstance(ts, dict) else None
            if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or seconds < 0:
                raise ValueError(f"Invalid timestamp: {json.dumps(ts)}")

        return TimestampResult.model_validate(data)
    except (ValueError, pydantic.ValidationError) as e:
        raise VideoAnalysisError(
            f"Failed to parse timestamp response: {e}\n\nRaw response: {response}"
        ) from e


class GeminiVideoClient:
    """Analyze YouTube videos with Gemini, passing the URL as file data."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        api_key = api_key or os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY environment variable is required. Set it before starting the server."
            )

        self.client = genai.Client(api_key=api_key)
        self.model = model or os.environ.get("GEMINI_MODEL") or DEFAULT_MODEL

    async def summarize(self, url: str, detail_level: DetailLevel) -> str:
        return await self.analyze(url, DETAIL_PROMPTS[detail_level])

    async def ask(self, url: str, question: str) -> str:
        prompt = f"Based on this video, answer the following question:\n\n{question}"
        return await self.analyze(url, prompt)

    async def extract_timestamps(
        self,
        url: str,
        count: int,
        focus: str | None = None
    ) -> TimestampResult:
        """Ask the model for `count` visually significant moments."""
        focus_instruction = f"\n\nFocus especially on: {focus}" if focus else ""
        prompt = TIMESTAMP_EXTRACTION_PROMPT.format(count=count, focus_instruction=focus_instruction)

        response = await self.analyze(url, prompt)
        result = parse_timestamp_response(response)
        logger.info(f"Model proposed {len(result.timestamps)} timestamps")
        return result

    async def analyze(self, url: str, prompt: str) -> str:
        """
        Send the video and a prompt to Gemini and return the text answer.

        Raises:
            VideoAccessError: If the video could not be read
            VideoAnalysisError: On empty responses and other API failures
        """
        now = datetime.now()
        current_date = f"{now:%A, %B} {now.day}, {now.year}"
        full_prompt = f"[System Context: Today's date is {current_date}]\n\n{prompt}"

        contents = types.Content(
            role="user",
            parts=[
                types.Part(file_data=types.FileData(file_uri=url)),
                types.Part(text=full_prompt),
            ]
        )

        logger.info(f"Calling {self.model} for {url}")
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
            )
        except Exception as e:
            logger.error(f"Gemini request failed: {e}")
            raise classify_upstream_error(url, e) from e

        text = response.text
        if not text:
            raise VideoAnalysisError("Gemini returned an empty response")
        return text
