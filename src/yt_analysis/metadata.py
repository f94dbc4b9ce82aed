# src/yt_analysis/metadata.py
"""YouTube Data API v3 client for title/channel enrichment."""

import logging

from googleapiclient.discovery import build

from yt_analysis.errors import MetadataError
from yt_analysis.models import VideoMetadata
from yt_analysis.validators import resolve_video_id

logger = logging.getLogger(__name__)


class YouTubeMetadataClient:
    """Fetch video snippets from the YouTube Data API."""

    def __init__(self, api_key: str):
        self.youtube = build("youtube", "v3", developerKey=api_key, cache_discovery=False)

    def get_metadata(self, url: str) -> VideoMetadata:
        """
        Fetch title, channel and publish date for a video.

        Raises:
            MetadataError: On any API failure or when the video has no snippet
        """
        try:
            video_id = resolve_video_id(url)
            response = self.youtube.videos().list(part="snippet", id=video_id).execute()

            items = response.get("items") or []
            snippet = items[0].get("snippet") if items else None
            if not snippet:
                raise ValueError(f"No metadata found for video: {video_id}")

            thumbnails = snippet.get("thumbnails") or {}
            thumbnail = thumbnails.get("high") or thumbnails.get("default") or {}

            return VideoMetadata(
                title=snippet.get("title") or "Unknown",
                channel_title=snippet.get("channelTitle") or "Unknown",
                description=snippet.get("description") or "",
                published_at=snippet.get("publishedAt") or "",
                thumbnail_url=thumbnail.get("url") or "",
            )
        except Exception as e:
            raise MetadataError(f"Failed to fetch YouTube metadata: {e}") from e
