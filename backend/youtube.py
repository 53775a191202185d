"""
YouTube lookups: live-broadcast search and oEmbed title metadata.
"""
import logging
from typing import Dict, Optional

import requests

from errors import YouTubeAPIError
from session_identity import EMBED_BASE

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
OEMBED_URL = "https://www.youtube.com/oembed"
NOEMBED_URL = "https://noembed.com/embed"
RECORDED_MARKERS = ("replay", "recorded", "vod", "archive")


def looks_recorded(title: Optional[str]) -> bool:
    """Title heuristic for a replay/VOD; without an API key this is all we have."""
    lowered = (title or "").lower()
    return any(marker in lowered for marker in RECORDED_MARKERS)


class YouTubeClient:
    """Thin wrapper around the YouTube Data API search and oEmbed endpoints."""

    def __init__(self, api_key: str = "", session: Optional[requests.Session] = None, timeout: float = 10):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def search_live(self, channel_id: str) -> Optional[Dict]:
        """
        Find a broadcast that is live right now on a channel.

        Returns:
            Dict with 'video_id', 'title', 'embed_url', or None if nothing is live

        Raises:
            YouTubeAPIError: transport failure or non-2xx response
        """
        params = {
            "part": "snippet",
            "channelId": channel_id,
            "eventType": "live",
            "type": "video",
            "key": self.api_key,
        }
        try:
            response = self.session.get(SEARCH_URL, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise YouTubeAPIError(f"YouTube search request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            logger.error(f"YouTube API error {response.status_code}: {data}")
            raise YouTubeAPIError("YouTube API error", status_code=response.status_code, payload=data)

        items = (data or {}).get("items") or []
        if not items:
            return None

        live = items[0]
        video_id = live["id"]["videoId"]
        return {
            "video_id": video_id,
            "title": live.get("snippet", {}).get("title", ""),
            "embed_url": f"{EMBED_BASE}{video_id}",
        }

    def fetch_title(self, video_id: str) -> Optional[str]:
        """Video title via oEmbed, then noembed; None if both fail."""
        watch_url = f"https://www.youtube.com/watch?v={video_id}"
        for endpoint in (OEMBED_URL, NOEMBED_URL):
            try:
                response = self.session.get(
                    endpoint,
                    params={"url": watch_url, "format": "json"},
                    timeout=self.timeout,
                )
                if not response.ok:
                    continue
                title = response.json().get("title")
                if title:
                    return title
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Title lookup via {endpoint} failed for {video_id}: {e}")
        return None

    def check_if_live(self, video_id: str) -> bool:
        """Advisory only; unknown status counts as live."""
        title = self.fetch_title(video_id)
        if title is None:
            return True
        return not looks_recorded(title)
