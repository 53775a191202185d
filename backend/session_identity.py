"""
Stream URL parsing and viewing-session naming.

A session id is `{videoId}_{YYYY-MM-DD}_{sanitizedTitle}`. The date keeps a
channel's stable /live URL from merging one day's service into the next.
"""
import re
from datetime import date, datetime
from typing import Optional, Union

from errors import InvalidStreamUrlError

EMBED_BASE = "https://www.youtube.com/embed/"
TITLE_MAX_LENGTH = 50

# Order matters: the first match wins.
_CHANNEL_PATTERNS = [
    re.compile(r"youtube\.com/embed/live_stream\?channel=([A-Za-z0-9_-]+)"),
    re.compile(r"youtube\.com/channel/([A-Za-z0-9_-]+)/live"),
]
_VIDEO_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/)([^&\s?/#]+)"),
    re.compile(r"youtube\.com/live/([^&\s?/#]+)"),
    re.compile(r"youtube\.com/shorts/([^&\s?/#]+)"),
]
_BARE_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_PLAIN_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def extract_channel_id(url: str) -> Optional[str]:
    """Channel ID from a channel live URL or a live_stream embed, else None."""
    for pattern in _CHANNEL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def extract_video_id(url: str) -> Optional[str]:
    """
    Pull the video identifier out of any accepted stream URL shape.

    Channel live URLs yield the channel ID, which is stable for that
    channel and becomes distinct per day once the date is appended.
    Returns None when nothing matches.
    """
    if not url:
        return None
    url = url.strip()

    channel_id = extract_channel_id(url)
    if channel_id:
        return channel_id

    for pattern in _VIDEO_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1):
            return match.group(1)

    if _BARE_ID.match(url):
        return url
    return None


def normalize_youtube_url(url: str) -> str:
    """
    Collapse watch/short/live/channel/bare-ID forms into one embed URL.

    An empty value clears the stream and is returned as "".
    """
    if url is None or not url.strip():
        return ""
    url = url.strip()

    channel_id = extract_channel_id(url)
    if channel_id:
        return f"{EMBED_BASE}live_stream?channel={channel_id}"

    video_id = extract_video_id(url)
    if not video_id:
        raise InvalidStreamUrlError(f"Unrecognised YouTube URL: {url}")
    return f"{EMBED_BASE}{video_id}"


def sanitize_title(title: str) -> str:
    return _NON_ALNUM.sub("_", title or "")[:TITLE_MAX_LENGTH]


def derive_session_id(
    video: str,
    title: str,
    clock_date: Union[date, datetime],
) -> Optional[str]:
    """
    Build the session key for a (video, title, calendar day) combination.

    Args:
        video: Video ID or any stream URL accepted by extract_video_id
        title: Resolved stream title (never a placeholder)
        clock_date: Viewer's current date or datetime

    Returns:
        The session id, or None if no video ID can be extracted
    """
    video_id = extract_video_id(video)
    if not video_id and video and _PLAIN_ID.match(video.strip()):
        video_id = video.strip()
    if not video_id:
        return None

    if isinstance(clock_date, datetime):
        clock_date = clock_date.date()

    return f"{video_id}_{clock_date.isoformat()}_{sanitize_title(title)}"
