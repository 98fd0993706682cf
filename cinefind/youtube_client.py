import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx

from .config import settings
from .models import ContentItem

logger = logging.getLogger(__name__)

_YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com"}
_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)
_DRIVE_FILE = re.compile(r"/file/d/([A-Za-z0-9_-]+)")


def get_youtube_video_id(url: Optional[str]) -> Optional[str]:
    """Extract the video id from any common YouTube link form."""
    if not url:
        return None
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    candidate = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in _YOUTUBE_HOSTS:
        if parsed.path == "/watch":
            candidate = parse_qs(parsed.query).get("v", [None])[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in ("embed", "shorts", "v", "live"):
                candidate = parts[1]
    if candidate and _VIDEO_ID.match(candidate):
        return candidate
    return None


def parse_iso8601_duration(value: Optional[str]) -> int:
    """Convert an ISO 8601 duration such as PT1H2M3S to seconds."""
    if not value:
        return 0
    match = _ISO_DURATION.match(value)
    if not match:
        return 0
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def get_embed_url(url: Optional[str]) -> Optional[str]:
    """Get an iframe-embeddable URL, or None when the link must be opened externally."""
    if not url:
        return None
    if "drive.google.com" in url:
        match = _DRIVE_FILE.search(url)
        if match:
            return f"https://drive.google.com/file/d/{match.group(1)}/preview"
        return None
    video_id = get_youtube_video_id(url)
    if video_id:
        return f"https://www.youtube.com/embed/{video_id}?autoplay=1&rel=0"
    return None


class YouTubeClient:
    """Enrich catalog items with YouTube Data API metadata."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.youtube_api_key
        self.base_url = base_url or settings.youtube_api_url

    async def enrich(self, items: list[ContentItem]) -> list[ContentItem]:
        """Fill in title, thumbnail, channel and duration for YouTube items.

        Items that are not YouTube links, or that the API does not know, are
        returned unchanged. Any API failure leaves the whole list unchanged.
        """
        if not self.api_key:
            logger.info("YouTube API key not set, skipping metadata lookup")
            return items

        video_ids = list(
            dict.fromkeys(vid for vid in (get_youtube_video_id(i.url) for i in items) if vid)
        )
        if not video_ids:
            return items

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}/videos",
                    params={
                        "part": "snippet,statistics,contentDetails",
                        "id": ",".join(video_ids),
                        "key": self.api_key,
                    },
                    timeout=settings.http_timeout_seconds,
                )
                if response.status_code != 200:
                    logger.error(f"Failed to fetch YouTube videos: {response.status_code}")
                    return items
                videos = {v["id"]: v for v in response.json().get("items", [])}
                channel_ids = list(
                    dict.fromkeys(
                        v["snippet"]["channelId"]
                        for v in videos.values()
                        if v.get("snippet", {}).get("channelId")
                    )
                )
                channel_thumbnails = await self._channel_thumbnails(client, channel_ids)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Error fetching YouTube data: {e}")
            return items

        enriched = []
        for item in items:
            video = videos.get(get_youtube_video_id(item.url) or "")
            if not video:
                enriched.append(item)
                continue
            snippet = video.get("snippet", {})
            thumbnails = snippet.get("thumbnails", {})
            thumbnail = (thumbnails.get("high") or thumbnails.get("default") or {}).get("url")
            enriched.append(
                item.model_copy(
                    update={
                        "title": snippet.get("title") or item.title,
                        "thumbnail_url": thumbnail or item.thumbnail_url,
                        "channel_title": snippet.get("channelTitle"),
                        "view_count": video.get("statistics", {}).get("viewCount"),
                        "published_at": snippet.get("publishedAt"),
                        "duration": parse_iso8601_duration(
                            video.get("contentDetails", {}).get("duration")
                        ),
                        "channel_thumbnail_url": channel_thumbnails.get(
                            snippet.get("channelId"), item.channel_thumbnail_url
                        ),
                    }
                )
            )
        return enriched

    async def _channel_thumbnails(
        self, client: httpx.AsyncClient, channel_ids: list[str]
    ) -> dict[str, str]:
        if not channel_ids:
            return {}
        response = await client.get(
            f"{self.base_url}/channels",
            params={"part": "snippet", "id": ",".join(channel_ids), "key": self.api_key},
            timeout=settings.http_timeout_seconds,
        )
        if response.status_code != 200:
            logger.warning(f"Failed to fetch YouTube channels: {response.status_code}")
            return {}
        thumbnails = {}
        for channel in response.json().get("items", []):
            url = channel.get("snippet", {}).get("thumbnails", {}).get("default", {}).get("url")
            if url:
                thumbnails[channel["id"]] = url
        return thumbnails

    async def search_shorts(
        self, query: str = "shorts", page_token: Optional[str] = None
    ) -> tuple[list[ContentItem], Optional[str]]:
        """Search short YouTube videos, ten per page."""
        if not self.api_key:
            logger.info("YouTube API key not set, skipping shorts search")
            return [], None

        params = {
            "part": "snippet",
            "maxResults": 10,
            "q": query,
            "type": "video",
            "videoDuration": "short",
            "key": self.api_key,
        }
        if page_token:
            params["pageToken"] = page_token

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}/search",
                    params=params,
                    timeout=settings.http_timeout_seconds,
                )
            if response.status_code != 200:
                logger.error(f"Failed to search YouTube shorts: {response.status_code}")
                return [], None
            data = response.json()
            shorts = []
            for result in data.get("items", []):
                video_id = result["id"]["videoId"]
                snippet = result.get("snippet", {})
                shorts.append(
                    ContentItem(
                        id=video_id,
                        title=snippet.get("title", ""),
                        url=f"https://www.youtube.com/watch?v={video_id}",
                        thumbnail_url=(snippet.get("thumbnails", {}).get("high") or {}).get("url"),
                        channel_title=snippet.get("channelTitle"),
                        votes=0,
                        created_at=snippet["publishedAt"],
                        # Shorts are at most a minute long
                        duration=60,
                    )
                )
            return shorts, data.get("nextPageToken")
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Error fetching YouTube shorts: {e}")
            return [], None


# Global client instance
youtube_client = YouTubeClient()
