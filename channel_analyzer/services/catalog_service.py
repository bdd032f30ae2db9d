"""
Catalog scanning against the YouTube Data API.
Lists the newest uploads of one channel and normalizes their metadata.
"""

import re
from typing import Any, Dict, List, Optional, Protocol

import httpx

from channel_analyzer.schemas.item import CatalogEntry
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
MIN_FETCH_LIMIT = 1
MAX_FETCH_LIMIT = 50

_ISO_DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


class CatalogUnavailableError(Exception):
    """Raised when the catalog cannot be listed for any reason."""
    pass


class CatalogClient(Protocol):
    """Anything that can list the newest entries of a channel."""

    def list(self, channel_id: str, limit: int) -> List[CatalogEntry]:
        ...


def parse_iso_duration(duration: Optional[str]) -> int:
    """
    Parse an ISO 8601 duration (e.g. PT1H2M3S) to seconds.

    Returns:
        Duration in seconds, 0 when missing or unparseable
    """
    if not duration:
        return 0
    match = _ISO_DURATION_RE.match(duration.strip())
    if not match:
        return 0
    days, hours, minutes, seconds = (int(group or 0) for group in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def format_duration(seconds: int) -> str:
    """Format seconds as m:ss or h:mm:ss."""
    hours, remainder = divmod(max(int(seconds), 0), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def uploads_playlist_id(channel_id: str) -> str:
    """
    Derive the uploads playlist id of a channel (UCxxxx -> UUxxxx).

    Raises:
        CatalogUnavailableError: If the channel id is not in UC... form
    """
    if channel_id.startswith("UC"):
        return "UU" + channel_id[2:]
    raise CatalogUnavailableError("Invalid channel ID format: expected UCxxxxxxxxxx")


class YouTubeCatalogClient:
    """Two-step listing: uploads playlist items, then video details for durations."""

    def __init__(self, api_key: str, http_client: Optional[httpx.Client] = None, timeout: float = 30.0) -> None:
        self._api_key = api_key
        self._client = http_client or httpx.Client(base_url=YOUTUBE_API_BASE, timeout=timeout)

    def list(self, channel_id: str, limit: int) -> List[CatalogEntry]:
        playlist_id = uploads_playlist_id(channel_id)

        logger.info("Fetching latest uploads", channel_id=channel_id, limit=limit)

        playlist = self._get("/playlistItems", {
            "part": "snippet",
            "playlistId": playlist_id,
            "maxResults": str(limit),
        })

        items = playlist.get("items") or []
        if not items:
            logger.info("No videos found in uploads playlist", channel_id=channel_id)
            return []

        video_ids = [item["snippet"]["resourceId"]["videoId"] for item in items]

        details = self._get("/videos", {
            "part": "contentDetails,snippet",
            "id": ",".join(video_ids),
        })

        by_id = {video["id"]: video for video in details.get("items") or []}

        entries = []
        # Keep playlist order; the details endpoint does not guarantee it
        for video_id in video_ids:
            video = by_id.get(video_id)
            if video is None:
                logger.warning("Video details missing, skipping", video_id=video_id)
                continue
            entries.append(CatalogEntry(
                external_id=video_id,
                title=video["snippet"]["title"],
                published_at=video["snippet"]["publishedAt"],
                iso_duration=video.get("contentDetails", {}).get("duration"),
            ))

        logger.info("Fetched videos with details", count=len(entries))
        return entries

    def _get(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        response = self._client.get(path, params={**params, "key": self._api_key})
        if response.status_code != 200:
            raise CatalogUnavailableError(
                f"YouTube API error ({response.status_code}): {response.text[:200]}"
            )
        return response.json()

    def close(self) -> None:
        self._client.close()


class CatalogScanner:
    """
    Pure-read scanner over one channel of the catalog.

    Any failure below it surfaces as a single CatalogUnavailableError.
    """

    def __init__(self, client: CatalogClient, channel_id: str) -> None:
        """
        Initialize the scanner.

        Args:
            client: Catalog client used for listing
            channel_id: Channel to scan
        """
        self.client = client
        self.channel_id = channel_id

    def fetch(self, limit: int = 10) -> List[CatalogEntry]:
        """
        List the newest catalog entries in catalog order.

        Args:
            limit: Maximum number of entries, clamped to [1, 50]

        Returns:
            Ordered list of catalog entries

        Raises:
            CatalogUnavailableError: If listing fails
        """
        limit = max(MIN_FETCH_LIMIT, min(limit, MAX_FETCH_LIMIT))

        try:
            entries = self.client.list(self.channel_id, limit)
        except CatalogUnavailableError:
            raise
        except (httpx.HTTPError, httpx.InvalidURL, KeyError, ValueError, TypeError, AttributeError) as e:
            logger.error("Catalog listing failed", channel_id=self.channel_id, error=str(e))
            raise CatalogUnavailableError(f"Catalog unavailable: {e}") from e

        return list(entries)[:limit]
