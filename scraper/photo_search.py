"""Unsplash photo search client."""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class PhotoSearchError(Exception):
    """Photo search or download failed; no image is available this run."""


class QuotaExceededError(PhotoSearchError):
    """The API rate limit is exhausted."""


@dataclass
class DownloadedImage:
    content: bytes
    content_type: Optional[str]
    source_url: str


class UnsplashClient:
    """Searches Unsplash for one landscape photo per keyword."""

    API_URL = 'https://api.unsplash.com'

    def __init__(self, access_key: str, timeout: int = 15, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            access_key: Unsplash access key
            timeout: Per-request timeout in seconds
            session: Optional requests session
        """
        self.access_key = access_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def search(self, keywords: str) -> Optional[str]:
        """
        Find the best matching photo for a keyword query.

        Args:
            keywords: Search query

        Returns:
            URL of the first result, or None if nothing matched

        Raises:
            QuotaExceededError: If the hourly quota is used up
            PhotoSearchError: On timeout or any other API failure
        """
        try:
            response = self.session.get(
                f"{self.API_URL}/search/photos",
                params={
                    'query': keywords,
                    'orientation': 'landscape',
                    'per_page': '1',
                    'content_filter': 'high',
                },
                headers={
                    'Authorization': f"Client-ID {self.access_key}",
                    'Accept-Version': 'v1',
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise PhotoSearchError(f"Photo search for '{keywords}' failed: {e}") from e

        remaining = response.headers.get('X-Ratelimit-Remaining')
        if response.status_code == 429 or (response.status_code == 403 and remaining == '0'):
            raise QuotaExceededError(f"Photo search quota exhausted (HTTP {response.status_code})")
        if not response.ok:
            raise PhotoSearchError(f"Photo search for '{keywords}' returned HTTP {response.status_code}")

        try:
            results = response.json().get('results') or []
            url = results[0]['urls']['regular'] if results else None
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PhotoSearchError(f"Unexpected photo search response: {e}") from e

        if remaining is not None:
            logger.debug(f"Photo search quota remaining: {remaining}")
        return url

    def download(self, url: str) -> DownloadedImage:
        """
        Download a photo.

        Raises:
            PhotoSearchError: If the download failed or returned no data
        """
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PhotoSearchError(f"Image download failed: {e}") from e

        if not response.content:
            raise PhotoSearchError(f"Image download from {url} returned no data")
        return DownloadedImage(
            content=response.content,
            content_type=response.headers.get('Content-Type'),
            source_url=url
        )
