"""
Keyword to image URL cache for photo-search lookups.

The cache only saves API calls. Any failure reading or writing it is
logged and treated as a miss; the catalog table is the source of truth.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import ImageCacheEntry

logger = logging.getLogger(__name__)

NAMESPACE = 'photo:'
DEFAULT_TTL_DAYS = 7

# Survives warm Lambda invocations; lost on cold start
_PROCESS_ENTRIES: Dict[str, ImageCacheEntry] = {}


class ImageCache(ABC):
    """Base cache with expiry bookkeeping."""

    def __init__(self, ttl_days: int = DEFAULT_TTL_DAYS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_days * 24 * 60 * 60
        self.clock = clock

    def _key(self, keyword: str) -> str:
        return NAMESPACE + keyword.strip().lower()

    def _new_entry(self, keyword: str, url: str) -> ImageCacheEntry:
        now = int(self.clock())
        return ImageCacheEntry(
            keyword=keyword, url=url, cached_at=now, expires_at=now + self.ttl_seconds
        )

    def _expired(self, entry: ImageCacheEntry) -> bool:
        return entry.expires_at <= self.clock()

    @abstractmethod
    def get(self, keyword: str) -> Optional[str]:
        """Cached URL for a keyword, or None on a miss or an expired entry."""

    @abstractmethod
    def put(self, keyword: str, url: str) -> None:
        """Cache a URL for a keyword."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Remove expired entries and return how many were removed."""


class MemoryImageCache(ImageCache):
    """Process-local cache."""

    def __init__(self, entries: Optional[Dict[str, ImageCacheEntry]] = None, **kwargs):
        super().__init__(**kwargs)
        self.entries = _PROCESS_ENTRIES if entries is None else entries

    def get(self, keyword: str) -> Optional[str]:
        key = self._key(keyword)
        entry = self.entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self.entries[key]
            return None
        return entry.url

    def put(self, keyword: str, url: str) -> None:
        self.entries[self._key(keyword)] = self._new_entry(keyword, url)

    def purge_expired(self) -> int:
        expired = [key for key, entry in self.entries.items() if self._expired(entry)]
        for key in expired:
            del self.entries[key]
        return len(expired)


class DynamoDBImageCache(ImageCache):
    """
    Cache stored in a DynamoDB table keyed by ``cache_key``.

    ``expires_at`` is an epoch timestamp so the table's TTL setting can
    reclaim entries too; reads still check it because TTL deletion lags.
    """

    def __init__(self, table_name: str, dynamodb=None, **kwargs):
        super().__init__(**kwargs)
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def get(self, keyword: str) -> Optional[str]:
        key = self._key(keyword)
        try:
            item = self.table.get_item(Key={'cache_key': key}).get('Item')
            if not item:
                return None
            entry = ImageCacheEntry(
                keyword=item.get('keyword', keyword),
                url=item['url'],
                cached_at=int(item['cached_at']),
                expires_at=int(item['expires_at'])
            )
            if self._expired(entry):
                self.table.delete_item(Key={'cache_key': key})
                return None
            return entry.url
        except (ClientError, BotoCoreError, KeyError, ValueError) as e:
            logger.warning(f"Image cache read failed for '{keyword}': {e}")
            return None

    def put(self, keyword: str, url: str) -> None:
        entry = self._new_entry(keyword, url)
        try:
            self.table.put_item(Item={
                'cache_key': self._key(keyword),
                'keyword': entry.keyword,
                'url': entry.url,
                'cached_at': entry.cached_at,
                'expires_at': entry.expires_at
            })
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Image cache write failed for '{keyword}': {e}")

    def purge_expired(self) -> int:
        removed = 0
        try:
            condition = Attr('expires_at').lte(int(self.clock()))
            response = self.table.scan(FilterExpression=condition, ProjectionExpression='cache_key')
            keys = [item['cache_key'] for item in response.get('Items', [])]
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=condition,
                    ProjectionExpression='cache_key',
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                keys.extend(item['cache_key'] for item in response.get('Items', []))

            with self.table.batch_writer() as writer:
                for key in keys:
                    writer.delete_item(Key={'cache_key': key})
                    removed += 1
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Image cache purge failed after {removed} entries: {e}")
        return removed


def build_image_cache(table_name: Optional[str] = None, ttl_days: int = DEFAULT_TTL_DAYS) -> ImageCache:
    """DynamoDB-backed cache when a table is configured, otherwise in-process."""
    if table_name:
        return DynamoDBImageCache(table_name, ttl_days=ttl_days)
    return MemoryImageCache(ttl_days=ttl_days)
