"""S3 storage for downloaded event header images."""
import logging
import time
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

EXTENSIONS = ('png', 'webp', 'gif')


class AssetStorageError(Exception):
    """Raised when an image could not be written to the bucket."""


def image_extension(content_type: Optional[str], source_url: str = '') -> str:
    """Pick a file extension from the content type, then the URL, default jpg."""
    content_type = (content_type or '').lower()
    for extension in EXTENSIONS:
        if extension in content_type:
            return extension
    for extension in EXTENSIONS:
        if f".{extension}" in source_url.lower():
            return extension
    return 'jpg'


class S3AssetStore:
    """Write-once blob store for event images."""

    PREFIX = 'event-images'
    CACHE_CONTROL = 'public, max-age=31536000'

    def __init__(self, bucket: str, base_url: Optional[str] = None, s3_client=None):
        """
        Initialize the store.

        Args:
            bucket: Bucket name
            base_url: Public URL prefix for stored objects (default: the
                bucket's virtual-hosted S3 URL)
            s3_client: Optional boto3 S3 client
        """
        self.bucket = bucket
        self.s3 = s3_client or boto3.client('s3')
        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            region = self.s3.meta.region_name or 'us-east-1'
            self.base_url = f"https://{bucket}.s3.{region}.amazonaws.com"

    def store_image(self, event_id: str, content: bytes, content_type: Optional[str], source_url: str = '') -> str:
        """
        Upload image bytes under a new key.

        Args:
            event_id: Catalog id of the event the image belongs to
            content: Image bytes
            content_type: Content-Type reported by the image host
            source_url: URL the image was downloaded from

        Returns:
            Public URL of the stored object

        Raises:
            AssetStorageError: If the upload failed
        """
        extension = image_extension(content_type, source_url)
        key = f"{self.PREFIX}/event-{event_id}-{int(time.time() * 1000)}.{extension}"

        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=f"image/{'jpeg' if extension == 'jpg' else extension}",
                CacheControl=self.CACHE_CONTROL
            )
        except (ClientError, BotoCoreError) as e:
            raise AssetStorageError(f"Failed to store image for event {event_id}: {e}") from e

        logger.debug(f"Stored image s3://{self.bucket}/{key}")
        return f"{self.base_url}/{key}"
