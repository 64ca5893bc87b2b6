"""Reclaims image references of events that are long past."""
import logging
from datetime import date, timedelta
from typing import Optional

from botocore.exceptions import ClientError

from processor.models import ExpirationResult
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)

DEFAULT_GRACE_DAYS = 10


def expiration_cutoff(grace_days: int = DEFAULT_GRACE_DAYS, today: Optional[date] = None) -> str:
    """Events dated strictly before this ISO date are eligible."""
    today = today or date.today()
    return (today - timedelta(days=grace_days)).isoformat()


class ImageExpirationWorker:
    """
    Clears image fields of events older than the grace window.

    Only the catalog's reference is removed; the stored asset itself is
    left in the bucket.
    """

    def __init__(self, store: DynamoDBManager, grace_days: int = DEFAULT_GRACE_DAYS):
        self.store = store
        self.grace_days = grace_days

    def expire(self, today: Optional[date] = None) -> ExpirationResult:
        cutoff = expiration_cutoff(self.grace_days, today)
        result = ExpirationResult(cutoff_date=cutoff)

        candidates = self.store.events_with_expired_images(cutoff)
        logger.info(f"Found {len(candidates)} events with images dated before {cutoff}")

        for event in candidates:
            try:
                if self.store.clear_expired_image(event.event_id, cutoff):
                    result.expired += 1
            except ClientError as e:
                logger.error(f"Failed to expire image of {event.event_id}: {e}")
                result.failed += 1
                result.errors.append(f"{event.event_id}: {e}")

        logger.info(
            f"Image expiration finished: {result.expired} cleared, {result.failed} failed",
            extra={'cutoff_date': cutoff}
        )
        return result
