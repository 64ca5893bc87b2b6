"""DynamoDB manager for catalog storage operations."""
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.event_processor import normalize_title
from processor.models import (
    CanonicalEvent,
    CatalogEvent,
    IMAGE_TYPE_GRADIENT,
    IMAGE_TYPE_IMAGE,
    MANUAL_SOURCE,
)
from storage.image_guard import IMAGE_FIELDS, split_image_changes, unprotected_image_condition

logger = logging.getLogger(__name__)


class EventNotFoundError(Exception):
    """Raised when an update targets an event that does not exist."""


def is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


class DynamoDBManager:
    """Manager for catalog table operations."""

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the catalog table
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    # Reads

    def get_event(self, event_id: str) -> Optional[CatalogEvent]:
        response = self.table.get_item(Key={'event_id': event_id}, ConsistentRead=True)
        item = response.get('Item')
        return self._item_to_catalog_event(item) if item else None

    def get_all_events(self) -> Dict[str, CatalogEvent]:
        """
        Retrieve all events from the table using Scan.

        Returns:
            Dictionary mapping event_id to CatalogEvent objects
        """
        events = {event.event_id: event for event in self.scan_events()}
        logger.info(f"Retrieved {len(events)} events from DynamoDB")
        return events

    def scan_events(self, filter_expression=None) -> List[CatalogEvent]:
        """
        Scan the table, following pagination, optionally filtered.

        Args:
            filter_expression: boto3 condition applied server-side

        Returns:
            List of CatalogEvent objects
        """
        kwargs = {}
        if filter_expression is not None:
            kwargs['FilterExpression'] = filter_expression

        try:
            response = self.table.scan(**kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

        events = []
        for item in items:
            event = self._item_to_catalog_event(item)
            if event:
                events.append(event)
        return events

    def events_missing_images(self, today: str, limit: int = 100) -> List[CatalogEvent]:
        """
        Upcoming events the population worker should process.

        Selects events with no image type, plus events typed as image that
        have no usable URL. Gradient-typed events are left to the explicit
        upgrade pass.
        """
        condition = Attr('event_date').gte(today) & (
            Attr('image_type').not_exists()
            | (Attr('image_type').eq(IMAGE_TYPE_IMAGE) & Attr('image_url').not_exists())
        )
        return self._earliest(self.scan_events(condition), limit)

    def events_with_gradients(self, today: str, limit: int = 100) -> List[CatalogEvent]:
        condition = Attr('event_date').gte(today) & Attr('image_type').eq(IMAGE_TYPE_GRADIENT)
        return self._earliest(self.scan_events(condition), limit)

    def events_with_legacy_image_fields(self) -> List[CatalogEvent]:
        """Events with a gradient string in image_url or an untyped http URL."""
        condition = Attr('image_url').begins_with('linear-gradient') | (
            Attr('image_url').begins_with('http') & Attr('image_type').not_exists()
        )
        return self.scan_events(condition)

    def events_with_expired_images(self, cutoff_date: str) -> List[CatalogEvent]:
        """Events dated before the cutoff that still reference an image."""
        condition = Attr('event_date').lt(cutoff_date) & (
            Attr('image_url').exists()
            | Attr('image_fingerprint').exists()
            | Attr('image_type').eq(IMAGE_TYPE_IMAGE)
        )
        return self.scan_events(condition)

    def list_events(self, from_date: Optional[str] = None) -> List[CatalogEvent]:
        """Catalog events on or after a date, ordered by date and time."""
        condition = Attr('event_date').gte(from_date) if from_date else None
        events = self.scan_events(condition)
        return sorted(events, key=lambda e: (e.event_date, e.start_time or '', e.title))

    # Writes

    def insert_event(self, event: CanonicalEvent) -> bool:
        """
        Insert a new event unless its identity key is already stored.

        Args:
            event: Canonical event from a feed

        Returns:
            True if inserted, False if an event with the same id exists
        """
        item = self._canonical_event_to_item(event)
        try:
            self._with_retry(
                lambda: self.table.put_item(
                    Item=item,
                    ConditionExpression=Attr('event_id').not_exists()
                ),
                f"insert {event.event_id}"
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise
        return True

    def create_manual_event(
        self,
        title: str,
        event_date: str,
        start_time: Optional[str] = None,
        location: str = '',
        address: str = '',
        description: str = '',
        category: str = 'Community',
        external_url: Optional[str] = None,
    ) -> CatalogEvent:
        """
        Store an event entered by hand.

        Manual events use the reserved source tag and a random id, so feed
        synchronization never matches or modifies them.
        """
        now = int(time.time())
        item = {
            'event_id': str(uuid.uuid4()),
            'title': title,
            'normalized_title': normalize_title(title),
            'event_date': event_date,
            'location': location,
            'address': address or location,
            'description': description,
            'category': category,
            'source': MANUAL_SOURCE,
            'created_at': datetime.now(timezone.utc).isoformat(),
            'last_updated': now,
        }
        if start_time:
            item['start_time'] = start_time
        if external_url:
            item['external_url'] = external_url

        self._with_retry(lambda: self.table.put_item(Item=item), f"create manual event '{title}'")
        logger.info(f"Created manual event {item['event_id']} '{title}' on {event_date}")
        return self._item_to_catalog_event(item)

    def update_event(self, event_id: str, changes: Dict[str, Any]) -> CatalogEvent:
        """
        Apply changes to an event with image preservation enforced.

        Image fields are written only if the stored event has no protected
        image at the moment of the write. Otherwise the image fields in
        ``changes`` are dropped and the remaining fields are still applied.
        Passing None for a field removes it.

        Args:
            event_id: Catalog id
            changes: Attribute name to new value

        Returns:
            The event as stored after the update

        Raises:
            EventNotFoundError: If no event has this id
        """
        other, image = split_image_changes(changes)
        exists = Attr('event_id').exists()

        if image:
            try:
                return self._update_item(
                    event_id, {**other, **image}, exists & unprotected_image_condition()
                )
            except ClientError as e:
                if not is_conditional_failure(e):
                    raise
            logger.info(
                f"Event {event_id} holds a protected image; "
                f"ignoring changes to {', '.join(sorted(image))}"
            )

        if not other:
            event = self.get_event(event_id)
            if event is None:
                raise EventNotFoundError(event_id)
            return event

        try:
            return self._update_item(event_id, other, exists)
        except ClientError as e:
            if is_conditional_failure(e):
                raise EventNotFoundError(event_id) from e
            raise

    def clear_expired_image(self, event_id: str, cutoff_date: str) -> bool:
        """
        Remove the image reference of an event dated before the cutoff.

        This is the only write that may clear a protected image. The date
        is re-checked inside the write.

        Returns:
            True if cleared, False if the event is not past the cutoff
        """
        try:
            self._with_retry(
                lambda: self.table.update_item(
                    Key={'event_id': event_id},
                    UpdateExpression='REMOVE image_url, image_type, image_fingerprint SET last_updated = :now',
                    ExpressionAttributeValues={':now': int(time.time())},
                    ConditionExpression=Attr('event_id').exists() & Attr('event_date').lt(cutoff_date)
                ),
                f"expire image of {event_id}"
            )
        except ClientError as e:
            if is_conditional_failure(e):
                return False
            raise
        return True

    def delete_event(self, event_id: str) -> bool:
        """
        Delete an event. Administrative action only.

        Returns:
            True if an event was deleted
        """
        response = self.table.delete_item(Key={'event_id': event_id}, ReturnValues='ALL_OLD')
        deleted = 'Attributes' in response
        if deleted:
            logger.info(f"Deleted event {event_id}")
        return deleted

    # Helpers

    def _update_item(self, event_id: str, changes: Dict[str, Any], condition) -> CatalogEvent:
        changes = {**changes, 'last_updated': int(time.time())}
        names = {}
        values = {}
        set_parts = []
        remove_parts = []

        for index, (field_name, value) in enumerate(sorted(changes.items())):
            name_key = f"#f{index}"
            names[name_key] = field_name
            if value is None or (value == '' and field_name in IMAGE_FIELDS):
                remove_parts.append(name_key)
            else:
                value_key = f":u{index}"
                values[value_key] = value
                set_parts.append(f"{name_key} = {value_key}")

        expression = 'SET ' + ', '.join(set_parts)
        if remove_parts:
            expression += ' REMOVE ' + ', '.join(remove_parts)

        response = self._with_retry(
            lambda: self.table.update_item(
                Key={'event_id': event_id},
                UpdateExpression=expression,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConditionExpression=condition,
                ReturnValues='ALL_NEW'
            ),
            f"update {event_id}"
        )
        return self._item_to_catalog_event(response['Attributes'])

    def _with_retry(self, operation: Callable[[], Any], description: str) -> Any:
        """Run a write, retrying once unless the failure is a condition check."""
        try:
            return operation()
        except ClientError as e:
            if is_conditional_failure(e):
                raise
            logger.warning(f"DynamoDB write failed ({description}): {e}. Retrying once")
        return operation()

    @staticmethod
    def _earliest(events: List[CatalogEvent], limit: int) -> List[CatalogEvent]:
        events.sort(key=lambda e: (e.event_date, e.start_time or ''))
        return events[:limit]

    def _item_to_catalog_event(self, item: dict) -> Optional[CatalogEvent]:
        """
        Convert DynamoDB item to CatalogEvent object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            CatalogEvent object or None if conversion fails
        """
        try:
            return CatalogEvent(
                event_id=item['event_id'],
                title=item['title'],
                normalized_title=item.get('normalized_title') or normalize_title(item['title']),
                event_date=item['event_date'],
                start_time=item.get('start_time'),
                end_time=item.get('end_time'),
                location=item.get('location', ''),
                address=item.get('address', ''),
                description=item.get('description', ''),
                category=item.get('category', ''),
                source=item['source'],
                external_url=item.get('external_url'),
                created_at=item.get('created_at', ''),
                last_updated=int(item.get('last_updated', 0)),
                image_url=item.get('image_url'),
                image_type=item.get('image_type'),
                image_fingerprint=item.get('image_fingerprint')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to CatalogEvent: {e}")
            return None

    def _canonical_event_to_item(self, event: CanonicalEvent) -> dict:
        """
        Convert CanonicalEvent object to DynamoDB item.

        New items never carry image fields; images arrive later through
        the population worker.
        """
        item = {
            'event_id': event.event_id,
            'title': event.title,
            'normalized_title': event.normalized_title,
            'event_date': event.event_date,
            'location': event.location,
            'address': event.address,
            'description': event.description,
            'category': event.category,
            'source': event.source,
            'created_at': datetime.now(timezone.utc).isoformat(),
            'last_updated': int(time.time())
        }

        # Add optional fields if present
        if event.start_time:
            item['start_time'] = event.start_time
        if event.end_time:
            item['end_time'] = event.end_time
        if event.external_url:
            item['external_url'] = event.external_url

        return item
