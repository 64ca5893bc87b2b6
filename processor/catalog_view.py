"""Read-side view of catalog events for the presentation layer."""
from dataclasses import asdict
from typing import Any, Dict

from processor.image_keywords import event_gradient
from processor.models import CatalogEvent, IMAGE_TYPE_GRADIENT, IMAGE_TYPE_IMAGE
from storage.image_guard import is_protected_image


def header_image(event: CatalogEvent) -> Dict[str, str]:
    """Real image when one is stored, otherwise the event's gradient."""
    if is_protected_image(event.image_url, event.image_type):
        return {'type': IMAGE_TYPE_IMAGE, 'value': event.image_url}
    return {'type': IMAGE_TYPE_GRADIENT, 'value': event_gradient(event)}


def to_presentation(event: CatalogEvent) -> Dict[str, Any]:
    """
    Serialize an event for display.

    Every event gets a ``header_image``, so consumers never have to handle
    an event with neither an image nor a fallback.
    """
    data = asdict(event)
    data.pop('image_fingerprint', None)
    data['header_image'] = header_image(event)
    return data
