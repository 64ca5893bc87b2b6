"""
Image preservation rules applied to every catalog update.

Once an event holds a real image (``image_type == 'image'`` with an http
URL), its image_url, image_type and image_fingerprint can only be changed
by the expiration path or by deleting the event. The catalog store
enforces this inside the write itself with a DynamoDB condition, so the
rule holds no matter which caller issues the update or in what order
overlapping runs write.
"""
import hashlib
from typing import Any, Dict, Optional, Tuple

from boto3.dynamodb.conditions import Attr

from processor.models import IMAGE_TYPE_IMAGE

IMAGE_FIELDS = ('image_url', 'image_type', 'image_fingerprint')


def compute_image_fingerprint(image_url: str, image_type: Optional[str]) -> str:
    """SHA256 over the image reference and its type."""
    composite = f"{image_url}-{image_type or ''}"
    return hashlib.sha256(composite.encode('utf-8')).hexdigest()


def is_protected_image(image_url: Optional[str], image_type: Optional[str]) -> bool:
    """Real stored images are protected; gradients and legacy strings are not."""
    return (
        image_type == IMAGE_TYPE_IMAGE
        and bool(image_url)
        and image_url.startswith('http')
    )


def split_image_changes(changes: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Separate an update into (descriptive changes, image changes).

    A caller-supplied fingerprint is discarded; the fingerprint is always
    derived from the image reference being written. Setting a real image
    writes its fingerprint, any other image change clears it.
    """
    other = {k: v for k, v in changes.items() if k not in IMAGE_FIELDS}
    image = {k: v for k, v in changes.items() if k in IMAGE_FIELDS and k != 'image_fingerprint'}

    if not image:
        return other, {}

    if 'image_url' in image or 'image_type' in image:
        url = image.get('image_url')
        image_type = image.get('image_type')
        if is_protected_image(url, image_type):
            image['image_fingerprint'] = compute_image_fingerprint(url, image_type)
        else:
            image['image_fingerprint'] = None

    return other, image


def unprotected_image_condition():
    """Condition that holds only while the stored event has no protected image."""
    return (
        Attr('image_type').not_exists()
        | Attr('image_type').ne(IMAGE_TYPE_IMAGE)
        | Attr('image_url').not_exists()
        | ~Attr('image_url').begins_with('http')
    )
