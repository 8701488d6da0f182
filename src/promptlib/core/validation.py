"""Validation utilities for card fields, image uploads, and slot intents.

Every check here runs before the attachment store or the repository is
touched, so a :class:`~promptlib.core.errors.ValidationError` always means
nothing was changed.
"""

import io
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from PIL import Image, UnidentifiedImageError

from .errors import InvalidSlotTransition, ValidationError
from .models import (
    OPTIONAL_TEXT_FIELDS,
    REQUIRED_TEXT_FIELDS,
    UPDATABLE_FIELDS,
    CardFields,
    ImageUpload,
    Remove,
    Replace,
    SlotIntent,
    Unchanged,
)

logger = logging.getLogger(__name__)

# Pillow format name -> MIME type for the raster formats we know how to accept.
PIL_FORMAT_TYPES: dict[str, str] = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
}

_FIELD_LABELS = {
    "prompt": "Prompt",
    "metadata": "Metadata",
    "client": "Client",
    "model": "Model",
    "seed": "Seed",
}


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def validate_card_fields(fields: CardFields) -> CardFields:
    """Validate the fields of a new card.

    Args:
        fields: Fields supplied for creation

    Returns:
        A copy with optional blank values normalised to ``None``

    Raises:
        ValidationError: If a required field is missing or blank
    """
    for name in REQUIRED_TEXT_FIELDS:
        if _is_blank(getattr(fields, name)):
            raise ValidationError(f"{_FIELD_LABELS[name]} is required", field=name)

    return CardFields(
        prompt=fields.prompt,
        metadata=fields.metadata,
        client=fields.client,
        model=fields.model,
        seed=fields.seed,
        llm_used=None if _is_blank(fields.llm_used) else fields.llm_used,
        notes=None if _is_blank(fields.notes) else fields.notes,
        is_favorited=bool(fields.is_favorited),
    )


def validate_field_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial update of card fields.

    Only the keys present in ``updates`` are checked and returned; absent
    keys leave the stored value untouched.

    Args:
        updates: Mapping of field name to new value

    Returns:
        Normalised updates ready to merge into the record

    Raises:
        ValidationError: For unknown fields or blank required fields
    """
    unknown = sorted(set(updates) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}", field=unknown[0])

    cleaned: dict[str, Any] = {}
    for name, value in updates.items():
        if name in REQUIRED_TEXT_FIELDS:
            if _is_blank(value):
                raise ValidationError(f"{_FIELD_LABELS[name]} is required", field=name)
            cleaned[name] = value
        elif name in OPTIONAL_TEXT_FIELDS:
            cleaned[name] = None if _is_blank(value) else value
        else:
            cleaned[name] = bool(value)
    return cleaned


def detect_image_type(data: bytes) -> str | None:
    """Identify the MIME type of raster image bytes.

    Only the header is inspected; the image is never decoded or modified.

    Args:
        data: Raw file contents

    Returns:
        The MIME type, or ``None`` if Pillow does not recognise the data

    Raises:
        PIL.Image.DecompressionBombError: If the header declares more pixels
            than Pillow is configured to open
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            return PIL_FORMAT_TYPES.get(image.format or "")
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError):
        # Format plugins raise ValueError or SyntaxError on malformed headers.
        return None


def validate_upload(
    upload: ImageUpload | None,
    slot: str,
    *,
    allowed_types: Iterable[str],
    max_bytes: int,
) -> ImageUpload:
    """Check an image upload against the media policy.

    Args:
        upload: The uploaded file, or ``None`` if it was not supplied
        slot: Slot name used in error messages (``output`` or ``reference``)
        allowed_types: Accepted MIME types
        max_bytes: Maximum accepted size

    Returns:
        The upload, unchanged

    Raises:
        ValidationError: If the file is missing, empty, too large, or not an
            allowed image type
    """
    field_name = f"{slot}_image"
    allowed = set(allowed_types)

    if upload is None:
        raise ValidationError(f"The {slot} image is required", field=field_name)

    if upload.size == 0:
        raise ValidationError(f"The {slot} image is empty", field=field_name)

    if upload.size > max_bytes:
        raise ValidationError(
            f"The {slot} image is too large ({upload.size} bytes). "
            f"Maximum is {max_bytes} bytes.",
            field=field_name,
        )

    declared = (upload.content_type or "").split(";")[0].strip().lower()
    if declared not in allowed:
        raise ValidationError(
            f"The {slot} image must be one of: {', '.join(sorted(allowed))}",
            field=field_name,
        )

    try:
        detected = detect_image_type(upload.data)
    except Image.DecompressionBombError as e:
        logger.warning(f"Rejected {slot} upload {upload.filename!r}: {e}")
        raise ValidationError(
            f"The {slot} image dimensions are too large",
            field=field_name,
        ) from e

    if detected is None or detected not in allowed:
        logger.warning(
            f"Rejected {slot} upload {upload.filename!r}: declared {declared}, detected {detected}"
        )
        raise ValidationError(
            f"The {slot} image content is not a valid {declared.split('/')[-1].upper()} file",
            field=field_name,
        )

    return upload


def validate_slot_intent(intent: SlotIntent, slot: str) -> None:
    """Reject slot intents that would leave a required slot empty.

    Raises:
        InvalidSlotTransition: For a bare ``Remove``
        ValidationError: For anything that is not a slot intent
    """
    if isinstance(intent, Remove):
        raise InvalidSlotTransition(slot)
    if not isinstance(intent, (Unchanged, Replace)):
        raise ValidationError(f"Invalid {slot} image intent: {intent!r}", field=f"{slot}_image")
