"""Unit tests for validation utilities."""

import pytest
from PIL import Image

from promptlib.core.errors import InvalidSlotTransition, ValidationError
from promptlib.core.models import REMOVE, UNCHANGED, CardFields, ImageUpload, Replace
from promptlib.core.validation import (
    PIL_FORMAT_TYPES,
    detect_image_type,
    validate_card_fields,
    validate_field_updates,
    validate_slot_intent,
    validate_upload,
)

ALLOWED = {"image/png", "image/jpeg", "image/gif"}


class TestValidationError:
    """Tests for the ValidationError exception."""

    def test_validation_error_is_exception(self):
        assert issubclass(ValidationError, Exception)

    def test_validation_error_message_and_field(self):
        with pytest.raises(ValidationError, match="Custom") as exc_info:
            raise ValidationError("Custom validation error", field="prompt")
        assert exc_info.value.field == "prompt"

    def test_invalid_slot_transition_is_validation_error(self):
        error = InvalidSlotTransition("output")
        assert isinstance(error, ValidationError)
        assert error.field == "output_image"
        assert "without a replacement" in str(error)


class TestValidateCardFields:
    """Tests for validate_card_fields."""

    def test_valid_fields_pass(self, card_fields):
        cleaned = validate_card_fields(card_fields)
        assert cleaned.prompt == card_fields.prompt
        assert cleaned.llm_used == "gpt-4o"

    def test_blank_optional_fields_become_none(self):
        cleaned = validate_card_fields(
            CardFields(prompt="p", metadata="m", client="c", model="x", seed="1", llm_used=" ", notes="")
        )
        assert cleaned.llm_used is None
        assert cleaned.notes is None

    def test_missing_seed(self):
        with pytest.raises(ValidationError, match="Seed is required"):
            validate_card_fields(CardFields(prompt="p", metadata="m", client="c", model="x", seed=""))


class TestValidateFieldUpdates:
    """Tests for validate_field_updates."""

    def test_empty_updates(self):
        assert validate_field_updates({}) == {}

    def test_partial_updates_kept(self):
        assert validate_field_updates({"model": "flux", "is_favorited": 1}) == {
            "model": "flux",
            "is_favorited": True,
        }

    def test_blank_required_rejected(self):
        with pytest.raises(ValidationError, match="Prompt is required"):
            validate_field_updates({"prompt": "  "})

    def test_none_required_rejected(self):
        with pytest.raises(ValidationError):
            validate_field_updates({"client": None})

    def test_optional_cleared(self):
        assert validate_field_updates({"notes": ""}) == {"notes": None}

    def test_unknown_field(self):
        with pytest.raises(ValidationError, match="Unknown field"):
            validate_field_updates({"output_image_path": "x.png"})


class TestDetectImageType:
    """Tests for detect_image_type."""

    def test_png(self, png_upload):
        assert detect_image_type(png_upload.data) == "image/png"

    def test_jpeg(self, jpeg_upload):
        assert detect_image_type(jpeg_upload.data) == "image/jpeg"

    def test_gif(self, gif_upload):
        assert detect_image_type(gif_upload.data) == "image/gif"

    def test_garbage(self):
        assert detect_image_type(b"definitely not an image") is None

    def test_only_accepted_formats_are_mapped(self):
        assert set(PIL_FORMAT_TYPES.values()) == {"image/png", "image/jpeg", "image/gif"}

    def test_truncated_header(self, png_upload):
        assert detect_image_type(png_upload.data[:20]) is None

    def test_oversized_dimensions_raise(self, png_upload, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
        with pytest.raises(Image.DecompressionBombError):
            detect_image_type(png_upload.data)


class TestValidateUpload:
    """Tests for the upload media policy."""

    def test_valid_upload(self, png_upload):
        assert validate_upload(png_upload, "output", allowed_types=ALLOWED, max_bytes=10_000) is png_upload

    def test_missing_upload(self):
        with pytest.raises(ValidationError, match="reference image is required") as exc_info:
            validate_upload(None, "reference", allowed_types=ALLOWED, max_bytes=10_000)
        assert exc_info.value.field == "reference_image"

    def test_empty_upload(self):
        with pytest.raises(ValidationError, match="empty"):
            validate_upload(ImageUpload("a.png", "image/png", b""), "output", allowed_types=ALLOWED, max_bytes=10)

    def test_oversize_upload(self, png_upload):
        with pytest.raises(ValidationError, match="too large"):
            validate_upload(png_upload, "output", allowed_types=ALLOWED, max_bytes=png_upload.size - 1)

    def test_size_at_ceiling_allowed(self, png_upload):
        validate_upload(png_upload, "output", allowed_types=ALLOWED, max_bytes=png_upload.size)

    def test_disallowed_declared_type(self, png_upload):
        upload = ImageUpload("a.bmp", "image/bmp", png_upload.data)
        with pytest.raises(ValidationError, match="must be one of"):
            validate_upload(upload, "output", allowed_types=ALLOWED, max_bytes=10_000)

    def test_content_type_parameters_ignored(self, png_upload):
        upload = ImageUpload("a.png", "image/PNG; charset=binary", png_upload.data)
        validate_upload(upload, "output", allowed_types=ALLOWED, max_bytes=10_000)

    def test_spoofed_content_rejected(self):
        upload = ImageUpload("evil.png", "image/png", b"<script>alert(1)</script>")
        with pytest.raises(ValidationError, match="not a valid PNG"):
            validate_upload(upload, "output", allowed_types=ALLOWED, max_bytes=10_000)

    def test_oversized_dimensions_rejected(self, png_upload, monkeypatch):
        """A small file declaring too many pixels is a validation error."""
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
        with pytest.raises(ValidationError, match="dimensions are too large") as exc_info:
            validate_upload(png_upload, "output", allowed_types=ALLOWED, max_bytes=10_000)
        assert exc_info.value.field == "output_image"

    def test_detected_type_must_be_allowed(self, gif_upload):
        """A real image of a format outside the allow-list is rejected."""
        upload = ImageUpload("looks.png", "image/png", gif_upload.data)
        with pytest.raises(ValidationError):
            validate_upload(
                upload, "output", allowed_types={"image/png", "image/jpeg"}, max_bytes=10_000
            )


class TestValidateSlotIntent:
    """Tests for validate_slot_intent."""

    def test_unchanged_and_replace_allowed(self, png_upload):
        validate_slot_intent(UNCHANGED, "output")
        validate_slot_intent(Replace(png_upload), "reference")

    def test_remove_rejected(self):
        with pytest.raises(InvalidSlotTransition) as exc_info:
            validate_slot_intent(REMOVE, "output")
        assert exc_info.value.slot == "output"

    def test_non_intent_rejected(self):
        with pytest.raises(ValidationError, match="Invalid output image intent"):
            validate_slot_intent("keep", "output")
