"""Card lifecycle orchestration.

:class:`CardService` is the single entry point the HTTP layer uses to
create, update, delete, favorite and list prompt cards.  It combines the
:class:`~promptlib.core.reconciler.AttachmentReconciler` with the
:class:`~promptlib.core.card_repository.CardRepository` so that a card
record and its two images always move together:

- **create** uploads both images, then inserts the record.  A failed insert
  deletes the fresh uploads before the error is raised.
- **update** uploads replacements, writes the record once, and only then
  queues deletion of the images it superseded.  A failed write rolls the
  new uploads back and leaves the original record as it was.
- **delete** removes the record first and then queues deletion of both
  images.  A failed image deletion is logged and leaves an orphaned object,
  which is harmless because no record refers to it.

Validation always runs before the first store call, so a
:class:`~promptlib.core.errors.ValidationError` never has side effects.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .attachment_store import AttachmentStore
from .card_repository import CardRepository
from .cleanup import CleanupQueue
from .config import DEFAULT_ALLOWED_IMAGE_TYPES, DEFAULT_MAX_UPLOAD_BYTES
from .errors import PersistenceError
from .models import (
    OUTPUT_SLOT,
    REFERENCE_SLOT,
    UNCHANGED,
    Card,
    CardFields,
    FilterOptions,
    FilterSpec,
    ImageUpload,
    Replace,
    SlotIntent,
)
from .reconciler import AttachmentReconciler
from .validation import (
    validate_card_fields,
    validate_field_updates,
    validate_upload,
)

logger = logging.getLogger(__name__)


class CardService:
    """Create, update, delete and query prompt cards.

    Args:
        repository: Card record persistence
        store: Attachment store holding card images
        cleanup: Queue for deferred deletions; one is created if omitted
        allowed_types: Accepted image MIME types
        max_upload_bytes: Maximum accepted image size
        url_ttl_seconds: Lifetime of issued image URLs
    """

    def __init__(
        self,
        repository: CardRepository,
        store: AttachmentStore,
        cleanup: CleanupQueue | None = None,
        *,
        allowed_types=DEFAULT_ALLOWED_IMAGE_TYPES,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        url_ttl_seconds: int = 3600,
    ) -> None:
        self.repository = repository
        self.store = store
        self.cleanup = cleanup or CleanupQueue(store)
        self.reconciler = AttachmentReconciler(store)
        self.allowed_types = frozenset(allowed_types)
        self.max_upload_bytes = max_upload_bytes
        self.url_ttl_seconds = url_ttl_seconds

    @classmethod
    def from_config(cls, config, store: AttachmentStore) -> CardService:
        """Build a service from a :class:`~promptlib.core.config.PromptLibConfig`."""
        return cls(
            CardRepository(config.database_path, timeout=config.db_timeout_seconds),
            store,
            CleanupQueue(store, max_workers=config.cleanup_workers),
            allowed_types=config.allowed_image_types,
            max_upload_bytes=config.max_upload_bytes,
            url_ttl_seconds=config.signed_url_ttl_seconds,
        )

    def _check_upload(self, upload: ImageUpload | None, slot: str) -> ImageUpload:
        return validate_upload(
            upload,
            slot,
            allowed_types=self.allowed_types,
            max_bytes=self.max_upload_bytes,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_card(
        self,
        fields: CardFields,
        output_file: ImageUpload | None,
        reference_file: ImageUpload | None,
    ) -> Card:
        """Create a card from its fields and both images.

        Raises:
            ValidationError: For missing/blank fields or a missing or
                unacceptable image; nothing is uploaded
            AttachmentIOError: If an upload fails; no record is written
            PersistenceError: If the insert fails; the uploads are removed
        """
        cleaned = validate_card_fields(fields)
        output_file = self._check_upload(output_file, OUTPUT_SLOT)
        reference_file = self._check_upload(reference_file, REFERENCE_SLOT)

        plan = self.reconciler.plan(None, None, Replace(output_file), Replace(reference_file))
        result = self.reconciler.apply(plan)

        try:
            card = self.repository.insert(cleaned, result.output_path, result.reference_path)
        except PersistenceError:
            logger.error("Card insert failed; removing freshly uploaded images")
            self.reconciler.rollback(result)
            raise

        logger.info(f"Created card {card.id} (client={card.client}, model={card.model})")
        return card

    def update_card(
        self,
        card_id: str,
        field_updates: Mapping[str, Any] | None = None,
        output_intent: SlotIntent = UNCHANGED,
        reference_intent: SlotIntent = UNCHANGED,
    ) -> Card:
        """Apply field changes and per-slot image intents to a card.

        Raises:
            NotFound: If the card does not exist
            ValidationError: For bad field values or slot intents; nothing changes
            AttachmentIOError: If an upload fails; the record is unchanged
            PersistenceError: If the write fails; the record is unchanged and
                new uploads are removed
        """
        current = self.repository.get_by_id(card_id)

        updates = validate_field_updates(field_updates or {})
        for slot, intent in ((OUTPUT_SLOT, output_intent), (REFERENCE_SLOT, reference_intent)):
            if isinstance(intent, Replace):
                self._check_upload(intent.upload, slot)

        plan = self.reconciler.plan(
            current.output_image_path,
            current.reference_image_path,
            output_intent,
            reference_intent,
        )

        if plan.is_noop and not updates:
            logger.debug(f"Update of card {card_id} changes nothing")
            return current

        result = self.reconciler.apply(plan)

        try:
            card = self.repository.update(card_id, {**updates, **result.new_paths})
        except Exception:
            # NotFound here means the card was deleted concurrently; the new
            # uploads are unreferenced either way.
            logger.error(f"Update of card {card_id} failed; removing new uploads")
            self.reconciler.rollback(result)
            raise

        if result.superseded:
            self.cleanup.submit(result.superseded, "superseded")

        logger.info(
            f"Updated card {card_id} "
            f"(fields={sorted(updates) or '-'}, images replaced={len(result.uploaded)})"
        )
        return card

    def delete_card(self, card_id: str) -> None:
        """Delete a card, then retire both of its images in the background.

        Raises:
            NotFound: If the card does not exist
            PersistenceError: If the record cannot be deleted; images are kept
        """
        card = self.repository.get_by_id(card_id)
        self.repository.delete(card_id)
        self.cleanup.submit([card.output_image_path, card.reference_image_path], "retired")
        logger.info(f"Deleted card {card_id}")

    def set_favorite(self, card_id: str, value: bool) -> Card:
        """Set the favorite flag; calling it twice with the same value is harmless.

        Raises:
            NotFound: If the card does not exist
        """
        card = self.repository.set_favorite(card_id, value)
        logger.debug(f"Card {card_id} favorited={card.is_favorited}")
        return card

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_card(self, card_id: str) -> Card:
        """Return a card by id, raising ``NotFound`` if absent."""
        return self.repository.get_by_id(card_id)

    def list_cards(self, filter_spec: FilterSpec | None = None) -> list[Card]:
        """Return cards matching ``filter_spec`` (all cards, newest first, by default)."""
        return self.repository.list(filter_spec or FilterSpec())

    def filter_options(self) -> FilterOptions:
        """Return the distinct clients and models for selection UIs."""
        return FilterOptions(
            clients=self.repository.distinct_values("client"),
            models=self.repository.distinct_values("model"),
        )

    def image_urls(self, card: Card) -> tuple[str, str]:
        """Issue signed read URLs for the card's output and reference images.

        Raises:
            AttachmentIOError: If either image is missing from the store
        """
        return (
            self.store.signed_read_url(card.output_image_path, self.url_ttl_seconds),
            self.store.signed_read_url(card.reference_image_path, self.url_ttl_seconds),
        )

    def close(self) -> None:
        """Wait for queued deletions and stop the cleanup workers."""
        self.cleanup.shutdown()
