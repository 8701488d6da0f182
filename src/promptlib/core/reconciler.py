"""Attachment reconciliation for the two image slots of a card.

A mutation asks for one intent per slot (keep, replace, or remove).  The
reconciler turns that request into an ordered set of store operations and
the image paths the record should hold afterwards.

Ordering
--------
1. :meth:`AttachmentReconciler.plan` validates both intents and picks fresh
   object names.  No I/O happens here, so an invalid request leaves the
   store and the record untouched.
2. :meth:`AttachmentReconciler.apply` uploads every replacement.  If any
   upload fails, objects already uploaded by the same call are deleted and
   :class:`~promptlib.core.errors.AttachmentIOError` is raised; the caller
   must not write the record.
3. The caller writes the record with :attr:`ReconcileResult.new_paths`.
4. Only after that write succeeds are :attr:`ReconcileResult.superseded`
   objects deleted.  If the write fails, :meth:`AttachmentReconciler.rollback`
   removes the new uploads instead.

A crash between any two steps therefore leaves at worst an unreferenced
object in the store, never a record pointing at a missing one.
"""

from __future__ import annotations

import logging
import mimetypes
import re
import secrets
import time
from dataclasses import dataclass, field

from .attachment_store import AttachmentStore
from .cleanup import delete_quietly
from .errors import AttachmentIOError, InvalidSlotTransition
from .models import (
    OUTPUT_SLOT,
    REFERENCE_SLOT,
    ImageUpload,
    Replace,
    SlotIntent,
)
from .validation import validate_slot_intent

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,10}$")


def _extension_for(filename: str, content_type: str) -> str:
    _, dot, suffix = (filename or "").rpartition(".")
    suffix = suffix.lower() if dot else ""
    media_type = (content_type or "").split(";")[0].strip().lower()

    # With a known content type the filename may only pick among its extensions.
    if media_type:
        allowed = [ext.lstrip(".") for ext in mimetypes.guess_all_extensions(media_type)]
        if suffix in allowed:
            return suffix
        guessed = mimetypes.guess_extension(media_type)
        if guessed:
            return guessed.lstrip(".")
        return "bin"

    if _EXTENSION_RE.match(suffix):
        return suffix
    return "bin"


def generate_object_name(
    slot: str,
    filename: str,
    content_type: str = "",
    *,
    timestamp_ms: int | None = None,
    token: str | None = None,
) -> str:
    """Build a unique object key for an uploaded image.

    Keys look like ``output/1718000000000-3f9a1c0de2b4a7e1.png``: the slot
    folder, a millisecond timestamp, a random token, and the original file
    extension.  Nothing is derived from the object being replaced.

    Args:
        slot: ``output`` or ``reference``
        filename: Original client-side filename (used for the extension)
        content_type: MIME type, used when the filename has no extension
        timestamp_ms: Override the timestamp (tests)
        token: Override the random token (tests)
    """
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    if token is None:
        token = secrets.token_hex(8)
    return f"{slot}/{timestamp_ms}-{token}.{_extension_for(filename, content_type)}"


@dataclass(frozen=True)
class SlotPlan:
    """What will happen to one slot.

    ``upload`` and ``new_key`` are set only when the slot is being replaced.
    ``current_path`` is ``None`` for a card that does not exist yet.
    """

    slot: str
    current_path: str | None
    upload: ImageUpload | None = None
    new_key: str | None = None

    @property
    def replaces(self) -> bool:
        return self.upload is not None


@dataclass(frozen=True)
class ReconcilePlan:
    """Per-slot plans for the output and reference images."""

    output: SlotPlan
    reference: SlotPlan

    @property
    def slots(self) -> tuple[SlotPlan, SlotPlan]:
        return (self.output, self.reference)

    @property
    def is_noop(self) -> bool:
        return not any(slot.replaces for slot in self.slots)


@dataclass
class ReconcileResult:
    """Outcome of applying a plan.

    Attributes:
        output_path: Path the record's output slot should hold
        reference_path: Path the record's reference slot should hold
        uploaded: Objects created by this call (rolled back on write failure)
        superseded: Objects to delete once the record write has committed
    """

    output_path: str
    reference_path: str
    uploaded: list[str] = field(default_factory=list)
    superseded: list[str] = field(default_factory=list)

    @property
    def new_paths(self) -> dict[str, str]:
        """Record columns for the resulting image paths."""
        return {
            "output_image_path": self.output_path,
            "reference_image_path": self.reference_path,
        }


class AttachmentReconciler:
    """Plan and execute the store operations behind a slot change.

    Args:
        store: Attachment store holding card images
    """

    def __init__(self, store: AttachmentStore) -> None:
        self.store = store

    def _plan_slot(self, slot: str, current_path: str | None, intent: SlotIntent) -> SlotPlan:
        validate_slot_intent(intent, slot)
        if not isinstance(intent, Replace):
            return SlotPlan(slot=slot, current_path=current_path)

        new_key = generate_object_name(slot, intent.upload.filename, intent.upload.content_type)
        while new_key == current_path:
            new_key = generate_object_name(
                slot, intent.upload.filename, intent.upload.content_type
            )
        return SlotPlan(slot=slot, current_path=current_path, upload=intent.upload, new_key=new_key)

    def plan(
        self,
        current_output: str | None,
        current_reference: str | None,
        output_intent: SlotIntent,
        reference_intent: SlotIntent,
    ) -> ReconcilePlan:
        """Validate intents and decide the operations for both slots.

        Performs no I/O.  A slot without a current path must be replaced.

        Raises:
            InvalidSlotTransition: If an intent would leave a slot empty
        """
        output = self._plan_slot(OUTPUT_SLOT, current_output, output_intent)
        reference = self._plan_slot(REFERENCE_SLOT, current_reference, reference_intent)

        for slot_plan in (output, reference):
            if slot_plan.current_path is None and not slot_plan.replaces:
                raise InvalidSlotTransition(
                    slot_plan.slot, f"The {slot_plan.slot} image is required"
                )

        return ReconcilePlan(output=output, reference=reference)

    def apply(self, plan: ReconcilePlan) -> ReconcileResult:
        """Upload every replacement in ``plan``.

        Uploads run output first, then reference.  On the first failure all
        objects uploaded so far by this call are deleted (best effort) and
        the error is re-raised, so the caller never sees a half-applied plan.

        Raises:
            AttachmentIOError: If any upload fails
        """
        uploaded: list[str] = []
        resolved: dict[str, str] = {}

        for slot_plan in plan.slots:
            if not slot_plan.replaces:
                resolved[slot_plan.slot] = slot_plan.current_path
                continue

            try:
                path = self.store.put(
                    slot_plan.new_key, slot_plan.upload.data, slot_plan.upload.content_type
                )
            except (AttachmentIOError, OSError) as e:
                logger.error(f"Upload of {slot_plan.slot} image failed: {e}")
                for orphan in uploaded:
                    delete_quietly(self.store, orphan, "partially uploaded")
                if isinstance(e, AttachmentIOError):
                    raise
                raise AttachmentIOError(
                    f"Failed to upload {slot_plan.slot} image: {e}", path=slot_plan.new_key
                ) from e

            uploaded.append(path)
            resolved[slot_plan.slot] = path

        superseded = [
            slot_plan.current_path
            for slot_plan in plan.slots
            if slot_plan.replaces and slot_plan.current_path
        ]

        return ReconcileResult(
            output_path=resolved[OUTPUT_SLOT],
            reference_path=resolved[REFERENCE_SLOT],
            uploaded=uploaded,
            superseded=superseded,
        )

    def rollback(self, result: ReconcileResult) -> None:
        """Delete the objects uploaded by :meth:`apply` (best effort)."""
        for path in result.uploaded:
            delete_quietly(self.store, path, "rolled back")
