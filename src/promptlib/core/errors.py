"""Exception taxonomy for the card lifecycle engine.

Every failure the core can report is a subclass of :class:`PromptLibError`,
so callers (the HTTP layer in particular) can map errors to responses with a
single ``except`` clause and a lookup on the concrete type.

- :class:`ValidationError` - bad input; nothing was touched.
- :class:`InvalidSlotTransition` - a slot intent that would leave a required
  image slot empty.
- :class:`NotFound` - the targeted card does not exist.
- :class:`AttachmentIOError` - the attachment store failed.
- :class:`PersistenceError` - the card repository failed.
"""

from __future__ import annotations


class PromptLibError(Exception):
    """Base class for all Prompt Library errors."""


class ValidationError(PromptLibError):
    """User-facing validation error.

    Raised before any storage or repository call is made, so the caller can
    correct the input and retry.  The message is intended to be displayed
    directly to the user.

    Attributes:
        field: Name of the offending field, when the error concerns one.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidSlotTransition(ValidationError):
    """A slot intent that cannot be applied to a required image slot."""

    def __init__(self, slot: str, message: str | None = None) -> None:
        super().__init__(
            message or f"The {slot} image cannot be removed without a replacement",
            field=f"{slot}_image",
        )
        self.slot = slot


class NotFound(PromptLibError):
    """The requested card does not exist."""

    def __init__(self, card_id: str) -> None:
        super().__init__(f"Card not found: {card_id}")
        self.card_id = card_id


class AttachmentIOError(PromptLibError):
    """The attachment store failed to put, delete, or sign an object."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class PersistenceError(PromptLibError):
    """The card repository failed to read or write a record."""
