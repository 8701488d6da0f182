"""Data models for prompt cards and the inputs that mutate them."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

REQUIRED_TEXT_FIELDS: tuple[str, ...] = ("prompt", "metadata", "client", "model", "seed")
OPTIONAL_TEXT_FIELDS: tuple[str, ...] = ("llm_used", "notes")
UPDATABLE_FIELDS: frozenset[str] = frozenset(
    REQUIRED_TEXT_FIELDS + OPTIONAL_TEXT_FIELDS + ("is_favorited",)
)

OUTPUT_SLOT = "output"
REFERENCE_SLOT = "reference"
SLOTS: tuple[str, str] = (OUTPUT_SLOT, REFERENCE_SLOT)


@dataclass(frozen=True)
class Card:
    """A persisted prompt card.

    Both image paths are mandatory for the whole lifetime of the card; the
    lifecycle engine never writes a record with either slot empty.
    """

    id: str
    output_image_path: str
    reference_image_path: str
    prompt: str
    metadata: str
    client: str
    model: str
    seed: str
    created_at: datetime
    llm_used: str | None = None
    notes: str | None = None
    is_favorited: bool = False

    def image_path(self, slot: str) -> str:
        """Return the stored object path for ``slot`` (``output`` or ``reference``)."""
        if slot == OUTPUT_SLOT:
            return self.output_image_path
        if slot == REFERENCE_SLOT:
            return self.reference_image_path
        raise KeyError(slot)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the card to a JSON-friendly dictionary."""
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class CardFields:
    """Text fields and flags supplied when creating a card."""

    prompt: str
    metadata: str
    client: str
    model: str
    seed: str
    llm_used: str | None = None
    notes: str | None = None
    is_favorited: bool = False

    def as_values(self) -> dict[str, Any]:
        """Return the fields as a column -> value mapping."""
        return asdict(self)


@dataclass(frozen=True)
class ImageUpload:
    """An image file supplied by the caller, fully read into memory."""

    filename: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Unchanged:
    """Keep the slot's current image."""


@dataclass(frozen=True)
class Replace:
    """Upload ``upload`` and point the slot at it, retiring the old object."""

    upload: ImageUpload


@dataclass(frozen=True)
class Remove:
    """Drop the slot's image without a replacement.

    Never valid for a required slot; kept so callers can express the state
    and receive a precise validation error.
    """


SlotIntent = Union[Unchanged, Replace, Remove]

UNCHANGED = Unchanged()
REMOVE = Remove()


class SortOrder(str, Enum):
    """Ordering of listed cards by creation time."""

    NEWEST = "newest"
    OLDEST = "oldest"


@dataclass(frozen=True)
class FilterSpec:
    """Restrictions applied when listing cards.

    ``None`` for ``client`` or ``model`` means no restriction.  Use
    :func:`promptlib.core.query.build_filter_spec` to build one from raw
    request parameters.
    """

    client: str | None = None
    model: str | None = None
    favorites_only: bool = False
    sort: SortOrder = SortOrder.NEWEST


@dataclass(frozen=True)
class FilterOptions:
    """Distinct values available for the client and model filters."""

    clients: list[str] = field(default_factory=list)
    models: list[str] = field(default_factory=list)
