"""JSON and CSV projections of listed cards.

Exports carry no state of their own; they are a rendering of whatever
:meth:`~promptlib.core.lifecycle.CardService.list_cards` returned.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Sequence
from datetime import date

from .errors import ValidationError
from .models import Card

CSV_COLUMNS: tuple[str, ...] = ("id", "prompt", "client", "model", "seed", "created_at")
EXPORT_FORMATS: dict[str, str] = {
    "json": "application/json",
    "csv": "text/csv",
}


def select_cards(cards: Iterable[Card], ids: Sequence[str] | None) -> list[Card]:
    """Keep only cards whose id is in ``ids``, preserving list order.

    ``None`` or an empty selection keeps every card.  Unknown ids are ignored.
    """
    if not ids:
        return list(cards)
    wanted = set(ids)
    return [card for card in cards if card.id in wanted]


def cards_to_json(cards: Iterable[Card]) -> str:
    """Render cards as a JSON array of full records."""
    return json.dumps([card.to_dict() for card in cards], indent=2)


def cards_to_csv(cards: Iterable[Card]) -> str:
    """Render cards as CSV with a fixed column order and every field quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for card in cards:
        row = card.to_dict()
        writer.writerow([row[column] for column in CSV_COLUMNS])
    return buffer.getvalue()


def export_filename(fmt: str, today: date | None = None) -> str:
    """Return the download filename, e.g. ``prompt-cards-2024-06-01.csv``."""
    today = today or date.today()
    return f"prompt-cards-{today.isoformat()}.{fmt}"


def export_cards(cards: Iterable[Card], fmt: str) -> str:
    """Render cards in ``fmt`` (``json`` or ``csv``).

    Raises:
        ValidationError: For an unsupported format
    """
    fmt = (fmt or "").lower()
    if fmt == "json":
        return cards_to_json(cards)
    if fmt == "csv":
        return cards_to_csv(cards)
    raise ValidationError(
        f"format must be one of: {', '.join(sorted(EXPORT_FORMATS))}", field="format"
    )
