"""Translate raw list parameters into a :class:`FilterSpec`.

Selection UIs send ``"all"`` (or nothing) when a dropdown is not
restricting the list.  Both collapse to ``None`` here, so the repository
only ever sees real values.
"""

from __future__ import annotations

from .errors import ValidationError
from .models import FilterSpec, SortOrder

ALL_SENTINEL = "all"


def _normalize_choice(value: str | None) -> str | None:
    if value is None:
        return None
    if not value.strip() or value.strip().lower() == ALL_SENTINEL:
        return None
    return value


def parse_sort(value: str | SortOrder | None) -> SortOrder:
    """Parse a sort order, defaulting to newest first.

    Raises:
        ValidationError: For an unrecognised sort value
    """
    if value is None or value == "":
        return SortOrder.NEWEST
    if isinstance(value, SortOrder):
        return value
    try:
        return SortOrder(value.strip().lower())
    except ValueError as e:
        raise ValidationError(
            f"sort must be 'newest' or 'oldest', got {value!r}", field="sort"
        ) from e


def build_filter_spec(
    client: str | None = None,
    model: str | None = None,
    favorites_only: bool = False,
    sort: str | SortOrder | None = None,
) -> FilterSpec:
    """Build a filter specification from request parameters.

    Args:
        client: Exact client to match; ``None``, blank or ``"all"`` for any
        model: Exact model to match; ``None``, blank or ``"all"`` for any
        favorites_only: Keep only favorited cards
        sort: ``"newest"`` (default) or ``"oldest"``

    Returns:
        The normalised filter specification
    """
    return FilterSpec(
        client=_normalize_choice(client),
        model=_normalize_choice(model),
        favorites_only=bool(favorites_only),
        sort=parse_sort(sort),
    )
