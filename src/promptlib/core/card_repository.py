"""SQLite persistence for prompt cards."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import NotFound, PersistenceError, ValidationError
from .models import Card, CardFields, FilterSpec, SortOrder, UPDATABLE_FIELDS

logger = logging.getLogger(__name__)

# Columns the repository accepts in ``update``; ``id`` and ``created_at`` are
# immutable once the row exists.
WRITABLE_COLUMNS = UPDATABLE_FIELDS | {"output_image_path", "reference_image_path"}
DISTINCT_COLUMNS = frozenset({"client", "model"})


def _format_timestamp(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical ORDER BY identical to chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_card(row: sqlite3.Row) -> Card:
    return Card(
        id=row["id"],
        output_image_path=row["output_image_path"],
        reference_image_path=row["reference_image_path"],
        prompt=row["prompt"],
        metadata=row["metadata"],
        client=row["client"],
        model=row["model"],
        seed=row["seed"],
        llm_used=row["llm_used"],
        notes=row["notes"],
        is_favorited=bool(row["is_favorited"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class CardRepository:
    """Manage prompt card records in SQLite.

    Each call opens its own connection with a bounded busy timeout, so a
    locked database surfaces as :class:`PersistenceError` instead of
    blocking forever.  Every ``sqlite3.Error`` is wrapped the same way.
    """

    def __init__(self, db_path: Path, timeout: float = 10.0):
        """Initialize the card repository.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized card repository at {self.db_path}")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open card database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Card database error: {e}") from e
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS prompt_cards (
                    id TEXT PRIMARY KEY,
                    output_image_path TEXT NOT NULL CHECK (output_image_path <> ''),
                    reference_image_path TEXT NOT NULL CHECK (reference_image_path <> ''),
                    prompt TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    client TEXT NOT NULL,
                    model TEXT NOT NULL,
                    llm_used TEXT,
                    seed TEXT NOT NULL,
                    notes TEXT,
                    is_favorited INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_prompt_cards_created_at
                ON prompt_cards(created_at DESC)
                """)

    def insert(
        self,
        fields: CardFields,
        output_image_path: str,
        reference_image_path: str,
        *,
        created_at: datetime | None = None,
    ) -> Card:
        """Insert a new card record.

        Args:
            fields: Validated card fields
            output_image_path: Stored path of the output image
            reference_image_path: Stored path of the reference image
            created_at: Creation time; defaults to now (UTC)

        Returns:
            The persisted card
        """
        card_id = str(uuid.uuid4())
        timestamp = _format_timestamp(created_at or datetime.now(timezone.utc))
        values = fields.as_values()

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO prompt_cards (
                    id, output_image_path, reference_image_path, prompt, metadata,
                    client, model, llm_used, seed, notes, is_favorited, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    card_id,
                    output_image_path,
                    reference_image_path,
                    values["prompt"],
                    values["metadata"],
                    values["client"],
                    values["model"],
                    values["llm_used"],
                    values["seed"],
                    values["notes"],
                    int(values["is_favorited"]),
                    timestamp,
                ),
            )

        logger.info(f"Inserted card {card_id}")
        return self.get_by_id(card_id)

    def get_by_id(self, card_id: str) -> Card:
        """Fetch a card by id.

        Raises:
            NotFound: If no card has this id
        """
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM prompt_cards WHERE id = ?", (card_id,)).fetchone()
        if row is None:
            raise NotFound(card_id)
        return _row_to_card(row)

    def update(self, card_id: str, values: Mapping[str, Any]) -> Card:
        """Update columns of an existing card in a single statement.

        Args:
            card_id: Card to update
            values: Column -> new value; must be a subset of the writable columns

        Returns:
            The card as stored after the update

        Raises:
            NotFound: If no card has this id
        """
        unknown = set(values) - WRITABLE_COLUMNS
        if unknown:
            raise ValidationError(f"Cannot update column(s): {', '.join(sorted(unknown))}")

        if not values:
            return self.get_by_id(card_id)

        columns = sorted(values)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params = [
            int(values[column]) if column == "is_favorited" else values[column]
            for column in columns
        ]

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE prompt_cards SET {assignments} WHERE id = ?",
                (*params, card_id),
            )
            if cursor.rowcount == 0:
                raise NotFound(card_id)

        logger.debug(f"Updated card {card_id}: {', '.join(columns)}")
        return self.get_by_id(card_id)

    def set_favorite(self, card_id: str, value: bool) -> Card:
        """Set the favorite flag of a card."""
        return self.update(card_id, {"is_favorited": bool(value)})

    def delete(self, card_id: str) -> None:
        """Delete a card record.

        Raises:
            NotFound: If no card has this id
        """
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM prompt_cards WHERE id = ?", (card_id,))
            if cursor.rowcount == 0:
                raise NotFound(card_id)
        logger.info(f"Deleted card record {card_id}")

    def list(self, spec: FilterSpec) -> list[Card]:
        """Return the cards matching ``spec`` in the requested order.

        Ties on ``created_at`` are broken by ``id`` ascending so results are
        deterministic.
        """
        clauses: list[str] = []
        params: list[Any] = []

        if spec.client is not None:
            clauses.append("client = ?")
            params.append(spec.client)
        if spec.model is not None:
            clauses.append("model = ?")
            params.append(spec.model)
        if spec.favorites_only:
            clauses.append("is_favorited = 1")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "ASC" if spec.sort == SortOrder.OLDEST else "DESC"

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM prompt_cards {where} ORDER BY created_at {direction}, id ASC",
                params,
            ).fetchall()
        return [_row_to_card(row) for row in rows]

    def distinct_values(self, column: str) -> list[str]:
        """Return the sorted distinct values of ``client`` or ``model``."""
        if column not in DISTINCT_COLUMNS:
            raise ValidationError(f"Cannot list distinct values of {column!r}")

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT {column} FROM prompt_cards ORDER BY {column} ASC"
            ).fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        """Return the total number of cards."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM prompt_cards").fetchone()
        return row[0] if row else 0
