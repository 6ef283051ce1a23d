"""Recipe store collaborators and the upsert persister.

Rows are keyed by the natural identifier metadata.source_url: re-ingesting a
page that is already stored updates the row instead of duplicating it.

Stores:
- InMemoryRecipeStore: process-local, used by tests and the CLI default
- SqliteRecipeStore: single-file SQLite (stdlib sqlite3) with a unique
  expression index on json_extract(metadata, '$.source_url')
"""

import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from src.models.models import PersistedRow, RecipeRecord
from src.utils.errors import PersistenceConflict
from src.utils.logger import logger


def record_to_row_fields(record: RecipeRecord) -> dict:
    """Map a validated recipe onto store row fields (everything except id/timestamps)."""
    return {
        "title": record.title,
        "description": record.description,
        "cuisine": record.cuisine or "international",
        "ingredients": [ingredient.model_dump(exclude_none=True) for ingredient in record.ingredients],
        "instructions": [step.model_dump() for step in record.instructions],
        "nutritional_info": record.nutrition.model_dump(exclude_none=True) if record.nutrition else None,
        "metadata": {
            "servings": record.servings,
            "total_time_minutes": record.total_time_minutes,
            "difficulty": record.difficulty,
            "image_url": record.image,
            "source_url": record.source,
        },
    }


class RecipeStore(ABC):
    """Persistence contract used by the upsert persister."""

    @abstractmethod
    def find_by_source(self, source_url: str) -> Optional[PersistedRow]:
        """Exact match on metadata.source_url."""

    @abstractmethod
    def get(self, row_id: str) -> Optional[PersistedRow]:
        """Fetch a row by id."""

    @abstractmethod
    def insert(self, row: PersistedRow) -> PersistedRow:
        """Insert a new row.

        Raises:
            PersistenceConflict: If a row with the same source already exists.
        """

    @abstractmethod
    def update(self, row: PersistedRow) -> PersistedRow:
        """Replace an existing row (matched by id).

        Raises:
            PersistenceConflict: If the row no longer exists or the write is rejected.
        """

    @abstractmethod
    def list_rows(self) -> list[PersistedRow]:
        """All rows, oldest first."""


class InMemoryRecipeStore(RecipeStore):
    """Dict-backed store guarded by a lock."""

    def __init__(self) -> None:
        self._rows: dict[str, PersistedRow] = {}
        self._lock = threading.Lock()

    def find_by_source(self, source_url: str) -> Optional[PersistedRow]:
        with self._lock:
            return next((row for row in self._rows.values() if row.source_url == source_url), None)

    def get(self, row_id: str) -> Optional[PersistedRow]:
        with self._lock:
            return self._rows.get(row_id)

    def insert(self, row: PersistedRow) -> PersistedRow:
        with self._lock:
            if any(existing.source_url == row.source_url for existing in self._rows.values()):
                raise PersistenceConflict(f"Row for {row.source_url} already exists")
            self._rows[row.id] = row
        return row

    def update(self, row: PersistedRow) -> PersistedRow:
        with self._lock:
            if row.id not in self._rows:
                raise PersistenceConflict(f"Row {row.id} no longer exists")
            self._rows[row.id] = row
        return row

    def list_rows(self) -> list[PersistedRow]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda row: row.created_at)


class SqliteRecipeStore(RecipeStore):
    """SQLite-backed store. JSON columns hold ingredients, instructions, nutrition and metadata."""

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS recipes (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            cuisine TEXT NOT NULL,
            ingredients TEXT NOT NULL,
            instructions TEXT NOT NULL,
            nutritional_info TEXT,
            metadata TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE UNIQUE INDEX IF NOT EXISTS idx_recipes_source_url
            ON recipes (json_extract(metadata, '$.source_url'));
    """
    _COLUMNS = (
        "id, title, description, cuisine, ingredients, instructions, "
        "nutritional_info, metadata, created_at, updated_at"
    )

    def __init__(self, db_file: str = ":memory:") -> None:
        self.db_file = db_file
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_file, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.executescript(self._SCHEMA)
        logger.debug(f"SQLite recipe store ready ({db_file})")

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _to_params(row: PersistedRow) -> tuple:
        return (
            row.id,
            row.title,
            row.description,
            row.cuisine,
            json.dumps(row.ingredients),
            json.dumps(row.instructions),
            json.dumps(row.nutritional_info) if row.nutritional_info is not None else None,
            json.dumps(row.metadata),
            row.created_at.isoformat(),
            row.updated_at.isoformat(),
        )

    @staticmethod
    def _from_row(raw: sqlite3.Row) -> PersistedRow:
        return PersistedRow(
            id=raw["id"],
            title=raw["title"],
            description=raw["description"],
            cuisine=raw["cuisine"],
            ingredients=json.loads(raw["ingredients"]),
            instructions=json.loads(raw["instructions"]),
            nutritional_info=json.loads(raw["nutritional_info"]) if raw["nutritional_info"] else None,
            metadata=json.loads(raw["metadata"]),
            created_at=datetime.fromisoformat(raw["created_at"]),
            updated_at=datetime.fromisoformat(raw["updated_at"]),
        )

    def _fetch_one(self, sql: str, params: tuple) -> Optional[PersistedRow]:
        with self._lock:
            raw = self._conn.execute(sql, params).fetchone()
        return self._from_row(raw) if raw else None

    def find_by_source(self, source_url: str) -> Optional[PersistedRow]:
        return self._fetch_one(
            f"SELECT {self._COLUMNS} FROM recipes WHERE json_extract(metadata, '$.source_url') = ?",
            (source_url,),
        )

    def get(self, row_id: str) -> Optional[PersistedRow]:
        return self._fetch_one(f"SELECT {self._COLUMNS} FROM recipes WHERE id = ?", (row_id,))

    def insert(self, row: PersistedRow) -> PersistedRow:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    f"INSERT INTO recipes ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._to_params(row),
                )
        except sqlite3.IntegrityError as e:
            raise PersistenceConflict(f"Insert rejected for {row.source_url}: {e}") from e
        return row

    def update(self, row: PersistedRow) -> PersistedRow:
        params = self._to_params(row)
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "UPDATE recipes SET title = ?, description = ?, cuisine = ?, ingredients = ?, "
                    "instructions = ?, nutritional_info = ?, metadata = ?, updated_at = ? WHERE id = ?",
                    params[1:8] + (params[9], row.id),
                )
        except sqlite3.IntegrityError as e:
            raise PersistenceConflict(f"Update rejected for {row.source_url}: {e}") from e
        if cursor.rowcount == 0:
            raise PersistenceConflict(f"Row {row.id} no longer exists")
        return row

    def list_rows(self) -> list[PersistedRow]:
        with self._lock:
            rows = self._conn.execute(f"SELECT {self._COLUMNS} FROM recipes ORDER BY created_at").fetchall()
        return [self._from_row(raw) for raw in rows]


def upsert_recipes(store: RecipeStore, records: list[RecipeRecord]) -> list[PersistedRow]:
    """Insert or update one row per record, keyed by source URL.

    On update, metadata values missing from the new record (e.g. an image the
    new result lacks) keep their stored value.

    Args:
        store: Store collaborator.
        records: Validated recipes.

    Returns:
        One persisted row per input record, in input order.

    Raises:
        PersistenceConflict: Propagated from the store (e.g. concurrent insert race).
    """
    rows = []
    inserted = updated = 0
    for record in records:
        fields = record_to_row_fields(record)
        existing = store.find_by_source(record.source)
        if existing:
            metadata = dict(existing.metadata)
            metadata.update({key: value for key, value in fields["metadata"].items() if value is not None})
            row = existing.model_copy(
                update={**fields, "metadata": metadata, "updated_at": datetime.now(timezone.utc)}
            )
            rows.append(store.update(row))
            updated += 1
        else:
            rows.append(store.insert(PersistedRow(id=str(uuid.uuid4()), **fields)))
            inserted += 1
    logger.info(f"✓ Upserted {len(rows)} recipe(s) ({inserted} inserted, {updated} updated)")
    return rows
