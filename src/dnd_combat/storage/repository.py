"""Encounter persistence.

The turn engine talks to an ``EncounterRepository`` only. Repositories
store and return copies, so nothing outside the engine can reach into a
stored encounter and change it.

Two adapters ship:

* ``InMemoryEncounterRepository`` for tests and single-process bots.
* ``SqliteEncounterRepository`` storing each encounter as a JSON document.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from dnd_combat.core.config import StorageSettings
from dnd_combat.core.exceptions import NotFoundError, StorageError, ValidationError
from dnd_combat.core.logging import get_logger
from dnd_combat.models.combat import Encounter, EncounterStatus


logger = get_logger(__name__)


def _not_found(encounter_id: str) -> NotFoundError:
    return NotFoundError(
        f"Encounter {encounter_id!r} not found",
        resource="encounter",
        resource_id=encounter_id,
    )


@runtime_checkable
class EncounterRepository(Protocol):
    """Storage for encounters."""

    def create(self, encounter: Encounter) -> None:
        """Store a new encounter.

        Raises:
            ValidationError: If an encounter with the same ID exists.
        """
        ...

    def get(self, encounter_id: str) -> Encounter:
        """Return a copy of the stored encounter.

        Raises:
            NotFoundError: If no encounter has this ID.
        """
        ...

    def save(self, encounter: Encounter) -> None:
        """Replace a stored encounter.

        Raises:
            NotFoundError: If no encounter has this ID.
        """
        ...

    def list_by_session(self, session_id: str) -> list[Encounter]:
        """Return copies of every encounter in a session, oldest first."""
        ...


def find_active(repository: EncounterRepository, session_id: str) -> Encounter | None:
    """Return the newest encounter of a session that is not completed."""
    for encounter in reversed(repository.list_by_session(session_id)):
        if encounter.status != EncounterStatus.COMPLETED:
            return encounter
    return None


# =============================================================================
# In-Memory Adapter
# =============================================================================


class InMemoryEncounterRepository:
    """Encounters held in a dict, deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._encounters: dict[str, Encounter] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._encounters)

    def create(self, encounter: Encounter) -> None:
        with self._lock:
            if encounter.id in self._encounters:
                raise ValidationError(
                    f"Encounter {encounter.id!r} already exists",
                    field_name="id",
                    invalid_value=encounter.id,
                )
            self._encounters[encounter.id] = encounter.model_copy(deep=True)

    def get(self, encounter_id: str) -> Encounter:
        with self._lock:
            encounter = self._encounters.get(encounter_id)
            if encounter is None:
                raise _not_found(encounter_id)
            return encounter.model_copy(deep=True)

    def save(self, encounter: Encounter) -> None:
        with self._lock:
            if encounter.id not in self._encounters:
                raise _not_found(encounter.id)
            self._encounters[encounter.id] = encounter.model_copy(deep=True)

    def list_by_session(self, session_id: str) -> list[Encounter]:
        with self._lock:
            matches = [e for e in self._encounters.values() if e.session_id == session_id]
            return [e.model_copy(deep=True) for e in sorted(matches, key=lambda e: e.created_at)]


# =============================================================================
# SQLite Adapter
# =============================================================================


class SqliteEncounterRepository:
    """Encounters stored as JSON documents in SQLite.

    Args:
        db_path: Path to the database file; parent directories are created.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()
        logger.info("Encounter database initialized", path=str(self.db_path))

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection, committing on success and rolling back on error."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database: {exc}", details={"path": str(self.db_path)}) from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Database operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS encounters (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    document TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_encounters_session
                ON encounters(session_id, created_at)
            """)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    @staticmethod
    def _load(document: str) -> Encounter:
        try:
            return Encounter.model_validate_json(document)
        except PydanticValidationError as exc:
            raise StorageError(f"Stored encounter is corrupt: {exc}") from exc

    def create(self, encounter: Encounter) -> None:
        now = datetime.now(UTC).isoformat()
        with self._get_connection() as conn:
            exists = conn.execute("SELECT 1 FROM encounters WHERE id = ?", (encounter.id,)).fetchone()
            if exists:
                raise ValidationError(
                    f"Encounter {encounter.id!r} already exists",
                    field_name="id",
                    invalid_value=encounter.id,
                )
            conn.execute(
                """
                INSERT INTO encounters (id, session_id, status, created_at, updated_at, document)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    encounter.id,
                    encounter.session_id,
                    encounter.status.value,
                    encounter.created_at.isoformat(),
                    now,
                    encounter.model_dump_json(),
                ),
            )
        logger.debug("Encounter stored", encounter_id=encounter.id)

    def get(self, encounter_id: str) -> Encounter:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT document FROM encounters WHERE id = ?", (encounter_id,)
            ).fetchone()
        if row is None:
            raise _not_found(encounter_id)
        return self._load(row[0])

    def save(self, encounter: Encounter) -> None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE encounters
                SET session_id = ?, status = ?, updated_at = ?, document = ?
                WHERE id = ?
                """,
                (
                    encounter.session_id,
                    encounter.status.value,
                    datetime.now(UTC).isoformat(),
                    encounter.model_dump_json(),
                    encounter.id,
                ),
            )
            if cursor.rowcount == 0:
                raise _not_found(encounter.id)

    def list_by_session(self, session_id: str) -> list[Encounter]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT document FROM encounters WHERE session_id = ? ORDER BY created_at",
                (session_id,),
            ).fetchall()
        return [self._load(row[0]) for row in rows]


def build_repository(settings: StorageSettings) -> EncounterRepository:
    """Create the repository selected by the storage settings."""
    if settings.backend == "sqlite":
        return SqliteEncounterRepository(settings.database_path)
    return InMemoryEncounterRepository()


__all__ = [
    "EncounterRepository",
    "InMemoryEncounterRepository",
    "SqliteEncounterRepository",
    "build_repository",
    "find_active",
]
