"""Persistence adapters for encounters."""

from __future__ import annotations

from dnd_combat.storage.repository import (
    EncounterRepository,
    InMemoryEncounterRepository,
    SqliteEncounterRepository,
    build_repository,
    find_active,
)


__all__ = [
    "EncounterRepository",
    "InMemoryEncounterRepository",
    "SqliteEncounterRepository",
    "build_repository",
    "find_active",
]
