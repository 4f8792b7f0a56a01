"""Session metadata read by the encounter engine.

The engine only needs to know who runs a session and whether it is a
dungeon crawl, where the permission rules relax so that any participant
can advance monster turns. The metadata is a tagged union on ``kind``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class DungeonDifficulty(StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    DEADLY = "deadly"


class StandardSession(BaseModel):
    """A DM-run session. Only the DM manages encounters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["standard"] = "standard"


class DungeonSession(BaseModel):
    """A self-running dungeon crawl.

    Attributes:
        room_number: Current room.
        difficulty: Dungeon difficulty.
        room_type: Kind of room (combat, puzzle, treasure...).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["dungeon"] = "dungeon"
    room_number: Annotated[int, Field(ge=0)] = 0
    difficulty: DungeonDifficulty = DungeonDifficulty.MEDIUM
    room_type: str = "combat"


SessionMetadata = Annotated[
    StandardSession | DungeonSession,
    Field(discriminator="kind", description="Session kind specific data"),
]
"""Discriminated union of session kinds, keyed by ``kind``."""


class SessionInfo(BaseModel):
    """The parts of a game session the engine reads.

    Attributes:
        id: Session identifier.
        dm_user_id: User running the session.
        metadata: Standard or dungeon session data.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    dm_user_id: str = ""
    metadata: SessionMetadata = Field(default_factory=StandardSession)

    @property
    def is_dungeon(self) -> bool:
        return isinstance(self.metadata, DungeonSession)


__all__ = [
    "DungeonDifficulty",
    "StandardSession",
    "DungeonSession",
    "SessionMetadata",
    "SessionInfo",
]
