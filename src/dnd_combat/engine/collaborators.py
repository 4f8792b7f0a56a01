"""Interfaces the encounter engine consumes, with in-memory adapters.

The engine reads character sheets when players join an encounter and
session metadata when it checks permissions. Both sources live outside
the engine; these protocols are all it depends on.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from dnd_combat.core.exceptions import NotFoundError
from dnd_combat.models.character import CharacterSheet
from dnd_combat.models.combat import AttackSpec
from dnd_combat.models.session import SessionInfo


@runtime_checkable
class CharacterProvider(Protocol):
    """Source of character sheets."""

    def get_character(self, character_id: str) -> CharacterSheet:
        """Return the character sheet.

        Raises:
            NotFoundError: If the character does not exist.
        """
        ...

    def get_attack_profile(self, character_id: str) -> AttackSpec:
        """Return the attack the character makes with its equipped weapon.

        Raises:
            NotFoundError: If the character does not exist.
        """
        ...


@runtime_checkable
class SessionProvider(Protocol):
    """Source of session metadata."""

    def get_session(self, session_id: str) -> SessionInfo:
        """Return session metadata.

        Raises:
            NotFoundError: If the session does not exist.
        """
        ...


class InMemoryCharacterProvider:
    """Character sheets held in a dict."""

    def __init__(self, characters: list[CharacterSheet] | None = None) -> None:
        self._lock = threading.Lock()
        self._characters: dict[str, CharacterSheet] = {c.id: c for c in characters or []}

    def add(self, character: CharacterSheet) -> None:
        with self._lock:
            self._characters[character.id] = character

    def get_character(self, character_id: str) -> CharacterSheet:
        with self._lock:
            character = self._characters.get(character_id)
        if character is None:
            raise NotFoundError(
                f"Character {character_id!r} not found",
                resource="character",
                resource_id=character_id,
            )
        return character

    def get_attack_profile(self, character_id: str) -> AttackSpec:
        return self.get_character(character_id).attack_profile()


class InMemorySessionProvider:
    """Session metadata held in a dict."""

    def __init__(self, sessions: list[SessionInfo] | None = None) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, SessionInfo] = {s.id: s for s in sessions or []}

    def add(self, session: SessionInfo) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def get_session(self, session_id: str) -> SessionInfo:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id!r} not found",
                resource="session",
                resource_id=session_id,
            )
        return session


__all__ = [
    "CharacterProvider",
    "SessionProvider",
    "InMemoryCharacterProvider",
    "InMemorySessionProvider",
]
