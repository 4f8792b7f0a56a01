"""Who may do what to an encounter.

The encounter's creator and the user running its session are DMs and may
do anything. Dungeon sessions have no DM at the table, so the DM-only
operations are open to every participant there, and anyone may advance a
monster's turn.
"""

from __future__ import annotations

from dnd_combat.core.exceptions import NotFoundError, PermissionDeniedError
from dnd_combat.core.logging import get_logger
from dnd_combat.engine.collaborators import SessionProvider
from dnd_combat.models.combat import Encounter
from dnd_combat.models.session import SessionInfo


logger = get_logger(__name__)


class AccessPolicy:
    """Permission checks for encounter operations.

    Args:
        sessions: Session metadata source. Without one, every session is
            treated as a standard (DM-run) session.
    """

    def __init__(self, sessions: SessionProvider | None = None) -> None:
        self._sessions = sessions

    def _session(self, encounter: Encounter) -> SessionInfo | None:
        if self._sessions is None or not encounter.session_id:
            return None
        try:
            return self._sessions.get_session(encounter.session_id)
        except NotFoundError:
            logger.debug("Session not found, treating as standard", session_id=encounter.session_id)
            return None

    def is_dungeon(self, encounter: Encounter) -> bool:
        """Whether the encounter belongs to a dungeon session.

        Unknown sessions count as standard sessions.
        """
        session = self._session(encounter)
        return session is not None and session.is_dungeon

    def is_dm(self, encounter: Encounter, actor_id: str) -> bool:
        """The encounter's creator, or the user running its session."""
        if not actor_id:
            return False
        if actor_id == encounter.created_by:
            return True
        session = self._session(encounter)
        return session is not None and actor_id == session.dm_user_id

    def require_dm(self, encounter: Encounter, actor_id: str, operation: str) -> None:
        """Allow the DM, or anyone in a dungeon session.

        Raises:
            PermissionDeniedError: Otherwise.
        """
        if self.is_dm(encounter, actor_id) or self.is_dungeon(encounter):
            return
        raise PermissionDeniedError(
            f"Only the DM can {operation}",
            actor_id=actor_id,
            details={"encounter_id": encounter.id},
        )

    def can_advance_turn(self, encounter: Encounter, actor_id: str) -> bool:
        """The DM, the current combatant's player, or anyone on a monster's turn in a dungeon."""
        if self.is_dm(encounter, actor_id):
            return True
        current = encounter.current_combatant()
        if current is None:
            return self.is_dungeon(encounter)
        if current.is_player and current.player_id == actor_id:
            return True
        return current.is_monster and self.is_dungeon(encounter)

    def require_turn_control(self, encounter: Encounter, actor_id: str) -> None:
        """Raises PermissionDeniedError unless ``can_advance_turn``."""
        if not self.can_advance_turn(encounter, actor_id):
            raise PermissionDeniedError(
                "It is not your turn",
                actor_id=actor_id,
                details={"encounter_id": encounter.id},
            )

    def can_player_act(self, encounter: Encounter, actor_id: str) -> bool:
        """Whether ``actor_id`` plays the combatant whose turn it is."""
        current = encounter.current_combatant()
        return current is not None and current.is_player and current.player_id == actor_id

    def require_combat_authority(self, encounter: Encounter, actor_id: str, operation: str) -> None:
        """Damage and healing: the DM, anyone in a dungeon, or the player whose turn it is.

        Raises:
            PermissionDeniedError: Otherwise.
        """
        if (
            self.is_dm(encounter, actor_id)
            or self.can_player_act(encounter, actor_id)
            or self.is_dungeon(encounter)
        ):
            return
        raise PermissionDeniedError(
            f"You cannot {operation} right now",
            actor_id=actor_id,
            details={"encounter_id": encounter.id},
        )


__all__ = ["AccessPolicy"]
