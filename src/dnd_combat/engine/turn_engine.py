"""Encounter turn engine.

The engine is the only writer of encounter state. Every mutating operation
runs as a transaction on one encounter:

1. check the optional cancellation event,
2. take that encounter's lock,
3. load a private copy from the repository,
4. mutate the copy,
5. save it.

An exception anywhere in step 4 skips the save, so a failed operation
leaves no partial change behind. Damage and the combat-end check that
follows it happen inside the same transaction, so a concurrent turn
advance can never hand a turn to a combatant that was just killed.

Example:
    >>> engine = EncounterEngine(InMemoryEncounterRepository(), roller=DiceRoller(seed=1))
    >>> encounter = engine.create_encounter("Goblin Ambush", created_by="dm")
    >>> goblin = engine.add_monster(encounter.id, "dm", MonsterTemplate(name="Goblin", max_hp=7))
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from dnd_combat.core.config import EngineSettings, RoundAdvanceMode, get_settings
from dnd_combat.core.constants import DEFEAT_MESSAGE, VICTORY_MESSAGE
from dnd_combat.core.exceptions import (
    CombatError,
    ConfigurationError,
    InvalidStateError,
    OperationCancelledError,
    PermissionDeniedError,
    ValidationError,
)
from dnd_combat.core.logging import get_logger, log_context
from dnd_combat.effects.manager import EffectManager, EffectRegistry
from dnd_combat.engine.access import AccessPolicy
from dnd_combat.engine.collaborators import CharacterProvider, SessionProvider
from dnd_combat.engine.dice import DiceRoller, Roller, RollMode
from dnd_combat.engine.resolver import AttackResult, CombatResolver
from dnd_combat.models.combat import (
    ActionKind,
    AttackSpec,
    Combatant,
    CombatantType,
    CombatLogEntry,
    DamageOutcome,
    Encounter,
    EncounterStatus,
    MonsterTemplate,
    TurnState,
)
from dnd_combat.storage.repository import EncounterRepository, build_repository, find_active


logger = get_logger(__name__)


# =============================================================================
# Requests & Reports
# =============================================================================


@dataclass(frozen=True)
class AttackRequest:
    """Everything needed to resolve one attack inside an encounter.

    Attributes:
        encounter_id: Encounter the attack happens in.
        attacker_id: Attacking combatant.
        target_id: Target combatant.
        actor_id: User issuing the attack.
        attack_name: Monster action to use (first action when omitted).
        conditions: Extra condition entries for effect modifiers.
        roll_mode: Caller-imposed advantage or disadvantage.
        cancel: Cancellation event checked before the attack starts.
    """

    encounter_id: str
    attacker_id: str
    target_id: str
    actor_id: str
    attack_name: str | None = None
    conditions: dict[str, str] = field(default_factory=dict)
    roll_mode: RollMode = RollMode.NORMAL
    cancel: threading.Event | None = None


@dataclass(frozen=True)
class AttackOutcome:
    """An attack result together with the encounter after it was applied."""

    result: AttackResult
    encounter: Encounter
    target_defeated: bool = False


@dataclass(frozen=True)
class MonsterTurnReport:
    """What happened on one automatically run monster turn."""

    monster_id: str
    attack: AttackResult | None
    encounter: Encounter


# =============================================================================
# Engine
# =============================================================================


def check_combat_end(encounter: Encounter) -> tuple[bool, bool]:
    """Decide whether the fight is over.

    A side is down when none of its combatants is both active and above
    0 HP. The fight ends only when one side is down while the other still
    has someone standing; if both sides are down it goes on.

    Args:
        encounter: Encounter to inspect. It is not modified.

    Returns:
        Tuple of (should_end, players_won).
    """
    players_up = any(c.is_standing for c in encounter.combatants_of(CombatantType.PLAYER))
    monsters_up = any(c.is_standing for c in encounter.combatants_of(CombatantType.MONSTER))
    if players_up and not monsters_up:
        return True, True
    if monsters_up and not players_up:
        return True, False
    return False, False


def get_current_combatant(encounter: Encounter) -> Combatant | None:
    """Combatant whose turn it is, or None (no order, round pending, or slot unusable)."""
    return encounter.current_combatant()


class EncounterEngine:
    """Initiative, turn order, damage and combat end for encounters.

    Args:
        repository: Encounter storage.
        roller: Dice source (a seeded DiceRoller from settings by default).
        effects: Shared effect registry (a new one by default).
        characters: Character sheet source, required to add players.
        sessions: Session metadata source for permission checks.
        settings: Engine settings (the application settings by default).
        id_factory: Generator of encounter and combatant IDs.
    """

    def __init__(
        self,
        repository: EncounterRepository,
        *,
        roller: Roller | None = None,
        effects: EffectRegistry | None = None,
        characters: CharacterProvider | None = None,
        sessions: SessionProvider | None = None,
        settings: EngineSettings | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.settings = settings or get_settings().engine
        self._repository = repository
        self._roller = roller or DiceRoller(seed=self.settings.dice_seed)
        self._effects = effects or EffectRegistry(seconds_per_round=self.settings.seconds_per_round)
        self._resolver = CombatResolver(self._roller, self._effects)
        self._characters = characters
        self._access = AccessPolicy(sessions)
        self._new_id = id_factory or (lambda: uuid4().hex[:12])
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        *,
        characters: CharacterProvider | None = None,
        sessions: SessionProvider | None = None,
    ) -> EncounterEngine:
        """Build an engine with the repository and options from application settings."""
        settings = get_settings()
        return cls(
            build_repository(settings.storage),
            characters=characters,
            sessions=sessions,
            settings=settings.engine,
        )

    @property
    def resolver(self) -> CombatResolver:
        return self._resolver

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _lock_for(self, encounter_id: str) -> threading.RLock:
        """Lock of a stored encounter.

        Raises:
            NotFoundError: If the encounter does not exist. No lock is kept for it.
        """
        with self._locks_guard:
            lock = self._locks.get(encounter_id)
            if lock is None:
                self._repository.get(encounter_id)
                lock = threading.RLock()
                self._locks[encounter_id] = lock
            return lock

    @staticmethod
    def _check_cancel(cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("Operation cancelled before it started")

    @contextmanager
    def _transaction(
        self,
        encounter_id: str,
        cancel: threading.Event | None = None,
    ) -> Iterator[Encounter]:
        self._check_cancel(cancel)
        with self._lock_for(encounter_id), log_context(encounter_id=encounter_id):
            encounter = self._repository.get(encounter_id)
            yield encounter
            self._repository.save(encounter)

    def _log(self, encounter: Encounter, text: str) -> CombatLogEntry:
        return encounter.add_log(text, limit=self.settings.combat_log_limit)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_encounter(self, encounter_id: str) -> Encounter:
        """Return a snapshot of the encounter.

        Raises:
            NotFoundError: If the encounter does not exist.
        """
        with self._lock_for(encounter_id):
            return self._repository.get(encounter_id)

    def get_active_encounter(self, session_id: str) -> Encounter | None:
        """Newest encounter of a session that has not completed."""
        return find_active(self._repository, session_id)

    @staticmethod
    def get_current_combatant(encounter: Encounter) -> Combatant | None:
        return get_current_combatant(encounter)

    @staticmethod
    def check_combat_end(encounter: Encounter) -> tuple[bool, bool]:
        return check_combat_end(encounter)

    def effects_for(self, actor_id: str) -> EffectManager:
        """Effect manager of a character or monster combatant."""
        return self._effects.get(actor_id)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def create_encounter(
        self,
        name: str,
        *,
        created_by: str = "",
        session_id: str = "",
        channel_id: str = "",
        description: str = "",
        encounter_id: str | None = None,
    ) -> Encounter:
        """Create an empty encounter in the setup state.

        Raises:
            ValidationError: If the ID is already taken.
        """
        encounter = Encounter(
            id=encounter_id or self._new_id(),
            name=name,
            description=description,
            session_id=session_id,
            channel_id=channel_id,
            created_by=created_by,
        )
        self._repository.create(encounter)
        with self._locks_guard:
            self._locks[encounter.id] = threading.RLock()
        logger.info("Encounter created", encounter_id=encounter.id, name=name, session_id=session_id)
        return encounter

    @staticmethod
    def _require_setup(encounter: Encounter, operation: str) -> None:
        if encounter.status != EncounterStatus.SETUP or encounter.turn_order:
            raise InvalidStateError(
                f"Cannot {operation} after initiative has been rolled",
                current_state=encounter.status.value,
                expected_states=[EncounterStatus.SETUP.value],
            )

    def add_monster(
        self,
        encounter_id: str,
        actor_id: str,
        template: MonsterTemplate,
        *,
        cancel: threading.Event | None = None,
    ) -> Combatant:
        """Add a monster during setup.

        Raises:
            NotFoundError: Unknown encounter.
            InvalidStateError: Initiative already rolled.
            PermissionDeniedError: Actor is not the DM (outside dungeons).
        """
        with self._transaction(encounter_id, cancel) as encounter:
            self._require_setup(encounter, "add monsters")
            self._access.require_dm(encounter, actor_id, "add monsters")
            combatant = Combatant(
                id=self._new_id(),
                name=template.name,
                type=CombatantType.MONSTER,
                creature_type=template.creature_type,
                join_order=len(encounter.combatants),
                current_hp=template.max_hp,
                max_hp=template.max_hp,
                armor_class=template.armor_class,
                initiative_bonus=template.initiative_bonus,
                speed=template.speed,
                actions=list(template.actions),
                challenge_rating=template.challenge_rating,
                xp=template.xp,
                monster_ref=template.monster_ref,
            )
            encounter.combatants[combatant.id] = combatant
            self._log(encounter, f"{combatant.name} joins the encounter")
        logger.info("Monster added", combatant_id=combatant.id, name=combatant.name)
        return combatant

    def add_player(
        self,
        encounter_id: str,
        player_id: str,
        character_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Combatant:
        """Add a player's character during setup.

        Raises:
            ConfigurationError: No character provider configured.
            NotFoundError: Unknown encounter or character.
            InvalidStateError: Initiative already rolled.
            ValidationError: The player already has a combatant here.
            PermissionDeniedError: The character belongs to another user.
        """
        if self._characters is None:
            raise ConfigurationError("No character provider configured", config_key="characters")
        sheet = self._characters.get_character(character_id)

        with self._transaction(encounter_id, cancel) as encounter:
            self._require_setup(encounter, "join")
            if sheet.owner_id and sheet.owner_id != player_id:
                raise PermissionDeniedError(
                    "Character belongs to another player",
                    actor_id=player_id,
                    details={"character_id": character_id},
                )
            if any(c.player_id == player_id for c in encounter.combatants_of(CombatantType.PLAYER)):
                raise ValidationError(
                    "Player is already in this encounter",
                    field_name="player_id",
                    invalid_value=player_id,
                )
            combatant = Combatant(
                id=self._new_id(),
                name=sheet.name,
                type=CombatantType.PLAYER,
                creature_type=sheet.race.lower(),
                join_order=len(encounter.combatants),
                current_hp=sheet.starting_hp,
                max_hp=sheet.max_hp,
                armor_class=sheet.effective_ac,
                initiative_bonus=sheet.initiative_bonus,
                speed=sheet.speed,
                player_id=player_id,
                character_id=sheet.id,
            )
            encounter.combatants[combatant.id] = combatant
            self._log(encounter, f"{combatant.name} joins the encounter")
        logger.info("Player added", combatant_id=combatant.id, player_id=player_id)
        return combatant

    def remove_combatant(
        self,
        encounter_id: str,
        combatant_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Mark a combatant inactive. It keeps its turn order slot, which is skipped."""
        with self._transaction(encounter_id, cancel) as encounter:
            self._access.require_dm(encounter, actor_id, "remove combatants")
            combatant = encounter.get_combatant(combatant_id)
            if not combatant.is_active:
                return encounter
            combatant.is_active = False
            self._log(encounter, f"{combatant.name} leaves the encounter")
            if encounter.status == EncounterStatus.ACTIVE:
                if self._finish_if_over(encounter):
                    return encounter
                if encounter.turn_order[encounter.turn] == combatant_id and not encounter.round_pending:
                    self._advance(encounter)
        return encounter

    # -------------------------------------------------------------------------
    # Initiative & lifecycle
    # -------------------------------------------------------------------------

    def roll_initiative(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Roll initiative for every combatant and fix the turn order.

        Combatants roll in insertion order. The order sorts by total
        (highest first), then initiative bonus (highest first), then
        insertion order, so the same rolls always give the same order.

        Raises:
            NotFoundError: Unknown encounter.
            InvalidStateError: Initiative already rolled or encounter not in setup.
            ValidationError: No combatants.
            DiceRollError: The roller failed.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            if encounter.turn_order or encounter.status != EncounterStatus.SETUP:
                raise InvalidStateError(
                    "Initiative has already been rolled",
                    current_state=encounter.status.value,
                    expected_states=[EncounterStatus.SETUP.value],
                )
            self._access.require_dm(encounter, actor_id, "roll initiative")
            if not encounter.combatants:
                raise ValidationError("Cannot roll initiative without combatants", field_name="combatants")

            for combatant in encounter.combatants.values():
                rolled = self._resolver.roll_initiative(combatant)
                combatant.initiative = rolled.total
                self._log(encounter, f"{combatant.name} rolls initiative: {rolled.total}")

            ordered = sorted(
                encounter.combatants.values(),
                key=lambda c: (-c.initiative, -c.initiative_bonus, c.join_order),
            )
            encounter.turn_order = [c.id for c in ordered]
            encounter.turn = 0
        logger.info("Initiative rolled", order=encounter.turn_order)
        return encounter

    def start_encounter(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Move from setup to active and hand the first turn out.

        Raises:
            InvalidStateError: Not in setup, or initiative not rolled.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            if encounter.status != EncounterStatus.SETUP:
                raise InvalidStateError(
                    "Encounter has already started",
                    current_state=encounter.status.value,
                    expected_states=[EncounterStatus.SETUP.value],
                )
            if not encounter.turn_order:
                raise InvalidStateError(
                    "Roll initiative before starting the encounter",
                    current_state=encounter.status.value,
                )
            self._access.require_dm(encounter, actor_id, "start the encounter")

            encounter.status = EncounterStatus.ACTIVE
            encounter.started_at = datetime.now(UTC)
            encounter.round = 1
            encounter.round_pending = False
            self._log(encounter, "Combat begins!")
            if not self._finish_if_over(encounter):
                self._begin_turn_at(encounter, self._next_eligible(encounter, 0))
        logger.info("Encounter started", turn_order=encounter.turn_order)
        return encounter

    def end_encounter(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """End the encounter without a winner.

        Raises:
            InvalidStateError: Already completed.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            if encounter.status == EncounterStatus.COMPLETED:
                raise InvalidStateError(
                    "Encounter has already ended",
                    current_state=encounter.status.value,
                )
            self._access.require_dm(encounter, actor_id, "end the encounter")
            encounter.status = EncounterStatus.COMPLETED
            encounter.ended_at = datetime.now(UTC)
            encounter.round_pending = False
            self._log(encounter, "The encounter has ended.")
        logger.info("Encounter ended by request", actor_id=actor_id)
        return encounter

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_active(encounter: Encounter) -> None:
        if encounter.status != EncounterStatus.ACTIVE:
            raise InvalidStateError(
                "Encounter is not active",
                current_state=encounter.status.value,
                expected_states=[EncounterStatus.ACTIVE.value],
            )

    @staticmethod
    def _next_eligible(encounter: Encounter, start: int) -> int | None:
        for index in range(start, len(encounter.turn_order)):
            combatant = encounter.combatants.get(encounter.turn_order[index])
            if combatant is not None and combatant.can_take_turn:
                return index
        return None

    @staticmethod
    def _begin_turn_at(encounter: Encounter, index: int | None) -> None:
        encounter.turn = index if index is not None else 0
        if index is not None:
            encounter.combatants[encounter.turn_order[index]].start_new_turn()

    def _wrap_round(self, encounter: Encounter) -> None:
        encounter.round += 1
        encounter.round_pending = False
        for combatant in encounter.combatants.values():
            combatant.reset_for_new_round()
        self._effects.process_round_end(c.effect_owner_id for c in encounter.combatants.values())
        self._begin_turn_at(encounter, self._next_eligible(encounter, 0))
        self._log(encounter, f"Round {encounter.round} begins")

    def _advance(self, encounter: Encounter) -> None:
        """Finish the current turn and move to the next combatant that can take one."""
        current = encounter.combatants.get(encounter.turn_order[encounter.turn])
        if current is not None:
            current.turn.has_acted = True

        if self._finish_if_over(encounter):
            return

        next_index = self._next_eligible(encounter, encounter.turn + 1)
        if next_index is not None:
            self._begin_turn_at(encounter, next_index)
            return

        if self.settings.round_advance_mode == RoundAdvanceMode.CHECKPOINT:
            encounter.round_pending = True
            self._log(encounter, "Round complete")
        else:
            self._wrap_round(encounter)

    def next_turn(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """End the current turn.

        Skips combatants that are inactive or at 0 HP. After the last slot
        the configured round advance mode either marks the round pending
        (checkpoint) or starts the next round immediately (auto).

        Raises:
            InvalidStateError: Encounter not active, or a round is pending.
            PermissionDeniedError: Actor does not control this turn.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            self._require_active(encounter)
            if encounter.round_pending:
                raise InvalidStateError(
                    "Round is complete; continue the round first",
                    current_state="round_pending",
                )
            self._access.require_turn_control(encounter, actor_id)
            self._advance(encounter)
        logger.info("Turn advanced", round=encounter.round, turn=encounter.turn, pending=encounter.round_pending)
        return encounter

    def continue_round(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Start the next round after a checkpoint.

        Raises:
            InvalidStateError: Encounter not active or no round pending.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            self._require_active(encounter)
            if not encounter.round_pending:
                raise InvalidStateError(
                    "No round is pending",
                    current_state=encounter.status.value,
                )
            self._access.require_turn_control(encounter, actor_id)
            self._wrap_round(encounter)
        logger.info("Round continued", round=encounter.round)
        return encounter

    # -------------------------------------------------------------------------
    # Hit points
    # -------------------------------------------------------------------------

    def _finish_if_over(self, encounter: Encounter) -> bool:
        """Complete an active encounter if one side is down."""
        if encounter.status != EncounterStatus.ACTIVE:
            return False
        should_end, players_won = check_combat_end(encounter)
        if not should_end:
            return False
        encounter.status = EncounterStatus.COMPLETED
        encounter.players_won = players_won
        encounter.ended_at = datetime.now(UTC)
        encounter.round_pending = False
        self._log(encounter, VICTORY_MESSAGE if players_won else DEFEAT_MESSAGE)
        logger.info("Combat ended", players_won=players_won, round=encounter.round)
        return True

    def evaluate_combat_end(
        self,
        encounter_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> tuple[bool, bool]:
        """Apply the combat-end check to a stored encounter.

        Returns:
            Tuple of (ended, players_won) after the check.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            self._finish_if_over(encounter)
        return encounter.status == EncounterStatus.COMPLETED, bool(encounter.players_won)

    def _damage(self, encounter: Encounter, target: Combatant, amount: int) -> DamageOutcome:
        outcome = target.take_damage(amount)
        if outcome.defeated:
            self._log(encounter, f"{target.name} was defeated!")
        self._finish_if_over(encounter)
        return outcome

    def apply_damage(
        self,
        encounter_id: str,
        target_id: str,
        actor_id: str,
        amount: int,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Deal damage: temporary HP first, hit points clamped at 0.

        The combat-end check runs in the same transaction.

        Raises:
            NotFoundError: Unknown encounter or target.
            ValidationError: Negative amount.
            PermissionDeniedError: Actor may not deal damage now.
        """
        if amount < 0:
            raise ValidationError("Damage amount cannot be negative", field_name="amount", invalid_value=amount)
        with self._transaction(encounter_id, cancel) as encounter:
            target = encounter.get_combatant(target_id)
            self._access.require_combat_authority(encounter, actor_id, "deal damage")
            self._log(encounter, f"{target.name} takes {amount} damage")
            outcome = self._damage(encounter, target, amount)
        logger.info(
            "Damage applied",
            target_id=target_id,
            amount=amount,
            absorbed=outcome.absorbed,
            hp=target.current_hp,
        )
        return encounter

    def heal_combatant(
        self,
        encounter_id: str,
        target_id: str,
        actor_id: str,
        amount: int,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Restore hit points, clamped at max HP.

        Raises:
            NotFoundError: Unknown encounter or target.
            ValidationError: Negative amount.
        """
        if amount < 0:
            raise ValidationError("Healing amount cannot be negative", field_name="amount", invalid_value=amount)
        with self._transaction(encounter_id, cancel) as encounter:
            target = encounter.get_combatant(target_id)
            self._access.require_combat_authority(encounter, actor_id, "heal")
            healed = target.heal(amount)
            self._log(encounter, f"{target.name} is healed for {healed} HP")
        logger.info("Healing applied", target_id=target_id, healed=healed, hp=target.current_hp)
        return encounter

    def grant_temp_hp(
        self,
        encounter_id: str,
        target_id: str,
        actor_id: str,
        amount: int,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Grant temporary HP; a lower value than the current one has no effect."""
        if amount < 0:
            raise ValidationError("Temporary HP cannot be negative", field_name="amount", invalid_value=amount)
        with self._transaction(encounter_id, cancel) as encounter:
            target = encounter.get_combatant(target_id)
            self._access.require_combat_authority(encounter, actor_id, "grant temporary HP")
            if target.grant_temp_hp(amount):
                self._log(encounter, f"{target.name} gains {amount} temporary HP")
        return encounter

    # -------------------------------------------------------------------------
    # Action economy
    # -------------------------------------------------------------------------

    def _turn_owner(self, encounter: Encounter, combatant_id: str, actor_id: str) -> Combatant:
        self._require_active(encounter)
        combatant = encounter.get_combatant(combatant_id)
        if encounter.current_combatant() is not combatant:
            raise CombatError(
                "It is not this combatant's turn",
                combatant_id=combatant_id,
                round_number=encounter.round,
            )
        owns = combatant.is_player and combatant.player_id == actor_id
        if not (owns or self._access.is_dm(encounter, actor_id) or self._access.is_dungeon(encounter)):
            raise PermissionDeniedError("You do not control this combatant", actor_id=actor_id)
        return combatant

    def spend_action(
        self,
        encounter_id: str,
        combatant_id: str,
        actor_id: str,
        kind: ActionKind = ActionKind.ACTION,
        *,
        cancel: threading.Event | None = None,
    ) -> TurnState:
        """Spend part of the current combatant's action economy.

        Raises:
            CombatError: Not this combatant's turn, or already spent.
        """
        flags = {
            ActionKind.ACTION: ("action_used", "Action already used this turn"),
            ActionKind.BONUS_ACTION: ("bonus_action_used", "Bonus action already used this turn"),
            ActionKind.REACTION: ("reaction_used", "Reaction already used this round"),
            ActionKind.LIMITED: ("limited_resource_used", "Limited resource already used this turn"),
        }
        attribute, message = flags[kind]
        with self._transaction(encounter_id, cancel) as encounter:
            combatant = self._turn_owner(encounter, combatant_id, actor_id)
            if getattr(combatant.turn, attribute):
                raise CombatError(message, combatant_id=combatant_id, round_number=encounter.round)
            setattr(combatant.turn, attribute, True)
        logger.debug("Action spent", combatant_id=combatant_id, kind=kind.value)
        return combatant.turn

    def spend_movement(
        self,
        encounter_id: str,
        combatant_id: str,
        actor_id: str,
        feet: int,
        *,
        cancel: threading.Event | None = None,
    ) -> int:
        """Use movement on the current turn.

        Returns:
            Feet of movement remaining.

        Raises:
            ValidationError: Negative distance.
            CombatError: Not enough movement left.
        """
        if feet < 0:
            raise ValidationError("Movement cannot be negative", field_name="feet", invalid_value=feet)
        with self._transaction(encounter_id, cancel) as encounter:
            combatant = self._turn_owner(encounter, combatant_id, actor_id)
            if feet > combatant.turn.movement_remaining:
                raise CombatError(
                    f"Not enough movement remaining ({combatant.turn.movement_remaining} feet)",
                    combatant_id=combatant_id,
                    round_number=encounter.round,
                )
            combatant.turn.movement_remaining -= feet
        return combatant.turn.movement_remaining

    # -------------------------------------------------------------------------
    # Attacks
    # -------------------------------------------------------------------------

    def _attack_for(self, attacker: Combatant, attack_name: str | None) -> AttackSpec:
        if attacker.is_player:
            if self._characters is None:
                raise ConfigurationError("No character provider configured", config_key="characters")
            return self._characters.get_attack_profile(attacker.character_id)

        if attack_name is None:
            if not attacker.actions:
                return AttackSpec(name="Unarmed Strike")
            return attacker.actions[0]
        for action in attacker.actions:
            if action.name.lower() == attack_name.lower():
                return action
        raise CombatError(f"{attacker.name} has no attack named {attack_name!r}", combatant_id=attacker.id)

    def _resolve_and_apply(
        self,
        encounter: Encounter,
        attacker: Combatant,
        target: Combatant,
        attack: AttackSpec,
        *,
        conditions: dict[str, str] | None = None,
        roll_mode: RollMode = RollMode.NORMAL,
    ) -> tuple[AttackResult, bool]:
        result = self._resolver.resolve_attack(
            attacker,
            target,
            attack,
            conditions=conditions,
            roll_mode=roll_mode,
        )
        if encounter.current_combatant() is attacker:
            attacker.turn.action_used = True

        if not result.hit:
            self._log(encounter, f"{attacker.name} attacks {target.name} with {attack.name} and misses")
            return result, False

        prefix = "critically hit" if result.critical else "hit"
        self._log(encounter, f"{attacker.name} {prefix} {target.name} for {result.damage} damage")
        outcome = self._damage(encounter, target, result.damage)
        return result, outcome.defeated

    def perform_attack(self, request: AttackRequest) -> AttackOutcome:
        """Resolve an attack and apply its damage in one transaction.

        Raises:
            NotFoundError: Unknown encounter, attacker or target.
            InvalidStateError: Encounter not active.
            CombatError: Attacker cannot attack or target is out of the fight.
            PermissionDeniedError: Actor does not control the attacker.
            DiceRollError: The roller failed (nothing is applied).
        """
        with self._transaction(request.encounter_id, request.cancel) as encounter:
            self._require_active(encounter)
            attacker = encounter.get_combatant(request.attacker_id)
            target = encounter.get_combatant(request.target_id)

            if not (self._access.is_dm(encounter, request.actor_id) or self._access.is_dungeon(encounter)):
                if not (attacker.is_player and attacker.player_id == request.actor_id):
                    raise PermissionDeniedError("You do not control this combatant", actor_id=request.actor_id)
                self._access.require_combat_authority(encounter, request.actor_id, "attack")

            if not attacker.is_standing:
                raise CombatError(f"{attacker.name} cannot attack", combatant_id=attacker.id, round_number=encounter.round)
            if not target.is_active:
                raise CombatError(f"{target.name} is not in the fight", combatant_id=target.id, round_number=encounter.round)

            attack = self._attack_for(attacker, request.attack_name)
            result, defeated = self._resolve_and_apply(
                encounter,
                attacker,
                target,
                attack,
                conditions=request.conditions,
                roll_mode=request.roll_mode,
            )
        logger.info(
            "Attack resolved",
            attacker_id=attacker.id,
            target_id=target.id,
            hit=result.hit,
            damage=result.damage,
        )
        return AttackOutcome(result=result, encounter=encounter, target_defeated=defeated)

    def process_monster_turn(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> MonsterTurnReport:
        """Run the current monster's turn and advance.

        The monster attacks the first standing player in turn order with
        its first action.

        Raises:
            InvalidStateError: Encounter not active or round pending.
            CombatError: The current combatant is not a monster.
        """
        with self._transaction(encounter_id, cancel) as encounter:
            self._require_active(encounter)
            monster = encounter.current_combatant()
            if monster is None or not monster.is_monster:
                raise CombatError("It is not a monster's turn", round_number=encounter.round)
            self._access.require_turn_control(encounter, actor_id)

            result: AttackResult | None = None
            if monster.can_act:
                target = next(
                    (c for c in encounter.ordered_combatants() if c.is_player and c.is_standing),
                    None,
                )
                if target is not None:
                    result, _ = self._resolve_and_apply(encounter, monster, target, monster.actions[0])
            else:
                self._log(encounter, f"{monster.name} has no available actions")

            if encounter.status == EncounterStatus.ACTIVE:
                self._advance(encounter)
        return MonsterTurnReport(monster_id=monster.id, attack=result, encounter=encounter)

    def run_monster_turns(
        self,
        encounter_id: str,
        actor_id: str,
        *,
        cancel: threading.Event | None = None,
    ) -> list[MonsterTurnReport]:
        """Run consecutive monster turns until a player is up, the round is pending, or combat ends."""
        reports: list[MonsterTurnReport] = []
        encounter = self.get_encounter(encounter_id)
        for _ in range(len(encounter.turn_order)):
            current = encounter.current_combatant()
            if encounter.status != EncounterStatus.ACTIVE or current is None or not current.is_monster:
                break
            report = self.process_monster_turn(encounter_id, actor_id, cancel=cancel)
            reports.append(report)
            encounter = report.encounter
        return reports

    # -------------------------------------------------------------------------
    # Log & display
    # -------------------------------------------------------------------------

    def log_combat_action(
        self,
        encounter_id: str,
        text: str,
        *,
        cancel: threading.Event | None = None,
    ) -> CombatLogEntry:
        """Append a round-tagged entry to the combat log."""
        with self._transaction(encounter_id, cancel) as encounter:
            entry = self._log(encounter, text)
        return entry

    def update_message(
        self,
        encounter_id: str,
        message_id: str,
        channel_id: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> Encounter:
        """Record which chat message displays the encounter."""
        with self._transaction(encounter_id, cancel) as encounter:
            encounter.message_id = message_id
            if channel_id is not None:
                encounter.channel_id = channel_id
        return encounter


__all__ = [
    "AttackRequest",
    "AttackOutcome",
    "MonsterTurnReport",
    "check_combat_end",
    "get_current_combatant",
    "EncounterEngine",
]
