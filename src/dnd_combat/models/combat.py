"""Pydantic V2 schemas for encounters and combatants.

An Encounter owns its combatants, the initiative order, the round and
turn counters and a combat log. Combatants are never deleted from an
encounter; removal only marks them inactive so that log entries and
turn order slots keep pointing at something.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dnd_combat.core.constants import DEFAULT_SPEED
from dnd_combat.core.exceptions import NotFoundError, ValidationError


def _now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Enumerations
# =============================================================================


class CombatantType(StrEnum):
    """Which side a combatant fights on."""

    PLAYER = "player"
    MONSTER = "monster"


class EncounterStatus(StrEnum):
    """Encounter lifecycle states."""

    SETUP = "setup"
    ACTIVE = "active"
    COMPLETED = "completed"


class AttackType(StrEnum):
    """How an attack is delivered."""

    MELEE = "melee"
    RANGED = "ranged"
    SPELL = "spell"


class ActionKind(StrEnum):
    """Pieces of the per-turn action economy."""

    ACTION = "action"
    BONUS_ACTION = "bonus_action"
    REACTION = "reaction"
    LIMITED = "limited"


# =============================================================================
# Attacks
# =============================================================================


class DamageDice(BaseModel):
    """One damage component of an attack, e.g. ``1d6+2 slashing``.

    Attributes:
        dice_count: Number of dice (0 for flat damage).
        dice_size: Sides per die.
        bonus: Flat bonus added to the roll.
        damage_type: Damage type used for resistances.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    dice_count: Annotated[int, Field(ge=0, le=100)] = 1
    dice_size: Annotated[int, Field(ge=1, le=100)] = 6
    bonus: int = 0
    damage_type: str = Field(default="", description="Damage type")

    @property
    def expression(self) -> str:
        text = f"{self.dice_count}d{self.dice_size}"
        if self.bonus:
            text += f"{self.bonus:+d}"
        return text


class AttackSpec(BaseModel):
    """An attack a combatant can make.

    Attributes:
        name: Attack name (e.g. "Scimitar").
        attack_bonus: Bonus added to the d20 roll.
        damage: Damage components rolled on a hit.
        attack_type: Melee, ranged or spell.
        weapon: Weapon identifier used by ``with_weapon`` modifier gates.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=100, description="Attack name")
    attack_bonus: int = Field(default=0, description="To-hit bonus")
    damage: tuple[DamageDice, ...] = Field(default=(), description="Damage components")
    attack_type: AttackType = Field(default=AttackType.MELEE, description="Delivery")
    weapon: str = Field(default="", description="Weapon identifier")

    @property
    def damage_expression(self) -> str:
        return " + ".join(d.expression for d in self.damage)


# =============================================================================
# Combatant
# =============================================================================


class TurnState(BaseModel):
    """Per-turn bookkeeping for one combatant.

    Attributes:
        has_acted: Whether the combatant finished a turn this round.
        action_used: Main action spent.
        bonus_action_used: Bonus action spent.
        reaction_used: Reaction spent.
        limited_resource_used: A once-per-turn feature spent (e.g. Sneak Attack).
        movement_remaining: Feet of movement left.
    """

    model_config = ConfigDict(extra="forbid")

    has_acted: bool = False
    action_used: bool = False
    bonus_action_used: bool = False
    reaction_used: bool = False
    limited_resource_used: bool = False
    movement_remaining: Annotated[int, Field(ge=0)] = 0


class DamageOutcome(BaseModel):
    """What happened when damage was applied."""

    model_config = ConfigDict(frozen=True)

    absorbed: int = Field(description="Damage absorbed by temporary HP")
    hp_lost: int = Field(description="Hit points actually lost")
    defeated: bool = Field(description="The hit took the combatant to 0 HP")


class Combatant(BaseModel):
    """A participant in an encounter.

    Attributes:
        id: Unique combatant identifier within the encounter.
        name: Display name.
        type: Player or monster.
        creature_type: Creature type used for ``enemy_type`` conditions.
        join_order: Insertion index, the final initiative tiebreaker.
        current_hp: Current hit points, always within [0, max_hp].
        max_hp: Maximum hit points.
        temp_hp: Temporary hit points, lost before real hit points.
        armor_class: Base armor class.
        initiative: Rolled initiative total.
        initiative_bonus: Bonus added to the initiative roll.
        speed: Movement per turn in feet.
        is_active: False once removed from the encounter.
        player_id: Owning user for player combatants.
        character_id: Character sheet for player combatants.
        actions: Attacks a monster can make.
        challenge_rating: Monster challenge rating.
        xp: Experience awarded for defeating the monster.
        monster_ref: Key of the monster definition this was built from.
        turn: Per-turn flags.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Combatant ID")
    name: str = Field(min_length=1, max_length=100, description="Display name")
    type: CombatantType = Field(description="Combatant side")
    creature_type: str = Field(default="", description="Creature type")
    join_order: Annotated[int, Field(ge=0)] = 0
    current_hp: Annotated[int, Field(ge=0, description="Current HP")]
    max_hp: Annotated[int, Field(ge=1, description="Maximum HP")]
    temp_hp: Annotated[int, Field(ge=0, description="Temporary HP")] = 0
    armor_class: Annotated[int, Field(ge=0, le=50, description="Armor class")] = 10
    initiative: int = Field(default=0, description="Initiative total")
    initiative_bonus: int = Field(default=0, description="Initiative bonus")
    speed: Annotated[int, Field(ge=0)] = DEFAULT_SPEED
    is_active: bool = Field(default=True, description="Still in the encounter")
    player_id: str = Field(default="", description="Owning user")
    character_id: str = Field(default="", description="Character sheet ID")
    actions: list[AttackSpec] = Field(default_factory=list, description="Monster attacks")
    challenge_rating: float | None = Field(default=None, ge=0, description="Challenge rating")
    xp: Annotated[int, Field(ge=0)] = 0
    monster_ref: str = Field(default="", description="Monster definition key")
    turn: TurnState = Field(default_factory=TurnState)

    @model_validator(mode="before")
    @classmethod
    def clamp_current_hp(cls, data: Any) -> Any:
        """Clamp incoming current_hp into [0, max_hp]."""
        if isinstance(data, dict) and "current_hp" in data and "max_hp" in data:
            data = dict(data)
            data["current_hp"] = max(0, min(int(data["current_hp"]), int(data["max_hp"])))
        return data

    @property
    def is_player(self) -> bool:
        return self.type == CombatantType.PLAYER

    @property
    def is_monster(self) -> bool:
        return self.type == CombatantType.MONSTER

    @property
    def is_standing(self) -> bool:
        """Still in the fight: active and above 0 HP."""
        return self.is_active and self.current_hp > 0

    @property
    def can_take_turn(self) -> bool:
        return self.is_standing

    @property
    def can_act(self) -> bool:
        """Whether the engine may run this combatant's turn automatically.

        True only for monsters above 0 HP that have at least one attack.
        """
        return self.is_monster and self.current_hp > 0 and len(self.actions) > 0

    @property
    def effect_owner_id(self) -> str:
        """Key of this combatant's effects in the effect registry.

        Players carry their character's effects between encounters; monsters
        are keyed by combatant ID.
        """
        if self.is_player and self.character_id:
            return self.character_id
        return self.id

    def take_damage(self, amount: int) -> DamageOutcome:
        """Apply damage, temporary HP first, clamping HP at 0.

        Args:
            amount: Non-negative damage amount.

        Returns:
            How the damage was split between temporary and real HP.

        Raises:
            ValidationError: If amount is negative.
        """
        if amount < 0:
            raise ValidationError(
                "Damage amount cannot be negative",
                field_name="amount",
                invalid_value=amount,
            )
        was_up = self.current_hp > 0
        absorbed = min(self.temp_hp, amount)
        self.temp_hp -= absorbed
        remaining = amount - absorbed
        hp_lost = min(self.current_hp, remaining)
        self.current_hp -= hp_lost
        return DamageOutcome(
            absorbed=absorbed,
            hp_lost=hp_lost,
            defeated=was_up and self.current_hp == 0,
        )

    def heal(self, amount: int) -> int:
        """Restore hit points up to max_hp.

        Args:
            amount: Non-negative healing amount.

        Returns:
            Hit points actually restored.

        Raises:
            ValidationError: If amount is negative.
        """
        if amount < 0:
            raise ValidationError(
                "Healing amount cannot be negative",
                field_name="amount",
                invalid_value=amount,
            )
        before = self.current_hp
        self.current_hp = min(self.max_hp, self.current_hp + amount)
        return self.current_hp - before

    def grant_temp_hp(self, amount: int) -> bool:
        """Grant temporary HP. Temporary HP does not stack; the higher value wins.

        Returns:
            True if the new value replaced the old one.
        """
        if amount < 0:
            raise ValidationError(
                "Temporary HP cannot be negative",
                field_name="amount",
                invalid_value=amount,
            )
        if amount <= self.temp_hp:
            return False
        self.temp_hp = amount
        return True

    def start_new_turn(self) -> None:
        """Reset action economy for a fresh turn."""
        self.turn = TurnState(movement_remaining=self.speed)

    def reset_for_new_round(self) -> None:
        self.turn.has_acted = False


class MonsterTemplate(BaseModel):
    """What a caller supplies to put a monster into an encounter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    max_hp: Annotated[int, Field(ge=1)]
    armor_class: Annotated[int, Field(ge=0, le=50)] = 10
    initiative_bonus: int = 0
    speed: Annotated[int, Field(ge=0)] = DEFAULT_SPEED
    creature_type: str = ""
    actions: tuple[AttackSpec, ...] = ()
    challenge_rating: float | None = Field(default=None, ge=0)
    xp: Annotated[int, Field(ge=0)] = 0
    monster_ref: str = ""


# =============================================================================
# Encounter
# =============================================================================


class CombatLogEntry(BaseModel):
    """One line of the combat log, tagged with the round it happened in."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    round: Annotated[int, Field(ge=0)]
    text: str
    created_at: datetime = Field(default_factory=_now)

    def render(self) -> str:
        return f"Round {self.round}: {self.text}"


class Encounter(BaseModel):
    """A combat encounter.

    Attributes:
        id: Unique encounter identifier.
        name: Encounter name.
        description: Free text shown to players.
        session_id: Game session the encounter belongs to.
        channel_id: Chat channel the encounter is displayed in.
        message_id: Chat message displaying the encounter.
        created_by: User who created the encounter (the DM).
        status: Lifecycle state.
        players_won: Outcome once completed by combat end detection.
        combatants: Combatants keyed by ID, in insertion order.
        turn_order: Combatant IDs in initiative order.
        round: Current round (0 before the encounter starts).
        turn: Index into turn_order of the current combatant.
        round_pending: The last combatant acted and the next round awaits confirmation.
        combat_log: Round-tagged log entries.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Encounter ID")
    name: str = Field(min_length=1, max_length=100, description="Encounter name")
    description: str = Field(default="", max_length=2000)
    session_id: str = Field(default="", description="Owning session")
    channel_id: str = Field(default="", description="Display channel")
    message_id: str = Field(default="", description="Display message")
    created_by: str = Field(default="", description="Creator (DM)")
    created_at: datetime = Field(default_factory=_now)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    status: EncounterStatus = Field(default=EncounterStatus.SETUP)
    players_won: bool | None = None
    combatants: dict[str, Combatant] = Field(default_factory=dict)
    turn_order: list[str] = Field(default_factory=list)
    round: Annotated[int, Field(ge=0)] = 0
    turn: Annotated[int, Field(ge=0)] = 0
    round_pending: bool = False
    combat_log: list[CombatLogEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_turn_index(self) -> Encounter:
        """Keep the turn index inside the turn order."""
        if self.turn_order and self.turn >= len(self.turn_order):
            raise ValidationError(
                "Turn index is outside the turn order",
                field_name="turn",
                invalid_value=self.turn,
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.status == EncounterStatus.ACTIVE

    def get_combatant(self, combatant_id: str) -> Combatant:
        """Look up a combatant by ID.

        Raises:
            NotFoundError: If the encounter has no such combatant.
        """
        combatant = self.combatants.get(combatant_id)
        if combatant is None:
            raise NotFoundError(
                f"Combatant {combatant_id!r} is not in encounter {self.id!r}",
                resource="combatant",
                resource_id=combatant_id,
            )
        return combatant

    def combatants_of(self, combatant_type: CombatantType) -> list[Combatant]:
        return [c for c in self.combatants.values() if c.type == combatant_type]

    def ordered_combatants(self) -> list[Combatant]:
        """Combatants in turn order (insertion order before initiative)."""
        if not self.turn_order:
            return list(self.combatants.values())
        return [self.combatants[cid] for cid in self.turn_order if cid in self.combatants]

    def current_combatant(self) -> Combatant | None:
        """The combatant whose turn it is, if anyone's.

        Returns None when initiative has not been rolled, when a round is
        pending, or when the occupant of the current slot can no longer
        take a turn.
        """
        if not self.turn_order or self.round_pending:
            return None
        combatant = self.combatants.get(self.turn_order[self.turn])
        if combatant is None or not combatant.can_take_turn:
            return None
        return combatant

    def add_log(self, text: str, *, limit: int | None = None) -> CombatLogEntry:
        """Append a log entry for the current round.

        Args:
            text: Log text without the round prefix.
            limit: Keep at most this many entries (oldest dropped first).

        Returns:
            The appended entry.
        """
        entry = CombatLogEntry(round=self.round, text=text)
        self.combat_log.append(entry)
        if limit is not None and len(self.combat_log) > limit:
            del self.combat_log[: len(self.combat_log) - limit]
        return entry

    def rendered_log(self) -> list[str]:
        return [entry.render() for entry in self.combat_log]


__all__ = [
    "CombatantType",
    "EncounterStatus",
    "AttackType",
    "ActionKind",
    "DamageDice",
    "AttackSpec",
    "TurnState",
    "DamageOutcome",
    "Combatant",
    "MonsterTemplate",
    "CombatLogEntry",
    "Encounter",
]
