"""Pydantic V2 schemas for status effects.

A status effect is a buff, debuff or condition applied to one actor. It
bundles a list of modifiers (what it changes), a duration (when it goes
away) and a stacking rule (what happens when the same effect is applied
again). Effects are frozen: the effect manager stores copies with their
timing fields filled in.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dnd_combat.effects.values import ModifierValue, parse_modifier_value


# =============================================================================
# Enumerations
# =============================================================================


class EffectSource(StrEnum):
    """Where an effect came from."""

    ABILITY = "ability"
    SPELL = "spell"
    ITEM = "item"
    CONDITION = "condition"
    FEATURE = "feature"
    OTHER = "other"


class DurationType(StrEnum):
    """How an effect's lifetime is measured."""

    PERMANENT = "permanent"
    ROUNDS = "rounds"
    UNTIL_REST = "until_rest"
    WHILE_EQUIPPED = "while_equipped"
    INSTANT = "instant"


class StackingRule(StrEnum):
    """What happens when an effect with the same name and source is reapplied."""

    REPLACE = "replace"
    STACK = "stack"
    TAKE_HIGHEST = "take_highest"
    TAKE_LOWEST = "take_lowest"


class ModifierTarget(StrEnum):
    """Which roll or statistic a modifier applies to."""

    ATTACK_ROLL = "attack_roll"
    DAMAGE = "damage"
    AC = "ac"
    ABILITY_SCORE = "ability_score"
    SKILL_CHECK = "skill_check"
    SAVING_THROW = "saving_throw"
    SPEED = "speed"
    INITIATIVE = "initiative"
    HP = "hp"
    MAX_HP = "max_hp"
    RESISTANCE = "resistance"
    IMMUNITY = "immunity"
    VULNERABILITY = "vulnerability"


# =============================================================================
# Components
# =============================================================================


class Duration(BaseModel):
    """Lifetime of an effect.

    Attributes:
        type: How the lifetime is measured.
        rounds: Number of rounds for ROUNDS durations.
        concentration: Whether the effect ends when concentration breaks.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: DurationType = Field(default=DurationType.PERMANENT, description="Duration type")
    rounds: Annotated[int, Field(ge=0, description="Rounds for round-based durations")] = 0
    concentration: bool = Field(default=False, description="Requires concentration")


class Modifier(BaseModel):
    """A single change an effect makes.

    Attributes:
        target: Roll or statistic being modified.
        value: Flat number, dice expression or keyword as text.
        condition: Optional gate such as ``melee_only`` or ``vs_enemy_type:orc``.
        sub_target: Narrower target, e.g. ``strength`` for a saving throw.
        damage_type: Damage type for damage, resistance and immunity modifiers.
        description: Human-readable text.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target: ModifierTarget = Field(description="Modified roll or statistic")
    value: str = Field(description="Modifier value")
    condition: str = Field(default="", description="Modifier gate")
    sub_target: str = Field(default="", description="Narrower target")
    damage_type: str = Field(default="", description="Damage type")
    description: str = Field(default="", description="Human-readable description")

    @field_validator("value")
    @classmethod
    def validate_value(cls, value: str) -> str:
        """Reject values the resolver cannot interpret.

        Raises:
            ValidationError: If the value is not a flat, dice or keyword value.
        """
        parse_modifier_value(value)
        return value.strip()

    @property
    def parsed(self) -> ModifierValue:
        return parse_modifier_value(self.value)


class EffectCondition(BaseModel):
    """A gate on a whole effect.

    The effect contributes modifiers only when the query conditions map
    ``type`` to exactly ``value``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str = Field(min_length=1, description="Condition key")
    value: str = Field(description="Required value")
    parameters: dict[str, str] = Field(default_factory=dict, description="Extra parameters")


# =============================================================================
# Status Effect
# =============================================================================


class StatusEffect(BaseModel):
    """A buff, debuff or condition on one actor.

    Attributes:
        id: Unique effect identifier.
        name: Display name; together with source it identifies the effect for stacking.
        description: Rules text.
        source: Kind of thing that applied the effect.
        source_id: Identifier of the specific ability, spell or item.
        duration: Lifetime of the effect.
        stacking_rule: Behavior when reapplied.
        modifiers: Ordered modifiers.
        conditions: Gates on the whole effect.
        active: Whether the effect currently applies.
        created_at: When the manager stored the effect.
        expires_at: When the effect stops applying (None never expires).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(description="Unique effect ID")
    name: str = Field(description="Effect name")
    description: str = Field(default="", description="Rules text")
    source: EffectSource = Field(default=EffectSource.OTHER, description="Effect source")
    source_id: str = Field(default="", description="Specific source identifier")
    duration: Duration = Field(default_factory=Duration, description="Effect lifetime")
    stacking_rule: StackingRule = Field(default=StackingRule.REPLACE, description="Stacking rule")
    modifiers: tuple[Modifier, ...] = Field(default=(), description="Modifiers")
    conditions: tuple[EffectCondition, ...] = Field(default=(), description="Effect gates")
    active: bool = Field(default=True, description="Whether the effect applies")
    created_at: datetime | None = Field(default=None, description="When stored")
    expires_at: datetime | None = Field(default=None, description="Expiry time")

    @property
    def stacking_key(self) -> tuple[str, str]:
        """Identity used by stacking rules.

        Returns:
            Tuple of (name, source).
        """
        return (self.name, self.source.value)

    @property
    def magnitude(self) -> float | None:
        """Sum of the numeric modifier magnitudes, or None if there are none.

        Used to compare two instances under TAKE_HIGHEST and TAKE_LOWEST.
        """
        magnitudes = [m.parsed.magnitude for m in self.modifiers if m.parsed.is_numeric]
        if not magnitudes:
            return None
        return float(sum(magnitudes))  # type: ignore[arg-type]

    def is_expired(self, now: datetime) -> bool:
        """Check whether the effect has expired at ``now``.

        Args:
            now: Current time.

        Returns:
            True if the effect has an expiry at or before ``now``.
        """
        return self.expires_at is not None and self.expires_at <= now

    def applies_under(self, conditions: dict[str, str]) -> bool:
        """Check every effect-level gate against a condition map."""
        return all(conditions.get(c.type) == c.value for c in self.conditions)


__all__ = [
    "EffectSource",
    "DurationType",
    "StackingRule",
    "ModifierTarget",
    "Duration",
    "Modifier",
    "EffectCondition",
    "StatusEffect",
]
