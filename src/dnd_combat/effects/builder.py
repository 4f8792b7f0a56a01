"""Fluent construction of status effects plus common class features and spells.

Example:
    >>> effect = (
    ...     EffectBuilder("Hex")
    ...     .with_source(EffectSource.SPELL, "hex")
    ...     .with_duration(DurationType.ROUNDS, 600)
    ...     .with_concentration()
    ...     .add_modifier(ModifierTarget.DAMAGE, "+1d6", damage_type="necrotic")
    ...     .build()
    ... )
"""

from __future__ import annotations

from uuid import uuid4

from dnd_combat.core.constants import (
    PHYSICAL_DAMAGE_TYPES,
    RAGE_DAMAGE_BY_LEVEL,
    RAGE_DURATION_ROUNDS,
)
from dnd_combat.effects.manager import MELEE_ONLY, VS_ENEMY_TYPE_PREFIX, WITH_WEAPON_PREFIX
from dnd_combat.effects.types import (
    Duration,
    DurationType,
    EffectCondition,
    EffectSource,
    Modifier,
    ModifierTarget,
    StackingRule,
    StatusEffect,
)


def _effect_id(name: str) -> str:
    slug = "_".join(name.lower().split())
    return f"{slug}_{uuid4().hex[:12]}"


class EffectBuilder:
    """Accumulates the parts of a StatusEffect and builds the frozen model.

    New effects default to a permanent duration and the REPLACE stacking
    rule, with a fresh unique ID derived from the name.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._id = _effect_id(name)
        self._description = ""
        self._source = EffectSource.OTHER
        self._source_id = ""
        self._duration_type = DurationType.PERMANENT
        self._rounds = 0
        self._concentration = False
        self._stacking_rule = StackingRule.REPLACE
        self._modifiers: list[Modifier] = []
        self._conditions: list[EffectCondition] = []

    def with_id(self, effect_id: str) -> EffectBuilder:
        self._id = effect_id
        return self

    def with_source(self, source: EffectSource, source_id: str = "") -> EffectBuilder:
        self._source = source
        self._source_id = source_id
        return self

    def with_description(self, description: str) -> EffectBuilder:
        self._description = description
        return self

    def with_duration(self, duration_type: DurationType, rounds: int = 0) -> EffectBuilder:
        self._duration_type = duration_type
        self._rounds = rounds
        return self

    def with_concentration(self) -> EffectBuilder:
        self._concentration = True
        return self

    def with_stacking_rule(self, rule: StackingRule) -> EffectBuilder:
        self._stacking_rule = rule
        return self

    def add_modifier(
        self,
        target: ModifierTarget,
        value: str,
        *,
        condition: str = "",
        sub_target: str = "",
        damage_type: str = "",
        description: str = "",
    ) -> EffectBuilder:
        """Append a modifier.

        Raises:
            ValidationError: If ``value`` is not a recognized modifier value.
        """
        self._modifiers.append(
            Modifier(
                target=target,
                value=value,
                condition=condition,
                sub_target=sub_target,
                damage_type=damage_type,
                description=description,
            )
        )
        return self

    def add_condition(self, condition_type: str, value: str) -> EffectBuilder:
        """Gate the whole effect on ``conditions[condition_type] == value``."""
        self._conditions.append(EffectCondition(type=condition_type, value=value))
        return self

    def build(self) -> StatusEffect:
        return StatusEffect(
            id=self._id,
            name=self._name,
            description=self._description,
            source=self._source,
            source_id=self._source_id,
            duration=Duration(
                type=self._duration_type,
                rounds=self._rounds,
                concentration=self._concentration,
            ),
            stacking_rule=self._stacking_rule,
            modifiers=tuple(self._modifiers),
            conditions=tuple(self._conditions),
        )


# =============================================================================
# Common Effects
# =============================================================================


def rage_damage_bonus(level: int) -> int:
    """Rage damage bonus for a barbarian level (+2, +3 from 9th, +4 from 16th)."""
    for min_level, bonus in RAGE_DAMAGE_BY_LEVEL:
        if level >= min_level:
            return bonus
    return RAGE_DAMAGE_BY_LEVEL[-1][1]


def build_rage_effect(level: int) -> StatusEffect:
    """Barbarian Rage.

    Melee damage bonus scaled by level, resistance to physical damage, and
    advantage on Strength checks and Strength saving throws for ten rounds.

    Args:
        level: Barbarian level.

    Returns:
        The rage effect.
    """
    builder = (
        EffectBuilder("Rage")
        .with_source(EffectSource.ABILITY, "barbarian_rage")
        .with_description(
            "You have advantage on Strength checks and Strength saving throws. "
            "Melee weapon attacks using Strength gain a damage bonus. You have "
            "resistance to bludgeoning, piercing, and slashing damage."
        )
        .with_duration(DurationType.ROUNDS, RAGE_DURATION_ROUNDS)
        .add_modifier(ModifierTarget.DAMAGE, f"+{rage_damage_bonus(level)}", condition=MELEE_ONLY)
    )
    for damage_type in PHYSICAL_DAMAGE_TYPES:
        builder.add_modifier(
            ModifierTarget.RESISTANCE,
            "resistance",
            damage_type=damage_type,
            description=f"Resistance to {damage_type} damage",
        )
    return (
        builder.add_modifier(
            ModifierTarget.ABILITY_SCORE,
            "advantage",
            sub_target="strength",
            description="Advantage on Strength checks",
        )
        .add_modifier(
            ModifierTarget.SAVING_THROW,
            "advantage",
            sub_target="strength",
            description="Advantage on Strength saving throws",
        )
        .build()
    )


def build_favored_enemy_effect(enemy_type: str) -> StatusEffect:
    """Ranger Favored Enemy against one creature type.

    The whole effect is gated on ``enemy_type``, and each modifier is also
    gated with ``vs_enemy_type``.
    """
    gate = f"{VS_ENEMY_TYPE_PREFIX}{enemy_type}"
    return (
        EffectBuilder("Favored Enemy")
        .with_source(EffectSource.FEATURE, "ranger_favored_enemy")
        .with_description(
            f"You have advantage on Wisdom (Survival) checks to track {enemy_type}, "
            "as well as on Intelligence checks to recall information about them."
        )
        .with_duration(DurationType.PERMANENT)
        .add_modifier(
            ModifierTarget.SKILL_CHECK,
            "advantage",
            condition=gate,
            sub_target="survival",
            description="Advantage on Survival checks",
        )
        .add_modifier(
            ModifierTarget.ABILITY_SCORE,
            "advantage",
            condition=gate,
            sub_target="intelligence",
            description="Advantage on Intelligence checks",
        )
        .add_condition("enemy_type", enemy_type)
        .build()
    )


def build_bless_effect() -> StatusEffect:
    """Bless: +1d4 to attack rolls and saving throws while concentrating."""
    return (
        EffectBuilder("Bless")
        .with_source(EffectSource.SPELL, "bless")
        .with_description(
            "Whenever a target makes an attack roll or a saving throw before the "
            "spell ends, the target can roll a d4 and add the number rolled."
        )
        .with_duration(DurationType.ROUNDS, 10)
        .with_concentration()
        .add_modifier(ModifierTarget.ATTACK_ROLL, "+1d4")
        .add_modifier(ModifierTarget.SAVING_THROW, "+1d4")
        .build()
    )


def build_shield_spell_effect() -> StatusEffect:
    """Shield: +5 AC for one round."""
    return (
        EffectBuilder("Shield")
        .with_source(EffectSource.SPELL, "shield")
        .with_description(
            "An invisible barrier of magical force appears and protects you. "
            "Until the start of your next turn, you have a +5 bonus to AC."
        )
        .with_duration(DurationType.ROUNDS, 1)
        .add_modifier(ModifierTarget.AC, "+5")
        .build()
    )


def build_magic_weapon_effect(weapon_name: str, bonus: int) -> StatusEffect:
    """A +X magic weapon, applying only to attacks made with that weapon."""
    bonus_str = f"+{bonus}"
    gate = f"{WITH_WEAPON_PREFIX}{weapon_name}"
    return (
        EffectBuilder(f"{weapon_name} {bonus_str}")
        .with_source(EffectSource.ITEM, weapon_name)
        .with_description(
            f"This magic weapon grants a {bonus_str} bonus to attack and damage rolls."
        )
        .with_duration(DurationType.WHILE_EQUIPPED)
        .add_modifier(ModifierTarget.ATTACK_ROLL, bonus_str, condition=gate)
        .add_modifier(ModifierTarget.DAMAGE, bonus_str, condition=gate)
        .build()
    )


def build_poisoned_condition() -> StatusEffect:
    """Poisoned: disadvantage on attack rolls and ability checks until a rest."""
    return (
        EffectBuilder("Poisoned")
        .with_source(EffectSource.CONDITION, "poisoned")
        .with_description(
            "A poisoned creature has disadvantage on attack rolls and ability checks."
        )
        .with_duration(DurationType.UNTIL_REST)
        .add_modifier(ModifierTarget.ATTACK_ROLL, "disadvantage")
        .add_modifier(ModifierTarget.ABILITY_SCORE, "disadvantage")
        .build()
    )


__all__ = [
    "EffectBuilder",
    "rage_damage_bonus",
    "build_rage_effect",
    "build_favored_enemy_effect",
    "build_bless_effect",
    "build_shield_spell_effect",
    "build_magic_weapon_effect",
    "build_poisoned_condition",
]
