"""Status effect engine.

Exports:
    Models:
        StatusEffect, Modifier, Duration, EffectCondition and their enums.

    Manager:
        EffectManager: Effects of one actor with stacking and expiry.
        EffectRegistry: Actor ID to EffectManager map.

    Builders:
        EffectBuilder and prebuilt effects (Rage, Bless, Shield, ...).
"""

from __future__ import annotations

from dnd_combat.effects.builder import (
    EffectBuilder,
    build_bless_effect,
    build_favored_enemy_effect,
    build_magic_weapon_effect,
    build_poisoned_condition,
    build_rage_effect,
    build_shield_spell_effect,
    rage_damage_bonus,
)
from dnd_combat.effects.manager import (
    EffectManager,
    EffectRegistry,
    modifier_condition_met,
    utc_now,
)
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
from dnd_combat.effects.values import (
    ModifierValue,
    ValueKeyword,
    ValueKind,
    parse_modifier_value,
)


__all__ = [
    # Models
    "StatusEffect",
    "Modifier",
    "Duration",
    "EffectCondition",
    "EffectSource",
    "DurationType",
    "StackingRule",
    "ModifierTarget",
    # Values
    "ModifierValue",
    "ValueKind",
    "ValueKeyword",
    "parse_modifier_value",
    # Manager
    "EffectManager",
    "EffectRegistry",
    "modifier_condition_met",
    "utc_now",
    # Builders
    "EffectBuilder",
    "rage_damage_bonus",
    "build_rage_effect",
    "build_favored_enemy_effect",
    "build_bless_effect",
    "build_shield_spell_effect",
    "build_magic_weapon_effect",
    "build_poisoned_condition",
]
