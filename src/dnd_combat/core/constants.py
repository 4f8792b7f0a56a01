"""Rules constants shared across the combat engine."""

from __future__ import annotations

# =============================================================================
# Dice
# =============================================================================

D20 = 20
"""Size of the die used for attack rolls, saves and initiative."""

NATURAL_CRIT = 20
"""Natural d20 result that always hits and doubles damage dice."""

NATURAL_MISS = 1
"""Natural d20 result that always misses."""

# =============================================================================
# Time
# =============================================================================

SECONDS_PER_ROUND = 6.0
"""Default in-world length of a combat round, used for effect expiry."""

# =============================================================================
# Combatant Defaults
# =============================================================================

DEFAULT_SPEED = 30
"""Walking speed in feet when a sheet does not say otherwise."""

UNARMED_DAMAGE_TYPE = "bludgeoning"
"""Damage type of the 1d4 fallback strike for attacks with no listed damage."""

# =============================================================================
# Barbarian Rage
# =============================================================================

RAGE_DAMAGE_BY_LEVEL: tuple[tuple[int, int], ...] = ((16, 4), (9, 3), (1, 2))
"""(minimum level, bonus) pairs for rage damage, checked top-down."""

RAGE_DURATION_ROUNDS = 10
"""Rage lasts one minute."""

PHYSICAL_DAMAGE_TYPES: tuple[str, ...] = ("bludgeoning", "piercing", "slashing")
"""Damage types a raging barbarian resists."""

# =============================================================================
# Combat Log Messages
# =============================================================================

VICTORY_MESSAGE = "Victory! All enemies have been defeated!"
DEFEAT_MESSAGE = "Defeat! The party has fallen..."


__all__ = [
    "D20",
    "NATURAL_CRIT",
    "NATURAL_MISS",
    "SECONDS_PER_ROUND",
    "DEFAULT_SPEED",
    "UNARMED_DAMAGE_TYPE",
    "RAGE_DAMAGE_BY_LEVEL",
    "RAGE_DURATION_ROUNDS",
    "PHYSICAL_DAMAGE_TYPES",
    "VICTORY_MESSAGE",
    "DEFEAT_MESSAGE",
]
