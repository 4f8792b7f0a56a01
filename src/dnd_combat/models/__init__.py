"""Pydantic models for encounters, combatants, characters and sessions."""

from __future__ import annotations

from dnd_combat.models.character import AbilityScore, AbilityScores, CharacterSheet
from dnd_combat.models.combat import (
    ActionKind,
    AttackSpec,
    AttackType,
    Combatant,
    CombatantType,
    CombatLogEntry,
    DamageDice,
    DamageOutcome,
    Encounter,
    EncounterStatus,
    MonsterTemplate,
    TurnState,
)
from dnd_combat.models.equipment import (
    Armor,
    ArmorCategory,
    Gear,
    Item,
    Loadout,
    Weapon,
)
from dnd_combat.models.session import (
    DungeonDifficulty,
    DungeonSession,
    SessionInfo,
    SessionMetadata,
    StandardSession,
)


__all__ = [
    # Combat
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
    # Characters
    "AbilityScore",
    "AbilityScores",
    "CharacterSheet",
    # Equipment
    "ArmorCategory",
    "Weapon",
    "Armor",
    "Gear",
    "Item",
    "Loadout",
    # Sessions
    "DungeonDifficulty",
    "StandardSession",
    "DungeonSession",
    "SessionMetadata",
    "SessionInfo",
]
