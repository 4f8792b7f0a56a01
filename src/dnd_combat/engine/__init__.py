"""Combat engine for the dnd_combat package.

Submodules:
    dice: Dice rolling with d20 mechanics (d20 library)
    resolver: Attack, saving throw and initiative resolution
    access: Permission checks for encounter operations
    collaborators: Character and session sources the engine consumes
    turn_engine: Initiative, turn order, damage and combat end

Example:
    >>> from dnd_combat.engine import EncounterEngine, ScriptedRoller
    >>> from dnd_combat.storage import InMemoryEncounterRepository
    >>>
    >>> engine = EncounterEngine(InMemoryEncounterRepository(), roller=ScriptedRoller([15, 8]))
    >>> encounter = engine.create_encounter("Goblin Ambush", created_by="dm")
"""

from __future__ import annotations

# =============================================================================
# Dice Rolling
# =============================================================================
from dnd_combat.engine.dice import (
    D20Roll,
    DiceRoller,
    Roller,
    RollMode,
    RollResult,
    ScriptedRoller,
    combine_roll_modes,
    roll_d20,
)

# =============================================================================
# Resolution
# =============================================================================
from dnd_combat.engine.resolver import (
    AttackResult,
    CombatResolver,
    DamageByType,
    InitiativeRoll,
    SaveResult,
)

# =============================================================================
# Collaborators & Access
# =============================================================================
from dnd_combat.engine.access import AccessPolicy
from dnd_combat.engine.collaborators import (
    CharacterProvider,
    InMemoryCharacterProvider,
    InMemorySessionProvider,
    SessionProvider,
)

# =============================================================================
# Turn Engine
# =============================================================================
from dnd_combat.engine.turn_engine import (
    AttackOutcome,
    AttackRequest,
    EncounterEngine,
    MonsterTurnReport,
    check_combat_end,
    get_current_combatant,
)


__all__ = [
    # Dice
    "D20Roll",
    "DiceRoller",
    "Roller",
    "RollMode",
    "RollResult",
    "ScriptedRoller",
    "combine_roll_modes",
    "roll_d20",
    # Resolution
    "AttackResult",
    "CombatResolver",
    "DamageByType",
    "InitiativeRoll",
    "SaveResult",
    # Collaborators & Access
    "AccessPolicy",
    "CharacterProvider",
    "InMemoryCharacterProvider",
    "InMemorySessionProvider",
    "SessionProvider",
    # Turn Engine
    "AttackOutcome",
    "AttackRequest",
    "EncounterEngine",
    "MonsterTurnReport",
    "check_combat_end",
    "get_current_combatant",
]
