"""dnd_combat - Turn-based D&D 5E combat core.

Encounter state, initiative, turn order, status effects and attack
resolution for a tabletop RPG bot. Chat front ends talk to the
``EncounterEngine``; it is the only writer of encounter state.

ARCHITECTURE:
- The engine owns TRUTH (encounters, HP, turn order, dice via d20)
- Status effects contribute modifiers; they never touch combatants directly
- Storage hands out copies, so callers cannot mutate encounters behind the engine

Example:
    >>> from dnd_combat import EncounterEngine, MonsterTemplate
    >>> from dnd_combat.storage import InMemoryEncounterRepository
    >>>
    >>> engine = EncounterEngine(InMemoryEncounterRepository())
    >>> encounter = engine.create_encounter("Goblin Ambush", created_by="dm")
    >>> engine.add_monster(encounter.id, "dm", MonsterTemplate(name="Goblin", max_hp=7))
    >>> engine.roll_initiative(encounter.id, "dm")
    >>> engine.start_encounter(encounter.id, "dm")

Modules:
    core: Configuration, logging, constants and base exceptions.
    models: Pydantic V2 schemas for encounters, characters and sessions.
    effects: Status effects, modifiers and the per-actor effect manager.
    engine: Dice, combat resolution, permissions and the turn engine.
    storage: Encounter repositories (in-memory and SQLite).
"""

from __future__ import annotations

# Core
from dnd_combat.core.config import Settings, get_settings
from dnd_combat.core.exceptions import DndCombatError
from dnd_combat.core.logging import configure_logging, get_logger

# Models
from dnd_combat.models.combat import (
    AttackSpec,
    Combatant,
    CombatantType,
    DamageDice,
    Encounter,
    EncounterStatus,
    MonsterTemplate,
)

# Effects
from dnd_combat.effects.manager import EffectManager, EffectRegistry
from dnd_combat.effects.types import ModifierTarget, StatusEffect

# Engine
from dnd_combat.engine.turn_engine import AttackRequest, EncounterEngine


__version__ = "0.1.0"
__all__ = [
    # Version info
    "__version__",
    # Core
    "DndCombatError",
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    # Models
    "AttackSpec",
    "Combatant",
    "CombatantType",
    "DamageDice",
    "Encounter",
    "EncounterStatus",
    "MonsterTemplate",
    # Effects
    "EffectManager",
    "EffectRegistry",
    "ModifierTarget",
    "StatusEffect",
    # Engine
    "AttackRequest",
    "EncounterEngine",
]
