"""Pytest configuration and shared fixtures.

This module provides common fixtures and configuration for all tests
in the dnd_combat test suite.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from dnd_combat.core.config import EngineSettings, RoundAdvanceMode
from dnd_combat.effects.manager import EffectRegistry
from dnd_combat.engine.collaborators import InMemoryCharacterProvider, InMemorySessionProvider
from dnd_combat.engine.dice import DiceRoller, ScriptedRoller
from dnd_combat.engine.turn_engine import EncounterEngine
from dnd_combat.models.character import AbilityScores, CharacterSheet
from dnd_combat.models.combat import (
    AttackSpec,
    Combatant,
    CombatantType,
    DamageDice,
    MonsterTemplate,
)
from dnd_combat.models.equipment import CHAIN_SHIRT, LONGSWORD, Loadout
from dnd_combat.models.session import DungeonSession, SessionInfo
from dnd_combat.storage.repository import InMemoryEncounterRepository


if TYPE_CHECKING:
    from collections.abc import Generator


DM_ID = "dm-user"
PLAYER_ID = "player-user"


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Reset the settings cache before and after each test."""
    from dnd_combat.core.config import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set up mock environment variables for testing.

    Returns:
        Dictionary of environment variables that were set.
    """
    env_vars = {
        "DND_COMBAT_DEBUG": "true",
        "DND_COMBAT_LOG_LEVEL": "DEBUG",
        "DND_COMBAT_ENGINE_ROUND_ADVANCE_MODE": "auto",
        "DND_COMBAT_ENGINE_DICE_SEED": "7",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


# =============================================================================
# Clock Fixtures
# =============================================================================


class FakeClock:
    """Manually advanced clock for effect expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock starting at 2024-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def effect_registry(clock: FakeClock) -> EffectRegistry:
    """Provide an effect registry driven by the fake clock."""
    return EffectRegistry(seconds_per_round=6.0, clock=clock)


# =============================================================================
# Dice Fixtures
# =============================================================================


@pytest.fixture
def dice_roller() -> DiceRoller:
    """Create a DiceRoller with a fixed seed for reproducible tests.

    Returns:
        DiceRoller instance with fixed seed.
    """
    return DiceRoller(seed=42)


@pytest.fixture
def scripted_roller() -> ScriptedRoller:
    """Create an empty ScriptedRoller; tests queue faces with ``extend``."""
    return ScriptedRoller()


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def scimitar() -> AttackSpec:
    """Goblin scimitar: +4 to hit, 1d6+2 slashing."""
    return AttackSpec(
        name="Scimitar",
        attack_bonus=4,
        damage=(DamageDice(dice_count=1, dice_size=6, bonus=2, damage_type="slashing"),),
    )


@pytest.fixture
def goblin_template(scimitar: AttackSpec) -> MonsterTemplate:
    """Goblin: AC 15, 7 HP, initiative +2."""
    return MonsterTemplate(
        name="Goblin",
        max_hp=7,
        armor_class=15,
        initiative_bonus=2,
        creature_type="goblinoid",
        actions=(scimitar,),
        challenge_rating=0.25,
        xp=50,
        monster_ref="goblin",
    )


@pytest.fixture
def hero_sheet() -> CharacterSheet:
    """Hero: AC 14 (chain shirt, Dex 12), 11 HP, longsword."""
    return CharacterSheet(
        id="char-hero",
        owner_id=PLAYER_ID,
        name="Hero",
        race="Human",
        character_class="Fighter",
        level=1,
        max_hp=11,
        abilities=AbilityScores(strength=16, dexterity=12, constitution=14),
        loadout=Loadout(items=(LONGSWORD, CHAIN_SHIRT)),
    )


@pytest.fixture
def make_combatant() -> Callable[..., Combatant]:
    """Factory for standalone combatants."""

    def _make(
        name: str = "Goblin",
        combatant_type: CombatantType = CombatantType.MONSTER,
        **overrides: Any,
    ) -> Combatant:
        data: dict[str, Any] = {
            "id": name.lower().replace(" ", "-"),
            "name": name,
            "type": combatant_type,
            "current_hp": 7,
            "max_hp": 7,
            "armor_class": 15,
        }
        data.update(overrides)
        return Combatant(**data)

    return _make


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def repository() -> InMemoryEncounterRepository:
    """Provide an empty in-memory encounter repository."""
    return InMemoryEncounterRepository()


@pytest.fixture
def characters(hero_sheet: CharacterSheet) -> InMemoryCharacterProvider:
    """Provide a character provider holding the hero."""
    return InMemoryCharacterProvider([hero_sheet])


@pytest.fixture
def sessions() -> InMemorySessionProvider:
    """Provide a session provider with one dungeon session."""
    return InMemorySessionProvider(
        [SessionInfo(id="dungeon-1", dm_user_id="", metadata=DungeonSession(room_number=1))]
    )


@pytest.fixture
def make_engine(
    repository: InMemoryEncounterRepository,
    characters: InMemoryCharacterProvider,
    sessions: InMemorySessionProvider,
    effect_registry: EffectRegistry,
) -> Callable[..., EncounterEngine]:
    """Factory for engines sharing the test repository and collaborators.

    Call with ``faces`` to script the dice and ``mode`` to pick the round
    advance mode.
    """

    def _make(
        faces: list[int] | None = None,
        mode: RoundAdvanceMode = RoundAdvanceMode.CHECKPOINT,
        **settings: Any,
    ) -> EncounterEngine:
        counter = iter(range(1, 10_000))
        return EncounterEngine(
            repository,
            roller=ScriptedRoller(faces or []),
            effects=effect_registry,
            characters=characters,
            sessions=sessions,
            settings=EngineSettings(round_advance_mode=mode, **settings),
            id_factory=lambda: f"id-{next(counter)}",
        )

    return _make
