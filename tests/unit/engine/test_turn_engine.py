"""Tests for the encounter turn engine."""

from __future__ import annotations

import random
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest

from dnd_combat.core.config import RoundAdvanceMode
from dnd_combat.core.constants import DEFEAT_MESSAGE, VICTORY_MESSAGE
from dnd_combat.core.exceptions import (
    CombatError,
    ConfigurationError,
    DiceRollError,
    InvalidStateError,
    NotFoundError,
    OperationCancelledError,
    PermissionDeniedError,
    ValidationError,
)
from dnd_combat.effects.builder import build_shield_spell_effect
from dnd_combat.engine.dice import ScriptedRoller
from dnd_combat.engine.turn_engine import (
    AttackRequest,
    EncounterEngine,
    check_combat_end,
    get_current_combatant,
)
from dnd_combat.models.character import CharacterSheet
from dnd_combat.models.combat import (
    ActionKind,
    Combatant,
    CombatantType,
    Encounter,
    EncounterStatus,
    MonsterTemplate,
)
from dnd_combat.storage.repository import InMemoryEncounterRepository


if TYPE_CHECKING:
    from tests.conftest import FakeClock


DM_ID = "dm-user"
PLAYER_ID = "player-user"


EngineFactory = Callable[..., EncounterEngine]


def _goblin_vs_hero(
    engine: EncounterEngine,
    goblin: MonsterTemplate,
    *,
    session_id: str = "",
) -> tuple[str, str, str]:
    encounter = engine.create_encounter("Goblin Ambush", created_by=DM_ID, session_id=session_id)
    monster = engine.add_monster(encounter.id, DM_ID, goblin)
    player = engine.add_player(encounter.id, PLAYER_ID, "char-hero")
    return encounter.id, monster.id, player.id


def _started(
    engine: EncounterEngine,
    goblin: MonsterTemplate,
    *,
    session_id: str = "",
) -> tuple[str, str, str]:
    """Goblin rolls 15 (17), hero rolls 10 (11): goblin acts first."""
    ids = _goblin_vs_hero(engine, goblin, session_id=session_id)
    engine.roll_initiative(ids[0], DM_ID)
    engine.start_encounter(ids[0], DM_ID)
    return ids


# =============================================================================
# Setup
# =============================================================================


class TestSetup:
    """Tests for encounter creation and joining."""

    def test_create_and_get(self, make_engine: EngineFactory) -> None:
        """Test a new encounter starts in setup."""
        engine = make_engine()

        created = engine.create_encounter("Goblin Ambush", created_by=DM_ID, session_id="s-1")
        fetched = engine.get_encounter(created.id)

        assert fetched.status == EncounterStatus.SETUP
        assert fetched.round == 0
        assert fetched.created_by == DM_ID

    def test_duplicate_id_rejected(self, make_engine: EngineFactory) -> None:
        """Test encounter IDs are unique."""
        engine = make_engine()
        engine.create_encounter("A", encounter_id="fixed")

        with pytest.raises(ValidationError):
            engine.create_encounter("B", encounter_id="fixed")

    def test_unknown_encounter(self, make_engine: EngineFactory) -> None:
        """Test operations on unknown encounters raise NotFoundError."""
        with pytest.raises(NotFoundError):
            make_engine().roll_initiative("missing", DM_ID)

    def test_unknown_encounter_keeps_no_lock(self, make_engine: EngineFactory) -> None:
        """Test lookups of unknown IDs leave nothing behind in the lock table."""
        engine = make_engine()
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)

        with pytest.raises(NotFoundError):
            engine.get_encounter("bogus")
        with pytest.raises(NotFoundError):
            engine.next_turn("bogus", DM_ID)

        assert set(engine._locks) == {encounter.id}

    def test_encounter_from_another_engine_is_lockable(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test an encounter created elsewhere in the shared repository can be used."""
        encounter = make_engine().create_encounter("Ambush", created_by=DM_ID, encounter_id="shared")
        other = make_engine()

        other.add_monster(encounter.id, DM_ID, goblin_template)

        assert len(other.get_encounter("shared").combatants) == 1

    def test_add_monster_copies_template(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a monster combatant gets the template's numbers."""
        engine = make_engine()
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)

        goblin = engine.add_monster(encounter.id, DM_ID, goblin_template)

        assert goblin.type == CombatantType.MONSTER
        assert goblin.current_hp == goblin.max_hp == 7
        assert goblin.armor_class == 15
        assert goblin.actions[0].name == "Scimitar"
        assert goblin.join_order == 0

    def test_add_monster_requires_dm(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test only the DM adds monsters in a standard session."""
        engine = make_engine()
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)

        with pytest.raises(PermissionDeniedError):
            engine.add_monster(encounter.id, PLAYER_ID, goblin_template)

    def test_dungeon_allows_anyone_to_add_monsters(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test dungeon sessions open DM-only operations."""
        engine = make_engine()
        encounter = engine.create_encounter("Room 1", created_by="bot", session_id="dungeon-1")

        goblin = engine.add_monster(encounter.id, PLAYER_ID, goblin_template)

        assert goblin.name == "Goblin"

    def test_add_player_from_sheet(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a player combatant is seeded from the character sheet."""
        engine = make_engine()
        encounter_id, _, hero_id = _goblin_vs_hero(engine, goblin_template)

        hero = engine.get_encounter(encounter_id).get_combatant(hero_id)

        assert hero.type == CombatantType.PLAYER
        assert hero.name == "Hero"
        assert hero.armor_class == 14
        assert hero.max_hp == hero.current_hp == 11
        assert hero.initiative_bonus == 1
        assert hero.player_id == PLAYER_ID
        assert hero.character_id == "char-hero"
        assert hero.join_order == 1

    def test_add_player_twice_rejected(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test one combatant per player."""
        engine = make_engine()
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)

        with pytest.raises(ValidationError):
            engine.add_player(encounter_id, PLAYER_ID, "char-hero")

    def test_add_someone_elses_character(self, make_engine: EngineFactory) -> None:
        """Test a player cannot bring another player's character."""
        engine = make_engine()
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)

        with pytest.raises(PermissionDeniedError):
            engine.add_player(encounter.id, "someone-else", "char-hero")

    def test_add_unknown_character(self, make_engine: EngineFactory) -> None:
        """Test unknown characters raise NotFoundError."""
        engine = make_engine()
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)

        with pytest.raises(NotFoundError):
            engine.add_player(encounter.id, PLAYER_ID, "char-missing")

    def test_add_player_without_provider(self, repository: InMemoryEncounterRepository) -> None:
        """Test joining needs a character provider."""
        engine = EncounterEngine(repository, roller=ScriptedRoller())
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)

        with pytest.raises(ConfigurationError):
            engine.add_player(encounter.id, PLAYER_ID, "char-hero")

    def test_join_after_initiative_rejected(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test combatants join only before initiative."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)
        engine.roll_initiative(encounter_id, DM_ID)

        with pytest.raises(InvalidStateError):
            engine.add_monster(encounter_id, DM_ID, goblin_template)


# =============================================================================
# Initiative
# =============================================================================


class TestInitiative:
    """Tests for rolling initiative."""

    def test_order_by_total(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test the higher total goes first and totals are stored."""
        engine = make_engine([5, 18])
        encounter_id, goblin_id, hero_id = _goblin_vs_hero(engine, goblin_template)

        encounter = engine.roll_initiative(encounter_id, DM_ID)

        assert encounter.turn_order == [hero_id, goblin_id]
        assert encounter.get_combatant(hero_id).initiative == 19
        assert encounter.get_combatant(goblin_id).initiative == 7
        assert encounter.status == EncounterStatus.SETUP

    def test_tie_broken_by_bonus(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test equal totals: the higher initiative bonus goes first."""
        engine = make_engine([10, 11])
        encounter_id, goblin_id, hero_id = _goblin_vs_hero(engine, goblin_template)

        encounter = engine.roll_initiative(encounter_id, DM_ID)

        assert encounter.get_combatant(goblin_id).initiative == 12
        assert encounter.get_combatant(hero_id).initiative == 12
        assert encounter.turn_order == [goblin_id, hero_id]

    def test_full_tie_broken_by_join_order(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test identical totals and bonuses keep insertion order."""
        engine = make_engine([12, 12, 12])
        encounter = engine.create_encounter("Pack", created_by=DM_ID)
        ids = [engine.add_monster(encounter.id, DM_ID, goblin_template).id for _ in range(3)]

        assert engine.roll_initiative(encounter.id, DM_ID).turn_order == ids

    def test_one_log_entry_per_combatant(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test every roll is logged."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)

        encounter = engine.roll_initiative(encounter_id, DM_ID)

        rolled = [e.text for e in encounter.combat_log if "initiative" in e.text]
        assert rolled == ["Goblin rolls initiative: 17", "Hero rolls initiative: 11"]

    def test_cannot_roll_twice(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test initiative is rolled once."""
        engine = make_engine([15, 10, 15, 10])
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)
        engine.roll_initiative(encounter_id, DM_ID)

        with pytest.raises(InvalidStateError):
            engine.roll_initiative(encounter_id, DM_ID)

    def test_no_combatants(self, make_engine: EngineFactory) -> None:
        """Test initiative needs combatants."""
        engine = make_engine()
        encounter = engine.create_encounter("Empty", created_by=DM_ID)

        with pytest.raises(ValidationError):
            engine.roll_initiative(encounter.id, DM_ID)

    def test_only_dm_rolls(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test players cannot roll initiative in a standard session."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)

        with pytest.raises(PermissionDeniedError):
            engine.roll_initiative(encounter_id, PLAYER_ID)

    @pytest.mark.parametrize("seed", range(8))
    def test_same_rolls_same_order(
        self,
        seed: int,
        repository: InMemoryEncounterRepository,
        goblin_template: MonsterTemplate,
    ) -> None:
        """Test initiative order depends only on the rolls and the setup."""
        rng = random.Random(seed)
        faces = [rng.randint(1, 20) for _ in range(5)]
        bonuses = [rng.randint(-1, 3) for _ in range(5)]

        orders = []
        for _ in range(2):
            engine = EncounterEngine(repository, roller=ScriptedRoller(faces))
            encounter = engine.create_encounter("Pack", created_by=DM_ID)
            for bonus in bonuses:
                template = goblin_template.model_copy(update={"initiative_bonus": bonus})
                engine.add_monster(encounter.id, DM_ID, template)
            rolled = engine.roll_initiative(encounter.id, DM_ID)
            orders.append([rolled.combatants[cid].join_order for cid in rolled.turn_order])

            totals = [rolled.combatants[cid].initiative for cid in rolled.turn_order]
            assert totals == sorted(totals, reverse=True)

        assert orders[0] == orders[1]


# =============================================================================
# Turns
# =============================================================================


class TestTurns:
    """Tests for starting, advancing and wrapping rounds."""

    def test_start_requires_initiative(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test starting before initiative fails."""
        engine = make_engine()
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)

        with pytest.raises(InvalidStateError):
            engine.start_encounter(encounter_id, DM_ID)

    def test_start_sets_first_turn(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test start hands the first turn to the top of the order."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        encounter = engine.get_encounter(encounter_id)
        current = get_current_combatant(encounter)

        assert encounter.status == EncounterStatus.ACTIVE
        assert encounter.round == 1
        assert encounter.started_at is not None
        assert current is not None
        assert current.id == goblin_id
        assert current.turn.movement_remaining == 30

    def test_start_twice_rejected(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test an active encounter cannot be started again."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)

        with pytest.raises(InvalidStateError):
            engine.start_encounter(encounter_id, DM_ID)

    def test_start_with_one_side_missing_completes(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test an encounter with no players is lost at once."""
        engine = make_engine([12])
        encounter = engine.create_encounter("Lonely", created_by=DM_ID)
        engine.add_monster(encounter.id, DM_ID, goblin_template)
        engine.roll_initiative(encounter.id, DM_ID)

        started = engine.start_encounter(encounter.id, DM_ID)

        assert started.status == EncounterStatus.COMPLETED
        assert started.players_won is False

    def test_checkpoint_mode_pauses_round(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test checkpoint mode marks the round pending after the last turn."""
        engine = make_engine([15, 10], mode=RoundAdvanceMode.CHECKPOINT)
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)

        after_goblin = engine.next_turn(encounter_id, DM_ID)
        assert after_goblin.turn_order[after_goblin.turn] == hero_id
        assert after_goblin.get_combatant(goblin_id).turn.has_acted is True

        after_hero = engine.next_turn(encounter_id, PLAYER_ID)
        assert after_hero.round_pending is True
        assert after_hero.round == 1
        assert get_current_combatant(after_hero) is None

        with pytest.raises(InvalidStateError):
            engine.next_turn(encounter_id, DM_ID)

        resumed = engine.continue_round(encounter_id, DM_ID)
        assert resumed.round == 2
        assert resumed.turn == 0
        assert resumed.round_pending is False
        assert all(not c.turn.has_acted for c in resumed.combatants.values())

    def test_auto_mode_wraps_immediately(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test auto mode starts the next round after the last turn."""
        engine = make_engine([15, 10], mode=RoundAdvanceMode.AUTO)
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        engine.next_turn(encounter_id, DM_ID)
        wrapped = engine.next_turn(encounter_id, PLAYER_ID)

        assert wrapped.round == 2
        assert wrapped.round_pending is False
        assert get_current_combatant(wrapped).id == goblin_id

    def test_continue_without_pending_round(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test continue_round needs a pending round."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)

        with pytest.raises(InvalidStateError):
            engine.continue_round(encounter_id, DM_ID)

    def test_next_turn_requires_active(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test next_turn fails before the encounter starts."""
        engine = make_engine()
        encounter_id, _, _ = _goblin_vs_hero(engine, goblin_template)

        with pytest.raises(InvalidStateError):
            engine.next_turn(encounter_id, DM_ID)

    def test_player_controls_only_own_turn(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a player cannot end the goblin's turn in a standard session."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)

        with pytest.raises(PermissionDeniedError):
            engine.next_turn(encounter_id, PLAYER_ID)

    def test_dungeon_anyone_ends_monster_turn(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test anyone may advance a monster's turn in a dungeon."""
        engine = make_engine([15, 10])
        encounter_id, _, hero_id = _started(engine, goblin_template, session_id="dungeon-1")

        advanced = engine.next_turn(encounter_id, "passer-by")
        assert advanced.turn_order[advanced.turn] == hero_id

        with pytest.raises(PermissionDeniedError):
            engine.next_turn(encounter_id, "passer-by")

    def test_dead_combatants_are_skipped(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a combatant at 0 HP never gets a turn."""
        engine = make_engine([18, 16, 5])
        encounter = engine.create_encounter("Pack", created_by=DM_ID)
        first = engine.add_monster(encounter.id, DM_ID, goblin_template)
        second = engine.add_monster(encounter.id, DM_ID, goblin_template)
        hero = engine.add_player(encounter.id, PLAYER_ID, "char-hero")
        engine.roll_initiative(encounter.id, DM_ID)
        engine.start_encounter(encounter.id, DM_ID)

        engine.apply_damage(encounter.id, second.id, DM_ID, 7)
        after = engine.next_turn(encounter.id, DM_ID)

        assert after.turn_order == [first.id, second.id, hero.id]
        assert get_current_combatant(after).id == hero.id

    def test_round_wrap_expires_round_effects(
        self,
        make_engine: EngineFactory,
        goblin_template: MonsterTemplate,
        clock: FakeClock,
    ) -> None:
        """Test effects are processed when a round wraps."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)
        engine.effects_for("char-hero").add_effect(build_shield_spell_effect())

        engine.next_turn(encounter_id, DM_ID)
        engine.next_turn(encounter_id, PLAYER_ID)
        clock.advance(6)
        engine.continue_round(encounter_id, DM_ID)

        assert not engine.effects_for("char-hero").has_effect("Shield")

    @pytest.mark.parametrize("mode", list(RoundAdvanceMode))
    @pytest.mark.parametrize("seed", range(6))
    def test_turns_only_move_forward(
        self,
        seed: int,
        mode: RoundAdvanceMode,
        make_engine: EngineFactory,
        goblin_template: MonsterTemplate,
    ) -> None:
        """Test (round, turn) never goes backwards and dead combatants never get a turn."""
        rng = random.Random(seed)
        engine = make_engine([rng.randint(1, 20) for _ in range(4)], mode=mode)
        encounter = engine.create_encounter("Brawl", created_by=DM_ID)
        for _ in range(3):
            engine.add_monster(encounter.id, DM_ID, goblin_template)
        engine.add_player(encounter.id, PLAYER_ID, "char-hero")
        engine.roll_initiative(encounter.id, DM_ID)
        state = engine.start_encounter(encounter.id, DM_ID)

        position = (state.round, state.turn)
        for _ in range(30):
            if state.status != EncounterStatus.ACTIVE:
                break
            if rng.random() < 0.2:
                victim = rng.choice(list(state.combatants))
                state = engine.apply_damage(encounter.id, victim, DM_ID, rng.randint(1, 6))
            elif state.round_pending:
                state = engine.continue_round(encounter.id, DM_ID)
            else:
                state = engine.next_turn(encounter.id, DM_ID)

            current = get_current_combatant(state)
            if current is not None:
                assert current.current_hp > 0
            assert (state.round, state.turn) >= position
            position = (state.round, state.turn)

    @pytest.mark.parametrize("mode", list(RoundAdvanceMode))
    def test_each_standing_combatant_acts_once_per_round(
        self,
        mode: RoundAdvanceMode,
        make_engine: EngineFactory,
        goblin_template: MonsterTemplate,
    ) -> None:
        """Test every round hands exactly one turn to each standing combatant, in order."""
        engine = make_engine([10, 15, 5, 12], mode=mode)
        encounter = engine.create_encounter("Brawl", created_by=DM_ID)
        goblins = [engine.add_monster(encounter.id, DM_ID, goblin_template) for _ in range(3)]
        engine.add_player(encounter.id, PLAYER_ID, "char-hero")
        engine.roll_initiative(encounter.id, DM_ID)
        engine.apply_damage(encounter.id, goblins[0].id, DM_ID, 7)
        state = engine.start_encounter(encounter.id, DM_ID)
        standing = [cid for cid in state.turn_order if state.combatants[cid].is_standing]

        turns_by_round: dict[int, list[str]] = {}
        while state.round <= 3:
            if state.round_pending:
                state = engine.continue_round(encounter.id, DM_ID)
                continue
            current = get_current_combatant(state)
            assert current is not None
            turns_by_round.setdefault(state.round, []).append(current.id)
            state = engine.next_turn(encounter.id, DM_ID)

        assert len(standing) == 3
        assert goblins[0].id not in standing
        assert turns_by_round == {1: standing, 2: standing, 3: standing}


# =============================================================================
# Hit Points
# =============================================================================


class TestHitPoints:
    """Tests for damage, healing and temporary HP."""

    def test_damage_and_defeat(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test killing the last monster wins the fight."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        encounter = engine.apply_damage(encounter_id, goblin_id, DM_ID, 10)

        goblin = encounter.get_combatant(goblin_id)
        assert goblin.current_hp == 0
        assert encounter.status == EncounterStatus.COMPLETED
        assert encounter.players_won is True
        assert encounter.ended_at is not None
        texts = [e.text for e in encounter.combat_log]
        assert "Goblin takes 10 damage" in texts
        assert "Goblin was defeated!" in texts
        assert texts[-1] == VICTORY_MESSAGE

    def test_party_wipe_is_defeat(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test killing the last player loses the fight."""
        engine = make_engine([15, 10])
        encounter_id, _, hero_id = _started(engine, goblin_template)

        encounter = engine.apply_damage(encounter_id, hero_id, DM_ID, 11)

        assert encounter.players_won is False
        assert encounter.combat_log[-1].text == DEFEAT_MESSAGE

    def test_negative_amounts_rejected(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test negative damage, healing and temporary HP are rejected."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        with pytest.raises(ValidationError):
            engine.apply_damage(encounter_id, goblin_id, DM_ID, -1)
        with pytest.raises(ValidationError):
            engine.heal_combatant(encounter_id, goblin_id, DM_ID, -1)
        with pytest.raises(ValidationError):
            engine.grant_temp_hp(encounter_id, goblin_id, DM_ID, -1)

    def test_unknown_target_changes_nothing(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a failed operation leaves the stored encounter untouched."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)
        before = engine.get_encounter(encounter_id)

        with pytest.raises(NotFoundError):
            engine.apply_damage(encounter_id, "nobody", DM_ID, 5)

        assert engine.get_encounter(encounter_id) == before

    def test_heal_clamps_at_max(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test healing never exceeds max HP."""
        engine = make_engine([15, 10])
        encounter_id, _, hero_id = _started(engine, goblin_template)
        engine.apply_damage(encounter_id, hero_id, DM_ID, 4)

        encounter = engine.heal_combatant(encounter_id, hero_id, DM_ID, 20)

        assert encounter.get_combatant(hero_id).current_hp == 11
        assert encounter.combat_log[-1].text == "Hero is healed for 4 HP"

    def test_temp_hp_absorbs_first(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test temporary HP soaks damage before real HP."""
        engine = make_engine([15, 10])
        encounter_id, _, hero_id = _started(engine, goblin_template)
        engine.grant_temp_hp(encounter_id, hero_id, DM_ID, 5)
        engine.grant_temp_hp(encounter_id, hero_id, DM_ID, 3)

        encounter = engine.apply_damage(encounter_id, hero_id, DM_ID, 7)

        hero = encounter.get_combatant(hero_id)
        assert hero.temp_hp == 0
        assert hero.current_hp == 9

    def test_player_cannot_damage_out_of_turn(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a player needs their own turn to deal damage."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        with pytest.raises(PermissionDeniedError):
            engine.apply_damage(encounter_id, goblin_id, PLAYER_ID, 3)

    def test_damage_in_setup_does_not_end_combat(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test combat end is only evaluated while active."""
        engine = make_engine()
        encounter_id, goblin_id, _ = _goblin_vs_hero(engine, goblin_template)

        encounter = engine.apply_damage(encounter_id, goblin_id, DM_ID, 7)

        assert encounter.status == EncounterStatus.SETUP

    def test_evaluate_combat_end(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test the stored check applies the transition."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)

        assert engine.evaluate_combat_end(encounter_id) == (False, False)


class TestCheckCombatEnd:
    """Tests for the pure combat end check."""

    @pytest.mark.parametrize(
        ("player_hp", "monster_hp", "expected"),
        [
            (5, 5, (False, False)),
            (5, 0, (True, True)),
            (0, 5, (True, False)),
            (0, 0, (False, False)),
        ],
    )
    def test_outcomes(
        self,
        make_combatant: Callable[..., Combatant],
        player_hp: int,
        monster_hp: int,
        expected: tuple[bool, bool],
    ) -> None:
        """Test the four combinations of standing sides; a mutual wipe does not end the fight."""
        hero = make_combatant("Hero", CombatantType.PLAYER, current_hp=player_hp)
        goblin = make_combatant("Goblin", current_hp=monster_hp)
        encounter = Encounter(id="e", name="Check", combatants={hero.id: hero, goblin.id: goblin})

        assert check_combat_end(encounter) == expected

    def test_inactive_counts_as_down(self, make_combatant: Callable[..., Combatant]) -> None:
        """Test a removed monster does not keep the fight going."""
        hero = make_combatant("Hero", CombatantType.PLAYER)
        goblin = make_combatant("Goblin", is_active=False)
        encounter = Encounter(id="e", name="Check", combatants={hero.id: hero, goblin.id: goblin})

        assert check_combat_end(encounter) == (True, True)


# =============================================================================
# Actions & Attacks
# =============================================================================


class TestActionEconomy:
    """Tests for spending actions and movement."""

    def test_spend_action_once(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test an action can be spent once per turn."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        state = engine.spend_action(encounter_id, goblin_id, DM_ID, ActionKind.BONUS_ACTION)
        assert state.bonus_action_used is True

        with pytest.raises(CombatError):
            engine.spend_action(encounter_id, goblin_id, DM_ID, ActionKind.BONUS_ACTION)

    def test_spend_action_off_turn(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test only the current combatant spends actions."""
        engine = make_engine([15, 10])
        encounter_id, _, hero_id = _started(engine, goblin_template)

        with pytest.raises(CombatError):
            engine.spend_action(encounter_id, hero_id, PLAYER_ID)

    def test_movement(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test movement is limited by speed."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        assert engine.spend_movement(encounter_id, goblin_id, DM_ID, 20) == 10
        with pytest.raises(CombatError):
            engine.spend_movement(encounter_id, goblin_id, DM_ID, 15)


class TestAttacks:
    """Tests for attacks through the engine."""

    def test_player_attack_kills_goblin(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test a longsword hit (1d8+3) drops the goblin and wins."""
        engine = make_engine([10, 15, 15, 5])
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)
        assert get_current_combatant(engine.get_encounter(encounter_id)).id == hero_id

        outcome = engine.perform_attack(
            AttackRequest(encounter_id=encounter_id, attacker_id=hero_id, target_id=goblin_id, actor_id=PLAYER_ID)
        )

        assert outcome.result.hit is True
        assert outcome.result.damage == 8
        assert outcome.target_defeated is True
        assert outcome.encounter.status == EncounterStatus.COMPLETED
        assert outcome.encounter.players_won is True
        assert outcome.encounter.get_combatant(hero_id).turn.action_used is True

    def test_attack_off_turn_denied(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test a player cannot attack on the goblin's turn."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)

        with pytest.raises(PermissionDeniedError):
            engine.perform_attack(
                AttackRequest(encounter_id=encounter_id, attacker_id=hero_id, target_id=goblin_id, actor_id=PLAYER_ID)
            )

    def test_unknown_monster_attack(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test naming an attack the monster lacks."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)

        with pytest.raises(CombatError):
            engine.perform_attack(
                AttackRequest(
                    encounter_id=encounter_id,
                    attacker_id=goblin_id,
                    target_id=hero_id,
                    actor_id=DM_ID,
                    attack_name="Fireball",
                )
            )

    def test_miss_is_logged(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test a miss changes no HP and is logged."""
        engine = make_engine([15, 10, 2])
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)

        outcome = engine.perform_attack(
            AttackRequest(encounter_id=encounter_id, attacker_id=goblin_id, target_id=hero_id, actor_id=DM_ID)
        )

        assert outcome.result.hit is False
        assert outcome.encounter.get_combatant(hero_id).current_hp == 11
        assert outcome.encounter.combat_log[-1].text == "Goblin attacks Hero with Scimitar and misses"

    def test_dice_failure_applies_nothing(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test an exhausted roller aborts the attack without saving."""
        engine = make_engine([15, 10, 15])
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)
        before = engine.get_encounter(encounter_id)

        with pytest.raises(DiceRollError):
            engine.perform_attack(
                AttackRequest(encounter_id=encounter_id, attacker_id=goblin_id, target_id=hero_id, actor_id=DM_ID)
            )

        assert engine.get_encounter(encounter_id) == before


class TestMonsterTurns:
    """Tests for automatic monster turns."""

    def test_process_monster_turn(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test the goblin attacks the hero and the turn passes."""
        engine = make_engine([15, 10, 15, 4])
        encounter_id, goblin_id, hero_id = _started(engine, goblin_template)

        report = engine.process_monster_turn(encounter_id, DM_ID)

        assert report.monster_id == goblin_id
        assert report.attack is not None
        assert report.attack.damage == 6
        assert report.encounter.get_combatant(hero_id).current_hp == 5
        assert get_current_combatant(report.encounter).id == hero_id

    def test_not_a_monster_turn(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test process_monster_turn on a player's turn fails."""
        engine = make_engine([5, 15])
        encounter_id, _, _ = _started(engine, goblin_template)

        with pytest.raises(CombatError):
            engine.process_monster_turn(encounter_id, DM_ID)

    def test_monster_without_actions_passes(self, make_engine: EngineFactory) -> None:
        """Test a monster with no attacks just ends its turn."""
        engine = make_engine([15, 10])
        encounter = engine.create_encounter("Ambush", created_by=DM_ID)
        engine.add_monster(encounter.id, DM_ID, MonsterTemplate(name="Zombie", max_hp=22))
        hero = engine.add_player(encounter.id, PLAYER_ID, "char-hero")
        engine.roll_initiative(encounter.id, DM_ID)
        engine.start_encounter(encounter.id, DM_ID)

        report = engine.process_monster_turn(encounter.id, DM_ID)

        assert report.attack is None
        assert "Zombie has no available actions" in [e.text for e in report.encounter.combat_log]
        assert get_current_combatant(report.encounter).id == hero.id

    def test_run_monster_turns_stops_at_player(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test consecutive monster turns run until the hero is up."""
        engine = make_engine([18, 16, 5, 15, 4, 2])
        encounter = engine.create_encounter("Pack", created_by=DM_ID)
        engine.add_monster(encounter.id, DM_ID, goblin_template)
        engine.add_monster(encounter.id, DM_ID, goblin_template)
        hero = engine.add_player(encounter.id, PLAYER_ID, "char-hero")
        engine.roll_initiative(encounter.id, DM_ID)
        engine.start_encounter(encounter.id, DM_ID)

        reports = engine.run_monster_turns(encounter.id, DM_ID)

        assert len(reports) == 2
        assert [r.attack.hit for r in reports] == [True, False]
        final = engine.get_encounter(encounter.id)
        assert get_current_combatant(final).id == hero.id
        assert final.get_combatant(hero.id).current_hp == 5


# =============================================================================
# Lifecycle & Misc
# =============================================================================


class TestLifecycle:
    """Tests for ending, removal, logging and cancellation."""

    def test_end_encounter(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test the DM can end an encounter once."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template)

        with pytest.raises(PermissionDeniedError):
            engine.end_encounter(encounter_id, PLAYER_ID)

        ended = engine.end_encounter(encounter_id, DM_ID)
        assert ended.status == EncounterStatus.COMPLETED
        assert ended.players_won is None

        with pytest.raises(InvalidStateError):
            engine.end_encounter(encounter_id, DM_ID)

    def test_remove_current_combatant_advances(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate
    ) -> None:
        """Test removing the combatant whose turn it is moves the turn on."""
        engine = make_engine([18, 16, 5])
        encounter = engine.create_encounter("Pack", created_by=DM_ID)
        first = engine.add_monster(encounter.id, DM_ID, goblin_template)
        second = engine.add_monster(encounter.id, DM_ID, goblin_template)
        engine.add_player(encounter.id, PLAYER_ID, "char-hero")
        engine.roll_initiative(encounter.id, DM_ID)
        engine.start_encounter(encounter.id, DM_ID)

        after = engine.remove_combatant(encounter.id, first.id, DM_ID)

        assert after.get_combatant(first.id).is_active is False
        assert first.id in after.turn_order
        assert get_current_combatant(after).id == second.id

    def test_active_encounter_lookup(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test the newest unfinished encounter of a session is found."""
        engine = make_engine([15, 10])
        encounter_id, _, _ = _started(engine, goblin_template, session_id="s-1")

        assert engine.get_active_encounter("s-1").id == encounter_id
        engine.end_encounter(encounter_id, DM_ID)
        assert engine.get_active_encounter("s-1") is None

    def test_log_limit_and_rendering(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test the combat log keeps the newest entries, tagged by round."""
        engine = make_engine([15, 10], combat_log_limit=3)
        encounter_id, _, _ = _started(engine, goblin_template)

        entry = engine.log_combat_action(encounter_id, "The cave rumbles")

        encounter = engine.get_encounter(encounter_id)
        assert len(encounter.combat_log) == 3
        assert entry.render() == "Round 1: The cave rumbles"
        assert encounter.rendered_log()[-1] == "Round 1: The cave rumbles"

    def test_update_message(self, make_engine: EngineFactory) -> None:
        """Test the display message can be recorded."""
        engine = make_engine()
        encounter = engine.create_encounter("Ambush", created_by=DM_ID, channel_id="c-1")

        updated = engine.update_message(encounter.id, "m-9")

        assert updated.message_id == "m-9"
        assert updated.channel_id == "c-1"

    def test_cancelled_operation(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test a set cancel event stops the operation before it starts."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            engine.apply_damage(encounter_id, goblin_id, DM_ID, 3, cancel=cancel)

        assert engine.get_encounter(encounter_id).get_combatant(goblin_id).current_hp == 7

    def test_snapshots_are_detached(self, make_engine: EngineFactory, goblin_template: MonsterTemplate) -> None:
        """Test mutating a returned encounter does not change the stored one."""
        engine = make_engine([15, 10])
        encounter_id, goblin_id, _ = _started(engine, goblin_template)

        snapshot = engine.get_encounter(encounter_id)
        snapshot.get_combatant(goblin_id).current_hp = 1

        assert engine.get_encounter(encounter_id).get_combatant(goblin_id).current_hp == 7

    def test_concurrent_damage_is_serialized(
        self, make_engine: EngineFactory, goblin_template: MonsterTemplate, hero_sheet: CharacterSheet
    ) -> None:
        """Test parallel damage calls all land exactly once."""
        engine = make_engine([15, 10])
        encounter = engine.create_encounter("Siege", created_by=DM_ID)
        ogre = engine.add_monster(encounter.id, DM_ID, MonsterTemplate(name="Ogre", max_hp=200))
        engine.add_player(encounter.id, PLAYER_ID, hero_sheet.id)
        engine.roll_initiative(encounter.id, DM_ID)
        engine.start_encounter(encounter.id, DM_ID)

        def worker() -> None:
            for _ in range(10):
                engine.apply_damage(encounter.id, ogre.id, DM_ID, 1)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert engine.get_encounter(encounter.id).get_combatant(ogre.id).current_hp == 150
