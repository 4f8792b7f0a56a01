"""Attack, saving throw and initiative resolution.

The resolver combines a combatant's base numbers with the modifiers its
status effects contribute. It never mutates combatants: it returns results
and the turn engine applies them.

Dice are consumed in a fixed order so that scripted rolls are predictable:

1. the d20 (two under advantage or disadvantage),
2. dice-valued attack modifiers, in effect order,
3. damage components of the attack, in order (only on a hit),
4. dice-valued damage modifiers, in effect order.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from dnd_combat.core.constants import UNARMED_DAMAGE_TYPE
from dnd_combat.core.logging import get_logger
from dnd_combat.effects.manager import EffectRegistry
from dnd_combat.effects.types import Modifier, ModifierTarget
from dnd_combat.effects.values import ValueKeyword, ValueKind
from dnd_combat.engine.dice import D20Roll, Roller, RollMode, combine_roll_modes, roll_d20
from dnd_combat.models.combat import AttackSpec, Combatant, DamageDice


logger = get_logger(__name__)

UNARMED_FALLBACK = DamageDice(dice_count=1, dice_size=4, damage_type=UNARMED_DAMAGE_TYPE)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class DamageByType:
    """Damage of one type before and after defenses.

    Attributes:
        damage_type: Damage type ("" for untyped).
        rolled: Damage rolled for this type.
        final: Damage after immunity, resistance and vulnerability.
        defenses: Defenses that applied, e.g. ("resistance",).
    """

    damage_type: str
    rolled: int
    final: int
    defenses: tuple[str, ...] = ()


@dataclass(frozen=True)
class AttackResult:
    """Outcome of one attack roll.

    Attributes:
        attacker_id: Attacking combatant.
        target_id: Target combatant.
        attack_name: Name of the attack used.
        roll: The d20 roll.
        attack_total: d20 total plus attack modifiers.
        target_ac: Target AC including its AC modifiers.
        hit: Whether the attack hit.
        damage: Total damage dealt (0 on a miss).
        breakdown: Damage per type.
    """

    attacker_id: str
    target_id: str
    attack_name: str
    roll: D20Roll
    attack_total: int
    target_ac: int
    hit: bool
    damage: int = 0
    breakdown: tuple[DamageByType, ...] = field(default=())

    @property
    def critical(self) -> bool:
        return self.roll.is_critical

    @property
    def fumble(self) -> bool:
        return self.roll.is_fumble


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a saving throw."""

    combatant_id: str
    ability: str
    dc: int
    roll: D20Roll
    total: int
    success: bool


@dataclass(frozen=True)
class InitiativeRoll:
    """Initiative roll of one combatant."""

    combatant_id: str
    roll: D20Roll
    total: int


# =============================================================================
# Resolver
# =============================================================================


class CombatResolver:
    """Resolves d20 tests using combatant stats and their status effects.

    Attributes:
        roller: Dice source.
        effects: Registry of per-actor effect managers.
    """

    def __init__(self, roller: Roller, effects: EffectRegistry) -> None:
        self.roller = roller
        self.effects = effects

    # -------------------------------------------------------------------------
    # Attacks
    # -------------------------------------------------------------------------

    @staticmethod
    def attack_conditions(
        attacker: Combatant,
        target: Combatant,
        attack: AttackSpec,
        extra: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Condition map seen by the attacker's modifiers."""
        conditions = {
            "attack_type": attack.attack_type.value,
            "weapon": attack.weapon,
            "enemy_type": target.creature_type,
        }
        conditions.update(extra or {})
        return conditions

    def resolve_attack(
        self,
        attacker: Combatant,
        target: Combatant,
        attack: AttackSpec,
        *,
        conditions: dict[str, str] | None = None,
        roll_mode: RollMode = RollMode.NORMAL,
    ) -> AttackResult:
        """Resolve a single attack.

        A natural 20 always hits and doubles the number of damage dice
        (including dice from damage modifiers, never flat bonuses). A
        natural 1 always misses. Otherwise the attack hits when its total
        meets the target's AC.

        Args:
            attacker: Attacking combatant.
            target: Target combatant.
            attack: Attack being made.
            conditions: Extra condition entries overriding the derived ones.
            roll_mode: Caller-imposed advantage or disadvantage; combined
                with advantage and disadvantage from effects.

        Returns:
            The attack result. Nothing is applied to the target.

        Raises:
            DiceRollError: If the roller fails.
        """
        attack_conditions = self.attack_conditions(attacker, target, attack, conditions)
        defense_conditions = {
            "attack_type": attack.attack_type.value,
            "enemy_type": attacker.creature_type,
        }
        attacker_effects = self.effects.get(attacker.effect_owner_id)
        target_effects = self.effects.get(target.effect_owner_id)

        attack_mods = attacker_effects.get_modifiers(ModifierTarget.ATTACK_ROLL, attack_conditions)
        mode = self._roll_mode(roll_mode, attack_mods)
        d20 = roll_d20(self.roller, attack.attack_bonus, mode)
        attack_total = d20.total + self._fold(attack_mods)

        ac_mods = target_effects.get_modifiers(ModifierTarget.AC, defense_conditions)
        target_ac = target.armor_class + self._fold(ac_mods)

        hit = d20.is_critical or (not d20.is_fumble and attack_total >= target_ac)
        if not hit:
            result = AttackResult(
                attacker_id=attacker.id,
                target_id=target.id,
                attack_name=attack.name,
                roll=d20,
                attack_total=attack_total,
                target_ac=target_ac,
                hit=False,
            )
            logger.debug("Attack missed", attacker=attacker.name, target=target.name, total=attack_total)
            return result

        damage_mods = attacker_effects.get_modifiers(ModifierTarget.DAMAGE, attack_conditions)
        rolled = self._roll_damage(attack, damage_mods, critical=d20.is_critical)
        breakdown = tuple(
            self._apply_defenses(damage_type, amount, target, defense_conditions)
            for damage_type, amount in rolled.items()
        )
        damage = sum(part.final for part in breakdown)
        logger.debug(
            "Attack hit",
            attacker=attacker.name,
            target=target.name,
            total=attack_total,
            critical=d20.is_critical,
            damage=damage,
        )
        return AttackResult(
            attacker_id=attacker.id,
            target_id=target.id,
            attack_name=attack.name,
            roll=d20,
            attack_total=attack_total,
            target_ac=target_ac,
            hit=True,
            damage=damage,
            breakdown=breakdown,
        )

    def _roll_damage(
        self,
        attack: AttackSpec,
        damage_mods: list[Modifier],
        *,
        critical: bool,
    ) -> dict[str, int]:
        components = attack.damage or (UNARMED_FALLBACK,)
        primary_type = components[0].damage_type
        by_type: dict[str, int] = defaultdict(int)

        for component in components:
            count = component.dice_count * 2 if critical else component.dice_count
            rolled = self.roller.roll(count, component.dice_size, component.bonus)
            by_type[component.damage_type] += max(0, rolled.total)

        for modifier in damage_mods:
            value = modifier.parsed
            damage_type = modifier.damage_type or primary_type
            if value.kind == ValueKind.FLAT:
                by_type[damage_type] += value.flat
            elif value.kind == ValueKind.DICE:
                count = value.dice_count * 2 if critical else value.dice_count
                by_type[damage_type] += value.sign * self.roller.roll(count, value.dice_size).total

        return {damage_type: max(0, amount) for damage_type, amount in by_type.items()}

    def _apply_defenses(
        self,
        damage_type: str,
        amount: int,
        target: Combatant,
        conditions: dict[str, str],
    ) -> DamageByType:
        """Apply immunity, then resistance (halve), then vulnerability (double)."""
        manager = self.effects.get(target.effect_owner_id)

        def has(defense: ModifierTarget) -> bool:
            return any(
                not m.damage_type or m.damage_type == damage_type
                for m in manager.get_modifiers(defense, conditions)
            )

        if has(ModifierTarget.IMMUNITY):
            return DamageByType(damage_type, amount, 0, ("immunity",))

        final = amount
        defenses: list[str] = []
        if has(ModifierTarget.RESISTANCE):
            final //= 2
            defenses.append("resistance")
        if has(ModifierTarget.VULNERABILITY):
            final *= 2
            defenses.append("vulnerability")
        return DamageByType(damage_type, amount, final, tuple(defenses))

    # -------------------------------------------------------------------------
    # Saves and initiative
    # -------------------------------------------------------------------------

    def resolve_saving_throw(
        self,
        combatant: Combatant,
        ability: str,
        dc: int,
        bonus: int = 0,
        *,
        conditions: dict[str, str] | None = None,
        roll_mode: RollMode = RollMode.NORMAL,
    ) -> SaveResult:
        """Roll a saving throw against a DC.

        Saving throw modifiers apply when their sub-target is empty or
        names ``ability``.
        """
        manager = self.effects.get(combatant.effect_owner_id)
        mods = [
            m
            for m in manager.get_modifiers(ModifierTarget.SAVING_THROW, conditions)
            if not m.sub_target or m.sub_target == ability
        ]
        d20 = roll_d20(self.roller, bonus, self._roll_mode(roll_mode, mods))
        total = d20.total + self._fold(mods)
        return SaveResult(
            combatant_id=combatant.id,
            ability=ability,
            dc=dc,
            roll=d20,
            total=total,
            success=total >= dc,
        )

    def roll_initiative(self, combatant: Combatant) -> InitiativeRoll:
        """Roll 1d20 + initiative bonus, plus initiative modifiers from effects."""
        manager = self.effects.get(combatant.effect_owner_id)
        mods = manager.get_modifiers(ModifierTarget.INITIATIVE)
        d20 = roll_d20(self.roller, combatant.initiative_bonus, self._roll_mode(RollMode.NORMAL, mods))
        return InitiativeRoll(combatant_id=combatant.id, roll=d20, total=d20.total + self._fold(mods))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _roll_mode(requested: RollMode, modifiers: list[Modifier]) -> RollMode:
        keywords = {m.parsed.keyword for m in modifiers if m.parsed.kind == ValueKind.KEYWORD}
        return combine_roll_modes(
            advantage=requested == RollMode.ADVANTAGE or ValueKeyword.ADVANTAGE in keywords,
            disadvantage=requested == RollMode.DISADVANTAGE or ValueKeyword.DISADVANTAGE in keywords,
        )

    def _fold(self, modifiers: list[Modifier]) -> int:
        """Sum flat modifiers and roll dice modifiers; keywords contribute nothing."""
        total = 0
        for modifier in modifiers:
            value = modifier.parsed
            if value.kind == ValueKind.FLAT:
                total += value.flat
            elif value.kind == ValueKind.DICE:
                total += value.sign * self.roller.roll(value.dice_count, value.dice_size).total
        return total


__all__ = [
    "DamageByType",
    "AttackResult",
    "SaveResult",
    "InitiativeRoll",
    "CombatResolver",
]
