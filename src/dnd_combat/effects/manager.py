"""Per-actor status effect management.

Each actor (character or monster) owns one EffectManager. The manager is
the only thing that mutates the actor's effect map; queries return the
frozen effect values, so callers never hold a handle into the map.

Expired effects are evicted lazily: any call that touches the manager
first drops effects whose expiry lies in the past. Reads and writes take
the same re-entrant lock for that reason.

Example:
    >>> from dnd_combat.effects import EffectManager, ModifierTarget, build_rage_effect
    >>> manager = EffectManager()
    >>> rage = manager.add_effect(build_rage_effect(level=5))
    >>> [m.value for m in manager.get_modifiers(ModifierTarget.DAMAGE, {"attack_type": "melee"})]
    ['+2']
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from dnd_combat.core.constants import SECONDS_PER_ROUND
from dnd_combat.core.exceptions import ValidationError
from dnd_combat.core.logging import get_logger
from dnd_combat.effects.types import (
    DurationType,
    EffectSource,
    Modifier,
    ModifierTarget,
    StackingRule,
    StatusEffect,
)


logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Modifier Conditions
# =============================================================================

MELEE_ONLY = "melee_only"
VS_ENEMY_TYPE_PREFIX = "vs_enemy_type:"
WITH_WEAPON_PREFIX = "with_weapon:"


def modifier_condition_met(condition: str, conditions: dict[str, str]) -> bool:
    """Evaluate a modifier gate against a condition map.

    Understood gates:
        ``melee_only``: ``attack_type`` is ``melee``.
        ``vs_enemy_type:X``: ``enemy_type`` is ``X``.
        ``with_weapon:X``: ``weapon`` is ``X``.

    An empty gate, or one that is not understood, does not gate anything.

    Args:
        condition: The modifier's condition string.
        conditions: Context of the roll (attack type, weapon, enemy type...).

    Returns:
        True if the modifier applies.
    """
    if not condition:
        return True
    if condition == MELEE_ONLY:
        return conditions.get("attack_type") == "melee"
    if condition.startswith(VS_ENEMY_TYPE_PREFIX):
        return conditions.get("enemy_type") == condition.removeprefix(VS_ENEMY_TYPE_PREFIX)
    if condition.startswith(WITH_WEAPON_PREFIX):
        return conditions.get("weapon") == condition.removeprefix(WITH_WEAPON_PREFIX)
    return True


# =============================================================================
# Effect Manager
# =============================================================================


class EffectManager:
    """Status effects of a single actor.

    Attributes:
        owner_id: Identifier of the actor these effects belong to.
        seconds_per_round: Round length used to compute round-based expiry.
    """

    def __init__(
        self,
        owner_id: str = "",
        *,
        seconds_per_round: float = SECONDS_PER_ROUND,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize an empty manager.

        Args:
            owner_id: Identifier of the owning actor (used in logs).
            seconds_per_round: Round length for round-based durations.
            clock: Source of the current time.
        """
        self.owner_id = owner_id
        self.seconds_per_round = seconds_per_round
        self._clock = clock
        self._effects: dict[str, StatusEffect] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._effects)

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add_effect(self, effect: StatusEffect) -> StatusEffect | None:
        """Apply an effect, honoring its stacking rule.

        Existing effects with the same name and source are handled as:

        * REPLACE: every existing instance is removed, the new one stored.
        * STACK: the new instance is stored alongside the existing ones.
        * TAKE_HIGHEST / TAKE_LOWEST: the new instance replaces the
          existing ones only if its magnitude is strictly higher / lower;
          otherwise it is rejected. Effects without numeric modifiers
          cannot be compared and the existing one is kept.

        Args:
            effect: The effect to add.

        Returns:
            The stored effect (with created_at and expires_at set), or None
            if the stacking rule rejected it.

        Raises:
            ValidationError: If the effect has no ID.
        """
        if not effect.id:
            raise ValidationError("Effect must have an ID", field_name="id", invalid_value=effect.id)

        with self._lock:
            now = self._clock()
            self._evict_expired(now)

            same = [e for e in self._effects.values() if e.stacking_key == effect.stacking_key]
            if same and not self._wins_stacking(effect, same):
                logger.debug(
                    "Effect rejected by stacking rule",
                    owner_id=self.owner_id,
                    effect=effect.name,
                    rule=effect.stacking_rule.value,
                )
                return None

            if effect.stacking_rule != StackingRule.STACK:
                for existing in same:
                    del self._effects[existing.id]

            stored = effect.model_copy(
                update={
                    "created_at": now,
                    "expires_at": self._expiry_for(effect, now),
                    "active": True,
                }
            )
            # Re-adding an ID moves it to the end of the insertion order
            self._effects.pop(stored.id, None)
            self._effects[stored.id] = stored

        logger.info(
            "Effect added",
            owner_id=self.owner_id,
            effect=stored.name,
            source=stored.source.value,
            expires_at=stored.expires_at.isoformat() if stored.expires_at else None,
        )
        return stored

    def remove_effect(self, effect_id: str) -> None:
        """Remove an effect by ID. Unknown IDs are ignored."""
        with self._lock:
            removed = self._effects.pop(effect_id, None)
        if removed is not None:
            logger.info("Effect removed", owner_id=self.owner_id, effect=removed.name)

    def remove_effects_by_source(self, source: EffectSource, source_id: str) -> int:
        """Remove every effect from one specific source.

        Args:
            source: Kind of source.
            source_id: Specific source identifier.

        Returns:
            Number of effects removed.
        """
        return self._remove_where(lambda e: e.source == source and e.source_id == source_id)

    def process_round_end(self) -> int:
        """Drop round-based effects whose time has run out.

        Returns:
            Number of effects removed.
        """
        now = self._clock()
        return self._remove_where(
            lambda e: e.duration.type == DurationType.ROUNDS and e.is_expired(now)
        )

    def clear_concentration(self) -> int:
        """Remove every effect that depends on concentration.

        Returns:
            Number of effects removed.
        """
        return self._remove_where(lambda e: e.duration.concentration)

    def process_rest(self) -> int:
        """Remove effects that last until the next rest.

        Returns:
            Number of effects removed.
        """
        return self._remove_where(lambda e: e.duration.type == DurationType.UNTIL_REST)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_active_effects(self) -> list[StatusEffect]:
        """Return active, unexpired effects in the order they were added."""
        with self._lock:
            self._evict_expired()
            return [e for e in self._effects.values() if e.active]

    def get_modifiers(
        self,
        target: ModifierTarget,
        conditions: dict[str, str] | None = None,
    ) -> list[Modifier]:
        """Collect the modifiers that apply to a roll or statistic.

        An effect contributes only when all of its effect-level conditions
        match ``conditions`` exactly; each of its modifiers then applies when
        its target matches and its own gate is satisfied.

        Args:
            target: The roll or statistic being computed.
            conditions: Context of the roll, e.g. ``{"attack_type": "melee"}``.

        Returns:
            Matching modifiers, in effect insertion order then modifier order.
        """
        conditions = conditions or {}
        modifiers: list[Modifier] = []
        for effect in self.get_active_effects():
            if not effect.applies_under(conditions):
                continue
            modifiers.extend(
                m
                for m in effect.modifiers
                if m.target == target and modifier_condition_met(m.condition, conditions)
            )
        return modifiers

    def get_effect_by_source_and_name(self, source: EffectSource, name: str) -> StatusEffect | None:
        """Find an active effect by source kind and name."""
        for effect in self.get_active_effects():
            if effect.source == source and effect.name == name:
                return effect
        return None

    def has_effect(self, name: str) -> bool:
        return any(e.name == name for e in self.get_active_effects())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _expiry_for(self, effect: StatusEffect, now: datetime) -> datetime | None:
        match effect.duration.type:
            case DurationType.ROUNDS:
                return now + timedelta(seconds=effect.duration.rounds * self.seconds_per_round)
            case DurationType.INSTANT:
                return now
            case DurationType.PERMANENT | DurationType.WHILE_EQUIPPED | DurationType.UNTIL_REST:
                return None

    @staticmethod
    def _wins_stacking(incoming: StatusEffect, existing: list[StatusEffect]) -> bool:
        rule = incoming.stacking_rule
        if rule in (StackingRule.REPLACE, StackingRule.STACK):
            return True

        new_magnitude = incoming.magnitude
        old_magnitudes = [e.magnitude for e in existing if e.magnitude is not None]
        if new_magnitude is None or not old_magnitudes:
            return False
        if rule == StackingRule.TAKE_HIGHEST:
            return new_magnitude > max(old_magnitudes)
        return new_magnitude < min(old_magnitudes)

    def _evict_expired(self, now: datetime | None = None) -> None:
        now = now or self._clock()
        expired = [eid for eid, e in self._effects.items() if e.is_expired(now)]
        for eid in expired:
            del self._effects[eid]
        if expired:
            logger.debug("Expired effects evicted", owner_id=self.owner_id, count=len(expired))

    def _remove_where(self, predicate: Callable[[StatusEffect], bool]) -> int:
        with self._lock:
            doomed = [eid for eid, e in self._effects.items() if predicate(e)]
            for eid in doomed:
                del self._effects[eid]
        if doomed:
            logger.info("Effects removed", owner_id=self.owner_id, count=len(doomed))
        return len(doomed)


# =============================================================================
# Registry
# =============================================================================


class EffectRegistry:
    """Thread-safe map from actor ID to that actor's EffectManager.

    Managers are created on first access and live as long as the registry.
    """

    def __init__(
        self,
        *,
        seconds_per_round: float = SECONDS_PER_ROUND,
        clock: Clock = utc_now,
    ) -> None:
        self._seconds_per_round = seconds_per_round
        self._clock = clock
        self._managers: dict[str, EffectManager] = {}
        self._lock = threading.Lock()

    def __contains__(self, actor_id: object) -> bool:
        with self._lock:
            return actor_id in self._managers

    def get(self, actor_id: str) -> EffectManager:
        """Return the actor's manager, creating an empty one if needed."""
        with self._lock:
            manager = self._managers.get(actor_id)
            if manager is None:
                manager = EffectManager(
                    actor_id,
                    seconds_per_round=self._seconds_per_round,
                    clock=self._clock,
                )
                self._managers[actor_id] = manager
            return manager

    def process_round_end(self, actor_ids: Iterable[str]) -> int:
        """Run round-end expiry for every listed actor that has a manager.

        Returns:
            Total number of effects removed.
        """
        with self._lock:
            managers = [self._managers[a] for a in actor_ids if a in self._managers]
        return sum(m.process_round_end() for m in managers)


__all__ = [
    "Clock",
    "utc_now",
    "modifier_condition_met",
    "EffectManager",
    "EffectRegistry",
]
