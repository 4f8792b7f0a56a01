"""Dice rolling for the combat engine.

Everything that needs randomness goes through a ``Roller``: an object with
a single ``roll(count, size, bonus)`` method. Two implementations ship:

* ``DiceRoller`` rolls with the d20 library and can be seeded.
* ``ScriptedRoller`` hands out predetermined die faces, for tests and
  replays. Running out of faces is an error, never a silent default.

Helpers on top of any roller implement the d20 mechanics (advantage,
disadvantage, natural 1 and 20).
"""

from __future__ import annotations

import random
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import d20

from dnd_combat.core.constants import D20, NATURAL_CRIT, NATURAL_MISS
from dnd_combat.core.exceptions import DiceRollError
from dnd_combat.core.logging import get_logger


logger = get_logger(__name__)


class RollMode(StrEnum):
    """How many d20s to roll and which one to keep."""

    NORMAL = "normal"
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"


def combine_roll_modes(*, advantage: bool, disadvantage: bool) -> RollMode:
    """Advantage and disadvantage cancel out when both are present."""
    if advantage and not disadvantage:
        return RollMode.ADVANTAGE
    if disadvantage and not advantage:
        return RollMode.DISADVANTAGE
    return RollMode.NORMAL


@dataclass(frozen=True)
class RollResult:
    """Result of rolling ``count`` dice of ``size`` sides plus a bonus.

    Attributes:
        count: Number of dice rolled.
        size: Sides per die.
        bonus: Flat bonus added.
        rolls: Individual die faces.
        total: Sum of the faces plus the bonus.
    """

    count: int
    size: int
    bonus: int
    rolls: tuple[int, ...]
    total: int

    @property
    def expression(self) -> str:
        text = f"{self.count}d{self.size}"
        if self.bonus:
            text += f"{self.bonus:+d}"
        return text


@runtime_checkable
class Roller(Protocol):
    """Anything that can roll dice."""

    def roll(self, count: int, size: int, bonus: int = 0) -> RollResult:
        """Roll ``count`` dice with ``size`` sides and add ``bonus``.

        Raises:
            DiceRollError: If the dice cannot be rolled.
        """
        ...


def _validate(count: int, size: int) -> None:
    if count < 0:
        raise DiceRollError(f"Dice count cannot be negative: {count}", expression=f"{count}d{size}")
    if size < 1:
        raise DiceRollError(f"Dice size must be positive: {size}", expression=f"{count}d{size}")


# =============================================================================
# d20-backed Roller
# =============================================================================


class DiceRoller:
    """Roller backed by the d20 library.

    Example:
        >>> roller = DiceRoller(seed=42)
        >>> result = roller.roll(2, 6, 3)
        >>> 5 <= result.total <= 15
        True
    """

    def __init__(self, *, seed: int | None = None) -> None:
        """Initialize the dice roller.

        Args:
            seed: Optional random seed for reproducible rolls.
        """
        self._seed = seed
        if seed is not None:
            random.seed(seed)
        logger.info("DiceRoller initialized", seed=seed)

    def roll(self, count: int, size: int, bonus: int = 0) -> RollResult:
        """Roll dice.

        Args:
            count: Number of dice (0 rolls nothing and returns the bonus).
            size: Sides per die.
            bonus: Flat bonus.

        Returns:
            RollResult with the individual faces.

        Raises:
            DiceRollError: If count or size is invalid or d20 rejects the roll.
        """
        _validate(count, size)
        if count == 0:
            return RollResult(count=0, size=size, bonus=bonus, rolls=(), total=bonus)

        expression = f"{count}d{size}"
        if bonus:
            expression += f"{bonus:+d}"

        try:
            result = d20.roll(expression)
        except d20.RollError as exc:
            raise DiceRollError(f"Invalid dice expression: {exc}", expression=expression) from exc

        rolls = tuple(self._extract_dice_values(result.expr))
        logger.debug("Dice rolled", expression=expression, total=result.total, rolls=rolls)
        return RollResult(count=count, size=size, bonus=bonus, rolls=rolls, total=result.total)

    def _extract_dice_values(self, expr: Any) -> list[int]:
        """Collect the kept die faces from a d20 expression tree."""
        values: list[int] = []

        def traverse(node: Any) -> None:
            if isinstance(node, d20.Dice):
                for die in node.values:
                    if die.kept:
                        values.append(int(die.number))
            elif hasattr(node, "children"):
                for child in node.children:
                    traverse(child)

        traverse(expr)
        return values


# =============================================================================
# Scripted Roller
# =============================================================================


class ScriptedRoller:
    """Roller that returns predetermined die faces in order.

    Each die consumes one face. A face outside ``1..size`` or an exhausted
    script raises DiceRollError.

    Example:
        >>> roller = ScriptedRoller([15, 3, 4])
        >>> roller.roll(1, 20, 2).total
        17
        >>> roller.roll(2, 6).total
        7
    """

    def __init__(self, faces: Iterable[int] = ()) -> None:
        self._faces: list[int] = list(faces)
        self._position = 0
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        with self._lock:
            return len(self._faces) - self._position

    def extend(self, faces: Iterable[int]) -> None:
        """Queue more faces after the current ones."""
        with self._lock:
            self._faces.extend(faces)

    def roll(self, count: int, size: int, bonus: int = 0) -> RollResult:
        _validate(count, size)
        expression = f"{count}d{size}"
        with self._lock:
            if self._position + count > len(self._faces):
                raise DiceRollError(
                    "Scripted roller ran out of dice faces",
                    expression=expression,
                    details={"needed": count, "remaining": len(self._faces) - self._position},
                )
            rolls = tuple(self._faces[self._position : self._position + count])
            bad = [face for face in rolls if not 1 <= face <= size]
            if bad:
                raise DiceRollError(
                    f"Scripted face {bad[0]} does not fit a d{size}",
                    expression=expression,
                )
            self._position += count
        return RollResult(count=count, size=size, bonus=bonus, rolls=rolls, total=sum(rolls) + bonus)


# =============================================================================
# d20 Mechanics
# =============================================================================


@dataclass(frozen=True)
class D20Roll:
    """A d20 test (attack, save, check or initiative).

    Attributes:
        natural: The kept d20 face.
        rolls: Every d20 face rolled (two under advantage or disadvantage).
        bonus: Flat bonus added to the natural roll.
        total: natural + bonus.
        mode: Roll mode used.
    """

    natural: int
    rolls: tuple[int, ...]
    bonus: int
    total: int
    mode: RollMode

    @property
    def is_critical(self) -> bool:
        return self.natural == NATURAL_CRIT

    @property
    def is_fumble(self) -> bool:
        return self.natural == NATURAL_MISS


def roll_d20(roller: Roller, bonus: int = 0, mode: RollMode = RollMode.NORMAL) -> D20Roll:
    """Roll a d20 test.

    Under advantage or disadvantage two separate d20s are rolled and the
    higher or lower is kept.

    Args:
        roller: Dice source.
        bonus: Flat bonus.
        mode: Normal, advantage or disadvantage.

    Returns:
        The d20 roll.
    """
    first = roller.roll(1, D20).rolls[0]
    if mode == RollMode.NORMAL:
        return D20Roll(natural=first, rolls=(first,), bonus=bonus, total=first + bonus, mode=mode)

    second = roller.roll(1, D20).rolls[0]
    natural = max(first, second) if mode == RollMode.ADVANTAGE else min(first, second)
    return D20Roll(
        natural=natural,
        rolls=(first, second),
        bonus=bonus,
        total=natural + bonus,
        mode=mode,
    )


__all__ = [
    "RollMode",
    "combine_roll_modes",
    "RollResult",
    "Roller",
    "DiceRoller",
    "ScriptedRoller",
    "D20Roll",
    "roll_d20",
]
