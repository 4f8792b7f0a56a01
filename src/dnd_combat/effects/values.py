"""Parsing of modifier values.

A modifier carries its value as text so that builders and stored effects
stay human-readable. Three shapes are accepted:

* flat numbers: ``"+2"``, ``"-1"``, ``"3"``
* dice: ``"+1d4"``, ``"-1d6"``, ``"2d8"``
* keywords: ``"advantage"``, ``"disadvantage"``, ``"resistance"``,
  ``"immunity"``, ``"vulnerability"``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache

from dnd_combat.core.exceptions import ValidationError


class ValueKind(StrEnum):
    """Shape of a parsed modifier value."""

    FLAT = "flat"
    DICE = "dice"
    KEYWORD = "keyword"


class ValueKeyword(StrEnum):
    """Keyword values understood by the resolver."""

    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"
    RESISTANCE = "resistance"
    IMMUNITY = "immunity"
    VULNERABILITY = "vulnerability"


_FLAT_PATTERN = re.compile(r"^([+-]?)(\d+)$")
_DICE_PATTERN = re.compile(r"^([+-]?)(\d*)d(\d+)$", re.IGNORECASE)


@dataclass(frozen=True)
class ModifierValue:
    """A parsed modifier value.

    Attributes:
        kind: Flat number, dice expression or keyword.
        sign: +1 or -1 (keywords are always +1).
        amount: Absolute flat amount (flat values only).
        dice_count: Number of dice (dice values only).
        dice_size: Sides per die (dice values only).
        keyword: Keyword (keyword values only).
        raw: The original text.
    """

    kind: ValueKind
    sign: int = 1
    amount: int = 0
    dice_count: int = 0
    dice_size: int = 0
    keyword: ValueKeyword | None = None
    raw: str = ""

    @property
    def is_numeric(self) -> bool:
        return self.kind in (ValueKind.FLAT, ValueKind.DICE)

    @property
    def flat(self) -> int:
        """Signed flat amount (0 for dice and keywords)."""
        return self.sign * self.amount if self.kind == ValueKind.FLAT else 0

    @property
    def magnitude(self) -> float | None:
        """Signed expected value, or None for keywords.

        Dice count at their average, so ``+1d4`` has magnitude 2.5.
        """
        if self.kind == ValueKind.FLAT:
            return float(self.sign * self.amount)
        if self.kind == ValueKind.DICE:
            return self.sign * self.dice_count * (self.dice_size + 1) / 2
        return None


@lru_cache(maxsize=256)
def parse_modifier_value(text: str) -> ModifierValue:
    """Parse a modifier value string.

    Args:
        text: The value text, e.g. ``"+2"``, ``"+1d4"`` or ``"advantage"``.

    Returns:
        The parsed ModifierValue.

    Raises:
        ValidationError: If the text matches none of the accepted shapes.

    Example:
        >>> parse_modifier_value("+1d4").magnitude
        2.5
    """
    cleaned = text.strip().replace(" ", "")
    lowered = cleaned.lower()

    if lowered in ValueKeyword._value2member_map_:
        return ModifierValue(kind=ValueKind.KEYWORD, keyword=ValueKeyword(lowered), raw=text)

    if match := _FLAT_PATTERN.match(cleaned):
        sign = -1 if match.group(1) == "-" else 1
        return ModifierValue(kind=ValueKind.FLAT, sign=sign, amount=int(match.group(2)), raw=text)

    if match := _DICE_PATTERN.match(cleaned):
        sign = -1 if match.group(1) == "-" else 1
        count = int(match.group(2)) if match.group(2) else 1
        size = int(match.group(3))
        if count < 1 or size < 1:
            raise ValidationError(
                f"Dice modifier must have at least one die with one side: {text!r}",
                field_name="value",
                invalid_value=text,
            )
        return ModifierValue(
            kind=ValueKind.DICE,
            sign=sign,
            dice_count=count,
            dice_size=size,
            raw=text,
        )

    raise ValidationError(
        f"Unrecognized modifier value: {text!r}",
        field_name="value",
        invalid_value=text,
    )


__all__ = [
    "ValueKind",
    "ValueKeyword",
    "ModifierValue",
    "parse_modifier_value",
]
