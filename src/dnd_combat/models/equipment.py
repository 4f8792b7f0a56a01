"""Equipment as a tagged union.

Each item kind is its own model, discriminated by ``kind``. Code that needs
per-kind behavior (armor class, attack profile) matches on the concrete
type, so adding a new kind means touching every such match.

Example:
    >>> loadout = Loadout(items=[LONGSWORD, CHAIN_MAIL, SHIELD])
    >>> loadout.armor_class(dex_modifier=2)
    18
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal, assert_never

from pydantic import BaseModel, ConfigDict, Field

from dnd_combat.models.combat import AttackType


class ArmorCategory(StrEnum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    SHIELD = "shield"


class Weapon(BaseModel):
    """A weapon.

    Attributes:
        name: Weapon identifier, used by ``with_weapon`` modifier gates.
        damage_dice: Dice count and size, e.g. (1, 8).
        damage_type: Damage type of a hit.
        finesse: May use Dexterity instead of Strength.
        ranged: Ranged weapon (uses Dexterity).
        magic_bonus: Bonus to attack and damage from enchantment.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["weapon"] = "weapon"
    name: str = Field(min_length=1)
    damage_dice: tuple[int, int] = (1, 4)
    damage_type: str = "bludgeoning"
    finesse: bool = False
    ranged: bool = False
    magic_bonus: Annotated[int, Field(ge=0, le=3)] = 0
    equipped: bool = True


class Armor(BaseModel):
    """Body armor or a shield.

    Attributes:
        base_ac: Base AC (bonus AC for shields).
        category: Light, medium, heavy or shield.
        max_dex_bonus: Cap on the Dexterity bonus (None for no cap).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["armor"] = "armor"
    name: str = Field(min_length=1)
    base_ac: Annotated[int, Field(ge=0, le=30)]
    category: ArmorCategory
    max_dex_bonus: int | None = None
    equipped: bool = True


class Gear(BaseModel):
    """Anything else a character carries."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["gear"] = "gear"
    name: str = Field(min_length=1)
    quantity: Annotated[int, Field(ge=0)] = 1
    equipped: bool = False


Item = Annotated[
    Weapon | Armor | Gear,
    Field(discriminator="kind", description="An inventory item"),
]
"""Discriminated union of all item kinds, keyed by ``kind``."""


UNARMED_BASE_AC = 10


class Loadout(BaseModel):
    """The items a character has."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: tuple[Item, ...] = ()

    def equipped(self) -> list[Weapon | Armor | Gear]:
        return [item for item in self.items if item.equipped]

    def armor_class(self, dex_modifier: int) -> int:
        """Armor class from equipped armor and shields.

        Args:
            dex_modifier: Dexterity modifier of the wearer.

        Returns:
            Total AC.
        """
        body: Armor | None = None
        shield_bonus = 0
        for item in self.equipped():
            match item:
                case Armor(category=ArmorCategory.SHIELD):
                    shield_bonus += item.base_ac
                case Armor():
                    body = item
                case Weapon() | Gear():
                    pass
                case _:
                    assert_never(item)

        if body is None:
            return UNARMED_BASE_AC + dex_modifier + shield_bonus

        dex_bonus = dex_modifier
        if body.category == ArmorCategory.HEAVY:
            dex_bonus = 0
        elif body.max_dex_bonus is not None:
            dex_bonus = min(dex_bonus, body.max_dex_bonus)
        return body.base_ac + dex_bonus + shield_bonus

    def main_weapon(self) -> Weapon | None:
        for item in self.equipped():
            match item:
                case Weapon():
                    return item
                case Armor() | Gear():
                    continue
                case _:
                    assert_never(item)
        return None


def weapon_attack_type(weapon: Weapon) -> AttackType:
    return AttackType.RANGED if weapon.ranged else AttackType.MELEE


# =============================================================================
# Common Items
# =============================================================================

LONGSWORD = Weapon(name="longsword", damage_dice=(1, 8), damage_type="slashing")
SHORTSWORD = Weapon(name="shortsword", damage_dice=(1, 6), damage_type="piercing", finesse=True)
LONGBOW = Weapon(name="longbow", damage_dice=(1, 8), damage_type="piercing", ranged=True)
GREATAXE = Weapon(name="greataxe", damage_dice=(1, 12), damage_type="slashing")
LEATHER = Armor(name="leather", base_ac=11, category=ArmorCategory.LIGHT)
CHAIN_SHIRT = Armor(name="chain_shirt", base_ac=13, category=ArmorCategory.MEDIUM, max_dex_bonus=2)
CHAIN_MAIL = Armor(name="chain_mail", base_ac=16, category=ArmorCategory.HEAVY, max_dex_bonus=0)
SHIELD = Armor(name="shield", base_ac=2, category=ArmorCategory.SHIELD)


__all__ = [
    "ArmorCategory",
    "Weapon",
    "Armor",
    "Gear",
    "Item",
    "Loadout",
    "weapon_attack_type",
    "LONGSWORD",
    "SHORTSWORD",
    "LONGBOW",
    "GREATAXE",
    "LEATHER",
    "CHAIN_SHIRT",
    "CHAIN_MAIL",
    "SHIELD",
]
