"""Character sheet data the encounter engine reads.

The engine does not build characters; it only needs enough of a sheet to
seed a player combatant and to derive the character's weapon attack.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from dnd_combat.core.constants import DEFAULT_SPEED
from dnd_combat.models.combat import AttackSpec, AttackType, DamageDice
from dnd_combat.models.equipment import Loadout, weapon_attack_type


class AbilityScore(StrEnum):
    """D&D 5E ability scores."""

    STRENGTH = "strength"
    DEXTERITY = "dexterity"
    CONSTITUTION = "constitution"
    INTELLIGENCE = "intelligence"
    WISDOM = "wisdom"
    CHARISMA = "charisma"


class AbilityScores(BaseModel):
    """Ability scores (1-30)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    strength: Annotated[int, Field(ge=1, le=30)] = 10
    dexterity: Annotated[int, Field(ge=1, le=30)] = 10
    constitution: Annotated[int, Field(ge=1, le=30)] = 10
    intelligence: Annotated[int, Field(ge=1, le=30)] = 10
    wisdom: Annotated[int, Field(ge=1, le=30)] = 10
    charisma: Annotated[int, Field(ge=1, le=30)] = 10

    def get_modifier(self, ability: AbilityScore) -> int:
        """Calculate the ability modifier for a given ability score.

        Args:
            ability: The ability score to get the modifier for.

        Returns:
            The ability modifier (score - 10) // 2.
        """
        return (getattr(self, ability.value) - 10) // 2


class CharacterSheet(BaseModel):
    """A player character as seen by the combat engine.

    Attributes:
        id: Character identifier.
        owner_id: User who plays the character.
        name: Character name.
        race: Character race (display only).
        character_class: Class name (display only).
        level: Total character level (1-20).
        max_hp: Maximum hit points.
        current_hp: Current hit points carried into combat.
        armor_class: Fixed AC override; derived from the loadout when None.
        speed: Movement in feet.
        abilities: Ability scores.
        loadout: Carried and equipped items.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    owner_id: str = ""
    name: str = Field(min_length=1, max_length=100)
    race: str = ""
    character_class: str = ""
    level: Annotated[int, Field(ge=1, le=20)] = 1
    max_hp: Annotated[int, Field(ge=1)]
    current_hp: Annotated[int, Field(ge=0)] | None = None
    armor_class: Annotated[int, Field(ge=0, le=50)] | None = None
    speed: Annotated[int, Field(ge=0)] = DEFAULT_SPEED
    abilities: AbilityScores = Field(default_factory=AbilityScores)
    loadout: Loadout = Field(default_factory=Loadout)

    @property
    def proficiency_bonus(self) -> int:
        return (self.level - 1) // 4 + 2

    @property
    def initiative_bonus(self) -> int:
        return self.abilities.get_modifier(AbilityScore.DEXTERITY)

    @property
    def effective_ac(self) -> int:
        if self.armor_class is not None:
            return self.armor_class
        return self.loadout.armor_class(self.abilities.get_modifier(AbilityScore.DEXTERITY))

    @property
    def starting_hp(self) -> int:
        if self.current_hp is None:
            return self.max_hp
        return min(self.current_hp, self.max_hp)

    def attack_profile(self) -> AttackSpec:
        """Build the attack made with the main equipped weapon.

        Finesse weapons use the better of Strength and Dexterity, ranged
        weapons use Dexterity, everything else Strength. Without a weapon
        the character makes an unarmed strike for 1 + Strength modifier.

        Returns:
            The attack specification.
        """
        strength = self.abilities.get_modifier(AbilityScore.STRENGTH)
        dexterity = self.abilities.get_modifier(AbilityScore.DEXTERITY)

        weapon = self.loadout.main_weapon()
        if weapon is None:
            return AttackSpec(
                name="Unarmed Strike",
                attack_bonus=strength + self.proficiency_bonus,
                damage=(
                    DamageDice(dice_count=0, dice_size=1, bonus=1 + strength, damage_type="bludgeoning"),
                ),
                attack_type=AttackType.MELEE,
            )

        if weapon.ranged:
            ability_mod = dexterity
        elif weapon.finesse:
            ability_mod = max(strength, dexterity)
        else:
            ability_mod = strength

        count, size = weapon.damage_dice
        return AttackSpec(
            name=weapon.name.replace("_", " ").title(),
            attack_bonus=ability_mod + self.proficiency_bonus + weapon.magic_bonus,
            damage=(
                DamageDice(
                    dice_count=count,
                    dice_size=size,
                    bonus=ability_mod + weapon.magic_bonus,
                    damage_type=weapon.damage_type,
                ),
            ),
            attack_type=weapon_attack_type(weapon),
            weapon=weapon.name,
        )


__all__ = [
    "AbilityScore",
    "AbilityScores",
    "CharacterSheet",
]
