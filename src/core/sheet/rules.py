"""전역 규칙 상수 — 불변 설정으로 파이프라인에 주입

전역 상태를 읽지 않는다. 호출자가 RuleConfig를 넘긴다.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from fractions import Fraction
from types import MappingProxyType
from typing import Mapping, Union


def _frozen(data: dict) -> Mapping:
    return MappingProxyType(data)


WEAPON_TYPES = {
    "simpleM": "Simple Melee",
    "simpleR": "Simple Ranged",
    "martialM": "Martial Melee",
    "martialR": "Martial Ranged",
    "natural": "Natural",
    "improv": "Improvised",
    "siege": "Siege Weapon",
}

# True = 항상 숙련
WEAPON_PROFICIENCIES_MAP: dict[str, Union[str, bool]] = {
    "natural": True,
    "simpleM": "sim",
    "simpleR": "sim",
    "martialM": "mar",
    "martialR": "mar",
}

WEAPON_PROPERTIES = {
    "ada": "Adamantine",
    "amm": "Ammunition",
    "fin": "Finesse",
    "fir": "Firearm",
    "foc": "Focus",
    "hvy": "Heavy",
    "lgt": "Light",
    "lod": "Loading",
    "mgc": "Magical",
    "rch": "Reach",
    "rel": "Reload",
    "ret": "Returning",
    "sil": "Silvered",
    "spc": "Special",
    "thr": "Thrown",
    "two": "Two-Handed",
    "ver": "Versatile",
}

ARMOR_TYPES = {
    "light": "Light Armor",
    "medium": "Medium Armor",
    "heavy": "Heavy Armor",
    "natural": "Natural Armor",
    "shield": "Shield",
}

EQUIPMENT_TYPES = {
    **ARMOR_TYPES,
    "clothing": "Clothing",
    "trinket": "Trinket",
    "vehicle": "Vehicle Equipment",
}

ARMOR_PROFICIENCIES_MAP: dict[str, Union[str, bool]] = {
    "natural": True,
    "clothing": True,
    "light": "lgt",
    "medium": "med",
    "heavy": "hvy",
    "shield": "shl",
}

CONSUMABLE_TYPES = {
    "ammo": "Ammunition",
    "potion": "Potion",
    "poison": "Poison",
    "food": "Food",
    "scroll": "Scroll",
    "wand": "Wand",
    "rod": "Rod",
    "trinket": "Trinket",
}

TOOL_TYPES = {
    "art": "Artisan's Tools",
    "game": "Gaming Set",
    "music": "Musical Instrument",
}

ABILITIES = {
    "str": "Strength",
    "dex": "Dexterity",
    "con": "Constitution",
    "int": "Intelligence",
    "wis": "Wisdom",
    "cha": "Charisma",
}

SPELL_LEVELS = {
    0: "Cantrip",
    1: "1st Level",
    2: "2nd Level",
    3: "3rd Level",
    4: "4th Level",
    5: "5th Level",
    6: "6th Level",
    7: "7th Level",
    8: "8th Level",
    9: "9th Level",
}

SPELL_SCHOOLS = {
    "abj": "Abjuration",
    "con": "Conjuration",
    "div": "Divination",
    "enc": "Enchantment",
    "evo": "Evocation",
    "ill": "Illusion",
    "nec": "Necromancy",
    "trs": "Transmutation",
}

SPELL_PREPARATION_MODES = {
    "prepared": "Prepared",
    "pact": "Pact Magic",
    "always": "Always Prepared",
    "atwill": "At-Will",
    "innate": "Innate Spellcasting",
}

# 기본 자원: 삭제 불가
RESOURCE_OPTIONS = {
    "primary": "Resource 1",
    "secondary": "Resource 2",
    "tertiary": "Resource 3",
}

ITEM_TYPE_LABELS = {
    "weapon": "Weapon",
    "equipment": "Equipment",
    "consumable": "Consumable",
    "tool": "Tool",
    "loot": "Loot",
    "backpack": "Container",
    "spell": "Spell",
    "feat": "Feature",
    "background": "Background",
    "class": "Class",
    "subclass": "Subclass",
}

ITEM_TYPE_PLURALS = {
    "weapon": "Weapons",
    "equipment": "Equipment",
    "consumable": "Consumables",
    "tool": "Tools",
    "loot": "Loot",
    "backpack": "Containers",
    "spell": "Spells",
    "feat": "Features",
    "background": "Backgrounds",
    "class": "Classes",
    "subclass": "Subclasses",
}

# 기준 화폐(gp) 1 단위당 환산 수량
CURRENCIES = {
    "pp": Fraction(1, 10),
    "gp": Fraction(1),
    "ep": Fraction(2),
    "sp": Fraction(10),
    "cp": Fraction(100),
}


@dataclass(frozen=True)
class RuleConfig:
    """규칙 상수 묶음. 모든 매핑은 읽기 전용."""

    max_level: int = 20
    weapon_types: Mapping[str, str] = field(default_factory=lambda: _frozen(WEAPON_TYPES))
    weapon_proficiencies_map: Mapping[str, Union[str, bool]] = field(
        default_factory=lambda: _frozen(WEAPON_PROFICIENCIES_MAP)
    )
    weapon_properties: Mapping[str, str] = field(
        default_factory=lambda: _frozen(WEAPON_PROPERTIES)
    )
    armor_types: Mapping[str, str] = field(default_factory=lambda: _frozen(ARMOR_TYPES))
    equipment_types: Mapping[str, str] = field(
        default_factory=lambda: _frozen(EQUIPMENT_TYPES)
    )
    armor_proficiencies_map: Mapping[str, Union[str, bool]] = field(
        default_factory=lambda: _frozen(ARMOR_PROFICIENCIES_MAP)
    )
    consumable_types: Mapping[str, str] = field(
        default_factory=lambda: _frozen(CONSUMABLE_TYPES)
    )
    tool_types: Mapping[str, str] = field(default_factory=lambda: _frozen(TOOL_TYPES))
    abilities: Mapping[str, str] = field(default_factory=lambda: _frozen(ABILITIES))
    spell_levels: Mapping[int, str] = field(default_factory=lambda: _frozen(SPELL_LEVELS))
    spell_schools: Mapping[str, str] = field(default_factory=lambda: _frozen(SPELL_SCHOOLS))
    spell_preparation_modes: Mapping[str, str] = field(
        default_factory=lambda: _frozen(SPELL_PREPARATION_MODES)
    )
    resource_options: Mapping[str, str] = field(
        default_factory=lambda: _frozen(RESOURCE_OPTIONS)
    )
    item_type_labels: Mapping[str, str] = field(
        default_factory=lambda: _frozen(ITEM_TYPE_LABELS)
    )
    item_type_plurals: Mapping[str, str] = field(
        default_factory=lambda: _frozen(ITEM_TYPE_PLURALS)
    )
    currencies: Mapping[str, Fraction] = field(default_factory=lambda: _frozen(CURRENCIES))

    # 즉석 무기 / 투척물 숙련 특성 플래그
    improvised_feat_flag: str = "tavernBrawlerFeat"

    def with_max_level(self, max_level: int) -> "RuleConfig":
        return replace(self, max_level=max_level)


DEFAULT_RULES = RuleConfig()
