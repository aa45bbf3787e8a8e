"""Derived Attribute Resolver — 숙련 배수 + 표시 속성

아이템(마이그레이션 완료)과 소유 캐릭터로부터 계산. 순수 함수.
소유자는 owner_id로 조회만 한다 (약한 역참조).
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional, Union

from .fields import is_finite_number
from .fragments import Capability
from .models import Character, ItemKind, ItemRecord
from .rules import DEFAULT_RULES, RuleConfig
from .templates import TemplateRegistry

logger = logging.getLogger(__name__)

OwnerLookup = Union[Mapping[str, Character], Callable[[str], Optional[Character]]]

# Kind별 숙련 배수 상한
PROFICIENCY_LIMITS: dict[ItemKind, float] = {
    ItemKind.WEAPON: 1,
    ItemKind.EQUIPMENT: 1,
    ItemKind.TOOL: 2,
    ItemKind.CONSUMABLE: 1,
    ItemKind.SPELL: 1,
}


def owner_of(item: ItemRecord, lookup: OwnerLookup) -> Optional[Character]:
    """owner_id → Character. 미소유/미존재는 None."""
    if not item.owner_id:
        return None
    if callable(lookup):
        return lookup(item.owner_id)
    return lookup.get(item.owner_id)


def _clamp(kind: ItemKind, value: float) -> float:
    upper = PROFICIENCY_LIMITS.get(kind, 1)
    if not is_finite_number(value):
        return 0
    return min(max(value, 0), upper)


def _tag_proficient(
    category: Optional[str],
    base_item: Optional[str],
    profs_map: Mapping[str, Union[str, bool]],
    granted: set[str],
) -> bool:
    item_prof = profs_map.get(category) if category else None
    if item_prof is True:
        return True
    if isinstance(item_prof, str) and item_prof in granted:
        return True
    return bool(base_item) and base_item in granted


def _weapon_multiplier(item: ItemRecord, owner: Character, rules: RuleConfig) -> float:
    weapon_type = item.get("weaponType")
    if weapon_type == "natural":
        return 1
    if weapon_type == "improv":
        return 1 if owner.flags.get(rules.improvised_feat_flag) else 0
    proficient = _tag_proficient(
        weapon_type,
        item.get("baseItem"),
        rules.weapon_proficiencies_map,
        owner.weapon_proficiencies,
    )
    return int(proficient)


def _equipment_multiplier(item: ItemRecord, owner: Character, rules: RuleConfig) -> float:
    proficient = _tag_proficient(
        item.get("armor.type"),
        item.get("baseItem"),
        rules.armor_proficiencies_map,
        owner.armor_proficiencies,
    )
    return int(proficient)


def _tool_multiplier(item: ItemRecord, owner: Character, rules: RuleConfig) -> float:
    tools = owner.tool_proficiencies
    levels = [
        tools.get(key, 0)
        for key in (item.get("baseItem"), item.get("toolType"))
        if key
    ]
    return _clamp(ItemKind.TOOL, max(levels, default=0))


def _consumable_multiplier(item: ItemRecord, owner: Character, rules: RuleConfig) -> float:
    return 1 if owner.flags.get(rules.improvised_feat_flag) else 0


def _spell_multiplier(item: ItemRecord, owner: Character, rules: RuleConfig) -> float:
    return 1


_RESOLVERS: dict[ItemKind, Callable[[ItemRecord, Character, RuleConfig], float]] = {
    ItemKind.WEAPON: _weapon_multiplier,
    ItemKind.EQUIPMENT: _equipment_multiplier,
    ItemKind.TOOL: _tool_multiplier,
    ItemKind.CONSUMABLE: _consumable_multiplier,
    ItemKind.SPELL: _spell_multiplier,
}


def proficiency_multiplier(
    item: ItemRecord,
    owner: Optional[Character],
    rules: RuleConfig = DEFAULT_RULES,
) -> float:
    """숙련 배수. 먼저 맞는 규칙이 이긴다.

    1. 아이템 자체 proficient 값 (유한수) → 그대로
    2. 소유자 없음 → 0
    3. NPC → 1 (스탯블록의 모든 것에 숙련)
    4. 캐릭터 숙련 태그 (카테고리 태그 / 기본 아이템 태그)
    """
    override = item.get("proficient")
    if is_finite_number(override):
        return override
    if owner is None:
        return 0
    if owner.is_npc:
        return 1
    resolver = _RESOLVERS.get(item.kind)
    if resolver is None:
        return 0
    return resolver(item, owner, rules)


# ── 표시 속성 ────────────────────────────────────────────────


def has_limited_uses(item: ItemRecord, registry: TemplateRegistry) -> bool:
    """사용 횟수 카운터 노출 여부.
    Kind가 ACTIVATED capability를 갖고, uses.per 설정 + uses.max > 0.
    """
    template = registry.get(item.kind)
    if template is None or not template.has(Capability.ACTIVATED):
        return False
    max_uses = item.get("uses.max")
    return bool(item.get("uses.per")) and is_finite_number(max_uses) and max_uses > 0


def armor_label(item: ItemRecord) -> Optional[str]:
    value = item.get("armor.value")
    if not is_finite_number(value) or value <= 0:
        return None
    if item.get("armor.type") == "shield":
        return f"+{value} AC"
    return f"{value} AC"


def chat_properties(
    item: ItemRecord,
    registry: TemplateRegistry,
    rules: RuleConfig = DEFAULT_RULES,
) -> list[str]:
    """채팅 카드용 속성 목록. 값이 없으면 생략 (빈 자리 없음)."""
    kind = item.kind
    props: list[Optional[str]] = []

    if kind is ItemKind.WEAPON:
        props = [rules.weapon_types.get(item.get("weaponType"))]
    elif kind is ItemKind.EQUIPMENT:
        props = [
            rules.equipment_types.get(item.get("armor.type")),
            armor_label(item),
            "Stealth Disadvantage" if item.get("stealth") else None,
        ]
    elif kind is ItemKind.CONSUMABLE:
        charges = None
        if has_limited_uses(item, registry):
            charges = f"{item.get('uses.value') or 0}/{item.get('uses.max')} Charges"
        props = [rules.consumable_types.get(item.get("consumableType")), charges]
    elif kind is ItemKind.TOOL:
        props = [rules.abilities.get(item.get("ability"))]
    elif kind is ItemKind.SPELL:
        props = [
            rules.spell_levels.get(item.get("level")),
            rules.spell_schools.get(item.get("school")),
        ]
    elif kind is ItemKind.FEAT:
        props = [item.get("requirements")]

    return [p for p in props if p]


def ability_mod(item: ItemRecord, owner: Optional[Character]) -> Optional[str]:
    """아이템 사용 시 적용할 능력치 키. 결정 불가 시 None."""
    explicit = item.get("ability")
    if item.kind is ItemKind.TOOL:
        return explicit or "int"
    if explicit:
        return explicit

    if item.kind is ItemKind.WEAPON:
        if item.get("weaponType") in ("simpleR", "martialR"):
            return "dex"
        if item.get("properties.fin") and owner is not None and owner.abilities:
            return "dex" if owner.ability_mod("dex") >= owner.ability_mod("str") else "str"
        return None

    if item.kind is ItemKind.CONSUMABLE:
        if item.get("consumableType") != "scroll":
            return None
        return (owner.spellcasting if owner else None) or "int"

    return None


def is_armor(item: ItemRecord, rules: RuleConfig = DEFAULT_RULES) -> bool:
    return item.kind is ItemKind.EQUIPMENT and item.get("armor.type") in rules.armor_types


def is_mountable(item: ItemRecord) -> bool:
    """공성병기/탈것 부품처럼 장착 대신 고정되는 아이템."""
    if item.kind is ItemKind.WEAPON:
        return item.get("weaponType") == "siege"
    if item.kind is ItemKind.EQUIPMENT:
        return item.get("armor.type") == "vehicle"
    return False
