"""Template Registry — Item Kind별 Fragment 합성

상속 체인 대신 Fragment 목록을 왼쪽→오른쪽으로 병합한다.
같은 필드명은 뒤쪽 선언이 이긴다 (last-wins).
합성은 Kind 등록 시 1회만 수행한다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from . import fields as f
from .fields import FieldSpec
from .fragments import (
    ACTION,
    ACTIVATED_EFFECT,
    EQUIPPABLE_ITEM,
    ITEM_DESCRIPTION,
    MOUNTABLE,
    PHYSICAL_ITEM,
    Capability,
    Fragment,
    limited_uses,
)
from .models import ItemKind
from .rules import WEAPON_PROPERTIES

logger = logging.getLogger(__name__)

FieldMap = Mapping[str, FieldSpec]


class TemplateError(Exception):
    """Kind 선언 오류 (등록 시점). 레코드 처리 중에는 발생하지 않는다."""


def compose(fragments: Sequence[Fragment]) -> FieldMap:
    """Fragment 목록 → FieldMap. last-wins 병합.

    어떤 Fragment의 requires가 합성 결과에 없으면 TemplateError.
    """
    merged: dict[str, FieldSpec] = {}
    for fragment in fragments:
        for name, spec in fragment.fields.items():
            merged[name] = spec

    for fragment in fragments:
        missing = [name for name in fragment.requires if name not in merged]
        if missing:
            raise TemplateError(
                f"Fragment '{fragment.name}' requires missing fields: {', '.join(missing)}"
            )
    return MappingProxyType(merged)


@dataclass(frozen=True)
class ItemTemplate:
    """Kind 하나의 합성 결과"""

    kind: ItemKind
    fragments: tuple[Fragment, ...]
    fields: FieldMap
    capabilities: frozenset[Capability]

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def has_quantity(self) -> bool:
        return Capability.PHYSICAL in self.capabilities

    @property
    def has_uses(self) -> bool:
        return Capability.ACTIVATED in self.capabilities

    @property
    def equippable(self) -> bool:
        return Capability.EQUIPPABLE in self.capabilities


class TemplateRegistry:
    """Kind → ItemTemplate 저장소"""

    def __init__(self) -> None:
        self._templates: dict[ItemKind, ItemTemplate] = {}

    def register(
        self,
        kind: ItemKind,
        fragments: Sequence[Fragment],
        extra: Optional[Mapping[str, FieldSpec]] = None,
    ) -> ItemTemplate:
        """Kind 등록. 이미 등록된 Kind는 TemplateError (합성 결과는 런타임 불변)."""
        if kind in self._templates:
            raise TemplateError(f"Item kind already registered: {kind.value}")

        chain = list(fragments)
        if extra:
            chain.append(Fragment(name=f"{kind.value}_fields", capability=None, fields=extra))

        template = ItemTemplate(
            kind=kind,
            fragments=tuple(fragments),
            fields=compose(chain),
            capabilities=frozenset(fr.capability for fr in chain if fr.capability is not None),
        )
        self._templates[kind] = template
        logger.debug(
            "Registered item kind %s (%d fields)", kind.value, len(template.fields)
        )
        return template

    def get(self, kind: ItemKind) -> Optional[ItemTemplate]:
        return self._templates.get(kind)

    def fields_for(self, kind: ItemKind) -> FieldMap:
        template = self._templates.get(kind)
        if template is None:
            raise KeyError(f"Unknown item kind: {kind}")
        return template.fields

    def kinds(self) -> list[ItemKind]:
        return list(self._templates.keys())


# ── 기본 Kind 선언 ───────────────────────────────────────────


def _proficient(max_value: float, *, step: Optional[float] = None) -> FieldSpec:
    if step is None:
        return f.number(None, min=0, max=max_value, integer=True, label="Proficiency Level")
    return f.number(None, min=0, max=max_value, step=step, label="Proficiency Level")


def _resource_link() -> FieldSpec:
    return f.string("", required=False, label="Resource Link")


def _spellcasting() -> FieldSpec:
    return f.schema(progression=f.string("none"), ability=f.string())


KIND_DECLARATIONS: dict[ItemKind, tuple[tuple[Fragment, ...], dict[str, FieldSpec]]] = {
    ItemKind.WEAPON: (
        (ITEM_DESCRIPTION, PHYSICAL_ITEM, EQUIPPABLE_ITEM, ACTIVATED_EFFECT, ACTION, MOUNTABLE),
        {
            "weaponType": f.string("simpleM", blank=False, label="Weapon Type"),
            "baseItem": f.string(label="Base Weapon"),
            "properties": f.mapping(
                {key: False for key in WEAPON_PROPERTIES}, label="Weapon Properties"
            ),
            "proficient": _proficient(1),
            "resourceLink": _resource_link(),
        },
    ),
    ItemKind.EQUIPMENT: (
        (ITEM_DESCRIPTION, PHYSICAL_ITEM, EQUIPPABLE_ITEM, ACTIVATED_EFFECT, ACTION, MOUNTABLE),
        {
            # mountable의 armor를 덮어쓴다
            "armor": f.schema(
                type=f.string("light", blank=False),
                value=f.number(integer=True, min=0),
                dex=f.number(integer=True),
            ),
            "baseItem": f.string(label="Base Armor"),
            "speed": f.schema(value=f.number(min=0), conditions=f.string()),
            "strength": f.number(integer=True, min=0, label="Required Strength"),
            "stealth": f.boolean(False, label="Stealth Disadvantage"),
            "proficient": _proficient(1),
            "resourceLink": _resource_link(),
        },
    ),
    ItemKind.CONSUMABLE: (
        (ITEM_DESCRIPTION, PHYSICAL_ITEM, EQUIPPABLE_ITEM, ACTIVATED_EFFECT, ACTION),
        {
            "consumableType": f.string("potion", blank=False, label="Consumable Type"),
            "properties": f.mapping(required=False, label="Ammunition Properties"),
            # activated_effect의 uses를 덮어쓴다
            "uses": limited_uses(autoDestroy=f.boolean(False)),
            "resourceLink": _resource_link(),
        },
    ),
    ItemKind.TOOL: (
        (ITEM_DESCRIPTION, PHYSICAL_ITEM, EQUIPPABLE_ITEM),
        {
            "toolType": f.string(label="Tool Type"),
            "baseItem": f.string(label="Base Tool"),
            "ability": f.string(label="Default Ability Check"),
            "chatFlavor": f.string(),
            "proficient": _proficient(2, step=0.5),
            "bonus": f.formula(label="Tool Bonus"),
            "resourceLink": _resource_link(),
        },
    ),
    ItemKind.LOOT: ((ITEM_DESCRIPTION, PHYSICAL_ITEM), {}),
    ItemKind.CONTAINER: (
        (ITEM_DESCRIPTION, PHYSICAL_ITEM, EQUIPPABLE_ITEM),
        {
            "capacity": f.schema(
                type=f.string("weight"),
                value=f.number(0, nullable=False, min=0),
                weightless=f.boolean(False),
            ),
            "currency": f.schema(
                **{key: f.number(0, nullable=False, integer=True, min=0) for key in ("pp", "gp", "ep", "sp", "cp")}
            ),
        },
    ),
    ItemKind.SPELL: (
        (ITEM_DESCRIPTION, ACTIVATED_EFFECT, ACTION),
        {
            "level": f.number(1, nullable=False, integer=True, min=0, max=9, label="Spell Level"),
            "school": f.string(),
            "components": f.mapping(
                {"vocal": False, "somatic": False, "material": False, "ritual": False, "concentration": False}
            ),
            "materials": f.schema(
                value=f.string(), consumed=f.boolean(False), cost=f.number(0, nullable=False, min=0)
            ),
            "preparation": f.schema(mode=f.string("prepared", blank=False), prepared=f.boolean(False)),
        },
    ),
    ItemKind.FEAT: (
        (ITEM_DESCRIPTION, ACTIVATED_EFFECT, ACTION),
        {
            "type": f.schema(value=f.string(), subtype=f.string()),
            "requirements": f.string(),
            "recharge": f.schema(value=f.number(integer=True, min=1, max=6), charged=f.boolean(False)),
        },
    ),
    ItemKind.BACKGROUND: ((ITEM_DESCRIPTION,), {"identifier": f.string(), "advancement": f.array()}),
    ItemKind.CLASS: (
        (ITEM_DESCRIPTION,),
        {
            "identifier": f.string(label="Identifier"),
            "levels": f.number(1, nullable=False, integer=True, min=0, label="Class Levels"),
            "hitDice": f.string("d6", blank=False),
            "hitDiceUsed": f.number(0, nullable=False, integer=True, min=0),
            "advancement": f.array(),
            "saves": f.array(),
            "spellcasting": _spellcasting(),
        },
    ),
    ItemKind.SUBCLASS: (
        (ITEM_DESCRIPTION,),
        {
            "identifier": f.string(label="Identifier"),
            "classIdentifier": f.string(label="Class Identifier"),
            "advancement": f.array(),
            "spellcasting": _spellcasting(),
        },
    ),
}


def build_item_registry() -> TemplateRegistry:
    """기본 Kind 전부 등록된 Registry 생성."""
    registry = TemplateRegistry()
    for kind, (fragments, extra) in KIND_DECLARATIONS.items():
        registry.register(kind, fragments, extra)
    logger.info("Composed %d item kinds", len(registry.kinds()))
    return registry


@lru_cache(maxsize=1)
def default_registry() -> TemplateRegistry:
    """프로세스 공용 기본 Registry (합성 1회)."""
    return build_item_registry()
