"""Capability Fragment 선언

재사용 가능한 필드 묶음. 선언 후 불변.
Item Kind는 Fragment 목록을 순서대로 합성한다 (templates.py).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from .fields import FieldSpec, array, boolean, formula, number, schema, string


class Capability(str, Enum):
    """Fragment가 부여하는 능력 태그. Kind 합성 시 정적으로 결정."""

    DESCRIPTION = "description"
    PHYSICAL = "physical"  # quantity / weight
    EQUIPPABLE = "equippable"  # equipped 토글
    ACTIVATED = "activated"  # activation / uses (limited-use counter)
    ACTION = "action"
    MOUNTABLE = "mountable"


@dataclass(frozen=True)
class Fragment:
    """이름 있는 필드 그룹"""

    name: str
    capability: Optional[Capability]  # None = Kind 전용 필드 묶음
    fields: Mapping[str, FieldSpec]
    requires: tuple[str, ...] = ()  # 다른 Fragment가 제공해야 하는 필드명

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


def limited_uses(**extra: FieldSpec) -> FieldSpec:
    """uses 필드. consumable은 autoDestroy를 추가해서 재선언."""
    return schema(
        label="Limited Uses",
        value=number(min=0, integer=True),
        max=number(min=0, integer=True),
        per=string(None, nullable=True),
        recovery=formula(),
        **extra,
    )


ITEM_DESCRIPTION = Fragment(
    name="item_description",
    capability=Capability.DESCRIPTION,
    fields={
        "description": schema(
            value=string(), chat=string(), unidentified=string()
        ),
        "source": string(),
    },
)

PHYSICAL_ITEM = Fragment(
    name="physical_item",
    capability=Capability.PHYSICAL,
    fields={
        "quantity": number(1, nullable=False, integer=True, min=0, label="Quantity"),
        "weight": number(0, nullable=False, min=0, label="Weight"),
        "price": schema(
            value=number(0, nullable=False, min=0),
            denomination=string("gp", blank=False),
        ),
        "rarity": string(),
        "identified": boolean(True),
    },
)

EQUIPPABLE_ITEM = Fragment(
    name="equippable_item",
    capability=Capability.EQUIPPABLE,
    fields={
        "attunement": number(0, nullable=False, integer=True, min=0, max=2),
        "equipped": boolean(False, label="Equipped"),
    },
    requires=("quantity",),
)

ACTIVATED_EFFECT = Fragment(
    name="activated_effect",
    capability=Capability.ACTIVATED,
    fields={
        "activation": schema(
            type=string(), cost=number(), condition=string()
        ),
        "duration": schema(value=formula(), units=string()),
        "target": schema(
            value=number(min=0), width=number(min=0), units=string(), type=string()
        ),
        "range": schema(
            value=number(min=0), long=number(min=0), units=string()
        ),
        "uses": limited_uses(),
        "consume": schema(
            type=string(), target=string(None, nullable=True), amount=number(integer=True)
        ),
    },
)

ACTION = Fragment(
    name="action",
    capability=Capability.ACTION,
    fields={
        "ability": string(None, nullable=True),
        "actionType": string(None, nullable=True),
        "attackBonus": formula(),
        "chatFlavor": string(),
        "critical": schema(threshold=number(integer=True, min=1), damage=formula()),
        "damage": schema(parts=array(), versatile=formula()),
        "formula": formula(),
        "save": schema(
            ability=string(), dc=number(integer=True, min=0), scaling=string("spell")
        ),
    },
    requires=("activation",),
)

MOUNTABLE = Fragment(
    name="mountable",
    capability=Capability.MOUNTABLE,
    fields={
        "armor": schema(value=number(integer=True, min=0)),
        "hp": schema(
            value=number(integer=True, min=0),
            max=number(integer=True, min=0),
            dt=number(integer=True, min=0),
            conditions=string(),
        ),
    },
)
