"""아이템 필터 술어 — 표시 파티션별 이름 기반

표시 계층은 활성 필터 이름 집합만 넘긴다.
아이템은 활성 술어를 모두 통과해야 남는다 (AND).
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping

from .models import Character, ItemKind, ItemRecord

logger = logging.getLogger(__name__)

ItemPredicate = Callable[[ItemRecord, Character], bool]

PARTITIONS = ("inventory", "spellbook", "features")


def _activation_is(action_type: str) -> ItemPredicate:
    def _check(item: ItemRecord, owner: Character) -> bool:
        return item.get("activation.type") == action_type

    return _check


def _is_prepared(item: ItemRecord, owner: Character) -> bool:
    """주문 외 아이템, 캔트립, always/innate, NPC는 항상 통과."""
    if item.kind is not ItemKind.SPELL:
        return True
    if item.get("level") == 0 or item.get("preparation.mode") in ("innate", "always"):
        return True
    if owner.is_npc:
        return True
    return bool(item.get("preparation.prepared"))


def _has_charges(item: ItemRecord, owner: Character) -> bool:
    """사용 횟수 0 숨김. 카운터가 없으면 통과."""
    max_uses = item.get("uses.max")
    if not max_uses:
        return True
    return (item.get("uses.value") or 0) > 0


ITEM_FILTERS: dict[str, ItemPredicate] = {
    "action": _activation_is("action"),
    "bonus": _activation_is("bonus"),
    "reaction": _activation_is("reaction"),
    "ritual": lambda item, owner: item.get("components.ritual") is True,
    "concentration": lambda item, owner: item.get("components.concentration") is True,
    "prepared": _is_prepared,
    "equipped": lambda item, owner: item.get("equipped") is True,
    "charged": _has_charges,
}


def filter_items(
    items: list[ItemRecord],
    active: Iterable[str],
    owner: Character,
) -> list[ItemRecord]:
    """활성 필터 전부 통과한 아이템만. 순서 유지."""
    predicates: list[ItemPredicate] = []
    for name in active:
        predicate = ITEM_FILTERS.get(name)
        if predicate is None:
            logger.warning("Unknown item filter ignored: %s", name)
            continue
        predicates.append(predicate)

    if not predicates:
        return list(items)
    return [i for i in items if all(p(i, owner) for p in predicates)]


def normalize_filters(filters: Mapping[str, Iterable[str]] | None) -> dict[str, set[str]]:
    """파티션별 필터 집합. 알 수 없는 파티션은 무시."""
    result: dict[str, set[str]] = {name: set() for name in PARTITIONS}
    if not filters:
        return result
    for partition, names in filters.items():
        if partition not in result:
            logger.warning("Unknown filter partition ignored: %s", partition)
            continue
        result[partition] = set(names)
    return result
