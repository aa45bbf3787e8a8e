"""클래스 레벨 변경 / 아이템 드롭 검증 + Advancement Workflow 계약

Core는 변경을 "제안"만 한다. 외부 워크플로우가 확인/취소하며,
취소는 에러가 아닌 정상적인 no-op 결과다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Protocol, Union

from .models import Character, ItemKind, ItemRecord, RuleViolation
from .rules import DEFAULT_RULES, RuleConfig
from .text import slugify

logger = logging.getLogger(__name__)


class WorkflowCancelled(Exception):
    """외부 워크플로우 취소. 호출자는 아무것도 적용하지 않는다."""


@dataclass(frozen=True)
class LevelChange:
    """클래스 레벨 변경 제안"""

    character_id: str
    class_item_id: str
    current_level: int
    delta: int

    @property
    def new_level(self) -> int:
        return self.current_level + self.delta

    @property
    def is_level_down(self) -> bool:
        return self.delta < 0


class AdvancementWorkflow(Protocol):
    """빌드 선택 단계를 처리하는 외부 협력자"""

    def steps_for(self, character: Character, change: LevelChange) -> list[str]:
        """필요한 선택 단계 목록. 비어 있으면 바로 적용."""
        ...

    def confirm_level_down(self, character: Character, change: LevelChange) -> bool:
        """레벨 다운 확인.
        True: 워크플로우로 advancement 제거, False: 단순 레벨 갱신,
        WorkflowCancelled: 아무것도 하지 않음.
        """
        ...

    def run(self, character: Character, change: LevelChange, steps: list[str]) -> bool:
        """단계 실행. 완료 True, 취소 False."""
        ...


class NullAdvancementWorkflow:
    """단계 없음. 항상 바로 적용"""

    def steps_for(self, character: Character, change: LevelChange) -> list[str]:
        return []

    def confirm_level_down(self, character: Character, change: LevelChange) -> bool:
        return False

    def run(self, character: Character, change: LevelChange, steps: list[str]) -> bool:
        return True


def class_identifier(item: ItemRecord) -> str:
    """명시 identifier, 없으면 이름 slug."""
    return item.get("identifier") or slugify(item.name, strict=True)


def _current_levels(item: ItemRecord) -> int:
    levels = item.get("levels", 0)
    if isinstance(levels, bool) or not isinstance(levels, (int, float)):
        return 0
    return int(levels)


def plan_level_change(
    character: Character,
    class_item_id: str,
    delta: int,
    rules: RuleConfig = DEFAULT_RULES,
) -> LevelChange:
    """레벨 변경 검증. 위반 시 RuleViolation (상태 변경 없음)."""
    if not delta:
        raise RuleViolation("zero_delta", "Level change must be non-zero")

    cls = character.get_item(class_item_id)
    if cls is None or cls.kind is not ItemKind.CLASS:
        raise RuleViolation("unknown_class", f"Class item not found: {class_item_id}")

    current = _current_levels(cls)
    if current + delta < 1:
        raise RuleViolation(
            "min_level", f"Class level cannot drop below 1 (current {current}, delta {delta})"
        )
    if character.level + delta > rules.max_level:
        raise RuleViolation(
            "max_level_exceeded",
            f"Character level cannot exceed {rules.max_level}",
        )
    return LevelChange(
        character_id=character.character_id,
        class_item_id=class_item_id,
        current_level=current,
        delta=delta,
    )


def plan_item_drop(
    character: Character,
    item: ItemRecord,
    rules: RuleConfig = DEFAULT_RULES,
) -> Union[ItemRecord, LevelChange]:
    """드롭된 아이템 검증.

    class: 남은 레벨 예산으로 levels 제한 (0 이하면 거부).
           같은 identifier 클래스가 있으면 새 아이템 대신 LevelChange 반환.
    subclass: 같은 identifier 중복, 이미 서브클래스를 가진 클래스 → 거부.
    Returns: 생성할 ItemRecord (사본) 또는 LevelChange
    """
    if item.kind is ItemKind.CLASS:
        remaining = rules.max_level - character.level
        levels = min(_current_levels(item), remaining)
        if levels <= 0:
            raise RuleViolation(
                "max_level_exceeded",
                f"Character level cannot exceed {rules.max_level}",
            )
        identifier = class_identifier(item)
        existing = _find_class(character, identifier)
        if existing is not None:
            return plan_level_change(character, existing.item_id, levels, rules)
        return replace(item, system={**item.system, "levels": levels})

    if item.kind is ItemKind.SUBCLASS:
        identifier = item.get("identifier") or slugify(item.name, strict=True)
        for other in character.items_of(ItemKind.SUBCLASS):
            if (other.get("identifier") or slugify(other.name, strict=True)) == identifier:
                raise RuleViolation(
                    "duplicate_subclass",
                    f"A subclass with identifier '{identifier}' already exists",
                )
        cls = _find_class(character, item.get("classIdentifier"))
        if cls is not None:
            held = subclass_of(character, cls)
            if held is not None:
                raise RuleViolation(
                    "class_has_subclass",
                    f"Class {cls.name} already has subclass {held.name}",
                )
    return item


def _find_class(character: Character, identifier: Optional[str]) -> Optional[ItemRecord]:
    if not identifier:
        return None
    for cls in character.items_of(ItemKind.CLASS):
        if class_identifier(cls) == identifier:
            return cls
    return None


def subclass_of(character: Character, cls: ItemRecord) -> Optional[ItemRecord]:
    identifier = class_identifier(cls)
    for sub in character.items_of(ItemKind.SUBCLASS):
        if sub.get("classIdentifier") == identifier:
            return sub
    return None


def resolve_level_change(
    character: Character,
    change: LevelChange,
    workflow: AdvancementWorkflow,
    advancements_enabled: bool = True,
) -> bool:
    """워크플로우에 제어를 넘기고 적용 여부를 돌려받는다.

    True: 레벨 갱신 적용, False: 취소 (no-op)
    """
    if not advancements_enabled:
        return True

    steps = workflow.steps_for(character, change)
    if not steps:
        return True

    if not change.is_level_down:
        return workflow.run(character, change, steps)

    try:
        remove_advancements = workflow.confirm_level_down(character, change)
    except WorkflowCancelled:
        logger.info("Level-down of %s cancelled", change.class_item_id)
        return False
    if remove_advancements:
        return workflow.run(character, change, steps)
    return True
