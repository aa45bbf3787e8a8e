"""캐릭터 자원 — 추가/삭제 + 아이템 연동(override) 잠금

자원이 아이템의 사용 횟수 카운터에 연결되면, 같은 값을 두 경로로
수정하지 않도록 자원 쪽(value 제외)과 아이템 쪽 입력을 잠근다.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from . import fields as f
from .fields import Diagnostic, FieldSpec, clean
from .models import Character, ItemRecord, Resource, RuleViolation
from .proficiency import has_limited_uses
from .rules import DEFAULT_RULES, RuleConfig
from .templates import TemplateRegistry

logger = logging.getLogger(__name__)

# 자원 편집 필드 (value 외에는 연동 시 잠금)
RESOURCE_FIELDS = ("label", "short_rest", "long_rest", "value", "max")

# 자원 편집 필드 선언 (update 입력 검증용)
RESOURCE_FIELD_MAP: dict[str, FieldSpec] = {
    "label": f.string(label="Label"),
    "short_rest": f.boolean(label="Short Rest"),
    "long_rest": f.boolean(label="Long Rest"),
    "value": f.number(0, nullable=False, min=0, label="Value"),
    "max": f.number(0, nullable=False, min=0, label="Max"),
}

# 연동된 아이템 쪽 잠금 필드
ITEM_LOCKED_FIELDS = frozenset({"quantity", "uses.value", "uses.max"})


@dataclass
class ResourceView:
    """표시용 자원"""

    resource_id: str
    label: str
    placeholder: str
    short_rest: bool
    long_rest: bool
    value: Optional[float]  # 0은 빈 칸으로 표시
    max: Optional[float]
    builtin: bool
    linked_item_id: Optional[str] = None
    locked_fields: frozenset[str] = frozenset()
    hidden_fields: frozenset[str] = frozenset()  # "separator", "max"

    @property
    def deletable(self) -> bool:
        return not self.builtin


@dataclass
class ResourceLinkage:
    """build_resource_views 결과"""

    resources: list[ResourceView] = field(default_factory=list)
    item_locks: dict[str, frozenset[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def new_resource_id() -> str:
    return uuid.uuid4().hex[:16]


def add_resource(
    resources: Mapping[str, Resource],
    resource: Optional[Resource] = None,
) -> dict[str, Resource]:
    """자원 추가. 새 매핑 반환 (입력은 변경하지 않음).
    resource 미지정 시 빈 자원 생성.
    """
    if resource is None:
        resource = Resource(resource_id=new_resource_id())
    if resource.resource_id in resources:
        raise RuleViolation(
            "duplicate_resource", f"Resource already exists: {resource.resource_id}"
        )
    updated = dict(resources)
    updated[resource.resource_id] = resource
    return updated


def remove_resource(
    resources: Mapping[str, Resource],
    resource_id: str,
    rules: RuleConfig = DEFAULT_RULES,
) -> dict[str, Resource]:
    """사용자 추가 자원만 삭제 가능. 기본 자원은 RuleViolation."""
    if resource_id in rules.resource_options:
        raise RuleViolation(
            "builtin_resource", f"Built-in resource cannot be removed: {resource_id}"
        )
    if resource_id not in resources:
        raise RuleViolation("unknown_resource", f"Resource not found: {resource_id}")
    return {k: v for k, v in resources.items() if k != resource_id}


def resource_overrides(
    character: Character,
    items: list[ItemRecord],
    rules: RuleConfig = DEFAULT_RULES,
) -> dict[str, str]:
    """{resource_id: item_id}. 자원 쪽 linked_item_id 우선, 아이템의 resourceLink 보조."""
    overrides: dict[str, str] = {}
    for item in items:
        link = item.get("resourceLink")
        if link and (link in character.resources or link in rules.resource_options):
            overrides.setdefault(link, item.item_id)
    for resource_id, resource in character.resources.items():
        if resource.linked_item_id:
            overrides[resource_id] = resource.linked_item_id
    return overrides


def _blank_zero(value: float) -> Optional[float]:
    return None if not value else value


def build_resource_views(
    character: Character,
    items: list[ItemRecord],
    registry: TemplateRegistry,
    rules: RuleConfig = DEFAULT_RULES,
) -> ResourceLinkage:
    """기본 자원(선언 순서) → 사용자 자원(추가 순서) 표시 목록 + 잠금 정보."""
    result = ResourceLinkage()
    by_id = {i.item_id: i for i in items}
    overrides = resource_overrides(character, items, rules)

    ordered: list[tuple[str, Resource, bool]] = []
    for resource_id in rules.resource_options:
        resource = character.resources.get(resource_id) or Resource(resource_id=resource_id)
        ordered.append((resource_id, resource, True))
    for resource_id, resource in character.resources.items():
        if resource_id not in rules.resource_options:
            ordered.append((resource_id, resource, False))

    for resource_id, resource, builtin in ordered:
        view = ResourceView(
            resource_id=resource_id,
            label=resource.label,
            placeholder=rules.resource_options.get(resource_id, "Resource"),
            short_rest=resource.short_rest,
            long_rest=resource.long_rest,
            value=_blank_zero(resource.value),
            max=_blank_zero(resource.max),
            builtin=builtin,
        )

        item_id = overrides.get(resource_id)
        if item_id is not None:
            item = by_id.get(item_id)
            if item is None:
                message = f"Resource '{resource_id}' is linked to missing item {item_id}"
                logger.warning(message)
                result.warnings.append(message)
            else:
                _apply_link(view, item, registry)
                result.item_locks[item.item_id] = ITEM_LOCKED_FIELDS

        result.resources.append(view)
    return result


def _apply_link(view: ResourceView, item: ItemRecord, registry: TemplateRegistry) -> None:
    """연동 자원: value 외 전부 잠금, 값은 아이템 카운터를 따른다."""
    view.linked_item_id = item.item_id
    view.locked_fields = frozenset(name for name in RESOURCE_FIELDS if name != "value")
    if has_limited_uses(item, registry):
        view.value = item.get("uses.value")
        view.max = item.get("uses.max")
    elif linked_counter(item, registry) == "quantity":
        view.value = item.get("quantity")
        view.max = None
        view.hidden_fields = frozenset({"separator", "max"})


def linked_counter(item: ItemRecord, registry: TemplateRegistry) -> Optional[str]:
    """연동 자원 value가 기록될 아이템 필드. 카운터가 없으면 None (자원 자체 값 사용)."""
    if has_limited_uses(item, registry):
        return "uses.value"
    template = registry.get(item.kind)
    if template is not None and template.has_quantity:
        return "quantity"
    return None


def clean_resource_changes(
    changes: Mapping[str, Any],
) -> tuple[dict[str, Any], list[Diagnostic]]:
    """자원 변경 입력 정리. 잘못된 값은 Diagnostic으로 보고된다.

    Raises:
        ValueError: 편집할 수 없는 필드 이름
    """
    unknown = [k for k in changes if k not in RESOURCE_FIELD_MAP]
    if unknown:
        raise ValueError(f"Unknown resource fields: {', '.join(unknown)}")
    return clean({k: RESOURCE_FIELD_MAP[k] for k in changes}, changes)
