"""Migration Pipeline — 구버전 아이템 데이터 → 현재 스키마

순수 / 전역 / 동기 / 멱등. 어떤 입력에도 예외를 던지지 않는다.
실행 순서: 공통 규칙 → Kind 규칙 (선언 순서) → 스키마 정리(clean)
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .fields import Diagnostic, clean, validate as validate_fields
from .models import ItemKind
from .templates import TemplateRegistry

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass(frozen=True)
class MigrationRule:
    """필드 하나에 대한 순수 변환. 필드가 없으면 건너뛴다."""

    name: str
    path: str  # "armor.dex"
    transform: Callable[[Any], Any]


@dataclass
class MigrationResult:
    record: dict[str, Any]
    diagnostics: list[Diagnostic] = field(default_factory=list)


# ── 변환 함수 ────────────────────────────────────────────────


def coerce_numeric(value: Any) -> Any:
    """숫자형 문자열 → 숫자. 빈 문자열 → None. 그 외 그대로."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text == "":
        return None
    try:
        number = float(text)
    except ValueError:
        return value
    if not math.isfinite(number):
        return value
    return int(number) if number.is_integer() else number


def first_of_array(value: Any) -> Any:
    """배열 → 첫 원소. 빈 배열 → None."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def bool_to_number(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


def rename_value(old: Any, new: Any) -> Callable[[Any], Any]:
    def _rename(value: Any) -> Any:
        return new if value == old else value

    return _rename


def default_if_null(default: Any) -> Callable[[Any], Any]:
    def _default(value: Any) -> Any:
        return default if value is None else value

    return _default


def strip_non_boolean(value: Any) -> Any:
    """불리언 매핑에서 bool이 아닌 잔여 값 제거."""
    if not isinstance(value, Mapping):
        return value
    return {key: flag for key, flag in value.items() if isinstance(flag, bool)}


def empty_object_if_null(value: Any) -> Any:
    return {} if value is None else value


# ── 규칙 선언 ────────────────────────────────────────────────

GENERIC_RULES: tuple[MigrationRule, ...] = (
    MigrationRule("collapse_ability_array", "ability", first_of_array),
    MigrationRule("proficient_bool_to_number", "proficient", bool_to_number),
    MigrationRule("uses_value_numeric", "uses.value", coerce_numeric),
    MigrationRule("uses_max_numeric", "uses.max", coerce_numeric),
    MigrationRule("quantity_numeric", "quantity", coerce_numeric),
    MigrationRule("weight_numeric", "weight", coerce_numeric),
)

KIND_RULES: dict[ItemKind, tuple[MigrationRule, ...]] = {
    ItemKind.WEAPON: (
        MigrationRule("strip_property_residue", "properties", strip_non_boolean),
        MigrationRule("weapon_type_default", "weaponType", default_if_null("simpleM")),
    ),
    ItemKind.EQUIPMENT: (
        MigrationRule("armor_object", "armor", empty_object_if_null),
        MigrationRule("armor_bonus_to_trinket", "armor.type", rename_value("bonus", "trinket")),
        MigrationRule("armor_dex_numeric", "armor.dex", coerce_numeric),
        MigrationRule("strength_numeric", "strength", coerce_numeric),
    ),
    ItemKind.CLASS: (
        MigrationRule("levels_numeric", "levels", coerce_numeric),
    ),
    ItemKind.SPELL: (
        MigrationRule("spell_level_numeric", "level", coerce_numeric),
    ),
}


def _get(data: dict[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set(data: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        current = current[part]
    current[parts[-1]] = value


def apply_rules(data: dict[str, Any], rules: tuple[MigrationRule, ...]) -> None:
    """규칙 순차 적용 (data 사본에 대해 in-place)."""
    for rule in rules:
        value = _get(data, rule.path)
        if value is _MISSING:
            continue
        try:
            _set(data, rule.path, rule.transform(value))
        except Exception:
            # 변환 실패는 clean 단계에서 기본값으로 정리된다
            logger.debug("Migration rule %s skipped for value %r", rule.name, value)


class MigrationPipeline:
    """Kind별 마이그레이션 실행기"""

    def __init__(
        self,
        registry: TemplateRegistry,
        generic_rules: tuple[MigrationRule, ...] = GENERIC_RULES,
        kind_rules: Optional[dict[ItemKind, tuple[MigrationRule, ...]]] = None,
    ) -> None:
        self._registry = registry
        self._generic_rules = generic_rules
        self._kind_rules = KIND_RULES if kind_rules is None else kind_rules

    def run(self, kind: ItemKind, raw: Any) -> MigrationResult:
        """마이그레이션 + diagnostics. 원본 raw는 변경하지 않는다."""
        fields = self._registry.fields_for(kind)
        data: dict[str, Any] = (
            copy.deepcopy(dict(raw)) if isinstance(raw, Mapping) else {}
        )

        # 공통 규칙은 이 Kind가 선언한 필드에만
        generic = tuple(
            r for r in self._generic_rules if r.path.split(".")[0] in fields
        )
        apply_rules(data, generic)
        apply_rules(data, self._kind_rules.get(kind, ()))

        record, diagnostics = clean(fields, data)
        for diag in diagnostics:
            logger.debug(
                "Reset %s.%s to default (%s)", kind.value, diag.path, diag.message
            )
        return MigrationResult(record=record, diagnostics=diagnostics)

    def migrate(self, kind: ItemKind, raw: Any) -> dict[str, Any]:
        """정규화된 system 데이터 반환."""
        return self.run(kind, raw).record

    def validate(self, kind: ItemKind, record: Any) -> list[Diagnostic]:
        """변경 없이 스키마 위반만 보고."""
        return validate_fields(self._registry.fields_for(kind), record)
