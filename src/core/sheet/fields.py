"""필드 선언 + 정리(clean) / 검증

Capability Fragment를 구성하는 최소 단위.
clean()은 절대 예외를 던지지 않는다. 잘못된 값은 선언된 기본값으로 대체하고
Diagnostic으로 보고한다.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Optional


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    FORMULA = "formula"
    MAPPING = "mapping"  # {key: bool}
    ARRAY = "array"
    SCHEMA = "schema"  # 중첩 필드


@dataclass(frozen=True)
class FieldSpec:
    """필드 선언 (불변)"""

    type: FieldType
    required: bool = True
    initial: Any = None
    nullable: bool = True

    # 숫자 검증
    min: Optional[float] = None
    max: Optional[float] = None
    integer: bool = False
    step: Optional[float] = None

    # 문자열 검증
    blank: bool = True

    # SCHEMA 전용
    fields: Mapping[str, "FieldSpec"] = field(
        default_factory=lambda: MappingProxyType({})
    )

    label: str = ""

    def default(self) -> Any:
        """초기값 사본. mutable 기본값 공유 방지."""
        if self.type is FieldType.SCHEMA:
            return {name: spec.default() for name, spec in self.fields.items()}
        if self.initial is None:
            if self.type is FieldType.BOOLEAN:
                return False
            if self.type is FieldType.MAPPING:
                return {}
            if self.type is FieldType.ARRAY:
                return []
            if self.type in (FieldType.STRING, FieldType.FORMULA) and not self.nullable:
                return ""
        return copy.deepcopy(self.initial)


# 편의 생성자: fragments/templates 선언 가독성용


def string(
    initial: Any = "", *, blank: bool = True, nullable: bool = False, label: str = "", **kw: Any
) -> FieldSpec:
    return FieldSpec(
        FieldType.STRING, initial=initial, blank=blank, nullable=nullable, label=label, **kw
    )


def number(initial: Any = None, *, label: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldType.NUMBER, initial=initial, label=label, **kw)


def boolean(initial: bool = False, *, label: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldType.BOOLEAN, initial=initial, nullable=False, label=label, **kw)


def formula(initial: str = "", *, label: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldType.FORMULA, initial=initial, nullable=False, label=label, **kw)


def mapping(initial: Optional[dict[str, bool]] = None, *, label: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldType.MAPPING, initial=dict(initial or {}), label=label, **kw)


def array(*, label: str = "", **kw: Any) -> FieldSpec:
    return FieldSpec(FieldType.ARRAY, initial=[], label=label, **kw)


def schema(label: str = "", **fields: FieldSpec) -> FieldSpec:
    return FieldSpec(
        FieldType.SCHEMA, initial=None, fields=MappingProxyType(dict(fields)), label=label
    )


# ── Diagnostics ──────────────────────────────────────────────


@dataclass(frozen=True)
class Diagnostic:
    """필드 단위 검증 결과"""

    path: str  # "armor.dex"
    message: str
    value: Any = None


class _Invalid(Exception):
    """clean 내부 전용. 외부로 나가지 않는다."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def is_finite_number(value: Any) -> bool:
    """bool 제외 유한 숫자 여부"""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _clean_number(spec: FieldSpec, value: Any) -> Any:
    if value is None:
        if spec.nullable:
            return None
        raise _Invalid("may not be null")
    if not is_finite_number(value):
        raise _Invalid("must be a finite number")
    if spec.integer:
        if value != int(value):
            raise _Invalid("must be an integer")
        value = int(value)
    elif isinstance(value, float) and value.is_integer():
        value = int(value)
    if spec.min is not None and value < spec.min:
        raise _Invalid(f"must be at least {spec.min}")
    if spec.max is not None and value > spec.max:
        raise _Invalid(f"must be at most {spec.max}")
    if spec.step is not None:
        base = spec.min or 0
        steps = (value - base) / spec.step
        if not math.isclose(steps, round(steps), abs_tol=1e-9):
            raise _Invalid(f"must be a multiple of {spec.step}")
    return value


def _clean_string(spec: FieldSpec, value: Any) -> Any:
    if value is None:
        if spec.nullable:
            return None
        raise _Invalid("may not be null")
    if is_finite_number(value):
        value = str(value)
    if not isinstance(value, str):
        raise _Invalid("must be a string")
    if not spec.blank and not value.strip():
        raise _Invalid("may not be blank")
    return value


def _clean_value(spec: FieldSpec, value: Any, path: str, out: list[Diagnostic]) -> Any:
    if spec.type is FieldType.SCHEMA:
        if value is None or not isinstance(value, Mapping):
            if value is not None:
                out.append(Diagnostic(path, "must be an object", value))
            return spec.default()
        return _clean_fields(spec.fields, value, path, out)

    try:
        if spec.type is FieldType.NUMBER:
            return _clean_number(spec, value)
        if spec.type in (FieldType.STRING, FieldType.FORMULA):
            return _clean_string(spec, value)
        if spec.type is FieldType.BOOLEAN:
            if isinstance(value, bool):
                return value
            if value is None:
                return spec.default()
            raise _Invalid("must be a boolean")
        if spec.type is FieldType.MAPPING:
            if not isinstance(value, Mapping):
                raise _Invalid("must be a mapping of booleans")
            cleaned: dict[str, bool] = {}
            for key, flag in value.items():
                if isinstance(flag, bool):
                    cleaned[str(key)] = flag
                else:
                    out.append(Diagnostic(f"{path}.{key}", "must be a boolean", flag))
            return cleaned
        if spec.type is FieldType.ARRAY:
            if not isinstance(value, (list, tuple)):
                raise _Invalid("must be a list")
            return copy.deepcopy(list(value))
    except _Invalid as e:
        out.append(Diagnostic(path, e.message, value))
        return spec.default()
    return spec.default()


def _clean_fields(
    field_map: Mapping[str, FieldSpec],
    data: Mapping[str, Any],
    prefix: str,
    out: list[Diagnostic],
) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for name, spec in field_map.items():
        path = f"{prefix}.{name}" if prefix else name
        if name not in data:
            result[name] = spec.default()
            continue
        result[name] = _clean_value(spec, data[name], path, out)
    return result


def clean(
    field_map: Mapping[str, FieldSpec], data: Any
) -> tuple[dict[str, Any], list[Diagnostic]]:
    """FieldMap 기준으로 data 정리.

    - 선언되지 않은 키는 버린다
    - 누락 필드는 기본값
    - 잘못된 값은 기본값 + Diagnostic
    Returns: (정리된 dict, diagnostics)
    """
    diagnostics: list[Diagnostic] = []
    if not isinstance(data, Mapping):
        data = {}
    return _clean_fields(field_map, data, "", diagnostics), diagnostics


def validate(field_map: Mapping[str, FieldSpec], data: Any) -> list[Diagnostic]:
    """정리 없이 검증 결과만 반환."""
    _, diagnostics = clean(field_map, data)
    return diagnostics
