"""Character Aggregation Pipeline — 캐릭터 아이템 → 시트 View

prepare()는 입력 스냅샷에 대한 순수 재계산이다. 호출 간 상태를 갖지 않는다.

처리 순서:
1. 마이그레이션 (멱등) + 아이템별 파생값 (숙련, 표시 속성, 무게)
2. 파티션 (kind → bucket)
3. 필터 (inventory / spellbook / features 각각 AND)
4. 클래스 정렬 + 서브클래스 짝짓기 (교차 아이템, 단일 순차 패스)
5. 레벨 선택지
6. 특성 active / passive 분리
7. 주문서 (레벨별) + 준비된 주문 수
8. 자원 View + 연동 잠금
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from .advancement import class_identifier
from .fields import Diagnostic, is_finite_number
from .filters import filter_items, normalize_filters
from .migration import MigrationPipeline
from .models import Character, ItemKind, ItemRecord
from .proficiency import (
    ability_mod,
    chat_properties,
    has_limited_uses,
    owner_of,
    proficiency_multiplier,
)
from .resources import ResourceView, build_resource_views
from .rules import DEFAULT_RULES, RuleConfig
from .templates import TemplateRegistry, default_registry

logger = logging.getLogger(__name__)

INVENTORY_KINDS = (
    ItemKind.WEAPON,
    ItemKind.EQUIPMENT,
    ItemKind.CONSUMABLE,
    ItemKind.TOOL,
    ItemKind.CONTAINER,
    ItemKind.LOOT,
)

# kind → 파티션. 표에 없는 kind는 어떤 bucket에도 들어가지 않는다.
KIND_PARTITIONS: dict[ItemKind, str] = {
    **{kind: "inventory" for kind in INVENTORY_KINDS},
    ItemKind.SPELL: "spellbook",
    ItemKind.FEAT: "features",
    ItemKind.BACKGROUND: "backgrounds",
    ItemKind.CLASS: "classes",
    ItemKind.SUBCLASS: "subclasses",
}

ATTUNEMENT = {1: "required", 2: "attuned"}


# ── View 타입 ────────────────────────────────────────────────


@dataclass(frozen=True)
class LevelOption:
    level: int
    delta: int
    disabled: bool


@dataclass
class ItemContext:
    """아이템별 표시 컨텍스트"""

    item_id: str
    proficiency: float = 0
    chat_properties: list[str] = field(default_factory=list)
    ability_mod: Optional[str] = None

    is_stack: bool = False
    has_uses: bool = False
    has_limited_uses: bool = False
    is_on_cooldown: bool = False
    is_depleted: bool = False
    has_target: bool = False
    attunement: Optional[str] = None

    toggle_class: str = ""
    toggle_title: str = ""
    can_toggle: bool = False

    total_weight: Optional[float] = None
    available_levels: list[LevelOption] = field(default_factory=list)
    locked_fields: frozenset[str] = frozenset()


@dataclass
class Bucket:
    key: str
    label: str
    items: list[ItemRecord] = field(default_factory=list)
    dataset: dict[str, str] = field(default_factory=dict)
    has_actions: bool = False
    is_class: bool = False


@dataclass
class SpellbookSection:
    level: int
    label: str
    spells: list[ItemRecord] = field(default_factory=list)


@dataclass(frozen=True)
class SheetWarning:
    message: str
    type: str = "warning"


@dataclass
class SheetView:
    """표시 계층이 소비하는 구조화된 시트"""

    character_id: str
    level: int
    inventory: list[Bucket] = field(default_factory=list)
    spellbook: list[SpellbookSection] = field(default_factory=list)
    prepared_spells: int = 0
    features: list[Bucket] = field(default_factory=list)
    resources: list[ResourceView] = field(default_factory=list)
    item_context: dict[str, ItemContext] = field(default_factory=dict)
    warnings: list[SheetWarning] = field(default_factory=list)
    diagnostics: dict[str, list[Diagnostic]] = field(default_factory=dict)
    labels: dict[str, Optional[str]] = field(default_factory=dict)
    weight_unit: str = "lbs"
    disable_experience: bool = False

    def inventory_bucket(self, kind: ItemKind) -> Optional[Bucket]:
        return next((b for b in self.inventory if b.key == kind.value), None)

    def feature_bucket(self, key: str) -> Optional[Bucket]:
        return next((b for b in self.features if b.key == key), None)


# ── 헬퍼 ─────────────────────────────────────────────────────


def to_nearest(value: float, interval: str = "0.1") -> float:
    """가장 가까운 interval 단위로 반올림 (half-up)."""
    step = Decimal(interval)
    quotient = (Decimal(str(value)) / step).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return float(quotient * step)


def total_weight(item: ItemRecord) -> Optional[float]:
    """quantity × weight, 0.1 단위. 저장된 weight는 변경하지 않는다."""
    quantity = item.get("quantity")
    weight = item.get("weight")
    if not (is_finite_number(quantity) and is_finite_number(weight)):
        return None
    return to_nearest(quantity * weight)


def level_options(current: int, character_level: int, max_level: int) -> list[LevelOption]:
    """1..max_level 선택지. delta가 남은 레벨 예산을 넘으면 disabled."""
    max_delta = max_level - character_level
    options = []
    for level in range(1, max_level + 1):
        delta = level - current
        options.append(LevelOption(level=level, delta=delta, disabled=delta > max_delta))
    return options


def _int_levels(item: ItemRecord) -> int:
    levels = item.get("levels", 0)
    return int(levels) if is_finite_number(levels) else 0


class CharacterSheetPipeline:
    """migrate → resolve → aggregate"""

    def __init__(
        self,
        registry: Optional[TemplateRegistry] = None,
        rules: RuleConfig = DEFAULT_RULES,
        migrations: Optional[MigrationPipeline] = None,
        partitions: Optional[Mapping[ItemKind, str]] = None,
    ) -> None:
        self._registry = registry or default_registry()
        self._rules = rules
        self._migrations = migrations or MigrationPipeline(self._registry)
        self._partitions = dict(KIND_PARTITIONS if partitions is None else partitions)
        misplaced = [
            kind.value
            for kind, key in self._partitions.items()
            if key == "inventory" and kind not in INVENTORY_KINDS
        ]
        if misplaced:
            raise ValueError(f"Kinds without an inventory bucket: {', '.join(misplaced)}")

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    @property
    def rules(self) -> RuleConfig:
        return self._rules

    # === 1. 마이그레이션 + 아이템별 파생값 ===

    def _migrate_items(
        self, items: Iterable[ItemRecord], view: SheetView
    ) -> list[ItemRecord]:
        migrated: list[ItemRecord] = []
        for item in sorted(items, key=lambda i: i.sort):
            if self._registry.get(item.kind) is None:
                logger.warning("No template for item kind %s (%s)", item.kind, item.item_id)
                continue
            result = self._migrations.run(item.kind, item.system)
            if result.diagnostics:
                view.diagnostics[item.item_id] = result.diagnostics
            migrated.append(replace(item, system=result.record))
        return migrated

    def _item_context(self, item: ItemRecord, character: Character) -> ItemContext:
        template = self._registry.get(item.kind)
        owner = owner_of(item, {character.character_id: character})
        ctx = ItemContext(
            item_id=item.item_id,
            proficiency=proficiency_multiplier(item, owner, self._rules),
            chat_properties=chat_properties(item, self._registry, self._rules),
            ability_mod=ability_mod(item, owner),
        )

        quantity = item.get("quantity")
        ctx.is_stack = is_finite_number(quantity) and quantity != 1
        max_uses = item.get("uses.max")
        ctx.has_uses = is_finite_number(max_uses) and max_uses > 0
        ctx.has_limited_uses = has_limited_uses(item, self._registry)
        ctx.is_on_cooldown = bool(item.get("recharge.value")) and item.get("recharge.charged") is False
        ctx.is_depleted = ctx.is_on_cooldown and bool(item.get("uses.per")) and (item.get("uses.value") or 0) > 0
        ctx.has_target = item.get("target.type") not in (None, "", "none")
        ctx.attunement = ATTUNEMENT.get(item.get("attunement"))

        if item.kind is ItemKind.SPELL:
            mode = item.get("preparation.mode")
            prepared = bool(item.get("preparation.prepared"))
            ctx.can_toggle = mode == "prepared"
            if mode == "always":
                ctx.toggle_class = "fixed"
                ctx.toggle_title = self._rules.spell_preparation_modes.get("always", "")
            elif prepared:
                ctx.toggle_class = "active"
                ctx.toggle_title = self._rules.spell_preparation_modes.get("prepared", "")
            else:
                ctx.toggle_title = "Unprepared"
        else:
            equipped = bool(item.get("equipped"))
            ctx.toggle_class = "active" if equipped else ""
            ctx.toggle_title = "Equipped" if equipped else "Unequipped"
            ctx.can_toggle = template is not None and template.equippable

        if template is not None and template.has_quantity:
            ctx.total_weight = total_weight(item)
        return ctx

    # === 2. 파티션 ===

    def _partition(self, items: list[ItemRecord]) -> dict[str, list[ItemRecord]]:
        parts: dict[str, list[ItemRecord]] = {
            key: [] for key in ("inventory", "spellbook", "features", "backgrounds", "classes", "subclasses")
        }
        for item in items:
            key = self._partitions.get(item.kind)
            if key is None:
                continue
            parts.setdefault(key, []).append(item)
        return parts

    # === 4. 클래스 / 서브클래스 ===

    def _pair_classes(
        self,
        classes: list[ItemRecord],
        subclasses: list[ItemRecord],
        feats: list[ItemRecord],
        view: SheetView,
    ) -> tuple[list[ItemRecord], dict[str, ItemRecord]]:
        """레벨 내림차순 클래스 뒤에 짝 서브클래스를 끼워 넣는다.
        짝이 없는 서브클래스는 feats로 보내고 경고.
        Returns: (정렬된 목록, {class_item_id: subclass})
        """
        remaining = list(subclasses)
        ordered: list[ItemRecord] = []
        paired: dict[str, ItemRecord] = {}
        for cls in sorted(classes, key=_int_levels, reverse=True):
            ordered.append(cls)
            identifier = class_identifier(cls)
            match = next(
                (s for s in remaining if s.get("classIdentifier") == identifier), None
            )
            if match is not None:
                remaining.remove(match)
                ordered.append(match)
                paired[cls.item_id] = match

        for subclass in remaining:
            feats.append(subclass)
            parent = subclass.get("classIdentifier")
            message = (
                f"Subclass {subclass.name} has no matching class with identifier '{parent}'"
            )
            logger.warning(message)
            view.warnings.append(SheetWarning(message))
        return ordered, paired

    # === 7. 주문서 ===

    def _spellbook(self, spells: list[ItemRecord]) -> list[SpellbookSection]:
        sections: dict[int, SpellbookSection] = {}
        for spell in spells:
            level = spell.get("level", 0)
            section = sections.get(level)
            if section is None:
                label = self._rules.spell_levels.get(level, f"Level {level}")
                section = sections[level] = SpellbookSection(level=level, label=label)
            section.spells.append(spell)
        return [sections[level] for level in sorted(sections)]

    @staticmethod
    def count_prepared(spells: list[ItemRecord]) -> int:
        """레벨 1 이상 + prepared 모드 + 준비됨 (always / at-will 제외)."""
        return sum(
            1
            for s in spells
            if (s.get("level") or 0) > 0
            and s.get("preparation.mode") == "prepared"
            and s.get("preparation.prepared") is True
        )

    # === 실행 ===

    def prepare(
        self,
        character: Character,
        items: Optional[Iterable[ItemRecord]] = None,
        filters: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> SheetView:
        """시트 View 생성. 입력 character / items는 변경하지 않는다."""
        view = SheetView(character_id=character.character_id, level=0)
        migrated = self._migrate_items(character.items if items is None else items, view)

        # 아이템별 작업: 교차 의존 없음
        for item in migrated:
            view.item_context[item.item_id] = self._item_context(item, character)

        parts = self._partition(migrated)
        active_filters = normalize_filters(filters)
        inventory = filter_items(parts["inventory"], active_filters["inventory"], character)
        spells = filter_items(parts["spellbook"], active_filters["spellbook"], character)
        feats = filter_items(parts["features"], active_filters["features"], character)

        # 인벤토리: kind별 bucket
        buckets = {
            kind: Bucket(
                key=kind.value,
                label=self._rules.item_type_plurals.get(kind.value, kind.value),
                dataset={"type": kind.value},
            )
            for kind in INVENTORY_KINDS
        }
        for item in inventory:
            buckets[item.kind].items.append(item)
        view.inventory = list(buckets.values())

        # 주문서
        view.spellbook = self._spellbook(spells)
        view.prepared_spells = self.count_prepared(spells)

        # 클래스
        classes = parts["classes"]
        view.level = sum(_int_levels(c) for c in classes)
        ordered_classes, paired = self._pair_classes(classes, parts["subclasses"], feats, view)
        for cls in classes:
            view.item_context[cls.item_id].available_levels = level_options(
                _int_levels(cls), view.level, self._rules.max_level
            )

        # 특성
        backgrounds = parts["backgrounds"]
        active = Bucket(
            key="active",
            label="Active",
            dataset={"type": "feat", "activation.type": "action"},
            has_actions=True,
        )
        passive = Bucket(key="passive", label="Passive", dataset={"type": "feat"})
        for feat in feats:
            if feat.get("activation.type"):
                active.items.append(feat)
            else:
                passive.items.append(feat)
        view.features = [
            Bucket(
                key="background",
                label=self._rules.item_type_labels.get("background", "Background"),
                items=backgrounds,
                dataset={"type": "background"},
            ),
            Bucket(
                key="classes",
                label=self._rules.item_type_plurals.get("class", "Classes"),
                items=ordered_classes,
                dataset={"type": "class"},
                is_class=True,
            ),
            active,
            passive,
        ]

        # 자원 + 연동 잠금
        linkage = build_resource_views(character, migrated, self._registry, self._rules)
        view.resources = linkage.resources
        view.warnings.extend(SheetWarning(w) for w in linkage.warnings)
        for item_id, locked in linkage.item_locks.items():
            ctx = view.item_context.get(item_id)
            if ctx is not None:
                ctx.locked_fields = ctx.locked_fields | locked

        # 요약 라벨
        by_level = sorted(classes, key=_int_levels, reverse=True)
        view.labels = {
            "classes": ", ".join(c.name for c in by_level),
            "multiclass": ", ".join(
                " ".join(
                    part
                    for part in (
                        paired[c.item_id].name if c.item_id in paired else "",
                        c.name,
                        str(_int_levels(c)),
                    )
                    if part
                )
                for c in by_level
            ),
            "background": backgrounds[0].name if backgrounds else None,
        }
        view.weight_unit = "kg" if character.display.metric_weight_units else "lbs"
        view.disable_experience = character.display.disable_experience
        return view


def prepare(
    character: Character,
    items: Optional[Iterable[ItemRecord]] = None,
    filters: Optional[Mapping[str, Iterable[str]]] = None,
    rules: RuleConfig = DEFAULT_RULES,
    registry: Optional[TemplateRegistry] = None,
) -> SheetView:
    """CharacterSheetPipeline 단발 실행."""
    return CharacterSheetPipeline(registry=registry, rules=rules).prepare(character, items, filters)
