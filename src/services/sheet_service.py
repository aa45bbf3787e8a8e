"""캐릭터 시트 Service — Core↔DB 연결, EventBus 통신

Core(src.core.sheet)는 DB를 모른다. 이 서비스가 ORM ↔ Core 변환,
규칙 검증 결과의 커밋, 이벤트 발행을 맡는다.

규칙 위반(RuleViolation)은 Outcome(applied=False)으로 돌려주고
상태를 건드리지 않는다. 존재하지 않는 캐릭터/아이템은 ValueError.
"""

import copy
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from src.core.event_bus import EventBus, SheetEvent
from src.core.event_types import EventTypes
from src.core.logging import get_logger
from src.core.sheet.advancement import (
    AdvancementWorkflow,
    LevelChange,
    NullAdvancementWorkflow,
    plan_item_drop,
    plan_level_change,
    resolve_level_change,
)
from src.core.sheet.aggregation import CharacterSheetPipeline, SheetView
from src.core.sheet.currency import convert_currency
from src.core.sheet.fields import Diagnostic
from src.core.sheet.migration import MigrationPipeline
from src.core.sheet.models import (
    ActorType,
    Character,
    DisplaySettings,
    ItemKind,
    ItemRecord,
    Resource,
    RuleViolation,
)
from src.core.sheet.resources import (
    add_resource,
    build_resource_views,
    clean_resource_changes,
    linked_counter,
    remove_resource,
)
from src.core.sheet.rules import DEFAULT_RULES, RuleConfig
from src.core.sheet.templates import TemplateRegistry, default_registry
from src.db.models import CharacterModel, ItemModel

logger = get_logger(__name__)

SOURCE = "sheet_service"

# 바꾸면 서브클래스 규칙을 다시 검사해야 하는 필드
SUBCLASS_KEYS = ("identifier", "classIdentifier")

# 환산 확인 콜백: (현재 화폐, 제안 화폐) → 적용 여부
CurrencyConfirm = Callable[[dict[str, int], dict[str, int]], bool]


@dataclass
class Outcome:
    """규칙 검증이 필요한 변경의 결과"""

    applied: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    item_id: Optional[str] = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @classmethod
    def rejected(cls, violation: RuleViolation) -> "Outcome":
        return cls(applied=False, reason=violation.message, code=violation.code)


def _set_path(data: dict[str, Any], path: str, value: Any) -> None:
    """점 경로 쓰기. 중간 dict가 없으면 만든다."""
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = current[part] = {}
        current = child
    current[parts[-1]] = value


class SheetService:
    """캐릭터 / 아이템 / 자원 CRUD + 시트 계산"""

    def __init__(
        self,
        db: Session,
        event_bus: EventBus,
        registry: Optional[TemplateRegistry] = None,
        rules: RuleConfig = DEFAULT_RULES,
        display_defaults: Optional[DisplaySettings] = None,
    ):
        self._db = db
        self._bus = event_bus
        self._registry = registry or default_registry()
        self._rules = rules
        self._display_defaults = display_defaults or DisplaySettings()
        self._migrations = MigrationPipeline(self._registry)
        self._pipeline = CharacterSheetPipeline(
            registry=self._registry, rules=rules, migrations=self._migrations
        )

    @property
    def rules(self) -> RuleConfig:
        return self._rules

    # === Character ===

    def create_character(
        self,
        name: str,
        actor_type: str = ActorType.CHARACTER.value,
        abilities: Optional[Mapping[str, int]] = None,
        proficiency_bonus: int = 2,
        weapon_proficiencies: Iterable[str] = (),
        armor_proficiencies: Iterable[str] = (),
        tool_proficiencies: Optional[Mapping[str, float]] = None,
        flags: Optional[Mapping[str, Any]] = None,
        spellcasting: Optional[str] = None,
        currency: Optional[Mapping[str, int]] = None,
    ) -> Character:
        """캐릭터 생성 + DB 저장. character_created 이벤트 발행."""
        character = Character(
            character_id=str(uuid.uuid4()),
            name=name,
            actor_type=ActorType(actor_type),
            abilities=dict(abilities or {}),
            proficiency_bonus=proficiency_bonus,
            weapon_proficiencies=set(weapon_proficiencies),
            armor_proficiencies=set(armor_proficiencies),
            tool_proficiencies=dict(tool_proficiencies or {}),
            flags=dict(flags or {}),
            spellcasting=spellcasting,
            currency=dict(currency or {}),
            display=replace(self._display_defaults),
        )
        self._db.add(self._character_to_orm(character))
        self._db.commit()

        self._emit(EventTypes.CHARACTER_CREATED, character_id=character.character_id)
        logger.info("Created character %s (%s)", character.character_id, name)
        return character

    def get_character(self, character_id: str) -> Character | None:
        orm = self._get_character_orm(character_id)
        if orm is None:
            return None
        return self._character_to_core(orm)

    def update_display(self, character_id: str, **settings: bool) -> Character:
        """표시 설정 변경 (metric_weight_units 등)."""
        orm = self._require_character(character_id)
        display = {**(orm.display or {})}
        for key, value in settings.items():
            if not hasattr(DisplaySettings, key):
                raise ValueError(f"Unknown display setting: {key}")
            display[key] = bool(value)
        orm.display = display
        self._db.commit()
        return self._character_to_core(orm)

    # === Sheet ===

    def get_sheet(
        self,
        character_id: str,
        filters: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> SheetView:
        """시트 View 계산. DB 상태는 변경하지 않는다."""
        character = self._load(character_id)
        return self._pipeline.prepare(character, filters=filters)

    # === Item ===

    def create_item(
        self,
        character_id: str,
        name: str,
        kind: str,
        system: Optional[Mapping[str, Any]] = None,
    ) -> ItemRecord:
        """검증 없이 아이템 생성 (마이그레이션은 적용). item_created 발행."""
        orm = self._require_character(character_id)
        item_kind = ItemKind(kind)
        record = self._migrations.migrate(item_kind, system or {})
        sort = max((i.sort for i in orm.items), default=0) + 1

        item = ItemRecord(
            item_id=str(uuid.uuid4()),
            name=name,
            kind=item_kind,
            system=record,
            owner_id=character_id,
            sort=sort,
        )
        self._db.add(self._item_to_orm(item))
        self._db.commit()

        self._emit(
            EventTypes.ITEM_CREATED,
            character_id=character_id,
            item_id=item.item_id,
            kind=item_kind.value,
        )
        logger.info("Created %s item %s for %s", item_kind.value, item.item_id, character_id)
        return item

    def drop_item(
        self,
        character_id: str,
        name: str,
        kind: str,
        system: Optional[Mapping[str, Any]] = None,
        workflow: Optional[AdvancementWorkflow] = None,
    ) -> Outcome:
        """외부에서 끌어온 아이템 추가. 클래스/서브클래스 규칙 검증.

        이미 있는 클래스면 새 아이템 대신 레벨 변경으로 처리한다.
        """
        character = self._load(character_id)
        item_kind = ItemKind(kind)
        candidate = ItemRecord(
            item_id="",
            name=name,
            kind=item_kind,
            system=self._migrations.migrate(item_kind, system or {}),
            owner_id=character_id,
        )
        try:
            planned = plan_item_drop(character, candidate, self._rules)
        except RuleViolation as e:
            logger.info("Drop of %s rejected: %s", name, e.message)
            return Outcome.rejected(e)

        if isinstance(planned, LevelChange):
            return self._apply_level_change(character, planned, workflow)

        created = self.create_item(character_id, planned.name, kind, planned.system)
        return Outcome(applied=True, item_id=created.item_id)

    def get_item(self, item_id: str) -> ItemRecord | None:
        orm = self._db.get(ItemModel, item_id)
        if orm is None:
            return None
        return self._item_to_core(orm)

    def delete_item(self, character_id: str, item_id: str) -> None:
        orm = self._require_item(character_id, item_id)
        self._db.delete(orm)
        self._db.commit()
        self._emit(EventTypes.ITEM_DELETED, character_id=character_id, item_id=item_id)

    def update_item(
        self,
        character_id: str,
        item_id: str,
        changes: Mapping[str, Any],
    ) -> Outcome:
        """점 경로 필드 갱신.

        자원 연동으로 잠긴 필드, 클래스 levels(레벨 변경 경로 사용)는 거부.
        값은 다시 정리되며 기본값으로 리셋된 필드는 diagnostics로 보고.
        """
        character = self._load(character_id)
        item = character.get_item(item_id)
        if item is None:
            raise ValueError(f"Item not found: {item_id}")

        try:
            self._check_item_writable(character, item, changes)
        except RuleViolation as e:
            return Outcome.rejected(e)

        system = copy.deepcopy(item.system)
        for path, value in changes.items():
            _set_path(system, path, value)
        result = self._migrations.run(item.kind, system)

        if item.kind is ItemKind.SUBCLASS and any(
            path.split(".")[0] in SUBCLASS_KEYS for path in changes
        ):
            # 자기 자신을 뺀 캐릭터 기준으로 드롭 규칙 재검증
            others = replace(
                character, items=[i for i in character.items if i.item_id != item_id]
            )
            try:
                plan_item_drop(others, replace(item, system=result.record), self._rules)
            except RuleViolation as e:
                logger.info("Update of %s rejected: %s", item.name, e.message)
                return Outcome.rejected(e)

        orm = self._require_item(character_id, item_id)
        orm.system = result.record
        self._db.commit()

        self._emit(
            EventTypes.ITEM_UPDATED,
            character_id=character_id,
            item_id=item_id,
            fields=sorted(changes),
        )
        return Outcome(applied=True, diagnostics=result.diagnostics)

    def toggle_item(self, character_id: str, item_id: str) -> Outcome:
        """주문: 준비 상태, 장착 가능 아이템: 장착 상태 토글."""
        orm = self._require_item(character_id, item_id)
        item = self._item_to_core(orm)
        template = self._registry.get(item.kind)

        if item.kind is ItemKind.SPELL:
            if item.get("preparation.mode") != "prepared":
                return Outcome.rejected(
                    RuleViolation("not_toggleable", f"Spell {item.name} is not preparable")
                )
            path = "preparation.prepared"
        elif template is not None and template.equippable:
            path = "equipped"
        else:
            return Outcome.rejected(
                RuleViolation("not_toggleable", f"Item {item.name} cannot be toggled")
            )

        system = copy.deepcopy(item.system)
        _set_path(system, path, not item.get(path))
        orm.system = system
        self._db.commit()

        self._emit(
            EventTypes.ITEM_TOGGLED,
            character_id=character_id,
            item_id=item_id,
            field=path,
        )
        return Outcome(applied=True)

    # === Resource ===

    def add_resource(
        self,
        character_id: str,
        label: str = "",
        short_rest: bool = False,
        long_rest: bool = False,
        value: float = 0,
        max: float = 0,
        linked_item_id: Optional[str] = None,
    ) -> Resource:
        orm = self._require_character(character_id)
        character = self._character_to_core(orm)
        if linked_item_id and character.get_item(linked_item_id) is None:
            raise ValueError(f"Item not found: {linked_item_id}")

        updated = add_resource(character.resources)
        resource_id = next(k for k in updated if k not in character.resources)
        resource = Resource(
            resource_id=resource_id,
            label=label,
            short_rest=short_rest,
            long_rest=long_rest,
            value=value,
            max=max,
            linked_item_id=linked_item_id,
        )
        updated[resource_id] = resource
        orm.resources = {k: r.to_record() for k, r in updated.items()}
        self._db.commit()

        self._emit(
            EventTypes.RESOURCE_ADDED, character_id=character_id, resource_id=resource_id
        )
        return resource

    def remove_resource(self, character_id: str, resource_id: str) -> Outcome:
        orm = self._require_character(character_id)
        character = self._character_to_core(orm)
        try:
            updated = remove_resource(character.resources, resource_id, self._rules)
        except RuleViolation as e:
            return Outcome.rejected(e)

        orm.resources = {k: r.to_record() for k, r in updated.items()}
        self._db.commit()
        self._emit(
            EventTypes.RESOURCE_REMOVED, character_id=character_id, resource_id=resource_id
        )
        return Outcome(applied=True)

    def update_resource(
        self,
        character_id: str,
        resource_id: str,
        changes: Mapping[str, Any],
    ) -> Outcome:
        """자원 필드 갱신.

        값은 필드 선언으로 정리하고, 잘못된 값이 있으면 diagnostics와 함께 거부.
        아이템에 연동된 자원은 value만 쓸 수 있고, 그 값은 아이템 카운터
        (uses.value 또는 quantity)에 기록된다. 카운터가 없으면 자원 자체에 저장.
        """
        character = self._load(character_id)
        if resource_id not in character.resources and resource_id not in self._rules.resource_options:
            raise ValueError(f"Resource not found: {resource_id}")
        changes, diagnostics = clean_resource_changes(changes)
        if diagnostics:
            return Outcome(
                applied=False,
                reason=f"Invalid resource fields: {', '.join(d.path for d in diagnostics)}",
                code="invalid_field",
                diagnostics=diagnostics,
            )

        linkage = build_resource_views(
            character, character.items, self._registry, self._rules
        )
        view = next(v for v in linkage.resources if v.resource_id == resource_id)
        locked = sorted(k for k in changes if k in view.locked_fields)
        if locked:
            return Outcome.rejected(
                RuleViolation(
                    "locked_field",
                    f"Resource {resource_id} is linked to an item; locked: {', '.join(locked)}",
                )
            )

        if view.linked_item_id is not None and "value" in changes:
            item = character.get_item(view.linked_item_id)
            counter = linked_counter(item, self._registry)
            if counter is not None:
                return self._write_item_fields(
                    character_id, item, {counter: changes["value"]}
                )

        orm = self._require_character(character_id)
        resource = character.resources.get(resource_id) or Resource(resource_id=resource_id)
        resource = replace(resource, **changes)
        orm.resources = {
            **{k: r.to_record() for k, r in character.resources.items()},
            resource_id: resource.to_record(),
        }
        self._db.commit()
        return Outcome(applied=True)

    # === Class level ===

    def change_class_level(
        self,
        character_id: str,
        class_item_id: str,
        delta: int,
        workflow: Optional[AdvancementWorkflow] = None,
    ) -> Outcome:
        """레벨 변경 제안 → 워크플로우 확인 → 적용. 취소는 no-op."""
        character = self._load(character_id)
        try:
            change = plan_level_change(character, class_item_id, delta, self._rules)
        except RuleViolation as e:
            return Outcome.rejected(e)
        return self._apply_level_change(character, change, workflow)

    def _apply_level_change(
        self,
        character: Character,
        change: LevelChange,
        workflow: Optional[AdvancementWorkflow],
    ) -> Outcome:
        applied = resolve_level_change(
            character,
            change,
            workflow or NullAdvancementWorkflow(),
            advancements_enabled=not character.display.disable_advancements,
        )
        if not applied:
            return Outcome(applied=False, reason="cancelled", code="cancelled")

        orm = self._require_item(character.character_id, change.class_item_id)
        orm.system = {**orm.system, "levels": change.new_level}
        self._db.commit()

        self._emit(
            EventTypes.CLASS_LEVEL_CHANGED,
            character_id=character.character_id,
            item_id=change.class_item_id,
            delta=change.delta,
        )
        logger.info(
            "Class %s level %d -> %d",
            change.class_item_id,
            change.current_level,
            change.new_level,
        )
        return Outcome(applied=True)

    # === Currency ===

    def convert_currency(
        self,
        character_id: str,
        confirm: Optional[CurrencyConfirm] = None,
    ) -> Outcome:
        """환산 제안 → confirm(현재, 제안)이 True일 때만 적용."""
        orm = self._require_character(character_id)
        current = dict(orm.currency or {})
        proposal = convert_currency(current, self._rules)
        if confirm is not None and not confirm(current, proposal):
            return Outcome(applied=False, reason="cancelled", code="cancelled")

        orm.currency = proposal
        self._db.commit()
        self._emit(EventTypes.CURRENCY_CONVERTED, character_id=character_id)
        return Outcome(applied=True)

    # === 내부 ===

    def _check_item_writable(
        self,
        character: Character,
        item: ItemRecord,
        changes: Mapping[str, Any],
    ) -> None:
        if item.kind is ItemKind.CLASS and "levels" in changes:
            raise RuleViolation(
                "levels_via_level_change", "Class levels change through level changes only"
            )
        linkage = build_resource_views(
            character, character.items, self._registry, self._rules
        )
        locked = linkage.item_locks.get(item.item_id, frozenset())
        blocked = sorted(
            path
            for path in changes
            if any(path == f or f.startswith(path + ".") for f in locked)
        )
        if blocked:
            raise RuleViolation(
                "locked_field",
                f"Item {item.name} is linked to a resource; locked: {', '.join(blocked)}",
            )

    def _write_item_fields(
        self, character_id: str, item: ItemRecord, changes: Mapping[str, Any]
    ) -> Outcome:
        system = copy.deepcopy(item.system)
        for path, value in changes.items():
            _set_path(system, path, value)
        result = self._migrations.run(item.kind, system)
        orm = self._require_item(character_id, item.item_id)
        orm.system = result.record
        self._db.commit()
        self._emit(
            EventTypes.ITEM_UPDATED,
            character_id=character_id,
            item_id=item.item_id,
            fields=sorted(changes),
        )
        return Outcome(applied=True, diagnostics=result.diagnostics)

    def _emit(self, event_type: str, **data: Any) -> None:
        self._bus.emit(SheetEvent(event_type=event_type, data=data, source=SOURCE))

    def _get_character_orm(self, character_id: str) -> CharacterModel | None:
        return self._db.get(CharacterModel, character_id)

    def _require_character(self, character_id: str) -> CharacterModel:
        orm = self._get_character_orm(character_id)
        if orm is None:
            raise ValueError(f"Character not found: {character_id}")
        return orm

    def _require_item(self, character_id: str, item_id: str) -> ItemModel:
        orm = self._db.get(ItemModel, item_id)
        if orm is None or orm.character_id != character_id:
            raise ValueError(f"Item not found: {item_id}")
        return orm

    def _load(self, character_id: str) -> Character:
        return self._character_to_core(self._require_character(character_id))

    # === ORM ↔ Core 변환 ===

    @staticmethod
    def _item_to_core(orm: ItemModel) -> ItemRecord:
        return ItemRecord(
            item_id=orm.item_id,
            name=orm.name,
            kind=ItemKind(orm.kind),
            system=copy.deepcopy(orm.system or {}),
            owner_id=orm.character_id,
            sort=orm.sort or 0,
        )

    @staticmethod
    def _item_to_orm(item: ItemRecord) -> ItemModel:
        return ItemModel(
            item_id=item.item_id,
            character_id=item.owner_id,
            name=item.name,
            kind=item.kind.value,
            system=item.system,
            sort=item.sort,
        )

    def _character_to_core(self, orm: CharacterModel) -> Character:
        display = orm.display or {}
        return Character(
            character_id=orm.character_id,
            name=orm.name,
            actor_type=ActorType(orm.actor_type),
            abilities=dict(orm.abilities or {}),
            proficiency_bonus=orm.proficiency_bonus,
            weapon_proficiencies=set(orm.weapon_proficiencies or []),
            armor_proficiencies=set(orm.armor_proficiencies or []),
            tool_proficiencies=dict(orm.tool_proficiencies or {}),
            flags=dict(orm.flags or {}),
            spellcasting=orm.spellcasting,
            resources={
                key: Resource.from_record(key, record)
                for key, record in (orm.resources or {}).items()
            },
            currency=dict(orm.currency or {}),
            display=DisplaySettings(
                metric_weight_units=bool(display.get("metric_weight_units")),
                disable_experience=bool(display.get("disable_experience")),
                disable_advancements=bool(display.get("disable_advancements")),
            ),
            items=[self._item_to_core(i) for i in orm.items],
        )

    @staticmethod
    def _character_to_orm(character: Character) -> CharacterModel:
        return CharacterModel(
            character_id=character.character_id,
            name=character.name,
            actor_type=character.actor_type.value,
            abilities=character.abilities,
            proficiency_bonus=character.proficiency_bonus,
            weapon_proficiencies=sorted(character.weapon_proficiencies),
            armor_proficiencies=sorted(character.armor_proficiencies),
            tool_proficiencies=character.tool_proficiencies,
            flags=character.flags,
            spellcasting=character.spellcasting,
            resources={k: r.to_record() for k, r in character.resources.items()},
            currency=character.currency,
            display={
                "metric_weight_units": character.display.metric_weight_units,
                "disable_experience": character.display.disable_experience,
                "disable_advancements": character.display.disable_advancements,
            },
        )
