"""Character sheet API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.api.schemas import (
    BucketInfo,
    CharacterCreateRequest,
    CharacterResponse,
    CurrencyConvertRequest,
    DiagnosticInfo,
    DisplayUpdateRequest,
    ErrorResponse,
    ItemContextInfo,
    ItemCreateRequest,
    ItemResponse,
    ItemUpdateRequest,
    LevelChangeRequest,
    LevelOptionInfo,
    OutcomeResponse,
    ResourceCreateRequest,
    ResourceInfo,
    ResourceUpdateRequest,
    ResourceViewInfo,
    SheetResponse,
    SheetWarningInfo,
    SpellbookSectionInfo,
)
from src.core.logging import get_logger
from src.core.sheet.aggregation import Bucket, ItemContext, SheetView
from src.core.sheet.fields import Diagnostic
from src.core.sheet.models import Character, ItemRecord
from src.services.sheet_service import Outcome, SheetService

logger = get_logger(__name__)

router = APIRouter(prefix="/characters", tags=["characters"])

NOT_FOUND = {404: {"model": ErrorResponse}}
REJECTED = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


def get_sheet_service(request: Request) -> SheetService:
    """SheetService 인스턴스 반환 (의존성 주입)"""
    service: SheetService = request.app.state.sheet_service
    return service


# === 변환 ===


def _diagnostic_info(diag: Diagnostic) -> DiagnosticInfo:
    return DiagnosticInfo(path=diag.path, message=diag.message, value=diag.value)


def _item_response(item: ItemRecord) -> ItemResponse:
    return ItemResponse(
        item_id=item.item_id,
        name=item.name,
        kind=item.kind.value,
        system=item.system,
        sort=item.sort,
    )


def _character_response(character: Character) -> CharacterResponse:
    return CharacterResponse(
        character_id=character.character_id,
        name=character.name,
        actor_type=character.actor_type.value,
        level=character.level,
        currency=character.currency,
        resources=[
            ResourceInfo(
                resource_id=r.resource_id,
                label=r.label,
                short_rest=r.short_rest,
                long_rest=r.long_rest,
                value=r.value,
                max=r.max,
                linked_item_id=r.linked_item_id,
            )
            for r in character.resources.values()
        ],
        display={
            "metric_weight_units": character.display.metric_weight_units,
            "disable_experience": character.display.disable_experience,
            "disable_advancements": character.display.disable_advancements,
        },
    )


def _bucket_info(bucket: Bucket) -> BucketInfo:
    return BucketInfo(
        key=bucket.key,
        label=bucket.label,
        items=[_item_response(i) for i in bucket.items],
        dataset=bucket.dataset,
        has_actions=bucket.has_actions,
        is_class=bucket.is_class,
    )


def _context_info(ctx: ItemContext) -> ItemContextInfo:
    return ItemContextInfo(
        item_id=ctx.item_id,
        proficiency=ctx.proficiency,
        chat_properties=ctx.chat_properties,
        ability_mod=ctx.ability_mod,
        is_stack=ctx.is_stack,
        has_uses=ctx.has_uses,
        has_limited_uses=ctx.has_limited_uses,
        is_on_cooldown=ctx.is_on_cooldown,
        is_depleted=ctx.is_depleted,
        has_target=ctx.has_target,
        attunement=ctx.attunement,
        toggle_class=ctx.toggle_class,
        toggle_title=ctx.toggle_title,
        can_toggle=ctx.can_toggle,
        total_weight=ctx.total_weight,
        available_levels=[
            LevelOptionInfo(level=o.level, delta=o.delta, disabled=o.disabled)
            for o in ctx.available_levels
        ],
        locked_fields=sorted(ctx.locked_fields),
    )


def _sheet_response(view: SheetView) -> SheetResponse:
    return SheetResponse(
        character_id=view.character_id,
        level=view.level,
        inventory=[_bucket_info(b) for b in view.inventory],
        spellbook=[
            SpellbookSectionInfo(
                level=s.level,
                label=s.label,
                spells=[_item_response(i) for i in s.spells],
            )
            for s in view.spellbook
        ],
        prepared_spells=view.prepared_spells,
        features=[_bucket_info(b) for b in view.features],
        resources=[
            ResourceViewInfo(
                resource_id=r.resource_id,
                label=r.label,
                placeholder=r.placeholder,
                short_rest=r.short_rest,
                long_rest=r.long_rest,
                value=r.value,
                max=r.max,
                builtin=r.builtin,
                deletable=r.deletable,
                linked_item_id=r.linked_item_id,
                locked_fields=sorted(r.locked_fields),
                hidden_fields=sorted(r.hidden_fields),
            )
            for r in view.resources
        ],
        item_context={k: _context_info(c) for k, c in view.item_context.items()},
        warnings=[SheetWarningInfo(message=w.message, type=w.type) for w in view.warnings],
        diagnostics={
            k: [_diagnostic_info(d) for d in diags] for k, diags in view.diagnostics.items()
        },
        labels=view.labels,
        weight_unit=view.weight_unit,
        disable_experience=view.disable_experience,
    )


def _outcome_response(outcome: Outcome) -> OutcomeResponse:
    """규칙 위반은 409. 워크플로우/확인 취소는 정상 no-op 응답."""
    if not outcome.applied and outcome.code != "cancelled":
        raise HTTPException(status_code=409, detail=outcome.reason)
    return OutcomeResponse(
        applied=outcome.applied,
        reason=outcome.reason,
        code=outcome.code,
        item_id=outcome.item_id,
        diagnostics=[_diagnostic_info(d) for d in outcome.diagnostics],
    )


def _not_found(e: ValueError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


# === Character ===


@router.post("", response_model=CharacterResponse, status_code=201)
def create_character(
    request: CharacterCreateRequest,
    service: SheetService = Depends(get_sheet_service),
) -> CharacterResponse:
    """캐릭터 생성"""
    character = service.create_character(
        name=request.name,
        actor_type=request.actor_type.value,
        abilities=request.abilities,
        proficiency_bonus=request.proficiency_bonus,
        weapon_proficiencies=request.weapon_proficiencies,
        armor_proficiencies=request.armor_proficiencies,
        tool_proficiencies=request.tool_proficiencies,
        flags=request.flags,
        spellcasting=request.spellcasting,
        currency=request.currency,
    )
    return _character_response(character)


@router.get("/{character_id}", response_model=CharacterResponse, responses=NOT_FOUND)
def get_character(
    character_id: str,
    service: SheetService = Depends(get_sheet_service),
) -> CharacterResponse:
    character = service.get_character(character_id)
    if character is None:
        raise HTTPException(status_code=404, detail=f"Character not found: {character_id}")
    return _character_response(character)


@router.patch(
    "/{character_id}/display", response_model=CharacterResponse, responses=NOT_FOUND
)
def update_display(
    character_id: str,
    request: DisplayUpdateRequest,
    service: SheetService = Depends(get_sheet_service),
) -> CharacterResponse:
    settings = request.model_dump(exclude_none=True)
    try:
        character = service.update_display(character_id, **settings)
    except ValueError as e:
        raise _not_found(e)
    return _character_response(character)


@router.get("/{character_id}/sheet", response_model=SheetResponse, responses=NOT_FOUND)
def get_sheet(
    character_id: str,
    inventory: Optional[list[str]] = Query(None, description="인벤토리 필터"),
    spellbook: Optional[list[str]] = Query(None, description="주문서 필터"),
    features: Optional[list[str]] = Query(None, description="특성 필터"),
    service: SheetService = Depends(get_sheet_service),
) -> SheetResponse:
    """
    캐릭터 시트 조회

    파티션별 필터 이름은 AND로 적용됩니다. 알 수 없는 이름은 무시됩니다.
    """
    filters = {
        "inventory": inventory or [],
        "spellbook": spellbook or [],
        "features": features or [],
    }
    try:
        view = service.get_sheet(character_id, filters=filters)
    except ValueError as e:
        raise _not_found(e)
    return _sheet_response(view)


# === Item ===


@router.post(
    "/{character_id}/items", response_model=OutcomeResponse, status_code=201, responses=REJECTED
)
def drop_item(
    character_id: str,
    request: ItemCreateRequest,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    """아이템 추가 (클래스/서브클래스 규칙 검증 포함)"""
    try:
        outcome = service.drop_item(
            character_id, request.name, request.kind.value, request.system
        )
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)


@router.get(
    "/{character_id}/items/{item_id}", response_model=ItemResponse, responses=NOT_FOUND
)
def get_item(
    character_id: str,
    item_id: str,
    service: SheetService = Depends(get_sheet_service),
) -> ItemResponse:
    item = service.get_item(item_id)
    if item is None or item.owner_id != character_id:
        raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
    return _item_response(item)


@router.patch(
    "/{character_id}/items/{item_id}", response_model=OutcomeResponse, responses=REJECTED
)
def update_item(
    character_id: str,
    item_id: str,
    request: ItemUpdateRequest,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    try:
        outcome = service.update_item(character_id, item_id, request.changes)
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)


@router.post(
    "/{character_id}/items/{item_id}/toggle",
    response_model=OutcomeResponse,
    responses=REJECTED,
)
def toggle_item(
    character_id: str,
    item_id: str,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    """주문 준비 / 장착 토글"""
    try:
        outcome = service.toggle_item(character_id, item_id)
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)


@router.delete("/{character_id}/items/{item_id}", status_code=204, responses=NOT_FOUND)
def delete_item(
    character_id: str,
    item_id: str,
    service: SheetService = Depends(get_sheet_service),
) -> None:
    try:
        service.delete_item(character_id, item_id)
    except ValueError as e:
        raise _not_found(e)


@router.post(
    "/{character_id}/items/{item_id}/level",
    response_model=OutcomeResponse,
    responses=REJECTED,
)
def change_class_level(
    character_id: str,
    item_id: str,
    request: LevelChangeRequest,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    """클래스 레벨 변경. 선택 단계 워크플로우는 외부 협력자 몫이다."""
    try:
        outcome = service.change_class_level(character_id, item_id, request.delta)
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)


# === Resource ===


@router.post(
    "/{character_id}/resources",
    response_model=ResourceInfo,
    status_code=201,
    responses=NOT_FOUND,
)
def add_resource(
    character_id: str,
    request: ResourceCreateRequest,
    service: SheetService = Depends(get_sheet_service),
) -> ResourceInfo:
    try:
        resource = service.add_resource(character_id, **request.model_dump())
    except ValueError as e:
        raise _not_found(e)
    return ResourceInfo(
        resource_id=resource.resource_id,
        label=resource.label,
        short_rest=resource.short_rest,
        long_rest=resource.long_rest,
        value=resource.value,
        max=resource.max,
        linked_item_id=resource.linked_item_id,
    )


@router.patch(
    "/{character_id}/resources/{resource_id}",
    response_model=OutcomeResponse,
    responses=REJECTED,
)
def update_resource(
    character_id: str,
    resource_id: str,
    request: ResourceUpdateRequest,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    try:
        outcome = service.update_resource(character_id, resource_id, request.changes)
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)


@router.delete(
    "/{character_id}/resources/{resource_id}",
    response_model=OutcomeResponse,
    responses=REJECTED,
)
def remove_resource(
    character_id: str,
    resource_id: str,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    """사용자 추가 자원 삭제. 기본 자원은 409."""
    try:
        outcome = service.remove_resource(character_id, resource_id)
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)


# === Currency ===


@router.post(
    "/{character_id}/currency/convert",
    response_model=OutcomeResponse,
    responses=NOT_FOUND,
)
def convert_currency(
    character_id: str,
    request: CurrencyConvertRequest,
    service: SheetService = Depends(get_sheet_service),
) -> OutcomeResponse:
    try:
        outcome = service.convert_currency(
            character_id, confirm=lambda current, proposal: request.confirm
        )
    except ValueError as e:
        raise _not_found(e)
    return _outcome_response(outcome)
