"""API request/response schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from src.core.sheet.models import ActorType, ItemKind


# === Request Schemas ===


class CharacterCreateRequest(BaseModel):
    """캐릭터 생성 요청"""

    name: str = Field(..., min_length=1, max_length=100, description="캐릭터 이름")
    actor_type: ActorType = Field(ActorType.CHARACTER, description="character 또는 npc")
    abilities: dict[str, int] = Field(default_factory=dict, description="능력치 점수")
    proficiency_bonus: int = Field(2, ge=0)
    weapon_proficiencies: list[str] = Field(
        default_factory=list, description="무기 숙련 태그 (sim, mar, 기본 아이템)"
    )
    armor_proficiencies: list[str] = Field(
        default_factory=list, description="방어구 숙련 태그 (lgt, med, hvy, shl)"
    )
    tool_proficiencies: dict[str, float] = Field(
        default_factory=dict, description="도구 숙련 배수 (카테고리/기본 아이템별)"
    )
    flags: dict[str, Any] = Field(default_factory=dict)
    spellcasting: Optional[str] = None
    currency: dict[str, int] = Field(default_factory=dict)


class DisplayUpdateRequest(BaseModel):
    """표시 설정 변경 요청 (지정한 항목만)"""

    metric_weight_units: Optional[bool] = None
    disable_experience: Optional[bool] = None
    disable_advancements: Optional[bool] = None


class ItemCreateRequest(BaseModel):
    """아이템 추가 요청. system은 레거시 형태여도 된다 (마이그레이션 적용)."""

    name: str = Field(..., min_length=1)
    kind: ItemKind
    system: dict[str, Any] = Field(default_factory=dict)


class ItemUpdateRequest(BaseModel):
    """점 경로 필드 갱신 요청. 예: {"uses.value": 2}"""

    changes: dict[str, Any] = Field(..., min_length=1)


class ResourceCreateRequest(BaseModel):
    label: str = ""
    short_rest: bool = False
    long_rest: bool = False
    value: float = 0
    max: float = 0
    linked_item_id: Optional[str] = None


class ResourceUpdateRequest(BaseModel):
    changes: dict[str, Any] = Field(..., min_length=1)


class LevelChangeRequest(BaseModel):
    """클래스 레벨 변경 요청"""

    delta: int = Field(..., description="레벨 변화량 (음수면 레벨 다운)")


class CurrencyConvertRequest(BaseModel):
    """화폐 환산 요청. confirm=False면 제안만 확인하고 적용하지 않는다."""

    confirm: bool = True


# === Response Schemas ===


class ErrorResponse(BaseModel):
    detail: str


class DiagnosticInfo(BaseModel):
    path: str
    message: str
    value: Any = None


class OutcomeResponse(BaseModel):
    """규칙 검증 변경의 결과"""

    applied: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    item_id: Optional[str] = None
    diagnostics: list[DiagnosticInfo] = []


class ResourceInfo(BaseModel):
    resource_id: str
    label: str
    short_rest: bool
    long_rest: bool
    value: float
    max: float
    linked_item_id: Optional[str] = None


class CharacterResponse(BaseModel):
    """캐릭터 요약"""

    character_id: str
    name: str
    actor_type: str
    level: int
    currency: dict[str, int] = {}
    resources: list[ResourceInfo] = []
    display: dict[str, bool] = {}


class ItemResponse(BaseModel):
    item_id: str
    name: str
    kind: str
    system: dict[str, Any]
    sort: int = 0


class LevelOptionInfo(BaseModel):
    level: int
    delta: int
    disabled: bool


class ItemContextInfo(BaseModel):
    """아이템별 표시 컨텍스트"""

    item_id: str
    proficiency: float
    chat_properties: list[str] = []
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
    available_levels: list[LevelOptionInfo] = []
    locked_fields: list[str] = []


class BucketInfo(BaseModel):
    key: str
    label: str
    items: list[ItemResponse] = []
    dataset: dict[str, str] = {}
    has_actions: bool = False
    is_class: bool = False


class SpellbookSectionInfo(BaseModel):
    level: int
    label: str
    spells: list[ItemResponse] = []


class ResourceViewInfo(BaseModel):
    resource_id: str
    label: str
    placeholder: str
    short_rest: bool
    long_rest: bool
    value: Optional[float] = None
    max: Optional[float] = None
    builtin: bool
    deletable: bool
    linked_item_id: Optional[str] = None
    locked_fields: list[str] = []
    hidden_fields: list[str] = []


class SheetWarningInfo(BaseModel):
    message: str
    type: str = "warning"


class SheetResponse(BaseModel):
    """캐릭터 시트 View"""

    character_id: str
    level: int
    inventory: list[BucketInfo] = []
    spellbook: list[SpellbookSectionInfo] = []
    prepared_spells: int = 0
    features: list[BucketInfo] = []
    resources: list[ResourceViewInfo] = []
    item_context: dict[str, ItemContextInfo] = {}
    warnings: list[SheetWarningInfo] = []
    diagnostics: dict[str, list[DiagnosticInfo]] = {}
    labels: dict[str, Optional[str]] = {}
    weight_unit: str = "lbs"
    disable_experience: bool = False
