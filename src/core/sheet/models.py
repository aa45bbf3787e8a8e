"""캐릭터 시트 도메인 모델 (DB 무관)"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ItemKind(str, Enum):
    WEAPON = "weapon"
    EQUIPMENT = "equipment"
    CONSUMABLE = "consumable"
    TOOL = "tool"
    LOOT = "loot"
    CONTAINER = "backpack"
    SPELL = "spell"
    FEAT = "feat"
    BACKGROUND = "background"
    CLASS = "class"
    SUBCLASS = "subclass"


class ActorType(str, Enum):
    CHARACTER = "character"  # 플레이어 캐릭터
    NPC = "npc"


class RuleViolation(ValueError):
    """비즈니스 규칙 위반. 시도한 변경만 거부, 상태는 그대로."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def get_path(data: dict[str, Any], path: str, default: Any = None) -> Any:
    """"armor.dex" 같은 점 경로 조회. 중간이 dict가 아니면 default."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


@dataclass
class ItemRecord:
    """아이템 레코드. system은 kind의 합성 필드 값."""

    item_id: str
    name: str
    kind: ItemKind
    system: dict[str, Any] = field(default_factory=dict)

    # 소유 캐릭터 ID (약한 역참조, 객체 참조 금지)
    owner_id: Optional[str] = None
    sort: int = 0

    def get(self, path: str, default: Any = None) -> Any:
        return get_path(self.system, path, default)


@dataclass
class Resource:
    """캐릭터 자원 (기본 3종 + 사용자 추가)"""

    resource_id: str
    label: str = ""
    short_rest: bool = False
    long_rest: bool = False
    value: float = 0
    max: float = 0
    linked_item_id: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        """저장용 레코드 형태."""
        record: dict[str, Any] = {
            "identifier": self.resource_id,
            "label": self.label,
            "shortRest": self.short_rest,
            "longRest": self.long_rest,
            "value": self.value,
            "max": self.max,
        }
        if self.linked_item_id:
            record["linkedItemId"] = self.linked_item_id
        return record

    @classmethod
    def from_record(cls, resource_id: str, record: dict[str, Any]) -> "Resource":
        """저장 레코드 → Resource. 구버전 키(sr/lr)도 허용."""
        return cls(
            resource_id=record.get("identifier") or resource_id,
            label=record.get("label") or "",
            short_rest=bool(record.get("shortRest", record.get("sr", False))),
            long_rest=bool(record.get("longRest", record.get("lr", False))),
            value=_number_or_zero(record.get("value")),
            max=_number_or_zero(record.get("max")),
            linked_item_id=record.get("linkedItemId") or None,
        )


def _number_or_zero(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class DisplaySettings:
    """캐릭터별 표시 설정"""

    metric_weight_units: bool = False
    disable_experience: bool = False
    disable_advancements: bool = False


@dataclass
class Character:
    """캐릭터 집합체. 아이템을 소유한다 (역방향 소유 금지)."""

    character_id: str
    name: str
    actor_type: ActorType = ActorType.CHARACTER

    abilities: dict[str, int] = field(default_factory=dict)  # {"str": 15, ...}
    proficiency_bonus: int = 2

    # 숙련 태그
    weapon_proficiencies: set[str] = field(default_factory=set)  # {"sim", "longsword"}
    armor_proficiencies: set[str] = field(default_factory=set)  # {"lgt", "shl"}
    tool_proficiencies: dict[str, float] = field(default_factory=dict)  # {"thief": 1}

    flags: dict[str, Any] = field(default_factory=dict)  # {"tavernBrawlerFeat": True}
    spellcasting: Optional[str] = None  # 주문 시전 능력치

    resources: dict[str, Resource] = field(default_factory=dict)
    currency: dict[str, int] = field(default_factory=dict)
    display: DisplaySettings = field(default_factory=DisplaySettings)

    items: list[ItemRecord] = field(default_factory=list)

    @property
    def is_npc(self) -> bool:
        return self.actor_type is ActorType.NPC

    def items_of(self, kind: ItemKind) -> list[ItemRecord]:
        return [i for i in self.items if i.kind is kind]

    def get_item(self, item_id: str) -> Optional[ItemRecord]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    @property
    def level(self) -> int:
        """전체 클래스 레벨 합계."""
        total = 0
        for cls in self.items_of(ItemKind.CLASS):
            levels = cls.get("levels", 0)
            if isinstance(levels, (int, float)) and not isinstance(levels, bool):
                total += int(levels)
        return total

    def ability_mod(self, ability: str) -> int:
        score = self.abilities.get(ability, 10)
        return (score - 10) // 2
