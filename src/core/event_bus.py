"""EventBus — 서비스 변경 알림 인프라

규칙:
- 서비스는 다른 서비스를 직접 import하지 않는다
- 이벤트는 식별자(ID)만 전달한다 (캐릭터/아이템 객체 금지)
- 전파 깊이 최대 MAX_DEPTH 단계
- 한 전파 체인 안에서 같은 source의 같은 이벤트는 1회만
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set

from src.core.logging import get_logger

logger = get_logger(__name__)

MAX_DEPTH = 5


@dataclass
class SheetEvent:
    """이벤트 데이터 컨테이너

    Args:
        event_type: EventTypes 상수 (예: "item_updated")
        data: 식별자 위주 데이터 ({"character_id": ..., "item_id": ...})
        source: 발행한 서비스 이름
    """

    event_type: str
    data: Dict[str, Any]
    source: str

    _depth: int = field(default=0, repr=False)


EventHandler = Callable[[SheetEvent], None]


class EventBus:
    """동기식 이벤트 버스

    bus = EventBus()
    bus.subscribe(EventTypes.ITEM_UPDATED, on_item_updated)
    bus.emit(SheetEvent(EventTypes.ITEM_UPDATED, {"item_id": "abc"}, "sheet_service"))

    최상위 emit이 끝나면 중복 추적이 초기화된다.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._current_depth: int = 0
        self._emitted_in_chain: Set[str] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        logger.debug("EventBus subscribe: %s -> %s", event_type, handler.__qualname__)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            logger.warning(
                "EventBus handler not registered: %s -> %s",
                event_type,
                handler.__qualname__,
            )
            return
        handlers.remove(handler)

    def emit(self, event: SheetEvent) -> None:
        """등록된 핸들러를 순서대로 동기 호출.

        핸들러 예외는 로그만 남기고 다음 핸들러로 진행한다.
        """
        if self._current_depth >= MAX_DEPTH:
            logger.warning(
                "EventBus depth limit (%d) reached, dropped %s:%s",
                MAX_DEPTH,
                event.source,
                event.event_type,
            )
            return

        chain_key = f"{event.source}:{event.event_type}"
        if chain_key in self._emitted_in_chain:
            logger.warning("EventBus duplicate event blocked: %s", chain_key)
            return
        self._emitted_in_chain.add(chain_key)
        event._depth = self._current_depth

        handlers = list(self._handlers.get(event.event_type, []))
        if handlers:
            logger.debug(
                "EventBus dispatch: %s (source=%s, depth=%d, handlers=%d)",
                event.event_type,
                event.source,
                self._current_depth,
                len(handlers),
            )

        self._current_depth += 1
        try:
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "EventBus handler error: %s (event=%s)",
                        handler.__qualname__,
                        event.event_type,
                    )
        finally:
            self._current_depth -= 1
            if self._current_depth == 0:
                self._emitted_in_chain.clear()

    def clear(self) -> None:
        """모든 구독 해제 (테스트용)"""
        self._handlers.clear()
        self._emitted_in_chain.clear()
        self._current_depth = 0

    @property
    def handler_count(self) -> int:
        return sum(len(h) for h in self._handlers.values())
