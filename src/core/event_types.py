"""이벤트 유형 상수

SheetService가 상태 변경 후 발행한다. 데이터는 식별자만 담는다.
"""


class EventTypes:
    """이벤트 유형 문자열 상수"""

    # character
    CHARACTER_CREATED = "character_created"

    # item
    ITEM_CREATED = "item_created"
    ITEM_UPDATED = "item_updated"
    ITEM_TOGGLED = "item_toggled"
    ITEM_DELETED = "item_deleted"

    # resource
    RESOURCE_ADDED = "resource_added"
    RESOURCE_REMOVED = "resource_removed"

    # class / advancement
    CLASS_LEVEL_CHANGED = "class_level_changed"

    # currency
    CURRENCY_CONVERTED = "currency_converted"
