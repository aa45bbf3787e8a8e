"""캐릭터 시트 Core — 순수 Python, DB 무관"""

from .aggregation import CharacterSheetPipeline, SheetView, prepare
from .fields import Diagnostic, FieldSpec, FieldType
from .fragments import Capability, Fragment
from .migration import MigrationPipeline, MigrationResult, MigrationRule
from .models import (
    ActorType,
    Character,
    DisplaySettings,
    ItemKind,
    ItemRecord,
    Resource,
    RuleViolation,
)
from .proficiency import chat_properties, owner_of, proficiency_multiplier
from .rules import DEFAULT_RULES, RuleConfig
from .templates import TemplateError, TemplateRegistry, compose, default_registry

__all__ = [
    "ActorType",
    "Capability",
    "Character",
    "CharacterSheetPipeline",
    "DEFAULT_RULES",
    "Diagnostic",
    "DisplaySettings",
    "FieldSpec",
    "FieldType",
    "Fragment",
    "ItemKind",
    "ItemRecord",
    "MigrationPipeline",
    "MigrationResult",
    "MigrationRule",
    "Resource",
    "RuleConfig",
    "RuleViolation",
    "SheetView",
    "TemplateError",
    "TemplateRegistry",
    "chat_properties",
    "compose",
    "default_registry",
    "owner_of",
    "prepare",
    "proficiency_multiplier",
]
