"""SQLAlchemy declarative base for all ORM models."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all database models."""


class CharacterModel(Base):
    """ORM model for characters.

    Proficiency tags, flags, resources and display settings are stored as JSON
    in their persisted shapes (resources keyed by identifier).
    """

    __tablename__ = "characters"

    character_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    actor_type: Mapped[str] = mapped_column(String, nullable=False, default="character")

    abilities: Mapped[dict] = mapped_column(JSON, default=dict)
    proficiency_bonus: Mapped[int] = mapped_column(Integer, default=2)
    weapon_proficiencies: Mapped[list] = mapped_column(JSON, default=list)
    armor_proficiencies: Mapped[list] = mapped_column(JSON, default=list)
    tool_proficiencies: Mapped[dict] = mapped_column(JSON, default=dict)
    flags: Mapped[dict] = mapped_column(JSON, default=dict)
    spellcasting: Mapped[str | None] = mapped_column(String, nullable=True)

    resources: Mapped[dict] = mapped_column(JSON, default=dict)
    currency: Mapped[dict] = mapped_column(JSON, default=dict)
    display: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    items: Mapped[list["ItemModel"]] = relationship(
        "ItemModel",
        back_populates="character",
        cascade="all, delete-orphan",
        order_by="ItemModel.sort",
    )


class ItemModel(Base):
    """ORM model for owned items. `system` holds the kind's field values."""

    __tablename__ = "items"

    item_id: Mapped[str] = mapped_column(String, primary_key=True)
    character_id: Mapped[str] = mapped_column(
        String, ForeignKey("characters.character_id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    system: Mapped[dict] = mapped_column(JSON, default=dict)
    sort: Mapped[int] = mapped_column(Integer, default=0)

    character: Mapped["CharacterModel"] = relationship(
        "CharacterModel", back_populates="items"
    )

    __table_args__ = (Index("idx_item_character", "character_id", "kind"),)
