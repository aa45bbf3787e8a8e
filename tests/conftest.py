"""Shared test fixtures."""

import itertools
from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from src.core.sheet.migration import MigrationPipeline
from src.core.sheet.models import ItemKind, ItemRecord
from src.core.sheet.templates import TemplateRegistry, default_registry
from src.db.database import get_db
from src.main import app

TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
)
TestSession = sessionmaker(bind=TEST_ENGINE, autocommit=False, autoflush=False)


def _override_get_db():
    db = TestSession()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture()
def client() -> TestClient:
    """FastAPI TestClient wired to an in-memory SQLite database."""
    return TestClient(app)


@pytest.fixture()
def db_session() -> Session:
    """Raw database session for direct DB assertions."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def registry() -> TemplateRegistry:
    return default_registry()


MakeItem = Callable[..., ItemRecord]


@pytest.fixture()
def make_item(registry: TemplateRegistry) -> MakeItem:
    """마이그레이션된 ItemRecord 생성 팩토리.

    make_item(ItemKind.WEAPON, "Dagger", {"weaponType": "simpleM"}, owner_id="c1")
    """
    migrations = MigrationPipeline(registry)
    counter = itertools.count(1)

    def _make(
        kind: ItemKind,
        name: str = "",
        system: Optional[dict[str, Any]] = None,
        owner_id: Optional[str] = "c1",
        item_id: Optional[str] = None,
    ) -> ItemRecord:
        n = next(counter)
        return ItemRecord(
            item_id=item_id or f"item{n}",
            name=name or f"{kind.value} {n}",
            kind=kind,
            system=migrations.migrate(kind, system or {}),
            owner_id=owner_id,
            sort=n,
        )

    return _make
