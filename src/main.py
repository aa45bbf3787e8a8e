"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.api.health import router as health_router
from src.api.sheet import router as sheet_router
from src.config import settings
from src.core.event_bus import EventBus
from src.core.logging import get_logger, setup_logging
from src.core.sheet.models import DisplaySettings
from src.core.sheet.templates import default_registry
from src.db.database import SessionLocal, engine as db_engine
from src.db.models import Base
from src.services.sheet_service import SheetService

setup_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=db_engine)
    logger.info("Database tables created.")

    registry = default_registry()
    rules = settings.rule_config()
    logger.info(
        "Template registry ready (%d kinds, max level %d)",
        len(registry.kinds()),
        rules.max_level,
    )

    event_bus = EventBus()
    db_session = SessionLocal()
    app.state.event_bus = event_bus
    app.state.sheet_service = SheetService(
        db=db_session,
        event_bus=event_bus,
        registry=registry,
        rules=rules,
        display_defaults=DisplaySettings(
            metric_weight_units=settings.METRIC_WEIGHT_UNITS,
            disable_experience=settings.DISABLE_EXPERIENCE_TRACKING,
            disable_advancements=settings.DISABLE_ADVANCEMENTS,
        ),
    )
    logger.info("SheetService initialized.")

    yield

    logger.info("Shutting down...")
    db_session.close()


app = FastAPI(title="Character Sheet Core", lifespan=lifespan)

app.include_router(health_router)
app.include_router(sheet_router)
