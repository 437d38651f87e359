from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from app.core.logging import configure_logging
from app.core.middleware import OrganizationMiddleware
from app.core.policy import load_policy
from app.db.base import Base
from app.db.session import engine, SessionLocal

# Register models
from app.db import models  # noqa: F401

from app.events.bus import COGNITIVE_PREFIX
from app.events.dispatcher import register_handler
from services.admin.events_api import router as events_admin_router
from services.cognitive.api import router as cognitive_router
from services.cognitive.engine import CognitiveEngine
from services.inventory.api import router as inventory_router
from services.production.api import router as production_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Production Settlement Engine")
app.add_middleware(OrganizationMiddleware)

app.include_router(production_router)
app.include_router(inventory_router)
app.include_router(cognitive_router)
app.include_router(events_admin_router)

cognitive_engine = CognitiveEngine(SessionLocal, load_policy())
register_handler(COGNITIVE_PREFIX, cognitive_engine.handle_outbox_event)


@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)

    # Outbox dispatcher feeds the cognitive engine and webhook subscribers in-process.
    from app.events.dispatcher import run_dispatcher_forever

    asyncio.create_task(run_dispatcher_forever(poll_interval_seconds=1.0))
    logger.info("dispatcher started")


@app.get("/health")
def health():
    return {"ok": True}
