"""FastAPI application entry point."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from app.core.config import settings
from app.core.structured_logging import configure_logging
from app.db.session import engine
from app.services.automation_triggers import event_queue

configure_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Trigger helpers enqueue onto the running loop; drain before shutdown
    await event_queue.start()
    try:
        yield
    finally:
        await event_queue.stop(drain=True)


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Pipeline Automation API",
    description="Rules, drip sequences and action items for the caregiver and client pipelines",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# ============================================================================
# Routers
# ============================================================================

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
from app.routers import internal
app.include_router(internal.router)

# Automation admin (enrollments, execution log, action items)
from app.routers import automations
app.include_router(automations.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
