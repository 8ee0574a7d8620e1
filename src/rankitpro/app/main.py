"""FastAPI application entry point for the Rank It Pro review drip API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rankitpro.app.config import get_settings
from rankitpro.infra.database import init_db, session_scope
from rankitpro.services.drip_scheduler import DripScheduler

logger = logging.getLogger(__name__)


async def drip_loop():
    """Run the review drip pass every ``drip_poll_interval_minutes``."""
    interval = get_settings().drip_poll_interval_minutes
    while True:
        try:
            async with session_scope() as db:
                results = await DripScheduler(db).tick()
                if results.get("stages_sent"):
                    logger.info("Review drip: sent %d stages", results["stages_sent"])
        except Exception as e:
            logger.error("Review drip loop error: %s", e)
        await asyncio.sleep(interval * 60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and start the drip loop."""
    await init_db()

    task = None
    if get_settings().drip_loop_enabled:
        task = asyncio.create_task(drip_loop())
    yield
    if task is not None:
        task.cancel()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Rank It Pro Review Drip API",
    lifespan=lifespan,
    debug=settings.debug,
)

_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from rankitpro.app.routes.drip_scheduler import router as drip_scheduler_router
from rankitpro.app.routes.review_requests import router as review_requests_router, check_in_router
from rankitpro.app.routes.review_settings import router as review_settings_router

app.include_router(drip_scheduler_router)
app.include_router(review_requests_router)
app.include_router(check_in_router)
app.include_router(review_settings_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "rankitpro"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "rankitpro.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
