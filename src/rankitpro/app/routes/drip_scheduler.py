"""Review drip cron endpoint — called by an external scheduler."""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.app.config import get_settings
from rankitpro.infra.database import get_db

logger = logging.getLogger(__name__)


async def verify_internal_token(x_internal_token: str = Header(...)):
    """Verify that the request includes a valid internal auth token."""
    settings = get_settings()
    if x_internal_token != settings.internal_token:
        raise HTTPException(status_code=401, detail="Invalid internal token")


router = APIRouter(
    prefix="/api/internal/scheduler",
    tags=["review-drip-scheduler"],
    dependencies=[Depends(verify_internal_token)],
)


@router.post("/review-drip-tick")
async def review_drip_tick(db: AsyncSession = Depends(get_db)):
    """Evaluate every pending drip and send the stages that are due."""
    from rankitpro.services.drip_scheduler import DripScheduler

    scheduler = DripScheduler(db)
    results = await scheduler.tick()

    logger.info("Review drip scheduler tick: %s", results)
    return {"ok": True, "results": results}
