"""Company review follow-up settings and drip statistics routes."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.domain.schemas import DripStatsResponse, ReviewSettingsResponse, ReviewSettingsUpdate
from rankitpro.infra.database import get_db
from rankitpro.services.drip_settings_service import CompanyNotFoundError, DripSettingsService
from rankitpro.services.drip_stats import DripStatsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/companies", tags=["review-settings"])


@router.get("/{company_id}/review-settings", response_model=ReviewSettingsResponse)
async def get_review_settings(company_id: str, db: AsyncSession = Depends(get_db)):
    """Current settings; the defaults are saved on first read."""
    try:
        settings = await DripSettingsService(db).get_company_settings(company_id)
    except CompanyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await db.commit()
    return settings


@router.put("/{company_id}/review-settings", response_model=ReviewSettingsResponse)
async def update_review_settings(
    company_id: str,
    body: ReviewSettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Merge a partial update onto the company's settings."""
    try:
        return await DripSettingsService(db).update_company_settings(company_id, body)
    except CompanyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        await db.rollback()
        raise HTTPException(
            status_code=422,
            detail=[{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()],
        )


@router.get("/{company_id}/review-stats", response_model=DripStatsResponse)
async def get_review_stats(company_id: str, db: AsyncSession = Depends(get_db)):
    """Drip outcomes for the company: sent, clicked, reviewed, and how fast."""
    try:
        return await DripStatsService(db).company_stats(company_id)
    except CompanyNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
