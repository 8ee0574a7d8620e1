"""Drip Stats Service — per-company review drip outcomes.

Reads ReviewRequestStatus rows only; nothing here writes.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.domain.enums import DripStage, DripStatus
from rankitpro.domain.models import Company, ReviewRequestStatus
from rankitpro.domain.schemas import DripStatsResponse
from rankitpro.services.drip_evaluator import STAGE_ORDER, as_utc, is_stage_sent
from rankitpro.services.drip_settings_service import CompanyNotFoundError

logger = logging.getLogger(__name__)

RRS = ReviewRequestStatus


def converting_stage(state) -> DripStage:
    """Last stage sent before the review came in. Reviews before any send count as INITIAL."""
    last = DripStage.INITIAL
    for stage in STAGE_ORDER:
        if is_stage_sent(state, stage):
            last = stage
    return last


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


class DripStatsService:
    """Aggregates drip rows into the numbers shown on the review dashboard."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count(self, company_id: str, *criteria) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(RRS).where(RRS.company_id == company_id, *criteria)
        )
        return result.scalar() or 0

    async def company_stats(self, company_id: str) -> DripStatsResponse:
        """Totals, click and conversion rates, time to conversion and converting stage."""
        if await self.db.get(Company, company_id) is None:
            raise CompanyNotFoundError(company_id)

        total = await self._count(company_id)
        sent = await self._count(company_id, RRS.initial_request_sent == True)  # noqa: E712
        clicked = await self._count(
            company_id,
            RRS.initial_request_sent == True,  # noqa: E712
            RRS.link_clicked == True,  # noqa: E712
        )
        unsubscribed = await self._count(company_id, RRS.status == DripStatus.UNSUBSCRIBED.value)

        # Completed rows carry the timestamps needed for time to conversion
        result = await self.db.execute(
            select(RRS).where(RRS.company_id == company_id, RRS.review_submitted == True)  # noqa: E712
        )
        completed = list(result.scalars().all())

        by_step = {stage.value: 0 for stage in STAGE_ORDER}
        conversion_hours = []
        for state in completed:
            by_step[converting_stage(state).value] += 1
            sent_at = as_utc(state.initial_request_sent_at)
            submitted_at = as_utc(state.review_submitted_at)
            if sent_at and submitted_at and submitted_at >= sent_at:
                conversion_hours.append((submitted_at - sent_at).total_seconds() / 3600)

        avg_hours = sum(conversion_hours) / len(conversion_hours) if conversion_hours else 0.0

        logger.debug(
            "Drip stats for company %s: %d requests, %d sent, %d completed",
            company_id, total, sent, len(completed),
        )
        return DripStatsResponse(
            company_id=company_id,
            total_requests=total,
            sent_requests=sent,
            clicked_requests=clicked,
            completed_requests=len(completed),
            unsubscribed_requests=unsubscribed,
            click_rate=_rate(clicked, sent),
            conversion_rate=_rate(len(completed), sent),
            avg_hours_to_conversion=round(avg_hours, 2),
            by_follow_up_step=by_step,
        )
