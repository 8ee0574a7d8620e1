"""Drip Scheduler — periodic entry point for the review drip."""
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class DripScheduler:
    """Runs the periodic review-drip pass."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def tick(self, now: datetime | None = None) -> dict:
        """Run all scheduled drip tasks. Called by the cron endpoint and the lifespan loop.

        Returns summary of actions taken.
        """
        from rankitpro.services.drip_engine import ReviewDripEngine

        now = now or datetime.now(timezone.utc)
        results = {}

        try:
            summary = await ReviewDripEngine(self.db).process_due(now)
            results["drips_evaluated"] = summary["evaluated"]
            results["stages_sent"] = summary["sent"]
            results["stages_failed"] = summary["failed"]
            if summary["errors"]:
                results["company_errors"] = summary["errors"]
        except Exception as e:
            logger.error("process_due failed: %s", e)
            results["drip_error"] = str(e)

        await self.db.commit()

        return results
