"""Review Drip Engine — evaluates drip rows and dispatches the stages that are due.

The engine keeps no state between calls; everything lives in
ReviewRequestStatus / ReviewFollowUpSettings rows.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.app.config import get_settings
from rankitpro.domain.enums import DripStage
from rankitpro.domain.models import CheckIn, ReviewFollowUpSettings, ReviewRequestStatus
from rankitpro.services.drip_dispatcher import StageDispatcher
from rankitpro.services.drip_evaluator import (
    ACTIVE_STATUSES,
    DripIntegrityError,
    evaluate_due_stage,
    next_stage,
    stage_due_at,
)
from rankitpro.services.drip_settings_service import DripSettingsService
from rankitpro.services.notification_sender import NotificationSender
from rankitpro.services.review_request_service import ReviewRequestService

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    """Per-row result of one evaluate-and-dispatch pass."""

    request_id: str
    stage_fired: DripStage | None
    error: str | None = None


class ReviewDripEngine:
    """Entry point for the scheduler and for drip creation."""

    def __init__(self, db: AsyncSession, sender: NotificationSender | None = None):
        self.db = db
        self.settings = get_settings()
        self.dispatcher = StageDispatcher(db, sender)
        self.config_service = DripSettingsService(db)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, state: ReviewRequestStatus, config, now: datetime) -> DripStage | None:
        """Due stage for one row. Raises DripIntegrityError for out-of-order rows."""
        anchor = state.anchor_at or state.created_at
        return evaluate_due_stage(
            state,
            config,
            anchor,
            now,
            retry_base_minutes=self.settings.drip_retry_base_minutes,
            retry_max_minutes=self.settings.drip_retry_max_minutes,
        )

    def describe(self, state: ReviewRequestStatus, config) -> tuple[DripStage | None, datetime | None]:
        """(next stage, earliest due time) for status queries, ignoring send windows."""
        if config is None or not config.is_active:
            return None, None
        stage = next_stage(state, config)
        if stage is None:
            return None, None
        return stage, stage_due_at(state, config, stage, state.anchor_at or state.created_at)

    async def evaluate_and_dispatch_due(
        self,
        states: list[ReviewRequestStatus],
        now: datetime | None = None,
        configs: dict[str, ReviewFollowUpSettings] | None = None,
    ) -> list[DispatchOutcome]:
        """Evaluate each row and dispatch its due stage, if any.

        ``configs`` maps company id to settings; missing entries are loaded.
        A row with no active configuration, or with out-of-order stages, is
        reported with no stage fired and the batch carries on.
        """
        now = now or datetime.now(timezone.utc)
        configs = dict(configs or {})
        outcomes: list[DispatchOutcome] = []

        for state in states:
            if state.company_id not in configs:
                configs[state.company_id] = await self.config_service.get_company_settings(
                    state.company_id, create=False
                )
            config = configs[state.company_id]

            if config is None or not config.is_active:
                logger.info(
                    "No active review drip config for company %s — request %s not evaluated",
                    state.company_id, state.review_request_id,
                )
                outcomes.append(DispatchOutcome(state.review_request_id, None, "config_inactive"))
                continue

            try:
                stage = self.evaluate(state, config, now)
            except DripIntegrityError as e:
                logger.error("Drip integrity violation, row skipped: %s", e)
                outcomes.append(DispatchOutcome(state.review_request_id, None, "integrity_error"))
                continue

            if stage is None:
                outcomes.append(DispatchOutcome(state.review_request_id, None))
                continue

            result = await self.dispatcher.dispatch(state, config, stage, now)
            if result.marked_sent:
                outcomes.append(DispatchOutcome(state.review_request_id, stage))
            else:
                error = result.skipped_reason or ("not_recorded" if result.delivered else "delivery_failed")
                outcomes.append(DispatchOutcome(state.review_request_id, None, error))

        return outcomes

    # ------------------------------------------------------------------
    # Batch processing (scheduler)
    # ------------------------------------------------------------------

    async def pending_states(self, company_id: str) -> list[ReviewRequestStatus]:
        """Drip rows for a company that may still fire a stage."""
        result = await self.db.execute(
            select(ReviewRequestStatus)
            .where(
                ReviewRequestStatus.company_id == company_id,
                ReviewRequestStatus.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(ReviewRequestStatus.created_at)
        )
        return list(result.scalars().all())

    async def process_due(self, now: datetime | None = None) -> dict:
        """Run one pass over every active company's pending drips.

        Failures are isolated per company and reported in the summary.
        """
        now = now or datetime.now(timezone.utc)
        summary = {"companies": 0, "evaluated": 0, "sent": 0, "failed": 0, "errors": {}}

        for config in await self.config_service.active_settings():
            summary["companies"] += 1
            try:
                states = await self.pending_states(config.company_id)
                outcomes = await self.evaluate_and_dispatch_due(
                    states, now, {config.company_id: config}
                )
            except Exception as e:
                logger.error("Review drip processing failed for company %s: %s", config.company_id, e)
                await self.db.rollback()
                summary["errors"][config.company_id] = str(e)
                continue

            summary["evaluated"] += len(outcomes)
            summary["sent"] += sum(1 for o in outcomes if o.stage_fired is not None)
            summary["failed"] += sum(
                1 for o in outcomes if o.error in ("delivery_failed", "no_channel", "integrity_error")
            )

        return summary

    # ------------------------------------------------------------------
    # Drip creation
    # ------------------------------------------------------------------

    async def create_from_check_in(self, check_in: CheckIn) -> ReviewRequestStatus | None:
        """Issue a review request for a check-in if the company's targeting allows it."""
        config = await self.config_service.get_company_settings(check_in.company_id)
        state = await ReviewRequestService(self.db).create_from_check_in(check_in, config)
        await self.db.commit()
        return state
