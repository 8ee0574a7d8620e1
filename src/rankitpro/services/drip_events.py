"""Drip event ingestion — link clicks, review submissions and unsubscribes.

Every event is idempotent: applying it twice leaves the row as applying it once.
Each transition is a conditional UPDATE on the stored row: an event never
overwrites a state the row has already left, even when another session
applied a conflicting event after this one loaded the row.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from rankitpro.domain.enums import DripStatus
from rankitpro.domain.models import ReviewRequest, ReviewRequestStatus, ReviewResponse
from rankitpro.services.drip_evaluator import ACTIVE_STATUSES, drip_status
from rankitpro.services.review_request_service import ReviewRequestService

logger = logging.getLogger(__name__)

RRS = ReviewRequestStatus

MIN_RATING = 1
MAX_RATING = 5

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


class ReviewAfterUnsubscribeError(Exception):
    """Raised when a review is submitted for a drip the customer unsubscribed from."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Review request {request_id} is unsubscribed; review not accepted")


class DripEventService:
    """Applies customer-initiated events to drip state."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.requests = ReviewRequestService(db)

    async def _resolve(self, request_id: str | None = None, token: str | None = None) -> ReviewRequestStatus:
        if token is not None:
            return await self.requests.get_state_by_token(token)
        return await self.requests.get_state(request_id)

    async def _transition(self, state: ReviewRequestStatus, *criteria, **values) -> bool:
        """Apply ``values`` to the row only if ``criteria`` still hold in the database.

        On success the loaded object takes the new values; otherwise it is left
        untouched and the caller decides what the current row means.
        """
        result = await self.db.execute(
            update(RRS)
            .where(RRS.id == state.id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        for key, value in values.items():
            set_committed_value(state, key, value)
        return True

    async def _reload(self, state: ReviewRequestStatus) -> ReviewRequestStatus:
        await self.db.commit()
        await self.db.refresh(state)
        return state

    async def record_link_click(
        self,
        request_id: str | None = None,
        click_time: datetime | None = None,
        token: str | None = None,
    ) -> ReviewRequestStatus:
        """Record the first click on the review link. Later clicks change nothing."""
        state = await self._resolve(request_id, token)
        applied = await self._transition(
            state,
            RRS.link_clicked == False,  # noqa: E712
            link_clicked=True,
            link_clicked_at=click_time or datetime.now(timezone.utc),
        )
        if not applied:
            return await self._reload(state)

        await self.db.commit()
        logger.info("Review link clicked: request=%s", state.review_request_id)
        return state

    async def record_review_submission(
        self,
        request_id: str | None = None,
        rating: int = 5,
        submit_time: datetime | None = None,
        feedback: str | None = None,
        token: str | None = None,
    ) -> ReviewRequestStatus:
        """Complete the drip with a submitted review.

        Raises ReviewAfterUnsubscribeError if the customer already unsubscribed,
        ValueError for a rating outside 1-5. A repeat submission is a no-op.
        """
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

        state = await self._resolve(request_id, token)
        submit_time = submit_time or datetime.now(timezone.utc)
        applied = await self._transition(
            state,
            RRS.review_submitted == False,  # noqa: E712
            RRS.status.in_(_ACTIVE_VALUES),
            review_submitted=True,
            review_submitted_at=submit_time,
            status=DripStatus.COMPLETED.value,
            completed_at=submit_time,
        )
        if not applied:
            await self._reload(state)
            if drip_status(state) == DripStatus.UNSUBSCRIBED:
                raise ReviewAfterUnsubscribeError(state.review_request_id)
            return state

        request = await self.db.get(ReviewRequest, state.review_request_id)
        self.db.add(
            ReviewResponse(
                review_request_id=state.review_request_id,
                rating=rating,
                feedback=feedback,
                customer_name=state.customer_name,
                technician_id=state.technician_id,
                company_id=request.company_id if request else state.company_id,
                responded_at=submit_time,
            )
        )
        await self.db.commit()
        logger.info("Review submitted: request=%s rating=%d", state.review_request_id, rating)
        return state

    async def record_unsubscribe(
        self,
        request_id: str | None = None,
        unsubscribe_time: datetime | None = None,
        token: str | None = None,
    ) -> ReviewRequestStatus:
        """Stop the drip. Completed drips stay completed; repeats are no-ops."""
        state = await self._resolve(request_id, token)
        applied = await self._transition(
            state,
            RRS.status.in_(_ACTIVE_VALUES),
            status=DripStatus.UNSUBSCRIBED.value,
            unsubscribed_at=unsubscribe_time or datetime.now(timezone.utc),
        )
        if not applied:
            return await self._reload(state)

        await self.db.commit()
        logger.info("Review drip unsubscribed: request=%s", state.review_request_id)
        return state

    async def get_responses(self, request_id: str) -> list[ReviewResponse]:
        result = await self.db.execute(
            select(ReviewResponse).where(ReviewResponse.review_request_id == request_id)
        )
        return list(result.scalars().all())
