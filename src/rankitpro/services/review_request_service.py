"""Review Request Service — issues review requests and starts their drips."""
import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.app.config import get_settings
from rankitpro.domain.enums import DripStatus, ReviewRequestMethod, ReviewRequestState
from rankitpro.domain.models import (
    CheckIn,
    ReviewFollowUpSettings,
    ReviewRequest,
    ReviewRequestStatus,
)

logger = logging.getLogger(__name__)


class ReviewRequestNotFoundError(Exception):
    """Raised when a review request (or its drip state) cannot be found."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Review request not found: {key}")


def review_link(token: str) -> str:
    """Public review link for a request token."""
    frontend_url = get_settings().frontend_url.rstrip("/")
    return f"{frontend_url}/review/{token}"


def skip_reason(check_in: CheckIn, settings: ReviewFollowUpSettings | None) -> str | None:
    """Return why a check-in should not get a review request, or None if it should.

    Applies the company's targeting filters: service types, minimum invoice
    amount and "positive experiences only".
    """
    if settings is None or not settings.is_active:
        return "automation_inactive"

    if not check_in.customer_name or not (check_in.customer_email or check_in.customer_phone):
        return "missing_contact"

    service_types = settings.target_service_types or []
    if service_types and check_in.job_type not in service_types:
        return "service_type_not_targeted"

    minimum = Decimal(str(settings.target_minimum_invoice_amount or 0))
    if minimum > 0:
        amount = check_in.invoice_amount
        if amount is None or Decimal(str(amount)) < minimum:
            return "below_minimum_invoice"

    if settings.target_positive_experiences_only and check_in.positive_experience is not True:
        return "not_positive_experience"

    return None


class ReviewRequestService:
    """Creates ReviewRequest + ReviewRequestStatus rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_from_check_in(
        self,
        check_in: CheckIn,
        settings: ReviewFollowUpSettings | None,
    ) -> ReviewRequestStatus | None:
        """Issue a review request for a service visit and start its drip.

        Returns the new drip state, or None if targeting rules skip the visit.
        A check-in that already has a drip returns the existing one.
        """
        reason = skip_reason(check_in, settings)
        if reason:
            logger.info("No review request for check-in %s: %s", check_in.id, reason)
            return None

        existing = await self.db.execute(
            select(ReviewRequestStatus).where(ReviewRequestStatus.check_in_id == check_in.id)
        )
        state = existing.scalar_one_or_none()
        if state is not None:
            return state

        return await self.create(
            company_id=check_in.company_id,
            technician_id=check_in.technician_id,
            customer_name=check_in.customer_name,
            customer_email=check_in.customer_email,
            customer_phone=check_in.customer_phone,
            job_type=check_in.job_type,
            check_in_id=check_in.id,
            anchor_at=check_in.completed_at or check_in.created_at,
        )

    async def create(
        self,
        company_id: str,
        technician_id: str,
        customer_name: str,
        customer_email: str | None = None,
        customer_phone: str | None = None,
        job_type: str | None = None,
        check_in_id: str | None = None,
        anchor_at: datetime | None = None,
    ) -> ReviewRequestStatus:
        """Create a review request and its pending drip state."""
        if not (customer_email or customer_phone):
            raise ValueError("A review request needs an email or a phone number")

        now = datetime.now(timezone.utc)
        request = ReviewRequest(
            company_id=company_id,
            technician_id=technician_id,
            customer_name=customer_name,
            email=customer_email,
            phone=customer_phone,
            method=(ReviewRequestMethod.EMAIL if customer_email else ReviewRequestMethod.SMS).value,
            job_type=job_type,
            token=secrets.token_urlsafe(32),
            status=ReviewRequestState.PENDING.value,
            created_at=now,
        )
        self.db.add(request)
        await self.db.flush()

        state = ReviewRequestStatus(
            review_request_id=request.id,
            check_in_id=check_in_id,
            company_id=company_id,
            technician_id=technician_id,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            anchor_at=anchor_at or now,
            status=DripStatus.PENDING.value,
            created_at=now,
        )
        self.db.add(state)
        await self.db.flush()

        logger.info(
            "Review request %s created for %s (token %s...)",
            request.id, customer_name, request.token[:8],
        )
        return state

    async def get_state(self, request_id: str) -> ReviewRequestStatus:
        """Drip state for a review request id. Raises ReviewRequestNotFoundError."""
        result = await self.db.execute(
            select(ReviewRequestStatus).where(ReviewRequestStatus.review_request_id == request_id)
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise ReviewRequestNotFoundError(request_id)
        return state

    async def get_state_by_token(self, token: str) -> ReviewRequestStatus:
        """Drip state for a public review token. Raises ReviewRequestNotFoundError."""
        result = await self.db.execute(
            select(ReviewRequestStatus)
            .join(ReviewRequest, ReviewRequest.id == ReviewRequestStatus.review_request_id)
            .where(ReviewRequest.token == token)
        )
        state = result.scalar_one_or_none()
        if state is None:
            raise ReviewRequestNotFoundError(f"token {token[:8]}...")
        return state
