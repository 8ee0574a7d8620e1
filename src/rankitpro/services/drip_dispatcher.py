"""Stage Dispatcher — turns a due stage into one delivery attempt and a state update.

Ordering per row:
1. Claim the row with a compare-and-set (stage unsent, status active, no live
   claim) and commit, so a concurrent tick cannot send the same stage.
2. Send on every applicable channel.
3. If any channel was accepted, mark the stage sent (second compare-and-set on
   the claim token). Otherwise bump the failure counters. Either way the claim
   is released.
"""
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.app.config import get_settings
from rankitpro.domain.drip_templates import (
    EMAIL_TEMPLATES,
    SMS_OPT_OUT_LINE,
    SMS_TEMPLATES,
    SUBJECT_TEMPLATES,
)
from rankitpro.domain.enums import Channel, DripStage, DripStatus, ReviewRequestState
from rankitpro.domain.models import (
    CheckIn,
    Company,
    ReviewRequest,
    ReviewRequestStatus,
    Technician,
)
from rankitpro.services.drip_evaluator import ACTIVE_STATUSES, SENT_FIELDS
from rankitpro.services.notification_sender import DeliveryResult, NotificationSender
from rankitpro.services.review_request_service import review_link

logger = logging.getLogger(__name__)

S = DripStage
RRS = ReviewRequestStatus

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

# stage -> (message column, subject column) on ReviewFollowUpSettings
COPY_FIELDS: dict[DripStage, tuple[str, str]] = {
    S.INITIAL: ("initial_message", "initial_subject"),
    S.FIRST_FOLLOW_UP: ("first_follow_up_message", "first_follow_up_subject"),
    S.SECOND_FOLLOW_UP: ("second_follow_up_message", "second_follow_up_subject"),
    S.FINAL_FOLLOW_UP: ("final_follow_up_message", "final_follow_up_subject"),
}

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


def render_template(template: str, variables: dict[str, str]) -> str:
    """Fill {{name}} placeholders. Unknown placeholders are left untouched."""
    def _sub(match: re.Match) -> str:
        key = match.group(1)
        value = variables.get(key)
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)


def stage_copy(config, stage: DripStage) -> tuple[str, str]:
    """(message, subject) templates for a stage, falling back to the defaults."""
    message_field, subject_field = COPY_FIELDS[stage]
    message = getattr(config, message_field, None) or EMAIL_TEMPLATES[stage]
    subject = getattr(config, subject_field, None) or SUBJECT_TEMPLATES[stage]
    return message, subject


@dataclass
class OutboundMessage:
    channel: Channel
    recipient: str
    subject: str | None
    body: str


@dataclass
class DispatchResult:
    """What happened to one due stage."""

    state_id: str
    stage: DripStage | None
    marked_sent: bool = False
    deliveries: list[DeliveryResult] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def delivered(self) -> bool:
        return any(d.ok for d in self.deliveries)


class StageDispatcher:
    """Sends a due drip stage at most once per row and records it."""

    def __init__(self, db: AsyncSession, sender: NotificationSender | None = None):
        self.db = db
        self.sender = sender or NotificationSender()
        self.settings = get_settings()

    async def dispatch(
        self,
        state: ReviewRequestStatus,
        config,
        stage: DripStage | None,
        now: datetime | None = None,
    ) -> DispatchResult:
        """Deliver ``stage`` for ``state`` and persist the outcome.

        A None stage is a no-op. Returns a DispatchResult; never raises for
        delivery failures.
        """
        if stage is None:
            return DispatchResult(state.id, None, skipped_reason="not_due")

        now = now or datetime.now(timezone.utc)
        token = await self._claim(state, stage, now)
        if token is None:
            logger.info(
                "Drip %s stage %s already sent or claimed elsewhere — skipping",
                state.id, stage.value,
            )
            return DispatchResult(state.id, stage, skipped_reason="claimed")

        result = DispatchResult(state.id, stage)
        try:
            messages = await self._build_messages(state, config, stage)
            if not messages:
                logger.warning(
                    "Drip %s stage %s has no usable channel (email=%s sms=%s)",
                    state.id, stage.value, bool(state.customer_email), bool(state.customer_phone),
                )
                result.skipped_reason = "no_channel"

            for message in messages:
                delivery = await self.sender.send(
                    message.channel, message.recipient, message.subject, message.body
                )
                result.deliveries.append(delivery)
                if not delivery.ok:
                    logger.warning(
                        "Drip %s stage %s %s delivery failed: %s",
                        state.id, stage.value, message.channel.value, delivery.error,
                    )
        finally:
            if result.delivered:
                result.marked_sent = await self._mark_sent(state, stage, token, now)
            else:
                await self._record_failure(state, token, now)
            await self.db.commit()
            await self.db.refresh(state)

        if result.marked_sent:
            logger.info(
                "Drip %s stage %s sent via %s",
                state.id, stage.value,
                ",".join(d.channel.value for d in result.deliveries if d.ok),
            )
        return result

    # ------------------------------------------------------------------
    # Row claim / mark
    # ------------------------------------------------------------------

    async def _claim(self, state: ReviewRequestStatus, stage: DripStage, now: datetime) -> str | None:
        """Compare-and-set a dispatch claim on the row. Returns the claim token or None."""
        sent_col = getattr(RRS, SENT_FIELDS[stage][0])
        lease_cutoff = now - timedelta(minutes=self.settings.drip_claim_lease_minutes)
        token = str(uuid.uuid4())

        result = await self.db.execute(
            update(RRS)
            .where(
                RRS.id == state.id,
                sent_col == False,  # noqa: E712
                RRS.status.in_(_ACTIVE_VALUES),
                or_(RRS.dispatch_token.is_(None), RRS.dispatch_claimed_at < lease_cutoff),
            )
            .values(dispatch_token=token, dispatch_claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return token if result.rowcount == 1 else None

    async def _mark_sent(
        self, state: ReviewRequestStatus, stage: DripStage, token: str, now: datetime
    ) -> bool:
        """Record the stage as sent, only if we still hold the claim and the row is active."""
        flag_field, at_field = SENT_FIELDS[stage]
        sent_col = getattr(RRS, flag_field)

        result = await self.db.execute(
            update(RRS)
            .where(
                RRS.id == state.id,
                RRS.dispatch_token == token,
                sent_col == False,  # noqa: E712
                RRS.status.in_(_ACTIVE_VALUES),
            )
            .values(
                {
                    flag_field: True,
                    at_field: now,
                    "status": case(
                        (RRS.status == DripStatus.PENDING.value, DripStatus.IN_PROGRESS.value),
                        else_=RRS.status,
                    ),
                    "dispatch_token": None,
                    "dispatch_claimed_at": None,
                    "failed_attempts": 0,
                    "last_failed_at": None,
                }
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Unsubscribed or completed while the send was in flight
            logger.warning(
                "Drip %s stage %s delivered but not recorded (row no longer active)",
                state.id, stage.value,
            )
            await self._release(state, token)
            return False

        if stage == S.INITIAL:
            await self.db.execute(
                update(ReviewRequest)
                .where(ReviewRequest.id == state.review_request_id)
                .values(status=ReviewRequestState.SENT.value, sent_at=now)
                .execution_options(synchronize_session=False)
            )
        return True

    async def _record_failure(self, state: ReviewRequestStatus, token: str, now: datetime) -> None:
        await self.db.execute(
            update(RRS)
            .where(RRS.id == state.id, RRS.dispatch_token == token)
            .values(
                failed_attempts=RRS.failed_attempts + 1,
                last_failed_at=now,
                dispatch_token=None,
                dispatch_claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def _release(self, state: ReviewRequestStatus, token: str) -> None:
        await self.db.execute(
            update(RRS)
            .where(RRS.id == state.id, RRS.dispatch_token == token)
            .values(dispatch_token=None, dispatch_claimed_at=None)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Message rendering
    # ------------------------------------------------------------------

    async def _build_messages(
        self, state: ReviewRequestStatus, config, stage: DripStage
    ) -> list[OutboundMessage]:
        """Render the stage for every channel the config and contact details allow."""
        variables = await self._template_variables(state)
        if variables is None:
            logger.error("Drip %s has no review request row — cannot build link", state.id)
            return []

        messages: list[OutboundMessage] = []
        if config.enable_email_requests and state.customer_email:
            body_template, subject_template = stage_copy(config, stage)
            messages.append(
                OutboundMessage(
                    Channel.EMAIL,
                    state.customer_email,
                    render_template(subject_template, variables),
                    render_template(body_template, variables),
                )
            )
        if config.enable_sms_requests and state.customer_phone:
            body = render_template(SMS_TEMPLATES[stage], variables)
            messages.append(
                OutboundMessage(Channel.SMS, state.customer_phone, None, f"{body} {SMS_OPT_OUT_LINE}")
            )
        return messages

    async def _template_variables(self, state: ReviewRequestStatus) -> dict[str, str] | None:
        review_request = await self.db.get(ReviewRequest, state.review_request_id)
        if review_request is None:
            return None
        company = await self.db.get(Company, state.company_id)
        technician = await self.db.get(Technician, state.technician_id)
        check_in = await self.db.get(CheckIn, state.check_in_id) if state.check_in_id else None

        return {
            "customerName": state.customer_name,
            "companyName": company.name if company else "",
            "technicianName": technician.name if technician else "our technician",
            "serviceType": (check_in.job_type if check_in else review_request.job_type) or "service",
            "location": (check_in.city if check_in else None) or "your area",
            "reviewLink": review_link(review_request.token),
        }
