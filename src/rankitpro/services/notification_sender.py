"""Notification sender — one delivery attempt per channel for a drip message."""

import logging
from dataclasses import dataclass

from rankitpro.domain.enums import Channel
from rankitpro.services import email_service
from rankitpro.services.sms_service import SMSService

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of a single send. ``ok`` means the provider accepted the message."""

    channel: Channel
    recipient: str
    ok: bool
    error: str | None = None


class NotificationSender:
    """Delivers rendered drip messages by email (SendGrid) or SMS (Aircall)."""

    def __init__(self, sms_service: SMSService | None = None):
        self.sms_service = sms_service or SMSService()

    async def send(
        self,
        channel: Channel,
        recipient: str,
        subject: str | None,
        body: str,
    ) -> DeliveryResult:
        """Send once on ``channel``. Never raises; failures come back as ok=False."""
        try:
            if channel == Channel.EMAIL:
                accepted = await email_service.send_review_email(recipient, subject or "", body)
                return DeliveryResult(
                    channel, recipient, accepted, None if accepted else "email_not_accepted"
                )

            result = await self.sms_service.send_sms(recipient, body)
            if result.get("ok"):
                return DeliveryResult(channel, recipient, True)
            return DeliveryResult(channel, recipient, False, result.get("error") or "sms_failed")
        except Exception as e:
            logger.error("Notification send failed (%s to %s): %s", channel.value, recipient, e)
            return DeliveryResult(channel, recipient, False, str(e))
