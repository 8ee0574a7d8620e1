"""SMS delivery for review-request texts via the Aircall Public API.

Outbound texts go to POST /v1/numbers/{number_id}/messages/send with Basic
Auth. The sending number must be in Public API mode.
"""

import asyncio
import base64
import logging
import re

import httpx

from rankitpro.app.config import get_settings

logger = logging.getLogger(__name__)

AIRCALL_BASE_URL = "https://api.aircall.io/v1"

# CloudFront in front of Aircall intermittently answers 403; those are retried
MAX_ATTEMPTS = 3
RETRY_WAIT_SECONDS = 5


def normalize_phone(phone: str | None, default_country_code: str = "1") -> str | None:
    """Normalize a customer phone to E.164 (``+15551234567``).

    Check-in phones are typed by technicians, so punctuation and a missing
    country code are common. Returns None if the number cannot be used.
    """
    if not phone:
        return None

    cleaned = re.sub(r"[^\d+]", "", phone.strip())
    if cleaned.startswith("+"):
        digits = cleaned[1:]
    elif cleaned.startswith("00"):
        digits = cleaned[2:]
    elif len(cleaned) == 10:
        digits = default_country_code + cleaned
    else:
        digits = cleaned

    if not digits.isdigit() or not 8 <= len(digits) <= 15:
        return None
    return f"+{digits}"


class SMSService:
    """Sends review-request texts from the company's Aircall number."""

    def __init__(self):
        self.settings = get_settings()

    @property
    def configured(self) -> bool:
        """True when Aircall credentials and a sending number are set."""
        return bool(
            self.settings.aircall_api_id
            and self.settings.aircall_api_token
            and self.settings.aircall_number_id
        )

    def _auth_header(self) -> str:
        credentials = f"{self.settings.aircall_api_id}:{self.settings.aircall_api_token}"
        return "Basic " + base64.b64encode(credentials.encode()).decode()

    async def send_sms(self, to_number: str, message: str) -> dict:
        """Send one text.

        Returns ``{"ok": True, ...}`` with the Aircall response body on
        success, or ``{"ok": False, "error": <code>}``. Never raises.
        """
        if not self.configured:
            logger.warning("Aircall SMS not configured — review text not sent to %s", to_number)
            return {"ok": False, "error": "aircall_not_configured"}

        recipient = normalize_phone(to_number)
        if recipient is None:
            logger.warning("Unusable phone number for review text: %r", to_number)
            return {"ok": False, "error": "invalid_phone"}

        url = f"{AIRCALL_BASE_URL}/numbers/{self.settings.aircall_number_id}/messages/send"
        return await self._post_message(url, recipient, message)

    async def _post_message(self, url: str, to_number: str, message: str) -> dict:
        headers = {"Authorization": self._auth_header(), "Accept": "application/json"}
        payload = {"to": to_number, "body": message}

        logger.info("Aircall send: to=%s msg_len=%d", to_number, len(message))

        async with httpx.AsyncClient(timeout=30.0) as client:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                try:
                    resp = await client.post(url, json=payload, headers=headers)
                except httpx.TimeoutException:
                    logger.error("Aircall request timed out for %s", to_number)
                    return {"ok": False, "error": "timeout"}
                except httpx.HTTPError as e:
                    logger.error("Aircall request error: %s", e)
                    return {"ok": False, "error": str(e)}

                if resp.is_success:
                    try:
                        data = resp.json()
                    except ValueError:
                        data = {"raw": resp.text}
                    logger.info("Review text sent to %s (status=%d)", to_number, resp.status_code)
                    return {"ok": True, **data} if isinstance(data, dict) else {"ok": True, "raw": data}

                if resp.status_code == 403 and attempt < MAX_ATTEMPTS:
                    wait = RETRY_WAIT_SECONDS * attempt
                    logger.warning(
                        "Aircall 403, retrying in %ds (attempt %d/%d): %s",
                        wait, attempt, MAX_ATTEMPTS, resp.text[:300],
                    )
                    await asyncio.sleep(wait)
                    continue

                logger.error("Aircall SMS failed (%d): %s", resp.status_code, resp.text[:300])
                return {"ok": False, "error": f"http_{resp.status_code}", "status": resp.status_code}

        return {"ok": False, "error": "max_retries"}
