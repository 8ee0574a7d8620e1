"""SendGrid email service for review-request emails.

Uses asyncio.to_thread to wrap the synchronous SendGrid client.
"""

import asyncio
import html
import logging
import re

import sendgrid
from sendgrid.helpers.mail import Email, HtmlContent, Mail, To

logger = logging.getLogger(__name__)

_BREAK_RE = re.compile(r"<br\s*/?>|</p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>?")
_SPACE_RE = re.compile(r"[ \t]+")


# ---------------------------------------------------------------------------
# Configuration, read from Pydantic settings (which loads .env)
# ---------------------------------------------------------------------------


def _get_config():
    """Get email config from app settings (lazy to avoid import-time issues)."""
    from rankitpro.app.config import get_settings
    s = get_settings()
    return s.sendgrid_api_key, s.review_from_email, s.review_from_name


def _get_client() -> sendgrid.SendGridAPIClient:
    """Return a configured SendGrid API client."""
    api_key, _, _ = _get_config()
    return sendgrid.SendGridAPIClient(api_key=api_key)


def strip_html(markup: str) -> str:
    """Plain-text fallback for an HTML body."""
    text = _BREAK_RE.sub("\n", markup)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    lines = [_SPACE_RE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(lines).strip()


def text_to_html(body: str) -> str:
    """Wrap a plain-text template body as minimal HTML, keeping paragraphs."""
    if "<" in body and ">" in body:
        return body
    paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()]
    return "".join(
        "<p>{}</p>".format(html.escape(p).replace("\n", "<br>")) for p in paragraphs
    )


def _send_mail(mail: Mail) -> bool:
    """Send a Mail object synchronously. Returns True on 2xx."""
    client = _get_client()
    response = client.send(mail)
    if response.status_code in (200, 201, 202):
        return True
    logger.error(
        "SendGrid returned status %s: %s",
        response.status_code,
        response.body,
    )
    return False


# ---------------------------------------------------------------------------
# Public async API
# ---------------------------------------------------------------------------


async def send_review_email(to_email: str, subject: str, body: str) -> bool:
    """Send a review-request email with an HTML body and plain-text fallback.

    Args:
        to_email: Recipient email address.
        subject: Rendered subject line.
        body: Rendered template body (plain text or HTML).

    Returns:
        True if SendGrid accepted the message, False otherwise.
    """
    api_key, from_email, from_name = _get_config()
    if not api_key:
        logger.warning("SENDGRID_API_KEY not set — skipping review email to %s", to_email)
        return False

    try:
        html_body = text_to_html(body)
        mail = Mail(
            from_email=Email(from_email, from_name),
            to_emails=To(to_email),
            subject=subject,
            plain_text_content=strip_html(html_body),
            html_content=HtmlContent(html_body),
        )
        result = await asyncio.to_thread(_send_mail, mail)
        if result:
            logger.info("Review email sent to %s", to_email)
        return result
    except Exception:
        logger.exception("Failed to send review email to %s", to_email)
        return False
