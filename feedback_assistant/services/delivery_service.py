"""Outbound delivery of assistant answers (email via Resend, Slack via the Web API)."""

from __future__ import annotations

import html
import logging

import anyio
import httpx
import resend

from feedback_assistant.core.config import settings
from feedback_assistant.db.enums import DeliveryMethod

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"
SLACK_TEXT_LIMIT = 3900


class DeliveryFailure(Exception):
    """An answer was produced but could not be delivered on one or more channels."""

    def __init__(self, message: str, delivered: list[str] | None = None):
        super().__init__(message)
        self.delivered = delivered or []


def _mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    return f"{local[:3]}...@{domain}" if domain else f"{local[:3]}..."


def render_email_html(subject: str, body: str, link: str | None = None) -> str:
    paragraphs = [p.strip() for p in body.split("\n\n") if p.strip()]
    rendered = "".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>" for p in paragraphs
    )
    footer = (
        f'<p><a href="{html.escape(link, quote=True)}">Open the conversation</a></p>' if link else ""
    )
    return f"<h2>{html.escape(subject)}</h2>{rendered}{footer}"


async def send_email(recipient: str, subject: str, body: str, link: str | None = None) -> str | None:
    """Send an answer by email. Returns the provider message id."""
    if not settings.RESEND_API_KEY:
        raise DeliveryFailure("Email delivery is not configured")
    if not recipient:
        raise DeliveryFailure("No email recipient on file")

    resend.api_key = settings.RESEND_API_KEY
    params = {
        "from": settings.EMAIL_FROM,
        "to": [recipient],
        "subject": subject,
        "html": render_email_html(subject, body, link),
    }
    try:
        result = await anyio.to_thread.run_sync(resend.Emails.send, params)
    except Exception as e:
        logger.error(f"Email send failed for {_mask_email(recipient)}: {type(e).__name__}")
        raise DeliveryFailure(f"Email delivery failed: {e}") from e

    message_id = result.get("id") if isinstance(result, dict) else getattr(result, "id", None)
    if not isinstance(message_id, str) or not message_id:
        logger.error(f"Email send to {_mask_email(recipient)} returned no message id")
        raise DeliveryFailure("Email delivery failed: unexpected provider response")
    logger.info(f"Email sent to {_mask_email(recipient)} message_id={message_id}")
    return message_id


async def send_slack_message(
    channel_id: str,
    subject: str,
    body: str,
    link: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Post an answer to a Slack channel."""
    if not settings.SLACK_BOT_TOKEN:
        raise DeliveryFailure("Slack delivery is not configured")
    if not channel_id:
        raise DeliveryFailure("No Slack channel configured")

    text = f"*{subject}*\n\n{body}"
    if len(text) > SLACK_TEXT_LIMIT:
        text = text[: SLACK_TEXT_LIMIT - 3] + "..."
    if link:
        text = f"{text}\n\n<{link}|Open the conversation>"

    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.post(
                SLACK_POST_MESSAGE_URL,
                headers={"Authorization": f"Bearer {settings.SLACK_BOT_TOKEN}"},
                json={"channel": channel_id, "text": text, "unfurl_links": False},
            )
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        logger.error(f"Slack post failed: {type(e).__name__}")
        raise DeliveryFailure("Slack delivery failed: request error") from e
    except ValueError as e:
        logger.error("Slack post returned a non-JSON body")
        raise DeliveryFailure("Slack delivery failed: unexpected response") from e

    if not isinstance(data, dict):
        raise DeliveryFailure("Slack delivery failed: unexpected response")
    if not data.get("ok"):
        raise DeliveryFailure(f"Slack delivery failed: {data.get('error', 'unknown error')}")


async def deliver(
    method: DeliveryMethod | str,
    *,
    subject: str,
    body: str,
    recipient_email: str | None = None,
    slack_channel_id: str | None = None,
    link: str | None = None,
) -> list[str]:
    """
    Deliver on every channel `method` names.

    Every channel is attempted even if an earlier one fails. Returns the
    channels that succeeded; raises DeliveryFailure if any failed.
    """
    method = DeliveryMethod(method)
    channels: list[str] = []
    if method in (DeliveryMethod.EMAIL, DeliveryMethod.BOTH):
        channels.append(DeliveryMethod.EMAIL.value)
    if method in (DeliveryMethod.SLACK, DeliveryMethod.BOTH):
        channels.append(DeliveryMethod.SLACK.value)

    delivered: list[str] = []
    errors: list[str] = []
    for channel in channels:
        try:
            if channel == DeliveryMethod.EMAIL.value:
                await send_email(recipient_email or "", subject, body, link)
            else:
                await send_slack_message(slack_channel_id or "", subject, body, link)
            delivered.append(channel)
        except DeliveryFailure as e:
            errors.append(str(e))

    if errors:
        raise DeliveryFailure("; ".join(errors), delivered=delivered)
    return delivered
