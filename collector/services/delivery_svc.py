"""Delivery handlers - push one queued submission to one integration."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any

import httpx

from ..config import settings

logger = logging.getLogger(__name__)

DEFAULT_FROM = '"New FormFlow Submission" <new-submission@formflow.fyi>'
TELEGRAM_API = "https://api.telegram.org"
SLACK_POST_MESSAGE = "https://slack.com/api/chat.postMessage"
SLACK_PERMANENT_ERRORS = {
    "invalid_auth",
    "account_inactive",
    "token_revoked",
    "channel_not_found",
    "not_in_channel",
}


class DeliveryError(Exception):
    """Transient delivery failure; the job is retried."""


class PermanentDeliveryError(DeliveryError):
    """Delivery can never succeed with this configuration; no retry."""


def _subject(config: dict, payload: dict) -> str:
    return config.get("subject") or f"New Form Submission: {payload.get('formName') or ''}".rstrip()


def _raise_for_status(resp: httpx.Response, target: str) -> None:
    if resp.status_code in (401, 403, 404):
        raise PermanentDeliveryError(f"{target} error {resp.status_code}")
    if resp.status_code >= 400:
        raise DeliveryError(f"{target} error {resp.status_code}: {resp.text[:200]}")


async def deliver_webhook(payload: dict, client: httpx.AsyncClient) -> dict:
    config = payload.get("config") or {}
    url = config.get("webhook") or config.get("url")
    if not url:
        raise PermanentDeliveryError("No webhook URL configured")
    source = {"make": "Make.com", "n8n": "n8n"}.get(config.get("webhookSource"), "Webhook")
    resp = await client.post(url, json=payload.get("fields") or {})
    _raise_for_status(resp, source)
    return {"status_code": resp.status_code}


async def deliver_discord(payload: dict, client: httpx.AsyncClient) -> dict:
    config = payload.get("config") or {}
    url = config.get("webhookUrl")
    if not url:
        raise PermanentDeliveryError("No Discord webhook URL configured")
    resp = await client.post(url, json={"content": f"```{payload.get('message', '')}```"})
    _raise_for_status(resp, "Discord")
    return {"status_code": resp.status_code}


async def deliver_slack(payload: dict, client: httpx.AsyncClient) -> dict:
    config = payload.get("config") or {}
    if not config.get("accessToken") or not config.get("channelId"):
        raise PermanentDeliveryError("Slack configuration missing (accessToken or channelId)")
    resp = await client.post(
        SLACK_POST_MESSAGE,
        json={"channel": config["channelId"], "text": payload.get("message", "")},
        headers={"Authorization": f"Bearer {config['accessToken']}"},
    )
    _raise_for_status(resp, "Slack")
    # Slack reports most failures as 200 with ok=false.
    data = resp.json()
    if not data.get("ok"):
        error = data.get("error") or "unknown_error"
        if error in SLACK_PERMANENT_ERRORS:
            raise PermanentDeliveryError(f"Slack error: {error}")
        raise DeliveryError(f"Slack error: {error}")
    return {"status_code": resp.status_code}


async def deliver_telegram(payload: dict, client: httpx.AsyncClient) -> dict:
    config = payload.get("config") or {}
    if not config.get("botToken"):
        raise PermanentDeliveryError("No Telegram bot token configured")
    if not config.get("chatId"):
        raise PermanentDeliveryError("No Telegram chat ID configured")
    resp = await client.post(
        f"{TELEGRAM_API}/bot{config['botToken']}/sendMessage",
        json={"chat_id": config["chatId"], "text": payload.get("message", "")},
    )
    if resp.status_code in (400, 401, 403):
        raise PermanentDeliveryError(f"Telegram error {resp.status_code}: {resp.text[:200]}")
    _raise_for_status(resp, "Telegram")
    return {"status_code": resp.status_code}


def _email_api_request(config: dict, payload: dict) -> tuple[str, dict[str, Any]]:
    api = config.get("emailApi") or {}
    provider = (api.get("provider") or "").lower()
    token = api.get("apiToken") or api.get("apiKey")
    if not provider or not token:
        raise PermanentDeliveryError("Email API configuration missing provider or apiToken")

    recipients = config["recipients"]
    sender = config.get("fromEmail") or DEFAULT_FROM
    subject = _subject(config, payload)
    text = payload.get("message", "")

    if provider == "sendgrid":
        return "https://api.sendgrid.com/v3/mail/send", {
            "headers": {"Authorization": f"Bearer {token}"},
            "json": {
                "personalizations": [{"to": [{"email": r} for r in recipients]}],
                "from": {"email": sender},
                "subject": subject,
                "content": [{"type": "text/plain", "value": text}],
            },
        }
    if provider == "postmark":
        return "https://api.postmarkapp.com/email", {
            "headers": {"X-Postmark-Server-Token": token, "Accept": "application/json"},
            "json": {"From": sender, "To": ", ".join(recipients), "Subject": subject, "TextBody": text},
        }
    if provider == "mailgun":
        domain = api.get("domain")
        if not domain:
            raise PermanentDeliveryError("Mailgun integration requires a domain")
        host = "api.eu.mailgun.net" if (api.get("region") or "").lower() == "eu" else "api.mailgun.net"
        return f"https://{host}/v3/{domain}/messages", {
            "auth": ("api", token),
            "data": {"from": sender, "to": recipients, "subject": subject, "text": text},
        }
    raise PermanentDeliveryError(f"Unsupported email API provider: {provider}")


async def deliver_email_api(payload: dict, client: httpx.AsyncClient) -> dict:
    config = payload.get("config") or {}
    if not config.get("recipients"):
        raise PermanentDeliveryError("No recipients configured for email API integration")
    url, kwargs = _email_api_request(config, payload)
    resp = await client.post(url, **kwargs)
    _raise_for_status(resp, "Email API")
    return {"status_code": resp.status_code, "recipients": len(config["recipients"])}


def _send_smtp(config: dict, message: EmailMessage, timeout: float) -> None:
    smtp = config["smtp"]
    host = smtp["host"]
    port = int(smtp["port"])
    secure = smtp.get("secure")
    if secure is None:
        secure = port == 465
    local = host in ("127.0.0.1", "localhost") or port == 1025

    cls = smtplib.SMTP_SSL if secure else smtplib.SMTP
    with cls(host, port, timeout=timeout) as conn:
        if not secure and not local:
            conn.starttls()
        conn.login(smtp["username"], smtp["password"])
        conn.send_message(message)


async def deliver_email_smtp(payload: dict, client: httpx.AsyncClient | None = None) -> dict:
    config = payload.get("config") or {}
    if not config.get("recipients"):
        raise PermanentDeliveryError("No email recipients configured")
    smtp = config.get("smtp") or {}
    if not all(smtp.get(k) for k in ("host", "port", "username", "password")):
        raise PermanentDeliveryError("SMTP configuration incomplete")

    message = EmailMessage()
    message["From"] = config.get("fromEmail") or DEFAULT_FROM
    message["To"] = ", ".join(config["recipients"])
    message["Subject"] = _subject(config, payload)
    message.set_content(payload.get("message", ""))

    try:
        await asyncio.to_thread(_send_smtp, config, message, settings.delivery_timeout_seconds)
    except smtplib.SMTPAuthenticationError as exc:
        raise PermanentDeliveryError(f"Authentication failed: {exc}") from exc
    except (smtplib.SMTPException, OSError) as exc:
        raise DeliveryError(f"SMTP delivery failed: {exc}") from exc
    return {"recipients": len(config["recipients"])}


DELIVERY_HANDLERS: dict[str, Any] = {
    "webhook": deliver_webhook,
    "discord": deliver_discord,
    "slack": deliver_slack,
    "telegram": deliver_telegram,
    "email-api": deliver_email_api,
    "email-smtp": deliver_email_smtp,
}


async def deliver(
    integration_type: str, payload: dict, client: httpx.AsyncClient | None = None
) -> dict:
    """Dispatch ``payload`` to the handler for ``integration_type``."""
    handler = DELIVERY_HANDLERS.get(integration_type)
    if handler is None:
        raise PermanentDeliveryError(f"Unknown integration type: {integration_type}")

    if client is not None:
        result = await _call(handler, payload, client)
    else:
        async with httpx.AsyncClient(timeout=settings.delivery_timeout_seconds) as own:
            result = await _call(handler, payload, own)

    logger.info(
        "Delivered submission %s via %s rid=%s",
        payload.get("submissionId"),
        integration_type,
        payload.get("correlationId"),
    )
    return result


async def _call(handler, payload: dict, client: httpx.AsyncClient) -> dict:
    try:
        return await handler(payload, client)
    except httpx.TimeoutException as exc:
        raise DeliveryError(f"Timed out: {exc}") from exc
    except httpx.TransportError as exc:
        raise DeliveryError(f"Transport error: {exc}") from exc
