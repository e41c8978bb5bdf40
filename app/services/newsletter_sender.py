"""
Email service provider (ESP) delivery for newsletters.

Routing follows the tenant's ``esp_provider`` setting: Mailchimp and
ConvertKit are used only when their key is configured; otherwise the send
goes through SendGrid with the tenant key or the environment key.
"""
from __future__ import annotations

import base64
import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from app.config import settings
from app.models.database_models import Newsletter, TenantSettings
from app.utils.helpers import strip_html

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
CONVERTKIT_URL = "https://api.convertkit.com/v3/broadcasts"
DEFAULT_FROM_EMAIL = "newsletter@example.com"
DEFAULT_FROM_NAME = "Newsletter Wizard"

_MAILCHIMP_DC_RE = re.compile(r"-([a-z]+\d+)$")

_EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
    h1 {{ color: #1a1a1a; }}
    h2 {{ color: #333; }}
    p {{ margin: 1em 0; }}
    ul, ol {{ padding-left: 20px; }}
    blockquote {{ border-left: 4px solid #e5e5e5; margin-left: 0; padding-left: 16px; color: #666; }}
    a {{ color: #6366f1; }}
    .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e5e5; font-size: 12px; color: #999; }}
  </style>
</head>
<body>
  {content}
  <div class="footer">
    <p>Sent via Newsletter Wizard</p>
  </div>
</body>
</html>"""


class SendError(Exception):
    """The ESP rejected the send."""


class ProviderNotConfigured(Exception):
    """No usable credential exists for the selected provider."""


@dataclass
class SendResult:
    provider: str
    message: str


def wrap_in_email_template(content_html: str, title: str) -> str:
    return _EMAIL_TEMPLATE.format(title=html.escape(title or ""), content=content_html or "")


def mailchimp_datacenter(api_key: str) -> Optional[str]:
    """Mailchimp keys end in ``-<dc>``, e.g. ``...-us21``."""
    match = _MAILCHIMP_DC_RE.search(api_key)
    return match.group(1) if match else None


class NewsletterSender:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.timeout = httpx.Timeout(30.0, connect=10.0)
        self._transport = transport

    async def send(
        self,
        newsletter: Newsletter,
        tenant_settings: Optional[TenantSettings],
        recipients: List[str],
        is_test: bool = False,
        list_id: Optional[str] = None,
    ) -> SendResult:
        """
        Deliver *newsletter* and return which provider handled it.

        Raises:
            ValueError:             no recipients
            ProviderNotConfigured:  no key for the selected provider
            SendError:              the provider rejected the request
        """
        if not recipients:
            raise ValueError("recipients array is required")

        ts = tenant_settings
        provider = (ts.esp_provider if ts and ts.esp_provider else "sendgrid")
        sendgrid_key = (ts.sendgrid_api_key if ts else None) or settings.SENDGRID_API_KEY
        mailchimp_key = ts.mailchimp_api_key if ts else None
        convertkit_key = ts.convertkit_api_key if ts else None
        from_email = (ts.sender_email if ts else None) or DEFAULT_FROM_EMAIL
        from_name = (ts.company_name if ts else None) or DEFAULT_FROM_NAME

        base_subject = newsletter.subject_line or newsletter.title
        subject = f"[TEST] {base_subject}" if is_test else base_subject
        html_content = wrap_in_email_template(newsletter.content_html or "", newsletter.title)

        if provider == "mailchimp" and mailchimp_key:
            label = "Mailchimp"
        elif provider == "convertkit" and convertkit_key:
            label = "ConvertKit"
        elif sendgrid_key:
            label = "SendGrid"
        else:
            raise ProviderNotConfigured(
                f"No API key configured for {provider}. Please add it in Settings."
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                if label == "Mailchimp":
                    result = await self._send_mailchimp(
                        client, mailchimp_key, list_id, subject, from_name, from_email, html_content
                    )
                elif label == "ConvertKit":
                    result = await self._send_convertkit(client, convertkit_key, subject, html_content)
                else:
                    result = await self._send_sendgrid(
                        client, sendgrid_key, recipients, subject, from_email, from_name, html_content
                    )
        except httpx.HTTPError as exc:
            logger.error("%s request failed: %s", label, exc)
            raise SendError(f"{label} request failed: {exc.__class__.__name__}") from exc
        except (ValueError, KeyError) as exc:
            # 2xx response whose body is not the JSON the provider documents
            logger.error("%s returned an unreadable body: %s", label, exc)
            raise SendError(f"{label} returned an invalid response") from exc

        logger.info(
            "Newsletter id=%s sent via %s to %d recipients (test=%s)",
            newsletter.id,
            result.provider,
            len(recipients),
            is_test,
        )
        return result

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _send_sendgrid(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        recipients: List[str],
        subject: str,
        from_email: str,
        from_name: str,
        html_content: str,
    ) -> SendResult:
        resp = await client.post(
            SENDGRID_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "personalizations": [{"to": [{"email": email}]} for email in recipients],
                "from": {"email": from_email, "name": from_name},
                "subject": subject,
                "content": [
                    {"type": "text/plain", "value": strip_html(html_content)},
                    {"type": "text/html", "value": html_content},
                ],
            },
        )
        if not resp.is_success:
            logger.error("SendGrid error %d: %s", resp.status_code, resp.text[:300])
            raise SendError(f"SendGrid error: {resp.status_code}")
        return SendResult(provider="sendgrid", message="Sent successfully")

    async def _send_mailchimp(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        list_id: Optional[str],
        subject: str,
        from_name: str,
        from_email: str,
        html_content: str,
    ) -> SendResult:
        datacenter = mailchimp_datacenter(api_key)
        if not datacenter:
            raise SendError("Invalid Mailchimp API key format")
        if not list_id:
            raise SendError("Mailchimp list_id is required")

        base_url = f"https://{datacenter}.api.mailchimp.com/3.0"
        token = base64.b64encode(f"anystring:{api_key}".encode()).decode()
        auth = {"Authorization": f"Basic {token}"}

        campaign_resp = await client.post(
            f"{base_url}/campaigns",
            headers=auth,
            json={
                "type": "regular",
                "recipients": {"list_id": list_id},
                "settings": {
                    "subject_line": subject,
                    "from_name": from_name,
                    "reply_to": from_email,
                    "title": subject,
                },
            },
        )
        if not campaign_resp.is_success:
            raise SendError(_error_detail(campaign_resp, "Failed to create campaign"))
        campaign_id = campaign_resp.json()["id"]

        content_resp = await client.put(
            f"{base_url}/campaigns/{campaign_id}/content", headers=auth, json={"html": html_content}
        )
        if not content_resp.is_success:
            raise SendError(_error_detail(content_resp, "Failed to set campaign content"))

        send_resp = await client.post(f"{base_url}/campaigns/{campaign_id}/actions/send", headers=auth)
        if not send_resp.is_success:
            raise SendError(_error_detail(send_resp, "Failed to send"))
        return SendResult(provider="mailchimp", message="Campaign sent")

    async def _send_convertkit(
        self,
        client: httpx.AsyncClient,
        api_secret: str,
        subject: str,
        html_content: str,
    ) -> SendResult:
        create_resp = await client.post(
            CONVERTKIT_URL,
            json={
                "api_secret": api_secret,
                "subject": subject,
                "content": html_content,
                "email_layout_template": "Text only",
                "public": False,
            },
        )
        if not create_resp.is_success:
            raise SendError(_error_detail(create_resp, "Failed to create broadcast", key="message"))
        broadcast_id = (create_resp.json().get("broadcast") or {}).get("id")
        if not broadcast_id:
            raise SendError("Failed to create broadcast")

        publish_resp = await client.put(
            f"{CONVERTKIT_URL}/{broadcast_id}",
            json={"api_secret": api_secret, "published_at": datetime.now(timezone.utc).isoformat()},
        )
        if not publish_resp.is_success:
            raise SendError(_error_detail(publish_resp, "Failed to publish broadcast", key="message"))
        return SendResult(provider="convertkit", message="Broadcast created")


def _error_detail(resp: httpx.Response, default: str, key: str = "detail") -> str:
    try:
        return resp.json().get(key) or default
    except ValueError:
        return default
