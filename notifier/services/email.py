# notifier/services/email.py
"""Admin audit email through SendGrid."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional, Sequence

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from notifier.models import SendResult


def extract_sendgrid_error(body: Any) -> Optional[str]:
    """Return a human readable description for a SendGrid error payload."""

    if body in (None, ""):
        return None

    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if isinstance(body, str):
        body = body.strip()
        if not body:
            return None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return body
    else:
        parsed = body

    if isinstance(parsed, dict):
        errors = parsed.get("errors")
        if isinstance(errors, list):
            messages = [str(item["message"]) for item in errors if isinstance(item, dict) and item.get("message")]
            if messages:
                return "; ".join(messages)
        return json.dumps(parsed, default=str)

    if isinstance(parsed, list):
        return "; ".join(str(item) for item in parsed)

    return str(parsed)


class IEmailTransport:
    async def send(self, to: Sequence[str], subject: str, body: str) -> SendResult: ...


class SendGridEmailTransport(IEmailTransport):
    def __init__(self, api_key: str, sender: str, client: Optional[SendGridAPIClient] = None):
        self.api_key = api_key
        self.sender = sender
        self._client = client

    @property
    def client(self) -> SendGridAPIClient:
        if self._client is None:
            self._client = SendGridAPIClient(self.api_key)
        return self._client

    def _send_blocking(self, to: Sequence[str], subject: str, body: str) -> SendResult:
        message = Mail(
            from_email=self.sender,
            to_emails=list(to),
            subject=subject,
            plain_text_content=body,
        )
        try:
            response = self.client.send(message)
        except Exception as e:
            status = getattr(e, "status_code", None)
            details = extract_sendgrid_error(getattr(e, "body", None)) or str(e)
            return SendResult.failure(str(status) if status else type(e).__name__, details)

        status = getattr(response, "status_code", None)
        if status is not None and 200 <= int(status) < 300:
            return SendResult.success(str(status))
        return SendResult.failure(str(status), extract_sendgrid_error(getattr(response, "body", None)))

    async def send(self, to: Sequence[str], subject: str, body: str) -> SendResult:
        if not to:
            return SendResult.failure("no-recipients")
        return await asyncio.to_thread(self._send_blocking, list(to), subject, body)
