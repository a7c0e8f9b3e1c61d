# notifier/services/sms.py
"""
SMS delivery through Twilio.
The SDK is synchronous, so each send runs in a worker thread and comes back
as a SendResult instead of raising.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from notifier.models import SendResult


class ISmsTransport:
    async def send(self, recipients: Sequence[str], sender: str, text: str) -> SendResult: ...


class TwilioSmsTransport(ISmsTransport):
    def __init__(self, account_sid: str, auth_token: str, client: Optional[Client] = None):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self._client = client

    @property
    def client(self) -> Client:
        """Get or create Twilio client."""
        if self._client is None:
            if not self.account_sid or not self.auth_token:
                raise RuntimeError("Twilio credentials missing (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN)")
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def _send_blocking(self, recipients: Sequence[str], sender: str, text: str) -> SendResult:
        sids = []
        for to_number in recipients:
            try:
                msg = self.client.messages.create(from_=sender, to=to_number, body=text)
            except TwilioRestException as e:
                # provider codes are passed through untouched
                return self._partial_failure(str(e.code or e.status), e.msg, sids)
            except Exception as e:
                return self._partial_failure(type(e).__name__, str(e), sids)
            sids.append(msg.sid)
        return SendResult.success(",".join(sids))

    @staticmethod
    def _partial_failure(code: str, detail: Optional[str], sids: Sequence[str]) -> SendResult:
        if sids:
            detail = f"{detail} (sent before failure: {','.join(sids)})"
        return SendResult.failure(code, detail, delivered=len(sids))

    async def send(self, recipients: Sequence[str], sender: str, text: str) -> SendResult:
        """
        Send `text` to every number in `recipients`.

        Args:
            recipients: Normalized phone numbers
            sender: Twilio number or sender id
            text: Message body

        Returns:
            SendResult; on failure `code` holds the Twilio error code verbatim.
            Recipients after the first failure are not attempted; `delivered`
            counts the ones already accepted.
        """
        if not recipients:
            return SendResult.failure("no-recipients")
        return await asyncio.to_thread(self._send_blocking, list(recipients), sender, text)
