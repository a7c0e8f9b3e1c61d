# notifier/services/dispatch.py
"""
Outbound channel orchestration.

Mode `off` and `dry-run` are decided here and only log; `live` goes through
the gate, then the transport. Transport failures are logged with the
provider's code and are never retried.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from notifier.models import Account, Channel, NotificationKind
from notifier.services.email import IEmailTransport
from notifier.services.formatting import normalize_digits, pick_first_present
from notifier.services.gate import NotificationGate
from notifier.services.messages import BALANCE_AMOUNT_KEYS, MessageBuilder
from notifier.services.sms import ISmsTransport
from notifier.services.sms_log import SmsLogRepository
from notifier.settings import Settings

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(
        self,
        settings: Settings,
        gate: NotificationGate,
        builder: MessageBuilder,
        sms_transport: Optional[ISmsTransport] = None,
        email_transport: Optional[IEmailTransport] = None,
        sms_log: Optional[SmsLogRepository] = None,
    ):
        self.settings = settings
        self.gate = gate
        self.builder = builder
        self.sms_transport = sms_transport
        self.email_transport = email_transport
        self.sms_log = sms_log

    # ---------- user SMS ----------

    async def send_user_sms(
        self,
        kind: NotificationKind,
        record: Optional[Dict[str, Any]],
        account: Optional[Account],
    ) -> bool:
        """
        Render and send the account-holder SMS for `kind`.

        Returns True only when a live send was confirmed by the provider;
        dry-run, off, blocked and failed sends all return False.
        """
        if account is None or not account.mobile_number:
            logger.warning("SMS to user skipped: no mobile number (kind=%s)", kind.value)
            return False

        message = self.builder.build_user_message(kind, record, account)
        if not message:
            logger.warning("SMS to user skipped: no message for kind %s", kind.value)
            return False

        number = normalize_digits(account.mobile_number.strip())
        mode = self.gate.mode(Channel.SMS)
        if mode == "off":
            logger.info("[SMS off] Skipped user SMS. To: %s kind: %s", number, kind.value)
            return False
        if mode == "dry-run":
            logger.info("[SMS dry-run] User SMS. To: %s kind: %s\n%s", number, kind.value, message)
            return False

        decision = self.gate.can_send(Channel.SMS, number)
        if not decision.allowed:
            logger.warning("[SMS blocked] User SMS to %s (kind %s): %s", number, kind.value, decision.reason)
            return False

        if self.sms_transport is None:
            logger.error("SMS to user skipped: no SMS transport configured")
            return False

        result = await self.sms_transport.send([number], self.settings.sms_sender, message)
        if result.ok:
            logger.info("SMS sent to user %s (kind %s)", number, kind.value)
        else:
            logger.error("SMS to user %s failed: code=%s detail=%s", number, result.code, result.detail)

        if self.sms_log is not None:
            amount = pick_first_present(record, BALANCE_AMOUNT_KEYS) if isinstance(record, dict) else None
            await self.sms_log.record(number, kind, message, result, amount=amount)
        return result.ok

    # ---------- admin SMS ----------

    async def send_admin_sms(self, text: Optional[str]) -> int:
        """Send the audit text to every admin receptor the gate lets through. Returns the count sent."""
        if not self.settings.sms_send_admin:
            return 0
        if not text:
            logger.warning("Admin SMS skipped: nothing to send")
            return 0
        receptors = self.settings.admin_sms_numbers
        if not receptors:
            logger.warning("Admin SMS skipped: no receptors (set SMS_ADMIN_RECEPTORS)")
            return 0

        mode = self.gate.mode(Channel.SMS)
        if mode == "off":
            logger.info("[SMS off] Skipped admin SMS. Would send to: %s", ",".join(receptors))
            return 0
        if mode == "dry-run":
            logger.info("[SMS dry-run] Admin SMS. To: %s\n%s", ",".join(receptors), text)
            return 0

        allowed = []
        for number in receptors:
            decision = self.gate.can_send(Channel.SMS, number)
            if decision.allowed:
                allowed.append(number)
            else:
                logger.warning("[SMS blocked] Admin SMS to %s: %s", number, decision.reason)
        if not allowed:
            return 0
        if self.sms_transport is None:
            logger.error("Admin SMS skipped: no SMS transport configured")
            return 0

        result = await self.sms_transport.send(allowed, self.settings.sms_sender, text)
        if not result.ok:
            logger.error(
                "Admin SMS failed after %d of %d receptor(s): code=%s detail=%s",
                result.delivered, len(allowed), result.code, result.detail,
            )
            return result.delivered
        logger.info("Admin SMS sent to %d receptor(s)", len(allowed))
        return len(allowed)

    # ---------- admin email ----------

    async def send_admin_email(self, subject: str, body: str) -> bool:
        if self.email_transport is None:
            logger.warning("Email skipped: SendGrid not configured (SENDGRID_API_KEY / SENDGRID_SENDER)")
            return False
        recipients = self.settings.alert_recipients
        if not recipients:
            logger.warning("Email skipped: no recipients (set ALERT_TO)")
            return False

        mode = self.gate.mode(Channel.EMAIL)
        if mode == "off":
            logger.info("[Email off] Skipped: %s", subject)
            return False
        if mode == "dry-run":
            logger.info("[Email dry-run] To: %s Subject: %s\n%s", ",".join(recipients), subject, body)
            return False

        allowed = []
        for address in recipients:
            decision = self.gate.can_send(Channel.EMAIL, address)
            if decision.allowed:
                allowed.append(address)
            else:
                logger.warning("[Email blocked] %s: %s", address, decision.reason)
        if not allowed:
            return False

        result = await self.email_transport.send(allowed, subject, body)
        if not result.ok:
            logger.error("Email failed: code=%s detail=%s", result.code, result.detail)
            return False
        logger.info("Email sent: %s", subject)
        return True
