# notifier/services/sms_log.py
from __future__ import annotations

import datetime as dt
import logging
from datetime import timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from notifier.models import NotificationKind, SendResult
from notifier.services.formatting import normalize_digits, unwrap_number

logger = logging.getLogger(__name__)


def _to_amount(value: Any) -> Optional[float]:
    value = unwrap_number(value)
    if value is None:
        return None
    try:
        return float(Decimal(normalize_digits(value).replace(",", "")))
    except (InvalidOperation, ValueError):
        return None


class SmsLogRepository:
    """
    One `sms_logs` document per user SMS that reached the provider.
    Writes are best-effort: a failed insert is logged and the send outcome stands.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def record(
        self,
        mobile_number: str,
        kind: NotificationKind,
        message: str,
        result: SendResult,
        amount: Any = None,
        recipient_count: int = 1,
    ) -> None:
        doc: Dict[str, Any] = {
            "mobileNumber": mobile_number,
            "kind": kind.value,
            "message": message,
            "status": "sent" if result.ok else "failed",
            "response": result.detail if result.ok else None,
            "error": None if result.ok else f"{result.code}: {result.detail or ''}".rstrip(": "),
            "amount": _to_amount(amount),
            "recipientCount": recipient_count,
            "sentAt": dt.datetime.now(timezone.utc),
        }
        try:
            await self.collection.insert_one(doc)
        except PyMongoError as e:
            logger.warning("Could not write sms_logs entry for %s: %s", mobile_number, e)
