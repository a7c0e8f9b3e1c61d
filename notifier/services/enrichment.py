# notifier/services/enrichment.py
"""
Auxiliary lookups needed to render a notification.

Every lookup degrades to "not found" on error: a failing query makes the
message show placeholders, it never aborts the event.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from notifier.models import Account

logger = logging.getLogger(__name__)

UNKNOWN_INSTRUMENT = "Unknown"
NO_INSTRUMENT = "-"


def as_object_id(ref: Any) -> Any:
    """Coerce 24-hex strings to ObjectId; leave everything else alone."""
    if isinstance(ref, str) and ObjectId.is_valid(ref):
        return ObjectId(ref)
    return ref


class EnrichmentResolver:
    def __init__(self, users: AsyncIOMotorCollection, tradeables: AsyncIOMotorCollection):
        self.users = users
        self.tradeables = tradeables

    async def _find_one(self, collection: AsyncIOMotorCollection, ref: Any) -> Optional[Dict[str, Any]]:
        if ref is None:
            return None
        try:
            return await collection.find_one({"_id": as_object_id(ref)})
        except PyMongoError as e:
            logger.warning("Lookup in %s failed for %r: %s", collection.name, ref, e)
            return None

    async def resolve_account(self, ref: Any) -> Optional[Account]:
        doc = await self._find_one(self.users, ref)
        return Account.from_doc(doc) if doc else None

    async def resolve_fresh_account(self, ref: Any) -> Optional[Account]:
        """
        Re-read the account after a mutation so balances reflect the event.
        The resolver keeps no cache, so this is always a new query.
        """
        return await self.resolve_account(ref)

    async def resolve_instrument_name(self, ref: Any) -> str:
        if ref is None or ref == "":
            return NO_INSTRUMENT
        doc = await self._find_one(self.tradeables, ref)
        if not doc:
            return UNKNOWN_INSTRUMENT
        return doc.get("name") or doc.get("symbol") or UNKNOWN_INSTRUMENT

    async def enrich_trade(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of a trading record with `tradeableName` filled in."""
        name = await self.resolve_instrument_name(record.get("tradeable"))
        return {**record, "tradeableName": name}
