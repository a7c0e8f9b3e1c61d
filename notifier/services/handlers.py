# notifier/services/handlers.py
"""
Per-stream event handlers: classify -> enrich -> render -> dispatch.

Handlers never touch checkpoints; the watcher owns those. An exception that
escapes here is logged by the watcher and the event is still checkpointed.
"""

from __future__ import annotations

import datetime as dt
import logging
from datetime import timezone
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from notifier.models import Account, ChangeEvent, NotificationKind
from notifier.mongo_collections import STREAM_BALANCE_TX, STREAM_TRANSACTIONS, STREAM_USERS
from notifier.services import classifier
from notifier.services.dispatch import Notifier
from notifier.services.enrichment import EnrichmentResolver
from notifier.services.messages import MessageBuilder

logger = logging.getLogger(__name__)


class NotificationHandlers:
    def __init__(
        self,
        resolver: EnrichmentResolver,
        builder: MessageBuilder,
        notifier: Notifier,
        users: AsyncIOMotorCollection,
    ):
        self.resolver = resolver
        self.builder = builder
        self.notifier = notifier
        self.users = users

    # ---------- shared ----------

    async def _admin_fanout(
        self,
        stream: str,
        event: ChangeEvent,
        record: Dict[str, Any],
        account: Optional[Account],
        kind: Optional[NotificationKind],
    ) -> None:
        subject, body = self.builder.build_admin_email(stream, event.operation_type, record, account)
        await self.notifier.send_admin_email(subject, body)

        admin_text = self.builder.build_admin_message(kind or NotificationKind.GENERIC_AUDIT, record, account)
        await self.notifier.send_admin_sms(admin_text)

    # ---------- balance transactions ----------

    async def handle_balance_transaction(self, event: ChangeEvent) -> None:
        if not classifier.is_relevant_balance_event(event):
            logger.debug("balance tx %s: update without status change, ignored", event.document_id)
            return
        record = event.full_document
        if not record:
            logger.warning("balance tx %s: no document in change event", event.document_id)
            return

        kind = classifier.classify_balance_transaction(event)
        if event.operation_type == "insert":
            account = await self.resolver.resolve_account(record.get("user"))
        else:
            account = await self.resolver.resolve_fresh_account(record.get("user"))

        await self._admin_fanout(STREAM_BALANCE_TX, event, record, account, kind)

        if kind is None:
            return
        logger.info("balance tx %s -> %s", event.document_id, kind.value)
        await self.notifier.send_user_sms(kind, record, account)

    # ---------- trading transactions ----------

    async def handle_trade(self, event: ChangeEvent) -> None:
        if not classifier.is_relevant_trade_event(event):
            logger.debug("transaction %s: update without status change, ignored", event.document_id)
            return
        if not event.full_document:
            logger.warning("transaction %s: no document in change event", event.document_id)
            return

        record = await self.resolver.enrich_trade(event.full_document)
        kind = classifier.classify_trade(event)
        account = await self.resolver.resolve_fresh_account(record.get("user"))

        await self._admin_fanout(STREAM_TRANSACTIONS, event, record, account, kind)

        if kind is None:
            return
        logger.info("transaction %s -> %s", event.document_id, kind.value)
        await self.notifier.send_user_sms(kind, record, account)

    # ---------- users ----------

    async def handle_user(self, event: ChangeEvent) -> None:
        record = event.full_document
        if event.operation_type == "insert":
            if record:
                subject, body = self.builder.build_admin_email(STREAM_USERS, "insert", record, None)
                await self.notifier.send_admin_email(subject, body)
            return

        kinds = classifier.classify_user_update(event)
        if not kinds:
            return

        account = await self.resolver.resolve_fresh_account(event.document_id)
        if account is None and record:
            account = Account.from_doc(record)
        if account is None:
            logger.warning("user %s: account not found, %d notification(s) dropped", event.document_id, len(kinds))
            return

        for kind in kinds:
            if kind == NotificationKind.USER_REGISTRATION_WELCOME:
                await self._send_welcome(event, record, account)
                continue
            logger.info("user %s -> %s", event.document_id, kind.value)
            await self.notifier.send_user_sms(kind, record, account)

    async def _send_welcome(self, event: ChangeEvent, record: Dict[str, Any], account: Account) -> None:
        if account.welcome_sms_sent_at is not None:
            logger.info("user %s: welcome already sent at %s", event.document_id, account.welcome_sms_sent_at)
            return

        logger.info("user %s -> %s", event.document_id, NotificationKind.USER_REGISTRATION_WELCOME.value)
        sent = await self.notifier.send_user_sms(NotificationKind.USER_REGISTRATION_WELCOME, record, account)
        if sent:
            await self.mark_welcome_sent(event.document_id)

    async def mark_welcome_sent(self, user_id: Any) -> bool:
        """Set welcomeSmsSentAt only if it is still unset. Returns True when this call set it."""
        try:
            result = await self.users.update_one(
                {"_id": user_id, classifier.WELCOME_MARKER_FIELD: {"$exists": False}},
                {"$set": {classifier.WELCOME_MARKER_FIELD: dt.datetime.now(timezone.utc)}},
            )
        except PyMongoError as e:
            logger.warning("Could not set welcome marker for user %s: %s", user_id, e)
            return False
        return result.modified_count == 1
