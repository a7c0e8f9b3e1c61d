# notifier/main.py
"""
Process entry point: read config once, connect, run the three stream watchers
until SIGINT/SIGTERM, then shut down cleanly.

Run a single instance per checkpoint store; two processes sharing one
checkpoint store both deliver every notification.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import List

from pydantic import ValidationError

from notifier.db import close_mongo_connection, connect_to_mongo
from notifier.models import StartupError
from notifier.mongo_collections import STREAM_BALANCE_TX, STREAM_TRANSACTIONS, STREAM_USERS
from notifier.services.checkpoints import build_checkpoint_store
from notifier.services.dispatch import Notifier
from notifier.services.email import SendGridEmailTransport
from notifier.services.enrichment import EnrichmentResolver
from notifier.services.gate import NotificationGate
from notifier.services.handlers import NotificationHandlers
from notifier.services.messages import MessageBuilder
from notifier.services.sms import TwilioSmsTransport
from notifier.services.sms_log import SmsLogRepository
from notifier.services.watcher import StreamWatcher
from notifier.settings import Settings

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def validate_startup(settings: Settings) -> List[str]:
    """
    Raise StartupError for configurations that cannot work at all.
    Returns warnings for configurations that only disable something.
    """
    if settings.sms_mode == "live":
        if not settings.twilio_configured:
            raise StartupError("SMS_MODE=live requires TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN")
        if not settings.sms_sender:
            raise StartupError("SMS_MODE=live requires SMS_SENDER")

    warnings = []
    if not settings.sendgrid_configured:
        warnings.append("SendGrid not configured (SENDGRID_API_KEY / SENDGRID_SENDER): admin email disabled")
    elif not settings.alert_recipients:
        warnings.append("ALERT_TO is empty: admin email disabled")
    if settings.sms_send_admin and not settings.admin_sms_numbers:
        warnings.append("SMS_ADMIN_RECEPTORS is empty: admin SMS disabled")
    if settings.sms_mode == "live" and not settings.sms_allow_live:
        warnings.append("SMS_MODE=live but SMS_ALLOW_LIVE is not set: every SMS will be blocked")
    return warnings


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_notifier(settings: Settings, db) -> Notifier:
    sms_transport = None
    if settings.twilio_configured:
        sms_transport = TwilioSmsTransport(settings.twilio_account_sid, settings.twilio_auth_token)
    email_transport = None
    if settings.sendgrid_configured:
        email_transport = SendGridEmailTransport(settings.sendgrid_api_key, settings.sendgrid_sender)
    sms_log = SmsLogRepository(db[settings.sms_log_collection]) if settings.sms_log_enabled else None

    return Notifier(
        settings,
        NotificationGate.from_settings(settings),
        MessageBuilder(settings.brand_name, settings.support_phone, settings.display_timezone),
        sms_transport=sms_transport,
        email_transport=email_transport,
        sms_log=sms_log,
    )


def build_watchers(settings: Settings, db) -> List[StreamWatcher]:
    notifier = build_notifier(settings, db)
    users = db[settings.users_collection]
    handlers = NotificationHandlers(
        EnrichmentResolver(users, db[settings.tradeables_collection]),
        notifier.builder,
        notifier,
        users,
    )
    checkpoints = build_checkpoint_store(settings, db)

    streams = [
        (STREAM_BALANCE_TX, db[settings.balance_tx_collection], handlers.handle_balance_transaction),
        (STREAM_USERS, users, handlers.handle_user),
        (STREAM_TRANSACTIONS, db[settings.transactions_collection], handlers.handle_trade),
    ]
    return [
        StreamWatcher(
            name,
            collection,
            handler,
            checkpoints,
            start_fresh=settings.watch_start_fresh,
            reconnect_delay=settings.reconnect_delay_seconds,
        )
        for name, collection, handler in streams
    ]


async def run(settings: Settings) -> None:
    db = await connect_to_mongo(settings)
    logger.info(
        "Notifier starting: env=%s db=%s sms_mode=%s email_mode=%s",
        settings.app_env, settings.mongodb_db, settings.sms_mode, settings.email_mode,
    )

    watchers = build_watchers(settings, db)
    tasks = [asyncio.create_task(w.run(), name=f"watch-{w.name}") for w in watchers]

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still cancels run()
            pass

    try:
        await stop.wait()
        logger.info("Shutdown requested")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await close_mongo_connection()
        logger.info("Notifier stopped")


def main() -> None:
    try:
        settings = Settings()
        configure_logging(settings.log_level)
        for warning in validate_startup(settings):
            logger.warning(warning)
    except (ValidationError, StartupError) as e:
        configure_logging("INFO")
        logger.error("Invalid configuration: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
