# scripts/send_samples.py
"""
Render one sample of every user-facing SMS from real documents and print it.

  python scripts/send_samples.py --to=0912...            # print only
  python scripts/send_samples.py --to=0912... --send     # live, if allowed

A live send needs ALL of: --send, target == SAMPLE_SMS_ONLY_ALLOW,
SMS_MODE=live, SMS_ALLOW_LIVE, SAMPLES_CAN_SEND and a production APP_ENV.
"""

import argparse
import asyncio
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

# --- Make sure 'notifier' package is importable when running this file directly ---
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection  # type: ignore

from notifier.models import Account, NotificationKind
from notifier.services.enrichment import EnrichmentResolver
from notifier.services.formatting import normalize_digits
from notifier.services.messages import MessageBuilder
from notifier.services.sms import TwilioSmsTransport
from notifier.settings import Settings

load_dotenv()

DEPOSIT_RE = "(deposit|واریز)"
WITHDRAW_RE = "(withdraw|برداشت)"
ACCEPTED_RE = "^(accepted|approved|confirmed|successful)$"
REJECTED_RE = "^(rejected|declined)$"


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "y", "on", "enable", "enabled")


def can_send_live(args: argparse.Namespace, settings: Settings) -> Tuple[bool, str]:
    only_allow = normalize_digits((os.getenv("SAMPLE_SMS_ONLY_ALLOW") or "").strip())
    if not args.send:
        return False, "no --send flag"
    if not only_allow or normalize_digits(args.to) != only_allow:
        return False, f"target must equal SAMPLE_SMS_ONLY_ALLOW ({only_allow or 'unset'})"
    if settings.sms_mode != "live":
        return False, "SMS_MODE is not live"
    if not settings.sms_allow_live:
        return False, "SMS_ALLOW_LIVE is not set"
    if not _env_flag("SAMPLES_CAN_SEND"):
        return False, "SAMPLES_CAN_SEND is not set"
    if not settings.is_production:
        return False, "not a production environment"
    return True, ""


async def sample_one(collection: AsyncIOMotorCollection, match: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    docs = await collection.aggregate([{"$match": match}, {"$sample": {"size": 1}}]).to_list(length=1)
    return docs[0] if docs else None


def _regex(pattern: str) -> Dict[str, str]:
    return {"$regex": pattern, "$options": "i"}


async def collect_samples(db, settings: Settings) -> List[Tuple[NotificationKind, Dict[str, Any], Account]]:
    users = db[settings.users_collection]
    balance_tx = db[settings.balance_tx_collection]
    transactions = db[settings.transactions_collection]
    resolver = EnrichmentResolver(users, db[settings.tradeables_collection])

    user_doc = await sample_one(users, {"mobileNumber": {"$exists": True, "$ne": ""}})
    if not user_doc:
        return []
    user = Account.from_doc(user_doc)

    samples = [
        (NotificationKind.USER_REGISTRATION_WELCOME, user_doc, user),
        (NotificationKind.KYC_APPROVED, {**user_doc, "verificationStatus": "FirstLevelVerified"}, user),
        (NotificationKind.KYC_REJECTED, {**user_doc, "verificationStatus": "FirstLevelRejected"}, user),
        (NotificationKind.KYC_REMINDER, user_doc, user),
        (NotificationKind.PASSWORD_CHANGED, user_doc, user),
    ]

    balance_queries = [
        (NotificationKind.DEPOSIT_REQUESTED, {"type": _regex(DEPOSIT_RE)}),
        (NotificationKind.DEPOSIT_APPROVED, {"type": _regex(DEPOSIT_RE), "status": _regex(ACCEPTED_RE)}),
        (NotificationKind.DEPOSIT_REJECTED, {"type": _regex(DEPOSIT_RE), "status": _regex(REJECTED_RE)}),
        (NotificationKind.WITHDRAWAL_REQUESTED, {"type": _regex(WITHDRAW_RE)}),
        (NotificationKind.WITHDRAWAL_APPROVED, {"type": _regex(WITHDRAW_RE), "status": _regex(ACCEPTED_RE)}),
    ]
    for kind, match in balance_queries:
        doc = await sample_one(balance_tx, match)
        if doc:
            samples.append((kind, doc, await resolver.resolve_account(doc.get("user")) or user))

    trade_queries = [
        (NotificationKind.BUY_COMPLETED, {"type": _regex("^(buy|purchase)$"), "status": _regex(ACCEPTED_RE)}),
        (NotificationKind.SELL_COMPLETED, {"type": _regex("^sell$"), "status": _regex(ACCEPTED_RE)}),
    ]
    for kind, match in trade_queries:
        doc = await sample_one(transactions, match)
        if doc:
            doc = await resolver.enrich_trade(doc)
            samples.append((kind, doc, await resolver.resolve_account(doc.get("user")) or user))

    return samples


async def run(args: argparse.Namespace) -> None:
    settings = Settings()
    live, why_not = can_send_live(args, settings)
    print("Mode:", "LIVE" if live else f"print only ({why_not})")

    builder = MessageBuilder(settings.brand_name, settings.support_phone, settings.display_timezone)
    transport = None
    if live:
        transport = TwilioSmsTransport(settings.twilio_account_sid, settings.twilio_auth_token)

    client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
    try:
        samples = await collect_samples(client[settings.mongodb_db], settings)
        if not samples:
            print("❌ No user with a mobile number found.")
            return

        for kind, doc, account in samples[: args.limit]:
            text = builder.build_user_message(kind, doc, account)
            print(f"\n----- {kind.value} -----\n{text}")
            if transport is None or not text:
                continue
            result = await transport.send([normalize_digits(args.to)], settings.sms_sender, text)
            print("✅ sent" if result.ok else f"❌ failed: {result.code} {result.detail or ''}")
    finally:
        client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--to", default=os.getenv("SAMPLE_SMS_TO", ""), help="target mobile number")
    parser.add_argument("--send", action="store_true", help="send live when every safety check passes")
    parser.add_argument("--limit", type=int, default=12)
    args = parser.parse_args()
    if not args.to:
        parser.error("missing target: pass --to=0912... or set SAMPLE_SMS_TO")
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
