# scripts/create_indexes.py
"""
Create/ensure MongoDB indexes used by the notifier.

Run from project root:
  - python scripts/create_indexes.py
  - OR: python -m scripts.create_indexes
"""

import asyncio
import os
import sys

# --- Make sure 'notifier' package is importable when running this file directly ---
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from motor.motor_asyncio import AsyncIOMotorClient  # type: ignore

from notifier.settings import Settings


async def ensure_indexes(settings: Settings) -> None:
    client = AsyncIOMotorClient(settings.mongodb_uri)
    db = client[settings.mongodb_db]

    # SMS_LOGS (per-number history, newest first)
    await db[settings.sms_log_collection].create_index([("mobileNumber", 1), ("sentAt", -1)])
    await db[settings.sms_log_collection].create_index([("kind", 1), ("sentAt", -1)])

    # RESUME_TOKENS (keyed by stream name in _id; only the freshness index is extra)
    await db[settings.checkpoint_collection].create_index([("updatedAt", -1)])

    # USERS (welcome marker compare-and-set filters on it)
    await db[settings.users_collection].create_index([("welcomeSmsSentAt", 1)], sparse=True)

    client.close()


def main() -> None:
    try:
        asyncio.run(ensure_indexes(Settings()))
        print("✅ Indexes ensured.")
    except Exception as e:
        print(f"❌ Failed to create indexes: {e}")
        raise


if __name__ == "__main__":
    main()
