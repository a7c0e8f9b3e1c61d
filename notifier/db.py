# notifier/db.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from notifier.settings import Settings

mongo_client: AsyncIOMotorClient | None = None


async def connect_to_mongo(settings: Settings) -> AsyncIOMotorDatabase:
    """
    Create and return a DB handle (not just the client).
    Change streams need a replica set or sharded cluster behind `mongodb_uri`.
    """
    global mongo_client
    mongo_client = AsyncIOMotorClient(settings.mongodb_uri, tz_aware=True)
    return mongo_client[settings.mongodb_db]


async def close_mongo_connection():
    global mongo_client
    if mongo_client:
        mongo_client.close()
        mongo_client = None
