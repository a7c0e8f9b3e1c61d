# notifier/services/checkpoints.py
"""
Per-stream resume-token persistence.

load() treats a missing or unreadable checkpoint as "no checkpoint": the stream
then starts from now instead of crashing. save() never overwrites a stored
token with an empty one.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from datetime import timezone
from pathlib import Path
from typing import Any, Dict, Optional

from bson import json_util
from bson.errors import BSONError
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from notifier.settings import Settings

logger = logging.getLogger(__name__)

ResumeToken = Dict[str, Any]


class ICheckpointStore:
    async def load(self, stream_name: str) -> Optional[ResumeToken]: ...
    async def save(self, stream_name: str, token: Optional[ResumeToken]) -> None: ...
    async def clear(self, stream_name: str) -> None: ...


class FileCheckpointStore(ICheckpointStore):
    """One `resume-token-<stream>.json` file per stream."""

    def __init__(self, directory: str | os.PathLike = "."):
        self.directory = Path(directory)

    def path_for(self, stream_name: str) -> Path:
        return self.directory / f"resume-token-{stream_name}.json"

    async def load(self, stream_name: str) -> Optional[ResumeToken]:
        path = self.path_for(stream_name)
        try:
            token = json_util.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, BSONError) as e:
            logger.warning("Ignoring unreadable checkpoint %s: %s", path, e)
            return None
        return token if isinstance(token, dict) and token else None

    async def save(self, stream_name: str, token: Optional[ResumeToken]) -> None:
        if not token:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(stream_name)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json_util.dumps(token), encoding="utf-8")
        os.replace(tmp, path)

    async def clear(self, stream_name: str) -> None:
        try:
            self.path_for(stream_name).unlink()
        except FileNotFoundError:
            pass


class MongoCheckpointStore(ICheckpointStore):
    """One `{_id: <stream>, token, updatedAt}` document per stream."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def load(self, stream_name: str) -> Optional[ResumeToken]:
        try:
            row = await self.collection.find_one({"_id": stream_name})
        except PyMongoError as e:
            logger.warning("Could not read checkpoint %s: %s", stream_name, e)
            return None
        if not row:
            return None
        token = row.get("token")
        return token if isinstance(token, dict) and token else None

    async def save(self, stream_name: str, token: Optional[ResumeToken]) -> None:
        if not token:
            return
        await self.collection.update_one(
            {"_id": stream_name},
            {"$set": {"token": token, "updatedAt": dt.datetime.now(timezone.utc)}},
            upsert=True,
        )

    async def clear(self, stream_name: str) -> None:
        await self.collection.delete_one({"_id": stream_name})


def build_checkpoint_store(settings: Settings, db: AsyncIOMotorDatabase) -> ICheckpointStore:
    """
    CHECKPOINT_BACKEND=mongo -> MongoCheckpointStore on `checkpoint_collection`.
    Otherwise -> FileCheckpointStore in `checkpoint_dir`.
    """
    if settings.checkpoint_backend == "mongo":
        return MongoCheckpointStore(db[settings.checkpoint_collection])
    return FileCheckpointStore(settings.checkpoint_dir)
