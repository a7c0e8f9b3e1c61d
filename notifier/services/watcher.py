# notifier/services/watcher.py
"""
Change-stream consumer for one collection.

Events are handled one at a time, in feed order. After every event (inert or
not, handler failure or not) the event's resume token is written to the
checkpoint store, so a restart continues after the last handled event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import OperationFailure, PyMongoError

from notifier.models import ChangeEvent
from notifier.services.checkpoints import ICheckpointStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[ChangeEvent], Awaitable[None]]

PIPELINE: List[Dict[str, Any]] = [
    {"$match": {"operationType": {"$in": ["insert", "update"]}}},
]

# InvalidResumeToken, ChangeStreamFatalError, ChangeStreamHistoryLost
STALE_RESUME_CODES = {260, 280, 286}
STALE_RESUME_MESSAGES = ("resume token was not found", "no longer be in the oplog")


def is_stale_resume_error(exc: BaseException) -> bool:
    """True when the server can no longer resume from the token we gave it."""
    if isinstance(exc, OperationFailure) and exc.code in STALE_RESUME_CODES:
        return True
    text = str(exc).lower()
    return any(m in text for m in STALE_RESUME_MESSAGES)


class StreamWatcher:
    def __init__(
        self,
        name: str,
        collection: AsyncIOMotorCollection,
        handler: EventHandler,
        checkpoints: ICheckpointStore,
        *,
        start_fresh: bool = False,
        reconnect_delay: float = 1.5,
    ):
        self.name = name
        self.collection = collection
        self.handler = handler
        self.checkpoints = checkpoints
        self.start_fresh = start_fresh
        self.reconnect_delay = reconnect_delay
        self._last_token: Optional[Dict[str, Any]] = None

    async def run(self) -> None:
        """
        Watch until cancelled. Feed errors are logged and the stream is reopened
        after `reconnect_delay` seconds, without a retry limit.
        """
        if self.start_fresh:
            logger.info("[%s] start-fresh requested, dropping stored checkpoint", self.name)
            await self._clear_checkpoint()

        while True:
            try:
                await self._watch_once()
            except PyMongoError as e:
                logger.error("[%s] change stream error: %s", self.name, e)
                if is_stale_resume_error(e):
                    logger.warning("[%s] stored resume token is no longer valid, resuming from now", self.name)
                    await self._clear_checkpoint()
            except Exception:
                logger.exception("[%s] watcher error, reopening after backoff", self.name)
            else:
                logger.warning("[%s] change stream closed by server", self.name)
            await asyncio.sleep(self.reconnect_delay)

    async def _watch_once(self) -> None:
        token = await self.checkpoints.load(self.name)
        kwargs: Dict[str, Any] = {"full_document": "updateLookup"}
        if token:
            kwargs["start_after"] = token
            self._last_token = token

        async with self.collection.watch(PIPELINE, **kwargs) as stream:
            logger.info("[%s] watching %s (%s)", self.name, self.collection.name, "resumed" if token else "from now")
            async for change in stream:
                in_flight = asyncio.ensure_future(self.process(change))
                try:
                    await asyncio.shield(in_flight)
                except asyncio.CancelledError:
                    # let the handler and its checkpoint write complete
                    await in_flight
                    raise

    async def process(self, change: Dict[str, Any]) -> None:
        """Handle one raw change document and checkpoint it."""
        token = change.get("_id")
        if token is not None and token == self._last_token:
            logger.info("[%s] event already processed, skipping", self.name)
            return

        try:
            event = ChangeEvent.from_change(change)
            await self.handler(event)
        except Exception:
            logger.exception("[%s] handler failed for %s", self.name, (change.get("documentKey") or {}).get("_id"))

        self._last_token = token
        try:
            await self.checkpoints.save(self.name, token)
        except (PyMongoError, OSError) as e:
            logger.error("[%s] could not save checkpoint: %s", self.name, e)

    async def _clear_checkpoint(self) -> None:
        self._last_token = None
        try:
            await self.checkpoints.clear(self.name)
        except (PyMongoError, OSError) as e:
            logger.error("[%s] could not clear checkpoint: %s", self.name, e)
