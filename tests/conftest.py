"""
Shared fixtures and in-memory fakes.

The fakes cover only the slice of the motor API the notifier uses:
find_one / insert_one / update_one / delete_one by `_id`, and watch()
returning a change stream usable with `async with` and `async for`.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId

from notifier.models import SendResult
from notifier.services.gate import NotificationGate
from notifier.services.messages import MessageBuilder
from notifier.settings import Settings


# =============================================================================
# Settings
# =============================================================================


def make_settings(**overrides) -> Settings:
    """Settings built from keyword values only; no .env and no process env leak in."""
    values = {
        "mongodb_uri": "mongodb://localhost:27017/?replicaSet=rs0",
        "mongodb_db": "backoffice_test",
        "app_env": "production",
        "sms_mode": "live",
        "sms_allow_live": True,
        "sms_sender": "+15550000000",
        "sms_admin_receptors": "09120000001",
        "twilio_account_sid": "ACtest",
        "twilio_auth_token": "secret",
        "sendgrid_api_key": "SG.test",
        "sendgrid_sender": "alerts@example.com",
        "alert_to": "ops@example.com",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep operator env vars from changing Settings() in tests."""
    for name in (
        "APP_ENV", "NODE_ENV", "MONGODB_URI", "MONGO_URI", "DATABASE_URI", "MONGODB_DB",
        "MONGODB_COLLECTION", "SMS_MODE", "SMS_ALLOW_LIVE", "SMS_ALLOW_NON_PROD",
        "SMS_ALLOWLIST", "SMS_MAX_PER_MINUTE", "SMS_ADMIN_RECEPTORS", "KAVENEGAR_RECEPTOR",
        "EMAIL_MODE", "ALERT_TO", "SENDGRID_API_KEY", "SENDGRID_SENDER", "SMTP_FROM",
        "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "SMS_SENDER", "WATCH_START_FRESH",
    ):
        monkeypatch.delenv(name, raising=False)


# =============================================================================
# Fake Mongo
# =============================================================================


class FakeUpdateResult:
    def __init__(self, matched: int, modified: int):
        self.matched_count = matched
        self.modified_count = modified


class FakeChangeStream:
    """
    Yields the queued change documents, then either raises `error` or
    blocks until cancelled (like an idle server stream).
    """

    def __init__(self, changes: List[Dict[str, Any]], error: Optional[BaseException] = None, hang: bool = True):
        self._changes = list(changes)
        self._error = error
        self._hang = hang
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._changes:
            return self._changes.pop(0)
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        if self._hang:
            await asyncio.Event().wait()
        raise StopAsyncIteration


class FakeCollection:
    def __init__(self, name: str, docs: Optional[List[Dict[str, Any]]] = None):
        self.name = name
        self.docs: Dict[Any, Dict[str, Any]] = {d["_id"]: dict(d) for d in docs or []}
        self.inserted: List[Dict[str, Any]] = []
        self.find_calls = 0
        self.streams: List[FakeChangeStream] = []
        self.watch_calls: List[Dict[str, Any]] = []
        self.find_error: Optional[BaseException] = None

    # --- CRUD ---

    async def find_one(self, flt: Dict[str, Any]):
        self.find_calls += 1
        if self.find_error is not None:
            raise self.find_error
        doc = self.docs.get(flt.get("_id"))
        return dict(doc) if doc else None

    async def insert_one(self, doc: Dict[str, Any]):
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        self.inserted.append(doc)
        self.docs[doc["_id"]] = doc

    async def update_one(self, flt: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        doc = self.docs.get(flt["_id"])
        if doc is None:
            if not upsert:
                return FakeUpdateResult(0, 0)
            doc = {"_id": flt["_id"]}
            self.docs[flt["_id"]] = doc
        for field, cond in flt.items():
            if isinstance(cond, dict) and "$exists" in cond and (field in doc) != cond["$exists"]:
                return FakeUpdateResult(0, 0)
        doc.update(update.get("$set", {}))
        return FakeUpdateResult(1, 1)

    async def delete_one(self, flt: Dict[str, Any]):
        self.docs.pop(flt["_id"], None)

    # --- change streams ---

    def queue_stream(self, stream: FakeChangeStream) -> None:
        self.streams.append(stream)

    def watch(self, pipeline, **kwargs):
        self.watch_calls.append({"pipeline": pipeline, **kwargs})
        if self.streams:
            return self.streams.pop(0)
        return FakeChangeStream([])


# =============================================================================
# Fake transports
# =============================================================================


class RecordingSmsTransport:
    def __init__(self, result: Optional[SendResult] = None):
        self.result = result or SendResult.success("SM123")
        self.calls: List[Dict[str, Any]] = []

    async def send(self, recipients, sender, text):
        self.calls.append({"recipients": list(recipients), "sender": sender, "text": text})
        return self.result


class RecordingEmailTransport:
    def __init__(self, result: Optional[SendResult] = None):
        self.result = result or SendResult.success("202")
        self.calls: List[Dict[str, Any]] = []

    async def send(self, to, subject, body):
        self.calls.append({"to": list(to), "subject": subject, "body": body})
        return self.result


class MemoryCheckpointStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.tokens: Dict[str, Any] = dict(initial or {})
        self.saves: List[Any] = []
        self.clears: List[str] = []

    async def load(self, stream_name):
        return self.tokens.get(stream_name)

    async def save(self, stream_name, token):
        if not token:
            return
        self.saves.append(token)
        self.tokens[stream_name] = token

    async def clear(self, stream_name):
        self.clears.append(stream_name)
        self.tokens.pop(stream_name, None)


# =============================================================================
# Change documents
# =============================================================================


def insert_change(doc: Dict[str, Any], token: str) -> Dict[str, Any]:
    return {
        "_id": {"_data": token},
        "operationType": "insert",
        "documentKey": {"_id": doc.get("_id")},
        "fullDocument": doc,
    }


def update_change(
    doc: Dict[str, Any],
    token: str,
    updated: Optional[Dict[str, Any]] = None,
    removed: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "_id": {"_data": token},
        "operationType": "update",
        "documentKey": {"_id": doc.get("_id")},
        "fullDocument": doc,
        "updateDescription": {"updatedFields": updated or {}, "removedFields": removed or []},
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def user_id():
    return ObjectId()


@pytest.fixture
def user_doc(user_id):
    return {
        "_id": user_id,
        "firstName": "علی",
        "lastName": "رضایی",
        "mobileNumber": "09121234567",
        "verificationStatus": "Pending",
        "tomanBalance": 2500000,
        "goldBalance": "12.5",
        "silverBalance": 300,
    }


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def builder():
    return MessageBuilder("مهرسان گلد", "07644421176", "Asia/Tehran")


@pytest.fixture
def gate(settings):
    return NotificationGate.from_settings(settings)


@pytest.fixture
def sms_transport():
    return RecordingSmsTransport()


@pytest.fixture
def email_transport():
    return RecordingEmailTransport()
