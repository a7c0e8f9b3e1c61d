"""Unit tests for the change-stream watcher loop."""

import asyncio
import logging

import pytest
from pymongo.errors import AutoReconnect, OperationFailure

from notifier.services.checkpoints import FileCheckpointStore
from notifier.services.watcher import PIPELINE, StreamWatcher, is_stale_resume_error

from conftest import FakeChangeStream, FakeCollection, MemoryCheckpointStore, insert_change

OLD_TOKEN = {"_data": "old"}


async def wait_for(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class Recorder:
    def __init__(self, fail_on=None):
        self.events = []
        self.fail_on = fail_on

    async def __call__(self, event):
        self.events.append(event)
        if event.document_id == self.fail_on:
            raise ValueError("boom")


async def stop(task):
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class TestStaleResumeDetection:
    @pytest.mark.parametrize("code", [260, 280, 286])
    def test_codes(self, code):
        assert is_stale_resume_error(OperationFailure("x", code=code))

    def test_messages(self):
        assert is_stale_resume_error(OperationFailure("resume token was not found in the oplog"))
        assert is_stale_resume_error(AutoReconnect("resume point may no longer be in the oplog"))

    def test_other_errors(self):
        assert not is_stale_resume_error(OperationFailure("not primary", code=10107))
        assert not is_stale_resume_error(AutoReconnect("connection reset"))


class TestRun:
    async def test_opens_stream_with_pipeline_and_post_image(self):
        collection = FakeCollection("balancetransactions")
        watcher = StreamWatcher("tx", collection, Recorder(), MemoryCheckpointStore(), reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: collection.watch_calls)
        await stop(task)

        call = collection.watch_calls[0]
        assert call["pipeline"] == PIPELINE
        assert call["full_document"] == "updateLookup"
        assert "start_after" not in call

    async def test_resumes_after_stored_token(self):
        collection = FakeCollection("users")
        store = MemoryCheckpointStore({"users": OLD_TOKEN})
        watcher = StreamWatcher("users", collection, Recorder(), store, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: collection.watch_calls)
        await stop(task)

        assert collection.watch_calls[0]["start_after"] == OLD_TOKEN

    async def test_start_fresh_clears_checkpoint(self):
        collection = FakeCollection("users")
        store = MemoryCheckpointStore({"users": OLD_TOKEN})
        watcher = StreamWatcher("users", collection, Recorder(), store, start_fresh=True, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: collection.watch_calls)
        await stop(task)

        assert store.clears == ["users"]
        assert "start_after" not in collection.watch_calls[0]

    async def test_events_in_order_and_checkpointed(self):
        collection = FakeCollection("transactions")
        changes = [insert_change({"_id": i}, f"t{i}") for i in range(3)]
        collection.queue_stream(FakeChangeStream(changes))
        store = MemoryCheckpointStore()
        handler = Recorder()
        watcher = StreamWatcher("transactions", collection, handler, store, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: len(store.saves) == 3)
        await stop(task)

        assert [e.document_id for e in handler.events] == [0, 1, 2]
        assert store.saves == [{"_data": "t0"}, {"_data": "t1"}, {"_data": "t2"}]

    async def test_stale_token_clears_checkpoint_and_restarts_from_now(self, caplog):
        collection = FakeCollection("users")
        collection.queue_stream(FakeChangeStream([], error=OperationFailure("history lost", code=286)))
        store = MemoryCheckpointStore({"users": OLD_TOKEN})
        watcher = StreamWatcher("users", collection, Recorder(), store, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: len(collection.watch_calls) == 2)
        await stop(task)

        assert collection.watch_calls[0]["start_after"] == OLD_TOKEN
        assert "start_after" not in collection.watch_calls[1]
        assert store.clears == ["users"]
        assert "change stream error" in caplog.text

    async def test_transient_error_keeps_checkpoint(self):
        collection = FakeCollection("users")
        collection.queue_stream(FakeChangeStream([], error=AutoReconnect("connection reset")))
        store = MemoryCheckpointStore({"users": OLD_TOKEN})
        watcher = StreamWatcher("users", collection, Recorder(), store, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: len(collection.watch_calls) == 2)
        await stop(task)

        assert collection.watch_calls[1]["start_after"] == OLD_TOKEN
        assert store.clears == []


class TestProcess:
    async def test_handler_failure_is_logged_and_checkpoint_advances(self, caplog):
        store = MemoryCheckpointStore()
        watcher = StreamWatcher("tx", FakeCollection("tx"), Recorder(fail_on=7), store)

        with caplog.at_level(logging.ERROR):
            await watcher.process(insert_change({"_id": 7}, "t7"))

        assert store.tokens["tx"] == {"_data": "t7"}
        assert "handler failed" in caplog.text

    async def test_redelivered_token_is_skipped(self):
        handler = Recorder()
        watcher = StreamWatcher("tx", FakeCollection("tx"), handler, MemoryCheckpointStore())
        change = insert_change({"_id": 1}, "t1")

        await watcher.process(change)
        await watcher.process(change)

        assert len(handler.events) == 1

    async def test_unsupported_operation_is_checkpointed(self):
        handler = Recorder()
        store = MemoryCheckpointStore()
        watcher = StreamWatcher("tx", FakeCollection("tx"), handler, store)

        await watcher.process({"_id": {"_data": "t9"}, "operationType": "delete", "documentKey": {"_id": 9}})

        assert handler.events == []
        assert store.tokens["tx"] == {"_data": "t9"}

    async def test_checkpoint_write_failure_is_logged(self, caplog):
        store = MemoryCheckpointStore()

        async def broken_save(name, token):
            raise OSError("disk full")

        store.save = broken_save
        watcher = StreamWatcher("tx", FakeCollection("tx"), Recorder(), store)

        await watcher.process(insert_change({"_id": 1}, "t1"))

        assert "could not save checkpoint" in caplog.text


class TestShutdown:
    async def test_in_flight_handler_finishes_on_cancel(self):
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow_handler(event):
            started.set()
            await release.wait()
            finished.append(event.document_id)

        collection = FakeCollection("tx")
        collection.queue_stream(FakeChangeStream([insert_change({"_id": 1}, "t1")]))
        store = MemoryCheckpointStore()
        watcher = StreamWatcher("tx", collection, slow_handler, store, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await started.wait()
        task.cancel()
        await asyncio.sleep(0)
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert finished == [1]
        assert store.tokens["tx"] == {"_data": "t1"}


class FlakyCheckpointStore(MemoryCheckpointStore):
    """Raises a non-driver error on the first load."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.loads = 0

    async def load(self, stream_name):
        self.loads += 1
        if self.loads == 1:
            raise RuntimeError("checkpoint backend exploded")
        return await super().load(stream_name)


class TestUnexpectedErrors:
    async def test_non_driver_error_reopens_after_backoff(self, caplog):
        collection = FakeCollection("tx")
        collection.queue_stream(FakeChangeStream([insert_change({"_id": 1}, "t1")]))
        store = FlakyCheckpointStore()
        handler = Recorder()
        watcher = StreamWatcher("tx", collection, handler, store, reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: store.saves)

        assert not task.done()
        await stop(task)
        assert store.loads == 2
        assert [e.document_id for e in handler.events] == [1]
        assert "watcher error" in caplog.text

    async def test_stream_raising_non_driver_error_is_reopened(self):
        collection = FakeCollection("tx")
        collection.queue_stream(FakeChangeStream([], error=RuntimeError("bad frame")))
        watcher = StreamWatcher("tx", collection, Recorder(), MemoryCheckpointStore(), reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: len(collection.watch_calls) == 2)

        assert not task.done()
        await stop(task)

    async def test_unreadable_checkpoint_file_starts_from_now(self, tmp_path):
        (tmp_path / "resume-token-users.json").write_text('{"_data": {"$oid": "zz"}}', encoding="utf-8")
        collection = FakeCollection("users")
        watcher = StreamWatcher("users", collection, Recorder(), FileCheckpointStore(tmp_path), reconnect_delay=0)

        task = asyncio.create_task(watcher.run())
        await wait_for(lambda: collection.watch_calls)

        assert not task.done()
        await stop(task)
        assert "start_after" not in collection.watch_calls[0]


class TestIndependentStreams:
    async def test_blocked_handler_does_not_stall_other_stream(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocked_handler(event):
            started.set()
            await release.wait()

        slow_collection = FakeCollection("balancetransactions")
        slow_collection.queue_stream(FakeChangeStream([insert_change({"_id": "bt1"}, "s1")]))
        slow_store = MemoryCheckpointStore()
        slow = StreamWatcher("tx", slow_collection, blocked_handler, slow_store, reconnect_delay=0)

        fast_collection = FakeCollection("users")
        fast_collection.queue_stream(
            FakeChangeStream([insert_change({"_id": i}, f"u{i}") for i in range(3)])
        )
        fast_store = MemoryCheckpointStore()
        fast_handler = Recorder()
        fast = StreamWatcher("users", fast_collection, fast_handler, fast_store, reconnect_delay=0)

        slow_task = asyncio.create_task(slow.run())
        await started.wait()
        fast_task = asyncio.create_task(fast.run())
        await wait_for(lambda: len(fast_store.saves) == 3)

        assert [e.document_id for e in fast_handler.events] == [0, 1, 2]
        assert not slow_task.done()
        assert slow_store.saves == []

        release.set()
        await wait_for(lambda: slow_store.saves)
        assert slow_store.tokens["tx"] == {"_data": "s1"}
        await stop(slow_task)
        await stop(fast_task)

    async def test_failing_stream_does_not_stall_other_stream(self):
        failing_collection = FakeCollection("transactions")
        for _ in range(5):
            failing_collection.queue_stream(FakeChangeStream([], error=AutoReconnect("connection reset")))
        failing = StreamWatcher(
            "transactions", failing_collection, Recorder(), MemoryCheckpointStore(), reconnect_delay=0
        )

        healthy_collection = FakeCollection("users")
        healthy_collection.queue_stream(
            FakeChangeStream([insert_change({"_id": 1}, "u1"), insert_change({"_id": 2}, "u2")])
        )
        healthy_store = MemoryCheckpointStore()
        healthy = StreamWatcher("users", healthy_collection, Recorder(), healthy_store, reconnect_delay=0)

        failing_task = asyncio.create_task(failing.run())
        healthy_task = asyncio.create_task(healthy.run())
        await wait_for(lambda: len(healthy_store.saves) == 2 and len(failing_collection.watch_calls) >= 3)

        assert healthy_store.tokens["users"] == {"_data": "u2"}
        assert not failing_task.done()
        await stop(failing_task)
        await stop(healthy_task)
