"""
Tests for the tabpilot.coordination.state.persistence module.

This module tests:
- In-memory and file storage backends
- Background saving, deduplication and failure logging
- Engine state restored from a persister
"""

import logging

import pytest

from tabpilot.agents.memory import UserMessage
from tabpilot.coordination.state.persistence import (
    STATE_KEY,
    FileStorageBackend,
    InMemoryStorageBackend,
    StatePersister,
    StorageBackend,
)

from conftest import text_stream


class CountingBackend(InMemoryStorageBackend):
    def __init__(self):
        super().__init__()
        self.saves = 0

    async def save(self, key, data):
        self.saves += 1
        await super().save(key, data)


class BrokenBackend(StorageBackend):
    async def save(self, key, data):
        raise OSError("disk full")

    async def load(self, key):
        return None

    async def delete(self, key):
        pass

    async def exists(self, key):
        return False


# =============================================================================
# Backends
# =============================================================================

class TestBackends:
    """Tests for the storage backends."""

    @pytest.mark.asyncio
    async def test_in_memory_copies_data(self):
        backend = InMemoryStorageBackend()
        data = {"sessions": {}}

        await backend.save("k", data)
        data["sessions"]["x"] = 1

        assert await backend.load("k") == {"sessions": {}}
        assert await backend.exists("k")
        await backend.delete("k")
        assert await backend.load("k") is None

    @pytest.mark.asyncio
    async def test_file_round_trip(self, tmp_path):
        backend = FileStorageBackend(tmp_path / "state")

        await backend.save("k", {"title": "Café"})

        assert (tmp_path / "state" / "k.json").exists()
        assert await backend.load("k") == {"title": "Café"}
        await backend.delete("k")
        assert not await backend.exists("k")

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_as_none(self, tmp_path):
        backend = FileStorageBackend(tmp_path)
        (tmp_path / "k.json").write_text("{not json", encoding="utf-8")

        assert await backend.load("k") is None


# =============================================================================
# StatePersister
# =============================================================================

class TestStatePersister:
    """Tests for StatePersister."""

    @pytest.mark.asyncio
    async def test_schedule_saves_in_background(self):
        backend = InMemoryStorageBackend()
        persister = StatePersister(backend)

        task = persister.schedule({"active_id": "s1", "sessions": {}})
        await persister.flush()

        assert task.done()
        assert backend.data[STATE_KEY]["active_id"] == "s1"

    @pytest.mark.asyncio
    async def test_snapshot_copied_at_schedule_time(self):
        backend = InMemoryStorageBackend()
        persister = StatePersister(backend)
        snapshot = {"active_id": "s1"}

        persister.schedule(snapshot)
        snapshot["active_id"] = "changed"
        await persister.flush()

        assert backend.data[STATE_KEY]["active_id"] == "s1"

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_saved_once(self):
        backend = CountingBackend()
        persister = StatePersister(backend)

        persister.schedule({"a": 1})
        persister.schedule({"a": 1})
        await persister.flush()

        assert backend.saves == 1

    def test_schedule_without_loop(self):
        assert StatePersister(InMemoryStorageBackend()).schedule({"a": 1}) is None

    @pytest.mark.asyncio
    async def test_failure_logged_not_raised(self, caplog):
        persister = StatePersister(BrokenBackend())

        with caplog.at_level(logging.ERROR):
            persister.schedule({"a": 1})
            await persister.flush()

        assert "Background state save failed: disk full" in caplog.text


class TestEngineState:
    """Tests for saving and restoring engine state."""

    @pytest.mark.asyncio
    async def test_state_restored_by_new_engine(self, make_engine):
        persister = StatePersister(InMemoryStorageBackend())
        engine, _ = await make_engine([text_stream("Hi there.")], persister=persister)

        await engine.send("Hello")
        await engine.close()

        restored, _ = await make_engine([text_stream("x")], persister=persister)

        messages = restored.ctx.store.messages()
        assert isinstance(messages[0], UserMessage)
        assert messages[0].content == "Hello"
        assert messages[1].content == "Hi there."
        assert restored.ctx.store.active_id == engine.ctx.store.active_id
