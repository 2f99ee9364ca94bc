"""
Tests for the diskcache-backed model storage.
"""

import threading

import pytest

from tuneweave.services.model_storage import DiskModelStorage


@pytest.fixture
def storage(tmp_path):
    storage = DiskModelStorage(storage_dir=str(tmp_path / "models"))
    yield storage
    storage.close()


class TestDiskModelStorage:
    """Model blobs and metadata."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, storage):
        await storage.save("preference-model", b"\x00weights")

        assert await storage.load("preference-model") == b"\x00weights"

    @pytest.mark.asyncio
    async def test_missing_model(self, storage):
        assert await storage.load("absent") is None

    @pytest.mark.asyncio
    async def test_metadata_default(self, storage):
        assert await storage.get("absent", {"version": 0}) == {"version": 0}

        await storage.set("meta", {"version": 3})

        assert await storage.get("meta") == {"version": 3}

    @pytest.mark.asyncio
    async def test_save_with_metadata(self, storage):
        await storage.save_with_metadata("model", b"v2", "model:meta", {"version": 2})

        assert await storage.load("model") == b"v2"
        assert await storage.get("model:meta") == {"version": 2}

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        first = DiskModelStorage(storage_dir=str(tmp_path / "models"))
        await first.save("model", b"persisted")
        first.close()

        second = DiskModelStorage(storage_dir=str(tmp_path / "models"))
        try:
            assert await second.load("model") == b"persisted"
        finally:
            second.close()

    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.save("model", b"blob")

        assert storage.delete("model")
        assert not storage.delete("model")
        assert await storage.load("model") is None

    @pytest.mark.asyncio
    async def test_stats(self, storage):
        await storage.save("model", b"blob")
        await storage.set("meta", {"version": 1})

        stats = storage.get_stats()

        assert stats["models"]["size"] == 1
        assert stats["metadata"]["size"] == 1

    @pytest.mark.asyncio
    async def test_checkpoint_written_off_event_loop_thread(self, storage):
        writers = []
        write = storage._write_checkpoint

        def recording_write(*args):
            writers.append(threading.get_ident())
            write(*args)

        storage._write_checkpoint = recording_write

        await storage.save_with_metadata("model", b"v1", "model:meta", {"version": 1})

        assert writers and writers[0] != threading.get_ident()
        assert await storage.load("model") == b"v1"

    @pytest.mark.asyncio
    async def test_failed_checkpoint_restores_previous_pair(self, storage):
        await storage.save_with_metadata("model", b"v1", "model:meta", {"version": 1})
        set_metadata = storage.metadata.set
        calls = []

        def flaky_set(key, value, *args, **kwargs):
            calls.append(key)
            if len(calls) == 1:
                raise OSError("disk full")
            return set_metadata(key, value, *args, **kwargs)

        storage.metadata.set = flaky_set

        with pytest.raises(OSError):
            await storage.save_with_metadata("model", b"v2", "model:meta", {"version": 2})

        assert await storage.load("model") == b"v1"
        assert await storage.get("model:meta") == {"version": 1}
