"""
Unit Tests for Room Resources

Uses a real LocalBlobStore under pytest's tmp_path.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from studyhub.core.errors import ResourceTooLargeError
from studyhub.models.room import RoomResource
from studyhub.services.resources import LocalBlobStore, ResourcePoller, ResourceService


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path), "/files/")


@pytest.fixture
def service(blob_store) -> ResourceService:
    return ResourceService(blob_store, max_bytes=1024)


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_rejects_path_traversal(self, blob_store) -> None:
        with pytest.raises(ValueError):
            await blob_store.upload("../escape.txt", b"x", {})

    @pytest.mark.asyncio
    async def test_list_missing_prefix_is_empty(self, blob_store) -> None:
        assert await blob_store.list("rooms/NONE/resources") == []

    @pytest.mark.asyncio
    async def test_metadata_sidecar(self, blob_store, tmp_path) -> None:
        await blob_store.upload("rooms/A/resources/notes.txt", b"hello", {"uploader": "Ada"})

        metadata = await blob_store.get_metadata("rooms/A/resources/notes.txt")

        assert (tmp_path / "rooms/A/resources/notes.txt").read_bytes() == b"hello"
        assert metadata["customMetadata"] == {"uploader": "Ada"}
        assert metadata["size"] == 5
        assert await blob_store.list("rooms/A/resources") == ["rooms/A/resources/notes.txt"]


class TestResourceService:
    @pytest.mark.asyncio
    async def test_upload_and_list(self, service) -> None:
        uploaded = await service.upload_resource("ROOM01", "slides.pdf", b"%PDF", "Ada")

        assert uploaded.name == "slides.pdf"
        assert uploaded.url == "/files/rooms/ROOM01/resources/slides.pdf"
        assert uploaded.uploader == "Ada"
        assert uploaded.timeCreated

        assert [r.name for r in await service.list_resources("ROOM01")] == ["slides.pdf"]
        assert await service.list_resources("OTHER1") == []

    @pytest.mark.asyncio
    async def test_unknown_uploader(self, service) -> None:
        uploaded = await service.upload_resource("ROOM01", "a.txt", b"a", None)

        assert uploaded.uploader == "Unknown"

    @pytest.mark.asyncio
    async def test_file_name_is_reduced_to_basename(self, service) -> None:
        uploaded = await service.upload_resource("ROOM01", "../../etc/passwd", b"a", "Eve")

        assert uploaded.url == "/files/rooms/ROOM01/resources/passwd"

    @pytest.mark.asyncio
    async def test_too_large(self, service) -> None:
        with pytest.raises(ResourceTooLargeError):
            await service.upload_resource("ROOM01", "big.bin", b"x" * 1025, "Ada")

        assert await service.list_resources("ROOM01") == []

    @pytest.mark.asyncio
    async def test_delete(self, service) -> None:
        await service.upload_resource("ROOM01", "a.txt", b"a", "Ada")

        await service.delete_resource("ROOM01", "a.txt")
        await service.delete_resource("ROOM01", "a.txt")

        assert await service.list_resources("ROOM01") == []


class TestResourcePoller:
    @pytest.mark.asyncio
    async def test_poll_once_delivers_listing(self) -> None:
        listing = [RoomResource(name="a.txt", url="/files/a.txt")]
        callback = AsyncMock()

        await ResourcePoller(AsyncMock(return_value=listing), callback).poll_once()

        callback.assert_awaited_once_with(listing)

    @pytest.mark.asyncio
    async def test_failed_poll_is_skipped(self) -> None:
        callback = AsyncMock()

        await ResourcePoller(AsyncMock(side_effect=OSError("disk")), callback).poll_once()

        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_polls_until_stopped(self) -> None:
        fetch = AsyncMock(return_value=[])
        poller = ResourcePoller(fetch, AsyncMock(), interval=0.01)

        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()
        calls = fetch.await_count
        await asyncio.sleep(0.03)

        assert calls >= 2
        assert fetch.await_count == calls
        assert not poller.running
