import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import aiofiles
import aiofiles.os

from studyhub.core.config import MAX_RESOURCE_BYTES, RESOURCE_POLL_INTERVAL_SECONDS
from studyhub.core.errors import PersistenceError, ResourceTooLargeError
from studyhub.models.room import RoomResource

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta.json"


class BlobStore(ABC):
    """Binary objects addressed by slash separated paths, with custom metadata"""

    @abstractmethod
    async def upload(self, path: str, data: bytes, metadata: Dict[str, str]) -> None:
        ...

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """References of the objects directly under ``prefix``"""

    @abstractmethod
    async def get_url(self, ref: str) -> str:
        ...

    @abstractmethod
    async def get_metadata(self, ref: str) -> Dict[str, str]:
        ...

    @abstractmethod
    async def delete(self, ref: str) -> None:
        ...


class LocalBlobStore(BlobStore):
    """Blob store on the local filesystem; metadata lives in a JSON sidecar file"""

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, ref: str) -> Path:
        target = (self.root / ref).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Invalid blob reference: {ref!r}")
        return target

    async def upload(self, path: str, data: bytes, metadata: Dict[str, str]) -> None:
        target = self._resolve(path)
        sidecar = {
            "customMetadata": dict(metadata),
            "timeCreated": datetime.now(timezone.utc).isoformat(),
            "size": len(data),
        }
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
            async with aiofiles.open(f"{target}{METADATA_SUFFIX}", "w") as f:
                await f.write(json.dumps(sidecar))
        except OSError as e:
            raise PersistenceError(f"upload {path}", e) from e

    async def list(self, prefix: str) -> List[str]:
        directory = self._resolve(prefix)
        try:
            if not await aiofiles.os.path.isdir(directory):
                return []
            refs = []
            for name in sorted(await aiofiles.os.listdir(directory)):
                if name.endswith(METADATA_SUFFIX):
                    continue
                if await aiofiles.os.path.isfile(directory / name):
                    refs.append(f"{prefix.rstrip('/')}/{name}")
        except OSError as e:
            raise PersistenceError(f"list {prefix}", e) from e
        return refs

    async def get_url(self, ref: str) -> str:
        self._resolve(ref)
        return f"{self.base_url}/{ref}"

    async def get_metadata(self, ref: str) -> Dict[str, str]:
        target = self._resolve(ref)
        try:
            async with aiofiles.open(f"{target}{METADATA_SUFFIX}", "r") as f:
                sidecar = json.loads(await f.read())
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise PersistenceError(f"get_metadata {ref}", e) from e
        return sidecar

    async def delete(self, ref: str) -> None:
        target = self._resolve(ref)
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"delete {ref}", e) from e
        try:
            await aiofiles.os.remove(f"{target}{METADATA_SUFFIX}")
        except FileNotFoundError:
            pass


def resources_prefix(room_id: str) -> str:
    return f"rooms/{room_id}/resources"


class ResourceService:
    def __init__(self, blob_store: BlobStore, max_bytes: int = MAX_RESOURCE_BYTES):
        self.blob_store = blob_store
        self.max_bytes = max_bytes

    async def upload_resource(self, room_id: str, filename: str, data: bytes, uploader: Optional[str]) -> RoomResource:
        if len(data) > self.max_bytes:
            raise ResourceTooLargeError(len(data), self.max_bytes)
        name = Path(filename).name
        if not name:
            raise ValueError("A file name is required")

        ref = f"{resources_prefix(room_id)}/{name}"
        await self.blob_store.upload(ref, data, {"uploader": uploader or "Unknown"})
        logger.info(f"Uploaded resource {name} ({len(data)} bytes) to room {room_id}")
        return await self._describe(ref)

    async def _describe(self, ref: str) -> RoomResource:
        url = await self.blob_store.get_url(ref)
        metadata = await self.blob_store.get_metadata(ref)
        return RoomResource(
            name=ref.rsplit("/", 1)[-1],
            url=url,
            uploader=metadata.get("customMetadata", {}).get("uploader"),
            timeCreated=metadata.get("timeCreated"),
        )

    async def list_resources(self, room_id: str) -> List[RoomResource]:
        refs = await self.blob_store.list(resources_prefix(room_id))
        return list(await asyncio.gather(*(self._describe(ref) for ref in refs)))

    async def delete_resource(self, room_id: str, filename: str) -> None:
        await self.blob_store.delete(f"{resources_prefix(room_id)}/{Path(filename).name}")
        logger.info(f"Deleted resource {filename} from room {room_id}")


class ResourcePoller:
    """
    Periodically lists a room's resources and hands the result to ``callback``.

    Blob storage has no change feed, so the resource list is polled: once
    immediately on ``start()`` and then every ``interval`` seconds until
    ``stop()``.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[List[RoomResource]]],
        callback: Callable[[List[RoomResource]], Awaitable[None]],
        interval: float = RESOURCE_POLL_INTERVAL_SECONDS,
    ):
        self.fetch = fetch
        self.callback = callback
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def poll_once(self) -> None:
        # A failed poll is reported and the schedule carries on
        try:
            resources = await self.fetch()
            await self.callback(resources)
        except Exception as e:
            logger.error(f"Resource poll failed: {e}", exc_info=True)

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)
