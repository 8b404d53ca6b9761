"""
Realtime document store used for shared study-room state.

Documents are JSON objects addressed by slash separated paths
(``rooms/ABC123``, ``rooms/ABC123/quiz/current_quiz``). Every document can be
subscribed to: the listener fires once with the current value (``None`` when
absent) and again after each change. Delivery is latest-snapshot, so
intermediate states may be coalesced and listeners must derive everything from
the document they receive.

``update`` merges fields into an existing document. Two field operations are
applied atomically by the store:

    ArrayUnion(*values, key=None)  append values not already present
    ArrayRemove(*values)           remove exact matches

Two backends share these semantics: ``RedisDocumentStore`` (documents as JSON
strings, changes fanned out over pub/sub) and ``MemoryDocumentStore`` (single
process).
"""
import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional

from redis.exceptions import RedisError, WatchError

from studyhub.core.errors import DocumentNotFoundError, PersistenceError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Listener = Callable[[Optional[Document]], Awaitable[None]]


class ArrayUnion:
    """Append each value unless an equal element is already in the array.

    With ``key`` set, elements are considered equal when their ``key`` field
    matches, which gives set semantics keyed by that field.
    """

    def __init__(self, *values: Any, key: Optional[str] = None):
        self.values = list(values)
        self.key = key

    def _matches(self, existing: Any, candidate: Any) -> bool:
        if self.key is None:
            return existing == candidate
        return (
            isinstance(existing, dict)
            and isinstance(candidate, dict)
            and existing.get(self.key) == candidate.get(self.key)
        )

    def apply(self, current: List[Any]) -> List[Any]:
        result = list(current)
        for value in self.values:
            if not any(self._matches(existing, value) for existing in result):
                result.append(copy.deepcopy(value))
        return result


class ArrayRemove:
    """Remove every element equal to one of the values"""

    def __init__(self, *values: Any):
        self.values = list(values)

    def apply(self, current: List[Any]) -> List[Any]:
        return [element for element in current if element not in self.values]


def apply_update(document: Document, fields: Dict[str, Any]) -> Document:
    updated = copy.deepcopy(document)
    for name, value in fields.items():
        if isinstance(value, (ArrayUnion, ArrayRemove)):
            current = updated.get(name)
            updated[name] = value.apply(current if isinstance(current, list) else [])
        else:
            updated[name] = copy.deepcopy(value)
    return updated


def split_path(path: str):
    """``rooms/ABC/quiz/current`` -> (``rooms/ABC/quiz``, ``current``)"""
    collection, _, doc_id = path.rpartition("/")
    if not collection or not doc_id:
        raise ValueError(f"Invalid document path: {path!r}")
    return collection, doc_id


class Subscription:
    def __init__(self, cancel: Callable[[], Awaitable[None]]):
        self._cancel = cancel
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._cancel()


async def _deliver(listener: Listener, path: str, document: Optional[Document]) -> None:
    try:
        await listener(document)
    except Exception as e:
        logger.error(f"Listener for {path} failed: {e}", exc_info=True)


class DocumentStore(ABC):
    @abstractmethod
    async def get(self, path: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def set(self, path: str, value: Document) -> None:
        """Overwrite the document at ``path``"""

    @abstractmethod
    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into an existing document"""

    @abstractmethod
    async def delete(self, path: str) -> None:
        ...

    @abstractmethod
    async def list(self, collection: str) -> List[Document]:
        """Documents stored directly under ``collection``"""

    @abstractmethod
    async def subscribe(self, path: str, listener: Listener) -> Subscription:
        ...


class MemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    async def get(self, path: str) -> Optional[Document]:
        document = self._documents.get(path)
        return copy.deepcopy(document) if document is not None else None

    async def set(self, path: str, value: Document) -> None:
        split_path(path)
        self._documents[path] = copy.deepcopy(value)
        await self._notify(path)

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        if path not in self._documents:
            raise DocumentNotFoundError(f"update {path}", path)
        self._documents[path] = apply_update(self._documents[path], fields)
        await self._notify(path)

    async def delete(self, path: str) -> None:
        if self._documents.pop(path, None) is not None:
            await self._notify(path)

    async def list(self, collection: str) -> List[Document]:
        prefix = collection.rstrip("/") + "/"
        return [
            copy.deepcopy(document)
            for path, document in self._documents.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    async def subscribe(self, path: str, listener: Listener) -> Subscription:
        self._listeners[path].append(listener)

        async def cancel():
            if listener in self._listeners.get(path, []):
                self._listeners[path].remove(listener)

        await _deliver(listener, path, await self.get(path))
        return Subscription(cancel)

    async def _notify(self, path: str) -> None:
        for listener in list(self._listeners.get(path, [])):
            await _deliver(listener, path, await self.get(path))


class RedisDocumentStore(DocumentStore):
    KEY_PREFIX = "doc:"
    CHANNEL_PREFIX = "doc-changes:"
    INDEX_PREFIX = "doc-index:"
    MAX_UPDATE_ATTEMPTS = 10

    def __init__(self, redis_client):
        self.redis = redis_client

    def _key(self, path: str) -> str:
        return f"{self.KEY_PREFIX}{path}"

    def _channel(self, path: str) -> str:
        return f"{self.CHANNEL_PREFIX}{path}"

    def _index(self, collection: str) -> str:
        return f"{self.INDEX_PREFIX}{collection}"

    async def get(self, path: str) -> Optional[Document]:
        try:
            raw = await self.redis.get(self._key(path))
        except RedisError as e:
            raise PersistenceError(f"get {path}", e) from e
        return json.loads(raw) if raw is not None else None

    async def set(self, path: str, value: Document) -> None:
        collection, doc_id = split_path(path)
        payload = json.dumps(value)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key(path), payload)
                pipe.sadd(self._index(collection), doc_id)
                pipe.publish(self._channel(path), payload)
                await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"set {path}", e) from e

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        key = self._key(path)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for attempt in range(self.MAX_UPDATE_ATTEMPTS):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            raise DocumentNotFoundError(f"update {path}", path)
                        payload = json.dumps(apply_update(json.loads(raw), fields))
                        pipe.multi()
                        pipe.set(key, payload)
                        pipe.publish(self._channel(path), payload)
                        await pipe.execute()
                        return
                    except WatchError:
                        logger.debug(f"Concurrent write on {path}, retrying update (attempt {attempt + 1})")
                        continue
        except RedisError as e:
            raise PersistenceError(f"update {path}", e) from e
        raise PersistenceError(f"update {path}", message="too many concurrent writers")

    async def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(path))
                pipe.srem(self._index(collection), doc_id)
                pipe.publish(self._channel(path), json.dumps(None))
                await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"delete {path}", e) from e

    async def list(self, collection: str) -> List[Document]:
        collection = collection.rstrip("/")
        try:
            doc_ids = sorted(await self.redis.smembers(self._index(collection)))
            if not doc_ids:
                return []
            raws = await self.redis.mget([self._key(f"{collection}/{doc_id}") for doc_id in doc_ids])
        except RedisError as e:
            raise PersistenceError(f"list {collection}", e) from e
        return [json.loads(raw) for raw in raws if raw is not None]

    async def subscribe(self, path: str, listener: Listener) -> Subscription:
        channel = self._channel(path)
        pubsub = self.redis.pubsub()
        try:
            # Subscribe before reading so no change between the two is lost
            await pubsub.subscribe(channel)
            raw = await self.redis.get(self._key(path))
        except RedisError as e:
            await pubsub.aclose()
            raise PersistenceError(f"subscribe {path}", e) from e
        current = json.loads(raw) if raw is not None else None

        await _deliver(listener, path, current)
        task = asyncio.create_task(self._listen(pubsub, path, listener))

        async def cancel():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            try:
                await pubsub.unsubscribe(channel)
            except RedisError as e:
                logger.warning(f"Unsubscribe from {path} failed: {e}")
            finally:
                await pubsub.aclose()

        return Subscription(cancel)

    async def _listen(self, pubsub, path: str, listener: Listener) -> None:
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    document = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring malformed change notification on {path}")
                    continue
                await _deliver(listener, path, document)
        except RedisError as e:
            logger.error(f"Subscription to {path} lost: {e}", exc_info=True)
