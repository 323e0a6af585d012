"""
Document store collaborators.

The core only ever talks to a DocumentStore: a flat namespace of
collections holding JSON-compatible documents keyed by id. Nothing here
is transactional; every call is an independent round-trip.
"""
import asyncio
import copy
import json
import logging
import operator
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import NotFoundError, StoreUnavailableError, ValidationError

logger = logging.getLogger(__name__)


def _contains(value, candidates) -> bool:
    return value in candidates


OPERATORS = {
    '==': operator.eq,
    '!=': operator.ne,
    'in': _contains,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}


@dataclass(frozen=True)
class Where:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValidationError(f"Unsupported query operator: {self.op}")

    def matches(self, doc: dict) -> bool:
        if self.field not in doc:
            return False
        try:
            return OPERATORS[self.op](doc[self.field], self.value)
        except TypeError:
            return False


def eq(field: str, value: Any) -> Where:
    return Where(field, '==', value)


async def query_any(store: 'DocumentStore', collection: str, fields: Iterable[str], value: Any) -> List[dict]:
    """Documents where any of `fields` equals `value`, each returned once."""
    found = {}
    for name in fields:
        for doc in await store.query(collection, [eq(name, value)]):
            found.setdefault(doc['id'], doc)
    return list(found.values())


def apply_query(
    docs: Iterable[dict],
    where: Iterable[Where] = (),
    order_by: str = None,
    descending: bool = False,
    limit: int = None,
    offset: int = 0
) -> List[dict]:
    """Filter, order and page documents the way both backends must."""
    where = list(where)
    results = [d for d in docs if all(w.matches(d) for w in where)]

    if order_by:
        # Documents missing the field sort first
        results.sort(
            key=lambda d: (d.get(order_by) is not None, d.get(order_by)),
            reverse=descending
        )

    if offset:
        results = results[offset:]
    if limit is not None:
        results = results[:limit]
    return results


class DocumentStore:
    """Async collection/document primitive consumed by every registry."""

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raise NotImplementedError

    async def query(
        self,
        collection: str,
        where: Iterable[Where] = (),
        order_by: str = None,
        descending: bool = False,
        limit: int = None,
        offset: int = 0
    ) -> List[dict]:
        raise NotImplementedError

    async def set(self, collection: str, doc_id: str, doc: dict) -> None:
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, partial: dict) -> dict:
        """Merge `partial` into an existing document. Missing documents raise NotFoundError."""
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False if it was already gone."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed store for tests and local development.
    Documents are copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, dict]] = {}

    async def _round_trip(self):
        await asyncio.sleep(0)

    def _bucket(self, collection: str) -> Dict[str, dict]:
        return self._collections.setdefault(collection, {})

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        await self._round_trip()
        doc = self._bucket(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(
        self,
        collection: str,
        where: Iterable[Where] = (),
        order_by: str = None,
        descending: bool = False,
        limit: int = None,
        offset: int = 0
    ) -> List[dict]:
        await self._round_trip()
        docs = [copy.deepcopy(d) for d in self._bucket(collection).values()]
        return apply_query(docs, where, order_by, descending, limit, offset)

    async def set(self, collection: str, doc_id: str, doc: dict) -> None:
        await self._round_trip()
        stored = copy.deepcopy(doc)
        stored['id'] = doc_id
        self._bucket(collection)[doc_id] = stored

    async def update(self, collection: str, doc_id: str, partial: dict) -> dict:
        await self._round_trip()
        bucket = self._bucket(collection)
        if doc_id not in bucket:
            raise NotFoundError(collection, doc_id)
        bucket[doc_id].update(copy.deepcopy(partial))
        return copy.deepcopy(bucket[doc_id])

    async def delete(self, collection: str, doc_id: str) -> bool:
        await self._round_trip()
        return self._bucket(collection).pop(doc_id, None) is not None

    def count(self, collection: str) -> int:
        return len(self._bucket(collection))


class RedisDocumentStore(DocumentStore):
    """
    Stores each document as a JSON string under
    ``{prefix}:{collection}:{id}`` and keeps the ids of a collection in
    the set ``{prefix}:{collection}``. Queries load the collection and
    filter client-side.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = 'teamtrack'):
        self.redis = redis_client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = 'teamtrack') -> 'RedisDocumentStore':
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client, prefix=prefix)

    def _index_key(self, collection: str) -> str:
        return f"{self.prefix}:{collection}"

    def _doc_key(self, collection: str, doc_id: str) -> str:
        return f"{self.prefix}:{collection}:{doc_id}"

    async def _call(self, coro):
        try:
            return await coro
        except RedisError as e:
            logger.error(f"Redis document store unavailable: {e}")
            raise StoreUnavailableError(f"Document store unavailable: {e}") from e

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        raw = await self._call(self.redis.get(self._doc_key(collection, doc_id)))
        return json.loads(raw) if raw else None

    async def query(
        self,
        collection: str,
        where: Iterable[Where] = (),
        order_by: str = None,
        descending: bool = False,
        limit: int = None,
        offset: int = 0
    ) -> List[dict]:
        ids = await self._call(self.redis.smembers(self._index_key(collection)))
        if not ids:
            return []

        keys = [self._doc_key(collection, doc_id) for doc_id in sorted(ids)]
        raws = await self._call(self.redis.mget(keys))
        docs = [json.loads(raw) for raw in raws if raw]
        return apply_query(docs, where, order_by, descending, limit, offset)

    async def set(self, collection: str, doc_id: str, doc: dict) -> None:
        stored = dict(doc)
        stored['id'] = doc_id

        async def _write():
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.set(self._doc_key(collection, doc_id), json.dumps(stored))
                pipe.sadd(self._index_key(collection), doc_id)
                await pipe.execute()

        await self._call(_write())

    async def update(self, collection: str, doc_id: str, partial: dict) -> dict:
        # Read-modify-write; last writer wins like any other call here
        current = await self.get(collection, doc_id)
        if current is None:
            raise NotFoundError(collection, doc_id)
        current.update(partial)
        await self.set(collection, doc_id, current)
        return current

    async def delete(self, collection: str, doc_id: str) -> bool:
        async def _remove():
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.delete(self._doc_key(collection, doc_id))
                pipe.srem(self._index_key(collection), doc_id)
                removed, _ = await pipe.execute()
            return removed

        removed = await self._call(_remove())
        return bool(removed)

    async def close(self) -> None:
        await self.redis.aclose()


def build_store(config) -> DocumentStore:
    """Select the store implementation named by STORE_BACKEND."""
    backend = config.get('STORE_BACKEND', 'memory')

    if backend == 'memory':
        return InMemoryDocumentStore()
    if backend == 'redis':
        return RedisDocumentStore.from_url(
            config.get('REDIS_URL', 'redis://localhost:6379'),
            prefix=config.get('STORE_KEY_PREFIX', 'teamtrack')
        )

    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
