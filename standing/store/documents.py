"""
Standing Engine — Document Store

The engine sees storage as collections of JSON documents addressed by id.
Every write touches exactly one document, so a recomputation either lands in
full or not at all.

Operations:
    get(collection, id)                          -> doc | None
    put(collection, id, doc, expected_version)   compare-and-set on _version
    create(collection, id, doc)                  fails if the id exists
    increment(collection, id, field, amount)     atomic counter bump
    query(collection, **equals)                  iterate matching docs

Each stored document carries a store-managed `_version`, starting at 1.
`expected_version=0` means "must not exist yet".

Backends:
    MemoryDocumentStore  process-local, for tests and local development
    RedisDocumentStore   production; WATCH/MULTI for compare-and-set

Redis key schema:
    {prefix}:{collection}:{id}    JSON document
    {prefix}:{collection}:_ids    set of ids (for query)

Dependencies: redis >= 5.0.0
"""
import copy
import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

import redis
import structlog

from standing.errors import ConflictError

logger = structlog.get_logger()

VERSION_FIELD = "_version"
INCREMENT_MAX_ATTEMPTS = 10


def _matches(doc: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(doc.get(k) == v for k, v in filters.items())


class DocumentStore(ABC):

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def put(self, collection: str, doc_id: str, doc: Dict[str, Any],
            expected_version: Optional[int] = None) -> int:
        """Write a document. Returns the new version. Raises ConflictError."""

    @abstractmethod
    def create(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> int:
        """Write only if absent. Raises ConflictError when the id is taken."""

    @abstractmethod
    def increment(self, collection: str, doc_id: str, field: str, amount: float = 1) -> float:
        ...

    @abstractmethod
    def query(self, collection: str, **filters) -> Iterator[Dict[str, Any]]:
        ...

    def ping(self) -> bool:
        return True


# =============================================
# IN-MEMORY
# =============================================

class MemoryDocumentStore(DocumentStore):
    """Thread-safe dict-backed store. Returns copies so callers cannot mutate state."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _collection(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(collection, {})

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def put(self, collection, doc_id, doc, expected_version=None):
        with self._lock:
            docs = self._collection(collection)
            current = docs.get(doc_id, {}).get(VERSION_FIELD, 0)
            if expected_version is not None and current != expected_version:
                raise ConflictError(
                    f"Version conflict on {collection}/{doc_id}",
                    {"expected": expected_version, "actual": current},
                )
            stored = copy.deepcopy(doc)
            stored[VERSION_FIELD] = current + 1
            docs[doc_id] = stored
            return stored[VERSION_FIELD]

    def create(self, collection, doc_id, doc):
        with self._lock:
            if doc_id in self._collection(collection):
                raise ConflictError(f"{collection}/{doc_id} already exists")
            return self.put(collection, doc_id, doc, expected_version=0)

    def increment(self, collection, doc_id, field, amount=1):
        with self._lock:
            docs = self._collection(collection)
            doc = docs.setdefault(doc_id, {VERSION_FIELD: 0})
            doc[field] = doc.get(field, 0) + amount
            doc[VERSION_FIELD] = doc.get(VERSION_FIELD, 0) + 1
            return doc[field]

    def query(self, collection, **filters):
        with self._lock:
            docs = [copy.deepcopy(d) for _, d in sorted(self._collection(collection).items())]
        for doc in docs:
            if _matches(doc, filters):
                yield doc


# =============================================
# REDIS
# =============================================

class RedisDocumentStore(DocumentStore):
    """
    Production store on Redis.

    Unlike a cache, failures here propagate: the caller must know a write
    did not happen.
    """

    def __init__(self, redis_url: str, prefix: str = "standing",
                 client: Optional[redis.Redis] = None):
        self._url = redis_url
        self._prefix = prefix
        self._client = client

    def _connect(self) -> redis.Redis:
        if self._client is None:
            pool = redis.ConnectionPool.from_url(
                self._url,
                max_connections=20,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            self._client = redis.Redis(connection_pool=pool)
            logger.info("document_store_connected", url=self._url.split("@")[-1])
        return self._client

    def _key(self, collection: str, doc_id: str) -> str:
        return f"{self._prefix}:{collection}:{doc_id}"

    def _index(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_ids"

    def ping(self) -> bool:
        return bool(self._connect().ping())

    def get(self, collection, doc_id):
        raw = self._connect().get(self._key(collection, doc_id))
        return json.loads(raw) if raw else None

    def put(self, collection, doc_id, doc, expected_version=None):
        client = self._connect()
        key = self._key(collection, doc_id)
        with client.pipeline() as pipe:
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                current = json.loads(raw).get(VERSION_FIELD, 0) if raw else 0
                if expected_version is not None and current != expected_version:
                    raise ConflictError(
                        f"Version conflict on {collection}/{doc_id}",
                        {"expected": expected_version, "actual": current},
                    )
                stored = dict(doc)
                stored[VERSION_FIELD] = current + 1
                pipe.multi()
                pipe.set(key, json.dumps(stored, default=str))
                pipe.sadd(self._index(collection), doc_id)
                pipe.execute()
                return stored[VERSION_FIELD]
            except redis.WatchError as e:
                logger.info("document_write_conflict", collection=collection, doc_id=doc_id)
                raise ConflictError(f"Concurrent write on {collection}/{doc_id}") from e

    def create(self, collection, doc_id, doc):
        key = self._key(collection, doc_id)
        stored = dict(doc)
        stored[VERSION_FIELD] = 1
        # The document and its index entry land in one transaction
        with self._connect().pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.exists(key):
                    raise ConflictError(f"{collection}/{doc_id} already exists")
                pipe.multi()
                pipe.set(key, json.dumps(stored, default=str))
                pipe.sadd(self._index(collection), doc_id)
                pipe.execute()
            except redis.WatchError as e:
                logger.info("document_create_conflict", collection=collection, doc_id=doc_id)
                raise ConflictError(f"{collection}/{doc_id} already exists") from e
        return 1

    def increment(self, collection, doc_id, field, amount=1):
        client = self._connect()
        key = self._key(collection, doc_id)
        for _ in range(INCREMENT_MAX_ATTEMPTS):
            with client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    doc = json.loads(raw) if raw else {VERSION_FIELD: 0}
                    doc[field] = doc.get(field, 0) + amount
                    doc[VERSION_FIELD] = doc.get(VERSION_FIELD, 0) + 1
                    pipe.multi()
                    pipe.set(key, json.dumps(doc, default=str))
                    pipe.sadd(self._index(collection), doc_id)
                    pipe.execute()
                    return doc[field]
                except redis.WatchError:
                    continue
        raise ConflictError(f"Could not increment {collection}/{doc_id}.{field}")

    def query(self, collection, **filters):
        client = self._connect()
        ids: List[str] = sorted(client.smembers(self._index(collection)))
        for start in range(0, len(ids), 100):
            chunk = ids[start:start + 100]
            for raw in client.mget([self._key(collection, i) for i in chunk]):
                if not raw:
                    continue
                doc = json.loads(raw)
                if _matches(doc, filters):
                    yield doc
