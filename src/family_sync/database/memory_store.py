"""
# In-Memory Document Store

A complete `DocumentStore` held in process memory. It backs the test suite and
single-process deployments (`STORE_BACKEND=memory`), and behaves like the remote backend
in the ways the core depends on:

- **Suspension points**: every operation yields to the event loop before touching state,
  so concurrent coroutines interleave the way independent clients would.
- **Asynchronous delivery**: snapshots are scheduled with `loop.call_soon`, never invoked
  inside the writer's call stack. A cancelled subscription drops deliveries that were
  already scheduled.
- **Per-document versions**: each write bumps a counter used by `update_doc_if_version`.
- **Atomic batches**: a batch is validated against a staged copy and applied only if every
  operation succeeds.
- **Server time**: `ServerTimestamp` sentinels are resolved with an injectable clock so
  ordering tests are deterministic.

## Usage

```python
store = InMemoryDocumentStore()
await store.set_doc("artifacts/dev/public/data/families/QX7K2P", {"name": "Silva", "members": ["u1"]})
sub = store.subscribe("artifacts/dev/public/data/family_items", lambda snap: print(len(snap)))
...
sub.cancel()
```

Subscriptions must be created from code running inside an event loop.
"""

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from family_sync.database.document_store import (
    ArrayUnion,
    BatchOperation,
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    QuerySnapshot,
    ServerTimestamp,
    SnapshotCallback,
    Subscription,
    deliver_snapshot,
    is_document_path,
    parent_path,
    require_collection_path,
    require_document_path,
    split_path,
)
from family_sync.errors import BatchCommitError, DocumentNotFound, StoreError
from family_sync.managers.logging_manager import get_logger

logger = get_logger(prefix="[MemoryStore]")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    return uuid.uuid4().hex[:20]


class _Listener:
    """Binds a subscription to its callbacks and the loop it was created on."""

    def __init__(
        self,
        path: str,
        is_collection: bool,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
        loop: asyncio.AbstractEventLoop,
    ):
        self.path = path
        self.is_collection = is_collection
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.loop = loop
        self.subscription: Optional[Subscription] = None

    def deliver(self, snapshot: Any) -> None:
        if self.subscription is None:
            return
        deliver_snapshot(self.subscription, snapshot, self.on_snapshot, self.on_error)

    def fail(self, exc: Exception) -> None:
        if self.subscription is None or not self.subscription.active:
            return
        if self.on_error is not None:
            self.on_error(exc)


class InMemoryDocumentStore(DocumentStore):
    """Process-local document store with snapshot subscriptions."""

    supports_atomic_array_union = True

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._versions: Dict[str, int] = {}
        self._listeners: List[_Listener] = []
        self._clock = clock or _utcnow
        self._id_factory = id_factory or _generate_id
        self._closed = False

    # ------------------------------------------------------------------ internals

    async def _suspend(self, operation: str, path: str) -> None:
        await asyncio.sleep(0)
        if self._closed:
            raise StoreError("Store is closed", operation=operation, path=path, error_code="STORE_CLOSED")

    def _resolve(self, value: Any, current: Any = None) -> Any:
        if isinstance(value, ServerTimestamp):
            return self._clock()
        if isinstance(value, ArrayUnion):
            merged = list(current) if isinstance(current, list) else []
            for element in value.values:
                if element not in merged:
                    merged.append(copy.deepcopy(element))
            return merged
        if isinstance(value, dict):
            return {key: self._resolve(inner) for key, inner in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._resolve(inner) for inner in value]
        return copy.deepcopy(value)

    def _resolve_document(self, data: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        existing = existing or {}
        return {key: self._resolve(value, existing.get(key)) for key, value in data.items()}

    def _write(self, path: str, data: Optional[Dict[str, Any]]) -> None:
        if data is None:
            self._documents.pop(path, None)
        else:
            self._documents[path] = data
        self._versions[path] = self._versions.get(path, 0) + 1

    def _document_snapshot(self, path: str) -> DocumentSnapshot:
        data = self._documents.get(path)
        return DocumentSnapshot(
            path=path,
            data=copy.deepcopy(data) if data is not None else None,
            version=self._versions.get(path, 0),
        )

    def _query_snapshot(self, collection_path: str) -> QuerySnapshot:
        depth = len(split_path(collection_path)) + 1
        docs = [
            self._document_snapshot(path)
            for path in self._documents
            if parent_path(path) == collection_path and len(split_path(path)) == depth
        ]
        return QuerySnapshot(path=collection_path, docs=docs)

    def _snapshot_for(self, listener: _Listener) -> Any:
        if listener.is_collection:
            return self._query_snapshot(listener.path)
        return self._document_snapshot(listener.path)

    def _notify(self, changed_paths: Iterable[str]) -> None:
        changed = set(changed_paths)
        if not changed:
            return
        parents = {parent_path(path) for path in changed}
        for listener in list(self._listeners):
            matches = listener.path in parents if listener.is_collection else listener.path in changed
            if matches:
                listener.loop.call_soon(listener.deliver, self._snapshot_for(listener))

    def _remove_listener(self, listener: _Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------ contract

    async def get_doc(self, path: str) -> DocumentSnapshot:
        path = require_document_path(path)
        await self._suspend("get_doc", path)
        return self._document_snapshot(path)

    async def set_doc(self, path: str, data: Dict[str, Any]) -> None:
        path = require_document_path(path)
        await self._suspend("set_doc", path)
        self._write(path, self._resolve_document(data))
        self._notify([path])

    async def update_doc(self, path: str, partial: Dict[str, Any]) -> None:
        path = require_document_path(path)
        await self._suspend("update_doc", path)
        current = self._documents.get(path)
        if current is None:
            raise DocumentNotFound(f"No document to update at {path}", path=path)
        merged = dict(current)
        merged.update(self._resolve_document(partial, current))
        self._write(path, merged)
        self._notify([path])

    async def update_doc_if_version(self, path: str, partial: Dict[str, Any], expected_version: int) -> bool:
        path = require_document_path(path)
        await self._suspend("update_doc_if_version", path)
        current = self._documents.get(path)
        if current is None:
            raise DocumentNotFound(f"No document to update at {path}", path=path)
        if self._versions.get(path, 0) != expected_version:
            logger.debug(
                "Version check failed for %s: expected %d, found %d",
                path,
                expected_version,
                self._versions.get(path, 0),
            )
            return False
        merged = dict(current)
        merged.update(self._resolve_document(partial, current))
        self._write(path, merged)
        self._notify([path])
        return True

    async def delete_doc(self, path: str) -> None:
        path = require_document_path(path)
        await self._suspend("delete_doc", path)
        if path not in self._documents:
            logger.debug("delete_doc on missing document %s ignored", path)
            return
        self._write(path, None)
        self._notify([path])

    async def add_doc(self, collection_path: str, data: Dict[str, Any]) -> str:
        collection_path = require_collection_path(collection_path)
        await self._suspend("add_doc", collection_path)
        doc_id = self._id_factory()
        path = f"{collection_path}/{doc_id}"
        self._write(path, self._resolve_document(data))
        self._notify([path])
        return doc_id

    async def list_docs(self, collection_path: str) -> QuerySnapshot:
        collection_path = require_collection_path(collection_path)
        await self._suspend("list_docs", collection_path)
        return self._query_snapshot(collection_path)

    def subscribe(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        normalized = "/".join(split_path(path))
        loop = asyncio.get_running_loop()
        listener = _Listener(normalized, not is_document_path(normalized), on_snapshot, on_error, loop)
        listener.subscription = Subscription(normalized, on_cancel=lambda: self._remove_listener(listener))
        if self._closed:
            loop.call_soon(
                listener.fail,
                StoreError("Store is closed", operation="subscribe", path=normalized, error_code="STORE_CLOSED"),
            )
            return listener.subscription
        self._listeners.append(listener)
        loop.call_soon(listener.deliver, self._snapshot_for(listener))
        logger.debug("Subscribed to %s (%d active listeners)", normalized, len(self._listeners))
        return listener.subscription

    async def commit_batch(self, operations: Iterable[BatchOperation]) -> None:
        operations = list(operations)
        paths = [op.path for op in operations]
        await self._suspend("commit_batch", ",".join(paths))

        staged: Dict[str, Optional[Dict[str, Any]]] = {}
        for op in operations:
            current = staged[op.path] if op.path in staged else self._documents.get(op.path)
            if op.kind == "delete":
                staged[op.path] = None
            elif op.kind == "set":
                staged[op.path] = self._resolve_document(op.data or {})
            else:
                if current is None:
                    raise BatchCommitError(f"Batch update targets missing document {op.path}", paths=paths)
                merged = dict(current)
                merged.update(self._resolve_document(op.data or {}, current))
                staged[op.path] = merged

        changed = []
        for path, data in staged.items():
            if data is None and path not in self._documents:
                continue
            self._write(path, data)
            changed.append(path)
        logger.debug("Committed batch of %d operations (%d documents changed)", len(operations), len(changed))
        self._notify(changed)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for listener in list(self._listeners):
            if listener.subscription is not None:
                listener.subscription.cancel()
        self._listeners.clear()
        logger.info("In-memory store closed")
