"""
# MongoDB Document Store

`DocumentStore` implementation on top of Motor. All path-addressed documents live in one
collection (`MONGODB_DOCUMENTS_COLLECTION`), keyed by their full path:

```
{
    "_id": "artifacts/dev/public/data/families/QX7K2P",
    "parent": "artifacts/dev/public/data/families",
    "data": {"name": "Silva", "members": ["u1"], "createdAt": ISODate(...)},
    "version": 3
}
```

## Operation Mapping

| Contract | MongoDB |
|---|---|
| `get_doc` | `find_one({"_id": path})` |
| `set_doc` / `add_doc` | upserting pipeline update (`$unset` + `$set`, `$$NOW` for server time) |
| `update_doc` | `$set` / `$currentDate` / `$addToSet` on `data.<field>`, `$inc` version |
| `update_doc_if_version` | same update filtered on `{"version": expected}` |
| `delete_doc` | `delete_one` |
| `list_docs` | `find({"parent": collection})` |
| `commit_batch` | the operations above inside one multi-document transaction |
| `subscribe` | change stream on the document / collection (opened before the initial read), polling when unavailable |

Every `PyMongoError` is re-raised as `StoreError` (or a subclass) so callers never need to
know which backend is in use.
"""

import asyncio
import contextlib
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo.errors import AutoReconnect, ConnectionFailure, NetworkTimeout, OperationFailure, PyMongoError

from family_sync.config import Settings
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
    leaf_id,
    parent_path,
    require_collection_path,
    require_document_path,
    split_path,
)
from family_sync.database.manager import DatabaseManager
from family_sync.errors import BatchCommitError, DocumentNotFound, StoreError
from family_sync.managers.logging_manager import get_logger

logger = get_logger(prefix="[MongoStore]")

_RETRYABLE_ERRORS = (AutoReconnect, ConnectionFailure, NetworkTimeout)


@contextlib.contextmanager
def _store_errors(operation: str, path: str):
    """Translate driver errors raised inside the block into `StoreError`."""
    try:
        yield
    except PyMongoError as e:
        logger.error("%s failed on %s: %s", operation, path, e)
        raise StoreError(
            f"{operation} failed: {e}",
            operation=operation,
            path=path,
            retryable=isinstance(e, _RETRYABLE_ERRORS),
        ) from e


def _overwrite_pipeline(path: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Pipeline update that replaces `data` wholesale, evaluating server timestamps."""
    fields: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, ServerTimestamp):
            fields[key] = "$$NOW"
        elif isinstance(value, ArrayUnion):
            fields[key] = {"$literal": list(dict.fromkeys(value.values))}
        else:
            fields[key] = {"$literal": value}
    return [
        {"$unset": "data"},
        {
            "$set": {
                "parent": parent_path(path),
                "doc_id": leaf_id(path),
                "data": fields,
                "version": {"$add": [{"$ifNull": ["$version", 0]}, 1]},
            }
        },
    ]


def _merge_update(partial: Dict[str, Any]) -> Dict[str, Any]:
    """Classic update document merging top-level fields of `data`."""
    update: Dict[str, Dict[str, Any]] = {"$inc": {"version": 1}}
    for key, value in partial.items():
        field = f"data.{key}"
        if isinstance(value, ServerTimestamp):
            update.setdefault("$currentDate", {})[field] = True
        elif isinstance(value, ArrayUnion):
            update.setdefault("$addToSet", {})[field] = {"$each": list(value.values)}
        else:
            update.setdefault("$set", {})[field] = value
    return update


def _snapshot(path: str, raw: Optional[Dict[str, Any]]) -> DocumentSnapshot:
    if raw is None:
        return DocumentSnapshot(path=path)
    return DocumentSnapshot(path=path, data=dict(raw.get("data") or {}), version=int(raw.get("version", 0)))


class MongoDocumentStore(DocumentStore):
    """MongoDB-backed document store with change-stream subscriptions."""

    supports_atomic_array_union = True

    def __init__(self, settings: Settings, manager: Optional[DatabaseManager] = None):
        self.settings = settings
        self.manager = manager or DatabaseManager(settings)
        self._tasks: Dict[Subscription, asyncio.Task] = {}

    @property
    def collection(self):
        return self.manager.get_collection(self.settings.MONGODB_DOCUMENTS_COLLECTION)

    async def connect(self) -> None:
        await self.manager.connect()
        await self.manager.create_indexes()

    async def close(self) -> None:
        for subscription in list(self._tasks):
            subscription.cancel()
        await self.manager.disconnect()

    # ------------------------------------------------------------------ reads

    async def get_doc(self, path: str) -> DocumentSnapshot:
        path = require_document_path(path)
        with _store_errors("get_doc", path):
            raw = await self.collection.find_one({"_id": path})
        return _snapshot(path, raw)

    async def list_docs(self, collection_path: str) -> QuerySnapshot:
        collection_path = require_collection_path(collection_path)
        with _store_errors("list_docs", collection_path):
            cursor = self.collection.find({"parent": collection_path})
            raw_docs = await cursor.to_list(length=None)
        return QuerySnapshot(path=collection_path, docs=[_snapshot(raw["_id"], raw) for raw in raw_docs])

    # ------------------------------------------------------------------ writes

    async def _overwrite(self, path: str, data: Dict[str, Any], session=None) -> None:
        await self.collection.update_one({"_id": path}, _overwrite_pipeline(path, data), upsert=True, session=session)

    async def _merge(self, path: str, partial: Dict[str, Any], session=None) -> None:
        result = await self.collection.update_one({"_id": path}, _merge_update(partial), session=session)
        if result.matched_count == 0:
            raise DocumentNotFound(f"No document to update at {path}", path=path)

    async def set_doc(self, path: str, data: Dict[str, Any]) -> None:
        path = require_document_path(path)
        with _store_errors("set_doc", path):
            await self._overwrite(path, data)

    async def update_doc(self, path: str, partial: Dict[str, Any]) -> None:
        path = require_document_path(path)
        with _store_errors("update_doc", path):
            await self._merge(path, partial)

    async def update_doc_if_version(self, path: str, partial: Dict[str, Any], expected_version: int) -> bool:
        path = require_document_path(path)
        with _store_errors("update_doc_if_version", path):
            result = await self.collection.update_one({"_id": path, "version": expected_version}, _merge_update(partial))
            if result.matched_count:
                return True
            exists = await self.collection.find_one({"_id": path}, {"_id": 1})
        if exists is None:
            raise DocumentNotFound(f"No document to update at {path}", path=path)
        logger.debug("Version check failed for %s (expected %d)", path, expected_version)
        return False

    async def delete_doc(self, path: str) -> None:
        path = require_document_path(path)
        with _store_errors("delete_doc", path):
            await self.collection.delete_one({"_id": path})

    async def add_doc(self, collection_path: str, data: Dict[str, Any]) -> str:
        collection_path = require_collection_path(collection_path)
        doc_id = uuid.uuid4().hex[:20]
        path = f"{collection_path}/{doc_id}"
        with _store_errors("add_doc", path):
            await self._overwrite(path, data)
        return doc_id

    async def _apply(self, op: BatchOperation, session=None) -> None:
        if op.kind == "delete":
            await self.collection.delete_one({"_id": op.path}, session=session)
        elif op.kind == "set":
            await self._overwrite(op.path, op.data or {}, session=session)
        else:
            await self._merge(op.path, op.data or {}, session=session)

    async def commit_batch(self, operations: Iterable[BatchOperation]) -> None:
        operations = list(operations)
        paths = [op.path for op in operations]
        if not operations:
            return

        if not self.manager.transactions_supported:
            if self.settings.MONGODB_REQUIRE_TRANSACTIONS:
                raise BatchCommitError("Atomic batches require a replica set or mongos deployment", paths=paths)
            logger.warning("Applying batch of %d operations without a transaction", len(operations))
            try:
                for op in operations:
                    await self._apply(op)
            except (PyMongoError, DocumentNotFound) as e:
                raise BatchCommitError(f"Batch failed: {e}", paths=paths) from e
            return

        try:
            async with await self.manager.client.start_session() as session:
                async with session.start_transaction():
                    for op in operations:
                        await self._apply(op, session=session)
        except (PyMongoError, DocumentNotFound) as e:
            logger.error("Batch of %d operations rolled back: %s", len(operations), e)
            raise BatchCommitError(f"Batch rolled back: {e}", paths=paths) from e
        logger.debug("Committed batch of %d operations", len(operations))

    # ------------------------------------------------------------------ subscriptions

    async def _read(self, path: str, is_collection: bool):
        if is_collection:
            return await self.list_docs(path)
        return await self.get_doc(path)

    @staticmethod
    def _fingerprint(snapshot) -> Tuple:
        if isinstance(snapshot, QuerySnapshot):
            return tuple(sorted((doc.path, doc.version) for doc in snapshot.docs))
        return (snapshot.path, snapshot.version, snapshot.exists)

    @staticmethod
    def _change_filter(path: str, is_collection: bool) -> Dict[str, Any]:
        if is_collection:
            return {"documentKey._id": {"$regex": f"^{re.escape(path)}/[^/]+$"}}
        return {"documentKey._id": path}

    async def _run_subscription(
        self,
        subscription: Subscription,
        is_collection: bool,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        path = subscription.path

        async def _deliver_current() -> bool:
            snapshot = await self._read(path, is_collection)
            return deliver_snapshot(subscription, snapshot, on_snapshot, on_error)

        try:
            if self.manager.transactions_supported:
                pipeline = [{"$match": self._change_filter(path, is_collection)}]
                async with self.collection.watch(pipeline) as stream:
                    # The cursor must exist before the initial read so no write falls between them
                    await stream.try_next()
                    if not await _deliver_current():
                        return
                    async for _change in stream:
                        if not await _deliver_current():
                            return
            else:
                snapshot = await self._read(path, is_collection)
                if not deliver_snapshot(subscription, snapshot, on_snapshot, on_error):
                    return
                last = self._fingerprint(snapshot)
                while subscription.active:
                    await asyncio.sleep(self.settings.SUBSCRIPTION_POLL_INTERVAL)
                    snapshot = await self._read(path, is_collection)
                    fingerprint = self._fingerprint(snapshot)
                    if fingerprint != last:
                        last = fingerprint
                        if not deliver_snapshot(subscription, snapshot, on_snapshot, on_error):
                            return
        except asyncio.CancelledError:
            logger.debug("Subscription task for %s cancelled", path)
            raise
        except (StoreError, OperationFailure, PyMongoError) as e:
            logger.error("Subscription on %s failed: %s", path, e)
            if subscription.active and on_error is not None:
                error = e if isinstance(e, StoreError) else StoreError(
                    f"Subscription failed: {e}", operation="subscribe", path=path
                )
                on_error(error)
            subscription.cancel()
        finally:
            self._tasks.pop(subscription, None)

    def subscribe(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        normalized = "/".join(split_path(path))
        is_collection = not is_document_path(normalized)

        def _cancel_task() -> None:
            task = self._tasks.pop(subscription, None)
            if task is not None and not task.done():
                task.cancel()

        subscription = Subscription(normalized, on_cancel=_cancel_task)
        task = asyncio.get_running_loop().create_task(
            self._run_subscription(subscription, is_collection, on_snapshot, on_error)
        )
        self._tasks[subscription] = task
        logger.debug("Subscribed to %s (%d active watches)", normalized, len(self._tasks))
        return subscription
