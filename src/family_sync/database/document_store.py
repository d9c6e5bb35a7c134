"""
# Document Store Contract

Abstract interface every storage backend implements, plus the value types that cross it.

## Addressing

Paths are slash-separated segments. An **even** number of segments addresses a document,
an **odd** number a collection:

```
artifacts/{deploymentId}/public/data/family_items           -> collection (5 segments)
artifacts/{deploymentId}/public/data/family_items/{itemId}  -> document   (6 segments)
```

## Operations

| Operation | Semantics |
|---|---|
| `get_doc(path)` | current `DocumentSnapshot` (`exists=False` when missing) |
| `set_doc(path, data)` | full overwrite, creates when missing |
| `update_doc(path, partial)` | top-level merge, `DocumentNotFound` when missing |
| `update_doc_if_version(path, partial, version)` | compare-and-set on the document version |
| `delete_doc(path)` | removal, no error when already gone |
| `add_doc(collection, data)` | insert with a store-generated id |
| `list_docs(collection)` | one-shot `QuerySnapshot` |
| `subscribe(path, on_snapshot, on_error)` | full snapshot now, again on every change |
| `commit_batch(operations)` | all-or-nothing |

Write payloads may contain two sentinels that the store resolves at write time:
`server_timestamp()` and `array_union(*values)`.

## Concurrency

Every operation is a coroutine and a suspension point. A backend only promises that
writes to a single document apply in submission order; nothing orders writes across
documents except `commit_batch`. Snapshot callbacks run on the event loop, never inside
the writer's call stack.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from family_sync.errors import StoreError
from family_sync.managers.logging_manager import get_logger

logger = get_logger(prefix="[DocumentStore]")

SnapshotCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


def split_path(path: str) -> List[str]:
    """Split a store path into non-empty segments."""
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments:
        raise ValueError("Store path cannot be empty")
    return segments


def is_document_path(path: str) -> bool:
    """True when the path has an even number of segments."""
    return len(split_path(path)) % 2 == 0


def parent_path(path: str) -> str:
    """Collection path containing the given document path."""
    return "/".join(split_path(path)[:-1])


def leaf_id(path: str) -> str:
    """Last segment of a path (document id or collection name)."""
    return split_path(path)[-1]


def require_document_path(path: str) -> str:
    if not is_document_path(path):
        raise ValueError(f"Not a document path: {path}")
    return "/".join(split_path(path))


def require_collection_path(path: str) -> str:
    if is_document_path(path):
        raise ValueError(f"Not a collection path: {path}")
    return "/".join(split_path(path))


class ServerTimestamp:
    """Sentinel replaced by the store's clock when the write is applied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ServerTimestamp()"


@dataclass(frozen=True)
class ArrayUnion:
    """Sentinel: append each value to the array field unless already present."""

    values: tuple


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time view of one document."""

    path: str
    data: Optional[Dict[str, Any]] = None
    version: int = 0

    @property
    def id(self) -> str:
        return leaf_id(self.path)

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class QuerySnapshot:
    """Point-in-time view of every document in a collection."""

    path: str
    docs: List[DocumentSnapshot] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.docs)

    def __iter__(self):
        return iter(self.docs)


@dataclass(frozen=True)
class BatchOperation:
    """One write inside an atomic batch."""

    kind: str
    path: str
    data: Optional[Dict[str, Any]] = None

    KINDS = ("set", "update", "delete")

    def __post_init__(self):
        if self.kind not in self.KINDS:
            raise ValueError(f"Unknown batch operation: {self.kind}")
        require_document_path(self.path)

    @classmethod
    def delete(cls, path: str) -> "BatchOperation":
        return cls("delete", path)

    @classmethod
    def update(cls, path: str, data: Dict[str, Any]) -> "BatchOperation":
        return cls("update", path, dict(data))

    @classmethod
    def set(cls, path: str, data: Dict[str, Any]) -> "BatchOperation":
        return cls("set", path, dict(data))


class Subscription:
    """
    Cancellation handle returned by `DocumentStore.subscribe`.

    Once `cancel()` returns, the subscription's callbacks are never invoked again, even for
    deliveries that were already scheduled. Cancelling twice is a no-op.
    """

    def __init__(self, path: str, on_cancel: Optional[Callable[[], None]] = None):
        self.path = path
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        logger.debug("Cancelled subscription on %s", self.path)
        if self._on_cancel is not None:
            self._on_cancel()

    def __repr__(self) -> str:
        return f"Subscription(path={self.path!r}, active={self._active})"


def deliver_snapshot(
    subscription: Subscription,
    snapshot: Any,
    on_snapshot: SnapshotCallback,
    on_error: Optional[ErrorCallback] = None,
) -> bool:
    """
    Hand `snapshot` to an active subscription's callback.

    A callback that raises ends the subscription: it is cancelled and the failure reaches
    `on_error` as a `StoreError` with code `SNAPSHOT_HANDLER_FAILED`.

    Returns:
        bool: Whether the subscription is still active afterwards.
    """
    if not subscription.active:
        return False
    try:
        on_snapshot(snapshot)
    except Exception as e:
        logger.error("Snapshot handler for %s failed: %s", subscription.path, e, exc_info=True)
        subscription.cancel()
        if on_error is not None:
            on_error(
                StoreError(
                    f"Snapshot handler failed: {e}",
                    operation="subscribe",
                    path=subscription.path,
                    error_code="SNAPSHOT_HANDLER_FAILED",
                )
            )
        return False
    return subscription.active


class DocumentStore(abc.ABC):
    """Abstract async document store."""

    # Whether `array_union` is applied atomically by the backend
    supports_atomic_array_union: bool = False

    @staticmethod
    def server_timestamp() -> ServerTimestamp:
        return ServerTimestamp()

    @staticmethod
    def array_union(*values: Any) -> ArrayUnion:
        return ArrayUnion(tuple(values))

    async def connect(self) -> None:
        """Open backend resources. Default: nothing to do."""

    async def close(self) -> None:
        """Release backend resources. Default: nothing to do."""

    @abc.abstractmethod
    async def get_doc(self, path: str) -> DocumentSnapshot: ...

    @abc.abstractmethod
    async def set_doc(self, path: str, data: Dict[str, Any]) -> None: ...

    @abc.abstractmethod
    async def update_doc(self, path: str, partial: Dict[str, Any]) -> None: ...

    @abc.abstractmethod
    async def update_doc_if_version(self, path: str, partial: Dict[str, Any], expected_version: int) -> bool: ...

    @abc.abstractmethod
    async def delete_doc(self, path: str) -> None: ...

    @abc.abstractmethod
    async def add_doc(self, collection_path: str, data: Dict[str, Any]) -> str: ...

    @abc.abstractmethod
    async def list_docs(self, collection_path: str) -> QuerySnapshot: ...

    @abc.abstractmethod
    def subscribe(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...

    @abc.abstractmethod
    async def commit_batch(self, operations: Iterable[BatchOperation]) -> None: ...
