"""
# Database Package

Persistence layer for the family sync core. Components never talk to a concrete backend;
they depend on the `DocumentStore` contract and receive an implementation through
`AppContext`.

## Package Architecture

- **`document_store`**: the abstract contract, snapshot types, write sentinels and the
  `Subscription` cancellation handle.
- **`paths`**: `DocumentPaths`, the `artifacts/{deploymentId}/...` layout.
- **`memory_store`**: `InMemoryDocumentStore`, process-local backend.
- **`manager`**: `DatabaseManager`, Motor connection lifecycle.
- **`mongo_store`**: `MongoDocumentStore`, MongoDB backend.

## Usage

```python
from family_sync.database import DocumentPaths, InMemoryDocumentStore

store = InMemoryDocumentStore()
paths = DocumentPaths("familia-original-v1")
snapshot = await store.get_doc(paths.family("QX7K2P"))
```

`MongoDocumentStore` is imported lazily by `family_sync.context.create_store` so that the
memory backend does not pull in the driver.
"""

from family_sync.database.document_store import (
    ArrayUnion,
    BatchOperation,
    DocumentSnapshot,
    DocumentStore,
    QuerySnapshot,
    ServerTimestamp,
    Subscription,
)
from family_sync.database.memory_store import InMemoryDocumentStore
from family_sync.database.paths import DocumentPaths

__all__ = [
    "ArrayUnion",
    "BatchOperation",
    "DocumentPaths",
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "QuerySnapshot",
    "ServerTimestamp",
    "Subscription",
]
