"""
# Application Context

Process-wide context passed by reference into every component, replacing ambient global
store handles.

## Initialization Order

```
Settings ──► setup_logging() ──► create_store() ──► await startup() ──► components
```

Components (`MembershipResolver`, `SharedItemStore`, `SyncCoordinator`...) are constructed
with the context and read `settings`, `store` and `paths` from it. A component that owns
long-lived resources registers a teardown hook; `shutdown()` runs the hooks in reverse
registration order and then closes the store.

## Usage

```python
async with AppContext(Settings(STORE_BACKEND="memory")) as context:
    coordinator = SyncCoordinator(context)
    coordinator.set_user("uid-123")
    ...
# every coordinator subscription is cancelled and the store closed here
```
"""

import inspect
from typing import Awaitable, Callable, List, Optional, Union

from family_sync.config import Settings
from family_sync.database.document_store import DocumentStore
from family_sync.database.memory_store import InMemoryDocumentStore
from family_sync.database.paths import DocumentPaths
from family_sync.managers.logging_manager import get_logger, setup_logging

logger = get_logger(prefix="[AppContext]")

TeardownHook = Callable[[], Union[None, Awaitable[None]]]


def create_store(settings: Settings) -> DocumentStore:
    """
    Build the document store selected by `STORE_BACKEND`.

    The MongoDB backend is imported here so the memory backend never loads the driver.
    """
    if settings.STORE_BACKEND == "mongodb":
        from family_sync.database.mongo_store import MongoDocumentStore

        logger.info("Using MongoDB document store (%s)", settings.MONGODB_DATABASE)
        return MongoDocumentStore(settings)
    logger.info("Using in-memory document store")
    return InMemoryDocumentStore()


class AppContext:
    """
    Holds settings, the document store and the teardown registry for one process.

    Attributes:
        settings (`Settings`): Effective configuration.
        store (`DocumentStore`): Shared store handle.
        paths (`DocumentPaths`): Path builder for `settings.DEPLOYMENT_ID`.
    """

    def __init__(self, settings: Optional[Settings] = None, store: Optional[DocumentStore] = None):
        if settings is None:
            from family_sync.config import settings as default_settings

            settings = default_settings
        self.settings = settings
        setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
        self.store = store if store is not None else create_store(settings)
        self.paths = DocumentPaths(settings.DEPLOYMENT_ID)
        self._teardown_hooks: List[TeardownHook] = []
        self._started = False
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    def register_teardown(self, hook: TeardownHook) -> None:
        """Run `hook` (sync or async) during `shutdown()`, before the store closes."""
        if self._closed:
            raise RuntimeError("Cannot register teardown hooks on a closed context")
        self._teardown_hooks.append(hook)

    def unregister_teardown(self, hook: TeardownHook) -> None:
        """Forget a hook registered with `register_teardown`. Unknown hooks are ignored."""
        if hook in self._teardown_hooks:
            self._teardown_hooks.remove(hook)

    @property
    def teardown_hook_count(self) -> int:
        return len(self._teardown_hooks)

    async def startup(self) -> "AppContext":
        """Connect the store backend. Idempotent."""
        if self._started:
            return self
        logger.info("Starting context for deployment %s", self.settings.DEPLOYMENT_ID)
        await self.store.connect()
        self._started = True
        return self

    async def shutdown(self) -> None:
        """
        Run teardown hooks newest first, then close the store.

        A failing hook is logged and does not prevent the remaining hooks or the store close;
        the first failure is re-raised once everything has run.
        """
        if self._closed:
            return
        self._closed = True
        first_error: Optional[Exception] = None

        while self._teardown_hooks:
            hook = self._teardown_hooks.pop()
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Teardown hook %r failed: %s", hook, e, exc_info=True)
                first_error = first_error or e

        await self.store.close()
        logger.info("Context for deployment %s shut down", self.settings.DEPLOYMENT_ID)
        if first_error is not None:
            raise first_error

    async def __aenter__(self) -> "AppContext":
        return await self.startup()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
