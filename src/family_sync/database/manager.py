"""
# Database Management Module

MongoDB connection lifecycle for the `mongodb` store backend, built on the **Motor** async
driver.

## Lifecycle

1.  **Instantiation**: `DatabaseManager(settings)` performs no I/O.
2.  **Connection**: `connect()` creates the client, pings the server with exponential
    backoff between attempts (1s, 2s, 4s...), and detects transaction support.
3.  **Operations**: `get_collection()` hands out Motor collections.
4.  **Disconnection**: `disconnect()` closes the client and its pool.

## Transaction Support

Atomic batches need multi-document transactions, which MongoDB only offers on replica sets
and sharded clusters. `connect()` inspects the `hello` response:

- **Replica Set** (`setName` present): `transactions_supported=True`
- **Mongos** (`msg == "isdbgrid"`): `transactions_supported=True`
- **Standalone**: `transactions_supported=False`

Change streams have the same requirement, so the flag also decides whether subscriptions
watch the collection or fall back to polling.

## Module Attributes

Attributes:
    db_logger: Logger for connection events (`[DATABASE]`).
    perf_logger: Logger for timings (`[DB_PERFORMANCE]`).
"""

import asyncio
import time
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from family_sync.config import Settings
from family_sync.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")


class DatabaseManager:
    """
    Manages the MongoDB client and database handle.

    Attributes:
        settings (`Settings`): Connection parameters.
        client (`Optional[AsyncIOMotorClient]`): Motor client, `None` until `connect()`.
        database (`Optional[AsyncIOMotorDatabase]`): Database handle, `None` until `connect()`.
        transactions_supported (`bool`): Whether the deployment accepts multi-document
            transactions (replica set or mongos).
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.transactions_supported: bool = False
        self._connection_retries = settings.MONGODB_CONNECTION_RETRIES

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.database is not None

    async def connect(self) -> None:
        """
        Establish the MongoDB connection with retries.

        The method is idempotent: it returns immediately when already connected.

        Raises:
            ServerSelectionTimeoutError: If every attempt failed to reach a server.
            ConnectionFailure: If every attempt failed to connect.
        """
        if self.is_connected:
            return

        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                db_logger.info(
                    "MongoDB connection config - URL: %s, Database: %s, ServerTimeout: %dms, ConnTimeout: %dms",
                    self.settings.MONGODB_URL,
                    self.settings.MONGODB_DATABASE,
                    self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    self.settings.MONGODB_CONNECTION_TIMEOUT,
                )

                self.client = AsyncIOMotorClient(
                    self.settings.mongodb_connection_string,
                    serverSelectionTimeoutMS=self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=self.settings.MONGODB_CONNECTION_TIMEOUT,
                    tz_aware=True,
                )
                self.database = self.client[self.settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start
                self.transactions_supported = await self._detect_transaction_support()

                perf_logger.info(
                    "MongoDB connection established in %.3fs (ping: %.3fs)", time.time() - start_time, ping_duration
                )
                db_logger.info(
                    "Connected to MongoDB database %s (transactions supported: %s)",
                    self.settings.MONGODB_DATABASE,
                    self.transactions_supported,
                )
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                perf_logger.warning(
                    "Connection attempt %d failed after %.3fs", attempt + 1, time.time() - attempt_start
                )
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                self._reset_client()
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def _detect_transaction_support(self) -> bool:
        try:
            hello = await self.client.admin.command({"hello": 1})
        except PyMongoError as e:
            db_logger.warning("Could not detect transaction support, assuming none: %s", e)
            return False
        return bool(hello.get("setName") or hello.get("msg") == "isdbgrid")

    def _reset_client(self) -> None:
        if self.client is not None:
            self.client.close()
        self.client = None
        self.database = None

    async def disconnect(self) -> None:
        """Close the Motor client and every pooled connection."""
        if self.client is None:
            return
        start_time = time.time()
        self._reset_client()
        perf_logger.info("MongoDB disconnected in %.3fs", time.time() - start_time)
        db_logger.info("Disconnected from MongoDB")

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Return a Motor collection from the connected database.

        Raises:
            RuntimeError: If `connect()` has not completed.
        """
        if self.database is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.database[collection_name]

    async def create_indexes(self) -> None:
        """Index documents by parent collection so collection reads and watches stay cheap."""
        collection = self.get_collection(self.settings.MONGODB_DOCUMENTS_COLLECTION)
        await collection.create_index([("parent", ASCENDING)], name="parent_idx", background=True)
        db_logger.info("Ensured indexes on %s", self.settings.MONGODB_DOCUMENTS_COLLECTION)
