"""
MongoDB connection management.

A single ConnectionManager is created per process (see ``main.create_app``)
and stored on ``app.state``. Route handlers obtain the database through the
``get_db`` dependency, which makes sure a connection exists first.
"""

import logging
import threading
import time
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, Optional

from fastapi import Request
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.monitoring import ServerHeartbeatListener

from config import Settings, get_settings
from errors import DatabaseUnavailable

logger = logging.getLogger(__name__)

CLIENT_OPTIONS = {
    "maxPoolSize": 10,
    "serverSelectionTimeoutMS": 30000,
    "socketTimeoutMS": 75000,
    "connectTimeoutMS": 30000,
    "heartbeatFrequencyMS": 30000,
}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class _HeartbeatListener(ServerHeartbeatListener):
    """Flips the manager back to DISCONNECTED when the server stops answering."""

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager
        self.client: Any = None

    def started(self, event):
        pass

    def succeeded(self, event):
        pass

    def failed(self, event):
        logger.error("MongoDB heartbeat to %s failed: %s", event.connection_id, event.reply)
        self._manager._mark_disconnected(self.client)


class ConnectionManager:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Callable[..., Any] = MongoClient,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self._client_factory = client_factory
        self._sleep = sleep
        self._lock = threading.Lock()
        self._pending: Optional[Future] = None
        self._client: Any = None
        self._db: Optional[Database] = None
        self.state = ConnectionState.DISCONNECTED

    def ensure_connected(self) -> Database:
        """Return the live database, connecting first if needed.

        Callers arriving while a connection attempt is running wait on that
        same attempt instead of starting their own.
        """
        with self._lock:
            if self.state == ConnectionState.CONNECTED and self._db is not None:
                return self._db
            pending = self._pending
            owner = pending is None
            if owner:
                pending = self._pending = Future()
                self.state = ConnectionState.CONNECTING

        if not owner:
            return pending.result()

        try:
            db = self._connect_with_retry()
        except BaseException as exc:
            with self._lock:
                self.state = ConnectionState.DISCONNECTED
                self._pending = None
            pending.set_exception(exc)
            raise

        with self._lock:
            self._db = db
            self.state = ConnectionState.CONNECTED
            self._pending = None
        pending.set_result(db)
        return db

    def _connect_with_retry(self) -> Database:
        url = self.settings.database_url
        if not url:
            logger.error("DATABASE_URL is not set")
            raise DatabaseUnavailable("Database connection failed")

        retries = max(1, self.settings.db_connect_retries)
        last_error: Optional[Exception] = None
        for attempt in range(1, retries + 1):
            client = None
            try:
                listener = _HeartbeatListener(self)
                client = self._client_factory(url, event_listeners=[listener], **CLIENT_OPTIONS)
                listener.client = client
                client.admin.command("ping")
                db = client[self.settings.database_name]
                ensure_indexes(db)
                self._client = client
                logger.info("MongoDB connected successfully (database=%s)", self.settings.database_name)
                return db
            except PyMongoError as e:
                last_error = e
                if client is not None:
                    client.close()
                if attempt < retries:
                    logger.warning(
                        "Failed to connect to MongoDB. Retrying... (%d attempts left): %s",
                        retries - attempt,
                        e,
                    )
                    self._sleep(self.settings.db_retry_backoff_seconds)
        logger.error("Failed to connect to MongoDB after %d attempts: %s", retries, last_error)
        raise DatabaseUnavailable("Database connection failed")

    def _mark_disconnected(self, client: Any = None) -> None:
        """Drop the current connection and close its client.

        ``client`` is the client that reported the failure; reports from a
        client that has already been replaced are ignored.
        """
        with self._lock:
            if self.state != ConnectionState.CONNECTED:
                return
            if client is not None and client is not self._client:
                return
            stale, self._client, self._db = self._client, None, None
            self.state = ConnectionState.DISCONNECTED
        if stale is not None:
            stale.close()
            logger.warning("MongoDB connection lost, reconnecting on next use")

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._db is not None

    def ping(self) -> bool:
        if not self.is_connected():
            return False
        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error("MongoDB ping failed: %s", e)
            self._mark_disconnected()
            return False

    def shutdown(self) -> None:
        with self._lock:
            client, self._client, self._db = self._client, None, None
            self.state = ConnectionState.DISCONNECTED
        if client is not None:
            client.close()
            logger.info("MongoDB connection closed")


def ensure_indexes(db: Database) -> None:
    db["userprofile"].create_index([("userId", ASCENDING)], unique=True)
    db["userprofile"].create_index([("email", ASCENDING)], unique=True)
    db["userprofile"].create_index([("username", ASCENDING)], unique=True)
    db["userprofile"].create_index([("role", ASCENDING), ("country", ASCENDING)])
    db["farmprofile"].create_index([("userId", ASCENDING)])
    db["farmprofile"].create_index([("farmType", ASCENDING), ("productionScale", ASCENDING)])
    db["storeprofile"].create_index([("userId", ASCENDING)])
    db["farmpost"].create_index([("userProfile", ASCENDING)])
    db["storepost"].create_index([("userProfile", ASCENDING)])
    db["storepost"].create_index([("storeProfile", ASCENDING)])
    db["cartitem"].create_index([("id", ASCENDING), ("userId", ASCENDING)], unique=True)
    db["cartitem"].create_index([("userId", ASCENDING)])
    db["userreview"].create_index([("recipientId", ASCENDING)])
    db["userreview"].create_index([("rating", DESCENDING)])
    db["user"].create_index([("email", ASCENDING)], unique=True)


def get_db(request: Request) -> Database:
    manager: ConnectionManager = request.app.state.db_manager
    return manager.ensure_connected()
