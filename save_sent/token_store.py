"""Ephemeral key-value stores holding ``token -> fingerprint`` records."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as aioredis
import sqlite_utils
from redis.exceptions import RedisError

from .config import Settings
from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TokenStore(Protocol):
    """GET / SET with expiry / DEL, each atomic against concurrent callers."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class RedisTokenStore:
    """Shared store backed by Redis; the default for multi-process MTAs."""

    def __init__(self, client: aioredis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisTokenStore":
        try:
            client = aioredis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        except ValueError as exc:
            raise StoreUnavailableError(f"Invalid Redis URL {url!r}: {exc}") from exc
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.client.get(key)
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis GET failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.client.set(key, value, ex=ttl)
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis SET failed: {exc}") from exc

    async def delete(self, key: str) -> int:
        try:
            return int(await self.client.delete(key))
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis DEL failed: {exc}") from exc

    async def ping(self) -> None:
        try:
            await self.client.ping()
        except RedisError as exc:
            raise StoreUnavailableError(f"Redis is not available: {exc}") from exc

    async def close(self) -> None:
        await self.client.aclose()


class SqliteTokenStore:
    """Single-host store in a SQLite file; expiry is enforced on read.

    Queries run in worker threads so the event loop never blocks on disk I/O;
    the lock serialises use of the shared connection.
    """

    TABLE = "tokens"

    def __init__(self, db_path: Path, clock: Clock = time.time) -> None:
        self.db_path = db_path
        self.clock = clock
        self._lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self.db = sqlite_utils.Database(conn)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailableError(f"Token database {db_path} unusable: {exc}") from exc

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {"key": str, "value": str, "expires_at": float},
            pk="key",
            if_not_exists=True,
        )

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._get, key)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Token database read failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await asyncio.to_thread(self._set, key, value, ttl)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Token database write failed: {exc}") from exc

    async def delete(self, key: str) -> int:
        try:
            return await asyncio.to_thread(self._delete, key)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Token database delete failed: {exc}") from exc

    async def ping(self) -> None:
        try:
            await asyncio.to_thread(self._ping)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Token database is not available: {exc}") from exc

    async def close(self) -> None:
        await asyncio.to_thread(self._close)

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            rows = list(
                self.db[self.TABLE].rows_where(
                    "[key] = ? and expires_at > ?", [key, self.clock()], limit=1
                )
            )
        return rows[0]["value"] if rows else None

    def _set(self, key: str, value: str, ttl: int) -> None:
        now = self.clock()
        table = self.db[self.TABLE]
        with self._lock:
            table.delete_where("expires_at <= ?", [now])
            table.upsert({"key": key, "value": value, "expires_at": now + ttl}, pk="key")

    def _delete(self, key: str) -> int:
        with self._lock, self.db.conn:
            cursor = self.db.execute(
                f"delete from [{self.TABLE}] where [key] = ? and expires_at > ?",
                [key, self.clock()],
            )
            return cursor.rowcount

    def _ping(self) -> None:
        with self._lock:
            self.db.execute("select 1").fetchone()

    def _close(self) -> None:
        with self._lock:
            self.db.close()


class MemoryTokenStore:
    """In-process store for tests and single-process runs."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self.clock = clock
        self._records: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        record = self._records.get(key)
        if record is None:
            return None
        value, expires_at = record
        if expires_at <= self.clock():
            del self._records[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._records[key] = (value, self.clock() + ttl)

    async def delete(self, key: str) -> int:
        record = self._records.pop(key, None)
        if record is None or record[1] <= self.clock():
            return 0
        return 1

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def __contains__(self, key: str) -> bool:
        record = self._records.get(key)
        return record is not None and record[1] > self.clock()


def build_token_store(settings: Settings) -> TokenStore:
    """Instantiate the configured backend."""
    if settings.store_backend == "redis":
        logger.debug("Using Redis token store at %s", settings.redis_url)
        return RedisTokenStore.from_url(settings.redis_url, settings.redis_socket_timeout)
    if settings.store_backend == "sqlite":
        logger.debug("Using SQLite token store at %s", settings.token_store_db)
        return SqliteTokenStore(settings.token_store_db)
    logger.debug("Using in-memory token store")
    return MemoryTokenStore()
