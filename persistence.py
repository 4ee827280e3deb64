import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable
import aiosqlite
from redis.asyncio import Redis
from redis.exceptions import RedisError
import config

logger = logging.getLogger(config.LOGGER_NAME)


class StoreError(Exception):
    """Counter storage is unavailable or failed mid-operation"""


def _check_names(names: Iterable[str]):
    names = sorted(set(names))
    if (unknown := [n for n in names if n not in config.COUNTER_NAMES]):
        raise ValueError(f"Unknown counter(s): {unknown}")
    return names


class CounterStore(ABC):
    """Running totals keyed by counter name.

    ensure()          creates missing counters at 0, never resets existing ones
    increment_many()  adds 1 to every named counter as one all-or-nothing unit
    snapshot()        point-in-time read, unknown names default to 0
    """

    async def open(self): pass

    async def close(self): pass

    @abstractmethod
    async def ensure(self, names: Iterable[str]): ...

    @abstractmethod
    async def increment_many(self, names: Iterable[str]): ...

    @abstractmethod
    async def snapshot(self, names: Iterable[str] = config.COUNTER_NAMES) -> Dict[str, int]: ...


class InMemoryCounterStore(CounterStore):
    def __init__(self):
        self.values: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def ensure(self, names):
        async with self._lock:
            for name in names: self.values.setdefault(name, 0)

    async def increment_many(self, names):
        names = _check_names(names)
        if not names: return
        async with self._lock:
            for name in names: self.values[name] = self.values.get(name, 0) + 1

    async def snapshot(self, names=config.COUNTER_NAMES):
        async with self._lock:
            return {name: self.values.get(name, 0) for name in names}


class SqliteCounterStore(CounterStore):
    """One long-lived autocommit connection. Each increment is a single UPDATE statement, which SQLite applies atomically."""

    def __init__(self, path: str = config.SQLITE_DB_PATH):
        self.path = path
        self.db = None

    async def open(self):
        if self.db is not None: return
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self.db = await aiosqlite.connect(self.path, isolation_level=None)
            await self.db.execute("PRAGMA journal_mode=WAL")
            await self.db.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    name TEXT PRIMARY KEY, value INTEGER NOT NULL DEFAULT 0 CHECK (value >= 0))""")
        except (aiosqlite.Error, OSError) as e:
            raise StoreError(f"Cannot open counter database {self.path}: {e}") from e
        logger.info(f"[SQLite] Counter database ready at {self.path}")

    async def close(self):
        if self.db is not None:
            await self.db.close()
            self.db = None

    def _conn(self):
        if self.db is None: raise StoreError("Counter database is not open")
        return self.db

    async def ensure(self, names):
        names = list(names)
        try:
            await self._conn().executemany("INSERT OR IGNORE INTO counters (name, value) VALUES (?, 0)", [(n,) for n in names])
        except aiosqlite.Error as e:
            raise StoreError(f"ensure failed: {e}") from e

    async def increment_many(self, names):
        names = _check_names(names)
        if not names: return
        placeholders = ",".join("?" * len(names))
        try:
            await self._conn().execute(f"UPDATE counters SET value = value + 1 WHERE name IN ({placeholders})", names)
        except aiosqlite.Error as e:
            raise StoreError(f"increment failed for {names}: {e}") from e

    async def snapshot(self, names=config.COUNTER_NAMES):
        names = list(names)
        result = {name: 0 for name in names}
        if not names: return result
        placeholders = ",".join("?" * len(names))
        try:
            async with self._conn().execute(f"SELECT name, value FROM counters WHERE name IN ({placeholders})", names) as cursor:
                async for name, value in cursor: result[name] = value
        except aiosqlite.Error as e:
            raise StoreError(f"snapshot failed: {e}") from e
        return result


class RedisCounterStore(CounterStore):
    """Counters live in one hash; increments go through a MULTI/EXEC pipeline."""

    def __init__(self, redis: Redis = None, url: str = config.REDIS_URL, key: str = config.REDIS_COUNTERS_KEY):
        self.redis, self.url, self.key = redis, url, key
        self._owned = redis is None

    async def open(self):
        if self.redis is None:
            self.redis = Redis.from_url(self.url)
        try:
            await self.redis.ping()
        except RedisError as e:
            raise StoreError(f"Redis unavailable at {self.url}: {e}") from e
        logger.info(f"[REDIS] Counter hash {self.key!r} ready")

    async def close(self):
        if self.redis is not None and self._owned:
            await self.redis.aclose()
            self.redis = None

    async def ensure(self, names):
        try:
            pipe = self.redis.pipeline(transaction=True)
            for name in names: pipe.hsetnx(self.key, name, 0)
            await pipe.execute()
        except RedisError as e:
            raise StoreError(f"ensure failed: {e}") from e

    async def increment_many(self, names):
        names = _check_names(names)
        if not names: return
        try:
            pipe = self.redis.pipeline(transaction=True)
            for name in names: pipe.hincrby(self.key, name, 1)
            await pipe.execute()
        except RedisError as e:
            raise StoreError(f"increment failed for {names}: {e}") from e

    async def snapshot(self, names=config.COUNTER_NAMES):
        names = list(names)
        if not names: return {}
        try:
            values = await self.redis.hmget(self.key, names)
        except RedisError as e:
            raise StoreError(f"snapshot failed: {e}") from e
        return {name: int(v) if v is not None else 0 for name, v in zip(names, values)}


def open_counter_store(backend: str = None) -> CounterStore:
    backend = backend or config.COUNTER_BACKEND
    if backend == "sqlite": return SqliteCounterStore(config.SQLITE_DB_PATH)
    if backend == "redis": return RedisCounterStore(url=config.REDIS_URL)
    if backend == "memory": return InMemoryCounterStore()
    raise ValueError(f"Unknown counter backend {backend!r}")


async def init_counter_store(store: CounterStore):
    """Open the store and create any missing counters. Called once at process start."""
    await store.open()
    await store.ensure(config.COUNTER_NAMES)
    logger.info(f"[STARTUP] Counters initialized: {await store.snapshot()}")
    return store
