"""
Per-sender rate limiting backed by a counter-with-expiry store.

Fixed one-hour windows: the first action in a window creates the counter and
sets its TTL; later actions only increment it. The limiter fails open - if
the store is unreachable the command is allowed and the miss is logged.
"""
import sqlite3
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from .exceptions import CounterStoreError
from .models import RateLimitStatus
from .utils import format_phone_number, get_logger

logger = get_logger("rate_limit")

WINDOW_SECONDS = 3600


class CounterStore(Protocol):
    """INCR / EXPIRE / GET / TTL / DEL semantics, with increment+expire fused."""

    def get(self, key: str) -> int: ...

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int: ...

    def ttl(self, key: str) -> Optional[int]: ...

    def delete(self, key: str) -> None: ...


class MemoryCounterStore:
    """
    In-process counter store.

    `clock` returns seconds (monotonic by default) so tests can move time
    forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._counters: dict[str, tuple[int, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[tuple[int, Optional[float]]]:
        entry = self._counters.get(key)
        if entry is None:
            return None
        count, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._counters[key]
            return None
        return entry

    def get(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else 0

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            entry = self._live(key)
            count, expires_at = entry if entry else (0, None)
            count += 1
            if expires_at is None:
                expires_at = self.clock() + ttl_seconds
            self._counters[key] = (count, expires_at)
            return count

    def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, int(round(entry[1] - self.clock())))

    def delete(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)


class SqliteCounterStore:
    """
    Durable counter store shared by every process on the host.

    The increment and the conditional expiry run inside one
    BEGIN IMMEDIATE transaction, so a counter can never be left without a TTL.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS rate_limit_counters (
            key TEXT PRIMARY KEY,
            count INTEGER NOT NULL,
            expires_at REAL
        )
    """

    def __init__(self, db_path: Path | str = "data/rate_limit.sqlite3", clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self.clock = clock
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        if not self._schema_ready:
            # Schema is created on first use, not at construction
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=5.0, isolation_level=None)
        if not self._schema_ready:
            try:
                conn.execute(self.SCHEMA)
            except sqlite3.Error:
                conn.close()
                raise
            self._schema_ready = True
        return conn

    def _run(self, fn):
        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as e:
            raise CounterStoreError(f"Counter store unavailable at {self.db_path}: {e}") from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            result = fn(conn, self.clock())
            conn.execute("COMMIT")
            return result
        except sqlite3.Error as e:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                pass
            raise CounterStoreError(f"Counter store error: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _purge(conn: sqlite3.Connection, key: str, now: float) -> None:
        conn.execute(
            "DELETE FROM rate_limit_counters WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (key, now),
        )

    def get(self, key: str) -> int:
        def op(conn, now):
            self._purge(conn, key, now)
            row = conn.execute("SELECT count FROM rate_limit_counters WHERE key = ?", (key,)).fetchone()
            return int(row[0]) if row else 0
        return self._run(op)

    def incr_with_expiry(self, key: str, ttl_seconds: int) -> int:
        def op(conn, now):
            self._purge(conn, key, now)
            conn.execute(
                "INSERT INTO rate_limit_counters (key, count, expires_at) VALUES (?, 1, ?) "
                "ON CONFLICT(key) DO UPDATE SET count = count + 1, "
                "expires_at = COALESCE(expires_at, excluded.expires_at)",
                (key, now + ttl_seconds),
            )
            row = conn.execute("SELECT count FROM rate_limit_counters WHERE key = ?", (key,)).fetchone()
            return int(row[0])
        return self._run(op)

    def ttl(self, key: str) -> Optional[int]:
        def op(conn, now):
            self._purge(conn, key, now)
            row = conn.execute("SELECT expires_at FROM rate_limit_counters WHERE key = ?", (key,)).fetchone()
            if not row or row[0] is None:
                return None
            return max(0, int(round(row[0] - now)))
        return self._run(op)

    def delete(self, key: str) -> None:
        def op(conn, now):
            conn.execute("DELETE FROM rate_limit_counters WHERE key = ?", (key,))
        self._run(op)


class RateLimiter:
    """Hourly per-phone quota with a fail-open policy."""

    def __init__(self, store: CounterStore, actions_per_hour: int = 6, window_seconds: int = WINDOW_SECONDS):
        self.store = store
        self.limit = actions_per_hour
        self.window_seconds = window_seconds

    @staticmethod
    def key_for(phone: str) -> str:
        return f"rate_limit:{format_phone_number(phone)}"

    def check_allowed(self, phone: str) -> bool:
        """True unless the sender already used the whole quota in this window."""
        key = self.key_for(phone)
        try:
            count = self.store.get(key)
        except CounterStoreError as e:
            logger.error(f"Rate limit check failed for {key}, allowing: {e}")
            return True

        logger.debug(f"Rate limit check {key}: {count}/{self.limit}")
        if count >= self.limit:
            logger.warning(f"Rate limit exceeded for {key} ({count}/{self.limit})")
            return False
        return True

    def record_action(self, phone: str) -> None:
        key = self.key_for(phone)
        try:
            count = self.store.incr_with_expiry(key, self.window_seconds)
        except CounterStoreError as e:
            logger.error(f"Rate limit increment failed for {key}: {e}")
            return
        logger.debug(f"Rate limit incremented {key}: {count}/{self.limit}")

    def status(self, phone: str) -> RateLimitStatus:
        key = self.key_for(phone)
        try:
            count = self.store.get(key)
            ttl = self.store.ttl(key)
        except CounterStoreError as e:
            logger.error(f"Rate limit status failed for {key}: {e}")
            return RateLimitStatus(count=0, limit=self.limit, remaining=self.limit)

        reset_at = None
        if ttl is not None and ttl > 0:
            reset_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        return RateLimitStatus(
            count=count,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_at=reset_at,
        )

    def reset(self, phone: str) -> None:
        """Admin reset of a sender's window."""
        key = self.key_for(phone)
        try:
            self.store.delete(key)
        except CounterStoreError as e:
            logger.error(f"Rate limit reset failed for {key}: {e}")
            return
        logger.info(f"Rate limit reset for {key}")
