"""
Classical Baseline Cache.

Responsibilities:
- get / set-with-TTL of one float per state identifier, in process, in
  SQLite or in Redis.
- Purge expired entries.

Non-Responsibilities:
- No baseline generation.
- No error recovery; callers treat the cache as best effort.

Invariant:
An expired entry is never returned.
"""

import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Optional, Tuple

import redis

from subsidymatch.database import BaselineScore, get_sessionmaker

DEFAULT_TTL = 3600


class InMemoryBaselineCache:
    """Process-local cache, for tests and single-process runs."""

    def __init__(self):
        self._entries: Dict[str, Tuple[float, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: float, ttl: int = DEFAULT_TTL) -> None:
        with self._lock:
            self._entries[key] = (float(value), time.monotonic() + ttl)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqlBaselineCache:
    """Cache entries in the baseline_scores table of the SQLite database."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._Session = get_sessionmaker(self.db_path)

    def get(self, key: str) -> Optional[float]:
        session = self._Session()
        try:
            row = session.get(BaselineScore, key)
            if row is None or row.expires_at <= datetime.now():
                return None
            return row.score
        finally:
            session.close()

    def set(self, key: str, value: float, ttl: int = DEFAULT_TTL) -> None:
        session = self._Session()
        try:
            session.merge(BaselineScore(
                key=key,
                score=float(value),
                expires_at=datetime.now() + timedelta(seconds=ttl),
                created_at=datetime.now(),
            ))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def purge_expired(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Delete expired entries. Returns (entries_before, entries_after)."""
        now = now or datetime.now()
        session = self._Session()
        try:
            before = session.query(BaselineScore).count()
            session.query(BaselineScore).filter(BaselineScore.expires_at <= now).delete()
            session.commit()
            after = session.query(BaselineScore).count()
            return before, after
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


class RedisBaselineCache:
    """Cache entries as Redis strings; expiry is left to SETEX."""

    def __init__(self, client: "redis.Redis", prefix: str = ""):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisBaselineCache":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def get(self, key: str) -> Optional[float]:
        value = self.client.get(self.prefix + key)
        if value is None:
            return None
        return float(value)

    def set(self, key: str, value: float, ttl: int = DEFAULT_TTL) -> None:
        self.client.setex(self.prefix + key, int(ttl), repr(float(value)))
