"""
Cache store for normalized market indicators
In-memory entries with optional JSON write-through, keyed by (data_type, session)
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..utils import get_logger
from ..utils.market_hours import MarketSession, utc_now
from .base import CacheStoreError

logger = get_logger(__name__)

CacheKey = Tuple[str, MarketSession]


def calculate_quality_score(payload: Any) -> int:
    """
    Heuristic completeness score for a payload

    Base 50, +5 per field up to 30, +20 scaled by the share of non-null
    values. Missing payloads score 0.
    """
    if payload is None:
        return 0

    score = 50.0
    if isinstance(payload, dict):
        values = list(payload.values())
    elif isinstance(payload, (list, tuple)):
        values = list(payload)
    else:
        values = []

    if values:
        score += min(len(values) * 5, 30)
        score += sum(1 for v in values if v is not None) / len(values) * 20

    return int(round(max(0.0, min(100.0, score))))


@dataclass
class CacheEntry:
    """One cached indicator; observably absent once now >= expires_at"""
    data_type: str
    payload: Any
    session: MarketSession
    cached_at: datetime
    expires_at: datetime
    source: str
    quality_score: int = 0

    def __post_init__(self):
        if self.expires_at <= self.cached_at:
            raise ValueError(
                f"expires_at ({self.expires_at.isoformat()}) must be after cached_at ({self.cached_at.isoformat()})"
            )

    @classmethod
    def create(
        cls,
        data_type: str,
        payload: Any,
        session: MarketSession,
        source: str,
        ttl: timedelta,
        cached_at: Optional[datetime] = None,
        quality_score: Optional[int] = None
    ) -> 'CacheEntry':
        cached_at = cached_at or utc_now()
        return cls(
            data_type=data_type,
            payload=payload,
            session=session,
            cached_at=cached_at,
            expires_at=cached_at + ttl,
            source=source,
            quality_score=calculate_quality_score(payload) if quality_score is None else quality_score
        )

    @property
    def key(self) -> CacheKey:
        return (self.data_type, self.session)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Row shape of the market_data_cache table"""
        return {
            'data_type': self.data_type,
            'market_session': self.session.value,
            'data_payload': self.payload,
            'cache_timestamp': self.cached_at.isoformat(),
            'expiry_timestamp': self.expires_at.isoformat(),
            'api_source': self.source,
            'data_quality_score': self.quality_score
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheEntry':
        return cls(
            data_type=data['data_type'],
            payload=data['data_payload'],
            session=MarketSession(data['market_session']),
            cached_at=datetime.fromisoformat(data['cache_timestamp']),
            expires_at=datetime.fromisoformat(data['expiry_timestamp']),
            source=data['api_source'],
            quality_score=data.get('data_quality_score', 0)
        )


@dataclass
class CacheStats:
    total_entries: int
    hit_rate: float
    expired_entries: int
    data_types: List[str] = field(default_factory=list)
    hits: int = 0
    misses: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_entries': self.total_entries,
            'hit_rate': self.hit_rate,
            'expired_entries': self.expired_entries,
            'data_types': self.data_types,
            'hits': self.hits,
            'misses': self.misses
        }


class CacheStore:
    """
    TTL cache for indicator payloads

    put() is an upsert: the last write for a (data_type, session) wins.
    Expired entries are skipped on read and only removed by cleanup_expired().
    When a cache file is configured every mutation is written through, and
    write failures raise CacheStoreError without changing in-memory state.
    """

    def __init__(
        self,
        cache_file: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.cache_file = Path(cache_file) if cache_file else None
        self.clock = clock or utc_now
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

        if self.cache_file:
            self._load()
            logger.info(f"Initialized cache store at {self.cache_file} ({len(self._entries)} entries)")
        else:
            logger.info("Initialized in-memory cache store")

    def _load(self):
        if not self.cache_file.exists():
            return
        try:
            with open(self.cache_file, 'r') as f:
                rows = json.load(f)
            for row in rows:
                entry = CacheEntry.from_dict(row)
                self._entries[entry.key] = entry
        except (OSError, ValueError, KeyError, TypeError) as e:
            # Start empty rather than refuse to start
            logger.error(f"Failed to load cache file {self.cache_file}: {e}")
            self._entries = {}

    async def _persist(self, entries: Dict[CacheKey, CacheEntry]):
        if not self.cache_file:
            return
        try:
            document = json.dumps([e.to_dict() for e in entries.values()], indent=2)
            # File IO runs off the event loop
            await asyncio.to_thread(self._write, document)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write cache file {self.cache_file}: {e}")
            raise CacheStoreError(f"could not persist cache: {e}") from e

    def _write(self, document: str):
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.cache_file, 'w') as f:
            f.write(document)

    def _record(self, entry: Optional[CacheEntry]) -> Optional[CacheEntry]:
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    async def get(self, data_type: str, session: MarketSession) -> Optional[CacheEntry]:
        """Unexpired entry for the key, or None"""
        entry = self._entries.get((data_type, session))
        if entry is not None and entry.is_expired(self.clock()):
            logger.debug(f"Cache expired for {data_type}/{session.value}")
            entry = None
        return self._record(entry)

    async def get_latest(self, data_type: str) -> Optional[CacheEntry]:
        """Newest unexpired entry for a data type across all sessions"""
        now = self.clock()
        candidates = [
            e for e in self._entries.values()
            if e.data_type == data_type and not e.is_expired(now)
        ]
        latest = max(candidates, key=lambda e: e.cached_at) if candidates else None
        return self._record(latest)

    async def put(self, entry: CacheEntry):
        async with self._lock:
            updated = dict(self._entries)
            updated[entry.key] = entry
            await self._persist(updated)
            self._entries = updated
        logger.debug(
            f"Cached {entry.data_type}/{entry.session.value} from {entry.source} "
            f"until {entry.expires_at.isoformat()}"
        )

    async def cleanup_expired(self) -> int:
        """Remove expired entries; returns the number removed"""
        now = self.clock()
        async with self._lock:
            kept = {k: e for k, e in self._entries.items() if not e.is_expired(now)}
            removed = len(self._entries) - len(kept)
            if removed:
                await self._persist(kept)
                self._entries = kept

        logger.info(f"Cleaned up {removed} expired cache entries")
        return removed

    async def clear(self):
        async with self._lock:
            await self._persist({})
            self._entries = {}
        logger.info("Cleared all cache")

    async def get_stats(self) -> CacheStats:
        now = self.clock()
        lookups = self.hits + self.misses
        return CacheStats(
            total_entries=len(self._entries),
            hit_rate=round(self.hits / lookups * 100, 2) if lookups else 0.0,
            expired_entries=sum(1 for e in self._entries.values() if e.is_expired(now)),
            data_types=sorted({e.data_type for e in self._entries.values()}),
            hits=self.hits,
            misses=self.misses
        )
