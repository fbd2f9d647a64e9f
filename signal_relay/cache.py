import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from signal_relay.errors import CacheUnavailable
from signal_relay.models import CACHE_KEY, AnalysisResult, CacheEntry
from signal_relay.utils.logger import get_logger


class AnalysisCache:
    """
    Single-row cache (id='latest') over a SignalStore.
    Store failures are logged and reported as 'cache unavailable', never raised.
    """

    def __init__(self, store, freshness_hours: float = 4, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.freshness = timedelta(hours=freshness_hours)
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.logger = get_logger("cache")

    def is_fresh(self, entry: Optional[CacheEntry], now: Optional[datetime] = None) -> bool:
        if entry is None:
            return False
        now = now or self.clock()
        return entry.age_seconds(now) < self.freshness.total_seconds()

    async def get(self) -> Optional[CacheEntry]:
        try:
            row = await asyncio.to_thread(self.store.get, CACHE_KEY)
        except CacheUnavailable as e:
            self.logger.warning(f"Cache Read Failed: {e}")
            return None
        if not row:
            return None
        try:
            return CacheEntry.model_validate(row)
        except ValidationError as e:
            self.logger.warning(f"Cache row unreadable, treating as miss: {e.error_count()} error(s)")
            return None

    async def get_fresh(self) -> Optional[CacheEntry]:
        entry = await self.get()
        if entry is None:
            self.logger.info("[MISS] No cached analysis")
            return None
        # Freshness is judged against the clock at read time.
        if not self.is_fresh(entry):
            self.logger.info(f"[EXPIRED] Cached analysis from {entry.updated_at.isoformat()}")
            return None
        self.logger.info("[HIT] Cached analysis used")
        return entry

    async def put(self, result: AnalysisResult) -> bool:
        row = {
            "id": CACHE_KEY,
            "data": result.model_dump(mode="json"),
            "updated_at": self.clock().isoformat(),
        }
        try:
            await asyncio.to_thread(self.store.upsert, row)
        except CacheUnavailable as e:
            self.logger.error(f"Cache Write Failed: {e}")
            return False
        self.logger.info("[SAVED] Cached analysis updated")
        return True
