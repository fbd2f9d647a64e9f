"""
Quota-and-cache gate.

Degradation chain for a signal request:

    per-user limit --(blocked)--> RATE_LIMITED
         |
    global quota --(spent)------------------+
         |                                  |
    fetch -> validate -> generate -> cache  |
         |(ok)          |(any failure)      |
       FRESH            +-------------------+--> fresh cache row? CACHE : FALLBACK
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from signal_relay.errors import UpstreamUnavailable
from signal_relay.metrics import GateMetrics
from signal_relay.models import AnalysisResult, Signal
from signal_relay.utils.logger import get_logger
from signal_relay.validation import filter_valid

FALLBACK_CONFIDENCE = 50
FALLBACK_REASON = "データ取得中"


class Tier(Enum):
    FRESH = "fresh"
    CACHE = "cache"
    FALLBACK = "fallback"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class Resolution:
    tier: Tier
    result: Optional[AnalysisResult]
    user_id: Optional[str] = None

    @property
    def rate_limited(self) -> bool:
        return self.tier is Tier.RATE_LIMITED


@dataclass(frozen=True)
class GenerationOutcome:
    ok: bool
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None
    valid_quotes: int = 0
    cached: bool = False


def fallback_result(symbols: Sequence[str]) -> AnalysisResult:
    return AnalysisResult(signals=[
        Signal(symbol=s, action="HOLD", confidence=FALLBACK_CONFIDENCE, reason=FALLBACK_REASON)
        for s in symbols
    ])


class SignalGate:
    def __init__(self, symbols, tracker, fetcher, provider, cache, metrics: Optional[GateMetrics] = None):
        self.symbols = list(symbols)
        self.tracker = tracker
        self.fetcher = fetcher
        self.provider = provider
        self.cache = cache
        self.metrics = metrics or GateMetrics()
        self.logger = get_logger("gate")

    @classmethod
    def from_settings(cls, settings, tracker, fetcher, provider, cache, metrics=None):
        return cls(settings.symbols, tracker, fetcher, provider, cache, metrics=metrics)

    # -----------------------------
    # Request path
    # -----------------------------

    async def resolve_signals(self, user_id: Optional[str] = None) -> Resolution:
        start = time.monotonic()
        try:
            # 1. Per-user limit: fail fast, global quota untouched
            if user_id is not None and not self.tracker.check_and_reserve_user_request(user_id):
                self.metrics.inc("rate_limited_count")
                self.logger.info(f"[BLOCK] User {user_id} hit hourly limit")
                return Resolution(Tier.RATE_LIMITED, None, user_id)

            # 2./3. Global quota, then fresh generation
            if self.tracker.check_and_reserve_global_call():
                counted = False
                try:
                    outcome = await self._generate()
                    if outcome.ok:
                        self.tracker.record_global_call_success()
                        counted = True
                finally:
                    # cancellation included: an uncounted call gives its slot back
                    if not counted:
                        self.tracker.release_global_call()
                if counted:
                    self.metrics.inc("fresh_count")
                    return Resolution(Tier.FRESH, outcome.result, user_id)
            else:
                self.metrics.inc("quota_block_count")
                self.logger.info("[QUOTA] Daily model-call cap reached, serving cache")

            # 4. Cache, then deterministic fallback
            return await self._serve_cached(user_id)
        finally:
            self.metrics.record_latency(time.monotonic() - start)

    # -----------------------------
    # Scheduled path
    # -----------------------------

    async def refresh(self) -> GenerationOutcome:
        """Unconditional fetch -> generate -> cache. Success still counts as a model call."""
        outcome = await self._generate()
        if outcome.ok:
            self.tracker.record_global_call_success(reserved=False)
        return outcome

    # -----------------------------
    # Internals
    # -----------------------------

    async def _generate(self) -> GenerationOutcome:
        quotes = filter_valid(await self.fetcher.fetch(self.symbols))
        if not quotes:
            self.metrics.inc("generation_error_count")
            self.logger.warning("No valid market data received")
            return GenerationOutcome(ok=False, error="NO_VALID_QUOTES")

        try:
            result = await self.provider.generate(quotes)
        except UpstreamUnavailable as e:
            self.metrics.inc("generation_error_count")
            self.logger.error(f"Signal generation failed: {type(e).__name__}: {e}")
            return GenerationOutcome(ok=False, error=type(e).__name__, valid_quotes=len(quotes))
        except Exception as e:
            self.metrics.inc("generation_error_count")
            self.logger.exception(f"Unexpected provider error: {e}")
            return GenerationOutcome(ok=False, error="UNEXPECTED", valid_quotes=len(quotes))

        cached = await self.cache.put(result)
        return GenerationOutcome(ok=True, result=result, valid_quotes=len(quotes), cached=cached)

    async def _serve_cached(self, user_id: Optional[str]) -> Resolution:
        try:
            entry = await self.cache.get_fresh()
        except Exception as e:
            # the fallback tier must never raise
            self.logger.error(f"Cache lookup crashed, treating as miss: {e}")
            entry = None

        if entry is not None:
            self.metrics.inc("cache_hit_count")
            return Resolution(Tier.CACHE, entry.data, user_id)

        self.metrics.inc("fallback_count")
        return Resolution(Tier.FALLBACK, fallback_result(self.symbols), user_id)
