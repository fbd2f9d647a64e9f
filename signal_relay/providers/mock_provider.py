from __future__ import annotations
import time
from typing import Any, Dict, Sequence

from signal_relay.models import AnalysisResult, MarketQuote, Signal
from .base import BaseSignalProvider

TREND_THRESHOLD_PCT = 1.0


class MockProvider(BaseSignalProvider):
    """Deterministic, offline provider. Action follows the day's change."""

    name = "MOCK"

    def __init__(self):
        self.call_count = 0
        self.total_latency_ms = 0.0

    def health_check(self) -> bool:
        return True

    async def generate(self, quotes: Sequence[MarketQuote]) -> AnalysisResult:
        if not quotes:
            raise ValueError("generate() needs at least one quote")

        start = time.time()
        try:
            self.call_count += 1
            signals = []
            for q in quotes:
                pct = float(q.change_percent)
                if pct > TREND_THRESHOLD_PCT:
                    action = "BUY"
                elif pct < -TREND_THRESHOLD_PCT:
                    action = "SELL"
                else:
                    action = "HOLD"
                confidence = min(90, 50 + int(abs(pct) * 10))
                signals.append(Signal(
                    symbol=q.symbol,
                    action=action,
                    confidence=confidence,
                    reason=f"前日比 {pct:+.2f}% (mock)",
                ))
            return AnalysisResult(signals=signals, market_summary="mock analysis")
        finally:
            self.total_latency_ms += (time.time() - start) * 1000.0

    def get_usage_stats(self) -> Dict[str, Any]:
        avg = (self.total_latency_ms / self.call_count) if self.call_count else 0.0
        return {
            "provider_mode": self.name,
            "total_calls": self.call_count,
            "avg_latency_ms": round(avg, 2),
        }
