from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

Action = Literal["BUY", "SELL", "HOLD"]

CACHE_KEY = "latest"
CACHE_COLLECTION = "signal_cache"


# ==========================
# Market Input
# ==========================

@dataclass
class MarketQuote:
    """
    One upstream quote. Deliberately unvalidated so that bad records
    can be built and then dropped by validation.is_valid().
    """
    symbol: str
    price: Optional[float]
    previous_close: Optional[float]
    change: Optional[float]
    change_percent: Optional[str]
    volume: Optional[int] = 0


# ==========================
# Model Output Contract
# ==========================

class Signal(BaseModel):
    symbol: str
    action: Action
    confidence: int = Field(ge=0, le=100)
    reason: str

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v):
        # ticker codes may arrive as JSON numbers (6758)
        if isinstance(v, bool) or not isinstance(v, (str, int)):
            raise ValueError("symbol must be a string or integer code")
        symbol = str(v).strip().upper()
        if not symbol:
            raise ValueError("symbol is empty")
        return symbol

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class AnalysisResult(BaseModel):
    signals: list[Signal]
    market_summary: Optional[str] = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now().astimezone())


class CacheEntry(BaseModel):
    data: AnalysisResult
    updated_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (as_aware(now) - as_aware(self.updated_at)).total_seconds()


def as_aware(ts: datetime) -> datetime:
    """Naive timestamps are taken as local time."""
    return ts if ts.tzinfo is not None else ts.astimezone()
