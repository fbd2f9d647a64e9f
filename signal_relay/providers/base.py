from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

from signal_relay.models import AnalysisResult, MarketQuote


class BaseSignalProvider(ABC):
    """
    MOCK/REAL share one contract: quotes in, AnalysisResult out.
    Failures raise UpstreamUnavailable / MalformedModelOutput.
    """

    name = "base"

    @abstractmethod
    def health_check(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def generate(self, quotes: Sequence[MarketQuote]) -> AnalysisResult:
        raise NotImplementedError

    @abstractmethod
    def get_usage_stats(self) -> Dict[str, Any]:
        raise NotImplementedError
