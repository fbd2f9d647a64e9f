from __future__ import annotations

import asyncio
import math
from typing import Optional, Sequence

import requests
import yfinance as yf

from signal_relay.errors import UpstreamUnavailable
from signal_relay.models import MarketQuote
from signal_relay.utils.logger import get_logger

logger = get_logger("quotes")

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
}


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f


def build_quote(symbol: str, price, previous_close, volume) -> MarketQuote:
    """
    change = price - previous_close
    change_percent = change / previous_close * 100, as text with 2 decimals.
    Missing inputs leave the computed fields None (dropped later by validation).
    """
    p = _number(price)
    prev = _number(previous_close)
    vol = _number(volume)

    change = change_percent = None
    if p is not None and prev:
        change = p - prev
        change_percent = f"{change / prev * 100:.2f}"

    return MarketQuote(
        symbol=symbol,
        price=p,
        previous_close=prev,
        change=change,
        change_percent=change_percent,
        volume=int(vol) if vol is not None else 0,
    )


class ChartQuoteSource:
    """Yahoo Finance v8 chart endpoint (meta block only)."""

    def __init__(self, base_url: str, suffix: str = ".T", timeout_sec: float = 10, session=None):
        self.base_url = base_url.rstrip("/")
        self.suffix = suffix
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def _url(self, symbol: str) -> str:
        return f"{self.base_url}/{symbol}{self.suffix}"

    def fetch_one(self, symbol: str) -> MarketQuote:
        try:
            resp = self.session.get(self._url(symbol), headers=HEADERS, timeout=self.timeout_sec)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise UpstreamUnavailable(f"{symbol}: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamUnavailable(f"{symbol}: unexpected payload")
        results = (payload.get("chart") or {}).get("result") or []
        if not results:
            raise UpstreamUnavailable(f"{symbol}: empty chart result")

        meta = results[0].get("meta") or {}
        previous_close = meta.get("previousClose", meta.get("chartPreviousClose"))
        return build_quote(
            symbol,
            meta.get("regularMarketPrice"),
            previous_close,
            meta.get("regularMarketVolume"),
        )

    def ping(self, symbol: str) -> bool:
        try:
            resp = self.session.get(self._url(symbol), headers=HEADERS, timeout=self.timeout_sec)
            return resp.ok
        except requests.RequestException:
            return False


class YFinanceQuoteSource:
    def __init__(self, suffix: str = ".T"):
        self.suffix = suffix

    def fetch_one(self, symbol: str) -> MarketQuote:
        try:
            info = yf.Ticker(f"{symbol}{self.suffix}").fast_info
            price = info.last_price
            previous_close = info.previous_close
            volume = info.last_volume
        except Exception as e:
            # yfinance surfaces HTTP, parsing and KeyError failures alike
            raise UpstreamUnavailable(f"{symbol}: {e}") from e
        return build_quote(symbol, price, previous_close, volume)

    def ping(self, symbol: str) -> bool:
        try:
            return _number(yf.Ticker(f"{symbol}{self.suffix}").fast_info.last_price) is not None
        except Exception:
            return False


class QuoteFetcher:
    """
    Sequential per-symbol fetch. One failing symbol is logged and omitted;
    the batch itself never fails.
    """

    def __init__(self, source):
        self.source = source

    async def fetch(self, symbols: Sequence[str]) -> list[MarketQuote]:
        quotes: list[MarketQuote] = []
        for symbol in symbols:
            try:
                quotes.append(await asyncio.to_thread(self.source.fetch_one, symbol))
            except Exception as e:
                # Loop integrity: one bad symbol never fails the batch
                logger.warning(f"Quote fetch failed for {symbol}: {e}")
        logger.info(f"Fetched {len(quotes)}/{len(symbols)} quotes")
        return quotes

    async def ping(self, symbol: str) -> bool:
        return await asyncio.to_thread(self.source.ping, symbol)


def get_quote_fetcher(settings) -> QuoteFetcher:
    kind = (settings.quote_provider or "chart").lower()
    if kind == "yfinance":
        source = YFinanceQuoteSource(suffix=settings.quote_suffix)
    else:
        source = ChartQuoteSource(
            settings.quote_base_url,
            suffix=settings.quote_suffix,
            timeout_sec=settings.request_timeout_sec,
        )
    logger.info(f"Quote source: {type(source).__name__}")
    return QuoteFetcher(source)
