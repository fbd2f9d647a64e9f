import json
import re
import time
from typing import Any, Dict, Optional, Sequence

from google import genai
from google.genai import types
from pydantic import ValidationError

from signal_relay.errors import MalformedModelOutput, UpstreamUnavailable
from signal_relay.models import AnalysisResult, MarketQuote
from signal_relay.utils.logger import get_logger
from .base import BaseSignalProvider

logger = get_logger("providers.gemini")

MAX_OUTPUT_TOKENS = 600
TEMPERATURE = 0.3

# -----------------------------
# JSON extraction helpers
# -----------------------------
_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_FIRST_JSON_RE = re.compile(r"(\{.*\})", re.DOTALL)


def extract_json(text: str) -> Optional[dict]:
    if not text:
        return None
    s = text.strip()

    # 1) fenced code block
    m = _JSON_BLOCK_RE.search(s)
    if m:
        try:
            return json.loads(m.group(1).strip())
        except json.JSONDecodeError:
            pass

    # 2) outermost {...}
    m = _FIRST_JSON_RE.search(s)
    if m:
        try:
            return json.loads(m.group(1).strip())
        except json.JSONDecodeError:
            pass

    # 3) direct attempt
    try:
        parsed = json.loads(s)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_analysis(raw_text: str) -> AnalysisResult:
    parsed = extract_json(raw_text)
    if not parsed:
        raise MalformedModelOutput("JSON_PARSE_ERROR")
    try:
        return AnalysisResult.model_validate(parsed)
    except ValidationError as e:
        raise MalformedModelOutput(f"SCHEMA_MISMATCH: {e.error_count()} error(s)") from e


def _signed(change_percent: str) -> str:
    return change_percent if change_percent.startswith("-") else f"+{change_percent}"


def build_prompt(quotes: Sequence[MarketQuote]) -> str:
    lines = "\n".join(
        f"{q.symbol}: ¥{q.price} ({_signed(q.change_percent)}%)" for q in quotes
    )
    symbols = ", ".join(q.symbol for q in quotes)
    example = quotes[0].symbol

    # NOTE: schema must match models.AnalysisResult exactly.
    return f"""
ROLE: You are a concise analyst of Tokyo Stock Exchange equities.

[CURRENT DATA]
{lines}

[DECISION RULES]
- BUY: uptrend with rising volume
- SELL: downtrend or overheated
- HOLD: insufficient evidence or neutral

[OUTPUT REQUIREMENT - JSON ONLY]
Return ONLY a valid JSON object, one signal for EVERY symbol ({symbols}), in this order:

{{
  "signals": [
    {{"symbol": "{example}", "action": "BUY" | "SELL" | "HOLD", "confidence": (int 0-100), "reason": "short reason in Japanese"}}
  ],
  "market_summary": "one line in Japanese"
}}
""".strip()


class GeminiProvider(BaseSignalProvider):
    """Real provider (google.genai async client). One call per generate()."""

    name = "REAL"

    def __init__(self, api_key: Optional[str], model_name: str = "gemini-2.5-flash", client=None):
        if client is None:
            if not api_key:
                raise ValueError("GEMINI_API_KEY is missing!")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model_name = model_name
        self.call_count = 0
        self.error_count = 0
        self.total_latency_ms = 0.0

        logger.info(f"Using model: {self.model_name}")

    def health_check(self) -> bool:
        return self.client is not None

    async def generate(self, quotes: Sequence[MarketQuote]) -> AnalysisResult:
        if not quotes:
            raise ValueError("generate() needs at least one quote")

        prompt = build_prompt(quotes)
        config = types.GenerateContentConfig(
            temperature=TEMPERATURE,
            max_output_tokens=MAX_OUTPUT_TOKENS,
            response_mime_type="application/json",
        )

        start = time.time()
        self.call_count += 1
        try:
            resp = await self.client.aio.models.generate_content(
                model=self.model_name,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            # SDK raises APIError subclasses and httpx transport errors
            self.error_count += 1
            raise UpstreamUnavailable(f"Gemini call failed: {type(e).__name__}: {e}") from e
        finally:
            self.total_latency_ms += (time.time() - start) * 1000.0

        raw_text = getattr(resp, "text", None) or ""
        try:
            return parse_analysis(raw_text)
        except MalformedModelOutput:
            self.error_count += 1
            logger.debug(f"Raw Output (head): {raw_text[:300]}")
            raise

    def get_usage_stats(self) -> Dict[str, Any]:
        avg = (self.total_latency_ms / self.call_count) if self.call_count else 0.0
        return {
            "provider_mode": self.name,
            "model": self.model_name,
            "total_calls": self.call_count,
            "total_errors": self.error_count,
            "avg_latency_ms": round(avg, 2),
        }
