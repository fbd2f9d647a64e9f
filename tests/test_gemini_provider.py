import sys
import os
import unittest
from types import SimpleNamespace

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from signal_relay.errors import MalformedModelOutput, UpstreamUnavailable
from signal_relay.models import MarketQuote
from signal_relay.providers.gemini_provider import (
    GeminiProvider,
    build_prompt,
    extract_json,
    parse_analysis,
)
from signal_relay.providers.mock_provider import MockProvider


class FakeModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.requests = []

    async def generate_content(self, model, contents, config):
        self.requests.append({"model": model, "contents": contents, "config": config})
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


def fake_client(models):
    return SimpleNamespace(aio=SimpleNamespace(models=models))


QUOTES = [
    MarketQuote("6758", 2520.0, 2500.0, 20.0, "0.80", 1000),
    MarketQuote("7203", 2400.0, 2450.0, -50.0, "-2.04", 2000),
]


class TestJsonExtraction(unittest.TestCase):
    def test_fenced_and_wrapped(self):
        self.assertEqual(extract_json('```json\n{"a": 1}\n```'), {"a": 1})
        self.assertEqual(extract_json('Here you go: {"a": 2} thanks'), {"a": 2})
        self.assertEqual(extract_json('{"a": 3}'), {"a": 3})

    def test_unparseable(self):
        self.assertIsNone(extract_json(""))
        self.assertIsNone(extract_json("no json here"))
        self.assertIsNone(extract_json("[1, 2]"))

    def test_schema_mismatch_is_rejected(self):
        for payload in (
            '{"signals":[{"symbol":null,"action":"BUY","confidence":85,"reason":"x"}]}',
            '{"signals":[{"symbol":true,"action":"BUY","confidence":85,"reason":"x"}]}',
            '{"signals":[{"symbol":" ","action":"BUY","confidence":85,"reason":"x"}]}',
            '{"signals":[{"symbol":"6758","action":"BUY","confidence":85}]}',
            '{"signals":[{"symbol":"6758","action":"BUY","confidence":101,"reason":"x"}]}',
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(MalformedModelOutput):
                    parse_analysis(payload)

    def test_numeric_symbol_accepted(self):
        result = parse_analysis('{"signals":[{"symbol":6758,"action":"hold","confidence":50,"reason":"x"}]}')
        self.assertEqual((result.signals[0].symbol, result.signals[0].action), ("6758", "HOLD"))

    def test_prompt_lists_quotes(self):
        prompt = build_prompt(QUOTES)
        self.assertIn("6758: ¥2520.0 (+0.80%)", prompt)
        self.assertIn("7203: ¥2400.0 (-2.04%)", prompt)
        self.assertIn("6758, 7203", prompt)


class TestGeminiProvider(unittest.IsolatedAsyncioTestCase):
    async def test_generate(self):
        models = FakeModels('{"signals":[{"symbol":"6758","action":"buy","confidence":85,"reason":"x"}],'
                            '"market_summary":"堅調"}')
        provider = GeminiProvider(None, model_name="gemini-test", client=fake_client(models))

        result = await provider.generate(QUOTES)
        self.assertEqual(result.signals[0].action, "BUY")
        self.assertEqual(result.market_summary, "堅調")

        request = models.requests[0]
        self.assertEqual(request["model"], "gemini-test")
        self.assertEqual(request["config"].temperature, 0.3)
        self.assertEqual(request["config"].max_output_tokens, 600)
        self.assertEqual(provider.get_usage_stats()["total_calls"], 1)

    async def test_malformed_output(self):
        for text in ("I think you should buy.", '{"signals": [{"symbol": "6758", "action": "MAYBE"}]}', None):
            with self.subTest(text=text):
                provider = GeminiProvider(None, client=fake_client(FakeModels(text)))
                with self.assertRaises(MalformedModelOutput):
                    await provider.generate(QUOTES)
                self.assertEqual(provider.error_count, 1)

    async def test_sdk_error_wrapped(self):
        provider = GeminiProvider(None, client=fake_client(FakeModels(error=RuntimeError("429"))))
        with self.assertRaises(UpstreamUnavailable):
            await provider.generate(QUOTES)
        self.assertEqual(provider.get_usage_stats()["total_errors"], 1)

    async def test_empty_quotes_rejected(self):
        provider = GeminiProvider(None, client=fake_client(FakeModels("{}")))
        with self.assertRaises(ValueError):
            await provider.generate([])

    def test_missing_key(self):
        with self.assertRaises(ValueError):
            GeminiProvider(None)


class TestMockProvider(unittest.IsolatedAsyncioTestCase):
    async def test_actions_follow_change(self):
        quotes = QUOTES + [MarketQuote("9984", 7000.0, 6990.0, 10.0, "0.14", 0),
                           MarketQuote("8306", 1300.0, 1270.0, 30.0, "2.36", 0)]
        result = await MockProvider().generate(quotes)
        actions = {s.symbol: (s.action, s.confidence) for s in result.signals}
        self.assertEqual(actions["6758"], ("HOLD", 58))
        self.assertEqual(actions["7203"], ("SELL", 70))
        self.assertEqual(actions["9984"], ("HOLD", 51))
        self.assertEqual(actions["8306"], ("BUY", 73))


if __name__ == '__main__':
    unittest.main()
