import sys
import os
import json
import unittest

import requests

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from signal_relay.errors import CacheUnavailable
from signal_relay.store import SupabaseSignalStore


class FakeResponse:
    def __init__(self, payload=None, status=200, text=""):
        self.payload = payload
        self.status_code = status
        self.text = text or json.dumps(payload)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers, **kwargs})
        if self.error:
            raise self.error
        return self.response


class TestSupabaseStore(unittest.TestCase):
    def make_store(self, session):
        return SupabaseSignalStore("https://proj.supabase.co/", "anon-key", session=session)

    def test_get_latest(self):
        row = {"id": "latest", "data": {"signals": []}, "updated_at": "2024-05-13T10:00:00+09:00"}
        session = FakeSession(FakeResponse([row]))
        self.assertEqual(self.make_store(session).get("latest"), row)

        call = session.calls[0]
        self.assertEqual(call["url"], "https://proj.supabase.co/rest/v1/signal_cache")
        self.assertEqual(call["params"]["id"], "eq.latest")
        self.assertEqual(call["headers"]["apikey"], "anon-key")

    def test_get_missing_row(self):
        self.assertIsNone(self.make_store(FakeSession(FakeResponse([]))).get("latest"))

    def test_upsert_merges(self):
        session = FakeSession(FakeResponse(None, status=201, text=""))
        self.make_store(session).upsert({"id": "latest", "data": {}, "updated_at": "t"})

        call = session.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertIn("resolution=merge-duplicates", call["headers"]["Prefer"])
        self.assertEqual(json.loads(call["data"])["id"], "latest")

    def test_failures_raise_cache_unavailable(self):
        store = self.make_store(FakeSession(error=requests.ConnectionError("refused")))
        with self.assertRaises(CacheUnavailable):
            store.get("latest")
        with self.assertRaises(CacheUnavailable):
            store.upsert({"id": "latest"})
        self.assertFalse(store.ping())

        store = self.make_store(FakeSession(FakeResponse({"message": "denied"}, status=401)))
        with self.assertRaises(CacheUnavailable):
            store.get("latest")

    def test_size_bytes(self):
        store = self.make_store(FakeSession(FakeResponse(None, text="x" * 2048)))
        self.assertEqual(store.size_bytes(), 2048)


if __name__ == '__main__':
    unittest.main()
