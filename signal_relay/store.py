import fcntl
import json
import os
from typing import Optional

import requests

from signal_relay.errors import CacheUnavailable
from signal_relay.models import CACHE_COLLECTION
from signal_relay.utils.logger import get_logger

logger = get_logger("store")


class FileSignalStore:
    """
    One JSON document per collection: {row_id: row}.
    Shared lock for reads, exclusive lock + tmp/replace for writes.
    """

    def __init__(self, base_dir: str, collection: str = CACHE_COLLECTION):
        self.base_dir = base_dir
        self.collection = collection
        self.path = os.path.join(base_dir, f"{collection}.json")

    def _read_all(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except (OSError, json.JSONDecodeError) as e:
            raise CacheUnavailable(f"Store read failed: {e}") from e
        return data if isinstance(data, dict) else {}

    def _write_all(self, rows: dict) -> None:
        temp_path = self.path + ".tmp"
        try:
            os.makedirs(self.base_dir, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                json.dump(rows, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
                fcntl.flock(f, fcntl.LOCK_UN)
            os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise CacheUnavailable(f"Store write failed: {e}") from e

    def get(self, row_id: str) -> Optional[dict]:
        return self._read_all().get(row_id)

    def upsert(self, row: dict) -> None:
        rows = self._read_all()
        rows[row["id"]] = row
        self._write_all(rows)

    def ping(self) -> bool:
        try:
            self._read_all()
            return True
        except CacheUnavailable:
            return False

    def size_bytes(self) -> int:
        return len(json.dumps(list(self._read_all().values()), ensure_ascii=False))


class SupabaseSignalStore:
    """PostgREST table access (Supabase), upsert on primary key `id`."""

    def __init__(self, url: str, key: str, collection: str = CACHE_COLLECTION,
                 timeout_sec: float = 10, session=None):
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{collection}"
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, **kwargs):
        try:
            resp = self.session.request(method, self.endpoint, headers=kwargs.pop("headers", self.headers),
                                        timeout=self.timeout_sec, **kwargs)
            resp.raise_for_status()
            return resp
        except requests.RequestException as e:
            raise CacheUnavailable(f"Supabase {method} failed: {e}") from e

    def get(self, row_id: str) -> Optional[dict]:
        resp = self._request("GET", params={"id": f"eq.{row_id}", "select": "*", "limit": "1"})
        try:
            rows = resp.json()
        except ValueError as e:
            raise CacheUnavailable(f"Supabase returned non-JSON: {e}") from e
        return rows[0] if rows else None

    def upsert(self, row: dict) -> None:
        headers = dict(self.headers, Prefer="resolution=merge-duplicates,return=minimal")
        self._request("POST", headers=headers, data=json.dumps(row, ensure_ascii=False))

    def ping(self) -> bool:
        try:
            self._request("GET", params={"select": "id", "limit": "1"})
            return True
        except CacheUnavailable:
            return False

    def size_bytes(self) -> int:
        return len(self._request("GET", params={"select": "*"}).text)


def get_store(settings):
    if settings.supabase_url and settings.supabase_key:
        logger.info("Store: Supabase")
        return SupabaseSignalStore(settings.supabase_url, settings.supabase_key,
                                   timeout_sec=settings.request_timeout_sec)
    logger.info(f"Store: file ({settings.store_dir})")
    return FileSignalStore(settings.store_dir)
