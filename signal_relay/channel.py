import asyncio
import base64
import hashlib
import hmac
from typing import Optional

import requests

from signal_relay.utils.logger import get_logger

LINE_API_BASE = "https://api.line.me/v2/bot/message"
MAX_TEXT_LENGTH = 5000

logger = get_logger("channel")


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """HMAC-SHA256 over the raw body, base64, compared to X-Line-Signature."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature)


class LineChannel:
    """
    LINE Messaging API (reply + push).
    Delivery failures are logged and reported as False, never raised.
    """

    def __init__(self, access_token: Optional[str], timeout_sec: float = 10,
                 session=None, base_url: str = LINE_API_BASE):
        self.access_token = access_token
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")

    def _post(self, path: str, payload: dict) -> bool:
        if not self.access_token:
            logger.warning(f"LINE {path} skipped: no channel access token")
            return False
        try:
            resp = self.session.post(
                f"{self.base_url}/{path}",
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout_sec,
            )
            resp.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error(f"LINE {path} error: {e}")
            return False

    @staticmethod
    def _text(message: str) -> list:
        return [{"type": "text", "text": message[:MAX_TEXT_LENGTH]}]

    async def reply(self, reply_token: str, message: str) -> bool:
        payload = {"replyToken": reply_token, "messages": self._text(message)}
        return await asyncio.to_thread(self._post, "reply", payload)

    async def push(self, to: str, message: str) -> bool:
        payload = {"to": to, "messages": self._text(message)}
        return await asyncio.to_thread(self._post, "push", payload)
