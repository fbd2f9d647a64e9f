import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from signal_relay.cache import AnalysisCache
from signal_relay.channel import LineChannel, validate_signature
from signal_relay.config import Settings, load_settings
from signal_relay.errors import RateLimited, Unauthorized
from signal_relay.formatter import (
    ERROR_MESSAGE,
    UNKNOWN_COMMAND_MESSAGE,
    format_signals,
    help_message,
    rate_limited_message,
)
from signal_relay.gate import SignalGate
from signal_relay.health import check_system_health, database_size
from signal_relay.providers.factory import get_provider
from signal_relay.quotes import get_quote_fetcher
from signal_relay.store import get_store
from signal_relay.usage import UsageTracker
from signal_relay.utils.logger import configure_logging, get_logger

logger = get_logger("server")

SIGNAL_KEYWORDS = ("シグナル", "分析", "signal")
HELP_KEYWORDS = ("ヘルプ", "help")


def local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class RelayContext:
    settings: Settings
    tracker: UsageTracker
    store: Any
    cache: AnalysisCache
    fetcher: Any
    provider: Any
    gate: SignalGate
    channel: LineChannel
    clock: Callable[[], datetime] = local_now


def build_context(settings: Optional[Settings] = None) -> RelayContext:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    tracker = UsageTracker.from_settings(settings, clock=local_now)
    store = get_store(settings)
    cache = AnalysisCache(store, settings.cache_freshness_hours, clock=local_now)
    fetcher = get_quote_fetcher(settings)
    provider = get_provider(settings)
    gate = SignalGate.from_settings(settings, tracker, fetcher, provider, cache)
    channel = LineChannel(settings.line_channel_access_token, timeout_sec=settings.request_timeout_sec)

    logger.info(f"{settings.service_name} {settings.version} ready "
                f"(symbols={settings.symbols}, config_loaded={settings.config_loaded})")
    return RelayContext(settings, tracker, store, cache, fetcher, provider, gate, channel)


# -----------------------------
# Webhook message routing
# -----------------------------

def is_text_message(event: Any) -> bool:
    if not isinstance(event, dict) or event.get("type") != "message":
        return False
    message = event.get("message")
    return isinstance(message, dict) and message.get("type") == "text"


async def route_text(ctx: RelayContext, text: str, user_id: str) -> str:
    """Reply text for one message. Raises RateLimited when the user is over the hourly limit."""
    if any(k in text for k in SIGNAL_KEYWORDS):
        resolution = await ctx.gate.resolve_signals(user_id)
        if resolution.rate_limited:
            raise RateLimited(user_id)
        return format_signals(resolution.result, ctx.tracker.remaining_messages())

    if not ctx.tracker.check_and_reserve_user_request(user_id):
        raise RateLimited(user_id)
    if any(k in text for k in HELP_KEYWORDS):
        return help_message(ctx.settings)
    return UNKNOWN_COMMAND_MESSAGE


def verify_request(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not validate_signature(body, signature, secret):
        raise Unauthorized("Invalid signature")


async def handle_message(ctx: RelayContext, event: Dict[str, Any]) -> None:
    text = str(event["message"].get("text") or "").lower()
    user_id = (event.get("source") or {}).get("userId") or ""
    reply_token = event.get("replyToken") or ""

    # Nothing can be delivered once the daily message quota is spent.
    if not ctx.tracker.can_send_message():
        logger.info("Daily message quota reached, event dropped")
        return

    try:
        reply = await route_text(ctx, text, user_id)
    except RateLimited as e:
        logger.info(str(e))
        reply = rate_limited_message(ctx.settings)
    except Exception as e:
        logger.exception(f"Message handling error (user={user_id}): {e}")
        reply = ERROR_MESSAGE

    if await ctx.channel.reply(reply_token, reply):
        ctx.tracker.record_message_sent()


def in_cron_window(now: datetime, settings: Settings) -> bool:
    return (now.weekday() in settings.cron_weekdays
            and settings.cron_start_hour <= now.hour <= settings.cron_end_hour)


# -----------------------------
# App
# -----------------------------

def create_app(context: Optional[RelayContext] = None) -> FastAPI:
    ctx = context or build_context()
    app = FastAPI(title=ctx.settings.service_name, version=ctx.settings.version)
    app.state.relay = ctx

    @app.post("/api/webhook")
    async def webhook(request: Request):
        body = await request.body()
        signature = request.headers.get("x-line-signature")

        try:
            verify_request(body, signature, ctx.settings.line_channel_secret)
        except Unauthorized as e:
            logger.error(str(e))
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

        try:
            payload = json.loads(body)
            events = payload.get("events") or []
            for event in events:
                if is_text_message(event):
                    await handle_message(ctx, event)
        except Exception as e:
            logger.exception(f"Webhook error: {e}")
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        return {"success": True}

    @app.post("/api/cron-analysis")
    async def cron_analysis():
        now = ctx.clock()
        if not in_cron_window(now, ctx.settings):
            return {"message": "Outside market hours"}

        outcome = await ctx.gate.refresh()
        response = {
            "message": "Analysis completed" if outcome.ok else "Analysis unavailable",
            "timestamp": now.isoformat(),
            "symbols": len(ctx.settings.symbols),
            "signals": len(outcome.result.signals) if outcome.ok else 0,
            "pushed": False,
        }
        if not outcome.ok:
            response["error"] = outcome.error
            return response

        push_to = ctx.settings.line_push_to
        if push_to and ctx.tracker.can_send_message():
            text = format_signals(outcome.result, ctx.tracker.remaining_messages())
            if await ctx.channel.push(push_to, text):
                ctx.tracker.record_message_sent()
                response["pushed"] = True
        return response

    @app.api_route("/api/status", methods=["GET", "POST"])
    async def status():
        try:
            health = await check_system_health(
                ctx.store, ctx.fetcher, ctx.cache, ctx.settings.symbols[0]
            )
            usage = ctx.tracker.snapshot()
            return {
                "service": ctx.settings.service_name,
                "version": ctx.settings.version,
                "status": health["overall"],
                "usage": {
                    "model_calls": usage["model_calls"],
                    "messages": usage["messages"],
                },
                "system_health": health,
                "gate": ctx.gate.metrics.snapshot(),
                "provider": ctx.provider.get_usage_stats(),
                "database_size": await database_size(ctx.store),
                "monthly_cost": 0,
                "last_updated": ctx.clock().isoformat(),
            }
        except Exception as e:
            logger.exception(f"Status check error: {e}")
            return JSONResponse(status_code=500, content={
                "service": ctx.settings.service_name,
                "status": "error",
                "error": "System health check failed",
            })

    return app
