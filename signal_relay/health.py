import asyncio

from signal_relay.errors import CacheUnavailable
from signal_relay.utils.logger import get_logger

logger = get_logger("health")


def overall_status(checks: dict) -> str:
    passed = sum(1 for ok in checks.values() if ok)
    if passed == len(checks):
        return "healthy"
    return "degraded" if passed > 0 else "unhealthy"


async def check_system_health(store, fetcher, cache, probe_symbol: str) -> dict:
    """Store reachability, upstream reachability, cache freshness -> one verdict."""
    checks = {"database": False, "external_api": False, "cache": False}

    try:
        checks["database"] = await asyncio.to_thread(store.ping)
        checks["external_api"] = await fetcher.ping(probe_symbol)
        checks["cache"] = cache.is_fresh(await cache.get())
    except Exception as e:
        # a broken probe counts as a failed check, not a failed status call
        logger.error(f"Health check error: {e}")

    passed = sum(1 for ok in checks.values() if ok)
    return {
        "checks": checks,
        "overall": overall_status(checks),
        "score": f"{passed}/{len(checks)}",
    }


async def database_size(store) -> str:
    try:
        size = await asyncio.to_thread(store.size_bytes)
    except CacheUnavailable as e:
        logger.error(f"Database size check error: {e}")
        return "0KB"
    return f"{round(size / 1024)}KB"
