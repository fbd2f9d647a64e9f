import asyncio

from signal_relay.config import load_settings
from signal_relay.formatter import format_signals
from signal_relay.providers.factory import get_provider
from signal_relay.quotes import get_quote_fetcher
from signal_relay.validation import filter_valid


async def run():
    settings = load_settings()
    provider = get_provider(settings)
    print(f"[Smoke] provider={provider.name} health_check={provider.health_check()}")

    quotes = filter_valid(await get_quote_fetcher(settings).fetch(settings.symbols))
    print(f"[Smoke] valid_quotes={len(quotes)}/{len(settings.symbols)}")
    if not quotes:
        print("[Smoke] no valid quotes, provider not called")
        return

    result = await provider.generate(quotes)
    print(format_signals(result, settings.max_daily_messages))
    print(f"[Smoke] usage={provider.get_usage_stats()}")


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
