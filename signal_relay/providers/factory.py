from signal_relay.utils.logger import get_logger
from .gemini_provider import GeminiProvider
from .mock_provider import MockProvider

logger = get_logger("providers")


def get_provider(settings):
    """
    Provider Factory
    - MOCK (default)
    - REAL  (SIGNAL_PROVIDER_MODE=REAL)
    """
    mode = (settings.provider_mode or "MOCK").upper()

    if mode == "REAL":
        logger.warning("REAL provider selected (metered model calls enabled)")
        return GeminiProvider(settings.gemini_api_key, model_name=settings.gemini_model)

    logger.info("MOCK provider selected")
    return MockProvider()
