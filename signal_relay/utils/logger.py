import json
import logging
import sys
from datetime import datetime

ROOT_LOGGER = "signal_relay"
_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach a single stdout handler to the package root logger.
    Safe to call repeatedly (no duplicated handlers).
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not any(getattr(h, "_signal_relay", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._signal_relay = True
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def audit(logger: logging.Logger, event: str, **fields) -> None:
    """One JSON line per quota event."""
    entry = {"timestamp": datetime.now().isoformat(), "event": event}
    entry.update(fields)
    logger.info(json.dumps(entry, ensure_ascii=False, default=str))
