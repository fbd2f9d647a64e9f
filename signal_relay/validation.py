from numbers import Real
from typing import Any, Iterable, Mapping

_MISSING = object()


def _field(record: Any, *names: str) -> Any:
    for name in names:
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return _MISSING


def is_valid(record: Any) -> bool:
    """
    Quote gate before the prompt:
    - price is a real number > 0 (bools rejected)
    - symbol is a non-empty string
    - change percent is present as text
    """
    if record is None:
        return False

    price = _field(record, "price")
    if isinstance(price, bool) or not isinstance(price, Real) or not price > 0:
        return False

    symbol = _field(record, "symbol")
    if not isinstance(symbol, str) or not symbol:
        return False

    change_percent = _field(record, "change_percent", "changePercent")
    return isinstance(change_percent, str)


def filter_valid(records: Iterable[Any]) -> list:
    return [r for r in records if is_valid(r)]
