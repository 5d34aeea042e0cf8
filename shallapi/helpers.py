import random
from typing import Any, Mapping, Optional, Tuple


def _matches_type(value: Any, expected: type) -> bool:
    # bool is an int subclass; the device API never sends one for the other
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, expected)


def _schema_mismatch(data: Any, schema: Mapping[str, type]) -> Optional[str]:
    """Return a description of the first mismatch, or None if data fits."""
    if not isinstance(data, Mapping):
        return f"expected a JSON object, got {type(data).__name__}"
    for key, expected in schema.items():
        if key not in data:
            return f"missing key '{key}'"
        if not _matches_type(data[key], expected):
            return (
                f"key '{key}' should be {expected.__name__}, "
                f"got {type(data[key]).__name__}"
            )
    return None


def _in_range(value: int, bounds: Tuple[int, int]) -> bool:
    low, high = bounds
    return low <= value <= high


def _exp_backoff(attempt: int) -> float:
    base = min(8.0, 0.5 * (2**attempt))
    return base + random.uniform(0.0, 0.25 * base)
