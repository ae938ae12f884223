"""Payload capping for producer input.

Payloads are JSON-shaped: scalars, lists and string-keyed mappings. Anything
else is stringified. Oversized values are trimmed rather than rejected so
that capture never fails on malformed input.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Union

Scalar = Union[str, int, float, bool, None]
PayloadValue = Union[Scalar, List["PayloadValue"], Dict[str, "PayloadValue"]]


@dataclass(frozen=True)
class PayloadLimits:
    """Caps applied at the producer boundary."""
    max_field_len: int = 500
    max_items: int = 50
    max_keys: int = 100
    max_depth: int = 6


DEFAULT_LIMITS = PayloadLimits()


def clamp_text(value: str, max_len: int) -> str:
    """Trim a string to max_len characters."""
    if value and len(value) > max_len:
        return value[:max_len]
    return value


def sanitize_value(value: Any, limits: PayloadLimits = DEFAULT_LIMITS, depth: int = 0) -> PayloadValue:
    """Coerce one value into the payload union, applying limits."""
    if isinstance(value, float) and not math.isfinite(value):
        # NaN and infinities have no JSON encoding
        return None
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return clamp_text(value, limits.max_field_len)
    if depth >= limits.max_depth:
        return None
    if isinstance(value, Mapping):
        return sanitize_payload(value, limits, depth + 1)
    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)[:limits.max_items]
        return [sanitize_value(item, limits, depth + 1) for item in items]
    try:
        return clamp_text(str(value), limits.max_field_len)
    except Exception:
        return None


def sanitize_payload(data: Any, limits: PayloadLimits = DEFAULT_LIMITS, depth: int = 0) -> Dict[str, PayloadValue]:
    """Return a capped copy of a mapping; non-mappings yield an empty payload."""
    if not isinstance(data, Mapping):
        return {}

    out: Dict[str, PayloadValue] = {}
    for key, value in data.items():
        if len(out) >= limits.max_keys:
            break
        out[str(key)] = sanitize_value(value, limits, depth)
    return out
