"""
Order identifier parsing utilities.

Webhook payloads deliver order ids as JSON numbers, numeric strings or,
occasionally, floats produced by spreadsheets and low-code tools
(e.g. ``555.0``). Every entry point resolves them to the integer key
the order store is keyed by.
"""

import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_NUMERIC_ID = re.compile(r"^[+]?\d+$")
_FLOAT_ID = re.compile(r"^[+]?\d+\.0+$")


def try_parse_order_id(value: Any) -> Optional[int]:
    """
    Resolve an order identifier to its integer key.

    Args:
        value: Raw identifier (int, numeric string, integral float)

    Returns:
        The integer id, or None when the value cannot be resolved
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value if value >= 0 else None

    if isinstance(value, float):
        if value.is_integer() and value >= 0:
            return int(value)
        return None

    if isinstance(value, str):
        clean = value.strip()
        if _NUMERIC_ID.match(clean):
            return int(clean)
        if _FLOAT_ID.match(clean):
            return int(clean.split(".")[0])

    logger.debug(f"Could not resolve order id from: {value!r}")
    return None


def same_identifier(left: Any, right: Any) -> bool:
    """
    Compare two sub-order identifiers.

    ``1`` and ``"1"`` name the same sub-order: partners are not
    consistent about numeric vs. string ids across webhooks.
    """
    if left is None or right is None:
        return False
    if left == right:
        return True
    return str(left).strip() == str(right).strip()
