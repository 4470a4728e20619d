"""Conversion of DB2 column values into numeric metric values.

DB2 monitoring functions report a mix of numbers and textual states. Known
states are mapped onto short numeric strings before the generic numeric
check runs, so that e.g. ``HADR_STATE = 'PEER'`` is reported as ``5``.
"""
from __future__ import annotations

from decimal import Decimal
import logging
import math
import re
from typing import Any

from db2_tap.errors import ValueParseError

logger = logging.getLogger(__name__)

# Order matters: the first matching token wins.
STATE_TOKENS: tuple[tuple[str, str], ...] = (
    ("ON", "1"),
    ("TRUE", "1"),
    ("OFF", "0"),
    ("NONE", "0"),
    ("YES", "1"),
    ("NO", "0"),
    ("NULL", "-1"),
)

# HADR_STATE and HADR_CONNECT_STATUS values. The numbering is defined by the
# dashboards consuming these metrics and is intentionally not sequential.
HADR_TOKENS: tuple[tuple[str, str], ...] = (
    ("DISCONNECTED", "0"),
    ("LOCAL_CATCHUP", "1"),
    ("REMOTE_CATCHUP_PENDING", "3"),
    ("REMOTE_CATCHUP", "4"),
    ("PEER", "5"),
    ("CONNECTED", "1"),
    ("CONGESTED", "2"),
)

VALID_METRIC_PATTERN = re.compile(r"(-)?(\.)?\d+(\.\d+)?")


def to_text(value: Any) -> str | None:
    """Render a value fetched from the driver as the string DB2 would print."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, float):
        # DOUBLE columns can print as 1e+16 or 1.5e-07, which the metric
        # pattern rejects
        text = repr(value)
        return format(Decimal(text), "f") if "e" in text else text
    return str(value)


def normalize_token(raw: str | None) -> str | None:
    if raw is None:
        return None
    token = raw.upper()
    for table in (STATE_TOKENS, HADR_TOKENS):
        for name, number in table:
            if token == name:
                return number
    return raw


def is_valid_metric_value(value: str | None) -> bool:
    if not value:
        return False
    return VALID_METRIC_PATTERN.fullmatch(value) is not None


def _strict_float(value: str) -> float:
    try:
        result = float(value.replace(" ", ""))
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValueParseError(value) from exc
    if not math.isfinite(result):
        raise ValueParseError(value)
    return result


def parse_number(value: str) -> float:
    """Parse ``value`` as a float, returning ``0.0`` when it is not numeric.

    One unparsable field must never abort a poll cycle, so failures are
    logged instead of raised.
    """
    try:
        return _strict_float(value)
    except ValueParseError as exc:
        logger.error("%s", exc)
        return 0.0
