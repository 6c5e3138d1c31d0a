from __future__ import annotations
from typing import Any, Optional, Tuple
import math

from ..errors import InvalidLocationError
from ..schemas import SEVERITIES

TRUE_STRINGS = {"true", "1", "yes", "on"}


def normalize_string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return normalize_string(value) in TRUE_STRINGS


def parse_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return fallback


def parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(str(value).strip())
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def parse_coordinates(lat: Any, lng: Any) -> Tuple[float, float]:
    flat, flng = parse_float(lat), parse_float(lng)
    if flat is None or flng is None:
        raise InvalidLocationError("Location (lat, lng) is required")
    if not -90 <= flat <= 90 or not -180 <= flng <= 180:
        raise InvalidLocationError("Location out of range: %s, %s" % (flat, flng))
    return flat, flng


def normalize_severity(value: Any, default: str = "high") -> str:
    v = normalize_string(value)
    return v if v in SEVERITIES else default


def parse_battery(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    level = parse_int(value, -1)
    if level < 0:
        return None
    return min(level, 100)
