import math
import re
from typing import Optional

from utils.error_handling import ValidationError

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def is_number(value) -> bool:
    # bool is an int subclass but JSON true/false are not coordinates
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def coordinates_error(lat, lng) -> Optional[str]:
    """Return a message describing what is wrong with (lat, lng), or None when valid."""
    if not is_number(lat) or not is_number(lng):
        return 'Coordinates must be numbers'
    if math.isnan(lat) or math.isnan(lng):
        return 'Coordinates cannot be NaN'
    if lat < -90 or lat > 90:
        return 'Latitude must be between -90 and 90'
    if lng < -180 or lng > 180:
        return 'Longitude must be between -180 and 180'
    return None


def valid_coordinates(lat, lng) -> bool:
    return coordinates_error(lat, lng) is None


def is_email_like(value: str) -> bool:
    return bool(value and EMAIL_RE.match(value.strip()))


def validate_enum(value, allowed, field: str):
    if value not in allowed:
        raise ValidationError([{
            "field": field,
            "message": f"{field} must be one of: {', '.join(allowed)}",
        }])
    return value


def to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float('nan')
