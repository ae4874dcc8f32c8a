import math
from typing import Iterable, Optional

from errors import ValidationError

MIN_EASE = 1.3
MAX_EASE = 3.0
# keeps now + interval well inside datetime.max
MAX_INTERVAL_DAYS = 36500


def validate_id(value, field: str = "id") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field)
    if value < 1:
        raise ValidationError(f"{field} must be at least 1", field)
    return value


def validate_string(value, field: str, min_length: int = 0, max_length: Optional[int] = None) -> str:
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    trimmed = value.strip()
    if len(trimmed) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters long", field)
    if max_length is not None and len(trimmed) > max_length:
        raise ValidationError(f"{field} must be no more than {max_length} characters long", field)
    return trimmed


def validate_number(value, field: str, minimum: float = -math.inf, maximum: float = math.inf) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError(f"{field} must be a valid number", field)
    if value < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", field)
    if value > maximum:
        raise ValidationError(f"{field} must be no more than {maximum}", field)
    return float(value)


def validate_integer(value, field: str, minimum: float = -math.inf, maximum: float = math.inf) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field)
    validate_number(value, field, minimum, maximum)
    return value


def validate_choice(value, field: str, allowed: Iterable[str]) -> str:
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}", field)
    return value


# --- domain fields ---

def validate_deck_name(name) -> str:
    return validate_string(name, "name", 1, 100)


def validate_deck_description(description) -> str:
    if description is None or description == "":
        return ""
    if not isinstance(description, str):
        raise ValidationError("description must be a string", "description")
    trimmed = description.strip()
    if len(trimmed) > 500:
        raise ValidationError("description must be no more than 500 characters long", "description")
    return trimmed


def validate_card_text(text, field: str) -> str:
    return validate_string(text, field, 1, 1000)


def validate_easiness_factor(value) -> float:
    return validate_number(value, "easiness_factor", MIN_EASE, MAX_EASE)


def validate_interval_days(value) -> int:
    return validate_integer(value, "interval_days", 1, MAX_INTERVAL_DAYS)


def validate_repetition_count(value) -> int:
    return validate_integer(value, "repetition_count", 0)


def validate_response_time(value) -> Optional[int]:
    if value is None:
        return None
    return validate_integer(value, "response_time_ms", 0)
