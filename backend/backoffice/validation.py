from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from .errors import ValidationError
from .time_utils import as_utc_naive, parse_iso_datetime


# Maximum money amount: 9,999,999,999.99 (999,999,999,999 cents)
# Prevents overflow and nonsensical totals
MAX_AMOUNT_CENTS = 999_999_999_999

MAX_QUANTITY = 1_000_000

E = TypeVar("E", bound=Enum)


def require_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def to_int(
    value: Any,
    field: str,
    *,
    required: bool = True,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    and scientific notation.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", field=field)
    return result


def to_quantity(value: Any, field: str = "quantity") -> int:
    return to_int(value, field, minimum=1, maximum=MAX_QUANTITY)


def to_cents(value: Any, field: str, *, required: bool = True, default: int | None = None) -> int | None:
    """Money amounts travel as integer cents."""
    if value is None and not required:
        return default
    return to_int(value, field, required=required, minimum=0, maximum=MAX_AMOUNT_CENTS)


def to_text(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string", field=field)
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} cannot be blank", field=field)
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", field=field)
    return text


def to_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
        return False
    raise ValidationError(f"{field} must be a boolean", field=field)


def to_enum(value: Any, enum_cls: type[E], field: str, *, required: bool = True) -> E | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}", field=field)


def to_datetime(value: Any, field: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc_naive(value)
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
    raise ValidationError(f"{field} must be a datetime", field=field)


def to_list(value: Any, field: str, *, required: bool = True) -> list:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", field=field)
    if required and not value:
        raise ValidationError(f"{field} cannot be empty", field=field)
    return value
