# Overview: Request parsing helpers shared by the API routes.

from __future__ import annotations

from datetime import datetime
from typing import Any

from vinerp.time_utils import parse_iso_datetime


class ValidationError(ValueError):
    """400-level input problem."""


def require_json(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("JSON object body required")
    return payload


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def parse_int(value: Any, field: str, *, required: bool = False, minimum: int | None = None) -> int | None:
    """
    Strict integer parsing: ints and plain digit strings only.
    Floats, booleans and scientific notation are rejected.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer")
        result = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_datetime_field(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_bool_arg(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")
