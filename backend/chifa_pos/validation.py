from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from chifa_pos.time_utils import parse_iso_date


# Maximum amount: 9,999,999,999.99 DZD (in centimes)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999_999


class SettlementError(Exception):
    """
    Base class for errors surfaced to callers.

    `context` carries identifiers of the records involved (existing session,
    invoice, rejection) so the caller can resolve the problem.
    """
    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        body = {"error": self.message}
        body.update(self.context)
        return body


class ValidationError(SettlementError, ValueError):
    """400-level input problem. Raised before anything is persisted."""
    status_code = 400


class NotFoundError(SettlementError):
    """404: unknown id, or id not owned by the calling pharmacy."""
    status_code = 404


class ConflictError(SettlementError):
    """409-level business rule conflict (e.g., second open session on a drawer)."""
    status_code = 409


class ComputationInvariantError(SettlementError):
    """
    Calculator output broke a money invariant.

    Never clamped or corrected: it means a policy bug that would misstate
    what the insurer or the patient owes.
    """
    status_code = 500


def require_fields(data: dict, fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", fields=missing)


def parse_int(value: Any, field: str, *, required: bool = True, default: int | None = None) -> int | None:
    """
    Strict integer coercion: rejects floats, booleans, decimals and
    scientific notation.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return default

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def parse_cents(
    value: Any,
    field: str,
    *,
    required: bool = True,
    default: int | None = 0,
    allow_negative: bool = False,
) -> int | None:
    """Money in minor units (centimes)."""
    cents = parse_int(value, field, required=required, default=default)
    if cents is None:
        return None
    if not allow_negative and cents < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount", field=field)
    return cents


def parse_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    raise ValidationError(f"{field} must be a boolean", field=field)


def parse_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field)


def parse_text(value: Any, *, max_length: int | None = None, field: str = "value") -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return text


def parse_choice(value: Any, field: str, choices: Iterable[str], *, default: str | None = None) -> str:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{field} is required", field=field)
        return default
    allowed = list(choices)
    if value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {allowed}", field=field)
    return value
