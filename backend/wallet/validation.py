from __future__ import annotations
from datetime import datetime, timedelta
from wallet.time_utils import parse_iso_datetime, normalize_datetime, utcnow

from typing import Any

from .services.errors import ValidationError


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


def coerce_int(value: Any, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion for JSON input.

    Rejects booleans, floats, decimals-in-strings and scientific notation so
    money and quantities never get silently truncated.
    """
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    # String input - must be plain digits (with optional leading minus)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def coerce_cents(value: Any, field: str, *, required: bool = True, minimum: int | None = 0) -> int | None:
    cents = coerce_int(value, field, required=required, minimum=minimum)
    if cents is not None and abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def coerce_str(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    """Strip strings; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    # fallback: truthiness
    return bool(value)


def normalize_business_date(value: Any, field: str = "date") -> datetime:
    """
    Normalize a caller-supplied business date to canonical UTC-naive.

    Accepts:
    - None -> utcnow()
    - datetime: aware -> converted to UTC; naive -> taken as UTC
    - str -> ISO-8601 with Z/offsets
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        return normalize_datetime(value)

    if isinstance(value, str):
        if not value.strip():
            return utcnow()
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt

    raise ValidationError(f"{field} must be an ISO-8601 datetime")


def optional_datetime(value: Any, field: str, *, end_of_day: bool = False) -> datetime | None:
    """
    Optional ISO-8601 bound.

    With end_of_day=True a date-only value ("2024-01-31") means the last
    instant of that day, so an inclusive upper bound keeps the whole day.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    dt = normalize_business_date(value, field)
    if end_of_day and isinstance(value, str) and len(value.strip()) == 10:
        dt = dt + timedelta(days=1) - timedelta(microseconds=1)
    return dt


def _require_list(raw: Any, field: str) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"{field} must be a list")
    for row in raw:
        if not isinstance(row, dict):
            raise ValidationError(f"{field} entries must be objects")
    return raw


def parse_sale_items(raw: Any) -> list[dict]:
    """Sale lines: product_id, quantity > 0, optional unit_price_cents (defaults to list price)."""
    rows = _require_list(raw, "items")
    if not rows:
        raise ValidationError("items must contain at least one line")
    return [
        {
            "product_id": coerce_int(row.get("product_id"), f"items[{i}].product_id"),
            "quantity": coerce_int(row.get("quantity"), f"items[{i}].quantity", minimum=1),
            "unit_price_cents": coerce_cents(row.get("unit_price_cents"), f"items[{i}].unit_price_cents", required=False),
        }
        for i, row in enumerate(rows)
    ]


def parse_purchase_items(raw: Any) -> list[dict]:
    rows = _require_list(raw, "items")
    if not rows:
        raise ValidationError("items must contain at least one line")
    return [
        {
            "product_id": coerce_int(row.get("product_id"), f"items[{i}].product_id"),
            "quantity": coerce_int(row.get("quantity"), f"items[{i}].quantity", minimum=1),
            "unit_cost_cents": coerce_cents(row.get("unit_cost_cents"), f"items[{i}].unit_cost_cents"),
        }
        for i, row in enumerate(rows)
    ]


def parse_allocations(raw: Any) -> list[dict]:
    rows = _require_list(raw, "allocations")
    return [
        {
            "transaction_id": coerce_int(row.get("transaction_id"), f"allocations[{i}].transaction_id"),
            "amount_cents": coerce_cents(row.get("amount_cents"), f"allocations[{i}].amount_cents", minimum=1),
        }
        for i, row in enumerate(rows)
    ]
