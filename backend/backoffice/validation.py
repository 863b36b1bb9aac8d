from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from backoffice.time_utils import normalize_datetime, parse_iso_datetime


# Maximum unit price / cost accepted from clients
MAX_AMOUNT = 999_999_999.99


class ServiceError(Exception):
    """
    Base class for errors raised by the service layer.

    kind is a stable identifier for clients; status_code is what the
    transport layer answers with. details carries structured context
    (e.g. the per-line insufficiency report of a sale).
    """
    kind = "internal"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ServiceError):
    """404-level: referenced product, sale, batch or user does not exist."""
    kind = "not_found"
    status_code = 404


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    kind = "invalid_argument"
    status_code = 400


class InsufficientStockError(ServiceError):
    """400-level: a decrement would take the stock projection below zero."""
    kind = "insufficient_stock"
    status_code = 400


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., cancelling a cancelled sale)."""
    kind = "conflict"
    status_code = 409


class InternalError(ServiceError):
    """500-level: unexpected persistence failure. Message never carries DB detail."""
    kind = "internal"
    status_code = 500


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns of a model a request may set (writable_fields) and which
    of them it must supply (required_on_create).
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _as_int(key: str, value: Any) -> int:
    # JSON numbers only, or plain digit strings; no floats, no "1e3"
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("+-").isdigit():
            return int(text)
    raise ValidationError(f"{key} must be an integer")


def _as_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{key} must be a number")


def _as_bool(key: str, value: Any) -> bool:
    return value if isinstance(value, bool) else bool(value)


def _as_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return normalize_datetime(value)
    parsed = None
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _as_text(key: str, value: Any) -> str:
    return str(value).strip()


# Column type -> coercion; first match wins
_COERCERS = (
    (Integer, _as_int),
    (Float, _as_float),
    (Boolean, _as_bool),
    (DateTime, _as_datetime),
    ((String, Text), _as_text),
)


def _coerce_value(col, value: Any):
    for coltype, coerce in _COERCERS:
        if isinstance(col.type, coltype):
            return coerce(col.key, value)
    return value


def _check_text(col, value: str) -> None:
    if value == "" and not col.nullable:
        raise ValidationError(f"{col.key} cannot be blank")
    max_len = getattr(col.type, "length", None)
    if max_len and len(value) > max_len:
        raise ValidationError(f"{col.key} exceeds max length {max_len}")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Check a JSON body against the policy and the model's column metadata
    (type, nullability, String length) and return the coerced values.

    Raises ValidationError naming the first offending field.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in (policy.required_on_create or ()) if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    rejected = [k for k in payload if k not in policy.writable_fields or k not in columns]
    if rejected:
        raise ValidationError(f"Field not allowed: {rejected[0]}")

    cleaned: dict = {}
    for key, raw in payload.items():
        col = columns[key]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue

        value = _coerce_value(col, raw)
        if isinstance(value, str):
            _check_text(col, value)
        cleaned[key] = value

    return cleaned


def require_positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value


def require_amount(value, field: str) -> float:
    """Non-negative price/cost/amount. Integers are accepted and widened."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number")
    if value != value:  # NaN
        raise ValidationError(f"{field} must be a number")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT:,.2f}")
    return float(value)


def require_user(user_id) -> int:
    # The acting user comes from the auth layer; the core only needs it for audit columns.
    if user_id is None or user_id == "":
        raise ValidationError("acting user is required")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise ValidationError("user_id must be an integer")
    return user_id


def enforce_rules_inventory_movement(patch: dict) -> None:
    if patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0")
    if patch["unit_cost"] < 0:
        raise ValidationError("unit_cost must be >= 0")


def enforce_rules_inventory_adjust(patch: dict) -> None:
    if patch["quantity_delta"] == 0:
        raise ValidationError("quantity_delta must be non-zero")


def enforce_rules_price_change(patch: dict) -> None:
    if patch["value"] < 0:
        raise ValidationError("value must be >= 0")
    if patch["value"] > MAX_AMOUNT:
        raise ValidationError(f"value cannot exceed {MAX_AMOUNT:,.2f}")


def resolve_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    """limit/offset for list reads; limit defaults to and is capped by app config."""
    default_limit = current_app.config.get("DEFAULT_PAGE_LIMIT", 50)
    max_limit = current_app.config.get("MAX_PAGE_LIMIT", 200)
    limit = default_limit if limit is None else limit
    offset = 0 if offset is None else offset
    if limit <= 0:
        raise ValidationError("limit must be > 0")
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    return min(limit, max_limit), offset
