from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text

from stockpos.time_utils import parse_iso_datetime


# Upper bound for any cents amount accepted over HTTP (99,999,999.99)
MAX_CENTS = 9_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns of a model a client may send:
    - writable_fields: allowlist (anything else is rejected)
    - required_on_create: must be present when partial=False
    """
    writable_fields: frozenset
    required_on_create: frozenset = frozenset()


def coerce_int(key: str, value: Any) -> int:
    """Strict integer parsing: no bools, no floats, no "1e3", no "12.5"."""
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{key} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Expiration / purchase dates: ISO-8601, normalized to UTC-naive
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date or datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date or datetime")
            return dt
        raise ValidationError(f"{col.key} must be an ISO-8601 date or datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(*, model, payload: dict, policy: ModelValidationPolicy, partial: bool = False) -> dict:
    """
    Validate and normalize incoming JSON against the model's column metadata
    (type, nullability, String length) and the policy allowlist.

    Returns a cleaned dict holding only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = {c.key: c for c in model.__mapper__.columns}

    cleaned: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = cols.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue

        val = _coerce_value(col, raw)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{key} exceeds max length {col.type.length}")
        cleaned[key] = val

    return cleaned


def require_positive_int(payload: dict, key: str) -> int:
    if not isinstance(payload, dict) or payload.get(key) is None:
        raise ValidationError(f"{key} required")
    value = coerce_int(key, payload[key])
    if value <= 0:
        raise ValidationError(f"{key} must be > 0")
    return value


def optional_non_negative_int(payload: dict, key: str) -> int | None:
    if payload.get(key) is None:
        return None
    value = coerce_int(key, payload[key])
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_CENTS}")
    return value


def query_int(args, key: str, default: int, *, minimum: int = 0) -> int:
    """Integer query-string argument with a default (e.g. ?hours=24, ?days=7)."""
    raw = args.get(key)
    if raw is None or raw == "":
        return default
    value = coerce_int(key, raw)
    if value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def enforce_rules_lot_receive(patch: dict) -> None:
    if patch.get("quantity") is None or patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0 when receiving a lot")

    cost = patch.get("purchase_price_cents")
    if cost is not None and not 0 <= cost <= MAX_CENTS:
        raise ValidationError(f"purchase_price_cents must be between 0 and {MAX_CENTS}")

    threshold = patch.get("reorder_threshold")
    if threshold is not None and threshold < 0:
        raise ValidationError("reorder_threshold must be >= 0")
