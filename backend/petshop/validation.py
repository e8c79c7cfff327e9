from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime

# 9,999,999.99 in cents
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "sku", "name", "description", "supplier_id", "unit_price_cents", "vat_rate_bps",
        "stock_tracked", "reorder_threshold", "is_active",
    }),
    required_on_create=frozenset({"sku", "name", "unit_price_cents"}),
)

SERVICE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "name", "description", "duration_minutes", "price_cents", "vat_rate_bps",
        "consumes_inventory", "is_active",
    }),
    required_on_create=frozenset({"name", "duration_minutes", "price_cents"}),
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "nif", "email", "phone", "is_active"}),
    required_on_create=frozenset({"name"}),
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"full_name", "email", "phone", "nif", "is_active"}),
    required_on_create=frozenset({"full_name"}),
)

PET_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "species", "breed", "date_of_birth", "notes"}),
    required_on_create=frozenset({"name", "species"}),
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        # bool is an int subclass; reject it explicitly
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip())
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against the model's column metadata
    (nullable, type, String length) and the policy allow-list.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(patch: dict, key: str) -> None:
    if patch.get(key) is None:
        return
    if patch[key] < 0:
        raise ValidationError(f"{key} must be >= 0")
    if patch[key] > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def _check_vat(patch: dict) -> None:
    bps = patch.get("vat_rate_bps")
    if bps is not None and not 0 <= bps <= 10000:
        raise ValidationError("vat_rate_bps must be between 0 and 10000")


def enforce_rules_product(patch: dict) -> None:
    _check_price(patch, "unit_price_cents")
    _check_vat(patch)
    if patch.get("reorder_threshold") is not None and patch["reorder_threshold"] < 0:
        raise ValidationError("reorder_threshold must be >= 0")


def enforce_rules_service(patch: dict) -> None:
    _check_price(patch, "price_cents")
    _check_vat(patch)
    if patch.get("duration_minutes") is not None and patch["duration_minutes"] <= 0:
        raise ValidationError("duration_minutes must be > 0")
