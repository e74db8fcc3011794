from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from salesdesk.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Currency is stored as integer cents (columns named *_cents).
# Maximum amount: $9,999,999,999.99 (999,999,999,999 cents)
MAX_MONEY_CENTS = 999_999_999_999
CENTS = Decimal("0.01")


class ServiceError(Exception):
    """
    Base for every error a service operation raises on purpose.

    Carries a machine-readable code, the HTTP status routes should answer
    with, and a context dict naming the records/constraint involved.
    """
    code = "service_error"
    http_status = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.context}


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    code = "validation_error"


class ConflictError(ValidationError):
    """409-level uniqueness conflict (e.g., duplicate SKU)."""
    code = "conflict"
    http_status = 409


class NotFoundError(ServiceError, LookupError):
    """Unknown id reference."""
    code = "not_found"
    http_status = 404


class InsufficientStockError(ServiceError):
    """Allocation or edit would overdraw item stock."""
    code = "insufficient_stock"
    http_status = 409


class InvalidStateError(ServiceError):
    """Operation is illegal for the record's current status."""
    code = "invalid_state"
    http_status = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: JSON key -> model attribute clients may set (security boundary)
    - required_on_create: JSON keys required for POST
    - read_only_fields: JSON keys clients echo back (ids, timestamps, ledger totals);
      accepted and dropped
    """
    writable_fields: dict[str, str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)
    read_only_fields: frozenset[str] = field(default_factory=frozenset)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, name: str) -> int:
    """Strict integer coercion: rejects bools, floats and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer", field=name)
        if "e" in stripped.lower():
            raise ValidationError(
                f"{name} must be a plain integer (scientific notation not allowed)", field=name
            )
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)", field=name)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", field=name)
    if isinstance(value, float):
        # JSON has one number type; 20.0 is an integer, 20.5 is not
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{name} must be an integer, not a decimal", field=name)
    raise ValidationError(f"{name} must be an integer", field=name)


def coerce_money(value: Any, name: str) -> int:
    """
    Currency coercion from a JSON amount (10, 10.5, "10.50") to integer cents.

    Floats go through their shortest repr so 0.1 stays 0.1. More than two
    decimal places is an input error, never silently rounded.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} must be a number", field=name)
    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, (int, float)):
            amount = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
        elif isinstance(value, str) and value.strip():
            amount = Decimal(value.strip())
        else:
            raise ValidationError(f"{name} must be a number", field=name)
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number", field=name)

    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number", field=name)
    if amount.normalize().as_tuple().exponent < -2:
        raise ValidationError(f"{name} cannot have more than 2 decimal places", field=name)
    cents = int(amount.quantize(CENTS).scaleb(2))
    if abs(cents) > MAX_MONEY_CENTS:
        raise ValidationError(
            f"{name} cannot exceed {MAX_MONEY_CENTS / 100:,.2f}", field=name
        )
    return cents


def _coerce_value(col, value: Any, name: str):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if col.key.endswith("_cents"):
            return coerce_money(value, name)
        return coerce_int(value, name)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{name} must be a boolean", field=name)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{name} must be an ISO-8601 datetime", field=name)
            if dt is None:
                raise ValidationError(f"{name} must be an ISO-8601 datetime", field=name)
            return dt
        raise ValidationError(f"{name} must be a datetime", field=name)

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{name} must be a string", field=name)
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: Any,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields), mapping camelCase keys to attributes
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by model attribute.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k in policy.read_only_fields:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        if k in policy.read_only_fields:
            continue
        attr = policy.writable_fields[k]
        col = cols[attr]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[attr] = None
            continue

        val = _coerce_value(col, raw, k)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[attr] = val

    return patch


def require_non_negative(patch: dict, attr: str, label: str) -> None:
    if attr in patch and patch[attr] is not None and patch[attr] < 0:
        raise ValidationError(f"{label} must be >= 0", field=label)


def enforce_rules_item(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    require_non_negative(patch, "price_cents", "price")
    require_non_negative(patch, "stock", "stock")
    require_non_negative(patch, "min_stock", "minStock")


def enforce_rules_allocation(patch: dict) -> None:
    if "quantity" in patch and (patch["quantity"] is None or patch["quantity"] <= 0):
        raise ValidationError("quantity must be > 0", field="quantity")
    require_non_negative(patch, "sold_quantity", "soldQuantity")
    require_non_negative(patch, "payment_received_cents", "paymentReceived")


def money_to_json(cents: int | None) -> float | None:
    """Render stored integer cents as a JSON number of currency units (1050 -> 10.5)."""
    if cents is None:
        return None
    return float(Decimal(int(cents)).scaleb(-2))
