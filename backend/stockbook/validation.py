from __future__ import annotations
from datetime import datetime

from dataclasses import dataclass, fields
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .models.inventory import ITEM_STATUSES
from .money_utils import to_cents
from .time_utils import parse_timestamp


# Maximum money value per field: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

INVENTORY_ACTIONS = ("sell", "remove", "add")


class ValidationError(ValueError):
    """400-level input problem, raised before any database access."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_timestamp(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only the keys the client sent, so an
    absent key and an explicit null/"" stay distinguishable.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

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

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_amount(patch: dict, key: str) -> None:
    if key in patch and patch[key] is not None:
        if patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
        if patch[key] > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")


def enforce_rules_item(patch: dict) -> None:
    if "status" in patch and patch["status"] not in ITEM_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ITEM_STATUSES)}")
    if "quantity_in_stock" in patch and patch["quantity_in_stock"] < 0:
        raise ValidationError("quantity_in_stock must be >= 0")
    for key in ("cost_per_unit_usd_cents", "freight_cost_usd_cents", "selling_price_srd_cents"):
        _check_amount(patch, key)


def enforce_rules_batch(patch: dict) -> None:
    if "status" in patch and patch["status"] not in ITEM_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ITEM_STATUSES)}")
    if "quantity" in patch and patch["quantity"] < 0:
        raise ValidationError("quantity must be >= 0")
    for key in ("cost_per_unit_usd_cents", "freight_cost_usd_cents"):
        _check_amount(patch, key)


class _Unset:
    """Marker for an optional field the client did not send."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ItemDraft:
    """
    Validated item-creation input.

    Optional fields keep three states apart: UNSET (not sent), None or ""
    (sent empty) and a real value. has_value() is what merge-on-reorder uses
    to decide whether an incoming field may overwrite the stored one.
    """
    company_id: int
    name: str
    status: str
    quantity_in_stock: int
    cost_per_unit_usd_cents: int
    selling_price_srd_cents: int
    freight_cost_usd_cents: int = 0
    use_batch_system: bool = False
    supplier: Any = UNSET
    order_number: Any = UNSET
    order_date: Any = UNSET
    expected_arrival: Any = UNSET
    notes: Any = UNSET
    location_id: Any = UNSET
    assigned_user_id: Any = UNSET

    OPTIONAL_FIELDS = (
        "supplier",
        "order_number",
        "order_date",
        "expected_arrival",
        "notes",
        "location_id",
        "assigned_user_id",
    )

    @classmethod
    def from_patch(cls, patch: dict) -> "ItemDraft":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in patch.items() if k in known}
        if kwargs.get("freight_cost_usd_cents") is None:
            kwargs.pop("freight_cost_usd_cents", None)
        if kwargs.get("use_batch_system") is None:
            kwargs.pop("use_batch_system", None)
        return cls(**kwargs)

    def has_value(self, name: str) -> bool:
        value = getattr(self, name)
        return value is not UNSET and value is not None and value != ""

    def value_or_none(self, name: str):
        return getattr(self, name) if self.has_value(name) else None


@dataclass(frozen=True)
class InventoryAction:
    action: str
    item_id: int
    quantity: int
    selling_price_srd_cents: int | None = None
    reason: str | None = None
    location_id: int | None = None


_QUANTITY_KEYS = {
    "sell": "quantityToSell",
    "remove": "quantityToRemove",
    "add": "quantityToAdd",
}


def parse_inventory_action(payload: dict) -> InventoryAction:
    """
    Validate a POST /api/inventory/actions body.

    { action: "sell",   itemId, quantityToSell: int>=1, sellingPriceSRD?: number>=0, locationId? }
    { action: "remove", itemId, quantityToRemove: int>=1, reason?: string }
    { action: "add",    itemId, quantityToAdd: int>=1, reason?: string }
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    action = payload.get("action")
    if not action:
        raise ValidationError("Action is required")
    if action not in INVENTORY_ACTIONS:
        raise ValidationError('Invalid action. Must be "sell", "remove", or "add"')

    if payload.get("itemId") in (None, ""):
        raise ValidationError("itemId is required")
    item_id = coerce_int("itemId", payload["itemId"])

    quantity_key = _QUANTITY_KEYS[action]
    if payload.get(quantity_key) is None:
        raise ValidationError(f"{quantity_key} is required")
    quantity = coerce_int(quantity_key, payload[quantity_key])
    if quantity < 1:
        raise ValidationError(f"{quantity_key} must be at least 1")

    selling_price_srd_cents = None
    location_id = None
    reason = None

    if action == "sell":
        raw_price = payload.get("sellingPriceSRD")
        if raw_price is not None:
            try:
                selling_price_srd_cents = to_cents(raw_price)
            except ValueError:
                raise ValidationError("sellingPriceSRD must be a number")
            if selling_price_srd_cents < 0:
                raise ValidationError("sellingPriceSRD must be non-negative")
            if selling_price_srd_cents > MAX_AMOUNT_CENTS:
                raise ValidationError(f"sellingPriceSRD cannot exceed {MAX_AMOUNT_CENTS // 100}")
        if payload.get("locationId") not in (None, ""):
            location_id = coerce_int("locationId", payload["locationId"])
    else:
        raw_reason = payload.get("reason")
        if raw_reason is not None:
            if not isinstance(raw_reason, str):
                raise ValidationError("reason must be a string")
            reason = raw_reason.strip() or None

    return InventoryAction(
        action=action,
        item_id=item_id,
        quantity=quantity,
        selling_price_srd_cents=selling_price_srd_cents,
        reason=reason,
        location_id=location_id,
    )
