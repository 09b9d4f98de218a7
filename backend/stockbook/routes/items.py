# Overview: Flask API routes for items; parses input and returns JSON responses.

# backend/stockbook/routes/items.py
"""
Item routes.

POST creates an item or merges a re-order into an existing stocked item with
the same name; an Ordered item debits its order cost from the company's USD
balance. Amounts are integer cents throughout.
"""
from flask import Blueprint, request

from ..decorators import render_service_errors
from ..extensions import db
from ..models import Item
from ..models.inventory import ITEM_STATUSES
from ..services.errors import NotFoundError
from ..validation import (
    ItemDraft,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_item,
    validate_payload,
)

_ITEM_FIELDS = {
    "name",
    "status",
    "quantity_in_stock",
    "cost_per_unit_usd_cents",
    "freight_cost_usd_cents",
    "selling_price_srd_cents",
    "use_batch_system",
    "supplier",
    "order_number",
    "order_date",
    "expected_arrival",
    "notes",
    "location_id",
    "assigned_user_id",
}

ITEM_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_ITEM_FIELDS | {"company_id"},
    required_on_create={
        "company_id",
        "name",
        "status",
        "quantity_in_stock",
        "cost_per_unit_usd_cents",
        "selling_price_srd_cents",
    },
)

ITEM_UPDATE_POLICY = ModelValidationPolicy(writable_fields=_ITEM_FIELDS)

items_bp = Blueprint("items", __name__, url_prefix="/api/items")


def _serialize_items(items: list[Item]) -> list[dict]:
    from ..services.batch_service import aggregate_batch_data_for_items
    from ..services.valuation_service import item_metrics

    batch_data = aggregate_batch_data_for_items(items)
    rows = []
    for item in items:
        row = item.to_dict()
        row.update(item_metrics(item))
        row["batch_data"] = batch_data.get(item.id)
        rows.append(row)
    return rows


@items_bp.get("")
@render_service_errors("Failed to list items")
def list_items():
    """
    List items with derived metrics and batch rollups.

    Query params:
    - company_id: int (optional)
    - status: ToOrder | Ordered | Arrived | Sold (optional)
    """
    company_id = request.args.get("company_id", type=int)
    status = request.args.get("status")
    if status is not None and status not in ITEM_STATUSES:
        return {"error": f"status must be one of: {', '.join(ITEM_STATUSES)}"}, 400

    q = db.session.query(Item)
    if company_id is not None:
        q = q.filter(Item.company_id == company_id)
    if status is not None:
        q = q.filter(Item.status == status)
    items = q.order_by(Item.name.asc(), Item.id.asc()).all()

    return {"items": _serialize_items(items)}


@items_bp.get("/<int:item_id>")
@render_service_errors("Failed to load item")
def get_item(item_id: int):
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item", item_id)
    return {"item": _serialize_items([item])[0]}


@items_bp.post("")
@render_service_errors("Failed to create item")
def create_item():
    """Create an item, or merge it into an existing stocked item. Answers 201 either way."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_CREATE_POLICY, partial=False)
        enforce_rules_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.stock_service import create_or_merge_item

    result = create_or_merge_item(ItemDraft.from_patch(patch))
    return {
        "item": _serialize_items([result.item])[0],
        "merged": result.merged,
        "debited_usd_cents": result.debited_usd_cents,
    }, 201


@items_bp.put("/<int:item_id>")
@render_service_errors("Failed to update item")
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_UPDATE_POLICY, partial=True)
        enforce_rules_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.stock_service import update_item

    item = update_item(item_id, patch)
    return {"item": _serialize_items([item])[0]}
