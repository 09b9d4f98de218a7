# Overview: Flask API routes for stock batches; parses input and returns JSON responses.

# backend/stockbook/routes/batches.py
"""
Stock batch routes.

Every write reconciles the owning item's quantity_in_stock in the same
transaction. Only items with use_batch_system=True accept batches.
"""
from flask import Blueprint, request

from ..decorators import render_service_errors
from ..models import StockBatch
from ..models.inventory import ITEM_STATUSES
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    enforce_rules_batch,
    validate_payload,
)

_BATCH_FIELDS = {
    "quantity",
    "status",
    "cost_per_unit_usd_cents",
    "freight_cost_usd_cents",
    "location_id",
    "assigned_user_id",
    "order_date",
    "expected_arrival",
    "order_number",
    "notes",
}

BATCH_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_BATCH_FIELDS | {"item_id"},
    required_on_create={"item_id", "quantity"},
)

BATCH_UPDATE_POLICY = ModelValidationPolicy(writable_fields=_BATCH_FIELDS | {"arrived_date"})

batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.get("")
@render_service_errors("Failed to list batches")
def list_batches_route():
    """
    Query params (all optional): item_id, company_id, location_id, status.
    """
    status = request.args.get("status")
    if status is not None and status not in ITEM_STATUSES:
        return {"error": f"status must be one of: {', '.join(ITEM_STATUSES)}"}, 400

    from ..services.batch_service import list_batches

    batches = list_batches(
        item_id=request.args.get("item_id", type=int),
        company_id=request.args.get("company_id", type=int),
        location_id=request.args.get("location_id", type=int),
        status=status,
    )
    return {"batches": [b.to_dict() for b in batches]}


@batches_bp.post("")
@render_service_errors("Failed to create batch")
def create_batch_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockBatch, payload=payload, policy=BATCH_CREATE_POLICY, partial=False)
        enforce_rules_batch(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.batch_service import create_batch

    item_id = patch.pop("item_id")
    patch = {k: v for k, v in patch.items() if v is not None}
    batch = create_batch(item_id=item_id, **patch)
    return {"batch": batch.to_dict()}, 201


@batches_bp.patch("/<int:batch_id>")
@render_service_errors("Failed to update batch")
def update_batch_route(batch_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockBatch, payload=payload, policy=BATCH_UPDATE_POLICY, partial=True)
        enforce_rules_batch(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.batch_service import update_batch

    batch = update_batch(batch_id, patch)
    return {"batch": batch.to_dict()}


@batches_bp.delete("/<int:batch_id>")
@render_service_errors("Failed to delete batch")
def delete_batch_route(batch_id: int):
    from ..services.batch_service import delete_batch

    refunded = delete_batch(batch_id)
    return {"success": True, "refunded_usd_cents": refunded}


@batches_bp.post("/<int:batch_id>/transfer")
@render_service_errors("Failed to transfer batch")
def transfer_batch_route(batch_id: int):
    """
    Body: {"to_location_id": int, "quantity": int (optional, defaults to the whole batch)}
    """
    payload = request.get_json(silent=True) or {}

    try:
        if payload.get("to_location_id") is None:
            raise ValidationError("to_location_id is required")
        to_location_id = coerce_int("to_location_id", payload["to_location_id"])
        quantity = None
        if payload.get("quantity") is not None:
            quantity = coerce_int("quantity", payload["quantity"])
            if quantity < 1:
                raise ValidationError("quantity must be at least 1")
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.batch_service import transfer_batch

    return transfer_batch(batch_id, to_location_id=to_location_id, quantity=quantity)
