# Overview: Flask API route for inventory actions (sell/remove/add); parses input and returns JSON responses.

# backend/stockbook/routes/inventory.py
"""
Inventory action endpoint.

Wire format is camelCase, as consumed by the dashboard:

    POST /api/inventory/actions
    { action: "sell",   itemId, quantityToSell, sellingPriceSRD?, locationId? }
    { action: "remove", itemId, quantityToRemove, reason? }
    { action: "add",    itemId, quantityToAdd, reason? }

sellingPriceSRD is in major units (e.g. 12.50); every amount in the response
is integer cents. Failures answer {error, message, ...details} with the typed
error's status code.
"""
from flask import Blueprint, request

from ..decorators import render_service_errors
from ..validation import ValidationError, parse_inventory_action


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _sale_payload(result) -> dict:
    item = result.item
    return {
        "success": True,
        "message": f"Successfully sold {result.quantity}x {item.name}",
        "sale": {
            "itemId": item.id,
            "itemName": item.name,
            "quantitySold": result.quantity,
            "pricePerUnitSRDCents": result.unit_price_srd_cents,
            "totalRevenueSRDCents": result.amount_srd_cents,
            "profitSRDCents": result.profit_srd_cents,
            "remainingStock": item.quantity_in_stock,
            "batches": result.batches,
        },
        "updatedItem": item.to_dict(),
        "updatedBalanceSRDCents": result.updated_balance_srd_cents,
        "ledgerEntry": result.ledger_entry.to_dict(),
    }


def _removal_payload(result, reason) -> dict:
    item = result.item
    return {
        "success": True,
        "message": f"Successfully removed {result.quantity}x {item.name} from stock",
        "removal": {
            "itemId": item.id,
            "itemName": item.name,
            "quantityRemoved": result.quantity,
            "costAllocatedToProfitSRDCents": result.amount_srd_cents,
            "reason": reason or "No reason specified",
            "remainingStock": item.quantity_in_stock,
            "batches": result.batches,
        },
        "updatedItem": item.to_dict(),
        "updatedBalanceSRDCents": result.updated_balance_srd_cents,
        "ledgerEntry": result.ledger_entry.to_dict(),
    }


def _addition_payload(result, reason) -> dict:
    item = result.item
    return {
        "success": True,
        "message": f"Successfully added {result.quantity}x {item.name} to stock",
        "addition": {
            "itemId": item.id,
            "itemName": item.name,
            "quantityAdded": result.quantity,
            "reason": reason or "Manual stock addition",
            "newStock": item.quantity_in_stock,
            "batches": result.batches,
        },
        "updatedItem": item.to_dict(),
    }


@inventory_bp.post("/actions")
@render_service_errors("Failed to apply inventory action")
def inventory_action_route():
    """
    Apply one stock action to an item.

    The whole action (item, batches, company balance, ledger row) commits as
    one transaction or not at all.
    """
    payload = request.get_json(silent=True) or {}

    try:
        action = parse_inventory_action(payload)
    except ValidationError as e:
        return {"error": "Invalid request data", "message": str(e)}, 400

    from ..services.stock_service import add_item_stock, remove_item_stock, sell_item

    if action.action == "sell":
        result = sell_item(
            action.item_id,
            action.quantity,
            selling_price_srd_cents=action.selling_price_srd_cents,
            location_id=action.location_id,
        )
        return _sale_payload(result)

    if action.action == "remove":
        result = remove_item_stock(action.item_id, action.quantity, reason=action.reason)
        return _removal_payload(result, action.reason)

    result = add_item_stock(action.item_id, action.quantity, reason=action.reason)
    return _addition_payload(result, action.reason)
