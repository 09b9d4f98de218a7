# Overview: Batch reconciliation, batch aggregates, consistency sweeps and batch CRUD.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import Company, Item, Location, StockBatch
from ..models.inventory import (
    ITEM_STATUSES,
    STATUS_ARRIVED,
    STATUS_ORDERED,
    STATUS_SOLD,
    STATUS_TO_ORDER,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .errors import BatchOperationError, InsufficientStockError, NotFoundError
from .ledger_service import credit_order_refund, debit_order_cost
"""
Batch Reconciler Invariants (authoritative)

- For items with use_batch_system=True, item.quantity_in_stock is derived:
  it always equals SUM(stock_batches.quantity) after any batch write commits.
- Every batch create/update/delete/transfer reconciles the item inside the
  same unit of work, after the batch write (the reconciler runs last).
- Reconciliation locks the item row, so it serializes with stock actions on
  the same item.
- Non-batch items are never written by the reconciler.
"""

_BATCH_FIELDS = (
    "quantity",
    "status",
    "cost_per_unit_usd_cents",
    "freight_cost_usd_cents",
    "location_id",
    "assigned_user_id",
    "order_date",
    "expected_arrival",
    "arrived_date",
    "order_number",
    "notes",
)


def get_item_for_update(item_id: int) -> Item:
    item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
    if item is None:
        raise NotFoundError("Item", item_id)
    return item


def _lock_batch_and_item(batch_id: int) -> tuple[StockBatch, Item]:
    """
    Lock the owning item, then re-read the batch under that lock.

    Only the batch's item_id is read before the lock is held.
    """
    item_id = db.session.query(StockBatch.item_id).filter(StockBatch.id == batch_id).scalar()
    if item_id is None:
        raise NotFoundError("Batch", batch_id)

    item = get_item_for_update(item_id)
    batch = (
        lock_for_update(db.session.query(StockBatch).filter(StockBatch.id == batch_id))
        .populate_existing()
        .first()
    )
    if batch is None:
        raise NotFoundError("Batch", batch_id)
    return batch, item


def ensure_location_in_company(location_id: int | None, company_id: int) -> None:
    if location_id is None:
        return
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError("Location", location_id)
    if location.company_id != company_id:
        raise BatchOperationError(
            f'Location "{location.name}" does not belong to the same company as the item'
        )


def _ensure_batch_tracked(item: Item) -> None:
    if not item.use_batch_system:
        raise BatchOperationError(f'Item "{item.name}" does not use the batch system')


def batch_total(item_id: int) -> int:
    q = db.session.query(func.coalesce(func.sum(StockBatch.quantity), 0)).filter(
        StockBatch.item_id == item_id
    )
    return int(q.scalar() or 0)


def reconcile_item_locked(item: Item) -> Item:
    """Core reconcile step; caller holds the item lock and owns the commit."""
    if not item.use_batch_system:
        return item

    total = batch_total(item.id)

    if item.quantity_in_stock != total:
        current_app.logger.info(
            "Reconciled item %s quantity_in_stock %s -> %s", item.id, item.quantity_in_stock, total
        )
        item.quantity_in_stock = total

    if total == 0 and item.status == STATUS_ARRIVED:
        item.status = STATUS_SOLD
    elif total > 0 and item.status == STATUS_SOLD:
        item.status = STATUS_ARRIVED

    db.session.flush()
    return item


def sync_item_quantity_from_batches(item_id: int) -> Item:
    """
    Recompute item.quantity_in_stock from its batches.

    Idempotent: repeated calls with no batch change leave the item as is.
    Items that are not batch-tracked are returned untouched.
    """
    def _op():
        with unit_of_work():
            item = get_item_for_update(item_id)
            return reconcile_item_locked(item)

    return run_with_retry(_op)


def consume_batches_fifo(item: Item, quantity: int, *, prefer_location_id: int | None = None) -> list[dict]:
    """
    Take `quantity` units out of an item's batches, oldest first.

    Batches at prefer_location_id are drained before the others. Batches that
    reach zero are deleted. Caller holds the item lock, has verified the total
    and reconciles afterwards.
    """
    batches = (
        db.session.query(StockBatch)
        .filter(StockBatch.item_id == item.id, StockBatch.quantity > 0)
        .order_by(StockBatch.created_at.asc(), StockBatch.id.asc())
        .all()
    )
    if prefer_location_id is not None:
        batches.sort(key=lambda b: 0 if b.location_id == prefer_location_id else 1)

    available = sum(b.quantity for b in batches)
    if available < quantity:
        raise InsufficientStockError(
            f"Cannot take {quantity} items. Only {available} available in batches.",
            available=available,
            requested=quantity,
        )

    remaining = quantity
    touched = []
    for batch in batches:
        if remaining <= 0:
            break
        taken = min(batch.quantity, remaining)
        remaining -= taken
        new_quantity = batch.quantity - taken
        touched.append({"batch_id": batch.id, "taken": taken, "remaining": new_quantity})
        if new_quantity == 0:
            db.session.delete(batch)
        else:
            batch.quantity = new_quantity

    db.session.flush()
    return touched


def list_batches(
    *,
    item_id: int | None = None,
    company_id: int | None = None,
    location_id: int | None = None,
    status: str | None = None,
) -> list[StockBatch]:
    q = db.session.query(StockBatch).options(joinedload(StockBatch.location))
    if item_id is not None:
        q = q.filter(StockBatch.item_id == item_id)
    if location_id is not None:
        q = q.filter(StockBatch.location_id == location_id)
    if status is not None:
        q = q.filter(StockBatch.status == status)
    if company_id is not None:
        q = q.join(Item, Item.id == StockBatch.item_id).filter(Item.company_id == company_id)
    return q.order_by(StockBatch.created_at.desc(), StockBatch.id.desc()).all()


def create_batch(
    *,
    item_id: int,
    quantity: int,
    status: str = STATUS_TO_ORDER,
    cost_per_unit_usd_cents: int | None = None,
    freight_cost_usd_cents: int = 0,
    location_id: int | None = None,
    assigned_user_id: int | None = None,
    order_date=None,
    expected_arrival=None,
    order_number: str | None = None,
    notes: str | None = None,
) -> StockBatch:
    """
    Create a lot for a batch-tracked item and reconcile the item.

    An Ordered batch debits cost * quantity + freight from the company's USD
    balance; the pre-flight check rejects the whole request when it can't.
    """
    def _op():
        with unit_of_work():
            item = get_item_for_update(item_id)
            _ensure_batch_tracked(item)
            ensure_location_in_company(location_id, item.company_id)

            unit_cost = item.cost_per_unit_usd_cents if cost_per_unit_usd_cents is None else cost_per_unit_usd_cents
            batch = StockBatch(
                item_id=item.id,
                quantity=quantity,
                original_quantity=quantity,
                status=status,
                cost_per_unit_usd_cents=unit_cost,
                freight_cost_usd_cents=freight_cost_usd_cents or 0,
                location_id=location_id,
                assigned_user_id=assigned_user_id,
                order_date=order_date,
                expected_arrival=expected_arrival,
                arrived_date=utcnow() if status == STATUS_ARRIVED else None,
                order_number=order_number,
                notes=notes,
            )

            if status == STATUS_ORDERED:
                debit_order_cost(company_id=item.company_id, amount_cents=batch.total_cost_usd_cents())

            db.session.add(batch)
            db.session.flush()
            reconcile_item_locked(item)
            return batch

    return run_with_retry(_op)


def update_batch(batch_id: int, patch: dict) -> StockBatch:
    """
    Apply a partial update to a batch.

    Keys absent from `patch` are left alone; keys present with None clear
    nullable fields. Moving into Ordered debits the order cost, moving into
    Arrived stamps arrived_date.
    """
    def _op():
        with unit_of_work():
            batch, item = _lock_batch_and_item(batch_id)
            updates = dict(patch)
            if "location_id" in updates:
                ensure_location_in_company(updates["location_id"], item.company_id)

            new_status = updates.get("status") or batch.status
            if new_status == STATUS_ORDERED and batch.status != STATUS_ORDERED:
                unit_cost = updates.get("cost_per_unit_usd_cents", batch.cost_per_unit_usd_cents)
                qty = updates.get("quantity", batch.quantity)
                freight = updates.get("freight_cost_usd_cents", batch.freight_cost_usd_cents)
                debit_order_cost(company_id=item.company_id, amount_cents=unit_cost * qty + (freight or 0))

            if new_status == STATUS_ARRIVED and batch.status != STATUS_ARRIVED and not updates.get("arrived_date"):
                updates["arrived_date"] = utcnow()

            for key in _BATCH_FIELDS:
                if key in updates:
                    setattr(batch, key, updates[key])

            db.session.flush()
            reconcile_item_locked(item)
            return batch

    return run_with_retry(_op)


def delete_batch(batch_id: int) -> int:
    """
    Delete a batch and reconcile its item.

    Ordered/Arrived batches were paid for, so their cost goes back to the USD
    balance. Returns the refunded amount in cents.
    """
    def _op():
        with unit_of_work():
            batch, item = _lock_batch_and_item(batch_id)

            refunded = 0
            if batch.status in (STATUS_ORDERED, STATUS_ARRIVED):
                refunded = batch.total_cost_usd_cents()
                credit_order_refund(company_id=item.company_id, amount_cents=refunded)

            db.session.delete(batch)
            db.session.flush()
            reconcile_item_locked(item)
            return refunded

    return run_with_retry(_op)


def transfer_batch(batch_id: int, *, to_location_id: int, quantity: int | None = None) -> dict:
    """
    Move a batch, or part of it, to another location of the same company.

    A partial transfer splits the batch; the new lot copies the cost snapshot
    and dates. Item quantity does not change.
    """
    def _op():
        with unit_of_work():
            batch, item = _lock_batch_and_item(batch_id)
            ensure_location_in_company(to_location_id, item.company_id)

            transfer_qty = batch.quantity if quantity is None else quantity
            if transfer_qty > batch.quantity:
                raise InsufficientStockError(
                    f"Cannot transfer {transfer_qty} units. Only {batch.quantity} available.",
                    available=batch.quantity,
                    requested=transfer_qty,
                )

            if transfer_qty < batch.quantity:
                batch.quantity -= transfer_qty
                new_batch = StockBatch(
                    item_id=batch.item_id,
                    quantity=transfer_qty,
                    original_quantity=transfer_qty,
                    status=batch.status,
                    cost_per_unit_usd_cents=batch.cost_per_unit_usd_cents,
                    freight_cost_usd_cents=batch.freight_cost_usd_cents,
                    order_date=batch.order_date,
                    expected_arrival=batch.expected_arrival,
                    arrived_date=batch.arrived_date,
                    order_number=batch.order_number,
                    notes=batch.notes,
                    location_id=to_location_id,
                    assigned_user_id=batch.assigned_user_id,
                )
                db.session.add(new_batch)
                db.session.flush()
                reconcile_item_locked(item)
                return {
                    "message": f"Transferred {transfer_qty} units to new location",
                    "original_batch_id": batch.id,
                    "new_batch_id": new_batch.id,
                    "remaining_in_original": batch.quantity,
                    "transferred_amount": transfer_qty,
                }

            batch.location_id = to_location_id
            db.session.flush()
            return {
                "message": f"Transferred all {transfer_qty} units to new location",
                "batch_id": batch.id,
                "transferred_amount": transfer_qty,
            }

    return run_with_retry(_op)


def aggregate_batch_data_for_items(items: list[Item]) -> dict[int, dict]:
    """
    Display-only batch rollup per batch-tracked item, keyed by item id.

    Locations count only batches pinned to a location. Nothing is persisted.
    """
    tracked_ids = [item.id for item in items if item.use_batch_system]
    if not tracked_ids:
        return {}

    batches = (
        db.session.query(StockBatch)
        .options(joinedload(StockBatch.location))
        .filter(StockBatch.item_id.in_(tracked_ids))
        .order_by(StockBatch.created_at.asc(), StockBatch.id.asc())
        .all()
    )

    grouped: dict[int, list[StockBatch]] = {item_id: [] for item_id in tracked_ids}
    for batch in batches:
        grouped[batch.item_id].append(batch)

    result = {}
    for item_id, item_batches in grouped.items():
        locations = {}
        statuses = set()
        for batch in item_batches:
            statuses.add(batch.status)
            if batch.location_id is not None:
                locations[batch.location_id] = batch.location.name if batch.location else None

        ordered_statuses = [s for s in ITEM_STATUSES if s in statuses]
        result[item_id] = {
            "batch_count": len(item_batches),
            "location_count": len(locations),
            "locations": [{"id": loc_id, "name": name} for loc_id, name in sorted(locations.items())],
            "statuses": ordered_statuses,
            "has_multiple_locations": len(locations) > 1,
            "has_multiple_statuses": len(ordered_statuses) > 1,
        }
    return result


@dataclass
class ConsistencyReport:
    total_items: int = 0
    consistent_items: int = 0
    inconsistent_items: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "total_items": self.total_items,
            "consistent_items": self.consistent_items,
            "inconsistent_items": self.inconsistent_items,
            "errors": list(self.errors),
        }


def validate_item_batch_consistency() -> ConsistencyReport:
    """
    Diagnostic sweep: compare every batch-tracked item's stored quantity with
    its batches' total. Read-only.
    """
    items = (
        db.session.query(Item)
        .filter(Item.use_batch_system.is_(True))
        .order_by(Item.name.asc(), Item.id.asc())
        .all()
    )
    totals = dict(
        db.session.query(StockBatch.item_id, func.sum(StockBatch.quantity))
        .group_by(StockBatch.item_id)
        .all()
    )

    report = ConsistencyReport(total_items=len(items))
    for item in items:
        total = int(totals.get(item.id) or 0)
        if total == item.quantity_in_stock:
            report.consistent_items += 1
        else:
            report.inconsistent_items += 1
            report.errors.append(
                f'Item "{item.name}" ({item.id}): quantity mismatch. '
                f"Item shows {item.quantity_in_stock}, batches total {total}"
            )
    return report


def check_item_batch_consistency(item_id: int) -> dict:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item", item_id)

    if not item.use_batch_system:
        return {"valid": True, "item_id": item.id, "message": "Item does not use batch system"}

    batches = db.session.query(StockBatch).filter_by(item_id=item.id).all()
    total = sum(b.quantity for b in batches)
    consistent = total == item.quantity_in_stock
    return {
        "valid": consistent,
        "item_id": item.id,
        "item_name": item.name,
        "item_quantity": item.quantity_in_stock,
        "batch_total": total,
        "difference": total - item.quantity_in_stock,
        "batch_count": len(batches),
        "message": (
            "Item and batches are consistent"
            if consistent
            else f"Inconsistency detected: Item shows {item.quantity_in_stock}, batches total {total}"
        ),
    }


def sync_all_batch_items() -> list[dict]:
    """Repair sweep: reconcile every batch-tracked item, one transaction each."""
    rows = (
        db.session.query(Item.id, Item.name)
        .filter(Item.use_batch_system.is_(True))
        .order_by(Item.id.asc())
        .all()
    )

    results = []
    for item_id, name in rows:
        try:
            item = sync_item_quantity_from_batches(item_id)
            results.append({"success": True, "item_id": item_id, "name": name, "quantity": item.quantity_in_stock})
        except Exception as exc:
            current_app.logger.exception("Failed to sync item %s", item_id)
            results.append({"success": False, "item_id": item_id, "name": name, "error": str(exc)})

    synced = sum(1 for r in results if r["success"])
    current_app.logger.info("Synced %s/%s batch-system items", synced, len(results))
    return results


def validate_company_cash_balances() -> ConsistencyReport:
    """Diagnostic sweep: no company may hold a negative cash balance."""
    companies = db.session.query(Company).order_by(Company.id.asc()).all()
    report = ConsistencyReport(total_items=len(companies))
    for company in companies:
        problems = []
        if company.cash_balance_srd_cents < 0:
            problems.append(f'Company "{company.name}" has negative SRD balance: {company.cash_balance_srd_cents}')
        if company.cash_balance_usd_cents < 0:
            problems.append(f'Company "{company.name}" has negative USD balance: {company.cash_balance_usd_cents}')
        if problems:
            report.inconsistent_items += 1
            report.errors.extend(problems)
        else:
            report.consistent_items += 1
    return report
