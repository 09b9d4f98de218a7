# Overview: Service-layer operations that change item stock; coordinates the ledger and batch reconciler.

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Company, Expense, Item, StockBatch
from ..models.finance import CATEGORY_INCOME, CATEGORY_MISCELLANEOUS
from ..models.inventory import (
    PRE_STOCK_STATUSES,
    STATUS_ARRIVED,
    STATUS_ORDERED,
    STATUS_SOLD,
    STOCK_BEARING_STATUSES,
)
from ..money_utils import CURRENCY_SRD, format_cents, get_exchange_rate, usd_cents_to_srd_cents
from ..time_utils import utcnow
from ..validation import ItemDraft, ValidationError
from .batch_service import (
    consume_batches_fifo,
    ensure_location_in_company,
    get_item_for_update,
    reconcile_item_locked,
)
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .errors import InsufficientStockError, NotFoundError
from .ledger_service import apply_cash_movement, debit_order_cost
"""
Stock Mutator Invariants (authoritative)

Ownership:
- use_batch_system=False: quantity_in_stock is mutated here, directly.
- use_batch_system=True: actions go through the batches (FIFO for sell/remove,
  a new Arrived batch for add) and the reconciler writes quantity_in_stock last.

Transactions:
- One action = one unit of work: item row, batch rows, company balance and the
  ledger row commit together or not at all.
- Lock order: item first, then company.
- Stock/funds preconditions are checked before any write.

Status:
- quantity reaching 0 turns Arrived into Sold.
- quantity going positive again turns Sold into Arrived.

Money:
- Sale: revenue = unit price (override or item price) * qty, credited to SRD.
  Cost basis = round(unit_cost_usd * rate) * qty; profit is narrative only.
- Removal: round(unit_cost_usd * qty * rate) credited to SRD. Written-off stock
  cost is booked as realized profit.
- Add: no money effect.
"""


@dataclass
class StockActionResult:
    action: str
    item: Item
    quantity: int
    amount_srd_cents: int = 0
    profit_srd_cents: int | None = None
    unit_price_srd_cents: int | None = None
    updated_balance_srd_cents: int | None = None
    ledger_entry: Expense | None = None
    batches: list[dict] = field(default_factory=list)


@dataclass
class ItemWriteResult:
    item: Item
    merged: bool = False
    debited_usd_cents: int = 0


def _require_positive(quantity: int, label: str) -> None:
    if quantity is None or quantity < 1:
        raise ValidationError(f"{label} must be at least 1")


def _apply_direct_quantity(item: Item, new_quantity: int) -> None:
    item.quantity_in_stock = new_quantity
    if new_quantity == 0 and item.status == STATUS_ARRIVED:
        item.status = STATUS_SOLD
    elif new_quantity > 0 and item.status == STATUS_SOLD:
        item.status = STATUS_ARRIVED


def _take_stock(item: Item, quantity: int, *, prefer_location_id: int | None = None) -> list[dict]:
    if item.use_batch_system:
        touched = consume_batches_fifo(item, quantity, prefer_location_id=prefer_location_id)
        reconcile_item_locked(item)
        return touched
    _apply_direct_quantity(item, item.quantity_in_stock - quantity)
    db.session.flush()
    return []


def sell_item(
    item_id: int,
    quantity: int,
    selling_price_srd_cents: int | None = None,
    location_id: int | None = None,
) -> StockActionResult:
    """
    Sell units of an item and credit the revenue to the company's SRD balance.

    selling_price_srd_cents overrides the item's price for this sale only
    (0 is a valid override). location_id drains batches at that location
    first for batch-tracked items.
    """
    _require_positive(quantity, "quantityToSell")
    rate = get_exchange_rate()

    def _op():
        with unit_of_work():
            item = get_item_for_update(item_id)
            if quantity > item.quantity_in_stock:
                raise InsufficientStockError(
                    f"Cannot sell {quantity} items. Only {item.quantity_in_stock} in stock.",
                    available=item.quantity_in_stock,
                    requested=quantity,
                )

            unit_price = item.selling_price_srd_cents if selling_price_srd_cents is None else selling_price_srd_cents
            revenue = unit_price * quantity
            cost_basis = usd_cents_to_srd_cents(item.cost_per_unit_usd_cents, rate) * quantity
            profit = revenue - cost_basis

            touched = _take_stock(item, quantity, prefer_location_id=location_id)

            movement = apply_cash_movement(
                company_id=item.company_id,
                currency=CURRENCY_SRD,
                delta_cents=revenue,
                description=f"Sale of {quantity}x {item.name}",
                category=CATEGORY_INCOME,
                notes=(
                    f"Sold {quantity} units at {format_cents(unit_price)} SRD each. "
                    f"Profit: {format_cents(profit)} SRD"
                ),
                item_id=item.id,
            )

            return StockActionResult(
                action="sell",
                item=item,
                quantity=quantity,
                amount_srd_cents=revenue,
                profit_srd_cents=profit,
                unit_price_srd_cents=unit_price,
                updated_balance_srd_cents=movement.updated_balance_cents,
                ledger_entry=movement.entry,
                batches=touched,
            )

    return run_with_retry(_op)


def remove_item_stock(item_id: int, quantity: int, reason: str | None = None) -> StockActionResult:
    """Write units off and credit their SRD cost value to the company."""
    _require_positive(quantity, "quantityToRemove")
    rate = get_exchange_rate()

    def _op():
        with unit_of_work():
            item = get_item_for_update(item_id)
            if quantity > item.quantity_in_stock:
                raise InsufficientStockError(
                    f"Cannot remove {quantity} items. Only {item.quantity_in_stock} in stock.",
                    available=item.quantity_in_stock,
                    requested=quantity,
                )

            credit = usd_cents_to_srd_cents(item.cost_per_unit_usd_cents * quantity, rate)
            touched = _take_stock(item, quantity)

            movement = apply_cash_movement(
                company_id=item.company_id,
                currency=CURRENCY_SRD,
                delta_cents=credit,
                description=f"Stock removal: {quantity}x {item.name}",
                category=CATEGORY_MISCELLANEOUS,
                notes=(
                    f"Removed {quantity} units from stock. "
                    f"Reason: {reason or 'No reason specified'}. Cost allocated to profit."
                ),
                item_id=item.id,
            )

            return StockActionResult(
                action="remove",
                item=item,
                quantity=quantity,
                amount_srd_cents=credit,
                updated_balance_srd_cents=movement.updated_balance_cents,
                ledger_entry=movement.entry,
                batches=touched,
            )

    return run_with_retry(_op)


def add_item_stock(item_id: int, quantity: int, reason: str | None = None) -> StockActionResult:
    """Stock correction upwards. No money moves."""
    _require_positive(quantity, "quantityToAdd")

    def _op():
        with unit_of_work():
            item = get_item_for_update(item_id)
            touched = []

            if item.use_batch_system:
                batch = StockBatch(
                    item_id=item.id,
                    quantity=quantity,
                    original_quantity=quantity,
                    status=STATUS_ARRIVED,
                    cost_per_unit_usd_cents=item.cost_per_unit_usd_cents,
                    freight_cost_usd_cents=0,
                    location_id=item.location_id,
                    assigned_user_id=item.assigned_user_id,
                    arrived_date=utcnow(),
                    notes=reason or "Manual stock addition",
                )
                db.session.add(batch)
                db.session.flush()
                touched.append({"batch_id": batch.id, "added": quantity, "remaining": quantity})
                reconcile_item_locked(item)
            else:
                _apply_direct_quantity(item, item.quantity_in_stock + quantity)
                db.session.flush()

            return StockActionResult(action="add", item=item, quantity=quantity, batches=touched)

    return run_with_retry(_op)


def _find_merge_target(draft: ItemDraft) -> Item | None:
    if draft.status not in PRE_STOCK_STATUSES:
        return None
    q = (
        db.session.query(Item)
        .filter(
            Item.company_id == draft.company_id,
            Item.name == draft.name,
            Item.status.in_(STOCK_BEARING_STATUSES),
        )
        .order_by(Item.id.asc())
    )
    return lock_for_update(q).first()


def _merge_into(existing: Item, draft: ItemDraft) -> None:
    """
    Fold an incoming re-order into a stocked item.

    Unit cost becomes the quantity-weighted average (half-up to the cent),
    freight the mean of both order totals. Optional fields and notes only
    change when the incoming value is non-empty.
    """
    existing_qty = existing.quantity_in_stock
    total_qty = existing_qty + draft.quantity_in_stock
    if total_qty > 0:
        weighted = existing.cost_per_unit_usd_cents * existing_qty + draft.cost_per_unit_usd_cents * draft.quantity_in_stock
        existing.cost_per_unit_usd_cents = (weighted + total_qty // 2) // total_qty
    else:
        existing.cost_per_unit_usd_cents = draft.cost_per_unit_usd_cents

    existing.freight_cost_usd_cents = (existing.freight_cost_usd_cents + draft.freight_cost_usd_cents + 1) // 2
    existing.selling_price_srd_cents = draft.selling_price_srd_cents

    for name in ItemDraft.OPTIONAL_FIELDS:
        if draft.has_value(name):
            setattr(existing, name, getattr(draft, name))

    if existing.use_batch_system:
        if draft.quantity_in_stock > 0:
            db.session.add(
                StockBatch(
                    item_id=existing.id,
                    quantity=draft.quantity_in_stock,
                    original_quantity=draft.quantity_in_stock,
                    status=draft.status,
                    cost_per_unit_usd_cents=draft.cost_per_unit_usd_cents,
                    freight_cost_usd_cents=draft.freight_cost_usd_cents,
                    location_id=draft.value_or_none("location_id"),
                    assigned_user_id=draft.value_or_none("assigned_user_id"),
                    order_date=draft.value_or_none("order_date"),
                    expected_arrival=draft.value_or_none("expected_arrival"),
                    order_number=draft.value_or_none("order_number"),
                )
            )
            db.session.flush()
        reconcile_item_locked(existing)
    else:
        _apply_direct_quantity(existing, total_qty)
        db.session.flush()


def _new_item(draft: ItemDraft) -> Item:
    item = Item(
        company_id=draft.company_id,
        name=draft.name,
        status=draft.status,
        quantity_in_stock=draft.quantity_in_stock,
        cost_per_unit_usd_cents=draft.cost_per_unit_usd_cents,
        freight_cost_usd_cents=draft.freight_cost_usd_cents,
        selling_price_srd_cents=draft.selling_price_srd_cents,
        use_batch_system=draft.use_batch_system,
        **{name: draft.value_or_none(name) for name in ItemDraft.OPTIONAL_FIELDS},
    )
    db.session.add(item)
    db.session.flush()

    if item.use_batch_system:
        if item.quantity_in_stock > 0:
            db.session.add(
                StockBatch(
                    item_id=item.id,
                    quantity=item.quantity_in_stock,
                    original_quantity=item.quantity_in_stock,
                    status=item.status,
                    cost_per_unit_usd_cents=item.cost_per_unit_usd_cents,
                    freight_cost_usd_cents=item.freight_cost_usd_cents,
                    location_id=item.location_id,
                    assigned_user_id=item.assigned_user_id,
                    order_date=item.order_date,
                    expected_arrival=item.expected_arrival,
                    arrived_date=utcnow() if item.status == STATUS_ARRIVED else None,
                    order_number=item.order_number,
                )
            )
            db.session.flush()
        reconcile_item_locked(item)
    return item


def create_or_merge_item(draft: ItemDraft) -> ItemWriteResult:
    """
    Create an item, or merge a re-order into an existing stocked item.

    Merge happens when an item with the same name in the same company is
    Arrived/Sold and the incoming status is ToOrder/Ordered. An Ordered draft
    debits cost * quantity from the USD balance; when the balance can't
    cover it nothing is written.
    """
    def _op():
        with unit_of_work():
            if db.session.get(Company, draft.company_id) is None:
                raise NotFoundError("Company", draft.company_id)
            ensure_location_in_company(draft.value_or_none("location_id"), draft.company_id)

            existing = _find_merge_target(draft)

            debited = 0
            if draft.status == STATUS_ORDERED:
                debited = draft.cost_per_unit_usd_cents * draft.quantity_in_stock
                debit_order_cost(company_id=draft.company_id, amount_cents=debited)

            if existing is not None:
                _merge_into(existing, draft)
                return ItemWriteResult(item=existing, merged=True, debited_usd_cents=debited)

            return ItemWriteResult(item=_new_item(draft), merged=False, debited_usd_cents=debited)

    return run_with_retry(_op)


def update_item(item_id: int, patch: dict) -> Item:
    """
    Apply a validated partial update to an item.

    Batch-tracked items derive quantity_in_stock from their batches, so a
    direct write of that field is rejected. Switching an item onto the batch
    system seeds one Arrived batch with its current stock.
    """
    def _op():
        with unit_of_work():
            item = get_item_for_update(item_id)

            batch_tracked = patch.get("use_batch_system", item.use_batch_system)
            if batch_tracked and "quantity_in_stock" in patch:
                raise ValidationError(
                    "quantity_in_stock is derived from batches for batch-tracked items; edit the batches instead"
                )
            if "location_id" in patch:
                ensure_location_in_company(patch["location_id"], item.company_id)

            switching_on = batch_tracked and not item.use_batch_system

            for key, value in patch.items():
                if key == "quantity_in_stock":
                    continue
                setattr(item, key, value)

            if "quantity_in_stock" in patch:
                if "status" in patch:
                    item.quantity_in_stock = patch["quantity_in_stock"]
                else:
                    _apply_direct_quantity(item, patch["quantity_in_stock"])

            db.session.flush()

            if switching_on:
                has_batches = db.session.query(StockBatch.id).filter_by(item_id=item.id).first() is not None
                if not has_batches and item.quantity_in_stock > 0:
                    db.session.add(
                        StockBatch(
                            item_id=item.id,
                            quantity=item.quantity_in_stock,
                            original_quantity=item.quantity_in_stock,
                            status=STATUS_ARRIVED,
                            cost_per_unit_usd_cents=item.cost_per_unit_usd_cents,
                            freight_cost_usd_cents=item.freight_cost_usd_cents,
                            location_id=item.location_id,
                            arrived_date=utcnow(),
                        )
                    )
                    db.session.flush()

            return reconcile_item_locked(item)

    return run_with_retry(_op)
