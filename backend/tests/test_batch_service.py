"""
Batch reconciler tests: sync, aggregates, consistency sweeps and batch CRUD.
"""

import pytest
import sqlalchemy as sa

from stockbook.models import Company, Item, Location, StockBatch
from stockbook.services import batch_service
from stockbook.services.batch_service import (
    aggregate_batch_data_for_items,
    check_item_batch_consistency,
    create_batch,
    delete_batch,
    sync_all_batch_items,
    sync_item_quantity_from_batches,
    transfer_batch,
    update_batch,
    validate_company_cash_balances,
    validate_item_batch_consistency,
)
from stockbook.services.errors import BatchOperationError, InsufficientFundsError, InsufficientStockError, NotFoundError


def _reload(db_session, model, pk):
    db_session.expire_all()
    return db_session.get(model, pk)


def _drift(db_session, item, quantity):
    """Simulate a stale stored quantity (e.g. written by an old code path)."""
    item.quantity_in_stock = quantity
    db_session.commit()


def test_sync_writes_batch_total(db_session, batch_item):
    _drift(db_session, batch_item, 2)

    synced = sync_item_quantity_from_batches(batch_item.id)
    assert synced.quantity_in_stock == 7


def test_sync_is_idempotent(db_session, batch_item):
    _drift(db_session, batch_item, 0)

    first = sync_item_quantity_from_batches(batch_item.id).quantity_in_stock
    version_after_first = _reload(db_session, Item, batch_item.id).version_id
    second = sync_item_quantity_from_batches(batch_item.id).quantity_in_stock

    assert first == second == 7
    assert _reload(db_session, Item, batch_item.id).version_id == version_after_first


def test_sync_ignores_plain_items(db_session, item):
    _drift(db_session, item, 9)
    assert sync_item_quantity_from_batches(item.id).quantity_in_stock == 9


def test_sync_unknown_item(db_session):
    with pytest.raises(NotFoundError):
        sync_item_quantity_from_batches(31337)


def test_sync_to_zero_marks_sold_and_back(db_session, batch_item):
    for batch in db_session.query(StockBatch).filter_by(item_id=batch_item.id).all():
        batch.quantity = 0
    db_session.commit()

    synced = sync_item_quantity_from_batches(batch_item.id)
    assert (synced.quantity_in_stock, synced.status) == (0, "Sold")

    batch = db_session.query(StockBatch).filter_by(item_id=batch_item.id).first()
    batch.quantity = 2
    db_session.commit()

    synced = sync_item_quantity_from_batches(batch_item.id)
    assert (synced.quantity_in_stock, synced.status) == (2, "Arrived")


def test_aggregate_batch_data(db_session, batch_item, item, warehouse, shop):
    db_session.add(StockBatch(item_id=batch_item.id, quantity=1, status="Ordered"))
    db_session.commit()

    data = aggregate_batch_data_for_items([batch_item, item])

    assert item.id not in data
    rollup = data[batch_item.id]
    assert rollup["batch_count"] == 3
    assert rollup["location_count"] == 2
    assert {loc["name"] for loc in rollup["locations"]} == {"Warehouse", "Shop"}
    assert rollup["statuses"] == ["Ordered", "Arrived"]
    assert rollup["has_multiple_locations"] is True
    assert rollup["has_multiple_statuses"] is True


def test_aggregate_without_batches(db_session, company):
    lonely = Item(company_id=company.id, name="Lonely", status="Arrived", use_batch_system=True)
    db_session.add(lonely)
    db_session.commit()

    rollup = aggregate_batch_data_for_items([lonely])[lonely.id]
    assert rollup["batch_count"] == 0
    assert rollup["has_multiple_locations"] is False


def test_consistency_sweep_reports_mismatch(db_session, batch_item, item):
    report = validate_item_batch_consistency()
    assert report.valid
    assert (report.total_items, report.consistent_items) == (1, 1)

    _drift(db_session, batch_item, 10)
    report = validate_item_batch_consistency()

    assert not report.valid
    assert report.inconsistent_items == 1
    assert report.errors == [
        f'Item "USB Hub" ({batch_item.id}): quantity mismatch. Item shows 10, batches total 7'
    ]


def test_check_single_item(db_session, batch_item, item):
    assert check_item_batch_consistency(item.id)["message"] == "Item does not use batch system"

    _drift(db_session, batch_item, 5)
    result = check_item_batch_consistency(batch_item.id)
    assert result["valid"] is False
    assert result["difference"] == 2
    assert result["batch_count"] == 2


def test_repair_sweep(db_session, batch_item):
    _drift(db_session, batch_item, 1)

    results = sync_all_batch_items()

    assert results == [{"success": True, "item_id": batch_item.id, "name": "USB Hub", "quantity": 7}]
    assert validate_item_batch_consistency().valid


def test_cash_balance_sweep(db_session, company):
    assert validate_company_cash_balances().valid

    company.cash_balance_usd_cents = -1
    db_session.commit()
    report = validate_company_cash_balances()
    assert not report.valid
    assert "negative USD balance" in report.errors[0]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

def test_create_arrived_batch_reconciles(db_session, batch_item, shop):
    batch = create_batch(item_id=batch_item.id, quantity=5, status="Arrived", location_id=shop.id)

    assert batch.arrived_date is not None
    assert batch.cost_per_unit_usd_cents == 800
    assert _reload(db_session, Item, batch_item.id).quantity_in_stock == 12


def test_create_ordered_batch_debits_cost_and_freight(db_session, company, batch_item):
    create_batch(
        item_id=batch_item.id,
        quantity=10,
        status="Ordered",
        cost_per_unit_usd_cents=1_000,
        freight_cost_usd_cents=500,
    )
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 50_000 - 10_500


def test_create_ordered_batch_insufficient_funds(db_session, company, batch_item):
    with pytest.raises(InsufficientFundsError):
        create_batch(item_id=batch_item.id, quantity=100, status="Ordered", cost_per_unit_usd_cents=1_000)

    assert db_session.query(StockBatch).filter_by(item_id=batch_item.id).count() == 2
    assert _reload(db_session, Item, batch_item.id).quantity_in_stock == 7


def test_create_batch_rejects_plain_item(db_session, item):
    with pytest.raises(BatchOperationError):
        create_batch(item_id=item.id, quantity=1)


def test_create_batch_rejects_foreign_location(db_session, batch_item, other_company):
    foreign = Location(company_id=other_company.id, name="Elsewhere")
    db_session.add(foreign)
    db_session.commit()

    with pytest.raises(BatchOperationError):
        create_batch(item_id=batch_item.id, quantity=1, location_id=foreign.id)


def test_update_batch_quantity_reconciles(db_session, batch_item):
    batch = db_session.query(StockBatch).filter_by(item_id=batch_item.id).first()

    update_batch(batch.id, {"quantity": 10})
    assert _reload(db_session, Item, batch_item.id).quantity_in_stock == 14


def test_update_batch_notes_only(db_session, company, batch_item):
    batch = db_session.query(StockBatch).filter_by(item_id=batch_item.id).first()

    updated = update_batch(batch.id, {"notes": "relabelled"})

    assert updated.notes == "relabelled"
    assert updated.quantity == 3
    assert _reload(db_session, Item, batch_item.id).quantity_in_stock == 7
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 50_000


def test_update_batch_to_arrived_stamps_date(db_session, batch_item):
    batch = create_batch(item_id=batch_item.id, quantity=2)
    assert batch.arrived_date is None

    patch = {"status": "Arrived"}
    updated = update_batch(batch.id, patch)

    assert updated.arrived_date is not None
    assert patch == {"status": "Arrived"}


def test_update_batch_to_ordered_debits(db_session, company, batch_item):
    batch = create_batch(item_id=batch_item.id, quantity=2, cost_per_unit_usd_cents=300)

    update_batch(batch.id, {"status": "Ordered"})
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 50_000 - 600


def test_delete_ordered_batch_refunds(db_session, company, batch_item):
    batch = create_batch(item_id=batch_item.id, quantity=2, status="Ordered", cost_per_unit_usd_cents=300)
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 49_400

    refunded = delete_batch(batch.id)

    assert refunded == 600
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 50_000
    assert _reload(db_session, Item, batch_item.id).quantity_in_stock == 7


def test_delete_refund_uses_quantity_seen_under_item_lock(db_session, company, batch_item, monkeypatch):
    batch = create_batch(item_id=batch_item.id, quantity=3, status="Ordered", cost_per_unit_usd_cents=800)
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 47_600
    batch = db_session.get(StockBatch, batch.id)
    assert batch.quantity == 3

    real_lock = batch_service.get_item_for_update

    def _lock_after_concurrent_sale(item_id):
        # another action drains the batch to 1 unit while we wait for the lock
        db_session.execute(
            sa.update(StockBatch)
            .where(StockBatch.id == batch.id)
            .values(quantity=1)
            .execution_options(synchronize_session=False)
        )
        return real_lock(item_id)

    monkeypatch.setattr(batch_service, "get_item_for_update", _lock_after_concurrent_sale)

    refunded = delete_batch(batch.id)

    assert refunded == 800
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 47_600 + 800


def test_transfer_sees_quantity_under_item_lock(db_session, batch_item, warehouse, shop, monkeypatch):
    source = db_session.query(StockBatch).filter_by(location_id=warehouse.id).one()
    real_lock = batch_service.get_item_for_update

    def _lock_after_concurrent_sale(item_id):
        db_session.execute(
            sa.update(StockBatch)
            .where(StockBatch.id == source.id)
            .values(quantity=1)
            .execution_options(synchronize_session=False)
        )
        return real_lock(item_id)

    monkeypatch.setattr(batch_service, "get_item_for_update", _lock_after_concurrent_sale)

    with pytest.raises(InsufficientStockError) as exc:
        transfer_batch(source.id, to_location_id=shop.id, quantity=2)
    assert exc.value.available == 1


def test_delete_to_order_batch_has_no_refund(db_session, company, batch_item):
    batch = create_batch(item_id=batch_item.id, quantity=2)
    assert delete_batch(batch.id) == 0
    assert _reload(db_session, Company, company.id).cash_balance_usd_cents == 50_000


def test_delete_unknown_batch(db_session):
    with pytest.raises(NotFoundError):
        delete_batch(999)


def test_partial_transfer_splits_batch(db_session, batch_item, warehouse, shop, batch_quantities):
    source = db_session.query(StockBatch).filter_by(location_id=warehouse.id).one()

    result = transfer_batch(source.id, to_location_id=shop.id, quantity=2)

    assert result["transferred_amount"] == 2
    assert result["remaining_in_original"] == 1
    assert batch_quantities(batch_item.id) == [(warehouse.id, 1), (shop.id, 4), (shop.id, 2)]
    assert _reload(db_session, Item, batch_item.id).quantity_in_stock == 7


def test_full_transfer_moves_batch(db_session, batch_item, warehouse, shop, batch_quantities):
    source = db_session.query(StockBatch).filter_by(location_id=warehouse.id).one()

    result = transfer_batch(source.id, to_location_id=shop.id)

    assert result["batch_id"] == source.id
    assert batch_quantities(batch_item.id) == [(shop.id, 3), (shop.id, 4)]


def test_transfer_more_than_batch(db_session, batch_item, warehouse, shop):
    source = db_session.query(StockBatch).filter_by(location_id=warehouse.id).one()

    with pytest.raises(InsufficientStockError) as exc:
        transfer_batch(source.id, to_location_id=shop.id, quantity=5)
    assert exc.value.message == "Cannot transfer 5 units. Only 3 available."
