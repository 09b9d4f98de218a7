"""
Balance ledger tests.

Covers the sign convention of ledger rows, the pre-flight funds check and
the direct order-cost debit/refund helpers.
"""

import pytest

from stockbook.models import Company, Expense
from stockbook.services.concurrency import unit_of_work
from stockbook.services.errors import InsufficientFundsError, NotFoundError
from stockbook.services.ledger_service import (
    apply_cash_movement,
    credit_order_refund,
    debit_order_cost,
    list_ledger_entries,
)


def _movement(company_id, delta, currency="SRD"):
    with unit_of_work():
        return apply_cash_movement(
            company_id=company_id,
            currency=currency,
            delta_cents=delta,
            description="Test movement",
            category="MISCELLANEOUS",
        )


def test_credit_stores_negative_amount(db_session, company):
    movement = _movement(company.id, 30_000)

    db_session.expire_all()
    refreshed = db_session.get(Company, company.id)
    assert refreshed.cash_balance_srd_cents == 130_000
    assert movement.updated_balance_cents == 130_000

    entries = db_session.query(Expense).filter_by(company_id=company.id).all()
    assert len(entries) == 1
    assert entries[0].amount_cents == -30_000
    assert entries[0].is_income is True


def test_debit_stores_positive_amount(db_session, company):
    _movement(company.id, -2_500, currency="USD")

    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_usd_cents == 47_500
    entry = db_session.query(Expense).one()
    assert entry.amount_cents == 2_500
    assert entry.currency == "USD"


def test_debit_beyond_balance_is_rejected_without_writes(db_session, company):
    with pytest.raises(InsufficientFundsError) as exc:
        _movement(company.id, -100_001)

    assert exc.value.required == 100_001
    assert exc.value.available == 100_000
    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_srd_cents == 100_000
    assert db_session.query(Expense).count() == 0


def test_debit_to_exactly_zero_is_allowed(db_session, company):
    _movement(company.id, -100_000)
    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_srd_cents == 0


def test_unknown_company(db_session):
    with pytest.raises(NotFoundError):
        _movement(999, 100)


def test_unknown_currency_rejected(db_session, company):
    with pytest.raises(ValueError):
        _movement(company.id, 100, currency="EUR")


def test_order_cost_debit_has_no_ledger_row(db_session, company):
    with unit_of_work():
        debit_order_cost(company_id=company.id, amount_cents=6_000)

    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_usd_cents == 44_000
    assert db_session.query(Expense).count() == 0


def test_order_cost_debit_preflight(db_session, company):
    with pytest.raises(InsufficientFundsError) as exc:
        with unit_of_work():
            debit_order_cost(company_id=company.id, amount_cents=50_001)

    assert exc.value.currency == "USD"
    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_usd_cents == 50_000


def test_refund_credits_usd(db_session, company):
    with unit_of_work():
        credit_order_refund(company_id=company.id, amount_cents=1_234)

    db_session.expire_all()
    assert db_session.get(Company, company.id).cash_balance_usd_cents == 51_234


def test_list_ledger_entries_newest_first(db_session, company):
    _movement(company.id, 100)
    _movement(company.id, 200)

    entries = list_ledger_entries(company.id)
    assert [e.amount_cents for e in entries] == [-200, -100]
    assert len(list_ledger_entries(company.id, limit=1)) == 1


def test_list_ledger_entries_unknown_company(db_session):
    with pytest.raises(NotFoundError):
        list_ledger_entries(12345)
