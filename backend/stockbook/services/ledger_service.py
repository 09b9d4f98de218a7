# Overview: Service-layer operations for company cash balances and ledger rows.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Company, Expense
from ..money_utils import CURRENCY_SRD, CURRENCY_USD, CURRENCIES, format_cents
from .concurrency import lock_for_update
from .errors import InsufficientFundsError, NotFoundError
"""
Balance Ledger Invariants (authoritative)

- Every cash movement caused by an inventory action updates exactly one
  company balance and inserts exactly one Expense row, in the caller's
  DB transaction (flush only, the unit of work commits).
- Expense.amount_cents is the negative of the balance delta:
  credit (+) -> negative amount (income), debit (-) -> positive amount (expense).
- A debit never drives a balance below zero; the check happens before any write.
- Order-cost debits and batch refunds are direct balance mutations without an
  Expense row.
"""

_BALANCE_FIELDS = {
    CURRENCY_SRD: "cash_balance_srd_cents",
    CURRENCY_USD: "cash_balance_usd_cents",
}


@dataclass(frozen=True)
class CashMovement:
    updated_balance_cents: int
    entry: Expense


def _locked_company(company_id: int) -> Company:
    company = lock_for_update(db.session.query(Company).filter_by(id=company_id)).first()
    if company is None:
        raise NotFoundError("Company", company_id)
    return company


def _balance_field(currency: str) -> str:
    if currency not in CURRENCIES:
        raise ValueError(f"unsupported currency: {currency}")
    return _BALANCE_FIELDS[currency]


def _ensure_funds(company: Company, currency: str, debit_cents: int) -> None:
    available = getattr(company, _balance_field(currency))
    if available < debit_cents:
        raise InsufficientFundsError(
            f"Insufficient {currency} balance: {format_cents(debit_cents)} required, "
            f"{format_cents(available)} available.",
            required=debit_cents,
            available=available,
            currency=currency,
        )


def apply_cash_movement(
    *,
    company_id: int,
    currency: str,
    delta_cents: int,
    description: str,
    category: str,
    notes: str | None = None,
    item_id: int | None = None,
) -> CashMovement:
    """
    Move money between a company's cash balance and a ledger row.

    delta_cents > 0 credits the balance (sale revenue, removal reallocation),
    delta_cents < 0 debits it. Must run inside a unit of work.
    """
    field = _balance_field(currency)
    company = _locked_company(company_id)

    if delta_cents < 0:
        _ensure_funds(company, currency, -delta_cents)

    new_balance = getattr(company, field) + delta_cents
    setattr(company, field, new_balance)

    entry = Expense(
        company_id=company.id,
        item_id=item_id,
        description=description,
        amount_cents=-delta_cents,
        currency=currency,
        category=category,
        notes=notes,
    )
    db.session.add(entry)
    db.session.flush()  # assigns entry.id and bumps company.version_id without committing
    return CashMovement(updated_balance_cents=new_balance, entry=entry)


def debit_order_cost(*, company_id: int, amount_cents: int) -> Company:
    """
    Debit the USD balance for goods placed on order.

    Pre-flight check first: raises InsufficientFundsError and writes nothing
    when the balance cannot cover the order.
    """
    company = _locked_company(company_id)
    _ensure_funds(company, CURRENCY_USD, amount_cents)
    company.cash_balance_usd_cents -= amount_cents
    db.session.flush()
    return company


def credit_order_refund(*, company_id: int, amount_cents: int) -> Company:
    """Return the USD cost of a cancelled order to the company."""
    company = _locked_company(company_id)
    company.cash_balance_usd_cents += amount_cents
    db.session.flush()
    return company


def list_ledger_entries(company_id: int, *, limit: int = 100) -> list[Expense]:
    if db.session.get(Company, company_id) is None:
        raise NotFoundError("Company", company_id)
    return (
        db.session.query(Expense)
        .filter_by(company_id=company_id)
        .order_by(Expense.date.desc(), Expense.id.desc())
        .limit(limit)
        .all()
    )
