# Overview: Read-time item metrics and company stock-value rollups.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import case, func

from ..extensions import db
from ..models import Company, Expense, Item
from ..models.inventory import STOCK_BEARING_STATUSES
from ..money_utils import CURRENCY_SRD, CURRENCY_USD, get_exchange_rate, usd_cents_to_srd_cents
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .errors import NotFoundError


def _company_or_404(company_id: int) -> Company:
    company = db.session.get(Company, company_id)
    if company is None:
        raise NotFoundError("Company", company_id)
    return company


def item_metrics(item: Item, rate: float | None = None) -> dict:
    """
    Derived per-item figures, never stored.

    total_cost_per_unit_usd_cents = cost + freight / max(qty, 1)
    profit_per_unit_srd_cents     = price - total_cost_per_unit * rate
    total_profit_srd_cents        = profit_per_unit * qty
    """
    rate_dec = get_exchange_rate(rate)
    qty = item.quantity_in_stock
    total_cost_per_unit = Decimal(item.cost_per_unit_usd_cents) + Decimal(item.freight_cost_usd_cents) / max(qty, 1)
    profit_per_unit = Decimal(item.selling_price_srd_cents) - total_cost_per_unit * rate_dec

    def _cents(value: Decimal) -> int:
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return {
        "total_cost_per_unit_usd_cents": _cents(total_cost_per_unit),
        "profit_per_unit_srd_cents": _cents(profit_per_unit),
        "total_profit_srd_cents": _cents(profit_per_unit * qty),
    }


def _stock_value_usd_cents(company_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(Item.quantity_in_stock * Item.cost_per_unit_usd_cents), 0)
    ).filter(
        Item.company_id == company_id,
        Item.status.in_(STOCK_BEARING_STATUSES),
    )
    return int(q.scalar() or 0)


def refresh_company_stock_value(company_id: int, rate: float | None = None) -> Company:
    """Recompute the cached stock_value_* rollups from on-hand stock at cost."""
    rate_dec = get_exchange_rate(rate)

    def _op():
        with unit_of_work():
            company = lock_for_update(db.session.query(Company).filter_by(id=company_id)).first()
            if company is None:
                raise NotFoundError("Company", company_id)
            usd = _stock_value_usd_cents(company.id)
            company.stock_value_usd_cents = usd
            company.stock_value_srd_cents = usd_cents_to_srd_cents(usd, rate_dec)
            db.session.flush()
            return company

    return run_with_retry(_op)


def _ledger_totals(company_id: int) -> dict:
    rows = (
        db.session.query(
            Expense.currency,
            func.coalesce(func.sum(case((Expense.amount_cents < 0, -Expense.amount_cents), else_=0)), 0),
            func.coalesce(func.sum(case((Expense.amount_cents > 0, Expense.amount_cents), else_=0)), 0),
        )
        .filter(Expense.company_id == company_id)
        .group_by(Expense.currency)
        .all()
    )
    totals = {
        CURRENCY_SRD: {"income_cents": 0, "expense_cents": 0},
        CURRENCY_USD: {"income_cents": 0, "expense_cents": 0},
    }
    for currency, income, expense in rows:
        totals[currency] = {"income_cents": int(income or 0), "expense_cents": int(expense or 0)}
    return totals


def company_financial_summary(company_id: int, rate: float | None = None) -> dict:
    rate_dec = get_exchange_rate(rate)
    company = _company_or_404(company_id)

    stock_usd = _stock_value_usd_cents(company.id)
    stock_srd = usd_cents_to_srd_cents(stock_usd, rate_dec)
    cash_usd_in_srd = usd_cents_to_srd_cents(company.cash_balance_usd_cents, rate_dec)

    return {
        "company": company.to_dict(),
        "exchange_rate": str(rate_dec),
        "cash_balance_srd_cents": company.cash_balance_srd_cents,
        "cash_balance_usd_cents": company.cash_balance_usd_cents,
        "stock_value_srd_cents": stock_srd,
        "stock_value_usd_cents": stock_usd,
        "total_value_srd_cents": company.cash_balance_srd_cents + cash_usd_in_srd + stock_srd,
        "ledger": _ledger_totals(company.id),
    }
