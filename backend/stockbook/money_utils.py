"""
Money helpers.

All amounts are integer cents. Currency conversion goes through the configured
USD -> SRD rate (Config.USD_TO_SRD_RATE) so deployments can change it without
touching ledger code.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from flask import current_app

CURRENCY_SRD = "SRD"
CURRENCY_USD = "USD"
CURRENCIES = (CURRENCY_SRD, CURRENCY_USD)


def get_exchange_rate(rate: float | None = None) -> Decimal:
    """Explicit rate wins; otherwise the app's configured USD -> SRD rate."""
    if rate is None:
        rate = current_app.config["USD_TO_SRD_RATE"]
    return Decimal(str(rate))


def usd_cents_to_srd_cents(usd_cents: int, rate: float | None = None) -> int:
    value = Decimal(usd_cents) * get_exchange_rate(rate)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount) -> int:
    """Major units (e.g. 12.5 SRD) -> integer cents, half-up."""
    if isinstance(amount, bool):
        raise ValueError("amount must be a number")
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError("amount must be a number")
    if not value.is_finite():
        raise ValueError("amount must be a number")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(cents: int) -> str:
    """12345 -> '123.45'"""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"
