# Overview: Flask API routes for company balances and ledger; returns JSON responses.

from flask import Blueprint, request

from ..decorators import render_service_errors

companies_bp = Blueprint("companies", __name__, url_prefix="/api/companies")


@companies_bp.get("/<int:company_id>/financial")
@render_service_errors("Failed to load company financials")
def company_financial(company_id: int):
    """Cash balances, live stock value and ledger totals at the configured exchange rate."""
    from ..services.valuation_service import company_financial_summary

    return company_financial_summary(company_id)


@companies_bp.get("/<int:company_id>/ledger")
@render_service_errors("Failed to load company ledger")
def company_ledger(company_id: int):
    limit = request.args.get("limit", default=100, type=int)
    if limit < 1 or limit > 500:
        return {"error": "limit must be between 1 and 500"}, 400

    from ..services.ledger_service import list_ledger_entries

    entries = list_ledger_entries(company_id, limit=limit)
    return {"company_id": company_id, "entries": [e.to_dict() for e in entries]}
