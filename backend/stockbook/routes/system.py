# backend/stockbook/routes/system.py
"""
System health and consistency endpoints.

/health checks database connectivity; /consistency runs the read-only batch
and cash-balance sweeps an operator would otherwise run from the CLI.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Company, Item, StockBatch
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        company_count = db.session.query(Company).count()
        item_count = db.session.query(Item).count()
        batch_count = db.session.query(StockBatch).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "companies": company_count,
                "items": item_count,
                "batches": batch_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    start_time = time.time()
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "exchange_rate": current_app.config["USD_TO_SRD_RATE"],
        "checks": {
            "database": database_health,
        }
    }

    return response, http_status


@system_bp.get("/consistency")
def consistency():
    """Read-only sweep; never repairs. 200 when valid, 409 when a mismatch is found."""
    from ..services.batch_service import validate_company_cash_balances, validate_item_batch_consistency

    try:
        batch_report = validate_item_batch_consistency()
        cash_report = validate_company_cash_balances()
    except Exception:
        current_app.logger.exception("Failed to run consistency checks")
        return {"error": "Internal server error"}, 500

    valid = batch_report.valid and cash_report.valid
    return {
        "valid": valid,
        "timestamp": utcnow().isoformat() + "Z",
        "batches": batch_report.to_dict(),
        "cash_balances": cash_report.to_dict(),
    }, (200 if valid else 409)
