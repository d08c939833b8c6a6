# backend/tradeledger/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the chart of accounts the
automations post to is fully configured.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Unit, Account
from tradeledger.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a cheap count."""
    start_time = time.time()
    try:
        unit_count = db.session.query(Unit).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"units": unit_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_accounts_health() -> dict:
    """Every configured posting role must resolve to an account."""
    start_time = time.time()
    try:
        codes = current_app.config.get("ACCOUNT_CODES") or {}
        existing = {
            code for (code,) in db.session.query(Account.code).filter(Account.code.in_(list(codes.values()))).all()
        }
        missing = sorted(role for role, code in codes.items() if code not in existing)
        elapsed_ms = (time.time() - start_time) * 1000
        if missing:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Accounts not configured: {', '.join(missing)}",
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"accounts_configured": len(codes)},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Accounts health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Accounts check error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    accounts_health = check_accounts_health()

    all_checks = [database_health, accounts_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "accounts": accounts_health,
        },
    }
    return response, http_status
