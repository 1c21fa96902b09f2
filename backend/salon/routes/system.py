# backend/salon/routes/system.py
"""
System health endpoint.

Reports database connectivity and the automatic discount rule rows so a
deployment can be checked without touching sales data.
"""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..models import DiscountRule
from ..models.discounts import SYSTEM_DISCOUNT_TYPES
from salon.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))

        system_rules = (
            db.session.query(DiscountRule)
            .filter(DiscountRule.type.in_(SYSTEM_DISCOUNT_TYPES), DiscountRule.is_active.is_(True))
            .count()
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "system_discount_rules": system_rules,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = "ok" if database["status"] == "healthy" else "degraded"
    code = 200 if status == "ok" else 503
    return jsonify({
        "status": status,
        "time": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), code
