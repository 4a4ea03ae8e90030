# backend/retail_pos/routes/system.py
"""
System health and version endpoints.

Reports database reachability and the state of the audit sink so operators
can tell a stalled audit worker apart from a broken sale pipeline.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, Sale
from ..services.audit_service import audit_sink
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with the two hot tables.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        sale_count = db.session.query(Sale).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "sales": sale_count,
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


def check_audit_sink_health() -> dict:
    """
    Audit problems degrade the service but never make it unhealthy;
    sales keep flowing while the audit sink is down.
    """
    stats = audit_sink.stats()
    status = "healthy"
    if stats["asynchronous"] and stats["queue_depth"] and not stats["worker_alive"]:
        status = "degraded"
    elif stats["failed"] or stats["dropped"]:
        status = "degraded"
    return {"status": status, "details": stats}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    audit_health = check_audit_sink_health()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif audit_health["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "audit_sink": audit_health,
        }
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
