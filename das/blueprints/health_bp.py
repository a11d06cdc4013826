"""
Health check blueprint.

Endpoints:
    GET /api/health        — 200 when the datastore answers, 503 otherwise
    GET /api/health/ready  — simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from das.datastore import get_datastore

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/health")


@health_bp.route("", methods=["GET"])
def health():
    """Liveness check with datastore status."""
    t0 = time.perf_counter()
    ok = get_datastore().ping()
    db_ms = (time.perf_counter() - t0) * 1000
    if ok:
        database = {"status": "ok", "latency_ms": round(db_ms, 1)}
    else:
        database = {"status": "error"}
        logger.error("Health check: datastore unreachable")

    body = {
        "status": "ok" if ok else "degraded",
        "checks": {
            "database": database,
            "app": {"name": "DAS", "debug": current_app.debug, "testing": current_app.testing},
        },
    }
    return jsonify(body), 200 if ok else 503


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe, always 200 if app is running."""
    return jsonify({"status": "ok"}), 200
