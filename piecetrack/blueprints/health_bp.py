"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — summary (database + stage catalog)
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database round-trip with latency
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from piecetrack.models import db
from piecetrack.services import stage_catalog

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    try:
        t0 = time.perf_counter()
        db.session.execute(text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        return {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check — database failed: %s", exc)
        return {"status": "error", "detail": str(exc)}


@health_bp.route("", methods=["GET"])
def health():
    """Overall status plus the size of the active stage catalog."""
    checks = {"database": _database_check()}
    overall = checks["database"]["status"] == "ok"
    if overall:
        checks["stage_catalog"] = {"active_stages": len(stage_catalog.list_stages())}
    checks["app"] = {
        "name": "Piece Mark Production Tracker",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), 200 if overall else 503


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with database round-trip."""
    database = _database_check()
    ok = database["status"] == "ok"
    return jsonify({
        "status": "healthy" if ok else "degraded",
        "checks": {"database": database},
    }), 200 if ok else 503
