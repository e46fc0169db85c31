"""
Minimal health check endpoint

Reports whether the result cache is reachable and whether a scan is running.
"""

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from order_checker.error_tracking import CacheError

health_bp = Blueprint("health", __name__, url_prefix="/api")


def check_cache() -> bool:
    """True if the result cache answers a stats query."""
    try:
        current_app.extensions["scan_service"].cache_stats()
        return True
    except CacheError:
        return False


@health_bp.route("/health", methods=["GET"])
def health_check():
    """
    Returns:
        200: Service is healthy
        503: Result cache is unavailable
    """
    cache_ok = check_cache()
    body = {
        "status": "ok" if cache_ok else "degraded",
        "cache": cache_ok,
        "scan_in_progress": current_app.extensions["scan_service"].progress.in_progress,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return jsonify(body), 200 if cache_ok else 503
