"""
Scan Routes - Flask Blueprint

Handles order scan endpoints: start, status, report and cache maintenance.
Routes are thin controllers that delegate to the ScanService stored on the app.
"""

from flask import Blueprint, current_app, jsonify, request

from order_checker.error_tracking import AuthError, CacheError, ScanAlreadyRunningError
from order_checker.logging_config import get_logger

logger = get_logger(__name__)

scan_bp = Blueprint("scan", __name__, url_prefix="/api")


def _service():
    return current_app.extensions["scan_service"]


@scan_bp.route("/scan", methods=["POST"])
def start_scan():
    """
    Start a background scan.

    Body (JSON, optional):
        user (str): Mailbox to scan (default: "me")
        days (int): Window in days (default: 10, max: 365)
        clear_cache (bool): Drop cached results first (default: false)

    Returns:
        202 {"status": "scan_started", "scan_id": ...}
        409 if a scan is already running
    """
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    days = data.get("days")
    if days is not None and (isinstance(days, bool) or not isinstance(days, int)):
        return jsonify({"error": "days must be an integer"}), 400

    user = data.get("user") or "me"
    clear_cache = bool(data.get("clear_cache", False))

    try:
        scan_id = _service().start_scan(user, days=days, clear_cache=clear_cache)
    except ScanAlreadyRunningError as e:
        return jsonify({"error": str(e)}), 409
    except AuthError as e:
        return jsonify({"error": str(e)}), 401
    except CacheError as e:
        logger.error(f"Start scan error: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    return jsonify({"status": "scan_started", "scan_id": scan_id}), 202


@scan_bp.route("/scan/status", methods=["GET"])
def scan_status():
    """Progress of the current or last scan."""
    return jsonify(_service().get_status())


@scan_bp.route("/scan/report", methods=["GET"])
def scan_report():
    """
    Analytics for the last scan with results.

    Returns:
        Report JSON, or 404 if no scan has produced results
    """
    try:
        return jsonify(_service().get_report())
    except LookupError as e:
        return jsonify({"error": str(e)}), 404


@scan_bp.route("/cache/stats", methods=["GET"])
def cache_stats():
    try:
        return jsonify(_service().cache_stats())
    except CacheError as e:
        logger.error(f"Cache stats error: {e}", exc_info=True)
        return jsonify({"error": "Failed to get cache stats"}), 500


@scan_bp.route("/cache/clear", methods=["POST"])
def clear_cache():
    try:
        _service().clear_cache()
    except CacheError as e:
        logger.error(f"Cache clear error: {e}", exc_info=True)
        return jsonify({"error": "Failed to clear cache"}), 500
    return jsonify({"status": "cache_cleared"})
