"""Routes package for API endpoints."""

from routes.health import health_bp
from routes.scan import scan_bp

__all__ = ["health_bp", "scan_bp"]
