import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from order_checker.logging_config import get_logger
from routes import health_bp, scan_bp
from services.scan_service import ScanService, build_scan_service

# Load .env from project root (parent directory)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

logger = get_logger(__name__)

# Get frontend URL from environment, default to localhost:5173
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")


def create_app(service: ScanService = None) -> Flask:
    """
    Build the Flask app around a ScanService.

    Args:
        service: Scan service to expose; built from the environment if omitted
    """
    app = Flask(__name__)

    CORS(
        app,
        origins=[FRONTEND_URL, "http://127.0.0.1:5173"],
        supports_credentials=True,
    )

    app.config["SECRET_KEY"] = os.getenv("FLASK_SECRET_KEY", os.urandom(32).hex())
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024

    app.extensions["scan_service"] = service or build_scan_service()

    app.register_blueprint(health_bp)
    app.register_blueprint(scan_bp)

    return app


if __name__ == "__main__":
    app = create_app()

    logger.info("Walmart order checker starting")
    logger.info("API available at: http://localhost:5000")

    app.run(debug=False, use_reloader=False, host="0.0.0.0", port=5000)
