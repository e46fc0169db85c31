"""Core test fixtures.

Provides reusable fixtures for the Flask test client, Gmail API mocking,
fake mail clients, sample Walmart emails and an isolated result cache.

Log files are written to a temporary directory so test runs never touch
the application's .logs directory.
"""

import os
import tempfile
import threading
from collections import Counter
from pathlib import Path

import pytest
import responses

# CRITICAL: Set log directory BEFORE importing application modules
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="order-checker-logs-"))

from config import ScanConfig  # noqa: E402
from order_checker.gmail_client import MailMessage  # noqa: E402
from order_checker.message_cache import MessageCache  # noqa: E402

SAMPLE_EMAILS_DIR = Path(__file__).parent / "fixtures" / "sample_emails"


# ============================================================================
# TEST DATA HELPERS
# ============================================================================


def load_email_fixture(fixture_name: str) -> str:
    """Load email HTML fixture from sample_emails directory.

    Args:
        fixture_name: Name of email fixture file (e.g., 'shipped.html')

    Returns:
        str: HTML content of email fixture
    """
    file_path = SAMPLE_EMAILS_DIR / fixture_name

    if not file_path.exists():
        raise FileNotFoundError(f"Email fixture not found: {file_path}")

    with open(file_path, encoding="utf-8") as f:
        return f.read()


class WalmartEmails:
    """Builders for minimal Walmart messages in each template."""

    @staticmethod
    def confirmation(
        message_id: str,
        order_number: str,
        name: str = "Great Value Widget",
        quantity: int = 1,
        total: str = "$10.00",
        order_date: str = "Mon, Jan 15, 2024",
        preorder: bool = False,
    ) -> MailMessage:
        html = (
            "<html><body>"
            f"<div><div>Order date: {order_date}</div></div>"
            f'<p><a aria-label="Order number {order_number}" href="#">#{order_number}</a></p>'
            f'<img src="https://i5.walmartimages.com/asr/item.jpeg" alt="quantity {quantity} item {name}">'
            "<div><div><strong>Includes all fees, taxes, discounts and driver tip</strong></div>"
            f"<div><strong>{total}</strong></div></div>"
            "</body></html>"
        )
        subject = "Thanks for your preorder" if preorder else "Thanks for your order"
        return MailMessage(id=message_id, subject=subject, html_body=html)

    @staticmethod
    def canceled(message_id: str, order_number: str) -> MailMessage:
        return MailMessage(
            id=message_id,
            subject=f"Canceled: delivery from order #{order_number}",
            html_body="<html><body><p>Your delivery was canceled.</p></body></html>",
        )

    @staticmethod
    def shipped(message_id: str, order_number: str, tracking_number: str, arrives: str = "Arrives Fri, Jan 19") -> MailMessage:
        html = (
            "<html><body>"
            f'<p><a aria-label="Order number {order_number}" href="#">#{order_number}</a></p>'
            f"<strong>{arrives}</strong>"
            f'<span>FedEx tracking number <a href="#">{tracking_number}</a></span>'
            "</body></html>"
        )
        return MailMessage(id=message_id, subject="Shipped: 1 item", html_body=html)

    @staticmethod
    def delivered(message_id: str, order_number: str) -> MailMessage:
        html = f'<html><body><p>Order <a href="#">#{order_number}</a></p></body></html>'
        return MailMessage(id=message_id, subject="Delivered: 1 item", html_body=html)


class FakeMailClient:
    """In-memory stand-in for GmailClient.

    Args:
        messages: Messages returned by ID, listed in insertion order
        failures: message ID -> exceptions raised by successive fetches before succeeding
        list_error: Exception raised by every listing call
        block: Event that fetches of IDs in `blocked_ids` wait on
        blocked_ids: IDs whose fetch blocks until `block` is set
    """

    def __init__(self, messages=None, failures=None, list_error=None, block=None, blocked_ids=()):
        self.messages = {m.id: m for m in (messages or [])}
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.list_error = list_error
        self.block = block
        self.blocked_ids = set(blocked_ids)
        self.queries = []
        self.fetch_counts = Counter()
        self._lock = threading.Lock()

    def list_message_ids(self, query: str) -> list[str]:
        self.queries.append(query)
        if self.list_error is not None:
            raise self.list_error
        return list(self.messages)

    def get_message(self, message_id: str) -> MailMessage:
        with self._lock:
            self.fetch_counts[message_id] += 1
            pending = self.failures.get(message_id)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        if self.block is not None and message_id in self.blocked_ids:
            self.block.wait(timeout=30)
        return self.messages[message_id]


# ============================================================================
# DOMAIN FIXTURES
# ============================================================================


@pytest.fixture
def emails():
    """Builders for synthetic Walmart messages."""
    return WalmartEmails


@pytest.fixture
def sample_email():
    """Loader for real-shaped Walmart email HTML fixtures."""
    return load_email_fixture


@pytest.fixture
def fake_client_factory():
    """Factory for FakeMailClient instances."""
    return FakeMailClient


@pytest.fixture
def scan_config(tmp_path):
    """Fast scan configuration with an isolated cache path."""
    return ScanConfig(
        workers=4,
        fetch_max_attempts=5,
        backoff_initial_seconds=0.0,
        stall_threshold_seconds=30.0,
        watchdog_interval_seconds=0.05,
        cache_path=str(tmp_path / "cache"),
    )


@pytest.fixture
def message_cache(tmp_path):
    """Result cache in a temporary directory, closed after the test."""
    cache = MessageCache(str(tmp_path / "cache"))
    yield cache
    cache.close()


# ============================================================================
# FLASK FIXTURES
# ============================================================================


@pytest.fixture
def scan_service(scan_config, message_cache):
    """ScanService with no mail access configured; tests swap the factory as needed."""
    from services.scan_service import ScanService

    service = ScanService(
        get_mail_client=lambda user: FakeMailClient(),
        cache=message_cache,
        config=scan_config,
        sleep=lambda seconds: None,
    )
    yield service
    service.cancel()
    service.wait(timeout=5)


@pytest.fixture
def app(scan_service):
    """Flask app with test configuration around the scan_service fixture."""
    from app import create_app

    flask_app = create_app(scan_service)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests.

    Example:
        def test_health_endpoint(client):
            response = client.get('/api/health')
            assert response.status_code == 200
    """
    return app.test_client()


# ============================================================================
# API MOCKING FIXTURES
# ============================================================================


@pytest.fixture
def mock_responses():
    """Enable HTTP request mocking.

    Provides a responses.RequestsMock context manager that intercepts
    all HTTP requests made with the requests library.

    Yields:
        RequestsMock: HTTP request mocking context manager
    """
    with responses.RequestsMock() as rsps:
        yield rsps
