"""Integration tests for the Gmail REST client.

All HTTP traffic is intercepted with responses; no network access.
"""

import base64

import pytest
import requests
import responses
from responses import matchers
from google.auth.transport.requests import AuthorizedSession

from order_checker.error_tracking import ExtractionError, PermanentMailError, TransientMailError
from order_checker.gmail_client import (
    GMAIL_API_BASE,
    GmailClient,
    build_gmail_session,
    build_scan_query,
    decode_base64,
    find_html_part,
    parse_message,
)

MESSAGES_URL = f"{GMAIL_API_BASE}/users/me/messages"


def encode(html: str) -> str:
    return base64.urlsafe_b64encode(html.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_error(status: int, reason: str) -> dict:
    return {"error": {"code": status, "message": reason, "errors": [{"reason": reason}]}}


@pytest.fixture
def gmail_client():
    return GmailClient(requests.Session())


# ============================================================================
# QUERY AND DECODING
# ============================================================================


def test_build_scan_query():
    assert build_scan_query(30) == (
        'from:help@walmart.com subject:("thanks for your preorder" OR "thanks for your order" '
        'OR "Canceled: delivery from order" OR "was canceled" OR "Shipped:" OR "Arrived:" '
        'OR "Delivered:") newer_than:30d'
    )


def test_decode_base64_accepts_both_alphabets_and_missing_padding():
    html = "<p>Order café total</p>"
    urlsafe = base64.urlsafe_b64encode(html.encode()).decode().rstrip("=")
    standard = base64.standard_b64encode(html.encode()).decode()

    assert decode_base64(urlsafe) == html
    assert decode_base64(standard) == html


def test_decode_base64_rejects_garbage():
    with pytest.raises(ExtractionError):
        decode_base64("a")


def test_find_html_part_walks_depth_first():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/plain", "body": {"size": 5, "data": encode("plain")}},
                    {"mimeType": "text/html", "body": {"size": 0}},
                    {"mimeType": "text/html", "body": {"size": 11, "data": encode("<p>first</p>")}},
                ],
            },
            {"mimeType": "text/html", "body": {"size": 12, "data": encode("<p>second</p>")}},
        ],
    }
    assert decode_base64(find_html_part(payload)) == "<p>first</p>"


def test_parse_message_without_html_part():
    message = parse_message(
        {
            "id": "m1",
            "threadId": "t1",
            "internalDate": "1705312800000",
            "payload": {
                "mimeType": "text/plain",
                "headers": [{"name": "Subject", "value": "Thanks for your order"}],
                "body": {"size": 5, "data": encode("plain")},
            },
        }
    )

    assert message.id == "m1"
    assert message.subject == "Thanks for your order"
    assert message.html_body is None
    assert message.received_at.year == 2024


def test_build_gmail_session():
    session = build_gmail_session("access-token", "refresh-token")

    assert isinstance(session, AuthorizedSession)
    assert session.credentials.token == "access-token"
    assert session.credentials.refresh_token == "refresh-token"


# ============================================================================
# LISTING
# ============================================================================


def test_list_message_ids_follows_pagination(gmail_client, mock_responses):
    mock_responses.add(
        responses.GET,
        MESSAGES_URL,
        json={"messages": [{"id": "a"}, {"id": "b"}], "nextPageToken": "page-2"},
        match=[matchers.query_param_matcher({"q": "query", "maxResults": "100"})],
    )
    mock_responses.add(
        responses.GET,
        MESSAGES_URL,
        json={"messages": [{"id": "c"}]},
        match=[
            matchers.query_param_matcher({"q": "query", "maxResults": "100", "pageToken": "page-2"})
        ],
    )

    assert gmail_client.list_message_ids("query") == ["a", "b", "c"]


def test_list_with_no_results(gmail_client, mock_responses):
    mock_responses.add(responses.GET, MESSAGES_URL, json={"resultSizeEstimate": 0})
    assert gmail_client.list_message_ids("query") == []


# ============================================================================
# FETCHING AND ERROR CLASSIFICATION
# ============================================================================


def test_get_message_decodes_html(gmail_client, mock_responses):
    html = "<html><body>Thanks</body></html>"
    mock_responses.add(
        responses.GET,
        f"{MESSAGES_URL}/m1",
        json={
            "id": "m1",
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": [{"name": "Subject", "value": "Shipped: 1 item"}],
                "parts": [{"mimeType": "text/html", "body": {"size": len(html), "data": encode(html)}}],
            },
        },
        match=[matchers.query_param_matcher({"format": "full"})],
    )

    message = gmail_client.get_message("m1")
    assert message.subject == "Shipped: 1 item"
    assert message.html_body == html


@pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
def test_transient_status_codes(gmail_client, mock_responses, status):
    mock_responses.add(responses.GET, f"{MESSAGES_URL}/m1", json={}, status=status)

    with pytest.raises(TransientMailError) as exc_info:
        gmail_client.get_message("m1")
    assert exc_info.value.status_code == status


@pytest.mark.parametrize("reason", ["rateLimitExceeded", "userRateLimitExceeded", "backendError"])
def test_transient_reasons_on_403(gmail_client, mock_responses, reason):
    mock_responses.add(responses.GET, f"{MESSAGES_URL}/m1", json=gmail_error(403, reason), status=403)

    with pytest.raises(TransientMailError) as exc_info:
        gmail_client.get_message("m1")
    assert exc_info.value.reason == reason


def test_not_found_is_permanent(gmail_client, mock_responses):
    mock_responses.add(responses.GET, f"{MESSAGES_URL}/m1", json=gmail_error(404, "notFound"), status=404)

    with pytest.raises(PermanentMailError):
        gmail_client.get_message("m1")


def test_connection_error_is_transient(gmail_client, mock_responses):
    mock_responses.add(responses.GET, f"{MESSAGES_URL}/m1", body=requests.ConnectionError("reset"))

    with pytest.raises(TransientMailError):
        gmail_client.get_message("m1")


def test_invalid_json_is_permanent(gmail_client, mock_responses):
    mock_responses.add(responses.GET, f"{MESSAGES_URL}/m1", body="not json", status=200)

    with pytest.raises(PermanentMailError):
        gmail_client.get_message("m1")
