"""
Gmail API Client Module

Thin wrapper over the Gmail REST API for the order scan:
- Paginated message listing for a search query
- Full message fetch with HTML part lookup and base64 decoding
- Classification of failures into transient (retryable) and permanent errors

Retries are not done here; the scan pipeline owns the retry loop so the
per-message attempt count stays explicit.
"""

import base64
import binascii
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests
from dotenv import load_dotenv
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials

from order_checker.error_tracking import ExtractionError, PermanentMailError, TransientMailError

# Load environment variables (Docker env vars take precedence)
load_dotenv(override=False)

# Google OAuth configuration (needed for automatic token refresh)
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Gmail API base URL
GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1"

REQUEST_TIMEOUT = 60
PAGE_SIZE = 100

DEFAULT_SENDER = "help@walmart.com"

# Subject fragments of every Walmart template the scan understands
SCAN_SUBJECTS = [
    "thanks for your preorder",
    "thanks for your order",
    "Canceled: delivery from order",
    "was canceled",
    "Shipped:",
    "Arrived:",
    "Delivered:",
]

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
TRANSIENT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "backendError"}


@dataclass
class MailMessage:
    """The parts of a Gmail message the extractors need."""
    id: str
    subject: str
    html_body: Optional[str]
    received_at: Optional[datetime] = None


def build_gmail_session(access_token: str, refresh_token: str = None) -> AuthorizedSession:
    """
    Build Gmail API session with credentials.

    Args:
        access_token: Valid OAuth access token
        refresh_token: Optional refresh token for automatic refresh

    Returns:
        AuthorizedSession object for making Gmail API requests
    """
    credentials = Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=GOOGLE_TOKEN_URL,
        client_id=os.getenv("GOOGLE_CLIENT_ID"),
        client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
    )
    return AuthorizedSession(credentials)


def build_scan_query(days: int, sender: str = DEFAULT_SENDER) -> str:
    """
    Build Gmail search query for Walmart order emails.

    Args:
        days: Size of the trailing window in days
        sender: Walmart sender address

    Returns:
        Gmail search query string
    """
    subjects = " OR ".join(f'"{subject}"' for subject in SCAN_SUBJECTS)
    return f"from:{sender} subject:({subjects}) newer_than:{int(days)}d"


def decode_base64(data: str) -> str:
    """
    Decode a Gmail body payload.

    Gmail uses URL-safe base64 without padding, but forwarded or re-encoded
    parts sometimes use the standard alphabet, so accept both and repair padding.

    Raises:
        ExtractionError: if no decoding succeeds
    """
    trimmed = data.strip().replace("\n", "").replace("\r", "")
    padded = trimmed + "=" * (-len(trimmed) % 4)

    for decoder in (base64.urlsafe_b64decode, base64.standard_b64decode):
        try:
            raw = decoder(padded.encode("ascii"))
        except (binascii.Error, ValueError):
            continue
        return raw.decode("utf-8", errors="replace")

    raise ExtractionError("base64 decode failed")


def find_html_part(part: Optional[dict]) -> str:
    """Depth-first search for the first non-empty text/html body (still encoded)."""
    if not part:
        return ""

    mime_type = part.get("mimeType", "")
    body = part.get("body") or {}
    if mime_type == "text/html" and body.get("size", 0) > 0 and body.get("data"):
        return body["data"]

    if mime_type.startswith("multipart/"):
        for sub in part.get("parts") or []:
            html = find_html_part(sub)
            if html:
                return html
    return ""


def get_subject(headers: list) -> str:
    for header in headers or []:
        if header.get("name") == "Subject":
            return header.get("value", "")
    return ""


def parse_message(message: dict) -> MailMessage:
    """
    Turn a format=full Gmail message resource into a MailMessage.

    Raises:
        ExtractionError: if the HTML part is present but cannot be decoded
    """
    payload = message.get("payload") or {}
    encoded = find_html_part(payload)
    html_body = decode_base64(encoded) if encoded else None

    received_at = None
    internal_date = message.get("internalDate")
    if internal_date:
        received_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)

    return MailMessage(
        id=message.get("id", ""),
        subject=get_subject(payload.get("headers")),
        html_body=html_body,
        received_at=received_at,
    )


def _error_reason(response: requests.Response) -> Optional[str]:
    try:
        errors = response.json().get("error", {}).get("errors") or []
    except ValueError:
        return None
    return errors[0].get("reason") if errors else None


def classify_http_error(error: requests.HTTPError):
    """Map an HTTP failure to TransientMailError or PermanentMailError."""
    response = error.response
    status = response.status_code if response is not None else None
    reason = _error_reason(response) if response is not None else None

    if status in TRANSIENT_STATUS_CODES or reason in TRANSIENT_REASONS:
        return TransientMailError(str(error), status_code=status, reason=reason)
    return PermanentMailError(str(error), status_code=status, reason=reason)


class GmailClient:
    """Authenticated Gmail API handle for one mailbox."""

    def __init__(self, session: requests.Session, user: str = "me"):
        self.session = session
        self.user = user

    def _get(self, path: str, params: dict = None) -> dict:
        url = f"{GMAIL_API_BASE}/users/{self.user}/{path}"
        try:
            response = self.session.request("GET", url, params=params, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            raise classify_http_error(e) from e
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientMailError(f"Gmail request failed: {e}") from e
        except requests.RequestException as e:
            raise PermanentMailError(f"Gmail request failed: {e}") from e
        except ValueError as e:
            raise PermanentMailError(f"Gmail returned invalid JSON: {e}") from e

    def list_page(self, query: str, page_token: str = None, max_results: int = PAGE_SIZE) -> dict:
        """
        One page of message IDs matching `query`.

        Returns:
            Dictionary with 'message_ids' list and 'next_page_token'
        """
        params = {"q": query, "maxResults": min(max_results, 500)}
        if page_token:
            params["pageToken"] = page_token

        result = self._get("messages", params=params)
        return {
            "message_ids": [m["id"] for m in result.get("messages", [])],
            "next_page_token": result.get("nextPageToken"),
        }

    def list_message_ids(self, query: str) -> list[str]:
        """Follow pagination to exhaustion."""
        message_ids = []
        page_token = None
        while True:
            page = self.list_page(query, page_token=page_token)
            message_ids.extend(page["message_ids"])
            page_token = page["next_page_token"]
            if not page_token:
                return message_ids

    def get_message(self, message_id: str) -> MailMessage:
        """
        Fetch a full message and decode its HTML part.

        Raises:
            TransientMailError: rate limit / backend error (retryable)
            PermanentMailError: any other API failure
            ExtractionError: the HTML part could not be decoded
        """
        message = self._get(f"messages/{message_id}", params={"format": "full"})
        return parse_message(message)
