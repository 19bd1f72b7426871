"""Gmail adapter: newsletter messages from an authorized Gmail API service.

OAuth consent flows are out of scope; `load_gmail_service` only loads an existing
authorized-user token. The Google client libraries are an optional extra
(`pip install inboxbrief[gmail]`) and are imported lazily.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from inboxbrief.config import retry_with_backoff
from inboxbrief.ingestion.article_types import RawMessage
from inboxbrief.parsers.registry import extract_sender_email

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
PAGE_SIZE = 100


def build_sender_query(senders: Sequence[str], start: datetime, end: datetime) -> str:
    """Gmail search query for any of `senders` within [start, end)."""
    sender_query = " OR ".join(f"from:{s}" for s in senders)
    return f"({sender_query}) after:{int(start.timestamp())} before:{int(end.timestamp())}"


def _decode_base64url(data: Optional[str]) -> Optional[str]:
    if not data:
        return None
    padding = "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(data + padding)
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="replace")


def _walk_payload_parts(payload: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    yield payload
    for part in payload.get("parts", []) or []:
        yield from _walk_payload_parts(part)


def extract_message_bodies(payload: Optional[Dict[str, Any]]) -> Tuple[str, str]:
    """(html_body, text_body) decoded from a Gmail MIME payload tree."""
    html_chunks: List[str] = []
    text_chunks: List[str] = []
    for part in _walk_payload_parts(payload or {}):
        mime_type = str(part.get("mimeType", "")).lower()
        decoded = _decode_base64url((part.get("body") or {}).get("data"))
        if not decoded:
            continue
        if mime_type == "text/html":
            html_chunks.append(decoded)
        elif mime_type == "text/plain":
            text_chunks.append(decoded)
    return "\n".join(html_chunks).strip(), "\n".join(text_chunks).strip()


def _header(headers: List[Dict[str, Any]], name: str) -> str:
    target = name.lower()
    for h in headers:
        if str(h.get("name", "")).lower() == target:
            return str(h.get("value") or "")
    return ""


def message_from_payload(message: Dict[str, Any]) -> RawMessage:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    html_body, text_body = extract_message_bodies(payload)
    return RawMessage(
        id=str(message.get("id") or ""),
        thread_id=str(message.get("threadId") or ""),
        subject=_header(headers, "Subject"),
        from_header=_header(headers, "From"),
        date=_header(headers, "Date"),
        html_body=html_body,
        text_body=text_body,
    )


class GmailMailbox:
    """Read-only newsletter fetcher over a `googleapiclient` Gmail service."""

    def __init__(self, service, user_id: str = "me"):
        self.service = service
        self.user_id = user_id

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    def _list_page(self, query: str, page_token: Optional[str]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"userId": self.user_id, "q": query, "maxResults": PAGE_SIZE}
        if page_token:
            kwargs["pageToken"] = page_token
        return self.service.users().messages().list(**kwargs).execute() or {}

    @retry_with_backoff(max_retries=2, base_delay=1.0)
    def _get_message(self, message_id: str) -> Dict[str, Any]:
        return self.service.users().messages().get(userId=self.user_id, id=message_id, format="full").execute()

    def fetch_newsletter_emails(self, start: datetime, end: datetime, senders: Sequence[str]) -> List[RawMessage]:
        if not senders:
            return []
        query = build_sender_query(senders, start, end)
        logger.info("[gmail] fetching newsletters from %d senders, %s to %s", len(senders), start.date(), end.date())

        messages: List[RawMessage] = []
        page_token: Optional[str] = None
        while True:
            page = self._list_page(query, page_token)
            for ref in page.get("messages") or []:
                message_id = ref.get("id")
                if not message_id:
                    continue
                try:
                    detail = self._get_message(message_id)
                except Exception as e:
                    logger.error("[gmail] error fetching message %s: %s", message_id, e)
                    continue
                messages.append(message_from_payload(detail))
            page_token = page.get("nextPageToken")
            if not page_token:
                break

        counts = Counter(extract_sender_email(m.from_header) or m.from_header for m in messages)
        logger.info("[gmail] fetched %d total emails", len(messages))
        for sender, n in counts.items():
            logger.info("[gmail]   - %s: %d", sender, n)
        return messages


def load_gmail_service(token_path: str):
    """Gmail API service from an existing authorized-user token file."""
    try:
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build
    except ImportError as exc:
        raise RuntimeError(
            "Missing Google API dependencies. Install with: pip install 'inboxbrief[gmail]'"
        ) from exc

    token_file = Path(token_path)
    if not token_file.exists():
        raise RuntimeError(f"Gmail token not found at {token_file}; authorize the account first")

    creds = Credentials.from_authorized_user_file(str(token_file), GMAIL_SCOPES)
    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
        token_file.write_text(creds.to_json(), encoding="utf-8")
    return build("gmail", "v1", credentials=creds, cache_discovery=False)
