"""Offline mail source: raw messages from a JSON export file."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import List, Optional, Sequence

from inboxbrief.ingestion.article_types import RawMessage
from inboxbrief.parsers.registry import extract_sender_email

logger = logging.getLogger(__name__)


def load_messages_json(path: str) -> List[RawMessage]:
    """Raw messages from a JSON array export (camelCase or snake_case keys)."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("messages") or []
    return [RawMessage.from_dict(d) for d in data if isinstance(d, dict)]


def _message_datetime(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        return None


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _sender_matches(sender: str, senders: Sequence[str]) -> bool:
    domain = sender.rsplit("@", 1)[-1]
    for s in senders:
        s = s.lower()
        if "@" in s:
            if sender == s:
                return True
        elif domain == s or domain.endswith("." + s):
            return True
    return False


class JsonExportMailbox:
    """Mailbox over an exported message file, filtered the way a sender query would be.

    Messages with an unparseable date are kept; their date falls back downstream.
    """

    def __init__(self, path: str):
        self.path = path

    def fetch_newsletter_emails(self, start: datetime, end: datetime, senders: Sequence[str]) -> List[RawMessage]:
        messages = load_messages_json(self.path)
        start, end = _aware(start), _aware(end)
        out: List[RawMessage] = []
        for m in messages:
            if senders and not _sender_matches(extract_sender_email(m.from_header), senders):
                continue
            dt = _message_datetime(m.date)
            if dt is not None and not (start <= dt < end):
                continue
            out.append(m)
        logger.info("[json-export] %d of %d messages from %s in range", len(out), len(messages), self.path)
        return out
