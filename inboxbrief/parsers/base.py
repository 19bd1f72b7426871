"""Parser capability shared by every newsletter source.

Parsers are stateless; one instance per source is shared by the registry.
`parse` must not raise for empty or malformed bodies: it returns a ParsedNewsletter
with no candidates instead.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from inboxbrief.ingestion.article_types import ArticleCandidate, ParsedNewsletter, RawMessage
from inboxbrief.parsers.html_utils import parse_email_date


class NewsletterParser(Protocol):
    source: str
    display_name: str

    def parse(self, message: RawMessage) -> ParsedNewsletter:
        ...


def message_body(message: RawMessage) -> str:
    """HTML body when it has any content, plain text otherwise."""
    if (message.html_body or "").strip():
        return message.html_body
    return message.text_body or ""


def build_result(
    parser: NewsletterParser,
    message: RawMessage,
    candidates: Optional[List[ArticleCandidate]] = None,
) -> ParsedNewsletter:
    return ParsedNewsletter(
        newsletter_source=parser.source,
        email_subject=message.subject,
        published_at=parse_email_date(message.date),
        candidates=list(candidates or []),
    )
