"""Shared ingestion data types.

RawMessage is what the mail collaborator hands us; ArticleCandidate is what every
newsletter parser emits. Both are immutable: the orchestrator stamps
`newsletter_date`/`canonical_url` with `dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


EMAIL_LINKS = "email_links"
EMAIL_INLINE = "email_inline"
EXTRACTION_METHODS = (EMAIL_LINKS, EMAIL_INLINE)


@dataclass(frozen=True)
class RawMessage:
    id: str
    thread_id: str = ""
    subject: str = ""
    from_header: str = ""
    date: str = ""
    html_body: str = ""
    text_body: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawMessage":
        """Accept both the camelCase mail-export shape and snake_case keys."""
        return cls(
            id=str(data.get("id") or ""),
            thread_id=str(data.get("threadId") or data.get("thread_id") or ""),
            subject=str(data.get("subject") or ""),
            from_header=str(data.get("from") or data.get("from_header") or ""),
            date=str(data.get("date") or ""),
            html_body=str(data.get("htmlBody") or data.get("html_body") or ""),
            text_body=str(data.get("textBody") or data.get("text_body") or ""),
        )


@dataclass(frozen=True)
class ArticleCandidate:
    """Normalized candidate article (pre-persistence).

    Link-extracted candidates carry a URL and get their body from the scraper later;
    inline candidates carry the full text in `content` and may have no URL.
    """

    title: str
    url: Optional[str]
    summary: str = ""
    source_name: str = ""
    extraction_method: str = EMAIL_LINKS
    content: Optional[str] = None
    reading_time: Optional[str] = None
    section: Optional[str] = None
    title_inferred: Optional[bool] = None
    newsletter_date: Optional[str] = None
    canonical_url: Optional[str] = None

    def is_valid(self) -> bool:
        if not (self.title or "").strip():
            return False
        if self.extraction_method == EMAIL_LINKS:
            return bool((self.url or "").strip())
        if self.extraction_method == EMAIL_INLINE:
            return bool((self.content or "").strip())
        return False


@dataclass(frozen=True)
class ParsedNewsletter:
    newsletter_source: str
    email_subject: str
    published_at: str
    candidates: List[ArticleCandidate] = field(default_factory=list)
