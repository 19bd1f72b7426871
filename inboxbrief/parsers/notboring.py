"""Not Boring (Substack) parser.

Essay-style posts: every outbound anchor with meaningful text is a candidate; when
the email links nowhere useful, the Substack post itself becomes the one candidate.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import List, Optional

from inboxbrief.ingestion.article_types import EMAIL_LINKS, ArticleCandidate, ParsedNewsletter, RawMessage
from inboxbrief.parsers.base import build_result, message_body
from inboxbrief.parsers.html_utils import (
    MANAGEMENT_LINK_PATTERNS,
    clean_title,
    is_asset_url,
    is_excluded_link,
    is_valid_article_title,
    load_soup,
    node_text,
)

logger = logging.getLogger(__name__)

EXCLUDED_PATTERNS = list(MANAGEMENT_LINK_PATTERNS) + [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"substack\.com/account",
        r"substack\.com/signup",
        r"substack\.com/subscribe",
        r"substack\.com/app-install",
        r"substack\.com/redirect/.*(subscribe|signup)",
    )
]

MIN_LINK_TEXT_LENGTH = 5
FALLBACK_TITLE = "Not Boring Newsletter"

_SUBSTACK_POST_RE = re.compile(r"https://[^\"'\s<>]+\.substack\.com/p/[^\"'\s<>]+", re.IGNORECASE)
_SPONSOR_SUFFIX_RE = re.compile(r"\s*\([^)]*sponsor[^)]*\)\s*", re.IGNORECASE)


class NotBoringParser:
    source = "notboring"
    display_name = "Not Boring"

    def parse(self, message: RawMessage) -> ParsedNewsletter:
        body = message_body(message)
        if not body.strip():
            return build_result(self, message)

        candidates = self._extract_articles(body, message.subject)
        logger.info("[notboring] found %d article links in %r", len(candidates), message.subject)
        return build_result(self, message, candidates)

    def is_excluded(self, url: Optional[str], text: Optional[str]) -> bool:
        return is_excluded_link(url, text, EXCLUDED_PATTERNS)

    def _clean_title(self, title: str) -> str:
        return clean_title(_SPONSOR_SUFFIX_RE.sub(" ", title))

    def _extract_articles(self, html: str, subject: str) -> List[ArticleCandidate]:
        soup = load_soup(html)
        candidates: List[ArticleCandidate] = []
        seen = set()

        for a in soup.find_all("a", href=True):
            url = a["href"].strip()
            text = node_text(a)
            if not url.lower().startswith(("http://", "https://")):
                continue
            if self.is_excluded(url, text) or len(text) < MIN_LINK_TEXT_LENGTH:
                continue
            key = url.lower()
            if key in seen:
                continue
            seen.add(key)
            if is_asset_url(url):
                continue

            title = self._clean_title(text)
            if not is_valid_article_title(title) or self.is_excluded(url, title):
                continue
            candidates.append(
                ArticleCandidate(
                    title=title,
                    url=url,
                    source_name=self.display_name,
                    extraction_method=EMAIL_LINKS,
                )
            )

        if not candidates:
            fallback = self._post_candidate(str(soup), subject)
            if fallback is not None:
                candidates.append(fallback)
        return candidates

    def _post_candidate(self, markup: str, subject: str) -> Optional[ArticleCandidate]:
        """Candidate for the Substack post itself, titled by the email subject."""
        m = _SUBSTACK_POST_RE.search(markup)
        if not m:
            return None
        url = html_lib.unescape(m.group(0))
        title = self._clean_title(subject or "")
        if not is_valid_article_title(title) or self.is_excluded(url, title):
            title = FALLBACK_TITLE
        if self.is_excluded(url, title):
            return None
        return ArticleCandidate(
            title=title,
            url=url,
            source_name=self.display_name,
            extraction_method=EMAIL_LINKS,
        )


notboring_parser = NotBoringParser()
