"""6pages parser.

6pages groups links under section headings and often labels them with
generic text ("Read", "here"); those links take their title from the nearest
heading above them, or the email subject when there is none.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from inboxbrief.ingestion.article_types import EMAIL_LINKS, ArticleCandidate, ParsedNewsletter, RawMessage
from inboxbrief.parsers.base import build_result, message_body
from inboxbrief.parsers.html_utils import (
    GENERIC_LINK_TEXT_RE,
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
        r"/preferences",
        r"6pages\.com/account",
        r"6pages\.com/signup",
        r"6pages\.com/login",
    )
]

HEADING_TAGS = ("h1", "h2", "h3", "strong")
MIN_LINK_TEXT_LENGTH = 3
DESCRIPTIVE_TEXT_LENGTH = 10


def _heading_text(tag) -> Optional[str]:
    text = node_text(tag)
    if 5 < len(text) < 200:
        return text
    return None


class SixPagesParser:
    source = "6pages"
    display_name = "6pages"

    def parse(self, message: RawMessage) -> ParsedNewsletter:
        body = message_body(message)
        if not body.strip():
            return build_result(self, message)

        candidates = self._extract_articles(body, message.subject)
        logger.info("[6pages] found %d article links in %r", len(candidates), message.subject)
        return build_result(self, message, candidates)

    def is_excluded(self, url: Optional[str], text: Optional[str]) -> bool:
        return is_excluded_link(url, text, EXCLUDED_PATTERNS)

    def _extract_articles(self, html: str, subject: str) -> List[ArticleCandidate]:
        soup = load_soup(html)
        candidates: List[ArticleCandidate] = []
        seen = set()
        heading: Optional[str] = None

        # One pass in document order: headings update the context the next anchors see.
        for tag in soup.find_all(True):
            if tag.name in HEADING_TAGS:
                heading = _heading_text(tag) or heading
                continue
            if tag.name != "a" or not tag.get("href"):
                continue

            url = tag["href"].strip()
            text = node_text(tag)
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

            title, inferred = text, False
            if len(text) < DESCRIPTIVE_TEXT_LENGTH or GENERIC_LINK_TEXT_RE.match(text):
                title, inferred = (heading or subject or ""), True
            title = clean_title(title)

            if not is_valid_article_title(title) or self.is_excluded(url, title):
                continue
            candidates.append(
                ArticleCandidate(
                    title=title,
                    url=url,
                    source_name=self.display_name,
                    extraction_method=EMAIL_LINKS,
                    title_inferred=inferred,
                )
            )
        return candidates


sixpages_parser = SixPagesParser()
