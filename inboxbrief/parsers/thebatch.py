"""The Batch (DeepLearning.AI) parser.

The Batch carries whole articles inside the email, so candidates are inline:
each content block's leading heading becomes the title and the text after it the
content. A link inside the block is attached when one exists, but it is optional.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from bs4.element import Tag

from inboxbrief.ingestion.article_types import EMAIL_INLINE, ArticleCandidate, ParsedNewsletter, RawMessage
from inboxbrief.parsers.base import build_result, message_body
from inboxbrief.parsers.html_utils import (
    MANAGEMENT_LINK_PATTERNS,
    is_excluded_link,
    is_valid_article_title,
    load_soup,
    matches_any,
    node_text,
    elements_after,
    render_text,
    truncate_text,
)

logger = logging.getLogger(__name__)

BOILERPLATE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"unsubscribe",
        r"manage.*preferences",
        r"\bview[\s_-]*in[\s_-]*(your[\s_-]*)?browser\b",
        r"privacy\s*policy",
        r"terms\s*of\s*service",
        r"all\s*rights\s*reserved",
        r"copyright",
        r"\bfollow\s*us\b",
        r"\bconnect\s*with\s*us\b",
        r"\bsubscribe\b",
        r"\bsign[\s-]*up\b",
        r"deeplearning\.ai.*logo",
        r"forward.*to.*(a\s*)?friend",
        r"\bshare\s*this\b",
        r"\bsponsored\b",
        r"\badvertisement\b",
    )
]

EXCLUDED_URL_PATTERNS = list(MANAGEMENT_LINK_PATTERNS) + [
    re.compile(r"preferences", re.IGNORECASE),
]

HEADER_TAGS = ["h1", "h2", "h3", "h4", "strong", "b"]
MIN_DIV_TEXT_LENGTH = 200
MIN_CONTENT_LENGTH = 100
MIN_FALLBACK_LENGTH = 200
SUMMARY_LENGTH = 300
FALLBACK_TITLE = "The Batch Newsletter"


class _Section:
    __slots__ = ("title", "content", "block", "header")

    def __init__(self, title: str, content: str, block: Tag, header: Optional[Tag]):
        self.title = title
        self.content = content
        self.block = block
        self.header = header


def is_boilerplate(text: str) -> bool:
    return matches_any(text, BOILERPLATE_PATTERNS)


class TheBatchParser:
    source = "thebatch"
    display_name = "The Batch"

    def parse(self, message: RawMessage) -> ParsedNewsletter:
        body = message_body(message)
        if not body.strip():
            return build_result(self, message)

        candidates = self._extract_inline_articles(body)
        logger.info("[thebatch] extracted %d inline articles from %r", len(candidates), message.subject)
        return build_result(self, message, candidates)

    def is_excluded(self, url: Optional[str], text: Optional[str]) -> bool:
        if url and is_excluded_link(url, None, EXCLUDED_URL_PATTERNS):
            return True
        return is_boilerplate(text or "")

    def _content_blocks(self, soup) -> List[Tag]:
        """Leaf table cells first, then leaf divs with substantial text."""
        # Layout cells wrapping the whole issue would swallow every article under the first header.
        cells = [td for td in soup.find_all("td") if td.find("td") is None]
        divs = [
            d
            for d in soup.find_all("div")
            if d.find("div") is None and len(node_text(d)) > MIN_DIV_TEXT_LENGTH
        ]
        return cells + divs

    def _parse_block(self, block: Tag) -> Optional[_Section]:
        header = block.find(HEADER_TAGS)
        if header is None:
            return None
        title = node_text(header)
        if not title or is_boilerplate(title):
            return None

        content = render_text(elements_after(header, container=block))
        if len(content) < MIN_CONTENT_LENGTH or is_boilerplate(content):
            return None
        return _Section(title, content, block, header)

    def _fallback_section(self, soup) -> Optional[_Section]:
        root = soup.body or soup
        content = render_text(root.descendants)
        if len(content) < MIN_FALLBACK_LENGTH:
            return None
        first = soup.find(["h1", "h2", "h3", "h4"])
        title = node_text(first) if first is not None else ""
        return _Section(title or FALLBACK_TITLE, content, root, None)

    def _section_url(self, section: _Section) -> Optional[str]:
        """First outbound, non-boilerplate link inside the block after its header."""
        if section.header is not None:
            elements = elements_after(section.header, container=section.block)
        else:
            elements = section.block.descendants
        for el in elements:
            if not isinstance(el, Tag) or el.name != "a":
                continue
            url = (el.get("href") or "").strip()
            if not url.lower().startswith("http"):
                continue
            if is_excluded_link(url, None, EXCLUDED_URL_PATTERNS):
                continue
            return url
        return None

    def _extract_sections(self, soup) -> List[_Section]:
        sections: List[_Section] = []
        for block in self._content_blocks(soup):
            section = self._parse_block(block)
            if section is None:
                continue
            if any(s.title == section.title or s.content == section.content for s in sections):
                continue
            sections.append(section)

        if not sections:
            fallback = self._fallback_section(soup)
            if fallback is not None:
                sections.append(fallback)
        return sections

    def _extract_inline_articles(self, html: str) -> List[ArticleCandidate]:
        soup = load_soup(html)
        candidates: List[ArticleCandidate] = []
        for section in self._extract_sections(soup):
            title = section.title
            if not is_valid_article_title(title) or is_boilerplate(title):
                continue
            candidates.append(
                ArticleCandidate(
                    title=title,
                    url=self._section_url(section),
                    summary=truncate_text(section.content, SUMMARY_LENGTH),
                    content=section.content,
                    source_name=self.display_name,
                    extraction_method=EMAIL_INLINE,
                )
            )
        return candidates


thebatch_parser = TheBatchParser()
