"""TL;DR newsletter parser.

TL;DR is a link aggregator: every article is an anchor pointing at
tracking.tldrnewsletter.com with a "Title (N minute read)" label, followed by a
styled span holding the blurb. Sections are announced by fixed header strings.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from bs4.element import PageElement, Tag

from inboxbrief.ingestion.article_types import EMAIL_LINKS, ArticleCandidate, ParsedNewsletter, RawMessage
from inboxbrief.ingestion.url_utils import host_in, normalize_url
from inboxbrief.parsers.base import build_result, message_body
from inboxbrief.parsers.html_utils import (
    MANAGEMENT_LINK_PATTERNS,
    clean_text,
    clean_title,
    elements_after,
    is_excluded_link,
    is_text_node,
    is_valid_article_title,
    load_soup,
    node_text,
    truncate_text,
)

logger = logging.getLogger(__name__)

TRACKING_DOMAINS = ("tracking.tldrnewsletter.com",)

TLDR_SECTIONS = [
    "Headlines & Launches",
    "Deep Dives & Analysis",
    "Engineering & Resources",
    "Quick Links",
    "Big Tech & Startups",
    "Science & Futuristic Technology",
    "Programming, Design & Data Science",
    "Miscellaneous",
    "Opinions & Tutorials",
    "Launches & Tools",
    "Articles & Tutorials",
    "News & Trends",
]

EXCLUDED_PATTERNS = list(MANAGEMENT_LINK_PATTERNS) + [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/preferences",
        r"\badvertise\b",
        r"tldr\.tech/(signup|subscribe|account|referral)",
    )
]

# Sponsor and house-ad titles that carry no sponsor marker.
SPONSOR_TITLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^tldr$",
        r"^apply to",
        r"^claim your",
        r"early-stage startup",
        r"free year",
        r"free for",
    )
]

READING_TIME_RE = re.compile(r"^(.+?)\s*\((\d+)\s*min(?:ute)?s?\s*read\)\s*$", re.IGNORECASE)

_SPONSOR_RE = [
    re.compile(r"\[sponsor\]", re.IGNORECASE),
    re.compile(r"\(sponsor\)", re.IGNORECASE),
    re.compile(r"\bsponsored by\b", re.IGNORECASE),
    re.compile(r"\bsponsor\b", re.IGNORECASE),
]

MAX_DESCRIPTION_LENGTH = 500
MIN_DESCRIPTION_LENGTH = 20

_BLOCK_CONTAINERS = ["td", "div", "section", "article", "li"]


def _strip_sponsor(text: str) -> str:
    for pat in _SPONSOR_RE:
        text = pat.sub("", text)
    text = re.sub(r"^\s*[,.\-–—:]+\s*", "", text)
    return clean_text(text)


def _section_in(text: str) -> Optional[str]:
    t = clean_text(text)
    if not t:
        return None
    low = t.lower()
    for section in TLDR_SECTIONS:
        # Header strings carry at most an emoji or a short prefix around the name.
        if section.lower() in low and len(t) <= len(section) + 15:
            return section
    return None


class TLDRParser:
    source = "tldr"
    display_name = "TL;DR"

    def parse(self, message: RawMessage) -> ParsedNewsletter:
        body = message_body(message)
        if not body.strip():
            return build_result(self, message)

        candidates = self._extract_articles(body)
        logger.info("[tldr] parsed %d articles from %r", len(candidates), message.subject)
        return build_result(self, message, candidates)

    def is_excluded(self, url: Optional[str], text: Optional[str]) -> bool:
        return is_excluded_link(url, text, EXCLUDED_PATTERNS)

    def is_tracking_link(self, href: str) -> bool:
        return href.lower().startswith(("http://", "https://")) and host_in(href, TRACKING_DOMAINS)

    def _find_links(self, soup) -> List[Tuple[Tag, str, Optional[str]]]:
        """Qualifying tracking anchors in document order, with the section header seen before each."""
        links: List[Tuple[Tag, str, Optional[str]]] = []
        section: Optional[str] = None
        for el in soup.descendants:
            if is_text_node(el):
                if el.find_parent("a") is None:
                    section = _section_in(str(el)) or section
                continue
            if not isinstance(el, Tag) or el.name != "a":
                continue
            href = (el.get("href") or "").strip()
            if not self.is_tracking_link(href):
                continue
            text = node_text(el)
            if not is_valid_article_title(text, SPONSOR_TITLE_PATTERNS) or self.is_excluded(href, text):
                continue
            links.append((el, text, section))
        return links

    def _extract_description(self, anchor: Tag, stop: Optional[PageElement]) -> str:
        container = anchor.find_parent(_BLOCK_CONTAINERS)
        following = list(elements_after(anchor, container=container, stop=stop))

        for el in following:
            if isinstance(el, Tag) and el.name == "span" and "font-family" in (el.get("style") or "").lower():
                text = node_text(el)
                if len(text) > MIN_DESCRIPTION_LENGTH:
                    return truncate_text(_strip_sponsor(text), MAX_DESCRIPTION_LENGTH)

        text = clean_text(" ".join(str(el) for el in following if is_text_node(el)))
        return truncate_text(_strip_sponsor(text), MAX_DESCRIPTION_LENGTH)

    def _extract_articles(self, html: str) -> List[ArticleCandidate]:
        soup = load_soup(html)
        links = self._find_links(soup)
        logger.debug("[tldr] found %d potential article links", len(links))

        candidates: List[ArticleCandidate] = []
        seen = set()
        for i, (anchor, text, section) in enumerate(links):
            href = anchor.get("href").strip()
            key = normalize_url(href).lower()
            if key in seen:
                continue

            m = READING_TIME_RE.match(text)
            if m:
                title, reading_time = m.group(1).strip(), f"{m.group(2)} min read"
            else:
                title, reading_time = text, None
            title = clean_title(title)

            stop = links[i + 1][0] if i + 1 < len(links) else None
            description = self._extract_description(anchor, stop)

            if not is_valid_article_title(title, SPONSOR_TITLE_PATTERNS) or len(description) <= MIN_DESCRIPTION_LENGTH:
                continue
            if self.is_excluded(href, title):
                continue

            seen.add(key)
            candidates.append(
                ArticleCandidate(
                    title=title,
                    url=href,
                    summary=description,
                    source_name=self.display_name,
                    extraction_method=EMAIL_LINKS,
                    reading_time=reading_time,
                    section=section,
                )
            )
        return candidates


tldr_parser = TLDRParser()
