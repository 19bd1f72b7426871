"""HTML helpers shared by the newsletter parsers.

Parsers work on a BeautifulSoup tree (document order stands in for string
positions) with the noise blocks removed up front.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Iterator, Optional, Pattern, Sequence

from bs4 import BeautifulSoup
from bs4.element import CData, Comment, Declaration, Doctype, NavigableString, PageElement, ProcessingInstruction, Tag

from inboxbrief.ingestion.url_utils import host_in, resolve_tracking_url


NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside"]

_NON_TEXT_STRINGS = (Comment, CData, Declaration, Doctype, ProcessingInstruction)

SOCIAL_DOMAINS = (
    "twitter.com",
    "x.com",
    "facebook.com",
    "linkedin.com",
    "instagram.com",
    "youtube.com",
    "threads.net",
    "tiktok.com",
)

# Account-management, sharing and mailer-infrastructure links common to every source.
MANAGEMENT_LINK_PATTERNS: Sequence[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"unsubscribe",
        r"manage.*subscription",
        r"manage.*preferences",
        r"email.*preferences",
        r"\bview[\s_-]*(in[\s_-]*(your[\s_-]*)?browser|online)\b",
        r"^mailto:",
        r"^tel:",
        r"share.*email",
        r"share.*(twitter|facebook|linkedin)",
        r"refer.*friend",
        r"referral",
        r"cdn-cgi",
        r"list-manage\.com",
        r"click\.convertkit",
        r"email\.mg\.",
    )
]

ASSET_URL_RE = re.compile(r"\.(png|jpg|jpeg|gif|svg|webp|ico|css|js)(\?|$)", re.IGNORECASE)

# Link text that says nothing about the article behind it.
GENERIC_LINK_TEXT_RE = re.compile(
    r"^(read|more|here|link|click|read more|click here|learn more|see more|continue reading|full story)\W*$",
    re.IGNORECASE,
)

MIN_TITLE_LENGTH = 10
MAX_TITLE_LENGTH = 300

INVALID_TITLE_PATTERNS: Sequence[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^sign up$",
        r"^advertise$",
        r"^view online$",
        r"^read more$",
        r"^click here$",
        r"^subscribe$",
        r"^unsubscribe$",
        r"^view in browser$",
        r"^sponsor$",
        r"^advertisement$",
        r"^ad$",
        r"^\d+$",
        r"^share$",
        r"^forward$",
        r"^manage preferences$",
        r"^privacy policy$",
        r"^terms",
        r"^together with",
        r"\(sponsor\)",
        r"\(sponsored\)",
    )
]

_BLOCK_TAGS = {
    "p", "div", "br", "tr", "table", "section", "article", "blockquote", "ul", "ol",
    "h1", "h2", "h3", "h4", "h5", "h6",
}


def load_soup(markup: str) -> BeautifulSoup:
    """Parse markup and drop comments plus script/style/nav/footer/header/aside blocks."""
    soup = BeautifulSoup(markup or "", "lxml")
    for c in soup.find_all(string=lambda s: isinstance(s, Comment)):
        c.extract()
    for tag in soup.find_all(NOISE_TAGS):
        tag.extract()
    return soup


def is_text_node(el: PageElement) -> bool:
    return isinstance(el, NavigableString) and not isinstance(el, _NON_TEXT_STRINGS)


def clean_text(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def node_text(node: Optional[PageElement]) -> str:
    if node is None:
        return ""
    if isinstance(node, Tag):
        return clean_text(node.get_text(" "))
    return clean_text(str(node))


def _within(el: PageElement, container: Tag) -> bool:
    return any(p is container for p in el.parents)


def elements_after(
    node: PageElement,
    *,
    container: Optional[Tag] = None,
    stop: Optional[PageElement] = None,
) -> Iterator[PageElement]:
    """Yield elements following `node` in document order, skipping its own subtree.

    Ends at `stop`, or at the first element outside `container`.
    """
    inside = {id(d) for d in node.descendants} if isinstance(node, Tag) else set()
    for el in node.next_elements:
        if stop is not None and el is stop:
            return
        if id(el) in inside:
            continue
        if container is not None and not _within(el, container):
            return
        yield el


def render_text(elements: Iterable[PageElement]) -> str:
    """Flatten a stream of elements to plain text with paragraph breaks and bullets."""
    parts = []
    for el in elements:
        if isinstance(el, Tag):
            if el.name == "li":
                parts.append("\n• ")
            elif el.name == "p":
                parts.append("\n\n")
            elif el.name in _BLOCK_TAGS:
                parts.append("\n")
        elif is_text_node(el):
            parts.append(re.sub(r"\s+", " ", str(el)))
    text = "".join(parts)
    text = re.sub(r"[ \t]*\n[ \t]*", "\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate_text(text: str, max_length: int) -> str:
    """Cut at the last sentence end when it is far enough in, else hard-cut with an ellipsis."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_period = truncated.rfind(".")
    if last_period > max_length * 0.6:
        return truncated[: last_period + 1]
    return truncated.strip() + "..."


def clean_title(title: str) -> str:
    t = clean_text(title)
    t = re.sub(r"^[-–—•]\s*", "", t)
    t = re.sub(r"\s*[-–—•]$", "", t)
    t = re.sub(r"^read more:?\s*", "", t, flags=re.IGNORECASE)
    t = re.sub(r"^click here:?\s*", "", t, flags=re.IGNORECASE)
    return t.strip()


def matches_any(value: Optional[str], patterns: Sequence[Pattern[str]]) -> bool:
    v = value or ""
    return any(p.search(v) for p in patterns)


def is_asset_url(url: str) -> bool:
    return bool(ASSET_URL_RE.search(url or ""))


def is_excluded_link(url: Optional[str], text: Optional[str], patterns: Sequence[Pattern[str]]) -> bool:
    """Navigation/social/management link check over the href, its unwrapped destination and the link text."""
    href = (url or "").strip()
    destination = resolve_tracking_url(href) if href else ""
    if host_in(href, SOCIAL_DOMAINS) or host_in(destination, SOCIAL_DOMAINS):
        return True
    if href.endswith("#") or href.startswith("#"):
        return True
    return matches_any(href, patterns) or matches_any(destination, patterns) or matches_any(text, patterns)


def is_valid_article_title(title: str, extra_patterns: Sequence[Pattern[str]] = ()) -> bool:
    t = (title or "").strip()
    if len(t) < MIN_TITLE_LENGTH or len(t) > MAX_TITLE_LENGTH:
        return False
    return not matches_any(t, INVALID_TITLE_PATTERNS) and not matches_any(t, extra_patterns)


def parse_email_date(value: Optional[str], *, today: Optional[date] = None) -> str:
    """RFC 2822 or ISO-8601 date header -> ISO calendar date (UTC); today when unparseable."""
    s = (value or "").strip()
    dt: Optional[datetime] = None
    if s:
        try:
            dt = parsedate_to_datetime(s)
        except (TypeError, ValueError, IndexError, OverflowError):
            dt = None
        if dt is None:
            try:
                dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                dt = None
    if dt is not None:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        try:
            return dt.astimezone(timezone.utc).date().isoformat()
        except (OverflowError, ValueError):
            # offset pushes the instant outside datetime range
            pass
    return (today or datetime.now(timezone.utc).date()).isoformat()
