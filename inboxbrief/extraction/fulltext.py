"""Article content scraping: live redirect resolution, fetch, main-text extraction.

This is the only place that follows redirects over the network. Dedup keys never
depend on it (see `inboxbrief.ingestion.url_utils`).

Policy:
- Every URL (including each redirect hop) passes the SSRF checks before it is fetched.
- Nothing here raises for a per-URL failure: results carry `status`/`error`.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import urljoin, urlparse

import requests
import trafilatura

from inboxbrief.ingestion.url_utils import resolve_tracking_url
from inboxbrief.parsers.html_utils import clean_text, load_soup, render_text

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

MAX_CONTENT_LENGTH = 10_000
MIN_SENTENCE_CUT = 8_000
MAX_REDIRECTS = 5


@dataclass(frozen=True)
class ScrapeResult:
    url: str
    final_url: str
    content: str = ""
    title: Optional[str] = None
    excerpt: Optional[str] = None
    error: Optional[str] = None
    status: str = "ok"
    confidence: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "ok" and bool(self.content)


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _ip_or_none(hostname: str):
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        return None


def validate_fetch_url(url: str) -> Optional[str]:
    """Return an error code when the URL must not be fetched (SSRF/abuse protections)."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower() if p.netloc else ""
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain") or host.endswith(".localhost"):
        return "blocked_host"
    ip = _ip_or_none(host)
    if ip is not None and any(ip in net for net in _PRIVATE_NETS):
        return "blocked_private_ip"
    return None


def _redirect_target(resp: requests.Response, current: str) -> Optional[str]:
    if 300 <= resp.status_code < 400:
        location = resp.headers.get("location")
        if location:
            return urljoin(current, location)
    return None


def resolve_redirects(url: str, *, max_redirects: int = MAX_REDIRECTS, timeout: int = 10) -> str:
    """Follow HTTP redirects hop by hop (HEAD, GET fallback); returns the last safe URL reached."""
    current = url
    for _ in range(max(0, max_redirects)):
        if validate_fetch_url(current):
            break
        try:
            resp = requests.head(current, headers=REQUEST_HEADERS, allow_redirects=False, timeout=timeout)
        except requests.RequestException:
            try:
                resp = requests.get(
                    current, headers=REQUEST_HEADERS, allow_redirects=False, timeout=timeout, stream=True
                )
                resp.close()
            except requests.RequestException as e:
                logger.debug("Redirect resolution stopped at %s: %s", current, e)
                return current
        nxt = _redirect_target(resp, current)
        if not nxt or validate_fetch_url(nxt):
            return current
        current = nxt
    return current


def resolve_tracking_destination(url: str, *, timeout: int = 10) -> str:
    """Decode an embedded destination first, then follow live redirects from there."""
    decoded = resolve_tracking_url(url)
    return resolve_redirects(decoded or url, timeout=timeout)


def _limit_content(text: str) -> str:
    if len(text) <= MAX_CONTENT_LENGTH:
        return text
    text = text[:MAX_CONTENT_LENGTH]
    last_period = text.rfind(".")
    if last_period > MIN_SENTENCE_CUT:
        text = text[: last_period + 1]
    return text


def _confidence(text: str) -> float:
    # heuristic confidence by length
    n = len(text)
    if n >= 4000:
        return 0.95
    if n >= 1500:
        return 0.80
    if n >= 600:
        return 0.55
    return 0.30 if n else 0.0


def _meta_content(soup, **attrs) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return clean_text(tag["content"]) or None
    return None


def extract_article_content(html: str):
    """(title, content, excerpt) from a page; trafilatura first, tag heuristics as fallback."""
    soup = load_soup(html)

    title = None
    for node in (soup.find("title"), soup.find("h1")):
        if node is not None and clean_text(node.get_text(" ")):
            title = clean_text(node.get_text(" "))
            break
    if not title:
        title = _meta_content(soup, property="og:title")

    excerpt = _meta_content(soup, name="description") or _meta_content(soup, property="og:description")

    content = trafilatura.extract(html, include_comments=False, include_tables=False) or ""
    if not content.strip():
        root = (
            soup.find("article")
            or soup.find("main")
            or soup.find("div", class_=re.compile(r"article|content|post|entry|story", re.IGNORECASE))
            or soup.body
            or soup
        )
        content = render_text(root.descendants)
    return title, _limit_content(content.strip()), excerpt


def _read_limited(resp: requests.Response, max_bytes: int) -> Optional[bytes]:
    content = b""
    for chunk in resp.iter_content(chunk_size=64 * 1024):
        if not chunk:
            continue
        content += chunk
        if len(content) > max_bytes:
            return None
    return content


def scrape_article(url: str, *, timeout: int = 25, max_bytes: int = 2_000_000) -> ScrapeResult:
    """Fetch one article and extract its main text. Never raises."""
    if not url:
        return ScrapeResult(url="", final_url="", status="error", error="empty_url")
    err = validate_fetch_url(url)
    if err:
        return ScrapeResult(url=url, final_url=url, status="blocked", error=err)

    final_url = url
    try:
        final_url = resolve_tracking_destination(url, timeout=min(timeout, 10))
        err = validate_fetch_url(final_url)
        if err:
            return ScrapeResult(url=url, final_url=final_url, status="blocked", error=err)

        with requests.get(
            final_url, headers=REQUEST_HEADERS, timeout=(5, timeout), allow_redirects=True, stream=True
        ) as resp:
            if resp.status_code >= 400:
                return ScrapeResult(
                    url=url,
                    final_url=final_url,
                    status=f"http_{resp.status_code}",
                    error=f"HTTP {resp.status_code}: {resp.reason}",
                )
            raw = _read_limited(resp, max_bytes)
            if raw is None:
                return ScrapeResult(url=url, final_url=final_url, status="too_large", error="too_large")
            html = raw.decode(resp.encoding or "utf-8", errors="replace")
        if not html.strip():
            return ScrapeResult(url=url, final_url=final_url, status="empty", error="empty_html")

        title, content, excerpt = extract_article_content(html)
        if not content:
            return ScrapeResult(
                url=url, final_url=final_url, title=title, excerpt=excerpt, status="no_extract", error="no_extract"
            )
        return ScrapeResult(
            url=url,
            final_url=final_url,
            title=title,
            content=content,
            excerpt=excerpt,
            status="ok",
            confidence=_confidence(content),
        )
    except (requests.RequestException, LookupError, ValueError) as e:
        logger.warning("Scrape failed for %s: %s", url, e)
        return ScrapeResult(url=url, final_url=final_url, status="error", error=str(e))


def scrape_articles(
    urls: Sequence[str],
    *,
    delay: float = 1.0,
    max_concurrent: int = 3,
    timeout: int = 25,
) -> List[ScrapeResult]:
    """Scrape in batches of `max_concurrent`, pausing `delay` seconds between batches."""
    results: List[ScrapeResult] = []
    step = max(1, int(max_concurrent))
    for i in range(0, len(urls), step):
        for url in urls[i : i + step]:
            results.append(scrape_article(url, timeout=timeout))
        if i + step < len(urls):
            time.sleep(max(0.0, delay))
    ok = sum(1 for r in results if r.ok)
    logger.info("Scraped %d/%d articles", ok, len(results))
    return results
