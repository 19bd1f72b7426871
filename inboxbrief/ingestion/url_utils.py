"""URL canonicalization helpers for ingestion/dedup.

Everything here is a pure string transform: no network calls, so dedup keys are
deterministic for a given input. Following live redirects belongs to the scraper
(`inboxbrief.extraction.fulltext.resolve_redirects`).
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from inboxbrief.ingestion.article_types import ArticleCandidate


DEFAULT_STRIP_QUERY_PARAMS = {
    # misc common trackers
    "gclid",
    "dclid",
    "fbclid",
    "msclkid",
    "yclid",
    "igshid",
    "mkt_tok",
    "_hsenc",
    "_hsmi",
    "oly_anon_id",
    "oly_enc_id",
    "vero_id",
    "vero_conv",
    "sc_cid",
    "trk",
    "ref",
    "ref_src",
    "ref_url",
    "source",
}

# Any key starting with one of these is tracking (utm_source, mc_cid, mc_eid, ...).
TRACKING_PARAM_PREFIXES = ("utm_", "mc_", "hsa_", "pk_", "piwik_", "matomo_")

# Query keys redirect services use to carry the destination.
REDIRECT_QUERY_KEYS = (
    "url",
    "u",
    "redirect",
    "redirect_url",
    "redirect_uri",
    "target",
    "dest",
    "destination",
    "to",
    "link",
)

MAX_TRACKING_HOPS = 5

# A destination URL percent-encoded inside another URL's path, e.g.
# https://tracking.tldrnewsletter.com/CL0/https:%2F%2Fexample.com%2Fa/1/0100...
_ENCODED_URL_IN_PATH = re.compile(r"https?(?::|%3A)%2F%2F[^/\s\"'<>]+", re.IGNORECASE)

_DEFAULT_PORTS = (":80", ":443")


def _is_tracking_param(key: str, strip: set) -> bool:
    k = key.lower()
    return k in strip or k.startswith(TRACKING_PARAM_PREFIXES)


def _is_absolute_http(url: str) -> bool:
    try:
        p = urlsplit(url)
    except ValueError:
        return False
    return p.scheme.lower() in ("http", "https") and bool(p.netloc)


def canonicalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize a URL for dedup.

    - Force https, lowercase hostname, drop default ports
    - Remove fragments
    - Strip tracking query parameters, keep the rest in original order

    Never raises: anything that does not look like an absolute http(s) URL comes
    back stripped but otherwise unchanged.
    """
    if not url:
        return ""
    raw = url.strip()
    strip = {s.lower() for s in strip_params} if strip_params is not None else set(DEFAULT_STRIP_QUERY_PARAMS)
    try:
        p = urlsplit("https:" + raw if raw.startswith("//") else raw)
        scheme = p.scheme.lower()
        if scheme not in ("http", "https") or not p.netloc:
            return raw

        netloc = p.netloc.lower()
        if netloc.endswith(_DEFAULT_PORTS):
            netloc = netloc.rsplit(":", 1)[0]
        path = p.path or "/"

        kept = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if not _is_tracking_param(k, strip)]
        query = urlencode(kept, doseq=True)
        return urlunsplit(("https", netloc, path, query, ""))
    except ValueError:
        return raw


def _embedded_destination(url: str) -> Optional[str]:
    """Return the destination a tracking URL wraps, or None."""
    try:
        p = urlsplit(url)
    except ValueError:
        return None

    for k, v in parse_qsl(p.query, keep_blank_values=True):
        if k.lower() in REDIRECT_QUERY_KEYS and _is_absolute_http(v.strip()):
            return v.strip()

    m = _ENCODED_URL_IN_PATH.search(p.path or "")
    if m:
        try:
            candidate = unquote(m.group(0), errors="strict")
        except UnicodeDecodeError:
            return None
        if _is_absolute_http(candidate):
            return candidate
    return None


def resolve_tracking_url(url: str, *, max_hops: int = MAX_TRACKING_HOPS) -> str:
    """Unwrap redirect/tracking URLs by decoding the destination they embed.

    Follows at most `max_hops` levels of wrapping; returns the input when no
    embedded destination is found.
    """
    if not url:
        return ""
    current = url.strip()
    for _ in range(max(0, max_hops)):
        nxt = _embedded_destination(current)
        if not nxt or nxt == current:
            break
        current = nxt
    return current


def normalize_url(url: str) -> str:
    """Dedup key: tracking resolution followed by canonicalization."""
    return canonicalize_url(resolve_tracking_url(url))


def url_hash(url: str) -> str:
    """Stable hash for a normalized URL."""
    canon = normalize_url(url)
    return hashlib.sha256(canon.encode("utf-8")).hexdigest()


def article_key(candidate: ArticleCandidate) -> str:
    """Storage identity: URL hash, or a hash of source/date/title for URL-less inline articles."""
    if candidate.url:
        return url_hash(candidate.url)
    raw = f"inline|{candidate.source_name}|{candidate.newsletter_date or ''}|{candidate.title.strip().lower()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def url_host(url: Optional[str]) -> str:
    try:
        return (urlsplit(url or "").hostname or "").lower()
    except ValueError:
        return ""


def host_in(url: Optional[str], domains: Sequence[str]) -> bool:
    """True when the URL's host is one of `domains` or a subdomain of one."""
    host = url_host(url)
    if not host:
        return False
    return any(host == d or host.endswith("." + d) for d in domains)


def deduplicate_candidates_by_url(candidates: Sequence[ArticleCandidate]) -> List[ArticleCandidate]:
    """Keep the first candidate per normalized URL.

    Candidates without a URL (inline-only) are always kept.
    """
    seen = set()
    out: List[ArticleCandidate] = []
    for c in candidates:
        if not c.url:
            out.append(c)
            continue
        key = normalize_url(c.url)
        if key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


def add_canonical_urls(candidates: Sequence[ArticleCandidate]) -> List[ArticleCandidate]:
    return [replace(c, canonical_url=normalize_url(c.url)) if c.url else c for c in candidates]
