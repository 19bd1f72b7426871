"""Article-level dedup over persisted rows: exact URL, then embedding similarity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from inboxbrief.config import retry_with_backoff
from inboxbrief.ingestion.url_utils import normalize_url

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_THRESHOLD = 0.90
EMBED_BATCH_SIZE = 100


@dataclass(frozen=True)
class DedupResult:
    unique_articles: List[Dict[str, Any]] = field(default_factory=list)
    removed_count: int = 0
    removed_ids: List[Any] = field(default_factory=list)


def quick_deduplicate_by_url(articles: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the first row per normalized URL (final URL when scraped); URL-less rows are kept."""
    seen = set()
    out: List[Dict[str, Any]] = []
    for a in articles:
        url = a.get("final_url") or a.get("source_url")
        if not url:
            out.append(a)
            continue
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        out.append(a)
    return out


def article_embedding_text(article: Dict[str, Any]) -> str:
    parts = [a for a in (article.get("title"), article.get("summary")) if isinstance(a, str) and a.strip()]
    if not parts and article.get("content"):
        parts.append(str(article["content"])[:1000])
    return "\n".join(p.strip() for p in parts)[:8000]


@retry_with_backoff(max_retries=3, base_delay=2.0)
def _embed_batch(client, model: str, texts: List[str]) -> List[List[float]]:
    response = client.embeddings.create(model=model, input=texts)
    return [d.embedding for d in response.data]


def embed_texts(client, texts: Sequence[str], model: str = DEFAULT_EMBEDDING_MODEL) -> np.ndarray:
    vectors: List[List[float]] = []
    for i in range(0, len(texts), EMBED_BATCH_SIZE):
        # the API rejects empty strings
        batch = [t or " " for t in texts[i : i + EMBED_BATCH_SIZE]]
        vectors.extend(_embed_batch(client, model, batch))
    return np.array(vectors, dtype=np.float32)


def cosine_similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = vectors / norms
    return unit @ unit.T


def deduplicate_articles(
    client,
    articles: Sequence[Dict[str, Any]],
    threshold: float = DEFAULT_THRESHOLD,
    model: str = DEFAULT_EMBEDDING_MODEL,
) -> DedupResult:
    """Drop articles whose embedding is at least `threshold` similar to an earlier kept one.

    First-seen wins. When embeddings cannot be computed the input comes back unchanged.
    """
    items = list(articles)
    if len(items) < 2:
        return DedupResult(unique_articles=items)

    try:
        vectors = embed_texts(client, [article_embedding_text(a) for a in items], model=model)
    except Exception as e:
        logger.error(f"Semantic dedup skipped, embedding failed: {e}")
        return DedupResult(unique_articles=items)
    if vectors.shape[0] != len(items):
        logger.error("Semantic dedup skipped: got %d embeddings for %d articles", vectors.shape[0], len(items))
        return DedupResult(unique_articles=items)

    sims = cosine_similarity_matrix(vectors)
    kept: List[int] = []
    removed_ids: List[Optional[Any]] = []
    for i in range(len(items)):
        if any(sims[i, j] >= threshold for j in kept):
            removed_ids.append(items[i].get("id"))
            continue
        kept.append(i)

    unique = [items[i] for i in kept]
    removed = len(items) - len(unique)
    if removed:
        logger.info("Semantic dedup removed %d of %d articles (threshold %.2f)", removed, len(items), threshold)
    return DedupResult(unique_articles=unique, removed_count=removed, removed_ids=removed_ids)
