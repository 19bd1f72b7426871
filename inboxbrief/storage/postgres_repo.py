"""Postgres article repository.

Same interface as the SQLite `ArticleDatabase`, kept as plain psycopg + SQL.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from inboxbrief.ingestion.article_types import ArticleCandidate
from inboxbrief.ingestion.url_utils import article_key, normalize_url, url_hash


def _as_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _row_to_article(row: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(row)
    for k in ("newsletter_date",):
        if isinstance(out.get(k), date):
            out[k] = out[k].isoformat()
    for k in ("created_at", "updated_at"):
        if out.get(k) is not None:
            out[k] = out[k].isoformat()
    return out


class PostgresArticleRepo:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    def _connect(self, **kwargs):
        return psycopg.connect(self.pg_dsn, row_factory=dict_row, **kwargs)

    def article_exists_by_url(self, url: str) -> bool:
        if not url:
            return False
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT 1 FROM articles
                    WHERE source_url = %s OR canonical_url = %s OR url_hash = %s
                    LIMIT 1
                    """,
                    (url, normalize_url(url), url_hash(url)),
                )
                return cur.fetchone() is not None

    def article_exists_by_key(self, key: str) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM articles WHERE url_hash = %s LIMIT 1", (key,))
                return cur.fetchone() is not None

    def insert_article(self, candidate: ArticleCandidate) -> int:
        canonical = candidate.canonical_url or (normalize_url(candidate.url) if candidate.url else None)
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO articles (
                      title, summary, content, source_url, canonical_url, url_hash, source_name,
                      extraction_method, reading_time, section, title_inferred, newsletter_date, raw
                    )
                    VALUES (
                      %(title)s, %(summary)s, %(content)s, %(source_url)s, %(canonical_url)s, %(url_hash)s,
                      %(source_name)s, %(extraction_method)s, %(reading_time)s, %(section)s,
                      %(title_inferred)s, %(newsletter_date)s, %(raw)s
                    )
                    RETURNING id
                    """,
                    {
                        "title": candidate.title.strip(),
                        "summary": candidate.summary or "",
                        "content": candidate.content,
                        "source_url": candidate.url,
                        "canonical_url": canonical,
                        "url_hash": article_key(candidate),
                        "source_name": candidate.source_name,
                        "extraction_method": candidate.extraction_method,
                        "reading_time": candidate.reading_time,
                        "section": candidate.section,
                        "title_inferred": candidate.title_inferred,
                        "newsletter_date": _as_date(candidate.newsletter_date),
                        # Keep the parser output for provenance
                        "raw": Jsonb({k: v for k, v in asdict(candidate).items() if k != "content"}),
                    },
                )
                return int(cur.fetchone()["id"])

    def get_articles_by_date_range(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, title, summary, content, source_url, canonical_url, url_hash, source_name,
                           extraction_method, reading_time, section, title_inferred, newsletter_date,
                           final_url, created_at, updated_at
                    FROM articles
                    WHERE newsletter_date BETWEEN %s AND %s
                    ORDER BY newsletter_date DESC, id ASC
                    """,
                    (_as_date(start_date), _as_date(end_date)),
                )
                return [_row_to_article(r) for r in cur.fetchall()]

    def get_articles_missing_content(self, start_date: str, end_date: str, limit: int = 20) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, title, source_url, canonical_url, newsletter_date, created_at, updated_at
                    FROM articles
                    WHERE newsletter_date BETWEEN %s AND %s
                      AND source_url IS NOT NULL
                      AND (content IS NULL OR content = '')
                    ORDER BY id ASC
                    LIMIT %s
                    """,
                    (_as_date(start_date), _as_date(end_date), int(limit)),
                )
                return [_row_to_article(r) for r in cur.fetchall()]

    def update_article_content(self, article_id: int, content: str, final_url: Optional[str] = None) -> bool:
        with self._connect(autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE articles
                    SET content = %s, final_url = COALESCE(%s, final_url), updated_at = now()
                    WHERE id = %s
                    """,
                    (content, final_url, int(article_id)),
                )
                return cur.rowcount > 0

    def insert_aggregation(self, fields: Dict[str, Any], article_ids: Sequence[int] = ()) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO aggregations (start_date, end_date, summary, insights, themes, stats)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        _as_date(fields["start_date"]),
                        _as_date(fields["end_date"]),
                        fields.get("summary"),
                        fields.get("insights"),
                        Jsonb(fields.get("themes") or []),
                        Jsonb(fields.get("stats") or {}),
                    ),
                )
                aggregation_id = int(cur.fetchone()["id"])
                for a in article_ids:
                    cur.execute(
                        """
                        INSERT INTO aggregation_articles (aggregation_id, article_id)
                        VALUES (%s, %s)
                        ON CONFLICT DO NOTHING
                        """,
                        (aggregation_id, int(a)),
                    )
            conn.commit()
        return aggregation_id
