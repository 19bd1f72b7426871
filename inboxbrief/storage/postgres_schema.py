"""Postgres schema management for InboxBrief.

Schema creation is idempotent (CREATE IF NOT EXISTS) and safe to run at every
worker start.
"""

from __future__ import annotations

from typing import Iterable, Optional

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS articles (
      id BIGSERIAL PRIMARY KEY,
      title TEXT NOT NULL,
      summary TEXT,
      content TEXT,
      source_url TEXT UNIQUE,
      canonical_url TEXT,
      url_hash TEXT NOT NULL UNIQUE,
      source_name TEXT,
      extraction_method TEXT NOT NULL DEFAULT 'email_links',
      reading_time TEXT,
      section TEXT,
      title_inferred BOOLEAN,
      newsletter_date DATE,
      final_url TEXT,
      raw JSONB,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    # Backward-compatible column adds (safe if table already exists)
    "ALTER TABLE articles ADD COLUMN IF NOT EXISTS final_url TEXT;",
    "ALTER TABLE articles ADD COLUMN IF NOT EXISTS title_inferred BOOLEAN;",
    "CREATE INDEX IF NOT EXISTS idx_articles_newsletter_date ON articles (newsletter_date DESC);",
    "CREATE INDEX IF NOT EXISTS idx_articles_canonical_url ON articles (canonical_url);",
    "CREATE INDEX IF NOT EXISTS idx_articles_source_name ON articles (source_name);",
    """
    CREATE TABLE IF NOT EXISTS aggregations (
      id BIGSERIAL PRIMARY KEY,
      start_date DATE NOT NULL,
      end_date DATE NOT NULL,
      summary TEXT,
      insights TEXT,
      themes JSONB,
      stats JSONB,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_aggregations_created_at ON aggregations (created_at DESC);",
    """
    CREATE TABLE IF NOT EXISTS aggregation_articles (
      aggregation_id BIGINT NOT NULL REFERENCES aggregations(id) ON DELETE CASCADE,
      article_id BIGINT NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
      PRIMARY KEY (aggregation_id, article_id)
    );
    """,
]


def ensure_postgres_schema(pg_dsn: str, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
