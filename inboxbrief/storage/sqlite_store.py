"""
SQLite article store: persisted newsletter articles and AI aggregations.
Default storage backend; the Postgres repo mirrors its interface.
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from inboxbrief.contracts.insights import parse_structured_insights
from inboxbrief.ingestion.article_types import ArticleCandidate
from inboxbrief.ingestion.url_utils import article_key, normalize_url, url_hash

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations"""
    pass


def _utcnow() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat()


class ArticleDatabase:
    """SQLite manager for newsletter articles and aggregations"""

    def __init__(self, db_path: str = "newsletters.db"):
        self.db_path = db_path
        self.max_retries = 3
        self.retry_delay = 1.0
        self._ensure_db_directory()
        self.init_database()

    def _ensure_db_directory(self):
        """Ensure database directory exists"""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

    def init_database(self):
        """Create tables and indexes (idempotent)"""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    summary TEXT,
                    content TEXT,
                    source_url TEXT UNIQUE,
                    canonical_url TEXT,
                    url_hash TEXT UNIQUE NOT NULL,
                    source_name TEXT,
                    extraction_method TEXT NOT NULL DEFAULT 'email_links',
                    reading_time TEXT,
                    section TEXT,
                    title_inferred BOOLEAN,
                    newsletter_date TEXT,
                    final_url TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS aggregations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    summary TEXT,
                    insights TEXT,
                    themes_json TEXT,
                    stats_json TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS aggregation_articles (
                    aggregation_id INTEGER NOT NULL,
                    article_id INTEGER NOT NULL,
                    PRIMARY KEY (aggregation_id, article_id),
                    FOREIGN KEY (aggregation_id) REFERENCES aggregations(id) ON DELETE CASCADE,
                    FOREIGN KEY (article_id) REFERENCES articles(id) ON DELETE CASCADE
                )
            ''')

            indexes = [
                'CREATE INDEX IF NOT EXISTS idx_articles_newsletter_date ON articles(newsletter_date)',
                'CREATE INDEX IF NOT EXISTS idx_articles_canonical ON articles(canonical_url)',
                'CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_name)',
                'CREATE INDEX IF NOT EXISTS idx_aggregations_created ON aggregations(created_at)',
            ]
            for index_sql in indexes:
                try:
                    cursor.execute(index_sql)
                except sqlite3.OperationalError as e:
                    logger.warning(f"Failed to create index: {e}")

            conn.commit()
            logger.info("Article database initialized at %s", self.db_path)

    def _connect(self) -> sqlite3.Connection:
        for attempt in range(self.max_retries):
            try:
                conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute('PRAGMA foreign_keys=ON;')
                conn.execute('PRAGMA journal_mode=WAL;')
                conn.execute('PRAGMA synchronous=NORMAL;')
                return conn
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and attempt < self.max_retries - 1:
                    logger.warning(f"Database locked, retrying in {self.retry_delay}s (attempt {attempt + 1})")
                    time.sleep(self.retry_delay)
                    continue
                raise DatabaseError(f"Database connection failed: {e}")
        raise DatabaseError("Database connection failed")

    @contextmanager
    def get_connection(self):
        """Get database connection with retries on a locked database"""
        conn = self._connect()
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database operation failed: {e}")
        finally:
            conn.close()

    # --- articles -------------------------------------------------------

    def article_exists_by_url(self, url: str) -> bool:
        """True when an article was stored under this original or canonical URL."""
        if not url:
            return False
        with self.get_connection() as conn:
            row = conn.execute(
                'SELECT 1 FROM articles WHERE source_url = ? OR canonical_url = ? OR url_hash = ? LIMIT 1',
                (url, normalize_url(url), url_hash(url)),
            ).fetchone()
            return row is not None

    def article_exists_by_key(self, key: str) -> bool:
        with self.get_connection() as conn:
            row = conn.execute('SELECT 1 FROM articles WHERE url_hash = ? LIMIT 1', (key,)).fetchone()
            return row is not None

    def insert_article(self, candidate: ArticleCandidate) -> int:
        """Insert one candidate; returns the new row id."""
        canonical = candidate.canonical_url or (normalize_url(candidate.url) if candidate.url else None)
        title_inferred = None if candidate.title_inferred is None else int(bool(candidate.title_inferred))
        now = _utcnow()
        with self.get_connection() as conn:
            cursor = conn.execute('''
                INSERT INTO articles
                (title, summary, content, source_url, canonical_url, url_hash, source_name,
                 extraction_method, reading_time, section, title_inferred, newsletter_date,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                candidate.title.strip(),
                candidate.summary or "",
                candidate.content,
                candidate.url,
                canonical,
                article_key(candidate),
                candidate.source_name,
                candidate.extraction_method,
                candidate.reading_time,
                candidate.section,
                title_inferred,
                candidate.newsletter_date,
                now,
                now,
            ))
            conn.commit()
            return int(cursor.lastrowid)

    def get_articles_by_date_range(self, start_date: str, end_date: str) -> List[Dict]:
        """Articles whose newsletter date falls in [start_date, end_date] (ISO dates)."""
        with self.get_connection() as conn:
            rows = conn.execute('''
                SELECT * FROM articles
                WHERE newsletter_date >= ? AND newsletter_date <= ?
                ORDER BY newsletter_date DESC, id ASC
            ''', (start_date[:10], end_date[:10])).fetchall()
            return [self._row_to_article(r) for r in rows]

    def get_articles_missing_content(self, start_date: str, end_date: str, limit: int = 20) -> List[Dict]:
        """Link-extracted articles in range that have no scraped body yet."""
        with self.get_connection() as conn:
            rows = conn.execute('''
                SELECT * FROM articles
                WHERE newsletter_date >= ? AND newsletter_date <= ?
                  AND source_url IS NOT NULL
                  AND (content IS NULL OR content = '')
                ORDER BY id ASC
                LIMIT ?
            ''', (start_date[:10], end_date[:10], limit)).fetchall()
            return [self._row_to_article(r) for r in rows]

    def update_article_content(self, article_id: int, content: str, final_url: Optional[str] = None) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute('''
                UPDATE articles
                SET content = ?, final_url = COALESCE(?, final_url), updated_at = ?
                WHERE id = ?
            ''', (content, final_url, _utcnow(), article_id))
            conn.commit()
            return cursor.rowcount > 0

    def get_article_by_id(self, article_id: int) -> Optional[Dict]:
        with self.get_connection() as conn:
            row = conn.execute('SELECT * FROM articles WHERE id = ?', (article_id,)).fetchone()
            return self._row_to_article(row) if row else None

    @staticmethod
    def _row_to_article(row: sqlite3.Row) -> Dict:
        article = dict(row)
        if article.get("title_inferred") is not None:
            article["title_inferred"] = bool(article["title_inferred"])
        return article

    # --- aggregations ---------------------------------------------------

    def insert_aggregation(self, fields: Dict[str, Any], article_ids: Sequence[int] = ()) -> int:
        """Store one aggregation run and link the articles it covered."""
        with self.get_connection() as conn:
            cursor = conn.execute('''
                INSERT INTO aggregations (start_date, end_date, summary, insights, themes_json, stats_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', (
                fields["start_date"],
                fields["end_date"],
                fields.get("summary"),
                fields.get("insights"),
                json.dumps(fields.get("themes") or []),
                json.dumps(fields.get("stats") or {}),
                _utcnow(),
            ))
            aggregation_id = int(cursor.lastrowid)
            conn.executemany(
                'INSERT OR IGNORE INTO aggregation_articles (aggregation_id, article_id) VALUES (?, ?)',
                [(aggregation_id, a) for a in article_ids],
            )
            conn.commit()
            logger.info("Stored aggregation %d covering %d articles", aggregation_id, len(article_ids))
            return aggregation_id

    def get_aggregation(self, aggregation_id: int) -> Optional[Dict]:
        """Aggregation row with decoded themes/stats and its article ids."""
        with self.get_connection() as conn:
            row = conn.execute('SELECT * FROM aggregations WHERE id = ?', (aggregation_id,)).fetchone()
            if not row:
                return None
            ids = [
                r["article_id"]
                for r in conn.execute(
                    'SELECT article_id FROM aggregation_articles WHERE aggregation_id = ? ORDER BY article_id',
                    (aggregation_id,),
                ).fetchall()
            ]
        return self._row_to_aggregation(row, ids)

    def get_recent_aggregations(self, limit: int = 10) -> List[Dict]:
        with self.get_connection() as conn:
            rows = conn.execute(
                'SELECT * FROM aggregations ORDER BY created_at DESC, id DESC LIMIT ?', (limit,)
            ).fetchall()
            return [self._row_to_aggregation(r) for r in rows]

    @staticmethod
    def _row_to_aggregation(row: sqlite3.Row, article_ids: Optional[List[int]] = None) -> Dict:
        agg = dict(row)
        agg["themes"] = json.loads(agg.pop("themes_json") or "[]")
        agg["stats"] = json.loads(agg.pop("stats_json") or "{}")
        agg["structured_insights"] = parse_structured_insights(agg.get("insights"))
        if article_ids is not None:
            agg["article_ids"] = article_ids
        return agg
