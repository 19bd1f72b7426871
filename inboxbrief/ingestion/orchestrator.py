"""Ingestion orchestrator: raw messages -> parsed, deduplicated, persisted articles.

Messages are processed one at a time in input order so per-message telemetry is
strictly ordered; the storage phase runs after the whole batch has been parsed and
deduplicated. Per-item failures are counted, never raised.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from inboxbrief.ingestion.article_types import ArticleCandidate, RawMessage
from inboxbrief.ingestion.url_utils import add_canonical_urls, article_key, deduplicate_candidates_by_url
from inboxbrief.parsers.registry import ParserRegistry

logger = logging.getLogger(__name__)
telemetry_logger = logging.getLogger("inboxbrief.ingestion.telemetry")

LEVEL_INFO = "INFO"
LEVEL_WARN = "WARN"
LEVEL_ERROR = "ERROR"

_LOG_LEVELS = {LEVEL_INFO: logging.INFO, LEVEL_WARN: logging.WARNING, LEVEL_ERROR: logging.ERROR}


class ArticleStore(Protocol):
    def article_exists_by_url(self, url: str) -> bool:
        ...

    def article_exists_by_key(self, key: str) -> bool:
        ...

    def insert_article(self, candidate: ArticleCandidate) -> int:
        ...


@dataclass
class IngestionResult:
    processed: int = 0
    saved: int = 0
    skipped: int = 0
    deduped: int = 0
    errors: int = 0
    messages: int = 0
    unmatched: int = 0
    message_logs: List[Dict[str, Any]] = field(default_factory=list)
    batch_log: Dict[str, Any] = field(default_factory=dict)
    saved_ids: List[int] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "saved": self.saved,
            "skipped": self.skipped,
            "deduped": self.deduped,
            "errors": self.errors,
        }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _emit(record: Dict[str, Any]) -> None:
    telemetry_logger.log(_LOG_LEVELS.get(record.get("level"), logging.INFO), json.dumps(record, ensure_ascii=False))


def _message_level(errors: Sequence[str], matched: bool, emitted: int) -> str:
    if errors:
        return LEVEL_ERROR
    if matched and emitted == 0:
        return LEVEL_WARN
    return LEVEL_INFO


class NewsletterIngestor:
    """Runs one batch of raw messages through routing, parsing, dedup and storage."""

    def __init__(self, registry: ParserRegistry, store: ArticleStore):
        self.registry = registry
        self.store = store

    def process_messages(self, messages: Sequence[RawMessage]) -> IngestionResult:
        result = IngestionResult(messages=len(messages))
        batch: List[ArticleCandidate] = []

        for message in messages:
            batch.extend(self._process_message(message, result))

        unique = self._deduplicate(batch, result)
        for candidate in unique:
            self._persist(candidate, result)

        result.batch_log = {
            "event": "batch_summary",
            "messages": result.messages,
            "unmatched": result.unmatched,
            "processed": result.processed,
            "saved": result.saved,
            "skipped": result.skipped,
            "deduped": result.deduped,
            "errors": result.errors,
            "timestamp": _now_iso(),
            "level": LEVEL_ERROR if result.errors else LEVEL_INFO,
        }
        _emit(result.batch_log)
        logger.info(
            "Ingestion batch done: %d added, %d skipped as duplicates, %d deduped in batch, %d errors",
            result.saved,
            result.skipped,
            result.deduped,
            result.errors,
        )
        return result

    def _process_message(self, message: RawMessage, result: IngestionResult) -> List[ArticleCandidate]:
        record: Dict[str, Any] = {
            "message_id": message.id,
            "from": message.from_header,
            "subject": message.subject,
            "newsletter_source": None,
            "parser_name": None,
            "candidates_extracted_count": 0,
            "candidates_emitted_count": 0,
            "errors": [],
        }
        emitted: List[ArticleCandidate] = []

        match = self.registry.find_parser(message.from_header)
        if not match.matched:
            result.unmatched += 1
            record["status"] = "no_parser"
        else:
            record["newsletter_source"] = match.source
            record["parser_name"] = type(match.parser).__name__
            try:
                parsed = match.parser.parse(message)
            except Exception as e:
                logger.exception("Parser %s failed on message %s", match.source, message.id)
                record["errors"].append(f"parse failed: {e}")
                record["status"] = "parse_error"
                result.errors += 1
            else:
                record["candidates_extracted_count"] = len(parsed.candidates)
                for c in parsed.candidates:
                    if not c.is_valid():
                        continue
                    emitted.append(replace(c, newsletter_date=parsed.published_at))
                record["candidates_emitted_count"] = len(emitted)
                record["status"] = "parsed"
                result.processed += len(emitted)

        record["timestamp"] = _now_iso()
        record["level"] = _message_level(record["errors"], match.matched, len(emitted))
        result.message_logs.append(record)
        _emit(record)
        return emitted

    def _deduplicate(self, batch: Sequence[ArticleCandidate], result: IngestionResult) -> List[ArticleCandidate]:
        """First-seen wins per canonical URL; URL-less inline candidates always survive."""
        unique = deduplicate_candidates_by_url(batch)
        result.deduped += len(batch) - len(unique)
        return add_canonical_urls(unique)

    def _already_stored(self, candidate: ArticleCandidate) -> bool:
        if candidate.url:
            if self.store.article_exists_by_url(candidate.url):
                return True
            return bool(candidate.canonical_url) and self.store.article_exists_by_url(candidate.canonical_url)
        return self.store.article_exists_by_key(article_key(candidate))

    def _persist(self, candidate: ArticleCandidate, result: IngestionResult) -> None:
        try:
            if self._already_stored(candidate):
                result.skipped += 1
                return
            article_id = self.store.insert_article(candidate)
        except Exception as e:
            logger.error("Failed to persist %r (%s): %s", candidate.title, candidate.url, e)
            result.errors += 1
            return
        result.saved += 1
        if article_id:
            result.saved_ids.append(article_id)


def ingest_messages(
    messages: Sequence[RawMessage],
    registry: ParserRegistry,
    store: ArticleStore,
    *,
    max_messages: Optional[int] = None,
) -> IngestionResult:
    """Convenience wrapper; `max_messages` bounds the work of one run."""
    if max_messages is not None:
        messages = list(messages)[: max(0, max_messages)]
    return NewsletterIngestor(registry, store).process_messages(messages)
