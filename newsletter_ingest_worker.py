#!/usr/bin/env python3
"""Newsletter ingestion worker.

Runs one ingestion cycle (or scheduled):
- fetch newsletter emails from registered senders for the lookback window
- route each message to its parser, dedup the batch, persist new articles

Mail comes from MESSAGES_JSON when set, otherwise from Gmail.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone

import schedule

from inboxbrief.config import Config, configure_logging
from inboxbrief.ingestion.orchestrator import ingest_messages
from inboxbrief.parsers.default_registry import build_default_registry
from inboxbrief.runtime import open_mailbox, open_store

logger = logging.getLogger("newsletter_ingest_worker")


def run_once(config: Config) -> None:
    registry = build_default_registry()
    store = open_store(config)
    mailbox = open_mailbox(config)

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=config.lookback_days)
    messages = mailbox.fetch_newsletter_emails(start, end, registry.all_senders())

    result = ingest_messages(messages, registry, store, max_messages=config.max_messages_per_run)
    logger.info(
        "[ingest] messages=%d processed=%d saved=%d skipped=%d deduped=%d unmatched=%d errors=%d",
        result.messages,
        result.processed,
        result.saved,
        result.skipped,
        result.deduped,
        result.unmatched,
        result.errors,
    )


def _run_guarded(config: Config) -> None:
    try:
        run_once(config)
    except Exception as e:
        logger.error(f"Ingestion cycle failed: {e}", exc_info=True)


def run_scheduled(config: Config) -> None:
    schedule.every(config.ingest_interval_minutes).minutes.do(_run_guarded, config)
    _run_guarded(config)
    while True:
        schedule.run_pending()
        time.sleep(5)


def main() -> int:
    config = Config.from_env()
    configure_logging(config.log_level, config.log_file)
    if config.ingest_mode in ("scheduled", "daemon"):
        run_scheduled(config)
    else:
        run_once(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
