#!/usr/bin/env python3
"""Fulltext extraction worker.

Fetches publisher URLs for persisted link-extracted articles that have no body yet,
extracts the main text and stores it (with the final URL after redirects).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from inboxbrief.aggregation.pipeline import scrape_missing_content
from inboxbrief.config import Config, configure_logging
from inboxbrief.runtime import open_store

logger = logging.getLogger("fulltext_worker")


def main() -> int:
    config = Config.from_env()
    configure_logging(config.log_level, config.log_file)
    store = open_store(config)

    end = datetime.now(timezone.utc).date()
    start = end - timedelta(days=config.lookback_days)

    def on_scraped(done: int, total: int) -> None:
        if done % 10 == 0 or done == total:
            logger.info("[fulltext] scraped=%d/%d", done, total)

    updated = scrape_missing_content(
        store,
        start.isoformat(),
        end.isoformat(),
        max_articles=config.max_scrape_articles,
        delay=config.scrape_delay,
        timeout=config.request_timeout,
        on_scraped=on_scraped,
    )
    logger.info("[fulltext] completed updated=%d", updated)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
