#!/usr/bin/env python3
"""Aggregation worker.

Runs the full pipeline (mail -> articles -> scraping -> dedup -> AI summary and
themes) over the last week, or over an explicit range:

    python aggregate_worker.py [START_DATE END_DATE]

Dates are ISO (YYYY-MM-DD); the end date is inclusive.
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import schedule

from inboxbrief.aggregation.pipeline import (
    AggregationProgress,
    run_aggregation_pipeline,
    run_weekly_aggregation,
)
from inboxbrief.ai.insights import make_client
from inboxbrief.config import Config, configure_logging
from inboxbrief.contracts.insights import is_structured_insights
from inboxbrief.parsers.default_registry import build_default_registry
from inboxbrief.runtime import open_mailbox, open_store

logger = logging.getLogger("aggregate_worker")


def _log_progress(p: AggregationProgress) -> None:
    logger.info("[aggregate] %3d%% %s: %s", p.progress, p.step, p.details or "")


def _parse_range(argv: List[str]):
    if not argv:
        return None
    if len(argv) != 2:
        raise SystemExit("usage: aggregate_worker.py [START_DATE END_DATE]")
    start = datetime.fromisoformat(argv[0]).replace(tzinfo=timezone.utc)
    end = datetime.fromisoformat(argv[1]).replace(tzinfo=timezone.utc) + timedelta(days=1)
    if end <= start:
        raise SystemExit("END_DATE must not be before START_DATE")
    return start, end


def run_once(config: Config, date_range: Optional[tuple] = None) -> None:
    registry = build_default_registry()
    kwargs = dict(
        mailbox=open_mailbox(config),
        registry=registry,
        store=open_store(config),
        ai_client=make_client(config.openai_api_key),
        config=config,
        on_progress=_log_progress,
        scrape_content=config.scrape_content,
        max_scrape_articles=config.max_scrape_articles,
        structured_insights=config.structured_insights,
    )
    if date_range:
        result = run_aggregation_pipeline(date_range[0], date_range[1], **kwargs)
    else:
        result = run_weekly_aggregation(**kwargs)
    logger.info(
        "[aggregate] stored aggregation %s (%s insights) stats=%s",
        result.aggregation.get("id"),
        "structured" if is_structured_insights(result.aggregation.get("insights")) else "markdown",
        result.stats,
    )


def _run_guarded(config: Config) -> None:
    try:
        run_once(config)
    except Exception as e:
        logger.error(f"Aggregation failed: {e}", exc_info=True)


def run_scheduled(config: Config) -> None:
    schedule.every().monday.at("07:00").do(_run_guarded, config)
    while True:
        schedule.run_pending()
        time.sleep(30)


def main(argv: Optional[List[str]] = None) -> int:
    date_range = _parse_range(list(sys.argv[1:] if argv is None else argv))
    config = Config.from_env(require_ai=True)
    configure_logging(config.log_level, config.log_file)
    if config.ingest_mode in ("scheduled", "daemon") and not date_range:
        run_scheduled(config)
    else:
        run_once(config, date_range)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
