"""End-to-end aggregation: mailbox -> ingestion -> scraping -> dedup -> AI summary/themes -> stored aggregation."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from inboxbrief.ai.dedup import deduplicate_articles, quick_deduplicate_by_url
from inboxbrief.ai.insights import (
    detect_themes_and_insights,
    format_insights,
    generate_structured_insights,
    summarize_articles,
)
from inboxbrief.config import Config
from inboxbrief.extraction.fulltext import scrape_article
from inboxbrief.ingestion.orchestrator import NewsletterIngestor
from inboxbrief.parsers.registry import ParserRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationProgress:
    step: str
    progress: int
    details: Optional[str] = None


@dataclass
class AggregationResult:
    aggregation: Dict[str, Any]
    stats: Dict[str, int] = field(default_factory=dict)


ProgressCallback = Callable[[AggregationProgress], None]


def scrape_missing_content(
    store,
    start_date: str,
    end_date: str,
    *,
    max_articles: int = 20,
    delay: float = 0.5,
    timeout: int = 25,
    on_scraped: Optional[Callable[[int, int], None]] = None,
    scraper: Optional[Callable[..., Any]] = None,
) -> int:
    """Fill `content` for link-extracted articles in range; returns how many were updated."""
    scraper = scraper or scrape_article
    to_scrape = store.get_articles_missing_content(start_date, end_date, max_articles)
    updated = 0
    for n, article in enumerate(to_scrape, start=1):
        result = scraper(article["source_url"], timeout=timeout)
        if result.ok:
            store.update_article_content(article["id"], result.content, result.final_url)
            updated += 1
        else:
            logger.warning("Failed to scrape article %s (%s): %s", article["id"], result.status, result.error)
        if on_scraped:
            on_scraped(n, len(to_scrape))
        if n < len(to_scrape):
            time.sleep(max(0.0, delay))
    logger.info("Scraped content for %d/%d articles", updated, len(to_scrape))
    return updated


def run_aggregation_pipeline(
    start_date: datetime,
    end_date: datetime,
    *,
    mailbox,
    registry: ParserRegistry,
    store,
    ai_client,
    config: Optional[Config] = None,
    on_progress: Optional[ProgressCallback] = None,
    scrape_content: bool = True,
    max_scrape_articles: int = 20,
    structured_insights: bool = False,
) -> AggregationResult:
    config = config or Config()

    def report(step: str, progress: int, details: Optional[str] = None) -> None:
        logger.info("[aggregate] %s (%d%%) %s", step, progress, details or "")
        if on_progress:
            on_progress(AggregationProgress(step, progress, details))

    # end_date is exclusive; stored articles are filtered by inclusive calendar dates
    start_str = start_date.date().isoformat()
    end_str = (end_date - timedelta(microseconds=1)).date().isoformat()

    report("Fetching emails", 10, "Connecting to mailbox...")
    emails = mailbox.fetch_newsletter_emails(start_date, end_date, registry.all_senders())
    emails = emails[: config.max_messages_per_run]
    report("Fetching emails", 20, f"Found {len(emails)} newsletter emails")

    report("Processing newsletters", 25, "Extracting articles...")
    ingest = NewsletterIngestor(registry, store).process_messages(emails)
    report(
        "Processing newsletters",
        30,
        f"Extracted {ingest.saved} new articles ({ingest.skipped} already stored, {ingest.errors} errors)",
    )

    if scrape_content and ingest.saved > 0:
        report("Scraping content", 35, "Fetching article content from source URLs...")

        def on_scraped(done: int, total: int) -> None:
            report("Scraping content", 35 + int(done / max(total, 1) * 10), f"Scraped {done}/{total} articles")

        scrape_missing_content(
            store,
            start_str,
            end_str,
            max_articles=max_scrape_articles,
            delay=config.scrape_delay,
            timeout=config.request_timeout,
            on_scraped=on_scraped,
        )
        report("Scraping content", 45, "Content scraping complete")

    articles: List[Dict[str, Any]] = store.get_articles_by_date_range(start_str, end_str)
    total_articles = len(articles)

    report("De-duplicating", 50, "Removing exact duplicates...")
    articles = quick_deduplicate_by_url(articles)

    if len(articles) > 1:
        report("De-duplicating", 55, "Analyzing semantic similarity...")
        dedup = deduplicate_articles(
            ai_client, articles, threshold=config.semantic_dedup_threshold, model=config.embedding_model
        )
        articles = dedup.unique_articles
        report("De-duplicating", 60, f"Removed {dedup.removed_count} similar articles")

    report("Summarizing", 70, "Generating summary with AI...")
    summary = summarize_articles(ai_client, articles, model=config.ai_model)
    report("Summarizing", 80, "Summary generated")

    report("Analyzing themes", 85, "Detecting themes and insights...")
    themes = detect_themes_and_insights(ai_client, articles, model=config.ai_model)
    report("Analyzing themes", 90, f"Found {len(themes.themes)} themes")

    if structured_insights:
        report("Analyzing themes", 92, "Generating structured insights...")
        insights_text = json.dumps(
            generate_structured_insights(ai_client, articles, model=config.ai_model), ensure_ascii=False
        )
    else:
        insights_text = format_insights(themes)

    stats = {
        "emails_fetched": len(emails),
        "articles_processed": total_articles,
        "articles_after_dedup": len(articles),
        "themes_detected": len(themes.themes),
    }

    report("Saving", 95, "Saving aggregation...")
    fields = {
        "start_date": start_str,
        "end_date": end_str,
        "summary": summary.summary,
        "insights": insights_text,
        "themes": themes.themes,
        "stats": stats,
    }
    article_ids = [a["id"] for a in articles if a.get("id") is not None]
    aggregation_id = store.insert_aggregation(fields, article_ids)
    aggregation = dict(fields, id=aggregation_id, article_ids=article_ids)

    report("Complete", 100, "Aggregation complete!")
    return AggregationResult(aggregation=aggregation, stats=stats)


def run_weekly_aggregation(
    *,
    mailbox,
    registry: ParserRegistry,
    store,
    ai_client,
    config: Optional[Config] = None,
    on_progress: Optional[ProgressCallback] = None,
    now: Optional[datetime] = None,
    **kwargs,
) -> AggregationResult:
    """Aggregate the last seven calendar days, today included (UTC)."""
    today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
    end = datetime(today.year, today.month, today.day, tzinfo=timezone.utc) + timedelta(days=1)
    start = end - timedelta(days=7)
    return run_aggregation_pipeline(
        start,
        end,
        mailbox=mailbox,
        registry=registry,
        store=store,
        ai_client=ai_client,
        config=config,
        on_progress=on_progress,
        **kwargs,
    )
