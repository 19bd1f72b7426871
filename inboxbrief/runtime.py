"""Wiring shared by the worker scripts: store and mail source chosen from Config."""

from __future__ import annotations

import logging

from inboxbrief.config import Config
from inboxbrief.mail.gmail import GmailMailbox, load_gmail_service
from inboxbrief.mail.json_export import JsonExportMailbox
from inboxbrief.storage.postgres_repo import PostgresArticleRepo
from inboxbrief.storage.postgres_schema import ensure_postgres_schema
from inboxbrief.storage.sqlite_store import ArticleDatabase

logger = logging.getLogger(__name__)


def open_store(config: Config):
    if config.use_postgres:
        ensure_postgres_schema(config.pg_dsn)
        logger.info("Using Postgres article store")
        return PostgresArticleRepo(config.pg_dsn)
    logger.info("Using SQLite article store at %s", config.db_path)
    return ArticleDatabase(config.db_path)


def open_mailbox(config: Config):
    """JSON export when MESSAGES_JSON is set, otherwise the Gmail API."""
    if config.messages_json:
        return JsonExportMailbox(config.messages_json)
    return GmailMailbox(load_gmail_service(config.gmail_token_path))
