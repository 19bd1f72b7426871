"""
Runtime configuration, logging setup and retry helper shared by the workers.
"""

import logging
import os
import random
import sys
import time
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int, errors: list) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default


def _env_float(name: str, default: float, errors: list) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        errors.append(f"{name} must be a number (got {raw!r})")
        return default


def configure_logging(level: str = 'INFO', log_file: Optional[str] = 'inboxbrief.log') -> None:
    """File + stdout logging, one format for every worker."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, (level or 'INFO').upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def retry_with_backoff(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0):
    """Decorator for retry logic with exponential backoff"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if attempt == max_retries - 1:
                        logger.error(f"{func.__name__} failed after {max_retries} attempts: {e}")
                        raise

                    delay = min(base_delay * (2 ** attempt) + random.uniform(0, 1), max_delay)
                    logger.warning(f"{func.__name__} attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s")
                    time.sleep(delay)

        return wrapper
    return decorator


@dataclass
class Config:
    """Configuration loaded from the environment (and .env), validated on load"""

    # Storage
    db_path: str = "newsletters.db"
    pg_dsn: str = ""
    storage_backend: str = "sqlite"

    # AI
    openai_api_key: str = ""
    ai_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    semantic_dedup_threshold: float = 0.90
    structured_insights: bool = False

    # Scraping
    scrape_content: bool = True
    max_scrape_articles: int = 20
    scrape_delay: float = 0.5
    request_timeout: int = 30

    # Mail / ingestion
    max_messages_per_run: int = 500
    lookback_days: int = 7
    gmail_token_path: str = "token.json"
    messages_json: str = ""
    ingest_mode: str = "once"
    ingest_interval_minutes: int = 60

    # Logging
    log_level: str = "INFO"
    log_file: str = "inboxbrief.log"

    @classmethod
    def from_env(cls, *, require_ai: bool = False) -> 'Config':
        """Load and validate configuration from environment variables"""
        load_dotenv()
        errors: list = []
        config = cls(
            db_path=os.getenv('DB_PATH', 'newsletters.db'),
            pg_dsn=os.getenv('PG_DSN', ''),
            storage_backend=os.getenv('STORAGE_BACKEND', 'sqlite').strip().lower(),

            openai_api_key=os.getenv('OPENAI_API_KEY', ''),
            ai_model=os.getenv('AI_MODEL', 'gpt-4o-mini'),
            embedding_model=os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small'),
            semantic_dedup_threshold=_env_float('SEMANTIC_DEDUP_THRESHOLD', 0.90, errors),
            structured_insights=_env_bool('STRUCTURED_INSIGHTS', 'false'),

            scrape_content=_env_bool('SCRAPE_CONTENT', 'true'),
            max_scrape_articles=_env_int('MAX_SCRAPE_ARTICLES', 20, errors),
            scrape_delay=_env_float('SCRAPE_DELAY', 0.5, errors),
            request_timeout=_env_int('REQUEST_TIMEOUT', 30, errors),

            max_messages_per_run=_env_int('MAX_MESSAGES_PER_RUN', 500, errors),
            lookback_days=_env_int('LOOKBACK_DAYS', 7, errors),
            gmail_token_path=os.getenv('GMAIL_TOKEN_PATH', 'token.json'),
            messages_json=os.getenv('MESSAGES_JSON', ''),
            ingest_mode=os.getenv('INGEST_MODE', 'once').strip().lower(),
            ingest_interval_minutes=_env_int('INGEST_INTERVAL_MINUTES', 60, errors),

            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_file=os.getenv('LOG_FILE', 'inboxbrief.log'),
        )
        config._validate(require_ai=require_ai, errors=errors)
        return config

    def _validate(self, *, require_ai: bool = False, errors: Optional[list] = None):
        """Validate configuration values"""
        errors = list(errors or [])

        if self.storage_backend not in ('sqlite', 'postgres'):
            errors.append("STORAGE_BACKEND should be 'sqlite' or 'postgres'")
        elif self.storage_backend == 'postgres' and not self.pg_dsn:
            errors.append("STORAGE_BACKEND=postgres requires PG_DSN")

        if require_ai:
            if not self.openai_api_key:
                errors.append("OPENAI_API_KEY is required")
            elif not self.openai_api_key.startswith('sk-'):
                errors.append("OPENAI_API_KEY appears to be invalid (wrong format)")

        if not 0.0 < self.semantic_dedup_threshold <= 1.0:
            errors.append("SEMANTIC_DEDUP_THRESHOLD should be in (0, 1]")

        if self.request_timeout < 5 or self.request_timeout > 300:
            errors.append("REQUEST_TIMEOUT should be between 5 and 300 seconds")

        for name, value in (
            ('MAX_SCRAPE_ARTICLES', self.max_scrape_articles),
            ('MAX_MESSAGES_PER_RUN', self.max_messages_per_run),
            ('LOOKBACK_DAYS', self.lookback_days),
            ('INGEST_INTERVAL_MINUTES', self.ingest_interval_minutes),
        ):
            if value <= 0:
                errors.append(f"{name} should be a positive integer")

        if self.scrape_delay < 0:
            errors.append("SCRAPE_DELAY should not be negative")

        if self.ingest_mode not in ('once', 'scheduled', 'daemon'):
            errors.append("INGEST_MODE should be 'once' or 'scheduled'")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ValueError(error_msg)

        logger.info(f"Configuration validated successfully. Storage backend: {self.storage_backend}")

    @property
    def use_postgres(self) -> bool:
        return self.storage_backend == 'postgres'
