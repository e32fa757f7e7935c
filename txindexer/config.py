"""
Indexer Configuration

All configurable parameters, grouped per component. Defaults match the
courtesy/backoff timings the public Cosmos REST nodes tolerate.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass
class LockConfig:
    """Configuration for the in-process lock service."""
    default_ttl: float = 300.0  # 5 minutes
    poll_interval: float = 0.5  # wait_for_release check interval


@dataclass
class QueryClientConfig:
    """Configuration for the transaction-search client."""
    request_timeout: float = 15.0
    page_limit: int = 100
    order_by: str = "1"  # ASC
    # Statuses that mean "this node does not accept the legacy query dialect"
    fallback_statuses: tuple = (400, 500, 501)


@dataclass
class CrawlConfig:
    """Configuration for per-account crawling."""
    # Locking
    lock_retries: int = 3
    lock_retry_delay: float = 2.0
    lock_ttl: float = 300.0

    # Paging
    page_size: int = 100
    page_delay: float = 0.2  # Courtesy delay between successful pages

    # Error budget
    unavailable_statuses: tuple = (502, 503, 504)
    unavailable_delay: float = 10.0
    max_unavailable_errors: int = 3
    rate_limit_status: int = 429
    rate_limit_delay: float = 5.0
    incompatible_statuses: tuple = (400, 500, 501)
    generic_error_delay: float = 2.0
    max_generic_errors: int = 5


@dataclass
class ReaperConfig:
    """Configuration for stuck-sync detection."""
    stuck_threshold: float = 600.0  # 10 minutes


@dataclass
class CoordinatorConfig:
    """Configuration for fleet-wide periodic sync."""
    global_lock_ttl: float = 600.0  # 10 minutes
    sync_interval: float = 300.0  # 5 minutes
    initial_delay: float = 5.0
    balance_retries: int = 3
    balance_retry_delay: float = 2.0
    resync_wait: float = 60.0


@dataclass
class IndexerSettings:
    """Top-level settings bundle."""
    db_path: str = "txindexer.db"
    log_level: str = "INFO"
    lock: LockConfig = field(default_factory=LockConfig)
    query: QueryClientConfig = field(default_factory=QueryClientConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    reaper: ReaperConfig = field(default_factory=ReaperConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "IndexerSettings":
        """Build settings from environment variables (and a .env file if present)."""
        load_dotenv(env_file)

        settings = cls(
            db_path=os.getenv("TXINDEXER_DB_PATH", "txindexer.db"),
            log_level=os.getenv("TXINDEXER_LOG_LEVEL", "INFO").upper(),
        )
        settings.coordinator.sync_interval = float(
            os.getenv("TXINDEXER_SYNC_INTERVAL", settings.coordinator.sync_interval)
        )
        settings.reaper.stuck_threshold = float(
            os.getenv("TXINDEXER_STUCK_THRESHOLD", settings.reaper.stuck_threshold)
        )
        settings.query.request_timeout = float(
            os.getenv("TXINDEXER_REQUEST_TIMEOUT", settings.query.request_timeout)
        )
        return settings
