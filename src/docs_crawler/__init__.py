"""Crawl-job orchestration service for documentation sites"""

from .config import CrawlerConfig
from .models import (
    BatchJob,
    CrawlJobSettings,
    CrawlStrategy,
    Document,
    DocumentSource,
    FetchBackend,
    JobInfo,
    JobProgress,
    JobStatus,
)
from .observability import configure_logging
from .service import CrawlerService

__version__ = "1.0.0"

__all__ = [
    "CrawlerConfig",
    "CrawlerService",
    "configure_logging",
    "BatchJob",
    "CrawlJobSettings",
    "CrawlStrategy",
    "Document",
    "DocumentSource",
    "FetchBackend",
    "JobInfo",
    "JobProgress",
    "JobStatus",
]
