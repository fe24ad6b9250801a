"""Crawl engine, job management and batch orchestration"""

from .crawler import HttpFetchStrategy
from .backends import create_fetch_strategy
from .engine import CrawlEngine, CrawlOutcome
from .job_manager import JobManager
from .batch import BatchOrchestrator
from .monitor import CrawlerMonitor

__all__ = [
    "HttpFetchStrategy",
    "create_fetch_strategy",
    "CrawlEngine",
    "CrawlOutcome",
    "JobManager",
    "BatchOrchestrator",
    "CrawlerMonitor",
]
