"""Prometheus metrics fed from the crawl event bus"""

import asyncio
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest
import structlog

from ..events import (
    CrawlErrorEvent,
    CrawlEvent,
    CrawlStarted,
    DocumentProcessed,
    EventChannel,
    JobCompleted,
    PageDiscovered,
    Subscription,
)

logger = structlog.get_logger(__name__)


class CrawlerMonitor:
    """
    Consumes crawl events and keeps metrics.
    Uses its own registry so several services can live in one process.
    """

    def __init__(
        self,
        bus: EventChannel,
        registry: Optional[CollectorRegistry] = None,
        version: str = "1.0.0"
    ):
        self.bus = bus
        self.registry = registry or CollectorRegistry()

        self.jobs_total = Counter(
            "docs_crawler_jobs_total",
            "Total number of finished crawl jobs",
            ["status"],
            registry=self.registry
        )
        self.pages_total = Counter(
            "docs_crawler_pages_total",
            "Pages processed",
            ["outcome"],
            registry=self.registry
        )
        self.pages_discovered = Counter(
            "docs_crawler_pages_discovered_total",
            "Pages added to a frontier",
            registry=self.registry
        )
        self.crawl_errors = Counter(
            "docs_crawler_errors_total",
            "Per-page crawl errors",
            registry=self.registry
        )
        self.active_jobs = Gauge(
            "docs_crawler_active_jobs",
            "Number of running crawl jobs",
            registry=self.registry
        )
        self.job_duration = Histogram(
            "docs_crawler_job_duration_seconds",
            "Crawl job duration in seconds",
            buckets=(1, 5, 15, 60, 300, 900, 3600, float("inf")),
            registry=self.registry
        )
        self.info = Info("docs_crawler", "Crawler service information", registry=self.registry)
        self.info.info({"version": version})

        self._running_jobs = set()
        self._subscription: Optional[Subscription] = None
        self._monitor_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start monitoring"""
        self._subscription = self.bus.subscribe()
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info("Crawler monitor started")

    async def stop(self):
        """Stop monitoring"""
        if self._subscription:
            self._subscription.unsubscribe()

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        logger.info("Crawler monitor stopped")

    def record(self, event: CrawlEvent):
        if isinstance(event, CrawlStarted):
            self._running_jobs.add(event.job_id)
            self.active_jobs.inc()

        elif isinstance(event, PageDiscovered):
            self.pages_discovered.inc()

        elif isinstance(event, DocumentProcessed):
            self.pages_total.labels(outcome="stored" if event.success else "rejected").inc()

        elif isinstance(event, CrawlErrorEvent):
            self.crawl_errors.inc()

        elif isinstance(event, JobCompleted):
            if event.job_id in self._running_jobs:
                self._running_jobs.discard(event.job_id)
                self.active_jobs.dec()
            self.jobs_total.labels(status=event.status).inc()
            self.job_duration.observe(event.total_time_ms / 1000)

    def export(self) -> bytes:
        return generate_latest(self.registry)

    async def _monitor_loop(self):
        async for event in self._subscription:
            try:
                self.record(event)
            except Exception as e:
                logger.error("Error updating metrics", error=str(e))
