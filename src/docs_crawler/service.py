"""Crawler service: wires the collaborators together and exposes crawl operations"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence, Union

import redis.asyncio as redis
import structlog

from .config import CrawlerConfig, load_config
from .crawler.backends import create_fetch_strategy
from .crawler.batch import BatchOrchestrator
from .crawler.engine import CrawlEngine
from .crawler.job_manager import JobManager
from .crawler.monitor import CrawlerMonitor
from .events import EventChannel, Subscription
from .extraction.extractor import ContentExtractor
from .extraction.handoff import ContentHandoff
from .fetching import RetryPolicy
from .models import BatchJob, CrawlJobSettings, DocumentSource, JobInfo
from .queue.url_processor import UrlProcessor
from .rendering.browser_pool import BrowserPool
from .storage.base import DocumentSink, JobSnapshotStore, SourceRegistry
from .storage.filesystem import FileSystemDocumentSink, JsonSourceRegistry
from .storage.redis_store import RedisJobSnapshotStore

logger = structlog.get_logger(__name__)


class CrawlerService:
    """
    Composition root of the crawler.

    Every collaborator is passed in or built here from the config; nothing
    is looked up from module globals.
    """

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        source_registry: Optional[SourceRegistry] = None,
        document_sink: Optional[DocumentSink] = None,
        extractor: Optional[ContentExtractor] = None,
        snapshot_store: Optional[JobSnapshotStore] = None,
        browser_pool: Optional[BrowserPool] = None
    ):
        self.config = config or load_config()

        self.source_registry = source_registry or JsonSourceRegistry(self.config.SOURCE_REGISTRY_PATH)
        self.document_sink = document_sink or FileSystemDocumentSink(self.config.DOCUMENT_STORE_PATH)
        self.handoff = ContentHandoff(extractor)
        self.browser_pool = browser_pool or BrowserPool(
            browser_type=self.config.BROWSER_TYPE,
            headless=self.config.BROWSER_HEADLESS,
            user_agent=self.config.USER_AGENT
        )
        self.snapshot_store = snapshot_store
        self.bus = EventChannel("service")

        retention = timedelta(days=self.config.JOB_RETENTION_DAYS)
        self.job_defaults = {
            "max_depth": self.config.DEFAULT_MAX_DEPTH,
            "max_pages": self.config.DEFAULT_MAX_PAGES,
            "concurrency": self.config.DEFAULT_CONCURRENCY,
            "max_retries": self.config.DEFAULT_MAX_RETRIES,
        }

        self.job_manager = JobManager(
            self.source_registry,
            self._create_engine,
            bus=self.bus,
            snapshot_store=snapshot_store,
            retention=retention,
            default_settings=self.job_defaults
        )
        self.batch_orchestrator = BatchOrchestrator(
            self.job_manager,
            self.source_registry,
            bus=self.bus,
            snapshot_store=snapshot_store,
            poll_interval=self.config.BATCH_POLL_INTERVAL,
            retention=retention,
            default_settings={
                "max_depth": self.config.BATCH_DEFAULT_MAX_DEPTH,
                "max_pages": self.config.BATCH_DEFAULT_MAX_PAGES,
                "concurrency": self.config.DEFAULT_CONCURRENCY,
                "max_retries": self.config.DEFAULT_MAX_RETRIES,
            }
        )
        self.monitor = CrawlerMonitor(self.bus, version=self.config.VERSION)

        self._redis: Optional[redis.Redis] = None
        self._sweeper: Optional[asyncio.Task] = None

    async def start(self):
        logger.info("Starting crawler service", version=self.config.VERSION)

        if self.snapshot_store is None and self.config.REDIS_URL:
            self._redis = redis.from_url(self.config.REDIS_URL, decode_responses=True)
            self.snapshot_store = RedisJobSnapshotStore(
                self._redis,
                ttl_seconds=86400 * self.config.JOB_RETENTION_DAYS
            )
            self.job_manager.snapshot_store = self.snapshot_store
            self.batch_orchestrator.snapshot_store = self.snapshot_store

        await self.monitor.start()
        await self.batch_orchestrator.start()
        self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        logger.info("Stopping crawler service")

        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        await self.batch_orchestrator.stop()
        await self.job_manager.shutdown()
        await self.monitor.stop()
        await self.browser_pool.stop()

        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def start_crawl_job(self, settings: Union[CrawlJobSettings, Dict[str, Any]]) -> str:
        """Start one job. Unset depth and page limits come from the source, then the config."""
        return await self.job_manager.start(settings)

    def get_crawl_job_status(self, job_id: str) -> JobInfo:
        return self.job_manager.status(job_id)

    def cancel_crawl_job(self, job_id: str) -> bool:
        return self.job_manager.cancel(job_id)

    async def start_batch_crawl(
        self,
        source_names: Union[str, Sequence[str]],
        settings: Optional[Dict[str, Any]] = None
    ) -> str:
        return await self.batch_orchestrator.start_batch(source_names, settings)

    def get_batch_status(self, batch_id: str) -> BatchJob:
        return self.batch_orchestrator.batch_status(batch_id)

    def cancel_batch_crawl(self, batch_id: str) -> bool:
        return self.batch_orchestrator.cancel_batch(batch_id)

    def subscribe(self) -> Subscription:
        """Ordered stream of every job's events."""
        return self.bus.subscribe()

    def sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        return {
            "jobs": self.job_manager.sweep(now),
            "batches": self.batch_orchestrator.sweep(now)
        }

    def _create_engine(
        self,
        job_id: str,
        settings: CrawlJobSettings,
        source: DocumentSource,
        channel: EventChannel
    ) -> CrawlEngine:
        url_processor = UrlProcessor(
            settings.start_url or source.base_url,
            include_patterns=source.crawl_config.include_patterns,
            exclude_patterns=source.crawl_config.exclude_patterns
        )
        fetcher = create_fetch_strategy(
            settings.fetch_backend,
            url_processor,
            self.config,
            browser_pool=self.browser_pool
        )

        return CrawlEngine(
            job_id=job_id,
            settings=settings,
            source=source,
            fetcher=fetcher,
            handoff=self.handoff,
            sink=self.document_sink,
            url_processor=url_processor,
            retry_policy=RetryPolicy(
                max_retries=settings.max_retries,
                base_delay=self.config.RETRY_BASE_DELAY
            ),
            page_timeout=self.config.PAGE_TIMEOUT,
            channel=channel
        )

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.config.SWEEP_INTERVAL)
            try:
                self.sweep()
            except Exception as e:
                logger.error("Error sweeping expired jobs", error=str(e))
