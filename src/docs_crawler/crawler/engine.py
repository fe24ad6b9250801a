"""Frontier-driven crawl engine with a bounded pool of in-flight fetches"""

import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional, Set

import structlog

from ..errors import ContentPersistError, FetchError, ValidationError
from ..events import (
    CrawlErrorEvent,
    CrawlStarted,
    DocumentProcessed,
    EventChannel,
    JobCompleted,
    PageDiscovered,
    PageProcessing,
    ProgressUpdate,
)
from ..extraction.handoff import ContentHandoff
from ..fetching import FetchedPage, FetchStrategy, RetryPolicy, fetch_with_retry
from ..models import CrawlJobSettings, DocumentSource, FetchBackend, JobProgress, JobStatus, QueueItem
from ..queue.frontier import Frontier
from ..queue.url_processor import ExtractedLink, UrlProcessor
from ..storage.base import DocumentSink

logger = structlog.get_logger(__name__)


@dataclass
class CrawlOutcome:
    """Terminal result of one engine run"""
    status: JobStatus
    progress: JobProgress
    total_time_ms: int
    error: Optional[str] = None


class CrawlEngine:
    """
    Runs one crawl of one source.

    State machine: pending -> running -> completed | failed | canceled.

    A single frontier feeds at most `concurrency` fetch tasks at a time.
    Dispatch stops once crawled and skipped pages plus in-flight pages
    reach `max_pages`, so the page cap holds even when every fetch
    succeeds. Pages already in the sink are fetched for their links but not
    saved again unless `force` is set. `crawl_delay` from the source config
    is slept between dispatch cycles.

    Per-URL failures are recorded and skipped; infrastructure errors
    abort the run.
    """

    def __init__(
        self,
        job_id: str,
        settings: CrawlJobSettings,
        source: DocumentSource,
        fetcher: FetchStrategy,
        handoff: ContentHandoff,
        sink: DocumentSink,
        url_processor: UrlProcessor,
        retry_policy: Optional[RetryPolicy] = None,
        page_timeout: float = 90.0,
        channel: Optional[EventChannel] = None
    ):
        self.job_id = job_id
        self.settings = settings
        self.source = source
        self.fetcher = fetcher
        self.handoff = handoff
        self.sink = sink
        self.url_processor = url_processor
        self.retry_policy = retry_policy or RetryPolicy(max_retries=settings.max_retries)
        self.page_timeout = page_timeout
        self.channel = channel or EventChannel(f"job:{job_id}")

        self.frontier = Frontier(settings.strategy, settings.prioritization_patterns)
        self.state = JobStatus.PENDING
        self.crawled_urls: List[str] = []

        self._stop_requested = False
        self._in_flight: Set[asyncio.Task] = set()
        self._fetcher_open = False

        self._pages_crawled = 0
        self._pages_discovered = 0
        self._pages_failed = 0
        self._pages_skipped = 0
        self._max_depth_reached = 0

        self.log = logger.bind(job_id=job_id, source_id=source.id)
        self._page_log = self.log.info if settings.debug else self.log.debug

    @property
    def progress(self) -> JobProgress:
        return JobProgress(
            pages_crawled=self._pages_crawled,
            pages_discovered=self._pages_discovered,
            pages_in_queue=len(self.frontier),
            max_depth_reached=self._max_depth_reached,
            pages_failed=self._pages_failed,
            pages_skipped=self._pages_skipped,
        )

    @property
    def _pages_visited(self) -> int:
        return self._pages_crawled + self._pages_skipped

    @property
    def stopping(self) -> bool:
        return self._stop_requested

    def stop(self):
        """Request cancellation. Checked at the top of every dispatch cycle."""
        if self._stop_requested or self.state.is_terminal:
            return
        self._stop_requested = True
        self.log.info("Crawl stop requested")

    async def run(self) -> CrawlOutcome:
        if self.state != JobStatus.PENDING:
            raise RuntimeError(f"Crawl engine for job {self.job_id} already ran")

        started = time.monotonic()
        error = None

        try:
            await self._start()
            await self._crawl_loop()
            status = JobStatus.CANCELED if self._stop_requested else JobStatus.COMPLETED

        except asyncio.CancelledError:
            await self._finish(JobStatus.CANCELED, "Crawl task cancelled", started)
            raise

        except Exception as e:
            self.log.error("Crawl job failed", error=str(e), error_type=type(e).__name__)
            status = JobStatus.FAILED
            error = str(e)

        return await self._finish(status, error, started)

    async def _start(self):
        start_url = self.url_processor.normalize(self.settings.start_url or self.source.base_url)
        key = self.url_processor.dedupe_key(start_url)
        if not start_url or not key:
            raise ValidationError(
                f"Invalid start URL for source {self.source.id}",
                {"start_url": self.settings.start_url or self.source.base_url}
            )

        await self.fetcher.open()
        self._fetcher_open = True

        self.frontier.offer(QueueItem(url=start_url, depth=0), key)
        self._pages_discovered = 1

        self.state = JobStatus.RUNNING
        self.log.info(
            "Crawl started",
            start_url=start_url,
            max_depth=self.settings.max_depth,
            max_pages=self.settings.max_pages,
            strategy=self.settings.strategy.value,
            backend=self.fetcher.backend.value,
            concurrency=self.settings.concurrency
        )
        self.channel.publish(CrawlStarted(self.job_id, self.source.id, start_url))

    async def _crawl_loop(self):
        concurrency = self.settings.concurrency
        max_pages = self.settings.max_pages
        crawl_delay = self.source.crawl_config.crawl_delay / 1000

        while not self._stop_requested:
            while (
                self.frontier
                and len(self._in_flight) < concurrency
                and self._pages_visited + len(self._in_flight) < max_pages
            ):
                item = self.frontier.pop()
                self._in_flight.add(asyncio.create_task(self._process(item)))

            if not self._in_flight:
                break

            done, _ = await asyncio.wait(self._in_flight, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                self._in_flight.discard(task)
                # Re-raises anything a worker could not handle
                task.result()

            if crawl_delay and self.frontier and not self._stop_requested:
                await asyncio.sleep(crawl_delay)

        if self._in_flight:
            # Stopped with work in flight: the browser context goes away now,
            # plain HTTP fetches are allowed to finish.
            if self.fetcher.backend == FetchBackend.BROWSER:
                await self._close_fetcher()
            results = await asyncio.gather(*self._in_flight, return_exceptions=True)
            self._in_flight.clear()
            for result in results:
                if isinstance(result, Exception):
                    self.log.warning("In-flight page failed during stop", error=str(result))

    async def _process(self, item: QueueItem):
        url = item.url

        self._page_log("Processing page", url=url, depth=item.depth)
        self.channel.publish(PageProcessing(self.job_id, url, item.depth))

        try:
            page = await fetch_with_retry(
                self.fetcher,
                url,
                self.retry_policy,
                self.page_timeout,
                should_stop=lambda: self._stop_requested,
                log=self.log
            )
        except FetchError as e:
            self._record_failure(item, str(e))
            return

        if page.final_url and page.final_url != url:
            final_key = self.url_processor.dedupe_key(page.final_url)
            if final_key:
                self.frontier.mark_visited(final_key)

        if not self.settings.force and await self.sink.exists_by_url(url):
            # Already stored: keep the stored document, still follow its links
            self._pages_skipped += 1
            self._page_log("Skipping save of already stored page", url=url)
            self._discover_links(page, item)
            self.channel.publish(ProgressUpdate(self.job_id, self.progress))
            return

        document = self.handoff.build_document(page, item, self.source.id)

        try:
            saved = await self.sink.save(document)
            message = None if saved else f"Document store rejected {url}"
        except ContentPersistError as e:
            saved = False
            message = str(e)

        if not saved:
            self.channel.publish(DocumentProcessed(self.job_id, url, document.id, False))
            self._record_failure(item, message)
            return

        self._pages_crawled += 1
        self._max_depth_reached = max(self._max_depth_reached, item.depth)
        self.crawled_urls.append(url)

        self._page_log("Document processed", url=url, document_id=document.id, depth=item.depth)
        self.channel.publish(DocumentProcessed(self.job_id, url, document.id, True))

        self._discover_links(page, item)
        self.channel.publish(ProgressUpdate(self.job_id, self.progress))

    def _discover_links(self, page: FetchedPage, item: QueueItem):
        if item.depth < self.settings.max_depth:
            for link in page.links:
                self._discover(link, item)

    def _discover(self, link: ExtractedLink, parent: QueueItem):
        processed = self.url_processor.process(link.url, parent.url)
        if processed is None:
            return

        item = QueueItem(
            url=processed.url,
            depth=parent.depth + 1,
            parent_url=parent.url,
            anchor_text=link.text
        )
        if self.frontier.offer(item, processed.dedupe_key):
            self._pages_discovered += 1
            self.channel.publish(PageDiscovered(self.job_id, item.url, item.depth, parent.url))

    def _record_failure(self, item: QueueItem, message: str):
        self._pages_failed += 1
        self.log.warning("Page failed", url=item.url, depth=item.depth, error=message)
        self.channel.publish(CrawlErrorEvent(self.job_id, item.url, message))
        self.channel.publish(ProgressUpdate(self.job_id, self.progress))

    async def _close_fetcher(self):
        if not self._fetcher_open:
            return
        self._fetcher_open = False
        try:
            await self.fetcher.close()
        except Exception as e:
            self.log.warning("Error closing fetch strategy", error=str(e))

    async def _finish(self, status: JobStatus, error: Optional[str], started: float) -> CrawlOutcome:
        if self._in_flight:
            for task in self._in_flight:
                task.cancel()
            await asyncio.gather(*self._in_flight, return_exceptions=True)
            self._in_flight.clear()

        await self._close_fetcher()

        dropped = self.frontier.drain()
        self.state = status

        progress = self.progress
        total_time_ms = int((time.monotonic() - started) * 1000)

        self.log.info(
            "Crawl finished",
            status=status.value,
            pages_crawled=progress.pages_crawled,
            pages_discovered=progress.pages_discovered,
            pages_failed=progress.pages_failed,
            discarded=dropped,
            total_time_ms=total_time_ms,
            error=error
        )

        self.channel.publish(ProgressUpdate(self.job_id, progress))
        self.channel.publish(JobCompleted(
            job_id=self.job_id,
            status=status.value,
            pages_crawled=progress.pages_crawled,
            pages_discovered=progress.pages_discovered,
            total_time_ms=total_time_ms,
            success=status == JobStatus.COMPLETED,
            error=error
        ))
        self.channel.close()

        return CrawlOutcome(
            status=status,
            progress=progress,
            total_time_ms=total_time_ms,
            error=error
        )
