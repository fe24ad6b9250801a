"""Crawl job lifecycle: start, status, cancel, retention"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

import pydantic
import structlog

from ..errors import (
    DocsCrawlerError,
    JobInfrastructureError,
    JobNotFoundError,
    SourceNotFoundError,
    ValidationError,
)
from ..events import CrawlStarted, EventChannel, JobCompleted, ProgressUpdate, Subscription
from ..models import CrawlJobSettings, DocumentSource, JobInfo, JobStatus, utcnow
from ..storage.base import JobSnapshotStore, SourceRegistry
from .engine import CrawlEngine, CrawlOutcome

logger = structlog.get_logger(__name__)

EngineFactory = Callable[[str, CrawlJobSettings, DocumentSource, EventChannel], CrawlEngine]


@dataclass
class _JobRecord:
    info: JobInfo
    engine: CrawlEngine
    task: Optional[asyncio.Task] = None


def parse_settings(settings: Union[CrawlJobSettings, Dict[str, Any]]) -> CrawlJobSettings:
    if isinstance(settings, CrawlJobSettings):
        return settings
    try:
        return CrawlJobSettings.model_validate(settings)
    except pydantic.ValidationError as e:
        raise ValidationError("Invalid crawl job settings", {"errors": e.errors()}) from e


class JobManager:
    """
    Tracks crawl jobs by id.

    Each job runs as a detached task that is the only writer of its
    JobInfo, apart from cancel(). Readers always get deep copies.
    """

    def __init__(
        self,
        source_registry: SourceRegistry,
        engine_factory: EngineFactory,
        bus: Optional[EventChannel] = None,
        snapshot_store: Optional[JobSnapshotStore] = None,
        retention: timedelta = timedelta(days=7),
        default_settings: Optional[Dict[str, Any]] = None
    ):
        self.source_registry = source_registry
        self.engine_factory = engine_factory
        self.bus = bus
        self.snapshot_store = snapshot_store
        self.retention = retention
        self.default_settings = dict(default_settings or {})

        self._jobs: Dict[str, _JobRecord] = {}

    async def start(self, settings: Union[CrawlJobSettings, Dict[str, Any]]) -> str:
        """Validate, register and launch a job. Returns before any page is fetched."""
        settings = parse_settings(settings)

        try:
            source = await self.source_registry.find_by_id(settings.source_id)
        except DocsCrawlerError:
            raise
        except Exception as e:
            raise JobInfrastructureError(f"Cannot access source registry: {e}") from e

        if source is None:
            raise SourceNotFoundError(settings.source_id)

        settings = self._apply_defaults(settings, source)

        job_id = str(uuid.uuid4())
        channel = EventChannel(f"job:{job_id}")
        engine = self.engine_factory(job_id, settings, source, channel)

        record = _JobRecord(
            info=JobInfo(id=job_id, source_id=source.id, settings=settings),
            engine=engine
        )
        self._jobs[job_id] = record

        subscription = channel.subscribe()
        record.task = asyncio.create_task(self._run_job(record, source, subscription))

        await self._persist(record.info)

        logger.info(
            "Crawl job created",
            job_id=job_id,
            source_id=source.id,
            backend=settings.fetch_backend.value,
            strategy=settings.strategy.value
        )
        return job_id

    def _apply_defaults(self, settings: CrawlJobSettings, source: DocumentSource) -> CrawlJobSettings:
        """Fill settings the caller left unset: source crawl config first, then service defaults."""
        fallback = dict(self.default_settings)
        if source.crawl_config.max_depth is not None:
            fallback["max_depth"] = source.crawl_config.max_depth
        if source.crawl_config.max_pages is not None:
            fallback["max_pages"] = source.crawl_config.max_pages

        missing = {k: v for k, v in fallback.items() if k not in settings.model_fields_set}
        if not missing:
            return settings
        return parse_settings({**missing, **settings.model_dump(exclude_unset=True)})

    def status(self, job_id: str) -> JobInfo:
        record = self._jobs.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record.info.snapshot()

    def cancel(self, job_id: str) -> bool:
        """Stop a job. False for unknown or already finished jobs."""
        record = self._jobs.get(job_id)
        if record is None or record.info.status.is_terminal:
            return False

        record.engine.stop()
        record.info.status = JobStatus.CANCELED
        record.info.end_time = utcnow()

        logger.info("Crawl job cancelled", job_id=job_id)
        return True

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[JobInfo]:
        jobs = [
            record.info.snapshot()
            for record in self._jobs.values()
            if status is None or record.info.status == status
        ]
        jobs.sort(key=lambda job: job.start_time, reverse=True)
        return jobs

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> JobInfo:
        """Block until the job's task has finished, then return its snapshot."""
        record = self._jobs.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        if record.task:
            await asyncio.wait_for(asyncio.shield(record.task), timeout=timeout)
        return record.info.snapshot()

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Evict finished jobs older than the retention window."""
        cutoff = (now or utcnow()) - self.retention
        expired = [
            job_id
            for job_id, record in self._jobs.items()
            if record.info.status.is_terminal
            and (record.info.end_time or record.info.start_time) < cutoff
        ]

        for job_id in expired:
            del self._jobs[job_id]

        if expired:
            logger.info("Expired crawl jobs evicted", count=len(expired))
        return len(expired)

    async def shutdown(self):
        """Stop every running job and wait for its task."""
        tasks = []
        for record in self._jobs.values():
            if record.task and not record.task.done():
                record.engine.stop()
                record.task.cancel()
                tasks.append(record.task)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Job manager shut down", cancelled=len(tasks))

    async def _run_job(self, record: _JobRecord, source: DocumentSource, subscription: Subscription):
        info = record.info
        consumer = asyncio.create_task(self._consume(record, subscription))

        try:
            outcome = await record.engine.run()
            await consumer

        except asyncio.CancelledError:
            consumer.cancel()
            self._apply_outcome(info, JobStatus.CANCELED, "Crawl task cancelled")
            await self._persist(info)
            raise

        except Exception as e:
            consumer.cancel()
            logger.error("Crawl job crashed", job_id=info.id, error=str(e))
            outcome = CrawlOutcome(
                status=JobStatus.FAILED,
                progress=info.progress,
                total_time_ms=0,
                error=str(e)
            )

        info.progress = info.progress.advance(outcome.progress)
        self._apply_outcome(info, outcome.status, outcome.error)

        if info.status == JobStatus.COMPLETED:
            await self._touch_source(source)

        await self._persist(info)

        logger.info(
            "Crawl job finished",
            job_id=info.id,
            status=info.status.value,
            pages_crawled=info.progress.pages_crawled
        )

        if self.bus:
            self.bus.publish(JobCompleted(
                job_id=info.id,
                status=info.status.value,
                pages_crawled=info.progress.pages_crawled,
                pages_discovered=info.progress.pages_discovered,
                total_time_ms=outcome.total_time_ms,
                success=info.status == JobStatus.COMPLETED,
                error=info.error
            ))

    async def _consume(self, record: _JobRecord, subscription: Subscription):
        """Apply the engine's events to the job record, in order."""
        info = record.info

        async for event in subscription:
            if isinstance(event, ProgressUpdate):
                info.progress = info.progress.advance(event.progress)

            elif isinstance(event, CrawlStarted):
                if info.status == JobStatus.PENDING:
                    info.status = JobStatus.RUNNING
                    await self._persist(info)

            elif isinstance(event, JobCompleted):
                # Re-announced once the record itself is terminal
                continue

            if self.bus:
                self.bus.publish(event)

    @staticmethod
    def _apply_outcome(info: JobInfo, status: JobStatus, error: Optional[str]):
        # A cancelled job stays cancelled even if the crawl drained meanwhile
        if info.status != JobStatus.CANCELED:
            info.status = status
            info.error = error
        if info.end_time is None:
            info.end_time = utcnow()

    async def _touch_source(self, source: DocumentSource):
        try:
            await self.source_registry.save(
                source.model_copy(update={"last_crawled_at": utcnow()})
            )
        except Exception as e:
            logger.warning("Failed to update source crawl time", source_id=source.id, error=str(e))

    async def _persist(self, info: JobInfo):
        if not self.snapshot_store:
            return
        try:
            await self.snapshot_store.save_job(info)
        except Exception as e:
            logger.warning("Failed to persist job snapshot", job_id=info.id, error=str(e))
