"""Fan-out of one crawl request over many sources"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set, Union

import structlog

from ..errors import (
    BatchNotFoundError,
    DocsCrawlerError,
    JobInfrastructureError,
    JobNotFoundError,
    ValidationError,
)
from ..events import EventChannel, JobCompleted, Subscription
from ..models import BatchJob, DocumentSource, JobProgress, JobStatus, utcnow
from ..storage.base import JobSnapshotStore, SourceRegistry
from .job_manager import JobManager

logger = structlog.get_logger(__name__)

ALL_SOURCES = "all"

DEFAULT_BATCH_SETTINGS = {
    "max_depth": 5,
    "max_pages": 500,
    "strategy": "hybrid",
    "concurrency": 2,
    "max_retries": 3,
    "use_sitemaps": True,
    "force": False,
    "debug": False,
}


class BatchOrchestrator:
    """
    Starts one job per source and reports them as a unit.

    A reconciler task per batch recomputes the aggregate on every poll
    interval, and immediately when one of its jobs announces completion.
    """

    def __init__(
        self,
        job_manager: JobManager,
        source_registry: SourceRegistry,
        bus: Optional[EventChannel] = None,
        snapshot_store: Optional[JobSnapshotStore] = None,
        poll_interval: float = 1.0,
        retention: timedelta = timedelta(days=7),
        default_settings: Optional[Dict[str, Any]] = None
    ):
        self.job_manager = job_manager
        self.source_registry = source_registry
        self.bus = bus
        self.snapshot_store = snapshot_store
        self.poll_interval = poll_interval
        self.retention = retention
        self.default_settings = {**DEFAULT_BATCH_SETTINGS, **(default_settings or {})}

        self._batches: Dict[str, BatchJob] = {}
        self._job_index: Dict[str, str] = {}
        self._wakeups: Dict[str, asyncio.Event] = {}
        self._reconcilers: Dict[str, asyncio.Task] = {}
        self._canceled: Set[str] = set()

        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None

    async def start(self):
        """Listen for job completions on the service bus."""
        if self.bus and not self._listener:
            self._subscription = self.bus.subscribe()
            self._listener = asyncio.create_task(self._listen())

    async def stop(self):
        tasks = list(self._reconcilers.values())
        if self._listener:
            tasks.append(self._listener)
        if self._subscription:
            self._subscription.unsubscribe()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._reconcilers.clear()
        self._listener = None
        self._subscription = None

    async def start_batch(
        self,
        source_names: Union[str, Sequence[str]],
        settings: Optional[Dict[str, Any]] = None
    ) -> str:
        sources = await self._resolve_sources(source_names)

        batch = BatchJob(id=str(uuid.uuid4()), source_ids=[source.id for source in sources])
        overrides = {k: v for k, v in (settings or {}).items() if k not in ("source_id", "start_url")}

        for source in sources:
            job_settings = {**self.default_settings, **overrides, "source_id": source.id}
            try:
                job_id = await self.job_manager.start(job_settings)
            except DocsCrawlerError as e:
                logger.error("Failed to start batch job", batch_id=batch.id, source_id=source.id, error=str(e))
                batch.start_errors[source.id] = str(e)
                batch.child_statuses[source.id] = JobStatus.FAILED
                continue

            batch.job_ids[source.id] = job_id
            self._job_index[job_id] = batch.id

        self._batches[batch.id] = batch
        self._wakeups[batch.id] = asyncio.Event()
        self._recompute(batch)
        await self._persist(batch)

        if not batch.status.is_terminal:
            self._reconcilers[batch.id] = asyncio.create_task(self._reconcile(batch.id))

        logger.info(
            "Batch crawl started",
            batch_id=batch.id,
            sources=len(sources),
            jobs=len(batch.job_ids),
            start_errors=len(batch.start_errors)
        )
        return batch.id

    def batch_status(self, batch_id: str) -> BatchJob:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        self._recompute(batch)
        return batch.snapshot()

    def list_batches(self) -> List[BatchJob]:
        return [batch.snapshot() for batch in self._batches.values()]

    def cancel_batch(self, batch_id: str) -> bool:
        batch = self._batches.get(batch_id)
        if batch is None or batch.status.is_terminal:
            return False

        self._canceled.add(batch_id)
        for job_id in batch.job_ids.values():
            self.job_manager.cancel(job_id)

        self._wakeups[batch_id].set()
        logger.info("Batch crawl cancelled", batch_id=batch_id)
        return True

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Discard batches older than the retention window, whatever their state."""
        cutoff = (now or utcnow()) - self.retention
        expired = [bid for bid, batch in self._batches.items() if batch.created_at < cutoff]

        for batch_id in expired:
            batch = self._batches.pop(batch_id)
            for job_id in batch.job_ids.values():
                self._job_index.pop(job_id, None)
            self._wakeups.pop(batch_id, None)
            self._canceled.discard(batch_id)
            task = self._reconcilers.pop(batch_id, None)
            if task:
                task.cancel()

        if expired:
            logger.info("Expired batches evicted", count=len(expired))
        return len(expired)

    async def _resolve_sources(self, source_names: Union[str, Sequence[str]]) -> List[DocumentSource]:
        if isinstance(source_names, str):
            source_names = [source_names]

        try:
            if ALL_SOURCES in source_names:
                sources = await self.source_registry.find_all()
            else:
                sources = []
                for name in source_names:
                    source = await self.source_registry.find_by_name(name)
                    if source is None:
                        logger.warning("Source not found, skipping", source_name=name)
                        continue
                    sources.append(source)
        except DocsCrawlerError:
            raise
        except Exception as e:
            raise JobInfrastructureError(f"Cannot access source registry: {e}") from e

        unique = list({source.id: source for source in sources}.values())
        if not unique:
            raise ValidationError("No valid sources found", {"requested": list(source_names)})
        return unique

    def _recompute(self, batch: BatchJob):
        if batch.status.is_terminal:
            return

        totals = JobProgress()
        for source_id, job_id in batch.job_ids.items():
            try:
                info = self.job_manager.status(job_id)
            except JobNotFoundError:
                # Evicted before the batch noticed it finishing
                previous = batch.child_statuses.get(source_id)
                if previous is None or not previous.is_terminal:
                    batch.child_statuses[source_id] = JobStatus.FAILED
                continue

            batch.child_statuses[source_id] = info.status
            totals = JobProgress(
                pages_crawled=totals.pages_crawled + info.progress.pages_crawled,
                pages_discovered=totals.pages_discovered + info.progress.pages_discovered,
                pages_in_queue=totals.pages_in_queue + info.progress.pages_in_queue,
                max_depth_reached=max(totals.max_depth_reached, info.progress.max_depth_reached),
                pages_failed=totals.pages_failed + info.progress.pages_failed,
                pages_skipped=totals.pages_skipped + info.progress.pages_skipped,
            )

        batch.progress = batch.progress.advance(totals)

        statuses = list(batch.child_statuses.values())
        if statuses and all(status.is_terminal for status in statuses):
            if JobStatus.FAILED in statuses:
                batch.status = JobStatus.FAILED
            elif batch.id in self._canceled:
                batch.status = JobStatus.CANCELED
            else:
                batch.status = JobStatus.COMPLETED
            batch.completed_at = utcnow()

    async def _reconcile(self, batch_id: str):
        while True:
            batch = self._batches.get(batch_id)
            wakeup = self._wakeups.get(batch_id)
            if batch is None or wakeup is None:
                return

            self._recompute(batch)
            await self._persist(batch)

            if batch.status.is_terminal:
                logger.info(
                    "Batch crawl finished",
                    batch_id=batch_id,
                    status=batch.status.value,
                    pages_crawled=batch.progress.pages_crawled
                )
                self._reconcilers.pop(batch_id, None)
                return

            try:
                await asyncio.wait_for(wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            wakeup.clear()

    async def _listen(self):
        async for event in self._subscription:
            if not isinstance(event, JobCompleted):
                continue
            batch_id = self._job_index.get(event.job_id)
            wakeup = self._wakeups.get(batch_id) if batch_id else None
            if wakeup:
                wakeup.set()

    async def _persist(self, batch: BatchJob):
        if not self.snapshot_store:
            return
        try:
            await self.snapshot_store.save_batch(batch)
        except Exception as e:
            logger.warning("Failed to persist batch snapshot", batch_id=batch.id, error=str(e))
