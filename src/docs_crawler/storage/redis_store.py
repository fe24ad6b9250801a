"""Job and batch snapshots in Redis"""

from typing import Optional

import redis.asyncio as redis
import structlog

from ..models import BatchJob, JobInfo

logger = structlog.get_logger(__name__)


class RedisJobSnapshotStore:
    """Persists snapshots with the same retention as the in-process records."""

    def __init__(
        self,
        redis_client: redis.Redis,
        job_prefix: str = "docs_crawler:job",
        batch_prefix: str = "docs_crawler:batch",
        ttl_seconds: int = 86400 * 7  # 7 days TTL
    ):
        self.redis = redis_client
        self.job_prefix = job_prefix
        self.batch_prefix = batch_prefix
        self.ttl_seconds = ttl_seconds

    async def save_job(self, job: JobInfo):
        key = f"{self.job_prefix}:{job.id}"
        await self.redis.setex(key, self.ttl_seconds, job.model_dump_json())

    async def get_job(self, job_id: str) -> Optional[JobInfo]:
        data = await self.redis.get(f"{self.job_prefix}:{job_id}")
        if data:
            return JobInfo.model_validate_json(data)
        return None

    async def save_batch(self, batch: BatchJob):
        key = f"{self.batch_prefix}:{batch.id}"
        await self.redis.setex(key, self.ttl_seconds, batch.model_dump_json())

    async def get_batch(self, batch_id: str) -> Optional[BatchJob]:
        data = await self.redis.get(f"{self.batch_prefix}:{batch_id}")
        if data:
            return BatchJob.model_validate_json(data)
        return None
