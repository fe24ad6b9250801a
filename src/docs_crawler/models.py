"""Data models shared across the crawler service"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CrawlStrategy(str, Enum):
    """Traversal order of the frontier"""
    BREADTH = "breadth"
    DEPTH = "depth"
    HYBRID = "hybrid"


class FetchBackend(str, Enum):
    """Page acquisition backend"""
    HTTP = "http"
    BROWSER = "browser"


class JobStatus(str, Enum):
    """Crawl job and batch status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELED)


@dataclass(frozen=True)
class QueueItem:
    """A link that passed filtering and waits in the frontier"""
    url: str
    depth: int
    parent_url: Optional[str] = None
    anchor_text: Optional[str] = None


class CrawlJobSettings(BaseModel):
    """Settings of a single crawl job. Immutable once the job starts."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., min_length=1)
    start_url: Optional[str] = None
    max_depth: int = Field(default=3, ge=0)
    max_pages: int = Field(default=500, ge=1)
    strategy: CrawlStrategy = CrawlStrategy.HYBRID
    fetch_backend: FetchBackend = FetchBackend.HTTP
    concurrency: int = Field(default=2, ge=1, le=64)
    prioritization_patterns: Tuple[str, ...] = ()
    use_sitemaps: bool = True
    max_retries: int = Field(default=3, ge=0, le=10)
    force: bool = False
    debug: bool = False

    @field_validator("strategy", mode="before")
    @classmethod
    def fallback_strategy(cls, v):
        # Unknown strategy names crawl in hybrid order
        if isinstance(v, str) and v.lower() not in {s.value for s in CrawlStrategy}:
            return CrawlStrategy.HYBRID
        if isinstance(v, str):
            return v.lower()
        return v


class JobProgress(BaseModel):
    """Counters reported by a running crawl"""
    pages_crawled: int = 0
    pages_discovered: int = 0
    pages_in_queue: int = 0
    max_depth_reached: int = 0
    pages_failed: int = 0
    pages_skipped: int = 0

    def advance(self, update: "JobProgress") -> "JobProgress":
        """Merge a newer update without letting any cumulative counter go down."""
        return JobProgress(
            pages_crawled=max(self.pages_crawled, update.pages_crawled),
            pages_discovered=max(self.pages_discovered, update.pages_discovered),
            pages_in_queue=update.pages_in_queue,
            max_depth_reached=max(self.max_depth_reached, update.max_depth_reached),
            pages_failed=max(self.pages_failed, update.pages_failed),
            pages_skipped=max(self.pages_skipped, update.pages_skipped),
        )


class JobInfo(BaseModel):
    """Tracked state of one crawl job"""
    id: str
    source_id: str
    settings: CrawlJobSettings
    status: JobStatus = JobStatus.PENDING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    progress: JobProgress = Field(default_factory=JobProgress)
    error: Optional[str] = None

    def snapshot(self) -> "JobInfo":
        return self.model_copy(deep=True)


class BatchJob(BaseModel):
    """Composite of crawl jobs, one per requested source"""
    id: str
    source_ids: List[str]
    job_ids: Dict[str, str] = Field(default_factory=dict)
    child_statuses: Dict[str, JobStatus] = Field(default_factory=dict)
    start_errors: Dict[str, str] = Field(default_factory=dict)
    status: JobStatus = JobStatus.RUNNING
    progress: JobProgress = Field(default_factory=JobProgress)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def snapshot(self) -> "BatchJob":
        return self.model_copy(deep=True)


class SourceCrawlConfig(BaseModel):
    """
    Crawl configuration stored with a source.

    max_depth and max_pages fill in job settings that leave them unset;
    crawl_delay is in milliseconds.
    """
    max_depth: Optional[int] = Field(default=None, ge=0)
    max_pages: Optional[int] = Field(default=None, ge=1)
    crawl_delay: int = Field(default=0, ge=0)
    include_patterns: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)


class DocumentSource(BaseModel):
    """A documentation site registered for crawling"""
    id: str
    name: str
    base_url: str
    added_at: datetime = Field(default_factory=utcnow)
    last_crawled_at: Optional[datetime] = None
    crawl_config: SourceCrawlConfig = Field(default_factory=SourceCrawlConfig)
    tags: List[str] = Field(default_factory=list)


class Document(BaseModel):
    """A crawled page ready for the document store"""
    id: str
    url: str
    title: str
    content: str
    text_content: str
    source_id: str
    indexed_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
