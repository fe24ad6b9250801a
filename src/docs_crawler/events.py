"""Typed crawl lifecycle events and the channel that carries them"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Dict, List, Optional

import structlog

from .models import JobProgress

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CrawlEvent:
    job_id: str

    event_name: ClassVar[str] = "event"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = self.event_name
        return data


@dataclass(frozen=True)
class CrawlStarted(CrawlEvent):
    source_id: str
    start_url: str

    event_name: ClassVar[str] = "crawl-started"


@dataclass(frozen=True)
class PageDiscovered(CrawlEvent):
    url: str
    depth: int
    parent_url: Optional[str] = None

    event_name: ClassVar[str] = "page-discovered"


@dataclass(frozen=True)
class PageProcessing(CrawlEvent):
    url: str
    depth: int

    event_name: ClassVar[str] = "page-processing"


@dataclass(frozen=True)
class DocumentProcessed(CrawlEvent):
    url: str
    document_id: Optional[str]
    success: bool

    event_name: ClassVar[str] = "document-processed"


@dataclass(frozen=True)
class CrawlErrorEvent(CrawlEvent):
    url: str
    message: str

    event_name: ClassVar[str] = "crawl-error"


@dataclass(frozen=True)
class ProgressUpdate(CrawlEvent):
    progress: JobProgress

    event_name: ClassVar[str] = "progress"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event_name,
            "job_id": self.job_id,
            "progress": self.progress.model_dump()
        }


@dataclass(frozen=True)
class JobCompleted(CrawlEvent):
    status: str
    pages_crawled: int
    pages_discovered: int
    total_time_ms: int
    success: bool
    error: Optional[str] = None

    event_name: ClassVar[str] = "job-completed"


_CLOSED = object()


class Subscription:
    """One consumer's ordered view of a channel"""

    def __init__(self, channel: "EventChannel"):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._done = False

    def _push(self, item):
        self._queue.put_nowait(item)

    async def get(self) -> Optional[CrawlEvent]:
        """Next event, or None once the channel is closed."""
        if self._done:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._done = True
            return None
        return item

    def unsubscribe(self):
        self._channel._remove(self)
        self._done = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> CrawlEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventChannel:
    """
    In-process fan-out of crawl events.

    Every subscriber receives events in publish order. Publishing never
    blocks the publisher.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._subscribers: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        if self._closed:
            subscription._push(_CLOSED)
        else:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, event: CrawlEvent):
        if self._closed:
            logger.debug("Event dropped on closed channel", channel=self.name, event_name=event.event_name)
            return
        for subscription in list(self._subscribers):
            subscription._push(event)

    def close(self):
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._push(_CLOSED)
        self._subscribers.clear()

    def _remove(self, subscription: Subscription):
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
