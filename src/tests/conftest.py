"""Shared fixtures for crawler service tests."""

import asyncio
from typing import Dict, Iterable, List, Optional

import pytest

from docs_crawler.crawler.engine import CrawlEngine
from docs_crawler.errors import FetchNetworkError
from docs_crawler.extraction.handoff import ContentHandoff
from docs_crawler.fetching import FetchedPage, RetryPolicy
from docs_crawler.models import CrawlJobSettings, DocumentSource, FetchBackend
from docs_crawler.queue.url_processor import ExtractedLink, UrlProcessor
from docs_crawler.storage.memory import InMemoryDocumentSink, InMemorySourceRegistry

BASE_URL = "https://docs.example.com/"

PAGE_BODY = (
    "<html><head><title>{title}</title></head><body>"
    "<nav>Menu</nav><main><h1>{title}</h1><p>{text}</p></main>"
    "</body></html>"
)


class FakeSite:
    """Fetch strategy serving an in-memory link graph."""

    backend = FetchBackend.HTTP

    def __init__(
        self,
        pages: Dict[str, List[str]],
        flaky: Optional[Dict[str, int]] = None,
        broken: Iterable[str] = (),
        delay: float = 0.0
    ):
        self.pages = pages
        self.flaky = dict(flaky or {})
        self.broken = set(broken)
        self.delay = delay

        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.opened = False
        self.closed = False

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    async def fetch_page(self, url: str) -> FetchedPage:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)

            if url in self.broken:
                raise FetchNetworkError(url, f"Connection refused: {url}")

            if self.flaky.get(url, 0) > 0:
                self.flaky[url] -= 1
                raise FetchNetworkError(url, f"Connection reset: {url}")

            if url not in self.pages:
                raise FetchNetworkError(url, f"HTTP 404 for {url}", status_code=404)

            title = url.rstrip("/").rsplit("/", 1)[-1] or "home"
            return FetchedPage(
                url=url,
                final_url=url,
                title=title,
                raw_content=PAGE_BODY.format(
                    title=title,
                    text="Reference documentation for the " + title + " page. " * 3
                ),
                links=[ExtractedLink(url=link, text=f"Link to {link}") for link in self.pages[url]],
                status_code=200
            )
        finally:
            self.in_flight -= 1


@pytest.fixture
def source():
    return DocumentSource(id="docs", name="Example Docs", base_url=BASE_URL)


@pytest.fixture
def source_registry(source):
    return InMemorySourceRegistry([source])


@pytest.fixture
def sink():
    return InMemoryDocumentSink()


@pytest.fixture
def make_engine(source, sink):
    """Build a CrawlEngine over a fake site with fast retries."""

    def _make(site, job_id: str = "job-1", document_sink=None, **overrides) -> CrawlEngine:
        values = {"max_depth": 3, "max_pages": 50, "concurrency": 2, "max_retries": 0}
        values.update(overrides)
        settings = CrawlJobSettings(source_id=source.id, **values)

        return CrawlEngine(
            job_id=job_id,
            settings=settings,
            source=source,
            fetcher=site,
            handoff=ContentHandoff(),
            sink=document_sink or sink,
            url_processor=UrlProcessor(BASE_URL),
            retry_policy=RetryPolicy(max_retries=settings.max_retries, base_delay=0.001),
            page_timeout=5.0
        )

    return _make


@pytest.fixture
def fake_site():
    """The FakeSite class, for building link graphs inside tests."""
    return FakeSite
