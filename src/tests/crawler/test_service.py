"""End-to-end tests of the crawler service against a local site."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from docs_crawler.__main__ import parse_args, run
from docs_crawler.config import CrawlerConfig, load_config
from docs_crawler.errors import (
    ConfigurationError,
    JobInfrastructureError,
    SourceNotFoundError,
    ValidationError,
)
from docs_crawler.events import CrawlStarted, JobCompleted
from docs_crawler.models import DocumentSource, JobStatus
from docs_crawler.rendering.browser_pool import BrowserPool
from docs_crawler.service import CrawlerService
from docs_crawler.storage.memory import InMemoryDocumentSink, InMemorySourceRegistry

SITE = {
    "/": ("Home", ["/a", "/b", "https://elsewhere.example.org/"]),
    "/a": ("Page A", ["/c", "/"]),
    "/b": ("Page B", []),
    "/c": ("Page C", []),
}

TEMPLATE = """<html><head><title>{title}</title></head>
<body><main><h1>{title}</h1>
<p>This page documents {title} in enough detail to pass the extractor length check.</p>
{links}</main></body></html>"""


async def handle(request):
    title, links = SITE[request.path]
    anchors = "".join(f'<a href="{link}">{link}</a>' for link in links)
    return web.Response(text=TEMPLATE.format(title=title, links=anchors), content_type="text/html")


@pytest_asyncio.fixture
async def site():
    app = web.Application()
    for path in SITE:
        app.router.add_get(path, handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def config():
    return CrawlerConfig(
        LOG_JSON=False,
        REDIS_URL=None,
        RETRY_BASE_DELAY=0.01,
        BATCH_POLL_INTERVAL=0.05,
        PAGE_TIMEOUT=5.0,
    )


@pytest.fixture
def browser_pool():
    pool = Mock(spec=BrowserPool)
    pool.new_context = AsyncMock(side_effect=JobInfrastructureError("Cannot open browser context"))
    pool.stop = AsyncMock()
    return pool


@pytest_asyncio.fixture
async def service(site, config, browser_pool):
    registry = InMemorySourceRegistry([
        DocumentSource(id="local", name="Local Docs", base_url=str(site.make_url("/")))
    ])
    service = CrawlerService(
        config,
        source_registry=registry,
        document_sink=InMemoryDocumentSink(),
        browser_pool=browser_pool
    )
    await service.start()
    yield service
    await service.stop()


async def wait_for_batch(service, batch_id):
    for _ in range(200):
        batch = service.get_batch_status(batch_id)
        if batch.status.is_terminal:
            return batch
        await asyncio.sleep(0.02)
    raise AssertionError("batch did not finish")


class TestCrawlerService:

    @pytest.mark.asyncio
    async def test_crawl_job_end_to_end(self, service, site):
        events = service.subscribe()

        job_id = await service.start_crawl_job({"source_id": "local", "max_depth": 2})
        info = await service.job_manager.wait(job_id, timeout=10.0)

        assert info.status == JobStatus.COMPLETED
        assert info.progress.pages_crawled == 4
        assert info.settings.max_pages == 500

        documents = service.document_sink.documents
        assert set(documents) == {str(site.make_url(path)) for path in SITE}
        assert documents[str(site.make_url("/a"))].title == "Page A"

        first = await asyncio.wait_for(events.get(), timeout=1.0)
        assert isinstance(first, CrawlStarted)
        assert first.job_id == job_id

        assert service.get_crawl_job_status(job_id).status == JobStatus.COMPLETED
        assert service.cancel_crawl_job(job_id) is False

        source = await service.source_registry.find_by_id("local")
        assert source.last_crawled_at is not None

    @pytest.mark.asyncio
    async def test_max_depth_limits_crawl(self, service):
        job_id = await service.start_crawl_job({"source_id": "local", "max_depth": 0})
        info = await service.job_manager.wait(job_id, timeout=10.0)

        assert info.progress.pages_crawled == 1
        assert info.progress.pages_discovered == 1

    @pytest.mark.asyncio
    async def test_validation_errors(self, service):
        with pytest.raises(SourceNotFoundError):
            await service.start_crawl_job({"source_id": "nope"})
        with pytest.raises(ValidationError):
            await service.start_crawl_job({"source_id": "local", "max_pages": 0})
        with pytest.raises(ValidationError):
            await service.start_batch_crawl(["Unknown Docs"])

    @pytest.mark.asyncio
    async def test_batch_crawl(self, service):
        batch_id = await service.start_batch_crawl(["Local Docs"], {"max_depth": 1})

        batch = await wait_for_batch(service, batch_id)

        assert batch.status == JobStatus.COMPLETED
        assert batch.source_ids == ["local"]
        assert batch.progress.pages_crawled == 3
        assert service.cancel_batch_crawl(batch_id) is False

    @pytest.mark.asyncio
    async def test_browser_failure_fails_job(self, service, browser_pool):
        events = service.subscribe()

        job_id = await service.start_crawl_job({"source_id": "local", "fetch_backend": "browser"})
        info = await service.job_manager.wait(job_id, timeout=10.0)

        assert info.status == JobStatus.FAILED
        assert "browser context" in info.error
        browser_pool.new_context.assert_awaited_once()

        while True:
            event = await asyncio.wait_for(events.get(), timeout=1.0)
            if isinstance(event, JobCompleted):
                break
        assert event.success is False

    @pytest.mark.asyncio
    async def test_metrics_follow_jobs(self, service):
        job_id = await service.start_crawl_job({"source_id": "local", "max_depth": 1})
        await service.job_manager.wait(job_id, timeout=10.0)
        await asyncio.sleep(0.05)

        registry = service.monitor.registry
        assert registry.get_sample_value("docs_crawler_jobs_total", {"status": "completed"}) == 1
        assert registry.get_sample_value("docs_crawler_pages_total", {"outcome": "stored"}) == 3
        assert registry.get_sample_value("docs_crawler_active_jobs") == 0

    @pytest.mark.asyncio
    async def test_sweep(self, service):
        assert service.sweep() == {"jobs": 0, "batches": 0}


class TestCommandLine:

    def test_parse_args(self):
        args = parse_args(["all", "--max-depth", "2", "--backend", "browser", "--force"])

        assert args.sources == ["all"]
        assert args.max_depth == 2
        assert args.backend == "browser"
        assert args.force is True
        assert args.max_pages is None

    def test_help_describes_output(self, capsys):
        with pytest.raises(SystemExit):
            parse_args(["--help"])

        assert "print its final status as JSON" in " ".join(capsys.readouterr().out.split())

    def test_config_parses_comma_lists(self, monkeypatch):
        monkeypatch.setenv("DOCS_CRAWLER_READY_SELECTORS", "main, .docs-loaded")
        monkeypatch.setenv("DOCS_CRAWLER_LOG_LEVEL", "debug")

        config = CrawlerConfig()

        assert config.READY_SELECTORS == ["main", ".docs-loaded"]
        assert config.LOG_LEVEL == "DEBUG"

    def test_config_rejects_unknown_browser(self):
        with pytest.raises(ValueError):
            CrawlerConfig(BROWSER_TYPE="netscape")

    def test_load_config_wraps_validation_errors(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(BROWSER_TYPE="netscape")

        assert exc_info.value.code == "CONFIGURATION_ERROR"
        assert exc_info.value.details["errors"][0].startswith("BROWSER_TYPE")

    @pytest.mark.asyncio
    async def test_run_reports_bad_config(self, monkeypatch, capsys):
        monkeypatch.setenv("DOCS_CRAWLER_BROWSER_TYPE", "netscape")

        assert await run(parse_args(["all"])) == 2
        assert "CONFIGURATION_ERROR" in capsys.readouterr().err
