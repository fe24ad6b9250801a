"""Browser-rendering fetch strategy using Playwright."""

from typing import List, Optional

from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeout,
)
import structlog

from ..errors import FetchNetworkError, FetchTimeoutError, JobInfrastructureError
from ..fetching import FetchedPage
from ..models import FetchBackend
from ..queue.url_processor import ExtractedLink, UrlProcessor
from .browser_pool import BrowserPool
from .strategies import EXTRACT_PAGE_JS, RenderingOptions, create_resource_blocker

logger = structlog.get_logger(__name__)


class BrowserFetchStrategy:
    """Renders pages in an isolated browser context owned by one job."""

    backend = FetchBackend.BROWSER

    def __init__(
        self,
        browser_pool: BrowserPool,
        url_processor: UrlProcessor,
        options: Optional[RenderingOptions] = None
    ):
        """
        Initialize the strategy.

        Args:
            browser_pool: Process-wide browser pool
            url_processor: Normalizes links found in the rendered DOM
            options: Timeouts, readiness condition and blocked resources
        """
        self.browser_pool = browser_pool
        self.url_processor = url_processor
        self.options = options or RenderingOptions()

        self._context: Optional[BrowserContext] = None

    async def open(self):
        """Allocate the job's browser context and install resource blocking."""
        if self._context:
            return

        context = await self.browser_pool.new_context()

        try:
            if self.options.extra_headers:
                await context.set_extra_http_headers(self.options.extra_headers)

            if self.options.block_resources:
                await context.route(
                    '**/*',
                    create_resource_blocker(self.options.block_resources)
                )
        except Exception as e:
            await self.browser_pool.release_context(context)
            raise JobInfrastructureError(f"Cannot configure browser context: {e}") from e

        self._context = context

    async def close(self):
        """Tear down the context. In-flight page operations fail."""
        if self._context:
            context, self._context = self._context, None
            await self.browser_pool.release_context(context)

    async def fetch_page(self, url: str) -> FetchedPage:
        if not self._context:
            await self.open()
        context = self._context

        page: Optional[Page] = None

        try:
            page = await context.new_page()

            response = await page.goto(
                url,
                wait_until=self.options.wait_strategy.value,
                timeout=self.options.navigation_timeout
            )

            status_code = response.status if response else None
            if status_code is not None and status_code >= 400:
                raise FetchNetworkError(url, f"HTTP {status_code} for {url}", status_code=status_code)

            await self._wait_until_ready(page)

            data = await page.evaluate(EXTRACT_PAGE_JS) or {}
            html = await page.content()
            final_url = page.url or url
            title = data.get('title') or await page.title()

        except PlaywrightTimeout as e:
            logger.debug("Timeout rendering page", url=url, error=str(e))
            raise FetchTimeoutError(url, self.options.navigation_timeout / 1000)

        except PlaywrightError as e:
            raise FetchNetworkError(url, f"Rendering error: {e}")

        finally:
            if page:
                try:
                    await page.close()
                except PlaywrightError as e:
                    logger.debug("Error closing page", url=url, error=str(e))

        links = self._collect_links(data.get('links') or [], final_url)
        if not links:
            links = self.url_processor.extract_links(html, final_url)

        return FetchedPage(
            url=url,
            final_url=final_url,
            title=title or "",
            raw_content=html,
            links=links,
            status_code=status_code,
            text_content=data.get('text') or None
        )

    async def _wait_until_ready(self, page: Page):
        """Wait for the load state, then for every ready selector to be visible."""
        await page.wait_for_load_state(
            self.options.wait_strategy.value,
            timeout=self.options.page_load_timeout
        )

        for selector in self.options.ready_selectors:
            await page.wait_for_selector(
                selector,
                state='visible',
                timeout=self.options.action_timeout
            )

    def _collect_links(self, raw_links: List[dict], page_url: str) -> List[ExtractedLink]:
        links = []
        seen = set()

        for raw in raw_links:
            url = self.url_processor.normalize(raw.get('href') or '', page_url)
            if not url or url in seen:
                continue
            seen.add(url)
            links.append(ExtractedLink(url=url, text=(raw.get('text') or '').strip() or None))

        return links
