"""Process-wide browser shared by all browser-backed crawl jobs."""

import asyncio
from typing import Any, Dict, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext
import structlog

from ..errors import JobInfrastructureError

logger = structlog.get_logger(__name__)


class BrowserPool:
    """
    Owns one browser process and hands out isolated contexts.

    Each crawl job gets its own BrowserContext so cookies, storage and
    routes never leak between jobs.
    """

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: bool = True,
        user_agent: Optional[str] = None,
        max_contexts: int = 20
    ):
        """
        Initialize browser pool.

        Args:
            browser_type: Browser type (chromium, firefox, webkit)
            headless: Run the browser in headless mode
            user_agent: User agent applied to every context
            max_contexts: Maximum number of concurrently open contexts
        """
        self.browser_type = browser_type
        self.headless = headless
        self.user_agent = user_agent
        self.max_contexts = max_contexts

        self.playwright = None
        self.browser: Optional[Browser] = None
        self.browser_lock = asyncio.Lock()
        self._active_contexts = 0

    @property
    def active_contexts(self) -> int:
        return self._active_contexts

    async def start(self):
        """Start playwright and launch the browser."""
        async with self.browser_lock:
            await self._ensure_browser()

    async def stop(self):
        """Close the browser and stop playwright."""
        logger.info("Stopping browser pool")

        async with self.browser_lock:
            if self.browser:
                try:
                    await self.browser.close()
                except Exception as e:
                    logger.warning("Error closing browser", error=str(e))
                self.browser = None

            if self.playwright:
                await self.playwright.stop()
                self.playwright = None

    async def _ensure_browser(self) -> Browser:
        if self.browser and self.browser.is_connected():
            return self.browser

        if not self.playwright:
            self.playwright = await async_playwright().start()

        launcher = getattr(self.playwright, self.browser_type, None)
        if launcher is None:
            raise JobInfrastructureError(f"Unknown browser type: {self.browser_type}")

        self.browser = await launcher.launch(
            headless=self.headless,
            args=['--disable-dev-shm-usage', '--disable-gpu']
        )

        logger.info("Launched browser", browser_type=self.browser_type)
        return self.browser

    async def new_context(self, options: Optional[Dict[str, Any]] = None) -> BrowserContext:
        """Open an isolated browsing context, launching the browser if needed."""
        async with self.browser_lock:
            if self._active_contexts >= self.max_contexts:
                raise JobInfrastructureError(
                    "Browser context limit reached",
                    {"max_contexts": self.max_contexts}
                )

            try:
                browser = await self._ensure_browser()

                context_options = {
                    'viewport': {'width': 1920, 'height': 1080},
                    'java_script_enabled': True,
                    'ignore_https_errors': True
                }
                if self.user_agent:
                    context_options['user_agent'] = self.user_agent
                if options:
                    context_options.update(options)

                context = await browser.new_context(**context_options)

            except JobInfrastructureError:
                raise

            except Exception as e:
                logger.error("Error opening browser context", error=str(e))
                raise JobInfrastructureError(f"Cannot open browser context: {e}") from e

            self._active_contexts += 1
            return context

    async def release_context(self, context: BrowserContext):
        """Close a context obtained from new_context."""
        try:
            await context.close()
        except Exception as e:
            logger.debug("Error closing browser context", error=str(e))
        finally:
            async with self.browser_lock:
                self._active_contexts = max(0, self._active_contexts - 1)

