"""Selection of the fetch backend at job start"""

from typing import Optional

from ..config import CrawlerConfig
from ..errors import JobInfrastructureError
from ..fetching import FetchStrategy
from ..models import FetchBackend
from ..queue.url_processor import UrlProcessor
from ..rendering.browser_pool import BrowserPool
from ..rendering.renderer import BrowserFetchStrategy
from ..rendering.strategies import RenderingOptions
from .crawler import HttpFetchStrategy


def rendering_options(config: CrawlerConfig) -> RenderingOptions:
    return RenderingOptions(
        navigation_timeout=int(config.NAVIGATION_TIMEOUT * 1000),
        page_load_timeout=int(config.PAGE_LOAD_TIMEOUT * 1000),
        action_timeout=int(config.ACTION_TIMEOUT * 1000),
        ready_selectors=list(config.READY_SELECTORS),
        block_resources=list(config.BLOCKED_RESOURCE_TYPES),
    )


def create_fetch_strategy(
    backend: FetchBackend,
    url_processor: UrlProcessor,
    config: CrawlerConfig,
    browser_pool: Optional[BrowserPool] = None
) -> FetchStrategy:
    """Build the fetch strategy a job asked for."""
    if backend == FetchBackend.BROWSER:
        if browser_pool is None:
            raise JobInfrastructureError("Browser backend requested but no browser pool is configured")
        return BrowserFetchStrategy(
            browser_pool,
            url_processor,
            options=rendering_options(config)
        )

    return HttpFetchStrategy(
        url_processor,
        user_agent=config.USER_AGENT,
        timeout=config.HTTP_REQUEST_TIMEOUT
    )
