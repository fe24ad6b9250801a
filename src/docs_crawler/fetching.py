"""Fetch strategy interface, retry policy and per-page timeout racing"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

import structlog

from .errors import FetchError, FetchNetworkError, FetchTimeoutError, JobInfrastructureError
from .models import FetchBackend
from .queue.url_processor import ExtractedLink

logger = structlog.get_logger(__name__)


@dataclass
class FetchedPage:
    """Result of acquiring a single page"""
    url: str
    final_url: str
    title: str
    raw_content: str
    links: List[ExtractedLink] = field(default_factory=list)
    status_code: Optional[int] = None
    text_content: Optional[str] = None


class FetchStrategy(Protocol):
    """Page acquisition backend used by one crawl job"""

    backend: FetchBackend

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def fetch_page(self, url: str) -> FetchedPage:
        ...


@dataclass
class RetryPolicy:
    """Exponential backoff: base_delay * 2 ** attempt seconds."""
    max_retries: int = 3
    base_delay: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


async def fetch_with_retry(
    strategy: FetchStrategy,
    url: str,
    policy: RetryPolicy,
    page_timeout: float,
    should_stop: Optional[Callable[[], bool]] = None,
    log=None
) -> FetchedPage:
    """
    Fetch a page, racing every attempt against the overall page timeout.

    A late attempt is cancelled by the timeout, so nothing outlives the
    page. Infrastructure errors propagate untouched; everything else is
    classified as a FetchError and retried per the policy.
    """
    log = log or logger
    last_error: Optional[FetchError] = None

    for attempt in range(policy.max_retries + 1):
        try:
            return await asyncio.wait_for(strategy.fetch_page(url), timeout=page_timeout)

        except JobInfrastructureError:
            raise

        except asyncio.TimeoutError:
            last_error = FetchTimeoutError(url, page_timeout)

        except FetchError as e:
            last_error = e

        except Exception as e:
            last_error = FetchNetworkError(url, f"{type(e).__name__}: {e}")

        log.warning(
            "Fetch attempt failed",
            url=url,
            attempt=attempt + 1,
            max_attempts=policy.max_retries + 1,
            error=str(last_error)
        )

        if not last_error.retryable or attempt >= policy.max_retries:
            break
        if should_stop and should_stop():
            break

        await asyncio.sleep(policy.delay(attempt))

    raise last_error
