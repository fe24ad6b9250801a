"""Tests for retry and timeout handling around a fetch strategy."""

import asyncio
from unittest.mock import AsyncMock, Mock, call, patch

import pytest

from docs_crawler.errors import (
    FetchNetworkError,
    FetchTimeoutError,
    JobInfrastructureError,
    UnsupportedContentError,
)
from docs_crawler.fetching import FetchedPage, RetryPolicy, fetch_with_retry
from docs_crawler.models import FetchBackend

URL = "https://docs.example.com/guide"


def make_strategy(*side_effects):
    strategy = Mock()
    strategy.backend = FetchBackend.HTTP
    strategy.fetch_page = AsyncMock(side_effect=list(side_effects))
    return strategy


def page():
    return FetchedPage(url=URL, final_url=URL, title="Guide", raw_content="<p>Guide</p>")


class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy()
        assert [policy.delay(attempt) for attempt in range(3)] == [1.0, 2.0, 4.0]

    def test_custom_base_delay(self):
        assert RetryPolicy(base_delay=0.5).delay(2) == 2.0


class TestFetchWithRetry:

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        strategy = make_strategy(page())

        result = await fetch_with_retry(strategy, URL, RetryPolicy(), page_timeout=5.0)

        assert result.title == "Guide"
        strategy.fetch_page.assert_awaited_once_with(URL)

    @pytest.mark.asyncio
    async def test_backoff_delays_between_attempts(self):
        strategy = make_strategy(
            FetchNetworkError(URL, "reset"),
            FetchNetworkError(URL, "reset"),
            page()
        )

        with patch("docs_crawler.fetching.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await fetch_with_retry(strategy, URL, RetryPolicy(), page_timeout=5.0)

        assert result.url == URL
        assert strategy.fetch_page.await_count == 3
        assert sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        strategy = make_strategy(*[FetchNetworkError(URL, "refused")] * 3)

        with pytest.raises(FetchNetworkError):
            await fetch_with_retry(
                strategy, URL, RetryPolicy(max_retries=2, base_delay=0.001), page_timeout=5.0
            )

        assert strategy.fetch_page.await_count == 3

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        strategy = make_strategy(FetchNetworkError(URL, "refused"))

        with pytest.raises(FetchNetworkError):
            await fetch_with_retry(strategy, URL, RetryPolicy(max_retries=0), page_timeout=5.0)

        assert strategy.fetch_page.await_count == 1

    @pytest.mark.asyncio
    async def test_unsupported_content_is_not_retried(self):
        strategy = make_strategy(UnsupportedContentError(URL, "application/pdf"))

        with pytest.raises(UnsupportedContentError):
            await fetch_with_retry(strategy, URL, RetryPolicy(base_delay=0.001), page_timeout=5.0)

        assert strategy.fetch_page.await_count == 1

    @pytest.mark.asyncio
    async def test_page_timeout_becomes_fetch_timeout(self):
        async def hang(url):
            await asyncio.sleep(10)

        strategy = Mock()
        strategy.fetch_page = hang

        with pytest.raises(FetchTimeoutError) as exc_info:
            await fetch_with_retry(strategy, URL, RetryPolicy(max_retries=0), page_timeout=0.05)

        assert exc_info.value.url == URL
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_classified(self):
        strategy = make_strategy(KeyError("boom"))

        with pytest.raises(FetchNetworkError) as exc_info:
            await fetch_with_retry(strategy, URL, RetryPolicy(max_retries=0), page_timeout=5.0)

        assert "KeyError" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_infrastructure_errors_propagate_immediately(self):
        strategy = make_strategy(JobInfrastructureError("browser crashed"), page())

        with pytest.raises(JobInfrastructureError):
            await fetch_with_retry(strategy, URL, RetryPolicy(base_delay=0.001), page_timeout=5.0)

        assert strategy.fetch_page.await_count == 1

    @pytest.mark.asyncio
    async def test_stop_request_skips_remaining_retries(self):
        strategy = make_strategy(*[FetchNetworkError(URL, "refused")] * 4)

        with pytest.raises(FetchNetworkError):
            await fetch_with_retry(
                strategy,
                URL,
                RetryPolicy(max_retries=3, base_delay=0.001),
                page_timeout=5.0,
                should_stop=lambda: True
            )

        assert strategy.fetch_page.await_count == 1
