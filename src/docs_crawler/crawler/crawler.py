"""Lightweight HTTP fetch strategy"""

import asyncio
import re
from typing import Optional, Set

import aiohttp
from aiohttp import ClientTimeout, TCPConnector
import structlog

from ..errors import FetchNetworkError, FetchTimeoutError, UnsupportedContentError
from ..fetching import FetchedPage
from ..models import FetchBackend
from ..queue.url_processor import UrlProcessor

logger = structlog.get_logger(__name__)

TITLE_PATTERN = re.compile(r"<title[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)


class HttpFetchStrategy:
    """
    Fetches pages with a single aiohttp request:
    - Connection pooling per job
    - Redirects followed
    - Content type and size limits
    - Pattern-based link scan, no DOM
    """

    backend = FetchBackend.HTTP

    def __init__(
        self,
        url_processor: UrlProcessor,
        user_agent: str = "DocsCrawler/1.0",
        timeout: float = 10.0,
        max_content_length: int = 10_000_000,  # 10MB
        max_redirects: int = 5,
        allowed_content_types: Optional[Set[str]] = None
    ):
        self.url_processor = url_processor
        self.user_agent = user_agent
        self.timeout_seconds = timeout
        self.timeout = ClientTimeout(total=timeout)
        self.max_content_length = max_content_length
        self.max_redirects = max_redirects

        self.allowed_content_types = allowed_content_types or {
            "text/html",
            "application/xhtml+xml",
            "text/plain"
        }

        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def open(self):
        """Initialize the HTTP session"""
        if not self._session:
            connector = TCPConnector(
                limit=100,
                limit_per_host=10,
                ttl_dns_cache=300
            )

            headers = {
                "User-Agent": self.user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9",
                "Accept-Encoding": "gzip, deflate",
            }

            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers=headers
            )

            logger.debug("HTTP fetch strategy opened")

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None
            logger.debug("HTTP fetch strategy closed")

    async def fetch_page(self, url: str) -> FetchedPage:
        if not self._session:
            await self.open()

        try:
            async with self._session.get(
                url,
                allow_redirects=True,
                max_redirects=self.max_redirects
            ) as response:
                if response.status >= 400:
                    raise FetchNetworkError(
                        url,
                        f"HTTP {response.status} for {url}",
                        status_code=response.status
                    )

                content_type = response.headers.get("Content-Type", "")
                base_content_type = content_type.split(";")[0].strip().lower()
                if base_content_type and base_content_type not in self.allowed_content_types:
                    raise UnsupportedContentError(url, base_content_type)

                content_length = response.headers.get("Content-Length")
                if content_length and content_length.isdigit() and int(content_length) > self.max_content_length:
                    raise FetchNetworkError(
                        url,
                        f"Content too large: {content_length} bytes",
                        status_code=response.status
                    )

                body = bytearray()
                async for chunk in response.content.iter_chunked(8192):
                    body.extend(chunk)
                    if len(body) > self.max_content_length:
                        raise FetchNetworkError(
                            url,
                            f"Content exceeds {self.max_content_length} bytes",
                            status_code=response.status
                        )

                content = bytes(body).decode(response.charset or "utf-8", errors="ignore")
                final_url = str(response.url)
                status_code = response.status

        except asyncio.TimeoutError:
            raise FetchTimeoutError(url, self.timeout_seconds)

        except aiohttp.ClientError as e:
            raise FetchNetworkError(url, f"{type(e).__name__}: {e}")

        except LookupError as e:
            # Unknown charset announced by the server
            raise FetchNetworkError(url, str(e))

        return FetchedPage(
            url=url,
            final_url=final_url,
            title=self._extract_title(content),
            raw_content=content,
            links=self.url_processor.extract_links(content, final_url),
            status_code=status_code
        )

    @staticmethod
    def _extract_title(content: str) -> str:
        match = TITLE_PATTERN.search(content)
        if not match:
            return ""
        return " ".join(match.group(1).split())
