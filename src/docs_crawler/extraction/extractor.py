"""Main-content extraction from documentation pages."""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from bs4 import BeautifulSoup
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_INCLUDE_SELECTORS = (
    'main', 'article', '.content', '.documentation',
    '.doc-content', '.markdown-body', '.post-content',
    '#content', '#main-content'
)

DEFAULT_EXCLUDE_SELECTORS = (
    'nav', 'header', 'footer', '.navigation', '.nav',
    '.sidebar', '.menu', '.toc', '.table-of-contents',
    '.related', '.comments', '.ads', '.advertisement'
)

LANGUAGE_PATTERN = re.compile(r'language-(\w+)')
WHITESPACE_PATTERN = re.compile(r'\s+')


@dataclass
class ExtractedContent:
    """Text and structure pulled out of a page"""
    text: str
    title: str
    description: Optional[str] = None
    headings: List[Dict] = field(default_factory=list)
    code_blocks: List[Dict] = field(default_factory=list)


class ContentExtractor(Protocol):
    def extract(self, raw_content: str, url: str) -> Optional[ExtractedContent]:
        ...


class HtmlContentExtractor:
    """Extract the readable part of an HTML page with BeautifulSoup."""

    def __init__(
        self,
        include_selectors: Sequence[str] = DEFAULT_INCLUDE_SELECTORS,
        exclude_selectors: Sequence[str] = DEFAULT_EXCLUDE_SELECTORS,
        extract_metadata: bool = True,
        min_content_length: int = 50
    ):
        self.include_selectors = list(include_selectors)
        self.exclude_selectors = list(exclude_selectors)
        self.extract_metadata = extract_metadata
        self.min_content_length = min_content_length

    def extract(self, raw_content: str, url: str) -> Optional[ExtractedContent]:
        """
        Extract content from HTML.

        Returns None when the page holds less than min_content_length
        characters of text.
        """
        soup = BeautifulSoup(raw_content, 'lxml')

        title = self._extract_title(soup)

        description = None
        if self.extract_metadata:
            description = self._meta_content(soup, name='description') or \
                self._meta_content(soup, prop='og:description')

        headings = []
        for element in soup.find_all(['h1', 'h2', 'h3', 'h4', 'h5', 'h6']):
            text = self._clean(element.get_text(' '))
            if text:
                headings.append({'text': text, 'level': int(element.name[1])})

        code_blocks = []
        for element in soup.select('pre code, pre.highlight, .highlight pre'):
            code = element.get_text().strip()
            if not code:
                continue
            classes = ' '.join(element.get('class') or [])
            match = LANGUAGE_PATTERN.search(classes)
            code_blocks.append({'code': code, 'language': match.group(1) if match else None})

        text = ''
        for selector in self.include_selectors:
            elements = soup.select(selector)
            if not elements:
                continue

            parts = []
            for element in elements:
                self._strip_chrome(element)
                parts.append(self._clean(element.get_text(' ')))
            text = ' '.join(part for part in parts if part)

            if len(text) > self.min_content_length:
                break

        if len(text) < self.min_content_length and soup.body:
            self._strip_chrome(soup.body)
            text = self._clean(soup.body.get_text(' '))

        if len(text) < self.min_content_length:
            logger.debug("Page content below minimum length", url=url, length=len(text))
            return None

        return ExtractedContent(
            text=text,
            title=title,
            description=description,
            headings=headings,
            code_blocks=code_blocks
        )

    def _extract_title(self, soup: BeautifulSoup) -> str:
        title = self._clean(soup.title.get_text()) if soup.title else ''

        # Prefer the h1 when the document title looks like a site-wide one
        if not title or ' | ' in title or len(title) > 60:
            h1 = soup.find('h1')
            if h1:
                heading = self._clean(h1.get_text(' '))
                if 5 < len(heading) < 100:
                    title = heading

        return title

    def _strip_chrome(self, element):
        for selector in self.exclude_selectors:
            for node in element.select(selector):
                if not node.decomposed:
                    node.decompose()

    @staticmethod
    def _meta_content(soup: BeautifulSoup, name: str = None, prop: str = None) -> Optional[str]:
        attrs = {'name': name} if name else {'property': prop}
        tag = soup.find('meta', attrs=attrs)
        if tag and tag.get('content'):
            return tag['content'].strip()
        return None

    @staticmethod
    def _clean(text: str) -> str:
        return WHITESPACE_PATTERN.sub(' ', text or '').strip()
