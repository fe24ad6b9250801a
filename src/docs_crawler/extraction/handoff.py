"""Turns fetched pages into storable documents"""

import hashlib
import re
from typing import Optional, Sequence

import structlog

from ..fetching import FetchedPage
from ..models import Document, QueueItem, utcnow
from .extractor import ContentExtractor, HtmlContentExtractor

logger = structlog.get_logger(__name__)

SCRIPT_STYLE_PATTERN = re.compile(r'<(script|style|noscript)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
TAG_PATTERN = re.compile(r'<[^>]*>')
WHITESPACE_PATTERN = re.compile(r'\s+')


def strip_tags(html: str) -> str:
    """Plain text of an HTML string, without building a DOM."""
    if not html:
        return ''
    text = SCRIPT_STYLE_PATTERN.sub(' ', html)
    text = TAG_PATTERN.sub(' ', text)
    return WHITESPACE_PATTERN.sub(' ', text).strip()


def document_id(url: str) -> str:
    return "doc_" + hashlib.sha256(url.encode()).hexdigest()[:16]


class ContentHandoff:
    """Invokes the content extractor and builds the document record."""

    def __init__(
        self,
        extractor: Optional[ContentExtractor] = None,
        tags: Sequence[str] = ()
    ):
        self.extractor = extractor or HtmlContentExtractor()
        self.tags = list(tags)

    def build_document(self, page: FetchedPage, item: QueueItem, source_id: str) -> Document:
        extracted = None
        try:
            extracted = self.extractor.extract(page.raw_content, page.final_url)
        except Exception as e:
            # Extraction is best effort; the page is still stored
            logger.warning(
                "Content extraction failed, falling back to stripped text",
                url=item.url,
                error=str(e)
            )

        fallback_text = page.text_content or strip_tags(page.raw_content)

        metadata = {
            'depth': item.depth,
            'parent_url': item.parent_url,
            'final_url': page.final_url,
            'status_code': page.status_code,
            'extracted': extracted is not None
        }

        if extracted is not None:
            content = extracted.text
            title = extracted.title or page.title
            metadata.update(
                description=extracted.description,
                headings=extracted.headings,
                code_blocks=extracted.code_blocks
            )
        else:
            content = fallback_text
            title = page.title

        now = utcnow()
        return Document(
            id=document_id(item.url),
            url=item.url,
            title=title or item.url,
            content=content,
            text_content=strip_tags(content),
            source_id=source_id,
            indexed_at=now,
            updated_at=now,
            tags=list(self.tags),
            metadata=metadata
        )
