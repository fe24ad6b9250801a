"""Content extraction and document handoff."""

from .extractor import ContentExtractor, ExtractedContent, HtmlContentExtractor
from .handoff import ContentHandoff, document_id, strip_tags

__all__ = [
    "ContentExtractor",
    "ExtractedContent",
    "HtmlContentExtractor",
    "ContentHandoff",
    "document_id",
    "strip_tags"
]
