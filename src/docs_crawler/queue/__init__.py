"""URL processing and frontier management"""

from .url_processor import ExtractedLink, ProcessedUrl, UrlProcessor, compile_patterns
from .frontier import Frontier

__all__ = [
    "ExtractedLink",
    "ProcessedUrl",
    "UrlProcessor",
    "compile_patterns",
    "Frontier",
]
