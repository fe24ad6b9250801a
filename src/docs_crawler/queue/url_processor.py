"""URL normalization, deduplication keys and link filtering"""

import re
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Optional, Pattern, Sequence

import structlog
from yarl import URL

logger = structlog.get_logger(__name__)

SKIPPED_SCHEMES = ("javascript", "mailto", "tel", "data")

DEFAULT_EXCLUDED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp",
    ".mp4", ".webm", ".mp3", ".wav", ".ogg",
    ".pdf", ".zip", ".tar", ".gz", ".rar",
)

ANCHOR_PATTERN = re.compile(
    r"<a\b[^>]*?\bhref\s*=\s*[\"']([^\"']*)[\"'][^>]*>(.*?)</a\s*>",
    re.IGNORECASE | re.DOTALL
)
TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class ExtractedLink:
    """Absolute link found on a page, with its anchor text"""
    url: str
    text: Optional[str] = None


class ProcessedUrl(NamedTuple):
    url: str
    dedupe_key: str


def compile_patterns(patterns: Iterable[str]) -> List[Pattern]:
    """Compile case-insensitive patterns; invalid regexes match literally."""
    compiled = []
    for pattern in patterns:
        if not pattern:
            continue
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning("Invalid URL pattern, matching literally", pattern=pattern, error=str(e))
            compiled.append(re.compile(re.escape(pattern), re.IGNORECASE))
    return compiled


class UrlProcessor:
    """
    Stateless URL handling for one crawl:
    - Normalization against a base URL
    - Dedupe keys (host + path + query, scheme-insensitive)
    - Scope and pattern filtering
    - Link extraction from raw HTML
    """

    def __init__(
        self,
        base_url: str,
        same_domain_only: bool = True,
        include_patterns: Sequence[str] = (),
        exclude_patterns: Sequence[str] = (),
        excluded_extensions: Optional[Sequence[str]] = None
    ):
        self.base_url = base_url
        try:
            self.base_host = (URL(base_url).host or "").lower()
        except ValueError:
            self.base_host = ""
        self.same_domain_only = same_domain_only
        self.include_patterns = compile_patterns(include_patterns)
        self.exclude_patterns = compile_patterns(exclude_patterns)
        self.excluded_extensions = tuple(
            ext.lower() for ext in (
                DEFAULT_EXCLUDED_EXTENSIONS if excluded_extensions is None else excluded_extensions
            )
        )

    def normalize(self, url: str, base: Optional[str] = None) -> str:
        """Absolute URL without fragment, or "" when the input is unusable."""
        try:
            candidate = (url or "").strip()
            if not candidate:
                return ""

            ref = URL(candidate)
            if ref.scheme and ref.scheme.lower() in SKIPPED_SCHEMES:
                return ""

            if not ref.scheme:
                base_url = URL(base or self.base_url)
                if not base_url.is_absolute():
                    return ""
                ref = base_url.join(ref)

            if ref.scheme not in ("http", "https") or not ref.host:
                return ""

            return str(ref.with_fragment(None))

        except (ValueError, TypeError):
            return ""

    def dedupe_key(self, url: str) -> str:
        try:
            parsed = URL(url)
        except (ValueError, TypeError):
            return ""

        if not parsed.host:
            return ""

        path = parsed.raw_path or "/"
        if len(path) > 1 and path.endswith("/"):
            path = path.rstrip("/") or "/"

        host = parsed.host.lower()
        if parsed.port and not parsed.is_default_port():
            host += f":{parsed.port}"

        key = host + path
        if parsed.raw_query_string:
            key += "?" + parsed.raw_query_string
        return key

    def accept(self, url: str) -> bool:
        try:
            parsed = URL(url)
        except (ValueError, TypeError):
            return False

        if not parsed.host:
            return False

        if self.same_domain_only and parsed.host.lower() != self.base_host:
            return False

        path = parsed.path.lower()
        if path.endswith(self.excluded_extensions):
            return False

        if any(pattern.search(url) for pattern in self.exclude_patterns):
            return False

        if self.include_patterns and not any(
            pattern.search(url) for pattern in self.include_patterns
        ):
            return False

        return True

    def process(self, href: str, parent_url: Optional[str] = None) -> Optional[ProcessedUrl]:
        """Normalize, filter and key a discovered link in one step."""
        url = self.normalize(href, parent_url)
        if not url or not self.accept(url):
            return None
        key = self.dedupe_key(url)
        if not key:
            return None
        return ProcessedUrl(url, key)

    def extract_links(self, html: str, page_url: str) -> List[ExtractedLink]:
        """Scan anchors in raw HTML. No DOM is built."""
        links = []
        seen = set()

        for match in ANCHOR_PATTERN.finditer(html or ""):
            url = self.normalize(match.group(1), page_url)
            if not url or url in seen:
                continue
            seen.add(url)

            text = WHITESPACE_PATTERN.sub(" ", TAG_PATTERN.sub(" ", match.group(2))).strip()
            links.append(ExtractedLink(url=url, text=text or None))

        return links
