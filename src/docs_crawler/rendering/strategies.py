"""Readiness conditions and request routing for rendered pages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List

import structlog

logger = structlog.get_logger(__name__)


class WaitStrategy(Enum):
    """Load state a page must reach before it is considered ready."""
    LOAD = "load"  # Wait for load event
    DOMCONTENTLOADED = "domcontentloaded"  # Wait for DOMContentLoaded
    NETWORKIDLE = "networkidle"  # Wait for network to be idle


@dataclass
class RenderingOptions:
    """Options for browser-backed fetching. Timeouts are in milliseconds."""

    navigation_timeout: int = 30000
    page_load_timeout: int = 60000
    action_timeout: int = 15000
    wait_strategy: WaitStrategy = WaitStrategy.LOAD

    # Every selector must become visible before extraction
    ready_selectors: List[str] = field(default_factory=lambda: ['body'])

    block_resources: List[str] = field(
        default_factory=lambda: ['image', 'stylesheet', 'font', 'media']
    )
    extra_headers: Dict[str, str] = field(default_factory=dict)


def create_resource_blocker(blocked_types: List[str]) -> Callable:
    """Create a route handler aborting requests of the given resource types."""
    blocked = set(blocked_types)

    async def block_resources(route):
        if route.request.resource_type in blocked:
            await route.abort()
        else:
            await route.continue_()

    return block_resources


# Title, main-content text and anchors of the rendered DOM
EXTRACT_PAGE_JS = """
() => {
    const selectors = ['main', 'article', '[role="main"]', '.content',
                       '.documentation', '.docs-content', '#content'];
    let root = null;
    for (const selector of selectors) {
        root = document.querySelector(selector);
        if (root) break;
    }
    root = root || document.body;

    const links = Array.from(document.querySelectorAll('a[href]')).map(a => ({
        href: a.href,
        text: (a.innerText || a.textContent || '').trim()
    }));

    return {
        title: document.title || '',
        text: root ? (root.innerText || '').trim() : '',
        links: links
    };
}
"""
