"""Browser rendering backend."""

from .browser_pool import BrowserPool
from .renderer import BrowserFetchStrategy
from .strategies import WaitStrategy, RenderingOptions

__all__ = [
    "BrowserPool",
    "BrowserFetchStrategy",
    "WaitStrategy",
    "RenderingOptions"
]
