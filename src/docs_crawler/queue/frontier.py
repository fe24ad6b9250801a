"""Pending queue and visited set of a single crawl"""

import heapq
import itertools
from collections import deque
from typing import List, Sequence, Set

import structlog

from ..models import CrawlStrategy, QueueItem
from .url_processor import compile_patterns

logger = structlog.get_logger(__name__)


class Frontier:
    """
    Discovered-but-unfetched URLs of one crawl run.

    Dedupe keys enter the visited set when an item is offered, not when it
    is fetched, so concurrent discovery never schedules a page twice.

    Ordering by strategy:
    - breadth: discovery order (FIFO)
    - depth: most recent first (LIFO)
    - hybrid: shallower first; within a depth, items whose URL or anchor
      text matches a prioritization pattern go first; ties in discovery order
    """

    def __init__(
        self,
        strategy: CrawlStrategy = CrawlStrategy.HYBRID,
        prioritization_patterns: Sequence[str] = ()
    ):
        self.strategy = strategy
        self.patterns = compile_patterns(prioritization_patterns)

        self._visited: Set[str] = set()
        self._fifo: deque = deque()
        self._heap: List = []
        self._sequence = itertools.count()

    def __len__(self) -> int:
        if self.strategy == CrawlStrategy.HYBRID:
            return len(self._heap)
        return len(self._fifo)

    def __bool__(self) -> bool:
        return len(self) > 0

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    def is_visited(self, key: str) -> bool:
        return key in self._visited

    def mark_visited(self, key: str) -> bool:
        """Record a key. Returns False if it was already present."""
        if key in self._visited:
            return False
        self._visited.add(key)
        return True

    def offer(self, item: QueueItem, key: str) -> bool:
        """Enqueue an item unless its dedupe key has been seen."""
        if not self.mark_visited(key):
            return False

        if self.strategy == CrawlStrategy.HYBRID:
            heapq.heappush(
                self._heap,
                (item.depth, self._priority_rank(item), next(self._sequence), item)
            )
        else:
            self._fifo.append(item)
        return True

    def pop(self) -> QueueItem:
        if self.strategy == CrawlStrategy.HYBRID:
            return heapq.heappop(self._heap)[-1]
        if self.strategy == CrawlStrategy.DEPTH:
            return self._fifo.pop()
        return self._fifo.popleft()

    def drain(self) -> int:
        """Discard everything still pending. Returns how many were dropped."""
        dropped = len(self)
        self._fifo.clear()
        self._heap.clear()
        if dropped:
            logger.debug("Frontier drained", dropped=dropped)
        return dropped

    def _priority_rank(self, item: QueueItem) -> int:
        for pattern in self.patterns:
            if pattern.search(item.url):
                return 0
            if item.anchor_text and pattern.search(item.anchor_text):
                return 0
        return 1
