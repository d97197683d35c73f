"""
URL Frontier: the crawl queue, the visited set and the per-host budget.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .errors import InvalidURLError
from .normalizer import host_of as default_host_of


class URLFrontier:
    """
    FIFO of URLs pending crawl plus the visited set and host counters.

    The queue, the visited set, the host-count map and the page counters are
    one unit guarded by a single condition variable, so admission checks and
    their updates are atomic with respect to each other. A URL is admitted
    at most once and dequeued at most once.

    Invariants:
        - every admitted URL is in ``visited``
        - ``host_count[h] <= max_per_host`` for every host
        - ``page_counter <= max_pages``
        - the queue only holds visited URLs
    """

    def __init__(self, max_pages: int, max_per_host: int,
                 host_of: Callable[[str], str] = default_host_of,
                 logger: Optional[logging.Logger] = None):
        self.max_pages = max_pages
        self.max_per_host = max_per_host
        self.host_of = host_of
        self.logger = logger or logging.getLogger(__name__)

        self._cond = threading.Condition(threading.Lock())
        self._queue: Deque[str] = deque()
        self._visited: Set[str] = set()
        self._host_count: Dict[str, int] = {}
        self._page_counter = 0
        self._completed = 0
        self._closed = False

    def seed(self, urls: Iterable[str]) -> int:
        """Admit seed URLs through the usual admission checks. Returns count added."""
        added = 0
        for url in urls:
            if self.try_admit(url):
                added += 1
            else:
                self.logger.debug(f"Seed not admitted: {url}")
        self.logger.info(f"Seeded frontier with {added} URLs")
        return added

    def try_admit(self, url: str) -> bool:
        """
        Atomically admit a canonical URL.

        Returns True if the URL was enqueued, False if it was already visited
        or the page or host budget is exhausted.
        """
        try:
            host = self.host_of(url)
        except InvalidURLError as e:
            self.logger.debug(f"Not admitting malformed URL {url}: {e}")
            return False

        with self._cond:
            if self._closed:
                return False
            if url in self._visited:
                return False
            if self._page_counter >= self.max_pages:
                return False
            if self._host_count.get(host, 0) >= self.max_per_host:
                return False

            self._visited.add(url)
            self._queue.append(url)
            self._host_count[host] = self._host_count.get(host, 0) + 1
            self._page_counter += 1
            self._cond.notify()

        self.logger.debug(f"Admitted URL to frontier: {url}")
        return True

    def could_admit(self, url: str) -> bool:
        """
        Non-binding pre-check used to skip robots lookups for URLs that
        try_admit would certainly reject.
        """
        try:
            host = self.host_of(url)
        except InvalidURLError:
            return False

        with self._cond:
            return (not self._closed and
                    url not in self._visited and
                    self._page_counter < self.max_pages and
                    self._host_count.get(host, 0) < self.max_per_host)

    def next_url(self, timeout: float) -> Optional[str]:
        """Blocking dequeue with a bounded wait. Returns None when nothing arrived."""
        with self._cond:
            self._cond.wait_for(lambda: self._queue or self._closed, timeout=timeout)
            if self._closed or not self._queue:
                return None
            return self._queue.popleft()

    def retract(self, url: str):
        """
        Free the budget taken by a URL that produced no page.

        The URL stays visited and is never re-enqueued.
        """
        try:
            host = self.host_of(url)
        except InvalidURLError:
            host = None

        with self._cond:
            if host is not None and self._host_count.get(host, 0) > 0:
                self._host_count[host] -= 1
            if self._page_counter > 0:
                self._page_counter -= 1

        self.logger.debug(f"Retracted URL from budget: {url}")

    def complete(self, url: str):
        """Record a page handed to the sink."""
        with self._cond:
            self._completed += 1

    def mark_alias(self, url: str, origin: Optional[str] = None) -> bool:
        """
        Register a redirect target as visited without enqueueing it.

        When the target lives on another host than ``origin``, the host
        budget moves from the origin's host to the target's. Returns False
        if the URL was already visited or the target host is at its cap;
        the origin's budget is then left untouched.
        """
        try:
            host = self.host_of(url)
            origin_host = self.host_of(origin) if origin else host
        except InvalidURLError:
            return False

        with self._cond:
            if url in self._visited:
                return False
            if host != origin_host:
                if self._host_count.get(host, 0) >= self.max_per_host:
                    return False
                self._host_count[host] = self._host_count.get(host, 0) + 1
                if self._host_count.get(origin_host, 0) > 0:
                    self._host_count[origin_host] -= 1
            self._visited.add(url)
            return True

    def cap_reached(self) -> bool:
        """True once max_pages pages have been handed to the sink."""
        with self._cond:
            return self._completed >= self.max_pages

    def close(self):
        """Stop admissions and wake every waiting worker."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def snapshot(self) -> Tuple[List[str], List[str]]:
        """Consistent copies of the pending queue (in order) and the visited set."""
        with self._cond:
            return list(self._queue), sorted(self._visited)

    def restore(self, pending: Iterable[str], visited: Iterable[str]) -> int:
        """
        Load a prior-run snapshot: visited first, then pending in queue order.

        Host counts and the page counter are rebuilt from the visited set and
        clamped to the configured caps. Returns the number of pending URLs queued.
        """
        queued = 0
        with self._cond:
            for url in visited:
                self._visited.add(url)

            in_queue = set(self._queue)
            for url in pending:
                self._visited.add(url)
                if url not in in_queue:
                    self._queue.append(url)
                    in_queue.add(url)
                    queued += 1

            host_count: Dict[str, int] = {}
            for url in self._visited:
                try:
                    host = self.host_of(url)
                except InvalidURLError:
                    continue
                host_count[host] = host_count.get(host, 0) + 1

            self._host_count = {h: min(c, self.max_per_host) for h, c in host_count.items()}
            self._page_counter = min(len(self._visited), self.max_pages)
            self._cond.notify_all()
            visited_count = len(self._visited)

        self.logger.info(f"Restored frontier: {visited_count} visited, {queued} pending")
        return queued

    @property
    def page_counter(self) -> int:
        with self._cond:
            return self._page_counter

    def host_count(self, host: str) -> int:
        with self._cond:
            return self._host_count.get(host, 0)

    def is_visited(self, url: str) -> bool:
        with self._cond:
            return url in self._visited

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        with self._cond:
            return {
                'total_queued': len(self._queue),
                'total_visited': len(self._visited),
                'total_hosts': len(self._host_count),
                'page_counter': self._page_counter,
                'pages_completed': self._completed,
            }
