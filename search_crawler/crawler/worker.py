"""
Crawler worker thread: dequeue, robots check, fetch, parse, admit out-links,
hand the page to the sink.
"""

import logging
import threading
from typing import Optional

from .errors import FetchError, InvalidURLError, RobotsDenied
from .fetcher import WebFetcher
from .normalizer import URLNormalizer, host_of
from .parser import PageParser
from .politeness import PolitenessGate
from .robots import RobotsCache
from .url_frontier import URLFrontier
from ..storage.sinks import PageSink, StorageError
from ..utils.logger import CrawlerLogAdapter
from ..utils.monitoring import CrawlerMonitor


class CrawlerWorker(threading.Thread):
    """
    One of N identical crawl loops.

    A worker exits when the page cap is reached, when the frontier stays
    empty for two consecutive polls, or when the stop event is set. Every
    failure is confined to the URL being processed.
    """

    def __init__(self, worker_id: str, frontier: URLFrontier, robots: RobotsCache,
                 fetcher: WebFetcher, parser: PageParser, sink: PageSink,
                 politeness: PolitenessGate, stop_event: threading.Event,
                 poll_wait: float, normalizer: Optional[URLNormalizer] = None,
                 stats=None, monitor: Optional[CrawlerMonitor] = None,
                 logger: Optional[CrawlerLogAdapter] = None):
        super().__init__(name=worker_id, daemon=True)
        self.worker_id = worker_id
        self.frontier = frontier
        self.robots = robots
        self.fetcher = fetcher
        self.parser = parser
        self.sink = sink
        self.politeness = politeness
        self.stop_event = stop_event
        self.poll_wait = poll_wait
        self.normalizer = normalizer or URLNormalizer()
        self.stats = stats
        self.monitor = monitor
        self.logger = logger or CrawlerLogAdapter(logging.getLogger(__name__),
                                                  {'worker': worker_id})
        self.pages_processed = 0
        # URL whose host currently holds the budget for the page in progress
        self._budget_url: Optional[str] = None

    def run(self):
        self.logger.debug(f"Worker {self.worker_id} started")
        empty_polls = 0

        while not self.stop_event.is_set():
            if self.frontier.cap_reached():
                self.logger.info(f"Page cap reached, worker {self.worker_id} exiting")
                break

            url = self.frontier.next_url(self.poll_wait)
            if url is None:
                empty_polls += 1
                if empty_polls >= 2:
                    self.logger.debug(f"Frontier empty, worker {self.worker_id} exiting")
                    break
                continue
            empty_polls = 0

            self._budget_url = url
            try:
                self.process_url(url)
            except Exception as e:
                # Errors stay local to the URL
                self.logger.error(f"Unexpected error processing {url}: {e}", exc_info=True,
                                  extra={'url': url, 'error_type': type(e).__name__})
                self.frontier.retract(self._budget_url)
                self._record_error(type(e).__name__)

        self.logger.debug(f"Worker {self.worker_id} finished after {self.pages_processed} pages")

    def process_url(self, url: str) -> bool:
        """
        Crawl a single dequeued URL. Returns True if a page reached the sink.

        Every path that produces no page retracts the URL exactly once.
        """
        if not self.robots.is_allowed(url):
            self.frontier.retract(url)
            self.logger.log_url_event(logging.INFO, url, 'robots_denied',
                                      f"Disallowed by robots.txt: {url}",
                                      error_type=RobotsDenied.__name__)
            self._record_robots_denied(url)
            return False

        if not self.politeness.wait(host_of(url), self.robots.crawl_delay(url), self.stop_event):
            # Stopped while waiting for the host's slot
            self.frontier.retract(url)
            return False

        try:
            result = self.fetcher.fetch(url, hop_allowed=self._hop_allowed)
        except FetchError as e:
            self.frontier.retract(url)
            self.logger.log_url_event(logging.WARNING, url, 'fetch_failed',
                                      f"Failed to fetch {url}: {e}",
                                      error_type=type(e).__name__, status_code=e.status_code)
            self._record_error(type(e).__name__)
            return False

        if self.stats is not None:
            self.stats.record_fetch(result.fetch_time, len(result.content or ''))
        if self.monitor is not None:
            self.monitor.record_url_crawled(url, result.status_code, result.fetch_time)

        page_url = self._canonical_final_url(url, result.final_url)
        if page_url is None:
            self.frontier.retract(url)
            self.logger.log_url_event(logging.DEBUG, url, 'redirect_refused',
                                      f"Redirect from {url} reached a visited URL or a host at its cap",
                                      final_url=result.final_url)
            if self.stats is not None:
                self.stats.record_duplicate()
            return False
        self._budget_url = page_url

        page = self.parser.parse(page_url, result.document)

        admitted = 0
        for link in page.out_links:
            if not self.frontier.could_admit(link):
                continue
            if self.robots.is_allowed(link) and self.frontier.try_admit(link):
                admitted += 1

        try:
            self.sink.store(page)
        except StorageError as e:
            self.frontier.retract(page_url)
            self.logger.log_url_event(logging.ERROR, url, 'store_failed',
                                      f"Failed to store {page_url}: {e}",
                                      error_type=StorageError.__name__)
            self._record_error(StorageError.__name__)
            return False

        self.frontier.complete(page_url)
        self.pages_processed += 1

        if self.stats is not None:
            self.stats.record_page()
        if self.monitor is not None:
            self.monitor.record_page_stored(page_url, len(result.content or ''))

        self.logger.log_url_event(logging.DEBUG, page_url, 'page_stored',
                                  f"Crawled {page_url}: {page.words_count} words, "
                                  f"{admitted}/{len(page.out_links)} links admitted")
        return True

    def _hop_allowed(self, target: str) -> bool:
        """Robots check for a redirect target, matched on its canonical form."""
        try:
            return self.robots.is_allowed(self.normalizer.normalize(target))
        except InvalidURLError:
            return False

    def _canonical_final_url(self, url: str, final_url: Optional[str]) -> Optional[str]:
        """
        Canonical URL the page is filed under.

        None if a redirect reached a visited URL or a host with no budget left.
        """
        if not final_url:
            return url

        try:
            canonical = self.normalizer.normalize(final_url)
        except InvalidURLError:
            return url

        if canonical == url:
            return url
        if self.frontier.mark_alias(canonical, origin=url):
            return canonical
        return None

    def _record_error(self, error_type: str):
        if self.stats is not None:
            self.stats.record_error()
        if self.monitor is not None:
            self.monitor.record_error(error_type)

    def _record_robots_denied(self, url: str):
        if self.stats is not None:
            self.stats.record_robots_denied()
        if self.monitor is not None:
            self.monitor.record_robots_denied(url)
