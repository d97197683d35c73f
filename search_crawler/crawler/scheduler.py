"""
Crawler scheduler that owns the crawl components, runs the worker pool and
snapshots the frontier for restart.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from .errors import InputError, InvalidURLError, SnapshotError
from .fetcher import WebFetcher
from .normalizer import URLNormalizer, crawlable
from .parser import PageParser
from .politeness import PolitenessGate
from .robots import RobotsCache
from .url_frontier import URLFrontier
from .worker import CrawlerWorker
from ..storage.sinks import PageSink, create_sink
from ..storage.snapshot import SnapshotStore
from ..utils.config import Config
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


@dataclass
class CrawlStats:
    """Statistics for crawl operations, shared by all workers."""
    start_time: float = field(default_factory=time.time)
    urls_crawled: int = 0
    pages_stored: int = 0
    errors: int = 0
    robots_denied: int = 0
    duplicates_skipped: int = 0
    snapshots_written: int = 0
    snapshot_errors: int = 0
    total_bytes_downloaded: int = 0
    total_response_time: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_fetch(self, response_time: float, size: int):
        with self._lock:
            self.urls_crawled += 1
            self.total_response_time += response_time
            self.total_bytes_downloaded += size

    def record_page(self):
        with self._lock:
            self.pages_stored += 1

    def record_error(self):
        with self._lock:
            self.errors += 1

    def record_robots_denied(self):
        with self._lock:
            self.robots_denied += 1

    def record_duplicate(self):
        with self._lock:
            self.duplicates_skipped += 1

    def record_snapshot(self, ok: bool):
        with self._lock:
            if ok:
                self.snapshots_written += 1
            else:
                self.snapshot_errors += 1

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def average_response_time(self) -> float:
        with self._lock:
            return self.total_response_time / self.urls_crawled if self.urls_crawled else 0.0

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.pages_stored / elapsed_minutes if elapsed_minutes > 0 else 0

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            counters = {
                'urls_crawled': self.urls_crawled,
                'pages_stored': self.pages_stored,
                'errors': self.errors,
                'robots_denied': self.robots_denied,
                'duplicates_skipped': self.duplicates_skipped,
                'snapshots_written': self.snapshots_written,
                'snapshot_errors': self.snapshot_errors,
                'total_bytes_downloaded': self.total_bytes_downloaded,
            }
        counters['elapsed_time'] = self.elapsed_time
        counters['average_response_time'] = self.average_response_time
        counters['pages_per_minute'] = self.pages_per_minute
        return counters


def read_seed_file(path: str, normalizer: URLNormalizer) -> List[str]:
    """
    Read canonical seed URLs from a file.

    One URL per line; blank lines and lines starting with '#' are ignored.

    Raises:
        InputError: the file cannot be read or a line is not a crawlable URL
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"Cannot read seed file {path}: {e}")

    seeds = []
    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if not crawlable(line):
            raise InputError(f"Malformed seed URL on line {line_no} of {path}: {line!r}", line)
        try:
            seeds.append(normalizer.normalize(line))
        except InvalidURLError as e:
            raise InputError(f"Malformed seed URL on line {line_no} of {path}: {e}", line)
    return seeds


class CrawlerScheduler:
    """
    Main scheduler that coordinates all crawler components.

    Owns the frontier, the robots cache, the fetcher and the sink; workers
    get non-owning references. Startup errors (seed file, snapshot
    directory) are fatal; everything after that is per URL.
    """

    def __init__(self, config: Config, fetcher: Optional[WebFetcher] = None,
                 sink: Optional[PageSink] = None, monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.monitor = monitor

        crawler_config = config.crawler
        fetch_config = config.fetch

        self.normalizer = URLNormalizer(
            fold_https=crawler_config.fold_https,
            resolve_ip_hosts=crawler_config.resolve_ip_hosts
        )
        self.frontier = URLFrontier(crawler_config.max_pages, crawler_config.max_per_host)

        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or WebFetcher(
            user_agent=crawler_config.user_agent,
            request_timeout=fetch_config.fetch_timeout_ms / 1000.0,
            connect_timeout=fetch_config.connect_timeout_ms / 1000.0,
            max_body_bytes=fetch_config.max_body_bytes,
            max_redirects=fetch_config.max_redirects,
            blocked_extensions=crawler_config.blocked_extensions,
            robots_max_bytes=fetch_config.robots_max_bytes,
            max_connections=max(crawler_config.threads * 2, 10)
        )
        self.robots = RobotsCache(
            self.fetcher,
            crawler_config.user_agent,
            strict_on_failure=crawler_config.strict_on_robots_failure
        )
        self.parser = PageParser(
            tag_scores=config.indexer.tag_scores,
            allowed_tags=config.indexer.allowed_tags,
            stop_words=config.indexer.stop_words,
            blocked_extensions=crawler_config.blocked_extensions,
            normalizer=self.normalizer
        )
        self.sink = sink or create_sink(config.storage)
        self.politeness = PolitenessGate(crawler_config.politeness_delay)
        self.snapshots = SnapshotStore(config.snapshot.directory)

        # Crawl state
        self.stats = CrawlStats()
        self.stop_event = threading.Event()
        self.workers: List[CrawlerWorker] = []
        self.is_running = False
        self._initialized = False
        self._join_interval = 0.5

    def initialize(self, seeds: Optional[List[str]] = None):
        """
        Prepare the crawl: snapshot directory, sink, prior-run snapshot, seeds.

        Args:
            seeds: Seed URLs; read from the configured seed file when None

        Raises:
            SnapshotError: the snapshot directory is not writable
            InputError: the seed file is unreadable or holds a malformed URL
        """
        self.snapshots.ensure_writable()

        if seeds is None:
            seeds = read_seed_file(self.config.crawler.seed_file, self.normalizer)
        else:
            seeds = [self.normalizer.normalize(url) for url in seeds]

        self.sink.initialize()

        previous = self.snapshots.load()
        if previous is not None:
            pending, visited = previous
            self.frontier.restore(pending, visited)

        self.frontier.seed(seeds)

        if self._owns_fetcher:
            self.fetcher.start()

        self._initialized = True
        self.logger.info("Crawler scheduler initialized successfully")

    def start_crawling(self):
        """Run the worker pool until every worker exits, snapshotting periodically."""
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return

        self.is_running = True
        self.stats = CrawlStats()
        poll_wait = self.config.crawler.poll_wait_ms / 1000.0
        interval = self.config.snapshot.interval_s

        self.workers = []
        for i in range(self.config.crawler.threads):
            worker_id = f"worker-{i}"
            worker = CrawlerWorker(
                worker_id, self.frontier, self.robots, self.fetcher, self.parser,
                self.sink, self.politeness, self.stop_event, poll_wait,
                normalizer=self.normalizer,
                stats=self.stats,
                monitor=self.monitor,
                logger=get_crawler_logger('search_crawler.crawler.worker', worker=worker_id)
            )
            self.workers.append(worker)

        for worker in self.workers:
            worker.start()
        self.logger.info(f"Started crawling with {len(self.workers)} workers")

        next_snapshot = time.monotonic() + interval
        try:
            while True:
                alive = [worker for worker in self.workers if worker.is_alive()]
                if self.monitor is not None:
                    self.monitor.update_active_workers(len(alive))
                    self.monitor.update_queue_size(self.frontier.get_stats()['total_queued'])
                if not alive:
                    break

                alive[0].join(timeout=self._join_interval)

                if time.monotonic() >= next_snapshot:
                    self.take_snapshot()
                    self._log_current_stats()
                    next_snapshot = time.monotonic() + interval
        finally:
            self.is_running = False

        if self.frontier.cap_reached():
            self.logger.info(f"Reached max pages limit: {self.config.crawler.max_pages}")
        self.logger.info("All workers finished")

    def take_snapshot(self) -> bool:
        """Write the frontier state to disk. A failure is logged and retried next time."""
        pending, visited = self.frontier.snapshot()
        try:
            self.snapshots.save(pending, visited)
        except SnapshotError as e:
            self.logger.error(f"Snapshot failed: {e}", extra={'error_type': SnapshotError.__name__})
            self.stats.record_snapshot(False)
            return False

        self.stats.record_snapshot(True)
        self.logger.debug(f"Snapshot written: {len(pending)} pending, {len(visited)} visited")
        return True

    def stop_crawling(self):
        """Trip the cancellation token; workers exit at their next loop head."""
        self.logger.info("Stopping crawler...")
        self.stop_event.set()
        self.frontier.close()

    def _wait_for_workers(self):
        for worker in self.workers:
            worker.join()

    def _log_current_stats(self):
        """Log current crawl statistics."""
        frontier_stats = self.frontier.get_stats()

        self.logger.info(
            f"Crawl Progress: "
            f"Crawled={self.stats.urls_crawled}, "
            f"Stored={self.stats.pages_stored}, "
            f"Queued={frontier_stats['total_queued']}, "
            f"Visited={frontier_stats['total_visited']}, "
            f"Errors={self.stats.errors}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min, "
            f"AvgTime={self.stats.average_response_time:.2f}s"
        )

    def _log_final_stats(self):
        """Log final crawl statistics."""
        frontier_stats = self.frontier.get_stats()

        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Total URLs crawled: {self.stats.urls_crawled}")
        self.logger.info(f"Pages stored: {self.stats.pages_stored}")
        self.logger.info(f"Robots denied: {self.stats.robots_denied}")
        self.logger.info(f"Errors: {self.stats.errors}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Average rate: {self.stats.pages_per_minute:.1f} pages/min")
        self.logger.info(f"Data downloaded: {self.stats.total_bytes_downloaded / 1024 / 1024:.1f} MB")
        self.logger.info(f"URLs remaining in queue: {frontier_stats['total_queued']}")
        self.logger.info(f"Hosts seen: {frontier_stats['total_hosts']}")
        self.logger.info(f"Robots stats: {self.robots.get_stats()}")
        self.logger.info(f"Sink stats: {self.sink.get_stats()}")
        if self._owns_fetcher:
            self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")

    def close(self):
        """Stop workers, take the final snapshot and release resources."""
        if self.is_running or any(worker.is_alive() for worker in self.workers):
            self.stop_crawling()
            self._wait_for_workers()

        if self._initialized:
            self.take_snapshot()
            self._log_final_stats()

        if self._owns_fetcher:
            self.fetcher.close()
        self.sink.close()
        self.logger.info("Crawler scheduler closed")

    def get_stats(self) -> Dict[str, Any]:
        """Get current crawl statistics."""
        stats = self.stats.as_dict()
        stats['frontier'] = self.frontier.get_stats()
        stats['robots'] = self.robots.get_stats()
        stats['is_running'] = self.is_running
        return stats
