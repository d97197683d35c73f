import threading
import time
from urllib.parse import urlsplit

import pytest
from bs4 import BeautifulSoup

from search_crawler.crawler.errors import PermanentFetchError, TransientFetchError
from search_crawler.crawler.fetcher import FetchResult
from search_crawler.utils.config import Config


class FakeFetcher:
    """
    In-memory stand-in for WebFetcher.

    pages: canonical URL -> HTML string, or (status, HTML)
    robots: host -> (status, robots.txt text); missing hosts answer 404
    redirects: URL -> final URL reported for it
    """

    def __init__(self, pages=None, robots=None, redirects=None, robots_delay=0.0):
        self.pages = pages or {}
        self.robots = robots or {}
        self.redirects = redirects or {}
        self.robots_delay = robots_delay
        self.fetched = []
        self.robots_requests = []
        self._lock = threading.Lock()

    def fetch(self, url, hop_allowed=None):
        with self._lock:
            self.fetched.append(url)

        final_url = self.redirects.get(url, url)
        if final_url != url and hop_allowed is not None and not hop_allowed(final_url):
            raise PermanentFetchError(f"Redirect to {final_url} disallowed by robots.txt", url, 302)

        entry = self.pages.get(final_url)
        if entry is None:
            raise PermanentFetchError("HTTP status 404", url, 404)
        status, html = entry if isinstance(entry, tuple) else (200, entry)
        if status >= 500:
            raise TransientFetchError(f"Server error {status}", url, status)
        if not 200 <= status < 300:
            raise PermanentFetchError(f"HTTP status {status}", url, status)

        return FetchResult(
            url=url,
            status_code=status,
            final_url=final_url,
            content=html,
            content_type='text/html',
            document=BeautifulSoup(html, 'lxml')
        )

    def fetch_text(self, url):
        parts = urlsplit(url)
        with self._lock:
            self.robots_requests.append(parts.netloc)
        if self.robots_delay:
            time.sleep(self.robots_delay)

        status, text = self.robots.get(parts.netloc, (404, ''))
        if status is None:
            raise TransientFetchError("Connection refused", url)
        return FetchResult(url=url, status_code=status, final_url=url, content=text)

    def fetch_count(self, url):
        with self._lock:
            return self.fetched.count(url)


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def crawl_config(tmp_path):
    """Small, fast configuration writing everything under tmp_path."""
    config = Config()
    config.crawler.threads = 2
    config.crawler.max_pages = 10
    config.crawler.max_per_host = 10
    config.crawler.poll_wait_ms = 100
    config.crawler.user_agent = 'TestBot/1.0'
    config.crawler.resolve_ip_hosts = False
    config.crawler.seed_file = str(tmp_path / 'seeds.txt')
    config.snapshot.directory = str(tmp_path / 'snapshot')
    config.snapshot.interval_s = 0.2
    config.storage.type = 'memory'
    config.storage.directory = str(tmp_path / 'pages')
    return config


@pytest.fixture
def make_fetcher():
    """Factory for FakeFetcher instances."""
    return FakeFetcher
