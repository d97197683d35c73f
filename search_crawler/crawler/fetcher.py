"""
Web page fetcher used by the crawler threads.

An aiohttp session lives on a private event loop running in a background
thread. Worker threads submit requests to that loop and block on the result
with a deadline, so every network call stays bounded in time.
"""

import asyncio
import aiohttp
import logging
import threading
import time
import concurrent.futures
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import urljoin
from dataclasses import dataclass
from aiohttp import ClientTimeout, ClientError
from bs4 import BeautifulSoup

from .errors import PermanentFetchError, TransientFetchError, FetchError
from .normalizer import crawlable


REDIRECT_STATUSES = (301, 302, 303, 307, 308)
HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    final_url: Optional[str] = None
    content: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    content_type: Optional[str] = None
    encoding: Optional[str] = None
    fetch_time: float = 0.0
    document: Optional[BeautifulSoup] = None


@dataclass
class _RawResponse:
    """Response as read on the event loop, before classification."""
    url: str
    status: int
    headers: Dict[str, str]
    content_type: str
    charset: Optional[str] = None
    location: Optional[str] = None
    body: Optional[bytes] = None


class WebFetcher:
    """
    Fetches HTML documents with timeouts, bounded redirects, content-type
    gating and a body size cap.
    """

    def __init__(self, user_agent: str, request_timeout: float = 10.0,
                 connect_timeout: float = 10.0, max_body_bytes: int = 5 * 1024 * 1024,
                 max_redirects: int = 5, blocked_extensions: Iterable[str] = (),
                 robots_max_bytes: int = 512 * 1024, max_connections: int = 64,
                 logger: Optional[logging.Logger] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.connect_timeout = connect_timeout
        self.max_body_bytes = max_body_bytes
        self.max_redirects = max_redirects
        self.blocked_extensions = tuple(blocked_extensions)
        self.robots_max_bytes = robots_max_bytes
        self.max_connections = max_connections

        self.logger = logger or logging.getLogger(__name__)

        # Event loop and session management
        self.session: Optional[aiohttp.ClientSession] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._deadline = connect_timeout + request_timeout + 5.0

        # Statistics
        self._stats_lock = threading.Lock()
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'redirects_followed': 0,
            'total_bytes_downloaded': 0
        }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def start(self):
        """Start the event loop thread and open the HTTP session."""
        if self._loop is not None:
            return

        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._run_loop, name='fetcher-loop', daemon=True
        )
        self._loop_thread.start()

        asyncio.run_coroutine_threadsafe(self._open_session(), self._loop).result()
        self.logger.info("WebFetcher session started")

    def close(self):
        """Close the session and stop the event loop thread."""
        if self._loop is None:
            return

        try:
            if self.session is not None:
                asyncio.run_coroutine_threadsafe(
                    self.session.close(), self._loop
                ).result(timeout=self._deadline)
        except (concurrent.futures.TimeoutError, ClientError) as e:
            self.logger.warning(f"Error closing HTTP session: {e}")
        finally:
            self.session = None
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._loop_thread.join()
            self._loop.close()
            self._loop = None
            self._loop_thread = None
            self.logger.info("WebFetcher session closed")

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    async def _open_session(self):
        timeout = ClientTimeout(
            total=self.connect_timeout + self.request_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.request_timeout
        )
        headers = {'User-Agent': self.user_agent}

        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers=headers,
            connector=aiohttp.TCPConnector(
                limit=self.max_connections,
                limit_per_host=8,
                ttl_dns_cache=300,
                use_dns_cache=True
            )
        )

    def fetch(self, url: str, hop_allowed: Optional[Callable[[str], bool]] = None) -> FetchResult:
        """
        Fetch an HTML page and parse it into a document tree.

        Args:
            url: The URL to fetch
            hop_allowed: Predicate every redirect target must satisfy (robots.txt)

        Returns:
            FetchResult with the parsed document

        Raises:
            TransientFetchError: timeout, network failure or 5xx
            PermanentFetchError: other non-2xx, non-HTML, body too large, bad redirect
        """
        start_time = time.time()
        self._count('total_requests')

        try:
            raw = self._follow(url, html_only=True, max_bytes=self.max_body_bytes,
                               hop_allowed=hop_allowed, check_hops=True)

            if raw.status >= 500:
                raise TransientFetchError(f"Server error {raw.status}", url, raw.status)
            if not 200 <= raw.status < 300:
                raise PermanentFetchError(f"HTTP status {raw.status}", url, raw.status)
            if not self._is_html_content(raw.content_type):
                raise PermanentFetchError(
                    f"Non-HTML content type: {raw.content_type or 'missing'}", url, raw.status
                )

            content = self._decode(raw.body or b'', raw.charset)
        except FetchError:
            self._count('failed_requests')
            raise

        document = BeautifulSoup(content, 'lxml')

        self._count('successful_requests')
        self._count('total_bytes_downloaded', len(raw.body or b''))

        result = FetchResult(
            url=url,
            status_code=raw.status,
            final_url=raw.url,
            content=content,
            headers=raw.headers,
            content_type=raw.content_type,
            encoding=raw.charset,
            fetch_time=time.time() - start_time,
            document=document
        )
        self.logger.debug(f"Fetched {url}: {raw.status} ({len(raw.body or b'')} bytes)")
        return result

    def fetch_text(self, url: str) -> FetchResult:
        """
        Fetch a plain-text resource such as robots.txt.

        Non-2xx statuses are returned in the result; only network failures and
        broken redirects raise. Bodies over the robots size cap are truncated.
        """
        start_time = time.time()
        self._count('total_requests')

        try:
            raw = self._follow(url, html_only=False, max_bytes=self.robots_max_bytes,
                               hop_allowed=None, check_hops=False)
        except FetchError:
            self._count('failed_requests')
            raise

        content = None
        if raw.body is not None:
            content = self._decode(raw.body, raw.charset)
            self._count('total_bytes_downloaded', len(raw.body))

        return FetchResult(
            url=url,
            status_code=raw.status,
            final_url=raw.url,
            content=content,
            headers=raw.headers,
            content_type=raw.content_type,
            encoding=raw.charset,
            fetch_time=time.time() - start_time
        )

    def _follow(self, url: str, html_only: bool, max_bytes: int,
                hop_allowed: Optional[Callable[[str], bool]], check_hops: bool) -> _RawResponse:
        """Request a URL, following at most max_redirects redirects."""
        current = url
        for _ in range(self.max_redirects + 1):
            raw = self._execute(current, html_only, max_bytes)
            if raw.status not in REDIRECT_STATUSES or not raw.location:
                return raw

            target = urljoin(current, raw.location)
            if check_hops:
                if not crawlable(target, self.blocked_extensions):
                    raise PermanentFetchError(f"Redirect to non-crawlable URL {target}", url, raw.status)
                if hop_allowed is not None and not hop_allowed(target):
                    raise PermanentFetchError(f"Redirect to {target} disallowed by robots.txt", url, raw.status)

            self._count('redirects_followed')
            self.logger.debug(f"Redirect {current} -> {target}")
            current = target

        raise PermanentFetchError(f"Too many redirects (>{self.max_redirects})", url)

    def _execute(self, url: str, html_only: bool, max_bytes: int) -> _RawResponse:
        """Run one request on the event loop and map transport errors."""
        if self._loop is None:
            raise RuntimeError("WebFetcher not started")

        future = asyncio.run_coroutine_threadsafe(
            self._request(url, html_only, max_bytes), self._loop
        )
        try:
            return future.result(timeout=self._deadline)
        except (asyncio.TimeoutError, concurrent.futures.TimeoutError):
            future.cancel()
            raise TransientFetchError("Request timeout", url)
        except aiohttp.InvalidURL as e:
            raise PermanentFetchError(f"Invalid URL: {e}", url)
        except aiohttp.TooManyRedirects as e:
            raise PermanentFetchError(f"Too many redirects: {e}", url)
        except aiohttp.ClientResponseError as e:
            raise PermanentFetchError(f"Bad response: {e}", url, e.status or None)
        except ClientError as e:
            raise TransientFetchError(f"Client error: {e}", url)
        except OSError as e:
            raise TransientFetchError(f"Network error: {e}", url)

    async def _request(self, url: str, html_only: bool, max_bytes: int) -> _RawResponse:
        async with self.session.get(url, allow_redirects=False) as response:
            headers = dict(response.headers)
            content_type = response.headers.get('Content-Type', '').lower()
            raw = _RawResponse(
                url=str(response.url),
                status=response.status,
                headers=headers,
                content_type=content_type,
                charset=response.charset,
                location=response.headers.get('Location')
            )

            if response.status in REDIRECT_STATUSES:
                return raw
            if html_only and not (200 <= response.status < 300 and
                                  self._is_html_content(content_type)):
                return raw

            raw.body = await self._read_content_safely(response, max_bytes, truncate=not html_only)
            return raw

    async def _read_content_safely(self, response, max_size: int, truncate: bool) -> bytes:
        """
        Read response content with a size limit.

        Args:
            response: aiohttp response object
            max_size: Maximum content size in bytes
            truncate: Keep the first max_size bytes instead of failing

        Returns:
            Raw body bytes
        """
        content_length = response.headers.get('Content-Length')
        if not truncate and content_length and content_length.isdigit() and int(content_length) > max_size:
            raise PermanentFetchError(
                f"Content too large ({content_length} bytes)", str(response.url), response.status
            )

        # Read content in chunks to respect size limit
        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            chunks.append(chunk)
            size += len(chunk)
            if size > max_size:
                if truncate:
                    return b''.join(chunks)[:max_size]
                raise PermanentFetchError(
                    f"Content exceeded size limit ({max_size} bytes)", str(response.url), response.status
                )

        return b''.join(chunks)

    @staticmethod
    def _is_html_content(content_type: str) -> bool:
        """Check if content type indicates HTML."""
        return any(html_type in content_type for html_type in HTML_CONTENT_TYPES)

    @staticmethod
    def _decode(content_bytes: bytes, encoding: Optional[str]) -> str:
        """Decode a body, falling back through common encodings."""
        try:
            return content_bytes.decode(encoding or 'utf-8')
        except (UnicodeDecodeError, LookupError):
            # Try common encodings
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue

            # latin-1 maps every byte
            return content_bytes.decode('latin-1')

    def _count(self, key: str, amount: int = 1):
        with self._stats_lock:
            self.stats[key] += amount

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        with self._stats_lock:
            return self.stats.copy()
