"""
Error taxonomy for the crawler core.

Startup errors (InputError, an unwritable snapshot directory) are fatal.
Everything else is localized to the URL being processed.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for crawler errors."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class InputError(CrawlerError):
    """Seed file unreadable or malformed URL in the input."""
    pass


class InvalidURLError(CrawlerError, ValueError):
    """URL cannot be normalized (missing scheme or host, bad port)."""
    pass


class FetchError(CrawlerError):
    """Base class for fetch failures."""

    def __init__(self, message: str, url: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, url)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Timeout, DNS failure, connection reset or 5xx."""
    pass


class PermanentFetchError(FetchError):
    """4xx, non-HTML content, body cap exceeded, bad redirect."""
    pass


class RobotsDenied(CrawlerError):
    """robots.txt policy disallows the URL."""
    pass


class ParseError(CrawlerError):
    """Malformed HTML; the partially parsed page is still produced."""
    pass


class SnapshotError(CrawlerError):
    """Snapshot could not be read or written."""
    pass
