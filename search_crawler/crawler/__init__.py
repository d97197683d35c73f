"""
Web crawler core components.
"""

from .errors import (
    CrawlerError, InputError, InvalidURLError, FetchError, TransientFetchError,
    PermanentFetchError, RobotsDenied, ParseError, SnapshotError
)
from .normalizer import URLNormalizer, normalize_url, host_of, crawlable
from .url_frontier import URLFrontier
from .robots import RobotsCache, RobotsPolicy
from .fetcher import WebFetcher, FetchResult
from .parser import PageParser, ParsedPage

__all__ = [
    'CrawlerError', 'InputError', 'InvalidURLError', 'FetchError',
    'TransientFetchError', 'PermanentFetchError', 'RobotsDenied', 'ParseError',
    'SnapshotError',
    'URLNormalizer', 'normalize_url', 'host_of', 'crawlable',
    'URLFrontier',
    'RobotsCache', 'RobotsPolicy',
    'WebFetcher', 'FetchResult',
    'PageParser', 'ParsedPage'
]
