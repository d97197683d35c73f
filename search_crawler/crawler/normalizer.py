"""
URL canonicalization.

The canonical form is the only form compared for equality inside the crawler,
so every rule here must stay idempotent when combined with the others.
"""

import re
import socket
import logging
from functools import lru_cache
from typing import Iterable, Optional
from urllib.parse import urlsplit

from .errors import InvalidURLError


DEFAULT_PORTS = {'http': 80, 'https': 443}
CRAWLABLE_SCHEMES = ('http', 'https')
INDEX_PAGES = ('index.html', 'index.htm', 'index.php')

_WWW_LABEL = re.compile(r'^www\d*\.')
_IPV4_HOST = re.compile(r'^\d{1,3}(\.\d{1,3}){3}$')
_PERCENT_OCTET = re.compile(r'%[0-9a-fA-F]{2}')

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4096)
def _reverse_dns(address: str) -> str:
    """Resolve an IPv4 literal to a host name, keeping the literal on failure."""
    try:
        hostname, _, _ = socket.gethostbyaddr(address)
    except (OSError, UnicodeError) as e:
        logger.debug(f"Reverse DNS failed for {address}: {e}")
        return address
    return hostname.lower().rstrip('.') or address


def _upper_octets(text: str) -> str:
    return _PERCENT_OCTET.sub(lambda m: m.group(0).upper(), text)


class URLNormalizer:
    """
    Turns any absolute URL into its canonical string.

    Rules, in order: drop fragment; lower-case scheme and host; resolve a
    bare IPv4 host by reverse DNS; strip a leading ``wwwN.`` label; omit the
    default port; lower-case the path and drop a trailing index page;
    upper-case percent-encoded octets; drop empty query entries and sort the
    rest; omit an empty query.
    """

    def __init__(self, fold_https: bool = False, resolve_ip_hosts: bool = True):
        self.fold_https = fold_https
        self.resolve_ip_hosts = resolve_ip_hosts

    def normalize(self, url: str) -> str:
        try:
            parts = urlsplit(url.strip())
            port = parts.port
        except ValueError as e:
            raise InvalidURLError(f"Malformed URL {url!r}: {e}", url)

        scheme = parts.scheme.lower()
        host = (parts.hostname or '').lower().rstrip('.')
        if not scheme or not host:
            raise InvalidURLError(f"URL must be absolute: {url!r}", url)

        original_scheme = scheme
        if self.fold_https and scheme == 'https':
            scheme = 'http'

        netloc = self._obtain_host(host)
        if port is not None and port not in (DEFAULT_PORTS.get(original_scheme),
                                             DEFAULT_PORTS.get(scheme)):
            netloc = f"{netloc}:{port}"

        path = self._obtain_path(parts.path)
        query = self._obtain_query(parts.query)

        canonical = f"{scheme}://{netloc}{path}"
        if query:
            canonical = f"{canonical}?{query}"
        return canonical

    def _obtain_host(self, host: str) -> str:
        if self.resolve_ip_hosts and _IPV4_HOST.match(host):
            host = _reverse_dns(host)

        host = _WWW_LABEL.sub('', host, count=1)

        if ':' in host:
            # IPv6 literal
            host = f"[{host}]"
        return host

    def _obtain_path(self, path: str) -> str:
        path = path.lower() or '/'
        head, _, last = path.rpartition('/')
        if last in INDEX_PAGES:
            path = f"{head}/"
        return _upper_octets(path)

    def _obtain_query(self, query: str) -> str:
        if not query:
            return ''

        entries = []
        for entry in query.split('&'):
            if not entry:
                continue
            if entry.endswith('=') and entry.count('=') == 1:
                continue
            entries.append(_upper_octets(entry))

        entries.sort()
        return '&'.join(entries)


_default_normalizer = URLNormalizer()


def normalize_url(url: str) -> str:
    """Normalize with the default policy (scheme preserved, IP hosts resolved)."""
    return _default_normalizer.normalize(url)


def host_of(url: str) -> str:
    """Canonical host of a URL: lower-cased host, port only when not default."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL {url!r}: {e}", url)

    host = (parts.hostname or '').lower()
    if ':' in host:
        host = f"[{host}]"
    scheme = parts.scheme.lower()
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        return f"{host}:{port}"
    return host


def crawlable(url: Optional[str], blocked_extensions: Iterable[str] = ()) -> bool:
    """Check if URL uses a crawlable scheme and does not point at a non-HTML resource."""
    if not url:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False

    if parts.scheme.lower() not in CRAWLABLE_SCHEMES or not parts.hostname:
        return False

    path = parts.path.lower()
    return not any(path.endswith(ext) for ext in blocked_extensions)
