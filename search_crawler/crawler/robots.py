"""
robots.txt parsing and the per-host policy cache.
"""

import re
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from .errors import FetchError
from .normalizer import host_of


ROBOTS_PATH = '/robots.txt'

_PERCENT_OCTET = re.compile(r'%[0-9a-fA-F]{2}')


def agent_token(user_agent: str) -> str:
    """Product token used for group matching, e.g. 'searchcrawler' for 'SearchCrawler/1.0 (...)'."""
    token = user_agent.strip().split(' ', 1)[0]
    return token.split('/', 1)[0].lower()


@dataclass(frozen=True)
class RobotsRule:
    """Single Allow/Disallow line."""
    allow: bool
    pattern: str

    def __post_init__(self):
        object.__setattr__(self, '_regex', self._compile(self.pattern))

    @staticmethod
    def _compile(pattern: str):
        # Canonical URLs have lower-case paths, queries as written, upper-case octets
        path, sep, query = pattern.partition('?')
        pattern = _PERCENT_OCTET.sub(lambda m: m.group(0).upper(), path.lower() + sep + query)
        anchored = pattern.endswith('$')
        if anchored:
            pattern = pattern[:-1]
        regex = '.*'.join(re.escape(piece) for piece in pattern.split('*'))
        if anchored:
            regex += '$'
        return re.compile(regex)

    def matches(self, path: str) -> bool:
        return self._regex.match(path) is not None

    @property
    def specificity(self) -> int:
        return len(self.pattern)


class _Group:
    def __init__(self):
        self.agents: List[str] = []
        self.rules: List[RobotsRule] = []
        self.crawl_delay: Optional[float] = None


class RobotsPolicy:
    """
    Parsed robots.txt rules for one host and one user agent.

    Built once and never mutated. The longest matching pattern decides;
    Allow wins a tie; a path no rule matches is allowed.
    """

    def __init__(self, host: str, rules: Tuple[RobotsRule, ...] = (),
                 crawl_delay: Optional[float] = None, deny_all: bool = False):
        self.host = host
        self.rules = tuple(rules)
        self.crawl_delay = crawl_delay
        self.deny_all = deny_all

    @classmethod
    def open(cls, host: str) -> 'RobotsPolicy':
        return cls(host)

    @classmethod
    def closed(cls, host: str) -> 'RobotsPolicy':
        return cls(host, deny_all=True)

    @classmethod
    def parse(cls, host: str, text: str, user_agent: str) -> 'RobotsPolicy':
        """Parse robots.txt text, keeping the group for our agent (or '*')."""
        groups: List[_Group] = []
        current: Optional[_Group] = None
        last_was_agent = False

        for raw_line in text.splitlines():
            line = raw_line.split('#', 1)[0].strip()
            if ':' not in line:
                continue

            key, value = line.split(':', 1)
            key = key.strip().lower()
            value = value.strip()

            if key in ('user-agent', 'useragent'):
                if current is None or not last_was_agent:
                    current = _Group()
                    groups.append(current)
                current.agents.append(value.split('/', 1)[0].lower())
                last_was_agent = True
                continue

            last_was_agent = False
            if current is None:
                continue

            if key in ('allow', 'disallow'):
                if not value:
                    # Empty Disallow means allow all; empty Allow means nothing
                    continue
                current.rules.append(RobotsRule(allow=(key == 'allow'), pattern=value))
            elif key == 'crawl-delay':
                try:
                    delay = float(value)
                except ValueError:
                    continue
                if delay >= 0:
                    current.crawl_delay = delay

        token = agent_token(user_agent)
        selected = [g for g in groups if token in g.agents]
        if not selected:
            selected = [g for g in groups if '*' in g.agents]

        rules: List[RobotsRule] = []
        delays = []
        for group in selected:
            rules.extend(group.rules)
            if group.crawl_delay is not None:
                delays.append(group.crawl_delay)

        return cls(host, tuple(rules), max(delays) if delays else None)

    def allows(self, path: str) -> bool:
        """Check a path (with query) against the rules."""
        if self.deny_all:
            return False
        if not path.startswith('/'):
            path = '/' + path

        best: Optional[RobotsRule] = None
        for rule in self.rules:
            if not rule.matches(path):
                continue
            if (best is None or rule.specificity > best.specificity or
                    (rule.specificity == best.specificity and rule.allow)):
                best = rule

        return best is None or best.allow

    def __repr__(self) -> str:
        return (f"RobotsPolicy(host={self.host!r}, rules={len(self.rules)}, "
                f"crawl_delay={self.crawl_delay}, deny_all={self.deny_all})")


class _PolicyEntry:
    """Once-barrier guarding the construction of one host policy."""

    def __init__(self):
        self.ready = threading.Event()
        self.policy: Optional[RobotsPolicy] = None


class RobotsCache:
    """
    Per-host cache of robots.txt policies.

    Construction is single-flight: the first caller for a host fetches and
    parses robots.txt while concurrent callers for the same host block on
    the entry's barrier and then share the resulting policy.
    """

    def __init__(self, fetcher, user_agent: str, strict_on_failure: bool = False,
                 logger: Optional[logging.Logger] = None):
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.strict_on_failure = strict_on_failure
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._entries: Dict[str, _PolicyEntry] = {}

        self.stats = {
            'robots_fetched': 0,
            'robots_failed': 0,
        }

    def is_allowed(self, url: str) -> bool:
        """Check if URL can be fetched according to its host's robots.txt."""
        parts = urlsplit(url)
        if parts.path == ROBOTS_PATH and not parts.query:
            return True

        path = parts.path or '/'
        if parts.query:
            path = f"{path}?{parts.query}"
        return self.policy_for(url).allows(path)

    def crawl_delay(self, url: str) -> Optional[float]:
        return self.policy_for(url).crawl_delay

    def policy_for(self, url: str) -> RobotsPolicy:
        """Get the policy for the URL's host, building it on first use."""
        parts = urlsplit(url)
        host = host_of(url)

        with self._lock:
            entry = self._entries.get(host)
            owner = entry is None
            if owner:
                entry = _PolicyEntry()
                self._entries[host] = entry

        if not owner:
            entry.ready.wait()
            return entry.policy

        try:
            entry.policy = self._build_policy(parts.scheme.lower(), host)
        finally:
            if entry.policy is None:
                entry.policy = self._failure_policy(host)
            entry.ready.set()
        return entry.policy

    def _build_policy(self, scheme: str, host: str) -> RobotsPolicy:
        robots_url = f"{scheme}://{host}{ROBOTS_PATH}"
        try:
            result = self.fetcher.fetch_text(robots_url)
        except FetchError as e:
            self._count('robots_failed')
            self.logger.warning(f"Could not fetch robots.txt for {host}: {e}")
            return self._failure_policy(host)

        self._count('robots_fetched')
        status = result.status_code

        if 200 <= status < 300:
            policy = RobotsPolicy.parse(host, result.content or '', self.user_agent)
            self.logger.debug(f"Loaded robots.txt for {host}: {policy}")
            return policy

        if 400 <= status < 500:
            # Missing robots.txt allows everything
            self.logger.debug(f"No robots.txt for {host} (status {status})")
            return RobotsPolicy.open(host)

        self._count('robots_failed')
        self.logger.warning(f"robots.txt for {host} returned status {status}")
        return self._failure_policy(host)

    def _failure_policy(self, host: str) -> RobotsPolicy:
        if self.strict_on_failure:
            return RobotsPolicy.closed(host)
        return RobotsPolicy.open(host)

    def _count(self, key: str):
        with self._lock:
            self.stats[key] += 1

    def get_stats(self) -> Dict[str, int]:
        stats = dict(self.stats)
        with self._lock:
            stats['hosts_cached'] = len(self._entries)
        return stats
