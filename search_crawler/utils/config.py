"""
Configuration management for the search crawler.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, fields


DEFAULT_TAG_SCORES: Dict[str, int] = {
    'title': 20,
    'h1': 16,
    'h2': 12,
    'h3': 8,
    'h4': 6,
    'h5': 5,
    'h6': 4,
    'b': 4,
    'strong': 4,
    'i': 2,
    'em': 2,
    'p': 1,
}

DEFAULT_ALLOWED_TAGS: List[str] = [
    'html', 'body', 'div', 'span', 'p', 'br', 'hr',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
    'a', 'b', 'strong', 'i', 'em', 'u', 'small', 'mark', 'font', 'center',
    'abbr', 'cite', 'q', 'sub', 'sup', 'code', 'pre', 'blockquote',
    'ul', 'ol', 'li', 'dl', 'dt', 'dd',
    'table', 'thead', 'tbody', 'tfoot', 'tr', 'td', 'th', 'caption',
    'main', 'article', 'section', 'header', 'footer', 'nav', 'aside',
    'figure', 'figcaption', 'details', 'summary', 'address', 'time',
]

DEFAULT_BLOCKED_EXTENSIONS: List[str] = [
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico', '.tif', '.tiff',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.tgz', '.bz2', '.xz', '.7z', '.exe', '.dmg', '.iso',
    '.mp3', '.wav', '.flac', '.ogg', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.mkv', '.webm',
    '.css', '.js', '.json', '.xml', '.rss', '.woff', '.woff2', '.ttf', '.eot',
]

DEFAULT_STOP_WORDS: List[str] = [
    'about', 'above', 'after', 'again', 'against', 'all', 'and', 'any', 'are',
    'aren', 'because', 'been', 'before', 'being', 'below', 'between', 'both',
    'but', 'can', 'cannot', 'could', 'couldn', 'did', 'didn', 'does', 'doesn',
    'doing', 'don', 'down', 'during', 'each', 'few', 'for', 'from', 'further',
    'had', 'hadn', 'has', 'hasn', 'have', 'haven', 'having', 'her', 'here',
    'hers', 'herself', 'him', 'himself', 'his', 'how', 'into', 'isn', 'its',
    'itself', 'just', 'let', 'more', 'most', 'mustn', 'myself', 'nor', 'not',
    'now', 'off', 'once', 'only', 'other', 'ought', 'our', 'ours', 'ourselves',
    'out', 'over', 'own', 'same', 'shan', 'she', 'should', 'shouldn', 'some',
    'such', 'than', 'that', 'the', 'their', 'theirs', 'them', 'themselves',
    'then', 'there', 'these', 'they', 'this', 'those', 'through', 'too',
    'under', 'until', 'very', 'was', 'wasn', 'were', 'weren', 'what', 'when',
    'where', 'which', 'while', 'who', 'whom', 'why', 'will', 'with', 'won',
    'would', 'wouldn', 'you', 'your', 'yours', 'yourself', 'yourselves',
]


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_file: str = 'seeds.txt'
    threads: int = 8
    max_pages: int = 5000
    max_per_host: int = 100
    poll_wait_ms: int = 3000
    user_agent: str = 'SearchCrawler/1.0 (+https://example.org/search-crawler)'
    politeness_delay: float = 0.0
    strict_on_robots_failure: bool = False
    fold_https: bool = False
    resolve_ip_hosts: bool = True
    blocked_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_EXTENSIONS))


@dataclass
class FetchConfig:
    """Configuration for the HTTP fetch client."""
    fetch_timeout_ms: int = 10000
    connect_timeout_ms: int = 10000
    max_body_bytes: int = 5 * 1024 * 1024
    max_redirects: int = 5
    robots_max_bytes: int = 512 * 1024


@dataclass
class IndexerConfig:
    """Configuration for page parsing and word scoring."""
    tag_scores: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TAG_SCORES))
    allowed_tags: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TAGS))
    stop_words: List[str] = field(default_factory=lambda: list(DEFAULT_STOP_WORDS))


@dataclass
class SnapshotConfig:
    """Configuration for frontier snapshots."""
    interval_s: float = 60.0
    directory: str = 'data/snapshot'


@dataclass
class StorageConfig:
    """Configuration for the parsed page sink."""
    type: str = 'file'
    directory: str = 'data/pages'


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: str = 'logs/crawler.log'
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


# Environment variable -> (section, attribute)
ENV_OVERRIDES = {
    'THREADS': ('crawler', 'threads'),
    'MAX_PAGES': ('crawler', 'max_pages'),
    'MAX_PER_HOST': ('crawler', 'max_per_host'),
    'POLL_WAIT_MS': ('crawler', 'poll_wait_ms'),
    'USER_AGENT': ('crawler', 'user_agent'),
    'STRICT_ON_ROBOTS_FAILURE': ('crawler', 'strict_on_robots_failure'),
    'FOLD_HTTPS': ('crawler', 'fold_https'),
    'SEED_FILE': ('crawler', 'seed_file'),
    'FETCH_TIMEOUT_MS': ('fetch', 'fetch_timeout_ms'),
    'MAX_BODY_BYTES': ('fetch', 'max_body_bytes'),
    'SNAPSHOT_INTERVAL_S': ('snapshot', 'interval_s'),
    'SNAPSHOT_DIR': ('snapshot', 'directory'),
    'LOG_LEVEL': ('logging', 'level'),
}

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _coerce(raw: str, current: Any) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _build_section(cls, data: Optional[Dict[str, Any]]):
    """Build a config section, rejecting unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = "config.yaml",
                 environ: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file, then apply environment overrides."""
        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}

        sections = {}
        for section in fields(Config):
            sections[section.name] = _build_section(section.default_factory,
                                                    config_data.get(section.name))
        self._config = Config(**sections)

        self._apply_env_overrides()
        self._validate_config()
        return self._config

    def _apply_env_overrides(self):
        """Override file values with environment variables."""
        for env_name, (section_name, attr) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw is None or raw == '':
                continue
            section = getattr(self._config, section_name)
            try:
                setattr(section, attr, _coerce(raw, getattr(section, attr)))
            except ValueError:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}")

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")

        crawler = self._config.crawler
        if crawler.threads < 1:
            raise ValueError("threads must be at least 1")

        if crawler.max_pages < 1:
            raise ValueError("max_pages must be at least 1")

        if crawler.max_per_host < 1:
            raise ValueError("max_per_host must be at least 1")

        if crawler.poll_wait_ms <= 0:
            raise ValueError("poll_wait_ms must be positive")

        if crawler.politeness_delay < 0:
            raise ValueError("politeness_delay must be non-negative")

        if not crawler.user_agent.strip():
            raise ValueError("user_agent must not be empty")

        fetch = self._config.fetch
        if fetch.fetch_timeout_ms <= 0 or fetch.connect_timeout_ms <= 0:
            raise ValueError("fetch timeouts must be positive")

        if fetch.max_body_bytes < 1:
            raise ValueError("max_body_bytes must be positive")

        if fetch.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")

        if self._config.snapshot.interval_s <= 0:
            raise ValueError("snapshot interval_s must be positive")

        if self._config.storage.type not in ['file', 'memory']:
            raise ValueError("Storage type must be 'file' or 'memory'")

        logging.getLogger(__name__).debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: Optional[str] = "config.yaml",
                environ: Optional[Dict[str, str]] = None) -> Config:
    """Load configuration from file (or defaults when config_path is None)."""
    return ConfigManager(config_path, environ).load_config()
