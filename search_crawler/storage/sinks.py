"""
Sinks receiving parsed pages from the crawler workers.

The indexer that consumes pages lives outside the crawler; a sink only has
to implement ``store(page)``.
"""

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone

from ..crawler.errors import CrawlerError
from ..crawler.parser import ParsedPage
from ..utils.config import StorageConfig


class StorageError(CrawlerError):
    """Page could not be stored, or the sink could not be prepared."""
    pass


class PageSink:
    """Abstract base class for page sinks."""

    def initialize(self):
        """Prepare the sink before crawling starts."""
        pass

    def store(self, page: ParsedPage):
        """Hand a parsed page to the indexer. Raises StorageError on failure."""
        raise NotImplementedError

    def get_stats(self) -> Dict[str, Any]:
        return {}

    def close(self):
        pass


class MemoryPageSink(PageSink):
    """Keeps pages in memory; used for dry runs and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.pages: List[ParsedPage] = []

    def store(self, page: ParsedPage):
        with self._lock:
            self.pages.append(page)

    def urls(self) -> List[str]:
        with self._lock:
            return [page.url for page in self.pages]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {'total_stored': len(self.pages)}


class FilePageSink(PageSink):
    """One JSON document per page under a hashed directory fan-out, plus a URL index."""

    def __init__(self, data_directory: str, logger: Optional[logging.Logger] = None):
        self.data_directory = Path(data_directory)
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._index: Dict[str, str] = {}
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
            'total_size_bytes': 0
        }

    def initialize(self):
        """Create data directory structure and load the URL index."""
        try:
            (self.data_directory / 'pages').mkdir(parents=True, exist_ok=True)
            (self.data_directory / 'index').mkdir(parents=True, exist_ok=True)

            index_file = self._index_file()
            if index_file.exists():
                with open(index_file, 'r', encoding='utf-8') as f:
                    self._index = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to initialize file storage: {e}")

        self.logger.info(f"File storage initialized at {self.data_directory}")

    def _index_file(self) -> Path:
        return self.data_directory / 'index' / 'url_index.json'

    def _get_file_path(self, url: str) -> Path:
        """Generate file path for URL."""
        url_hash = hashlib.sha256(url.encode('utf-8')).hexdigest()
        # Use first 2 chars for directory structure
        return self.data_directory / 'pages' / url_hash[:2] / f"{url_hash}.json"

    def store(self, page: ParsedPage):
        """Store page to file."""
        file_path = self._get_file_path(page.url)
        data = page.to_document()
        data['stored_at'] = datetime.now(timezone.utc).isoformat()

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)
            size = file_path.stat().st_size
        except OSError as e:
            with self._lock:
                self.stats['storage_errors'] += 1
            raise StorageError(f"Error storing {page.url}: {e}")

        with self._lock:
            self.stats['total_stored'] += 1
            self.stats['total_size_bytes'] += size
            self._index[page.url] = str(file_path.relative_to(self.data_directory))

        self.logger.debug(f"Stored page to {file_path}")

    def load(self, url: str) -> Optional[Dict[str, Any]]:
        """Read back the stored document for a URL."""
        file_path = self._get_file_path(url)
        if not file_path.exists():
            return None
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return self.stats.copy()

    def close(self):
        """Persist the URL index."""
        with self._lock:
            index = dict(self._index)
        try:
            with open(self._index_file(), 'w', encoding='utf-8') as f:
                json.dump(index, f, ensure_ascii=False, indent=2)
        except OSError as e:
            self.logger.error(f"Error saving URL index: {e}")


def create_sink(config: StorageConfig, logger: Optional[logging.Logger] = None) -> PageSink:
    """Build the sink named by the storage configuration."""
    if config.type == 'memory':
        return MemoryPageSink()
    if config.type == 'file':
        return FilePageSink(config.directory, logger)
    raise ValueError(f"Unknown storage type: {config.type}")
