"""
Durable snapshot of the frontier for restart: urls.txt (pending, queue
order) and visited.txt, both replaced atomically.
"""

import os
import logging
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ..crawler.errors import SnapshotError


PENDING_FILE = 'urls.txt'
VISITED_FILE = 'visited.txt'


class SnapshotStore:
    """Reads and writes the pending/visited snapshot pair."""

    def __init__(self, directory: str, logger: Optional[logging.Logger] = None):
        self.directory = Path(directory)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def pending_path(self) -> Path:
        return self.directory / PENDING_FILE

    @property
    def visited_path(self) -> Path:
        return self.directory / VISITED_FILE

    def ensure_writable(self):
        """Create the directory and check it is writable. Raises SnapshotError."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotError(f"Cannot create snapshot directory {self.directory}: {e}")

        if not os.access(self.directory, os.W_OK):
            raise SnapshotError(f"Snapshot directory {self.directory} is not writable")

    def exists(self) -> bool:
        return self.pending_path.exists() or self.visited_path.exists()

    def load(self) -> Optional[Tuple[List[str], List[str]]]:
        """Read (pending, visited); None when no snapshot exists."""
        if not self.exists():
            return None

        try:
            pending = self._read_lines(self.pending_path)
            visited = self._read_lines(self.visited_path)
        except (OSError, UnicodeDecodeError) as e:
            raise SnapshotError(f"Cannot read snapshot from {self.directory}: {e}")

        self.logger.info(f"Loaded snapshot: {len(pending)} pending, {len(visited)} visited")
        return pending, visited

    def save(self, pending: Iterable[str], visited: Iterable[str]):
        """Atomically replace both files (write to a temp file, then rename)."""
        try:
            self._write_atomic(self.visited_path, visited)
            self._write_atomic(self.pending_path, pending)
        except OSError as e:
            raise SnapshotError(f"Cannot write snapshot to {self.directory}: {e}")

    @staticmethod
    def _read_lines(path: Path) -> List[str]:
        if not path.exists():
            return []
        with open(path, 'r', encoding='utf-8') as f:
            return [line.strip() for line in f if line.strip()]

    def _write_atomic(self, path: Path, lines: Iterable[str]):
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(self.directory))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                for line in lines:
                    f.write(line)
                    f.write('\n')
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
