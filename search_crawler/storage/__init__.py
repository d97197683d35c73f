"""
Storage layer for the search crawler.
"""

from .sinks import PageSink, MemoryPageSink, FilePageSink, StorageError, create_sink
from .snapshot import SnapshotStore

__all__ = ['PageSink', 'MemoryPageSink', 'FilePageSink', 'StorageError', 'create_sink',
           'SnapshotStore']
