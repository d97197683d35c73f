"""
Search Crawler

A multi-threaded web crawler feeding the indexer of a small search engine.
"""

__version__ = "1.0.0"
__description__ = "Multi-threaded web crawler building word-position indexes for search"
