#!/usr/bin/env python3
"""
Main entry point for the search crawler.
"""

import argparse
import logging
import os
import signal
import sys
from typing import Optional

from search_crawler import __version__
from search_crawler.crawler.errors import CrawlerError, FetchError, InputError, SnapshotError
from search_crawler.crawler.fetcher import WebFetcher
from search_crawler.crawler.normalizer import URLNormalizer
from search_crawler.crawler.scheduler import CrawlerScheduler, read_seed_file
from search_crawler.storage.sinks import StorageError
from search_crawler.storage.snapshot import SnapshotStore
from search_crawler.utils.config import Config, load_config
from search_crawler.utils.logger import setup_logging, log_system_info
from search_crawler.utils.monitoring import initialize_monitoring


EXIT_OK = 0
EXIT_ERROR = 1

DEFAULT_CONFIG = 'config.yaml'


class CrawlerApp:
    """Main application class for the search crawler."""

    def __init__(self):
        self.scheduler: Optional[CrawlerScheduler] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.scheduler is not None:
                self.scheduler.stop_crawling()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def run(self, config: Config, dry_run: bool = False) -> int:
        """Run the crawler and return the process exit code."""
        self.logger.info("=== SEARCH CRAWLER STARTING ===")
        log_system_info()
        self.logger.info(f"Seed file: {config.crawler.seed_file}")
        self.logger.info(f"Threads: {config.crawler.threads}")
        self.logger.info(f"Max pages: {config.crawler.max_pages}, "
                         f"max per host: {config.crawler.max_per_host}")
        self.logger.info(f"Snapshot directory: {config.snapshot.directory}")
        self.logger.info(f"Storage type: {config.storage.type}")

        if dry_run:
            self.logger.info("DRY RUN MODE: No actual crawling will be performed")
            return self._dry_run(config)

        monitor = initialize_monitoring(config.monitoring.metrics_enabled,
                                        config.monitoring.prometheus_port)
        self.scheduler = CrawlerScheduler(config, monitor=monitor)
        self.setup_signal_handlers()

        try:
            self.scheduler.initialize()
            self.scheduler.start_crawling()
        except (InputError, SnapshotError, StorageError) as e:
            self.logger.error(f"Fatal error: {e}")
            return EXIT_ERROR
        finally:
            self.scheduler.close()
            self.logger.info("=== SEARCH CRAWLER FINISHED ===")

        return EXIT_OK

    def _dry_run(self, config: Config) -> int:
        """Check seeds, snapshot directory and fetcher without crawling."""
        normalizer = URLNormalizer(fold_https=config.crawler.fold_https,
                                   resolve_ip_hosts=config.crawler.resolve_ip_hosts)

        self.logger.info("Checking seed file...")
        try:
            seeds = read_seed_file(config.crawler.seed_file, normalizer)
        except InputError as e:
            self.logger.error(f"Seed file check failed: {e}")
            return EXIT_ERROR
        self.logger.info(f"Seed file OK: {len(seeds)} URLs")

        self.logger.info("Checking snapshot directory...")
        snapshots = SnapshotStore(config.snapshot.directory)
        try:
            snapshots.ensure_writable()
        except SnapshotError as e:
            self.logger.error(f"Snapshot directory check failed: {e}")
            return EXIT_ERROR
        self.logger.info(f"Snapshot directory OK (existing snapshot: {snapshots.exists()})")

        if seeds:
            self.logger.info("Testing fetcher configuration...")
            with WebFetcher(
                user_agent=config.crawler.user_agent,
                request_timeout=config.fetch.fetch_timeout_ms / 1000.0,
                connect_timeout=config.fetch.connect_timeout_ms / 1000.0,
                max_body_bytes=config.fetch.max_body_bytes,
                max_redirects=config.fetch.max_redirects,
                blocked_extensions=config.crawler.blocked_extensions,
                max_connections=1
            ) as fetcher:
                try:
                    result = fetcher.fetch(seeds[0])
                    self.logger.info(f"Test fetch successful: {result.status_code} {result.final_url}")
                except FetchError as e:
                    self.logger.warning(f"Test fetch failed: {e}")

        self.logger.info("Dry run completed")
        return EXIT_OK


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search Crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Run with config.yaml if present
  python main.py --config my_config.yaml   # Run with custom config
  python main.py --seeds seeds.txt         # Use another seed file
  python main.py --threads 16              # Run 16 worker threads
  python main.py --max-pages 1000          # Stop after 1000 pages
  python main.py --dry-run                 # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default=DEFAULT_CONFIG,
        help='Path to configuration file (default: config.yaml; defaults are used if it is missing)'
    )

    parser.add_argument(
        '--seeds',
        help='Path to the seed file (overrides crawler.seed_file)'
    )

    parser.add_argument(
        '--threads',
        type=int,
        help='Number of worker threads'
    )

    parser.add_argument(
        '--max-pages',
        type=int,
        help='Maximum number of pages to crawl'
    )

    parser.add_argument(
        '--max-per-host',
        type=int,
        help='Maximum number of pages per host'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Search Crawler {__version__}'
    )

    return parser


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command-line flags take precedence over file and environment values."""
    if args.seeds:
        config.crawler.seed_file = args.seeds

    for flag, attr in (('threads', 'threads'), ('max_pages', 'max_pages'),
                       ('max_per_host', 'max_per_host')):
        value = getattr(args, flag)
        if value is None:
            continue
        if value < 1:
            raise ValueError(f"--{flag.replace('_', '-')} must be at least 1")
        setattr(config.crawler, attr, value)

    return config


def main(argv=None) -> int:
    """Main entry point."""
    args = build_arg_parser().parse_args(argv)

    # The default config file is optional; an explicit one must exist
    config_path = args.config
    if config_path == DEFAULT_CONFIG and not os.path.exists(config_path):
        config_path = None

    try:
        config = apply_cli_overrides(load_config(config_path), args)
        setup_logging(config.logging)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    app = CrawlerApp()
    try:
        return app.run(config, dry_run=args.dry_run)
    except CrawlerError as e:
        logging.getLogger(__name__).error(f"Fatal error: {e}", exc_info=True)
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
