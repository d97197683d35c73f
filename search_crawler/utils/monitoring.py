"""
Crawl metrics: in-process counters and gauges, optionally mirrored to a
Prometheus registry served over HTTP.
"""

import time
import logging
import threading
from typing import Dict, Optional, Any, Tuple

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import start_http_server


# name -> (prometheus type, help text, label names)
PROMETHEUS_METRICS = {
    'urls_fetched_total': (Counter, 'URLs fetched successfully', ()),
    'pages_stored_total': (Counter, 'Parsed pages handed to the sink', ()),
    'bytes_downloaded_total': (Counter, 'Decoded HTML bytes downloaded', ()),
    'fetch_errors_total': (Counter, 'Per-URL failures by error type', ('error_type',)),
    'robots_denied_total': (Counter, 'URLs skipped because robots.txt disallows them', ()),
    'fetch_seconds': (Histogram, 'Fetch latency including redirects', ()),
    'frontier_queued': (Gauge, 'URLs waiting in the frontier queue', ()),
    'active_workers': (Gauge, 'Worker threads still running', ()),
}

LabelKey = Tuple[Tuple[str, str], ...]


class MetricsCollector:
    """
    Thread-safe store of metric values.

    Counters accumulate per label set; gauges and histograms keep the last
    observed value. When Prometheus export is enabled, every update for a
    name listed in PROMETHEUS_METRICS is mirrored to the registry.
    """

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self._lock = threading.Lock()
        self._values: Dict[str, Dict[LabelKey, float]] = {}
        self._exported: Dict[str, Any] = {}

        if enable_prometheus:
            for name, (metric_cls, help_text, labelnames) in PROMETHEUS_METRICS.items():
                self._exported[name] = metric_cls(
                    f'crawler_{name}', help_text, labelnames, registry=self.registry
                )

    def serve(self):
        """Expose the registry on prometheus_port. Bind failures are logged."""
        if not self.enable_prometheus:
            return
        try:
            start_http_server(self.prometheus_port, registry=self.registry)
        except OSError as e:
            self.logger.error(f"Cannot serve metrics on port {self.prometheus_port}: {e}")
            return
        self.logger.info(f"Serving metrics on port {self.prometheus_port}")

    def inc(self, name: str, amount: float = 1, **labels: str):
        key = tuple(sorted(labels.items()))
        with self._lock:
            series = self._values.setdefault(name, {})
            series[key] = series.get(key, 0) + amount

        exported = self._exported_child(name, labels)
        if exported is not None:
            exported.inc(amount)

    def set(self, name: str, value: float, **labels: str):
        key = tuple(sorted(labels.items()))
        with self._lock:
            self._values.setdefault(name, {})[key] = value

        exported = self._exported_child(name, labels)
        if exported is not None:
            if isinstance(self._exported[name], Histogram):
                exported.observe(value)
            else:
                exported.set(value)

    observe = set

    def value(self, name: str, **labels: str) -> float:
        """Current value of one series, or the sum over label sets when none are given."""
        with self._lock:
            series = self._values.get(name, {})
            if labels:
                return series.get(tuple(sorted(labels.items())), 0)
            return sum(series.values())

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {name: sum(series.values()) for name, series in self._values.items()}

    def _exported_child(self, name: str, labels: Dict[str, str]):
        metric = self._exported.get(name)
        if metric is None:
            return None
        return metric.labels(**labels) if labels else metric


class CrawlerMonitor:
    """Crawl events translated into metric updates."""

    def __init__(self, metrics: MetricsCollector):
        self.metrics = metrics
        self.started = time.monotonic()

    def record_url_crawled(self, url: str, status_code: int, fetch_seconds: float):
        self.metrics.inc('urls_fetched_total')
        self.metrics.inc('responses_total', status=str(status_code))
        self.metrics.observe('fetch_seconds', fetch_seconds)

    def record_page_stored(self, url: str, content_size: int):
        self.metrics.inc('pages_stored_total')
        self.metrics.inc('bytes_downloaded_total', content_size)

    def record_error(self, error_type: str):
        self.metrics.inc('fetch_errors_total', error_type=error_type)

    def record_robots_denied(self, url: str):
        self.metrics.inc('robots_denied_total')

    def update_queue_size(self, size: int):
        self.metrics.set('frontier_queued', size)

    def update_active_workers(self, count: int):
        self.metrics.set('active_workers', count)

    def get_summary(self) -> Dict[str, Any]:
        """Current values plus per-minute rates since the monitor was created."""
        values = self.metrics.snapshot()
        minutes = (time.monotonic() - self.started) / 60
        return {
            'runtime_seconds': minutes * 60,
            'metrics': values,
            'rates': {
                'fetches_per_minute': values.get('urls_fetched_total', 0) / minutes if minutes > 0 else 0,
                'pages_per_minute': values.get('pages_stored_total', 0) / minutes if minutes > 0 else 0,
            }
        }


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Build a monitor and start its metrics endpoint when enabled."""
    collector = MetricsCollector(enable_prometheus, prometheus_port)
    collector.serve()
    return CrawlerMonitor(collector)
