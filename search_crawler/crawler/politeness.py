"""
Per-host minimum delay between consecutive fetches.
"""

import time
import threading
from typing import Callable, Dict, Optional


class PolitenessGate:
    """
    Reserves fetch slots per host.

    A caller reserves the next free slot for a host under a short lock and
    then sleeps outside it, so concurrent workers hitting the same host are
    spaced by at least the host's delay.
    """

    def __init__(self, default_delay: float = 0.0,
                 clock: Callable[[], float] = time.monotonic):
        self.default_delay = default_delay
        self._clock = clock
        self._lock = threading.Lock()
        self._next_slot: Dict[str, float] = {}

    def reserve(self, host: str, crawl_delay: Optional[float] = None) -> float:
        """Reserve a slot for host and return how long to wait before fetching."""
        delay = max(self.default_delay, crawl_delay or 0.0)
        now = self._clock()

        with self._lock:
            slot = max(now, self._next_slot.get(host, now))
            self._next_slot[host] = slot + delay

        return slot - now

    def wait(self, host: str, crawl_delay: Optional[float],
             stop_event: threading.Event) -> bool:
        """
        Block until the host's slot. Returns False if stop_event tripped meanwhile.
        """
        pause = self.reserve(host, crawl_delay)
        if pause <= 0:
            return not stop_event.is_set()
        return not stop_event.wait(pause)
