import time
from typing import Callable, Dict

from .utils import get_logger, host_key

logger = get_logger("RateLimiter")


class HostRateLimiter:
    """
    Keeps at least min_interval seconds between two requests to the same host.
    Chapters are fetched one at a time, so the map needs no lock.
    """

    def __init__(self, min_interval: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._last_request: Dict[str, float] = {}

    def delay_for(self, url: str) -> float:
        last = self._last_request.get(host_key(url))
        if last is None:
            return 0.0
        return max(0.0, last + self.min_interval - self._clock())

    def wait(self, url: str) -> float:
        """Sleeps until url's host may be contacted again; returns the delay."""
        delay = self.delay_for(url)
        if delay > 0:
            logger.debug(f"Waiting {delay:.2f}s before contacting {host_key(url)}")
            self._sleep(delay)
        return delay

    def record(self, url: str):
        self._last_request[host_key(url)] = self._clock()
