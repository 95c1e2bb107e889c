from typing import Callable, Dict

from .sites import SITE_STRATEGIES
from .strategy import DEFAULT_STRATEGY, Strategy
from .utils import get_logger, host_key, normalize_host

logger = get_logger("Registry")


class StrategyRegistry:
    """Maps a normalized hostname to the factory of its Strategy."""

    def __init__(self, default: Strategy = DEFAULT_STRATEGY):
        self._factories: Dict[str, Callable[[], Strategy]] = {}
        self.default = default

    def register(self, host: str, factory: Callable[[], Strategy]):
        key = normalize_host(host)
        if key in self._factories:
            logger.debug(f"Replacing strategy registered for {key}")
        self._factories[key] = factory

    def hosts(self):
        return sorted(self._factories)

    def resolve(self, url: str) -> Strategy:
        """Never raises; unknown or malformed URLs get the default strategy."""
        host = host_key(url)
        factory = self._factories.get(host) if host else None
        if factory is None:
            logger.debug(f"No site strategy for '{host or url}', using default")
            return self.default

        strategy = factory()
        logger.info(f"Using '{strategy.name}' strategy for {host}")
        return strategy


def build_registry() -> StrategyRegistry:
    registry = StrategyRegistry()
    for host, factory in SITE_STRATEGIES.items():
        registry.register(host, factory)
    return registry
