"""
Per-target rule cache.

Rules are loaded from the store on the first request for a target and
kept for the lifetime of the process. Concurrent misses for the same
target share a single load.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..core.events import ExtractionRule

logger = logging.getLogger(__name__)


class RuleCache:
    """
    In-memory mapping from target name to its ordered active rules.

    Constructed once per process and shared by every ingestion loop.
    There is no eviction or TTL; use invalidate() after rule changes.
    """

    def __init__(self, rule_repository, metrics=None):
        """
        Initialize the cache.

        Args:
            rule_repository: Store exposing ``get_rules_by_target(name)``
            metrics: Optional MetricsCollector for load counts
        """
        self.rule_repository = rule_repository
        self.metrics = metrics
        self._rules: Dict[str, List[ExtractionRule]] = {}
        self._load_locks: Dict[str, asyncio.Lock] = {}

    async def rules_for(self, target: str) -> List[ExtractionRule]:
        """
        Get the active rules of a target, ordered by rule_order.

        Args:
            target: Target name

        Returns:
            The cached rule list (shared, do not mutate)

        Raises:
            RepositoryError: If the load fails; failures are not cached
        """
        rules = self._rules.get(target)
        if rules is not None:
            return rules

        # setdefault is atomic between awaits, so every waiter gets the same lock
        lock = self._load_locks.setdefault(target, asyncio.Lock())
        async with lock:
            rules = self._rules.get(target)
            if rules is not None:
                return rules

            loaded = await self.rule_repository.get_rules_by_target(target)
            rules = sorted(loaded, key=lambda rule: rule.rule_order)
            self._rules[target] = rules

        logger.info(f"Loaded and cached {len(rules)} rules for target: {target}")
        if self.metrics:
            self.metrics.record_rule_load(target, len(rules))
        return rules

    def invalidate(self, target: Optional[str] = None) -> None:
        """Drop cached rules for one target, or for all targets."""
        if target is None:
            self._rules.clear()
            logger.info("Rule cache cleared")
        else:
            self._rules.pop(target, None)
            logger.info(f"Rule cache entry dropped for target: {target}")

    def __contains__(self, target: str) -> bool:
        return target in self._rules

    def __len__(self) -> int:
        return len(self._rules)
