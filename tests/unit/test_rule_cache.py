"""
Unit tests for the per-target rule cache.

Tests cover:
- Single-flight loading under concurrent misses
- Ordering of cached rules
- Failure propagation without caching
- Invalidation
"""

import asyncio

import pytest
from unittest.mock import Mock

from auditsync.core.events import ExtractionRule
from auditsync.database import RepositoryError
from auditsync.extraction import RuleCache


def make_rule(rule_id, rule_order, target_name="DB1"):
    return ExtractionRule(
        id=rule_id,
        target_id=1,
        target_name=target_name,
        rule_name=f"rule_{rule_id}",
        source_field="text",
        regex_pattern=r"(\d+)",
        rule_order=rule_order,
    )


class SlowRuleRepository:
    """Rule store that counts loads and yields control while loading."""

    def __init__(self, rules_by_target, delay=0.01, fail_times=0):
        self.rules_by_target = rules_by_target
        self.delay = delay
        self.fail_times = fail_times
        self.calls = []

    async def get_rules_by_target(self, target_name):
        self.calls.append(target_name)
        await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RepositoryError("store unavailable")
        return list(self.rules_by_target.get(target_name, []))


class TestRuleCache:
    """Test cases for RuleCache."""

    async def test_concurrent_misses_share_one_load(self):
        """Test that 100 concurrent requests for a cold target cause one load."""
        repository = SlowRuleRepository({"DB1": [make_rule(1, 1), make_rule(2, 2)]})
        cache = RuleCache(repository)

        results = await asyncio.gather(*(cache.rules_for("DB1") for _ in range(100)))

        assert repository.calls == ["DB1"]
        assert all(result is results[0] for result in results)
        assert [rule.id for rule in results[0]] == [1, 2]

    async def test_targets_load_independently(self):
        """Test that each target is loaded once."""
        repository = SlowRuleRepository({"DB1": [make_rule(1, 1)], "DB2": [make_rule(2, 1, "DB2")]})
        cache = RuleCache(repository)

        await asyncio.gather(
            cache.rules_for("DB1"), cache.rules_for("DB2"),
            cache.rules_for("DB1"), cache.rules_for("DB2"),
        )

        assert sorted(repository.calls) == ["DB1", "DB2"]
        assert len(cache) == 2

    async def test_warm_lookup_does_not_hit_store(self):
        """Test that a cached target is served from memory."""
        repository = SlowRuleRepository({"DB1": [make_rule(1, 1)]})
        cache = RuleCache(repository)

        await cache.rules_for("DB1")
        await cache.rules_for("DB1")

        assert repository.calls == ["DB1"]
        assert "DB1" in cache

    async def test_rules_sorted_by_order(self):
        """Test that cached rules are in ascending rule_order."""
        repository = SlowRuleRepository({"DB1": [make_rule(3, 3), make_rule(1, 1), make_rule(2, 2)]})
        cache = RuleCache(repository)

        rules = await cache.rules_for("DB1")

        assert [rule.rule_order for rule in rules] == [1, 2, 3]

    async def test_empty_rule_list_is_cached(self):
        """Test that a target without rules is cached as an empty list."""
        repository = SlowRuleRepository({})
        cache = RuleCache(repository)

        assert await cache.rules_for("DB1") == []
        assert await cache.rules_for("DB1") == []
        assert repository.calls == ["DB1"]

    async def test_failed_load_is_not_cached(self):
        """Test that a store failure propagates and the next request retries."""
        repository = SlowRuleRepository({"DB1": [make_rule(1, 1)]}, fail_times=1)
        cache = RuleCache(repository)

        with pytest.raises(RepositoryError):
            await cache.rules_for("DB1")

        assert "DB1" not in cache
        rules = await cache.rules_for("DB1")
        assert [rule.id for rule in rules] == [1]
        assert repository.calls == ["DB1", "DB1"]

    async def test_invalidate_single_target(self):
        """Test that invalidating a target forces a reload."""
        repository = SlowRuleRepository({"DB1": [make_rule(1, 1)], "DB2": []})
        cache = RuleCache(repository)
        await cache.rules_for("DB1")
        await cache.rules_for("DB2")

        cache.invalidate("DB1")

        assert "DB1" not in cache
        assert "DB2" in cache
        await cache.rules_for("DB1")
        assert repository.calls.count("DB1") == 2

    async def test_invalidate_all(self):
        """Test that invalidating without a target clears the cache."""
        repository = SlowRuleRepository({"DB1": []})
        cache = RuleCache(repository)
        await cache.rules_for("DB1")

        cache.invalidate()

        assert len(cache) == 0

    async def test_load_metrics_recorded(self):
        """Test that a load reports the rule count."""
        metrics = Mock()
        repository = SlowRuleRepository({"DB1": [make_rule(1, 1), make_rule(2, 2)]})
        cache = RuleCache(repository, metrics=metrics)

        await asyncio.gather(cache.rules_for("DB1"), cache.rules_for("DB1"))

        metrics.record_rule_load.assert_called_once_with("DB1", 2)
