"""
Unit tests for the rule registry: lookup, replacement, removal and
read-copy-update safety under concurrent writers.
"""

import threading

import pytest

from shopguard.core.exceptions import InvalidRuleError, UnknownRuleError
from shopguard.domain.rate_limiting.registry import DEFAULT_RULE_NAME, RuleRegistry, build_default_rule
from shopguard.domain.rate_limiting.value_objects import RateLimitRule


def make_rule(name="search", requests=10, window=60, **kwargs):
    return RateLimitRule(
        name=name, requests=requests, window_seconds=window, key_prefix=f"rl:{name}", **kwargs
    )


class TestDefaultRule:
    def test_default_is_100_per_hour_scoped_by_method(self):
        rule = build_default_rule()
        assert rule.name == DEFAULT_RULE_NAME
        assert (rule.requests, rule.window_seconds) == (100, 3600)
        assert rule.key_prefix == "rate_limit"
        assert rule.scope_by_method is True

    def test_get_default_by_name(self, registry):
        assert registry.get("default") is registry.default_rule
        assert "default" in registry

    def test_default_name_is_reserved_for_upsert(self, registry):
        with pytest.raises(InvalidRuleError):
            registry.upsert(make_rule(name=DEFAULT_RULE_NAME))

    def test_default_cannot_be_removed(self, registry):
        with pytest.raises(InvalidRuleError):
            registry.remove(DEFAULT_RULE_NAME)

    def test_set_default_rule(self, registry):
        replacement = build_default_rule(requests=5, window_seconds=60)
        registry.set_default_rule(replacement)
        assert registry.default_rule is replacement


class TestRuleRegistry:
    def test_upsert_then_get(self, registry):
        rule = make_rule()
        assert registry.upsert(rule) is True
        assert registry.get("search") is rule

    def test_upsert_replaces_existing_rule(self, registry):
        registry.upsert(make_rule(requests=10))
        assert registry.upsert(make_rule(requests=20)) is False
        assert registry.get("search").requests == 20
        assert len(registry) == 1

    def test_get_unknown_rule_raises(self, registry):
        with pytest.raises(UnknownRuleError) as exc_info:
            registry.get("missing")
        assert exc_info.value.code == "unknown_rule"
        assert exc_info.value.rule_name == "missing"

    def test_find_unknown_rule_returns_none(self, registry):
        assert registry.find("missing") is None

    def test_remove(self, registry):
        rule = make_rule()
        registry.upsert(rule)
        assert registry.remove("search") is rule
        assert "search" not in registry
        with pytest.raises(UnknownRuleError):
            registry.remove("search")

    def test_list_active_skips_disabled_rules(self, registry):
        registry.upsert(make_rule("b"))
        registry.upsert(make_rule("a"))
        registry.upsert(make_rule("off", enabled=False))
        assert [r.name for r in registry.list_active()] == ["a", "b"]
        assert [r.name for r in registry.list_all()] == ["a", "b", "off"]

    def test_non_rule_is_rejected(self, registry):
        with pytest.raises(InvalidRuleError):
            registry.upsert({"name": "x", "requests": 1})

    def test_invalid_rule_never_reaches_registry(self, registry):
        """Validation happens when the rule is built, before anything is applied."""
        with pytest.raises(InvalidRuleError):
            registry.upsert(make_rule(requests=0))
        assert len(registry) == 0

    def test_initial_rules(self):
        registry = RuleRegistry(rules=[make_rule("a"), make_rule("b")])
        assert len(registry) == 2


class TestKeyPrefixOwnership:
    def test_second_rule_with_same_prefix_is_rejected(self, registry):
        registry.upsert(RateLimitRule(name="login", requests=3, window_seconds=60, key_prefix="rl:shared"))
        with pytest.raises(InvalidRuleError) as exc_info:
            registry.upsert(
                RateLimitRule(name="browse", requests=100, window_seconds=60, key_prefix="rl:shared")
            )
        assert "login" in str(exc_info.value)
        assert registry.find("browse") is None

    def test_replacing_a_rule_may_keep_its_prefix(self, registry):
        registry.upsert(make_rule(requests=10))
        assert registry.upsert(make_rule(requests=20)) is False

    def test_rule_cannot_take_default_prefix(self, registry):
        with pytest.raises(InvalidRuleError):
            registry.upsert(RateLimitRule(name="search", requests=5, window_seconds=60, key_prefix="rate_limit"))

    def test_default_cannot_take_a_named_rule_prefix(self, registry):
        registry.upsert(make_rule())
        with pytest.raises(InvalidRuleError):
            registry.set_default_rule(build_default_rule(key_prefix="rl:search"))
        assert registry.default_rule.key_prefix == "rate_limit"

    def test_initial_rules_with_shared_prefix_are_rejected(self):
        with pytest.raises(InvalidRuleError):
            RuleRegistry(
                rules=[
                    RateLimitRule(name="a", requests=1, window_seconds=1, key_prefix="rl"),
                    RateLimitRule(name="b", requests=1, window_seconds=1, key_prefix="rl"),
                ]
            )


class TestRegistryConcurrency:
    def test_readers_never_see_torn_rules_during_writes(self, registry):
        """Every observed rule has a consistent (requests, window) pair."""
        registry.upsert(make_rule(requests=1, window=1))
        stop = threading.Event()
        errors = []

        def writer():
            for i in range(1, 500):
                registry.upsert(make_rule(requests=i, window=i))
            stop.set()

        def reader():
            while not stop.is_set():
                rule = registry.get("search")
                if rule.requests != rule.window_seconds:
                    errors.append(rule)
                registry.list_active()

        threads = [threading.Thread(target=reader) for _ in range(4)]
        threads.append(threading.Thread(target=writer))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert registry.get("search").requests == 499

    def test_concurrent_upserts_are_not_lost(self, registry):
        def add(start):
            for i in range(start, start + 50):
                registry.upsert(make_rule(name=f"rule-{i}"))

        threads = [threading.Thread(target=add, args=(n * 50,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 200
