"""
Rule Registry

Process-wide catalogue of named rate-limit rules plus the default rule.

Concurrency uses read-copy-update: writers serialise on a lock, build a new
dictionary and swap the reference in one assignment. Readers never lock and
always see either the old or the new snapshot, never a half-applied change.
"""

import threading
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from structlog import get_logger

from shopguard.core.exceptions import InvalidRuleError, UnknownRuleError

from .value_objects import RateLimitRule

logger = get_logger(__name__)

DEFAULT_RULE_NAME = "default"


def build_default_rule(
    requests: int = 100, window_seconds: int = 3600, key_prefix: str = "rate_limit"
) -> RateLimitRule:
    """The fallback rule: 100 requests per hour, keyed per HTTP method."""
    return RateLimitRule(
        name=DEFAULT_RULE_NAME,
        requests=requests,
        window_seconds=window_seconds,
        key_prefix=key_prefix,
        description="Default rate limit applied when no other rule matches",
        scope_by_method=True,
    )


class RuleRegistry:
    """Thread-safe registry of named ``RateLimitRule`` objects."""

    def __init__(
        self,
        default_rule: Optional[RateLimitRule] = None,
        rules: Iterable[RateLimitRule] = (),
    ):
        self._write_lock = threading.Lock()
        self._default_rule = default_rule or build_default_rule()
        snapshot = {}
        for rule in rules:
            self._validate(rule)
            self._check_prefix(rule, snapshot, self._default_rule)
            snapshot[rule.name] = rule
        self._rules: Mapping[str, RateLimitRule] = MappingProxyType(snapshot)

    @staticmethod
    def _validate(rule: RateLimitRule) -> None:
        if not isinstance(rule, RateLimitRule):
            raise InvalidRuleError(f"Expected a RateLimitRule, got {type(rule).__name__}")
        if rule.name == DEFAULT_RULE_NAME:
            raise InvalidRuleError(
                f"'{DEFAULT_RULE_NAME}' is reserved; use set_default_rule() to replace it"
            )

    @staticmethod
    def _check_prefix(
        rule: RateLimitRule, rules: Mapping[str, RateLimitRule], default_rule: Optional[RateLimitRule]
    ) -> None:
        """Counter keys must stay unique per (rule, caller), so no two rules share a prefix."""
        owners = [other for other in rules.values() if other.name != rule.name]
        if default_rule is not None:
            owners.append(default_rule)
        for other in owners:
            if other.key_prefix == rule.key_prefix:
                raise InvalidRuleError(
                    f"Key prefix '{rule.key_prefix}' is already used by rule '{other.name}'"
                )

    @property
    def default_rule(self) -> RateLimitRule:
        return self._default_rule

    def set_default_rule(self, rule: RateLimitRule) -> None:
        if not isinstance(rule, RateLimitRule):
            raise InvalidRuleError(f"Expected a RateLimitRule, got {type(rule).__name__}")
        with self._write_lock:
            self._check_prefix(rule, self._rules, None)
            self._default_rule = rule
        logger.info("rate_limit_default_rule_updated", requests=rule.requests, window=rule.window_seconds)

    def upsert(self, rule: RateLimitRule) -> bool:
        """Add or replace a rule by name.

        Rules are validated on construction, so anything reaching here has a
        positive quota and window.

        Raises:
            InvalidRuleError: If another rule already uses the same key prefix

        Returns:
            True if the rule was created, False if it replaced an existing one
        """
        self._validate(rule)
        with self._write_lock:
            self._check_prefix(rule, self._rules, self._default_rule)
            created = rule.name not in self._rules
            snapshot = dict(self._rules)
            snapshot[rule.name] = rule
            self._rules = MappingProxyType(snapshot)
        logger.info(
            "rate_limit_rule_upserted",
            rule=rule.name,
            requests=rule.requests,
            window=rule.window_seconds,
            created=created,
        )
        return created

    def get(self, name: str) -> RateLimitRule:
        """Look up a rule.

        ``"default"`` always resolves to the default rule.

        Raises:
            UnknownRuleError: If no rule has this name
        """
        if name == DEFAULT_RULE_NAME:
            return self._default_rule
        rule = self._rules.get(name)
        if rule is None:
            raise UnknownRuleError(name)
        return rule

    def find(self, name: str) -> Optional[RateLimitRule]:
        if name == DEFAULT_RULE_NAME:
            return self._default_rule
        return self._rules.get(name)

    def remove(self, name: str) -> RateLimitRule:
        """Remove a rule and return it.

        Raises:
            InvalidRuleError: If asked to remove the default rule
            UnknownRuleError: If no rule has this name
        """
        if name == DEFAULT_RULE_NAME:
            raise InvalidRuleError("The default rule cannot be removed")
        with self._write_lock:
            if name not in self._rules:
                raise UnknownRuleError(name)
            snapshot = dict(self._rules)
            removed = snapshot.pop(name)
            self._rules = MappingProxyType(snapshot)
        logger.info("rate_limit_rule_removed", rule=name)
        return removed

    def list_active(self) -> List[RateLimitRule]:
        """Enabled rules, sorted by name. The default rule is not included."""
        rules = self._rules
        return [rules[name] for name in sorted(rules) if rules[name].enabled]

    def list_all(self) -> List[RateLimitRule]:
        rules = self._rules
        return [rules[name] for name in sorted(rules)]

    def __contains__(self, name: str) -> bool:
        return name == DEFAULT_RULE_NAME or name in self._rules

    def __len__(self) -> int:
        return len(self._rules)
