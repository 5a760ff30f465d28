"""
Rate Limiting Domain Services

Domain services that orchestrate admission decisions.

Services:
- FixedWindowRateLimiter: The fixed-window counter algorithm over a CounterStore
- PolicySelector: Maps route policies and caller tier to concrete rules
- AdmissionGate: Per-request state machine (identity, lists, policy, check)
- RateLimitAdminService: Operator-facing rule, list and counter management

Design Principles:
- Dependency Injection: Every collaborator is passed in; no module singletons
- Fail Open: Counter store failures admit the request and are reported through
  logs and the metrics observer
- No Local Counts: Counters live only in the store, never cached across requests
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Union

from structlog import get_logger

from shopguard.core.exceptions import (
    ClientBlockedError,
    InvalidRuleError,
    QuotaExceededError,
    StoreUnavailableError,
    ValidationError,
)
from shopguard.core.metrics import RateLimitMetrics

from .access_lists import AccessLists
from .entities import (
    AccessListEntry,
    AccessListKind,
    AdmissionDecision,
    GateDecision,
    GateOutcome,
    ViolationType,
)
from .identity import ClientIdentityResolver, RequestContext
from .registry import DEFAULT_RULE_NAME, RuleRegistry
from .repositories import CounterStore
from .value_objects import CallerTier, ClientIdentity, RateLimitInfo, RateLimitRule

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Admission engine
# ---------------------------------------------------------------------------


class FixedWindowRateLimiter:
    """
    Fixed-window counter algorithm.

    Each check is one atomic store round-trip that increments the key and,
    for a new key, starts its window. Rejected checks are not rolled back, so
    retries keep counting against the caller. Up to twice the limit can pass
    around a window boundary; that burst is the price of O(1) state per key
    and store-native expiry.
    """

    def __init__(
        self,
        store: CounterStore,
        metrics: Optional[RateLimitMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.metrics = metrics if metrics is not None else RateLimitMetrics()
        self._clock = clock

    async def check(
        self, key: str, limit: int, window_seconds: int, rule_name: Optional[str] = None
    ) -> AdmissionDecision:
        """
        Count one request against ``key`` and decide admit/reject.

        Args:
            key: Counter key, see ``RateLimitRule.key_for``
            limit: Requests allowed per window
            window_seconds: Window length
            rule_name: Used only for logs and metrics

        Returns:
            AdmissionDecision; ``degraded`` is set when the store failed and
            the request was admitted without a count
        """
        try:
            count, ttl_ms = await self.store.increment_with_expiry(key, window_seconds)
        except StoreUnavailableError as e:
            logger.warning(
                "rate_limit_store_unavailable",
                key=key,
                rule=rule_name,
                error=str(e),
                action="fail_open",
            )
            self.metrics.record_degraded(rule_name)
            return AdmissionDecision.degraded_admission(key)

        info = RateLimitInfo.from_counter(limit, count, ttl_ms, window_seconds, self._clock())
        return AdmissionDecision(key=key, admitted=count <= limit, count=count, info=info)

    async def peek(self, key: str, limit: int, window_seconds: int) -> RateLimitInfo:
        """Current info for ``key`` without consuming quota.

        Raises:
            StoreUnavailableError: Administrative reads do not fail open
        """
        count = await self.store.get(key) or 0
        ttl_ms = await self.store.ttl(key) if count else -2
        return RateLimitInfo.from_counter(limit, count, ttl_ms, window_seconds, self._clock())

    async def clear(self, key: str) -> bool:
        """Delete the counter for ``key``. Raises StoreUnavailableError."""
        return await self.store.delete(key)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StaticPolicy:
    """One rule applied uniformly to a route."""

    rule: RateLimitRule


@dataclass(frozen=True)
class TieredPolicy:
    """A rule per caller tier; tiers without a rule use ``fallback_tier``."""

    rules: Mapping[CallerTier, RateLimitRule]
    fallback_tier: CallerTier = CallerTier.GUEST

    def rule_for(self, tier: CallerTier) -> Optional[RateLimitRule]:
        rule = self.rules.get(tier)
        if rule is None:
            rule = self.rules.get(self.fallback_tier)
        return rule


@dataclass(frozen=True)
class NamedPolicy:
    """A registry rule looked up by name at request time."""

    name: str


@dataclass(frozen=True)
class DefaultPolicy:
    """The registry's default rule."""


Policy = Union[StaticPolicy, TieredPolicy, NamedPolicy, DefaultPolicy]


def build_tiered_policy(
    tier_rates: Mapping[CallerTier, str], key_prefix: str = "rate_limit"
) -> TieredPolicy:
    """Build a tiered policy from ``{tier: "count/period"}``.

    Each tier gets its own prefix ``<key_prefix>:tiered:<tier>`` so a caller
    changing tier starts a fresh window.
    """
    rules = {
        tier: RateLimitRule.from_rate_string(
            name=f"tier_{tier.value}",
            rate=rate,
            key_prefix=f"{key_prefix}:tiered:{tier.value}",
            description=f"Tiered limit for {tier.value} callers",
        )
        for tier, rate in tier_rates.items()
    }
    return TieredPolicy(rules=rules)


def build_endpoint_rule(
    endpoint: str, requests: int, window_seconds: int, key_prefix: str = "rate_limit"
) -> RateLimitRule:
    """Rule scoped to one endpoint, with the endpoint named in its violation message."""
    return RateLimitRule(
        name=f"endpoint:{endpoint}",
        requests=requests,
        window_seconds=window_seconds,
        key_prefix=f"{key_prefix}:endpoint:{endpoint}",
        violation_message=f"Rate limit exceeded for {endpoint} endpoint",
        description=f"Endpoint limit for {endpoint}",
    )


class PolicySelector:
    """Resolves policies to the ordered list of rules to check.

    Selection is side-effect free apart from a warning log when a named rule
    is missing or disabled and the default rule is used instead.
    """

    def __init__(self, registry: RuleRegistry):
        self.registry = registry

    def select(self, policies: Iterable[Policy], tier: CallerTier) -> List[RateLimitRule]:
        selected: List[RateLimitRule] = []
        seen = set()
        for policy in policies:
            rule = self._resolve(policy, tier)
            if rule is None or not rule.enabled or rule.name in seen:
                continue
            seen.add(rule.name)
            selected.append(rule)
        return selected

    def _resolve(self, policy: Policy, tier: CallerTier) -> Optional[RateLimitRule]:
        if isinstance(policy, StaticPolicy):
            return policy.rule
        if isinstance(policy, TieredPolicy):
            return policy.rule_for(tier)
        if isinstance(policy, NamedPolicy):
            rule = self.registry.find(policy.name)
            if rule is None or not rule.enabled:
                logger.warning(
                    "rate_limit_rule_fallback",
                    rule=policy.name,
                    reason="missing" if rule is None else "disabled",
                    fallback=DEFAULT_RULE_NAME,
                )
                return self.registry.default_rule
            return rule
        if isinstance(policy, DefaultPolicy):
            return self.registry.default_rule
        raise TypeError(f"Unsupported policy type: {type(policy).__name__}")


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class AdmissionGate:
    """
    Per-request admission state machine.

    Start -> IdentityResolved -> Filtered(allowed|denied) -> PolicySelected
    -> Checked(admit|reject) -> Completed.

    Deny-listed callers stop at Filtered without touching any counter.
    Allow-listed callers skip quota checks entirely. Rules are checked in
    order and the first rejection ends the request. There is no retry loop.
    """

    def __init__(
        self,
        resolver: ClientIdentityResolver,
        access_lists: AccessLists,
        selector: PolicySelector,
        limiter: FixedWindowRateLimiter,
        metrics: Optional[RateLimitMetrics] = None,
        enabled: bool = True,
    ):
        self.resolver = resolver
        self.access_lists = access_lists
        self.selector = selector
        self.limiter = limiter
        self.metrics = metrics if metrics is not None else RateLimitMetrics()
        self.enabled = enabled

    async def evaluate(self, request: RequestContext, policies: Sequence[Policy]) -> GateOutcome:
        identity = self.resolver.resolve(request)

        if not self.enabled:
            self.metrics.record_bypassed()
            return GateOutcome(GateDecision.BYPASSED, identity, reason="rate_limiting_disabled")

        denied = self.access_lists.denied_by(identity)
        if denied is not None:
            logger.warning(
                "rate_limit_client_denied",
                identity=identity.tag,
                pattern=denied.pattern,
                reason=denied.reason,
                violation_type=ViolationType.BLOCKED.value,
                path=request.path,
            )
            self.metrics.record_denied()
            return GateOutcome(GateDecision.DENIED, identity, reason=denied.reason)

        allowed = self.access_lists.allowed_by(identity)
        if allowed is not None:
            logger.info(
                "rate_limit_bypassed",
                identity=identity.tag,
                pattern=allowed.pattern,
                violation_type=ViolationType.BYPASSED.value,
                path=request.path,
            )
            self.metrics.record_bypassed()
            return GateOutcome(GateDecision.BYPASSED, identity, reason="allow_list")

        rules = self.selector.select(policies, request.tier)

        degraded = False
        tightest_rule: Optional[RateLimitRule] = None
        tightest_info: Optional[RateLimitInfo] = None
        for rule in rules:
            decision = await self.limiter.check(
                rule.key_for(identity, request.method),
                rule.requests,
                rule.window_seconds,
                rule_name=rule.name,
            )
            if decision.degraded:
                degraded = True
                continue
            if not decision.admitted:
                logger.warning(
                    "rate_limit_exceeded",
                    identity=identity.tag,
                    rule=rule.name,
                    key=decision.key,
                    count=decision.count,
                    limit=rule.requests,
                    violation_type=ViolationType.EXCEEDED.value,
                    path=request.path,
                )
                self.metrics.record_rejected(rule.name)
                return GateOutcome(GateDecision.REJECTED, identity, rule=rule, info=decision.info)
            self.metrics.record_admitted(rule.name)
            if tightest_info is None or decision.info.remaining < tightest_info.remaining:
                tightest_rule, tightest_info = rule, decision.info

        return GateOutcome(
            GateDecision.DEGRADED if degraded else GateDecision.ADMITTED,
            identity,
            rule=tightest_rule,
            info=tightest_info,
        )

    async def enforce(self, request: RequestContext, policies: Sequence[Policy]) -> GateOutcome:
        """Like ``evaluate`` but raises on the rejecting terminal states.

        Raises:
            ClientBlockedError: The caller is deny-listed
            QuotaExceededError: A rule's quota is used up
        """
        outcome = await self.evaluate(request, policies)
        if outcome.decision is GateDecision.DENIED:
            raise ClientBlockedError(outcome.identity.tag, outcome.reason)
        if outcome.decision is GateDecision.REJECTED:
            raise QuotaExceededError(
                outcome.info, outcome.rule.name, outcome.rule.violation_message
            )
        return outcome


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

HTTP_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

# Key namespaces used by rate_limit(), tiered_rate_limit() and endpoint_rate_limit()
RESERVED_NAMESPACES = ("custom", "tiered", "endpoint")


@dataclass
class RateLimitAdminService:
    """Operator-facing operations over rules, access lists and counters.

    Counter reads and clears do not fail open: a store outage raises
    ``StoreUnavailableError`` so the operator sees it.

    Rules created here live under ``<key_prefix>:rule:<name>`` unless given an
    explicit prefix, and may not use the namespaces of route-level policies.
    """

    registry: RuleRegistry
    access_lists: AccessLists
    limiter: FixedWindowRateLimiter
    key_prefix: str = "rate_limit"
    methods: Sequence[str] = field(default=HTTP_METHODS)

    # Rules

    def build_rule(
        self,
        name: str,
        requests: int,
        window_seconds: int,
        key_prefix: Optional[str] = None,
        violation_message: Optional[str] = None,
        description: str = "",
        enabled: bool = True,
        scope_by_method: Optional[bool] = None,
    ) -> RateLimitRule:
        """Build a rule from operator input.

        Replacing the default rule keeps its key prefix and method scoping
        unless they are given, so running default windows are not restarted.

        Raises:
            InvalidRuleError: Non-positive quota or window
        """
        if name == DEFAULT_RULE_NAME:
            current = self.registry.default_rule
            key_prefix = key_prefix or current.key_prefix
            if scope_by_method is None:
                scope_by_method = current.scope_by_method
        else:
            key_prefix = key_prefix or f"{self.key_prefix}:rule:{name}"
        return RateLimitRule(
            name=name,
            requests=requests,
            window_seconds=window_seconds,
            key_prefix=key_prefix,
            violation_message=violation_message,
            description=description,
            enabled=enabled,
            scope_by_method=bool(scope_by_method),
        )

    def _check_namespace(self, rule: RateLimitRule) -> None:
        for namespace in RESERVED_NAMESPACES:
            reserved = f"{self.key_prefix}:{namespace}"
            if rule.key_prefix == reserved or rule.key_prefix.startswith(f"{reserved}:"):
                raise InvalidRuleError(
                    f"Key prefix '{rule.key_prefix}' is reserved for route-level '{namespace}' limits"
                )

    def upsert_rule(self, rule: RateLimitRule) -> bool:
        """Create or replace a rule. Returns True if it was created.

        Raises:
            InvalidRuleError: The key prefix is reserved or used by another rule
        """
        self._check_namespace(rule)
        if rule.name == DEFAULT_RULE_NAME:
            self.registry.set_default_rule(rule)
            return False
        return self.registry.upsert(rule)

    def get_rule(self, name: str) -> RateLimitRule:
        return self.registry.get(name)

    def remove_rule(self, name: str) -> RateLimitRule:
        return self.registry.remove(name)

    def list_rules(self, include_inactive: bool = False) -> List[RateLimitRule]:
        rules = self.registry.list_all() if include_inactive else self.registry.list_active()
        return [self.registry.default_rule, *rules]

    # Access lists

    def add_entry(self, kind: AccessListKind, entry: AccessListEntry) -> None:
        self.access_lists.add(kind, entry)

    def remove_entry(self, kind: AccessListKind, pattern: str) -> bool:
        return self.access_lists.remove(kind, pattern)

    def list_entries(self, kind: AccessListKind) -> List[AccessListEntry]:
        return self.access_lists.entries(kind)

    def purge_expired_entries(self) -> int:
        return self.access_lists.purge_expired()

    # Counters

    def _key(self, rule: RateLimitRule, identity: ClientIdentity, method: Optional[str]) -> str:
        if rule.scope_by_method and not method:
            raise ValidationError(
                f"Rule '{rule.name}' is scoped by HTTP method; a method is required",
                code="method_required",
            )
        return rule.key_for(identity, method)

    async def get_info(
        self, rule_name: str, identity: ClientIdentity, method: Optional[str] = None
    ) -> RateLimitInfo:
        """Current quota state for a rule and caller, without consuming quota.

        Raises:
            UnknownRuleError: If the rule does not exist
            StoreUnavailableError: If the counter store cannot be read
        """
        rule = self.registry.get(rule_name)
        return await self.limiter.peek(
            self._key(rule, identity, method), rule.requests, rule.window_seconds
        )

    async def clear(
        self, rule_name: str, identity: ClientIdentity, method: Optional[str] = None
    ) -> int:
        """Reset a caller's counter for a rule.

        For method-scoped rules called without a method, every method's
        counter is cleared.

        Returns:
            Number of counters deleted
        """
        rule = self.registry.get(rule_name)
        if rule.scope_by_method and not method:
            keys = [rule.key_for(identity, m) for m in self.methods]
        else:
            keys = [rule.key_for(identity, method)]
        cleared = 0
        for key in keys:
            if await self.limiter.clear(key):
                cleared += 1
        logger.info(
            "rate_limit_counter_cleared", rule=rule.name, identity=identity.tag, cleared=cleared
        )
        return cleared
