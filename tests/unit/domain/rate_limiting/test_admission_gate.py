"""
Unit tests for the per-request admission gate.

Exercises the ordering of access lists, rule selection and quota checks,
including which counters a request may touch.
"""

import pytest

from shopguard.core.exceptions import ClientBlockedError, QuotaExceededError, StoreUnavailableError
from shopguard.domain.rate_limiting.access_lists import AccessLists
from shopguard.domain.rate_limiting.entities import AccessListEntry, AccessListKind, GateDecision
from shopguard.domain.rate_limiting.identity import ClientIdentityResolver, RequestContext
from shopguard.domain.rate_limiting.registry import RuleRegistry
from shopguard.domain.rate_limiting.repositories import CounterStore
from shopguard.domain.rate_limiting.services import (
    AdmissionGate,
    DefaultPolicy,
    FixedWindowRateLimiter,
    PolicySelector,
    StaticPolicy,
)
from shopguard.domain.rate_limiting.value_objects import RateLimitRule

CALLER = RequestContext(method="GET", path="/api/v1/products", client_host="1.2.3.4")


def rule(name, requests, window=60, **kwargs):
    return RateLimitRule(
        name=name, requests=requests, window_seconds=window, key_prefix=f"rl:{name}", **kwargs
    )


class TestGateAdmission:
    @pytest.mark.asyncio
    async def test_admits_within_quota(self, gate, metrics):
        outcome = await gate.evaluate(CALLER, [StaticPolicy(rule("r", 2))])
        assert outcome.decision is GateDecision.ADMITTED
        assert outcome.admitted
        assert outcome.identity.tag == "ip:1.2.3.4"
        assert outcome.info.remaining == 1
        assert metrics.get_metrics()["totals"]["admitted"] == 1

    @pytest.mark.asyncio
    async def test_rejects_over_quota(self, gate, metrics):
        policies = [StaticPolicy(rule("r", 1))]
        await gate.evaluate(CALLER, policies)
        outcome = await gate.evaluate(CALLER, policies)
        assert outcome.decision is GateDecision.REJECTED
        assert not outcome.admitted
        assert outcome.rule.name == "r"
        assert outcome.info.remaining == 0
        assert metrics.get_metrics()["rules"]["r"]["rejected"] == 1

    @pytest.mark.asyncio
    async def test_no_rules_admits(self, gate):
        outcome = await gate.evaluate(CALLER, [])
        assert outcome.decision is GateDecision.ADMITTED
        assert outcome.info is None

    @pytest.mark.asyncio
    async def test_default_rule_is_scoped_by_method(self, gate, memory_store):
        await gate.evaluate(CALLER, [DefaultPolicy()])
        assert await memory_store.get("rate_limit:GET:ip:1.2.3.4") == 1
        assert await memory_store.get("rate_limit:POST:ip:1.2.3.4") is None


class TestGateAccessLists:
    @pytest.mark.asyncio
    async def test_denied_caller_touches_no_counter(self, gate, access_lists, memory_store, metrics):
        access_lists.add(AccessListKind.DENY, AccessListEntry("ip:1.2.3.4", reason="abuse"))
        outcome = await gate.evaluate(CALLER, [StaticPolicy(rule("r", 10))])
        assert outcome.decision is GateDecision.DENIED
        assert outcome.reason == "abuse"
        assert await memory_store.get("rl:r:ip:1.2.3.4") is None
        assert metrics.get_metrics()["totals"]["denied"] == 1

    @pytest.mark.asyncio
    async def test_allowed_caller_is_never_limited(self, gate, access_lists, memory_store):
        access_lists.add(AccessListKind.ALLOW, AccessListEntry("ip:1.2.0.0/16"))
        policies = [StaticPolicy(rule("r", 1))]
        for _ in range(5):
            outcome = await gate.evaluate(CALLER, policies)
            assert outcome.decision is GateDecision.BYPASSED
        assert await memory_store.get("rl:r:ip:1.2.3.4") is None

    @pytest.mark.asyncio
    async def test_deny_wins_over_allow(self, gate, access_lists):
        access_lists.add(AccessListKind.ALLOW, AccessListEntry("ip:1.2.3.4"))
        access_lists.add(AccessListKind.DENY, AccessListEntry("ip:1.2.3.*"))
        outcome = await gate.evaluate(CALLER, [StaticPolicy(rule("r", 10))])
        assert outcome.decision is GateDecision.DENIED


class TestGateDisabled:
    @pytest.mark.asyncio
    async def test_disabled_gate_bypasses_everything(self, registry, limiter, memory_store, metrics):
        access_lists = AccessLists(deny=[AccessListEntry("ip:1.2.3.4")])
        gate = AdmissionGate(
            ClientIdentityResolver(), access_lists, PolicySelector(registry), limiter, metrics, enabled=False
        )
        outcome = await gate.evaluate(CALLER, [StaticPolicy(rule("r", 1))])
        assert outcome.decision is GateDecision.BYPASSED
        assert outcome.reason == "rate_limiting_disabled"
        assert await memory_store.get("rl:r:ip:1.2.3.4") is None


class TestGateMultipleRules:
    @pytest.mark.asyncio
    async def test_first_rejection_stops_later_checks(self, gate, memory_store):
        policies = [StaticPolicy(rule("burst", 1)), StaticPolicy(rule("hourly", 100, window=3600))]
        await gate.evaluate(CALLER, policies)
        outcome = await gate.evaluate(CALLER, policies)

        assert outcome.decision is GateDecision.REJECTED
        assert outcome.rule.name == "burst"
        assert await memory_store.get("rl:burst:ip:1.2.3.4") == 2
        # Only the first, admitted request reached the second rule.
        assert await memory_store.get("rl:hourly:ip:1.2.3.4") == 1

    @pytest.mark.asyncio
    async def test_outcome_reports_tightest_rule(self, gate):
        policies = [StaticPolicy(rule("loose", 100)), StaticPolicy(rule("tight", 3))]
        outcome = await gate.evaluate(CALLER, policies)
        assert outcome.rule.name == "tight"
        assert outcome.info.remaining == 2


class TestGateDegraded:
    @pytest.mark.asyncio
    async def test_store_outage_admits_as_degraded(self, mocker, clock, metrics):
        store = mocker.AsyncMock(spec=CounterStore)
        store.increment_with_expiry.side_effect = StoreUnavailableError()
        gate = AdmissionGate(
            ClientIdentityResolver(),
            AccessLists(),
            PolicySelector(RuleRegistry()),
            FixedWindowRateLimiter(store, metrics=metrics, clock=clock),
            metrics,
        )
        outcome = await gate.evaluate(CALLER, [StaticPolicy(rule("r", 1))])
        assert outcome.decision is GateDecision.DEGRADED
        assert outcome.admitted
        assert outcome.info is None
        assert metrics.get_metrics()["totals"]["degraded"] == 1

        # Still admitted after the quota would have run out.
        assert (await gate.enforce(CALLER, [StaticPolicy(rule("r", 1))])).admitted


class TestGateEnforce:
    @pytest.mark.asyncio
    async def test_enforce_raises_quota_exceeded(self, gate):
        policies = [StaticPolicy(rule("r", 1, violation_message="Slow down"))]
        await gate.enforce(CALLER, policies)
        with pytest.raises(QuotaExceededError) as exc_info:
            await gate.enforce(CALLER, policies)
        assert exc_info.value.rule_name == "r"
        assert exc_info.value.violation_message == "Slow down"
        assert exc_info.value.info.limit == 1

    @pytest.mark.asyncio
    async def test_enforce_raises_client_blocked(self, gate, access_lists):
        access_lists.add(AccessListKind.DENY, AccessListEntry("ip:1.2.3.4", reason="abuse"))
        with pytest.raises(ClientBlockedError) as exc_info:
            await gate.enforce(CALLER, [DefaultPolicy()])
        assert exc_info.value.identity == "ip:1.2.3.4"
        assert exc_info.value.code == "client_blocked"


class TestGateMetrics:
    @pytest.mark.asyncio
    async def test_outcomes_go_through_named_recorders(self, mocker, gate, access_lists, metrics):
        admitted = mocker.spy(metrics, "record_admitted")
        rejected = mocker.spy(metrics, "record_rejected")
        denied = mocker.spy(metrics, "record_denied")
        bypassed = mocker.spy(metrics, "record_bypassed")
        policies = [StaticPolicy(rule("r", 1))]

        await gate.evaluate(CALLER, policies)
        await gate.evaluate(CALLER, policies)
        access_lists.add(AccessListKind.ALLOW, AccessListEntry("ip:9.9.9.9"))
        await gate.evaluate(RequestContext(method="GET", path="/", client_host="9.9.9.9"), policies)
        access_lists.add(AccessListKind.DENY, AccessListEntry("ip:1.2.3.4"))
        await gate.evaluate(CALLER, policies)

        admitted.assert_called_once_with("r")
        rejected.assert_called_once_with("r")
        bypassed.assert_called_once_with()
        denied.assert_called_once_with()
