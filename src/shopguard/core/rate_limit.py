"""FastAPI dependencies that put routes behind the admission gate.

Usage::

    @router.post("/orders", dependencies=[Depends(tiered_rate_limit())])
    @router.post("/coupons/redeem", dependencies=[Depends(endpoint_rate_limit("coupons", 5, 60))])
    @router.get("/search", dependencies=[Depends(named_rate_limit("search"))])

Each factory returns a dependency that builds a ``RequestContext`` from the
Starlette request, runs the gate and leaves the resulting ``RateLimitInfo`` on
``request.state`` for the header middleware. Rejections raise
``QuotaExceededError`` / ``ClientBlockedError`` for the exception handlers.
"""

from typing import Callable, Dict, List, Optional, Sequence

from fastapi import Depends, Request

from shopguard.core.config.settings import settings
from shopguard.core.middleware import RATE_LIMIT_INFO_STATE
from shopguard.domain.rate_limiting.entities import GateOutcome
from shopguard.domain.rate_limiting.identity import RequestContext
from shopguard.domain.rate_limiting.services import (
    DefaultPolicy,
    NamedPolicy,
    Policy,
    StaticPolicy,
    build_endpoint_rule,
)
from shopguard.domain.rate_limiting.value_objects import CallerTier, RateLimitRule
from shopguard.infrastructure.dependency_injection.rate_limit_dependencies import (
    RateLimitingContainer,
    get_rate_limiting,
)

PolicyFactory = Callable[[RateLimitingContainer, Request], Sequence[Policy]]


def _label(value) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def build_request_context(request: Request) -> RequestContext:
    """Translate a Starlette request into the gate's request view.

    The auth layer is expected to set ``request.state.user`` with ``id`` and
    ``tier`` (or ``role``) attributes, or as a mapping with the same keys.
    Unauthenticated requests have no user and are treated as guests.
    """
    user = getattr(request.state, "user", None)
    user_id = tier = None
    if isinstance(user, dict):
        user_id = user.get("id")
        tier = user.get("tier") or user.get("role")
    elif user is not None:
        user_id = getattr(user, "id", None)
        tier = getattr(user, "tier", None) or getattr(user, "role", None)

    return RequestContext(
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
        headers=dict(request.headers),
        user_id=_label(user_id),
        tier=CallerTier.from_label(_label(tier)),
    )


def limit_with(policy_factory: PolicyFactory) -> Callable:
    """Build a gate dependency from a function selecting policies per request."""

    async def _dependency(
        request: Request,
        container: RateLimitingContainer = Depends(get_rate_limiting),
    ) -> GateOutcome:
        outcome = await container.gate.enforce(
            build_request_context(request), policy_factory(container, request)
        )
        if outcome.info is not None:
            setattr(request.state, RATE_LIMIT_INFO_STATE, outcome.info)
        return outcome

    return _dependency


def rate_limit(
    requests: int,
    window_seconds: int,
    key_prefix: Optional[str] = None,
    message: Optional[str] = None,
    name: Optional[str] = None,
) -> Callable:
    """Static per-route limit.

    The rule is validated when the route module is imported, so a bad quota
    fails at startup rather than on the first request. Without a ``key_prefix``
    or ``name`` every route gets its own counters under
    ``<RATE_LIMIT_KEY_PREFIX>:custom:<route path>:<requests>/<window_seconds>``,
    so two routes never share a quota.

    Args:
        requests: Maximum number of requests per window.
        window_seconds: Window size in seconds.
        key_prefix: Counter key prefix, shared by every route using it.
        message: Violation message returned with 429 responses.
        name: Rule name used in logs and metrics; keys go under
            ``<RATE_LIMIT_KEY_PREFIX>:custom:<name>`` unless ``key_prefix`` is set.
    """
    base = f"{settings.RATE_LIMIT_KEY_PREFIX}:custom"
    rule = RateLimitRule(
        name=name or key_prefix or "custom",
        requests=requests,
        window_seconds=window_seconds,
        key_prefix=key_prefix or (f"{base}:{name}" if name else base),
        violation_message=message,
    )
    if key_prefix or name:
        policies: List[Policy] = [StaticPolicy(rule)]
        return limit_with(lambda container, request: policies)

    per_route: Dict[str, List[Policy]] = {}

    def _route_policies(container: RateLimitingContainer, request: Request) -> Sequence[Policy]:
        route = request.scope.get("route")
        path = getattr(route, "path_format", None) or request.url.path
        if path not in per_route:
            scope = f"{path}:{requests}/{window_seconds}"
            per_route[path] = [
                StaticPolicy(rule.with_changes(name=f"custom:{scope}", key_prefix=f"{base}:{scope}"))
            ]
        return per_route[path]

    return limit_with(_route_policies)


def endpoint_rate_limit(endpoint: str, requests: int, window_seconds: int) -> Callable:
    """Static limit with a per-endpoint key prefix and violation message."""
    rule = build_endpoint_rule(endpoint, requests, window_seconds, settings.RATE_LIMIT_KEY_PREFIX)
    policies: List[Policy] = [StaticPolicy(rule)]
    return limit_with(lambda container, request: policies)


def tiered_rate_limit() -> Callable:
    """Limit chosen by the caller's tier (guest, user, premium, admin)."""
    return limit_with(lambda container, request: [container.tiered_policy])


def named_rate_limit(name: str) -> Callable:
    """Registry rule looked up per request; unknown or disabled names use the default rule."""
    policies: List[Policy] = [NamedPolicy(name)]
    return limit_with(lambda container, request: policies)


def default_rate_limit() -> Callable:
    """The registry's default rule (100 requests per hour per method unless configured)."""
    policies: List[Policy] = [DefaultPolicy()]
    return limit_with(lambda container, request: policies)
