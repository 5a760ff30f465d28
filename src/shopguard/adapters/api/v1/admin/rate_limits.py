"""Admin Rate Limit Management Endpoints

Operator-facing surface over the rule registry, the allow/deny lists and the
live counters. Every route requires an ``admin`` caller tier (supplied by the
auth layer on ``request.state.user``) and is itself behind the tiered gate.

Counter reads and clears talk to the counter store directly and answer 503
when it is down; they never fail open.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from shopguard.core.exceptions import PermissionError, ValidationError
from shopguard.core.metrics import RateLimitMetrics
from shopguard.core.rate_limit import build_request_context, tiered_rate_limit
from shopguard.domain.rate_limiting.entities import AccessListEntry, AccessListKind
from shopguard.domain.rate_limiting.services import RateLimitAdminService
from shopguard.domain.rate_limiting.value_objects import CallerTier, ClientIdentity
from shopguard.infrastructure.dependency_injection.rate_limit_dependencies import (
    get_admin_service,
    get_metrics,
)

from .schemas import (
    AccessEntryListResponse,
    AccessEntryRequest,
    AccessEntryResponse,
    ClearRequest,
    ClearResponse,
    PurgeResponse,
    RateLimitInfoResponse,
    RuleListResponse,
    RuleResponse,
    RuleUpsertRequest,
    StatsResponse,
)


def require_admin(request: Request) -> None:
    """Dependency rejecting callers whose tier is not ``admin``.

    Raises:
        PermissionError: For every other tier, including anonymous callers.
    """
    context = build_request_context(request)
    if context.tier is not CallerTier.ADMIN:
        raise PermissionError()


router = APIRouter(
    prefix="/rate-limits",
    tags=["admin", "rate-limits"],
    dependencies=[Depends(require_admin), Depends(tiered_rate_limit())],
)


def _parse_identity(tag: str) -> ClientIdentity:
    try:
        return ClientIdentity.parse(tag)
    except ValueError as e:
        raise ValidationError(str(e), code="invalid_identity") from e


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@router.get("/rules", response_model=RuleListResponse)
async def list_rules(
    include_inactive: bool = Query(False),
    admin: RateLimitAdminService = Depends(get_admin_service),
):
    """List rules, default rule first."""
    rules = admin.list_rules(include_inactive=include_inactive)
    return RuleListResponse(rules=[RuleResponse.from_rule(r) for r in rules], count=len(rules))


@router.get("/rules/{name}", response_model=RuleResponse)
async def get_rule(name: str, admin: RateLimitAdminService = Depends(get_admin_service)):
    return RuleResponse.from_rule(admin.get_rule(name))


@router.put("/rules/{name}", response_model=RuleResponse)
async def upsert_rule(
    name: str,
    body: RuleUpsertRequest,
    response: Response,
    admin: RateLimitAdminService = Depends(get_admin_service),
):
    """Create or replace a rule.

    Answers 201 when the rule is new, 200 when it replaced an existing one.
    Windows already running in the store keep their original expiry.

    Raises:
        InvalidRuleError: Non-positive quota or window, or a key prefix that
            is reserved or already used by another rule (422).
    """
    rule = admin.build_rule(
        name,
        body.requests,
        body.window_seconds,
        key_prefix=body.key_prefix,
        violation_message=body.violation_message,
        description=body.description,
        enabled=body.enabled,
        scope_by_method=body.scope_by_method,
    )
    created = admin.upsert_rule(rule)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return RuleResponse.from_rule(rule)


@router.delete("/rules/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(name: str, admin: RateLimitAdminService = Depends(get_admin_service)):
    admin.remove_rule(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Allow / deny lists
# ---------------------------------------------------------------------------


# Must be registered before the /access-lists/{kind} routes
@router.post("/access-lists/purge", response_model=PurgeResponse)
async def purge_expired_entries(admin: RateLimitAdminService = Depends(get_admin_service)):
    """Drop expired entries from both lists."""
    return PurgeResponse(purged=admin.purge_expired_entries())


@router.get("/access-lists/{kind}", response_model=AccessEntryListResponse)
async def list_access_entries(
    kind: AccessListKind, admin: RateLimitAdminService = Depends(get_admin_service)
):
    """List active (non-expired) entries of the allow or deny list."""
    entries = admin.list_entries(kind)
    return AccessEntryListResponse(
        entries=[AccessEntryResponse.from_entry(e) for e in entries], count=len(entries)
    )


@router.post(
    "/access-lists/{kind}",
    response_model=AccessEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_access_entry(
    kind: AccessListKind,
    body: AccessEntryRequest,
    admin: RateLimitAdminService = Depends(get_admin_service),
):
    entry = AccessListEntry(pattern=body.pattern, expires_at=body.expires_at, reason=body.reason)
    admin.add_entry(kind, entry)
    return AccessEntryResponse.from_entry(entry)


@router.delete("/access-lists/{kind}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_access_entry(
    kind: AccessListKind,
    pattern: str = Query(..., min_length=3),
    admin: RateLimitAdminService = Depends(get_admin_service),
):
    """Remove an entry by its exact pattern; 404 if it is not on the list."""
    if not admin.remove_entry(kind, pattern):
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------


@router.get("/info", response_model=RateLimitInfoResponse)
async def get_rate_limit_info(
    rule: str = Query(..., min_length=1),
    identity: str = Query(..., min_length=3),
    method: Optional[str] = Query(None),
    admin: RateLimitAdminService = Depends(get_admin_service),
):
    """Current quota state for a rule and identity without consuming quota."""
    client = _parse_identity(identity)
    info = await admin.get_info(rule, client, method)
    return RateLimitInfoResponse.from_info(rule, client.tag, info)


@router.post("/clear", response_model=ClearResponse)
async def clear_rate_limit(
    body: ClearRequest, admin: RateLimitAdminService = Depends(get_admin_service)
):
    """Reset a caller's counter for a rule."""
    cleared = await admin.clear(body.rule, _parse_identity(body.identity), body.method)
    return ClearResponse(cleared=cleared)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(metrics: RateLimitMetrics = Depends(get_metrics)):
    return StatsResponse(**metrics.get_metrics())
