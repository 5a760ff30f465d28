"""Rate Limiting Domain Module

Domain model for admission control of the storefront API:

- Value Objects: identities, caller tiers, rules and rate metadata
- Entities: allow/deny entries and admission decisions
- Registry and Access Lists: process-wide, read-copy-update state
- Domain Services: fixed-window engine, policy selection, request gate, admin
- Repositories: the counter store contract
"""

from .access_lists import AccessLists
from .entities import AccessListEntry, AccessListKind, AdmissionDecision, GateDecision, GateOutcome
from .identity import ClientIdentityResolver, RequestContext
from .registry import RuleRegistry
from .repositories import CounterStore
from .services import (
    AdmissionGate,
    DefaultPolicy,
    FixedWindowRateLimiter,
    NamedPolicy,
    PolicySelector,
    RateLimitAdminService,
    StaticPolicy,
    TieredPolicy,
)
from .value_objects import CallerTier, ClientIdentity, RateLimitInfo, RateLimitRule

__all__ = [
    "AccessLists",
    "AccessListEntry",
    "AccessListKind",
    "AdmissionDecision",
    "GateDecision",
    "GateOutcome",
    "ClientIdentityResolver",
    "RequestContext",
    "RuleRegistry",
    "CounterStore",
    "AdmissionGate",
    "DefaultPolicy",
    "FixedWindowRateLimiter",
    "NamedPolicy",
    "PolicySelector",
    "RateLimitAdminService",
    "StaticPolicy",
    "TieredPolicy",
    "CallerTier",
    "ClientIdentity",
    "RateLimitInfo",
    "RateLimitRule",
]
