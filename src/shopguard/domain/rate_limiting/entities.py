"""
Rate Limiting Domain Entities

Entities and result objects for the admission-control domain.

Entities:
- AccessListEntry: One allow or deny entry, with optional expiry
- AdmissionDecision: Outcome of a single fixed-window check
- GateOutcome: Final decision of the request gate
"""

from __future__ import annotations

import fnmatch
import ipaddress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from shopguard.core.exceptions import ValidationError

from .value_objects import ClientIdentity, IdentityKind, RateLimitInfo, RateLimitRule

_GLOB_CHARS = frozenset("*?[")


class AccessListKind(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class ViolationType(str, Enum):
    """Kinds of noteworthy admission events recorded in logs and metrics."""

    EXCEEDED = "exceeded"
    BLOCKED = "blocked"
    BYPASSED = "bypassed"


@dataclass(frozen=True)
class AccessListEntry:
    """An allow or deny entry matched against client identity tags.

    The pattern is one of:

    - an exact tag, e.g. ``"user:42"`` or ``"api_key:partner-1"``
    - a shell glob over the tag, e.g. ``"ip:10.0.*"``
    - a CIDR range for addresses, e.g. ``"ip:192.168.0.0/16"``

    Entries with ``expires_at`` in the past are treated as absent by the
    lists that hold them.
    """

    pattern: str
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        kind, sep, value = self.pattern.partition(":")
        if not sep or not value:
            raise ValidationError(
                f"Access list pattern must look like 'kind:value': {self.pattern!r}",
                code="invalid_access_entry",
            )
        if kind not in {k.value for k in IdentityKind}:
            raise ValidationError(
                f"Unknown identity kind {kind!r} in {self.pattern!r}",
                code="invalid_access_entry",
            )
        if self.network is None and kind == IdentityKind.IP.value and "/" in value:
            raise ValidationError(
                f"Invalid address range in {self.pattern!r}", code="invalid_access_entry"
            )
        if self.expires_at is not None and self.expires_at.tzinfo is None:
            # Naive datetimes are taken as UTC
            object.__setattr__(self, "expires_at", self.expires_at.replace(tzinfo=timezone.utc))

    @property
    def network(self) -> Optional[ipaddress.IPv4Network | ipaddress.IPv6Network]:
        kind, _, value = self.pattern.partition(":")
        if kind != IdentityKind.IP.value or "/" not in value:
            return None
        try:
            return ipaddress.ip_network(value, strict=False)
        except ValueError:
            return None

    @property
    def is_glob(self) -> bool:
        return any(ch in _GLOB_CHARS for ch in self.pattern)

    def matches(self, identity: ClientIdentity) -> bool:
        if self.pattern == identity.tag:
            return True
        network = self.network
        if network is not None:
            if identity.kind is not IdentityKind.IP:
                return False
            try:
                return ipaddress.ip_address(identity.value) in network
            except ValueError:
                return False
        if self.is_glob:
            return fnmatch.fnmatchcase(identity.tag, self.pattern)
        return False

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class AdmissionDecision:
    """Result of one fixed-window check.

    ``count`` is the raw counter value after the increment. ``info`` is
    ``None`` only for degraded decisions, where the store could not be read.
    """

    key: str
    admitted: bool
    count: int
    info: Optional[RateLimitInfo] = None
    degraded: bool = False

    @classmethod
    def degraded_admission(cls, key: str) -> AdmissionDecision:
        """Fail-open decision used when the counter store is unavailable."""
        return cls(key=key, admitted=True, count=0, info=None, degraded=True)


class GateDecision(str, Enum):
    ADMITTED = "admitted"
    BYPASSED = "bypassed"
    DENIED = "denied"
    REJECTED = "rejected"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class GateOutcome:
    """Terminal state of the gate for one request.

    ``info`` carries the metadata to stamp on the response. For admitted
    requests it is the most restrictive of the rules checked.
    """

    decision: GateDecision
    identity: ClientIdentity
    rule: Optional[RateLimitRule] = None
    info: Optional[RateLimitInfo] = None
    reason: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.decision in (GateDecision.ADMITTED, GateDecision.BYPASSED, GateDecision.DEGRADED)
