"""
Rate Limiting Value Objects

Immutable value objects representing core concepts in the admission-control
domain. These objects enforce their invariants at construction time so that
the registry, engine and gate can pass them around without re-validating.

Value Objects:
- ClientIdentity: Stable partition tag for one caller
- CallerTier: Caller classification supplied by the auth layer
- RateLimitRule: Quota, window and key settings for one named rule
- RateLimitInfo: Rate metadata derived from a counter at check time

Design Principles:
- Immutability: All value objects are frozen after creation
- Validation: Business rules enforced at construction time
- Equality: Value-based equality for proper hashing and comparison
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from shopguard.core.exceptions import InvalidRuleError


class IdentityKind(str, Enum):
    """Source of a client identity, in resolution priority order."""

    USER = "user"
    API_KEY = "api_key"
    IP = "ip"


@dataclass(frozen=True, slots=True)
class ClientIdentity:
    """
    Opaque partition key isolating one caller's quota from another's.

    The kind prefix guarantees that a user id, an API key and an address
    with the same literal value never share a counter.
    """

    kind: IdentityKind
    value: str

    def __post_init__(self):
        if not self.value:
            raise ValueError("Client identity value must not be empty")

    @property
    def tag(self) -> str:
        return f"{self.kind.value}:{self.value}"

    def __str__(self) -> str:
        return self.tag

    @classmethod
    def for_user(cls, user_id) -> ClientIdentity:
        return cls(IdentityKind.USER, str(user_id))

    @classmethod
    def for_api_key(cls, api_key: str) -> ClientIdentity:
        return cls(IdentityKind.API_KEY, api_key)

    @classmethod
    def for_ip(cls, address: str) -> ClientIdentity:
        return cls(IdentityKind.IP, address)

    @classmethod
    def parse(cls, tag: str) -> ClientIdentity:
        """Parse a ``kind:value`` tag, e.g. ``"ip:10.0.0.1"`` or ``"user:42"``."""
        kind, sep, value = tag.partition(":")
        if not sep:
            raise ValueError(f"Identity tag must look like 'kind:value': {tag!r}")
        try:
            return cls(IdentityKind(kind), value)
        except ValueError as e:
            raise ValueError(f"Invalid identity tag {tag!r}: {e}") from e


class CallerTier(str, Enum):
    """
    Caller classification used by tiered policies.

    The label is issued by the external auth layer and is never validated
    here beyond mapping unknown labels to ``GUEST``.
    """

    GUEST = "guest"
    USER = "user"
    PREMIUM = "premium"
    ADMIN = "admin"

    @classmethod
    def from_label(cls, label: Optional[str]) -> CallerTier:
        if not label:
            return cls.GUEST
        try:
            return cls(str(label).lower())
        except ValueError:
            return cls.GUEST


PERIOD_SECONDS: Dict[str, int] = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


def parse_rate_string(rate: str) -> tuple[int, int]:
    """Parse ``"100/hour"`` into ``(100, 3600)``.

    Raises:
        InvalidRuleError: If the count or period is malformed.
    """
    try:
        count_str, period = rate.strip().split("/")
        count = int(count_str)
        window = PERIOD_SECONDS[period.strip().lower()]
    except (ValueError, KeyError, AttributeError) as e:
        raise InvalidRuleError(
            f"Invalid rate limit format: {rate!r}. Must be 'count/period' "
            f"with period one of {', '.join(PERIOD_SECONDS)}"
        ) from e
    return count, window


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    """
    Immutable rate limit rule.

    A rule is never mutated in place. Updating a rule publishes a new instance
    in the registry; counters already running in the store keep the TTL they
    were created with, so the change only shapes windows opened afterwards.

    Business Rules:
    - ``requests`` and ``window_seconds`` must be positive integers
    - ``name`` and ``key_prefix`` must be non-empty
    - Distinct rules should use distinct prefixes so their counters never collide
    """

    name: str
    requests: int
    window_seconds: int
    key_prefix: str
    violation_message: Optional[str] = None
    description: str = ""
    enabled: bool = True
    scope_by_method: bool = False

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise InvalidRuleError("Rule name must not be empty")
        if not self.key_prefix or not self.key_prefix.strip():
            raise InvalidRuleError(f"Rule '{self.name}' must have a key prefix")
        for field_name in ("requests", "window_seconds"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidRuleError(
                    f"Rule '{self.name}': {field_name} must be a positive integer, got {value!r}"
                )

    @classmethod
    def from_rate_string(cls, name: str, rate: str, key_prefix: str, **kwargs) -> RateLimitRule:
        """Create a rule from a string like ``"100/hour"``."""
        requests, window_seconds = parse_rate_string(rate)
        return cls(
            name=name,
            requests=requests,
            window_seconds=window_seconds,
            key_prefix=key_prefix,
            **kwargs,
        )

    def key_for(self, identity: ClientIdentity, method: Optional[str] = None) -> str:
        """Build the counter key ``prefix[:METHOD]:identity`` for a caller."""
        if self.scope_by_method and method:
            return f"{self.key_prefix}:{method.upper()}:{identity.tag}"
        return f"{self.key_prefix}:{identity.tag}"

    def with_changes(self, **changes) -> RateLimitRule:
        """Return a validated copy of this rule with some fields replaced."""
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """
    Rate metadata for one (rule, caller) pair, derived at check time.

    ``remaining`` is always clamped to zero or more here; the raw count lives
    on the admission decision.
    """

    limit: int
    remaining: int
    reset: int
    window_seconds: int

    @classmethod
    def from_counter(
        cls, limit: int, count: int, ttl_ms: int, window_seconds: int, now: float
    ) -> RateLimitInfo:
        """Compute metadata from a counter value and its remaining TTL.

        A missing TTL (``ttl_ms < 0``) is treated as a full window.
        """
        ttl_seconds = math.ceil(ttl_ms / 1000) if ttl_ms >= 0 else window_seconds
        return cls(
            limit=limit,
            remaining=max(0, limit - count),
            reset=int(now) + ttl_seconds,
            window_seconds=window_seconds,
        )

    def retry_after(self, now: float) -> int:
        return max(0, self.reset - int(now))

    def to_headers(self, now: Optional[float] = None) -> Dict[str, str]:
        """HTTP headers for this info. ``Retry-After`` is added when ``now`` is given."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
            "X-RateLimit-Window": str(self.window_seconds),
        }
        if now is not None:
            headers["Retry-After"] = str(self.retry_after(now))
        return headers

    def to_dict(self) -> Dict[str, int]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset,
            "window": self.window_seconds,
        }
