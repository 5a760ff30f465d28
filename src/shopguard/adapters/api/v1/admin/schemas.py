"""Admin API Request and Response Schemas

This module defines Pydantic schemas for the rate-limit administration
endpoints. Quota and window are deliberately plain integers here: the domain
rule validates them so that bad values surface as ``invalid_rule`` errors.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from shopguard.domain.rate_limiting.entities import AccessListEntry
from shopguard.domain.rate_limiting.value_objects import RateLimitInfo, RateLimitRule


class RuleUpsertRequest(BaseModel):
    """Request schema for creating or replacing a rule."""

    requests: int = Field(..., description="Requests allowed per window")
    window_seconds: int = Field(..., description="Window length in seconds")
    key_prefix: Optional[str] = Field(
        None,
        description="Counter key prefix; defaults to '<prefix>:rule:<rule name>', or the current prefix for the default rule",
        max_length=255,
    )
    violation_message: Optional[str] = Field(
        None, description="Message returned with 429 responses", max_length=500
    )
    description: str = Field("", max_length=500)
    enabled: bool = True
    scope_by_method: Optional[bool] = Field(
        None,
        description="Keep a separate counter per HTTP method; off unless set, except the default rule keeps its current setting",
    )


class RuleResponse(BaseModel):
    """Response schema for a rule."""

    name: str
    requests: int
    window_seconds: int
    key_prefix: str
    violation_message: Optional[str] = None
    description: str = ""
    enabled: bool
    scope_by_method: bool

    @classmethod
    def from_rule(cls, rule: RateLimitRule) -> "RuleResponse":
        return cls(
            name=rule.name,
            requests=rule.requests,
            window_seconds=rule.window_seconds,
            key_prefix=rule.key_prefix,
            violation_message=rule.violation_message,
            description=rule.description,
            enabled=rule.enabled,
            scope_by_method=rule.scope_by_method,
        )


class RuleListResponse(BaseModel):
    """Response schema for listing rules. The default rule is always first."""

    rules: List[RuleResponse]
    count: int


class AccessEntryRequest(BaseModel):
    """Request schema for adding an allow or deny entry."""

    pattern: str = Field(
        ...,
        description="Identity tag, glob or CIDR, e.g. 'user:42', 'ip:10.0.*', 'ip:10.0.0.0/8'",
        min_length=3,
        max_length=255,
    )
    expires_at: Optional[datetime] = Field(None, description="Entry is ignored after this time")
    reason: Optional[str] = Field(None, max_length=500)


class AccessEntryResponse(BaseModel):
    pattern: str
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: AccessListEntry) -> "AccessEntryResponse":
        return cls(
            pattern=entry.pattern,
            expires_at=entry.expires_at,
            reason=entry.reason,
            created_at=entry.created_at,
        )


class AccessEntryListResponse(BaseModel):
    entries: List[AccessEntryResponse]
    count: int


class PurgeResponse(BaseModel):
    purged: int = Field(..., description="Expired entries removed from both lists")


class RateLimitInfoResponse(BaseModel):
    """Current quota state for a rule and identity."""

    rule: str
    identity: str
    limit: int
    remaining: int
    reset: int = Field(..., description="Unix timestamp at which the window resets")
    window: int = Field(..., description="Window length in seconds")

    @classmethod
    def from_info(cls, rule: str, identity: str, info: RateLimitInfo) -> "RateLimitInfoResponse":
        return cls(rule=rule, identity=identity, **info.to_dict())


class ClearRequest(BaseModel):
    rule: str = Field(..., min_length=1)
    identity: str = Field(..., description="Identity tag, e.g. 'ip:1.2.3.4'", min_length=3)
    method: Optional[str] = Field(
        None, description="HTTP method; omit to clear every method of a method-scoped rule"
    )


class ClearResponse(BaseModel):
    cleared: int


class StatsResponse(BaseModel):
    totals: Dict[str, int]
    rules: Dict[str, Dict[str, int]]
    uptime: float
    timestamp: datetime
