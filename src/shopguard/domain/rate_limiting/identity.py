"""
Client identity resolution.

Derives the counter partition key for a request with priority
authenticated user > API key header > remote address.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

from .value_objects import CallerTier, ClientIdentity

UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """Framework-neutral view of the request metadata the gate needs.

    ``user_id`` and ``tier`` are supplied by the external auth layer and are
    trusted as-is. Header names are matched case-insensitively.
    """

    method: str = "GET"
    path: str = "/"
    client_host: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    user_id: Optional[str] = None
    tier: CallerTier = CallerTier.GUEST

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class ClientIdentityResolver:
    """Pure function of request metadata; never returns an empty identity."""

    def __init__(self, api_key_header: str = "X-API-Key"):
        self.api_key_header = api_key_header

    def resolve(self, request: RequestContext) -> ClientIdentity:
        if request.user_id not in (None, ""):
            return ClientIdentity.for_user(request.user_id)

        api_key = (request.header(self.api_key_header) or "").strip()
        if api_key:
            return ClientIdentity.for_api_key(api_key)

        return ClientIdentity.for_ip(request.client_host or UNKNOWN_ADDRESS)
