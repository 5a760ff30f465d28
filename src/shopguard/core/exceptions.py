"""Centralized, structured exception hierarchy for shopguard.

Every error carries a machine-readable ``code`` for programmatic handling and
a human-readable ``message`` for logs and API responses. The API layer maps
each family onto an HTTP status in :mod:`shopguard.core.handlers`.

Only quota rejections and deny-list hits reach end users. Counter store
failures are recovered by the admission engine (fail open) and surface only
to administrative callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Optional

if TYPE_CHECKING:
    from shopguard.domain.rate_limiting.value_objects import RateLimitInfo

__all__: Final = [
    "ShopguardError",
    "ValidationError",
    "InvalidRuleError",
    "UnknownRuleError",
    "StoreUnavailableError",
    "RateLimitError",
    "QuotaExceededError",
    "ClientBlockedError",
    "PermissionError",
]


class ShopguardError(Exception):
    """Base exception class for all custom errors in shopguard.

    Attributes:
        message (str): A human-readable error message, suitable for logging.
        code (str): A unique, machine-readable error code.
    """

    message: str
    code: str = "generic_error"

    def __init__(self, message: str, code: str = "generic_error"):
        self.message = message
        self.code = code
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Validation errors (typically map to 400/422)
# ---------------------------------------------------------------------------


class ValidationError(ShopguardError):
    """Raised for general data validation failures."""

    def __init__(self, message: str, code: str = "validation_error"):
        super().__init__(message, code)


class InvalidRuleError(ValidationError):
    """Raised when a rate-limit rule has a non-positive quota or window, or a
    key prefix that is reserved or already owned by another rule.

    Registration is all-or-nothing: the registry is left untouched when this
    is raised. Maps to ``422 Unprocessable Entity`` on the admin API.
    """

    def __init__(self, message: str, code: str = "invalid_rule"):
        super().__init__(message, code)


# ---------------------------------------------------------------------------
# Administrative lookup errors
# ---------------------------------------------------------------------------


class UnknownRuleError(ShopguardError):
    """Raised when an administrative operation names a rule that does not exist.

    Maps to ``404 Not Found``.
    """

    def __init__(self, name: str, code: str = "unknown_rule"):
        self.rule_name = name
        super().__init__(f"Rate limit rule '{name}' does not exist", code)


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------


class StoreUnavailableError(ShopguardError):
    """Raised by counter stores on connection, timeout or protocol failures.

    The admission engine recovers from this by admitting the request. It maps
    to ``503 Service Unavailable`` only on the administrative paths.
    """

    def __init__(self, message: str = "Counter store unavailable", code: str = "store_unavailable"):
        super().__init__(message, code)


# ---------------------------------------------------------------------------
# Admission errors (surfaced to API callers)
# ---------------------------------------------------------------------------


class RateLimitError(ShopguardError):
    """Base class for admission rejections. Maps to ``429 Too Many Requests``."""

    def __init__(self, message: str = "Rate limit exceeded", code: str = "rate_limit_exceeded"):
        super().__init__(message, code)


class QuotaExceededError(RateLimitError):
    """Raised when a caller has used up the quota of one of its rules.

    Attributes:
        info: Rate metadata computed by the check that rejected the request.
        rule_name: Name of the rule that rejected the request.
        violation_message: The rule's custom message, if it has one.
    """

    def __init__(
        self,
        info: "RateLimitInfo",
        rule_name: str,
        violation_message: Optional[str] = None,
        code: str = "rate_limit_exceeded",
    ):
        self.info = info
        self.rule_name = rule_name
        self.violation_message = violation_message
        super().__init__(
            f"Too many requests. Limit: {info.limit} requests per {info.window_seconds}s",
            code,
        )


class ClientBlockedError(RateLimitError):
    """Raised when the caller matches an active deny-list entry.

    No quota is consumed. Maps to ``403 Forbidden``.
    """

    def __init__(self, identity: str, reason: Optional[str] = None, code: str = "client_blocked"):
        self.identity = identity
        self.reason = reason
        super().__init__("Access denied for this client", code)


class PermissionError(ShopguardError):
    """Raised when a caller lacks the tier required for an operation.

    Maps to ``403 Forbidden``.
    """

    def __init__(self, message: str = "Administrator access required", code: str = "permission_denied"):
        super().__init__(message, code)
