"""
Rate limiting settings.

Limits are expressed as ``count/period`` strings (``"100/hour"``) with period
one of second, minute, hour or day.
"""
import logging
from typing import Dict, List, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shopguard.core.exceptions import InvalidRuleError
from shopguard.domain.rate_limiting.value_objects import parse_rate_string

logger = logging.getLogger(__name__)


class RateLimitSettings(BaseSettings):
    """
    Defines admission-control settings.

    Security Note:
        - RATE_LIMIT_ENABLED=false turns every gate into a pass-through. Only use
          it for local development or an incident where limiting itself misbehaves.
        - RATE_LIMIT_STORAGE=memory keeps counters per process, so each worker
          enforces its own limit. Use redis whenever more than one worker runs.
    """
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE: str = Field(default="redis", pattern="^(redis|memory)$")
    RATE_LIMIT_KEY_PREFIX: str = Field(default="rate_limit", min_length=1)
    RATE_LIMIT_DEFAULT: str = "100/hour"

    # Tiered limits by caller class
    RATE_LIMIT_TIER_GUEST: str = "10/hour"
    RATE_LIMIT_TIER_USER: str = "100/hour"
    RATE_LIMIT_TIER_PREMIUM: str = "1000/hour"
    RATE_LIMIT_TIER_ADMIN: str = "10000/hour"

    RATE_LIMIT_API_KEY_HEADER: str = "X-API-Key"

    # Comma-separated identity patterns seeded into the allow/deny lists at startup,
    # e.g. "ip:10.0.0.0/8,user:ops-bot"
    RATE_LIMIT_ALLOW_IDENTITIES: Union[str, List[str]] = Field(default="", validate_default=True)
    RATE_LIMIT_DENY_IDENTITIES: Union[str, List[str]] = Field(default="", validate_default=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator(
        "RATE_LIMIT_DEFAULT",
        "RATE_LIMIT_TIER_GUEST",
        "RATE_LIMIT_TIER_USER",
        "RATE_LIMIT_TIER_PREMIUM",
        "RATE_LIMIT_TIER_ADMIN",
    )
    @classmethod
    def validate_rate_limit_format(cls, value: str) -> str:
        """
        Validates the format of rate limit strings (e.g., '100/minute').

        Raises:
            ValueError: If format is invalid.
        """
        try:
            requests, _ = parse_rate_string(value)
        except InvalidRuleError as e:
            logger.error(f"Invalid rate limit format: {value}. Error: {e}")
            raise ValueError(str(e)) from e
        if requests <= 0:
            raise ValueError(f"Invalid rate limit {value!r}: count must be a positive integer.")
        return value

    @field_validator("RATE_LIMIT_ALLOW_IDENTITIES", "RATE_LIMIT_DENY_IDENTITIES", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Union[str, List[str], None]) -> List[str]:
        """Parse comma-separated strings into a list of patterns."""
        if v is None:
            return []
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return [str(item).strip() for item in v if str(item).strip()]

    def tier_rates(self) -> Dict[str, str]:
        return {
            "guest": self.RATE_LIMIT_TIER_GUEST,
            "user": self.RATE_LIMIT_TIER_USER,
            "premium": self.RATE_LIMIT_TIER_PREMIUM,
            "admin": self.RATE_LIMIT_TIER_ADMIN,
        }
