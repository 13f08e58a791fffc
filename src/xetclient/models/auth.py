"""
Access credential models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Direction(str, Enum):
    """Operation a CAS credential is scoped to."""

    UPLOAD = "upload"
    DOWNLOAD = "download"

    @property
    def token_route(self) -> str:
        """Hub route segment issuing credentials for this direction."""
        return "xet-write-token" if self is Direction.UPLOAD else "xet-read-token"


class CredentialScope(BaseModel):
    """What a credential may be used for."""

    model_config = ConfigDict(frozen=True)

    repo: str
    revision: str
    direction: Direction


class AccessCredential(BaseModel):
    """
    Short-lived, scope-limited CAS access token.

    Immutable once issued. Use past ``expiry`` or outside ``scope`` is
    rejected; the caller must request a fresh credential.
    """

    model_config = ConfigDict(frozen=True)

    token: str = Field(min_length=1, repr=False)
    scope: CredentialScope
    expiry: datetime
    endpoint: str

    @field_validator("expiry")
    @classmethod
    def _aware_expiry(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("endpoint")
    @classmethod
    def _strip_endpoint(cls, value: str) -> str:
        return value.rstrip("/")

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry

    def seconds_remaining(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.expiry - now).total_seconds())

    def allows(self, direction: Direction, now: datetime | None = None) -> bool:
        return self.scope.direction is direction and not self.is_expired(now)


__all__ = ["Direction", "CredentialScope", "AccessCredential"]
