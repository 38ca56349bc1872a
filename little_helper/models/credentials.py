"""Credential records and the typed schema used to parse them from disk."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, field_validator

CREDENTIAL_SCHEMA_VERSION = 1


class CredentialOrigin(str, Enum):
    """Which kind of source produced a credential."""

    RECORD = "record"
    ENVIRONMENT = "environment"
    FALLBACK_FILE = "fallback_file"


def mask_secret(secret: str) -> str:
    """Return a display-safe form of a secret (last four characters only)."""
    if len(secret) <= 8:
        return "****"
    return f"****{secret[-4:]}"


@dataclass(frozen=True)
class Credential:
    """
    A bearer secret for one backend.

    Secrets are excluded from repr so a stray log call or traceback never
    prints them.
    """

    provider_id: str
    access_secret: str = field(repr=False)
    origin: CredentialOrigin
    source: str  # file path or environment variable name
    refresh_secret: str | None = field(default=None, repr=False)
    expires_at: datetime | None = None
    tier: str | None = None

    @property
    def has_known_expiry(self) -> bool:
        return self.expires_at is not None

    def masked(self) -> str:
        return mask_secret(self.access_secret)


class CredentialRecord(BaseModel):
    """
    Versioned schema for one structured credential record.

    Accepts both this application's field names and the camelCase names the
    external sign-in tool writes. Unknown fields are ignored, missing or
    mistyped required fields fail validation.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    schema_version: int = CREDENTIAL_SCHEMA_VERSION
    access_secret: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("access_secret", "accessToken"),
    )
    refresh_secret: str | None = Field(
        None,
        validation_alias=AliasChoices("refresh_secret", "refreshToken"),
    )
    expires_at: StrictInt | None = Field(
        None,
        description="Expiry instant in epoch milliseconds",
        validation_alias=AliasChoices("expires_at", "expiresAt"),
    )
    tier: str | None = Field(
        None,
        validation_alias=AliasChoices("tier", "subscriptionType"),
    )
    rate_limit_tier: str | None = Field(
        None,
        validation_alias=AliasChoices("rate_limit_tier", "rateLimitTier"),
    )

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: int) -> int:
        if v != CREDENTIAL_SCHEMA_VERSION:
            msg = f"Unsupported credential schema version {v}"
            raise ValueError(msg)
        return v

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            msg = "expires_at must be a positive epoch-milliseconds value"
            raise ValueError(msg)
        return v

    def to_credential(self, provider_id: str, source: str) -> Credential:
        expires_at = None
        if self.expires_at is not None:
            expires_at = datetime.fromtimestamp(self.expires_at / 1000, tz=UTC)
        return Credential(
            provider_id=provider_id,
            access_secret=self.access_secret,
            origin=CredentialOrigin.RECORD,
            source=source,
            refresh_secret=self.refresh_secret,
            expires_at=expires_at,
            tier=self.tier or self.rate_limit_tier,
        )


@dataclass(frozen=True)
class CredentialSource:
    """Where to look for one backend's credential, in lookup order."""

    record_path: Path | None = None
    record_key: str | None = None
    env_var: str | None = None
    fallback_path: Path | None = None

    def describe(self) -> list[str]:
        """Human-readable list of the sources, for status messages."""
        sources = []
        if self.record_path is not None:
            sources.append(f"file:{self.record_path}#{self.record_key}")
        if self.env_var:
            sources.append(f"env:{self.env_var}")
        if self.fallback_path is not None:
            sources.append(f"file:{self.fallback_path}")
        return sources
