"""Provider catalog, detection status and routing selection models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from little_helper.models.credentials import Credential, CredentialSource


class ProviderKind(str, Enum):
    """Ranking class of a backend; lower rank sorts first."""

    SSO = "sso"  # reuses a single-sign-on credential with an elevated-rate tier
    STATIC_KEY = "static_key"  # statically configured secret for the same vendor
    LOCAL = "local"  # no external account
    OPTIONAL_CLOUD = "optional_cloud"

    @property
    def rank(self) -> int:
        return _KIND_RANK[self]


_KIND_RANK = {
    ProviderKind.SSO: 0,
    ProviderKind.STATIC_KEY: 1,
    ProviderKind.LOCAL: 2,
    ProviderKind.OPTIONAL_CLOUD: 3,
}


class Readiness(str, Enum):
    """Tri-state readiness of a backend."""

    READY = "ready"
    NEEDS_SETUP = "needs_setup"
    UNAVAILABLE = "unavailable"


class AbsenceReason(str, Enum):
    """Why a backend has no usable credential."""

    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    NOT_INSTALLED = "not_installed"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one backend kind. Never mutated."""

    provider_id: str
    label: str
    kind: ProviderKind
    icon: str
    badge: str
    adapter: str
    default_model: str
    credential_source: CredentialSource | None = None
    local_probe: Callable[[], bool] | None = field(default=None, compare=False, repr=False)
    order: int = 0  # tie-break within a kind

    @property
    def requires_account(self) -> bool:
        return self.kind is not ProviderKind.LOCAL

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.kind.rank, self.order)


@dataclass(frozen=True)
class ProviderStatus:
    """Result of one detection pass for one backend. Superseded, never mutated."""

    descriptor: ProviderDescriptor
    readiness: Readiness
    credential: Credential | None = None
    reason: AbsenceReason | None = None
    detail: str | None = None
    detected_at: datetime | None = None

    @property
    def provider_id(self) -> str:
        return self.descriptor.provider_id

    @property
    def is_ready(self) -> bool:
        return self.readiness is Readiness.READY


@dataclass(frozen=True)
class RoutingSelection:
    """The provider, credential and model currently bound to outgoing requests."""

    provider_id: str
    label: str
    adapter: str
    model_id: str
    credential: Credential | None
    selected_at: datetime
    auto: bool = False


class ProviderStatusResponse(BaseModel):
    """One backend's detection status as shown to the UI."""

    provider_id: str = Field(..., description="Backend identifier")
    label: str = Field(..., description="Human label")
    icon: str = Field(..., description="Icon name for the UI")
    badge: str = Field(..., description="Short badge text for the UI")
    kind: ProviderKind = Field(..., description="Ranking class")
    readiness: Readiness = Field(..., description="ready, needs_setup or unavailable")
    reason: AbsenceReason | None = Field(None, description="Why the backend is not ready")
    detail: str | None = Field(None, description="Human-readable status detail")
    tier: str | None = Field(None, description="Opaque tier label from the credential")
    credential_source: str | None = Field(None, description="Where the credential was read from")
    credential_hint: str | None = Field(None, description="Masked credential")
    expires_at: datetime | None = Field(None, description="Credential expiry, when known")
    default_model: str = Field(..., description="Model used when none is chosen")

    @classmethod
    def from_status(cls, status: ProviderStatus) -> ProviderStatusResponse:
        descriptor = status.descriptor
        credential = status.credential
        return cls(
            provider_id=descriptor.provider_id,
            label=descriptor.label,
            icon=descriptor.icon,
            badge=descriptor.badge,
            kind=descriptor.kind,
            readiness=status.readiness,
            reason=status.reason,
            detail=status.detail,
            tier=credential.tier if credential else None,
            credential_source=credential.source if credential else None,
            credential_hint=credential.masked() if credential else None,
            expires_at=credential.expires_at if credential else None,
            default_model=descriptor.default_model,
        )


class ProviderListResponse(BaseModel):
    """Ranked detection results."""

    providers: list[ProviderStatusResponse] = Field(default_factory=list)
    ready_count: int = Field(0, description="Number of backends ready to use")


class SelectProviderRequest(BaseModel):
    """Request to bind a provider and model to outgoing chat requests."""

    provider_id: str = Field(..., min_length=1)
    model_id: str | None = Field(None, description="Model identifier; provider default when omitted")


class RoutingSelectionResponse(BaseModel):
    """The current routing selection (never includes the secret)."""

    provider_id: str
    label: str
    model_id: str
    selected_at: datetime
    auto: bool = False
    tier: str | None = None
    credential_hint: str | None = None

    @classmethod
    def from_selection(cls, selection: RoutingSelection) -> RoutingSelectionResponse:
        credential = selection.credential
        return cls(
            provider_id=selection.provider_id,
            label=selection.label,
            model_id=selection.model_id,
            selected_at=selection.selected_at,
            auto=selection.auto,
            tier=credential.tier if credential else None,
            credential_hint=credential.masked() if credential else None,
        )
