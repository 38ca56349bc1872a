"""Provider detection: which backends are usable right now, and why not."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from little_helper.exceptions import CredentialMalformed, CredentialNotFound
from little_helper.models.provider import (
    AbsenceReason,
    ProviderDescriptor,
    ProviderStatus,
    Readiness,
)
from little_helper.services.credential_store import CredentialStore
from little_helper.services.provider_catalog import ProviderCatalog
from little_helper.services.token_lifecycle import is_valid

logger = logging.getLogger(__name__)


class ProviderDetector:
    """
    Stateless scan of the catalog against the credential store.

    Every call re-reads the store, so a token rotated on disk by the
    external sign-in tool is picked up on the next detection pass.
    """

    def __init__(self, catalog: ProviderCatalog, store: CredentialStore):
        self.catalog = catalog
        self.store = store

    def detect(self, now: datetime | None = None) -> list[ProviderStatus]:
        """
        Statuses for every catalog entry in fixed priority order.

        The order never depends on readiness; callers filter on `is_ready`.
        """
        now = now or datetime.now(UTC)
        statuses = [self._detect_descriptor(d, now) for d in self.catalog]
        statuses.sort(key=lambda s: s.descriptor.sort_key)

        logger.info(
            "Provider detection complete",
            extra={
                "ready": [s.provider_id for s in statuses if s.is_ready],
                "total": len(statuses),
            },
        )
        return statuses

    async def detect_async(self, now: datetime | None = None) -> list[ProviderStatus]:
        """detect() on a worker thread; file reads never block the event loop."""
        return await asyncio.to_thread(self.detect, now)

    def detect_one(self, provider_id: str, now: datetime | None = None) -> ProviderStatus | None:
        """Fresh status for a single backend, or None if it is not in the catalog."""
        descriptor = self.catalog.get(provider_id)
        if descriptor is None:
            return None
        return self._detect_descriptor(descriptor, now or datetime.now(UTC))

    def _detect_descriptor(self, descriptor: ProviderDescriptor, now: datetime) -> ProviderStatus:
        if descriptor.local_probe is not None:
            if descriptor.local_probe():
                return ProviderStatus(
                    descriptor=descriptor,
                    readiness=Readiness.READY,
                    detail="Local runtime found",
                    detected_at=now,
                )
            return ProviderStatus(
                descriptor=descriptor,
                readiness=Readiness.UNAVAILABLE,
                reason=AbsenceReason.NOT_INSTALLED,
                detail="Local runtime is not installed",
                detected_at=now,
            )

        if descriptor.credential_source is None:
            return ProviderStatus(
                descriptor=descriptor,
                readiness=Readiness.UNAVAILABLE,
                reason=AbsenceReason.NOT_FOUND,
                detail="No credential source configured",
                detected_at=now,
            )

        try:
            credential = self.store.load(descriptor.provider_id, descriptor.credential_source)
        except CredentialNotFound:
            return ProviderStatus(
                descriptor=descriptor,
                readiness=Readiness.UNAVAILABLE,
                reason=AbsenceReason.NOT_FOUND,
                detail="Not configured",
                detected_at=now,
            )
        except CredentialMalformed as e:
            logger.warning(
                "Credential is malformed",
                extra={"provider_id": descriptor.provider_id, **e.context},
            )
            return ProviderStatus(
                descriptor=descriptor,
                readiness=Readiness.NEEDS_SETUP,
                reason=AbsenceReason.MALFORMED,
                detail=str(e),
                detected_at=now,
            )

        if not is_valid(credential, now):
            return ProviderStatus(
                descriptor=descriptor,
                readiness=Readiness.NEEDS_SETUP,
                credential=credential,
                reason=AbsenceReason.EXPIRED,
                detail="Sign-in has expired; sign in again",
                detected_at=now,
            )

        return ProviderStatus(
            descriptor=descriptor,
            readiness=Readiness.READY,
            credential=credential,
            detail=f"Using {credential.source}",
            detected_at=now,
        )
