"""
Credential validity checks.

Tokens minted by the external sign-in tool are reused as-is. Refreshing
means re-reading the store in case that tool has rotated the token since we
last looked; there is no owned refresh exchange, so a still-expired token is
terminal until the user signs in again.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from little_helper.exceptions import CredentialError, RefreshFailed
from little_helper.models.credentials import Credential, CredentialSource
from little_helper.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

SAFETY_MARGIN = timedelta(minutes=5)


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(UTC)


def is_valid(credential: Credential, now: datetime | None = None) -> bool:
    """True unless the credential expires within the safety margin.

    Credentials without a knowable expiry (environment variables, key
    files) are valid until a backend rejects them.
    """
    if credential.expires_at is None:
        return True
    return _now(now) + SAFETY_MARGIN < credential.expires_at


def expires_in(credential: Credential, now: datetime | None = None) -> timedelta | None:
    """Time left before expiry, or None when the expiry is unknown."""
    if credential.expires_at is None:
        return None
    return credential.expires_at - _now(now)


class TokenLifecycle:
    """Validity checks plus the re-read refresh path for one credential store."""

    def __init__(self, store: CredentialStore):
        self._store = store

    def is_valid(self, credential: Credential, now: datetime | None = None) -> bool:
        return is_valid(credential, now)

    def expires_in(self, credential: Credential, now: datetime | None = None) -> timedelta | None:
        return expires_in(credential, now)

    def refresh(
        self,
        credential: Credential,
        source: CredentialSource,
        now: datetime | None = None,
    ) -> Credential:
        """
        Re-read the store and return a usable credential for the same backend.

        Raises:
            RefreshFailed: The store has nothing usable for this backend
        """
        provider_id = credential.provider_id
        try:
            fresh = self._store.load(provider_id, source)
        except CredentialError as e:
            raise RefreshFailed(
                "Credential could not be re-read; sign in again",
                provider_id=provider_id,
                context={"cause": type(e).__name__},
            ) from e

        if not is_valid(fresh, now):
            logger.warning(
                "Credential still expired after re-read",
                extra={
                    "provider_id": provider_id,
                    "expires_at": fresh.expires_at.isoformat() if fresh.expires_at else None,
                },
            )
            raise RefreshFailed(
                "Credential has expired; sign in again",
                provider_id=provider_id,
                context={"source": fresh.source},
            )

        if fresh.access_secret != credential.access_secret:
            logger.info("Credential rotated on disk", extra={"provider_id": provider_id})
        return fresh
