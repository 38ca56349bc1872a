"""
Ownership of the current routing selection.

The selection is a frozen value replaced by a single reference swap. Chat
requests capture it once at the start and keep that value to completion,
so switching providers never re-attributes a request already in flight.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from little_helper.exceptions import RefreshFailed, RoutingConflict, RoutingFailure
from little_helper.models.provider import (
    AbsenceReason,
    ProviderStatus,
    RoutingSelection,
)
from little_helper.services.provider_detector import ProviderDetector
from little_helper.services.token_lifecycle import TokenLifecycle

logger = logging.getLogger(__name__)


class ProviderRouter:
    """Validates and swaps the routing selection; never falls back silently."""

    def __init__(self, detector: ProviderDetector, lifecycle: TokenLifecycle | None = None):
        self._detector = detector
        self.lifecycle = lifecycle or TokenLifecycle(detector.store)
        self._selection: RoutingSelection | None = None
        self._lock = asyncio.Lock()

    @property
    def selection(self) -> RoutingSelection | None:
        return self._selection

    def current(self) -> RoutingSelection:
        """
        The live selection.

        Raises:
            RoutingConflict: Nothing has been selected yet
        """
        selection = self._selection
        if selection is None:
            raise RoutingConflict(
                "No provider selected; choose one in settings",
                reason=RoutingFailure.NOT_READY,
            )
        return selection

    async def select(self, provider_id: str, model_id: str | None = None) -> RoutingSelection:
        """
        Bind a provider and model to outgoing requests.

        Detection is re-run for that provider at call time. On failure the
        previous selection is left untouched.

        Raises:
            RoutingConflict: Unknown provider, not ready, or expired credential
        """
        status = await asyncio.to_thread(self._detector.detect_one, provider_id)
        if status is None:
            raise RoutingConflict(
                f"Unknown provider: {provider_id}",
                reason=RoutingFailure.UNKNOWN_PROVIDER,
                context={"provider_id": provider_id},
            )
        selection = self._build_selection(status, model_id, auto=False)

        async with self._lock:
            previous = self._selection
            self._selection = selection

        logger.info(
            "Routing selection changed",
            extra={
                "provider_id": selection.provider_id,
                "model_id": selection.model_id,
                "previous_provider_id": previous.provider_id if previous else None,
            },
        )
        return selection

    async def auto_select(self, statuses: Sequence[ProviderStatus]) -> RoutingSelection | None:
        """
        Bind the highest-ranked Ready backend when nothing is selected yet.

        Only used at startup; an existing selection is never replaced.
        """
        async with self._lock:
            if self._selection is not None:
                return self._selection

            ready = sorted(
                (s for s in statuses if s.is_ready),
                key=lambda s: s.descriptor.sort_key,
            )
            if not ready:
                logger.warning("No provider is ready; waiting for user setup")
                return None

            selection = self._build_selection(ready[0], None, auto=True)
            self._selection = selection

        logger.info(
            "Provider auto-selected",
            extra={"provider_id": selection.provider_id, "model_id": selection.model_id},
        )
        return selection

    async def ensure_valid(self, selection: RoutingSelection) -> RoutingSelection:
        """
        Return `selection` with a credential that is safe to send.

        An expired credential is re-read from the store. A fresh one replaces
        the credential in the live selection when that selection is still the
        same provider and model; the caller keeps its own provider either way.

        Raises:
            RoutingConflict: The credential expired and re-reading found
                nothing usable (reason credential_expired)
        """
        credential = selection.credential
        if credential is None or self.lifecycle.is_valid(credential):
            return selection

        descriptor = self._detector.catalog.get(selection.provider_id)
        source = descriptor.credential_source if descriptor else None
        if source is None:
            raise RoutingConflict(
                f"{selection.label}: sign-in has expired",
                reason=RoutingFailure.CREDENTIAL_EXPIRED,
                context={"provider_id": selection.provider_id},
            )
        try:
            fresh = await asyncio.to_thread(self.lifecycle.refresh, credential, source)
        except RefreshFailed as e:
            logger.warning(
                "Selected credential expired and could not be refreshed",
                extra={"provider_id": selection.provider_id, "error_type": type(e.__cause__ or e).__name__},
            )
            raise RoutingConflict(
                f"{selection.label}: sign-in has expired",
                reason=RoutingFailure.CREDENTIAL_EXPIRED,
                context={"provider_id": selection.provider_id},
            ) from e

        refreshed = dataclasses.replace(selection, credential=fresh)
        async with self._lock:
            live = self._selection
            if (
                live is not None
                and live.provider_id == selection.provider_id
                and live.model_id == selection.model_id
            ):
                self._selection = dataclasses.replace(live, credential=fresh)
        logger.info("Selected credential refreshed", extra={"provider_id": selection.provider_id})
        return refreshed

    @staticmethod
    def _build_selection(
        status: ProviderStatus,
        model_id: str | None,
        auto: bool,
    ) -> RoutingSelection:
        descriptor = status.descriptor
        if not status.is_ready:
            if status.reason is AbsenceReason.EXPIRED:
                raise RoutingConflict(
                    f"{descriptor.label}: sign-in has expired",
                    reason=RoutingFailure.CREDENTIAL_EXPIRED,
                    context={"provider_id": descriptor.provider_id},
                )
            raise RoutingConflict(
                f"{descriptor.label} is not ready",
                reason=RoutingFailure.NOT_READY,
                context={
                    "provider_id": descriptor.provider_id,
                    "readiness": status.readiness.value,
                    "absence_reason": status.reason.value if status.reason else None,
                },
            )

        return RoutingSelection(
            provider_id=descriptor.provider_id,
            label=descriptor.label,
            adapter=descriptor.adapter,
            model_id=model_id or descriptor.default_model,
            credential=status.credential,
            selected_at=datetime.now(UTC),
            auto=auto,
        )
