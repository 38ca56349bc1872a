"""Provider detection endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from little_helper.dependencies import get_detector, verify_token
from little_helper.models.provider import ProviderListResponse, ProviderStatusResponse

if TYPE_CHECKING:
    from little_helper.services.provider_detector import ProviderDetector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/providers", dependencies=[Depends(verify_token)])


async def _detect(detector: ProviderDetector) -> ProviderListResponse:
    statuses = await detector.detect_async()
    providers = [ProviderStatusResponse.from_status(s) for s in statuses]
    return ProviderListResponse(
        providers=providers,
        ready_count=sum(1 for s in statuses if s.is_ready),
    )


@router.get("", response_model=ProviderListResponse)
async def list_providers(
    detector: ProviderDetector = Depends(get_detector),
) -> ProviderListResponse:
    """
    Detect every known backend and return them ranked.

    Ready backends come first, in catalog rank order. Secrets are never
    included; only a masked hint and where the credential was found.
    """
    return await _detect(detector)


@router.post("/refresh", response_model=ProviderListResponse)
async def refresh_providers(
    detector: ProviderDetector = Depends(get_detector),
) -> ProviderListResponse:
    """Re-run detection after the user finished setting up a backend."""
    response = await _detect(detector)
    logger.info("Providers re-detected", extra={"ready_count": response.ready_count})
    return response
