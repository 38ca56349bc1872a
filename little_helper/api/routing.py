"""Routing selection endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException

from little_helper.dependencies import get_router, verify_token
from little_helper.exceptions import RoutingConflict
from little_helper.models.provider import RoutingSelectionResponse, SelectProviderRequest
from little_helper.utils.error_handling import format_exception_for_response, status_code_for

if TYPE_CHECKING:
    from little_helper.services.provider_router import ProviderRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/routing", dependencies=[Depends(verify_token)])


@router.get("", response_model=RoutingSelectionResponse)
async def get_routing(
    provider_router: ProviderRouter = Depends(get_router),
) -> RoutingSelectionResponse:
    """Current provider and model. 409 when nothing is selected yet."""
    try:
        selection = provider_router.current()
    except RoutingConflict as e:
        raise HTTPException(status_code=status_code_for(e), detail=format_exception_for_response(e)) from e
    return RoutingSelectionResponse.from_selection(selection)


@router.put("", response_model=RoutingSelectionResponse)
async def select_provider(
    request: SelectProviderRequest,
    provider_router: ProviderRouter = Depends(get_router),
) -> RoutingSelectionResponse:
    """
    Bind a provider and model to outgoing chat requests.

    The provider is re-detected now; a backend that is not Ready is refused
    with 409 and the previous selection stays in place. Requests already in
    flight keep the provider they started with.
    """
    try:
        selection = await provider_router.select(request.provider_id, request.model_id)
    except RoutingConflict as e:
        logger.warning(
            "Provider selection refused",
            extra={"provider_id": request.provider_id, "reason": e.reason.value},
        )
        raise HTTPException(status_code=status_code_for(e), detail=format_exception_for_response(e)) from e
    return RoutingSelectionResponse.from_selection(selection)
