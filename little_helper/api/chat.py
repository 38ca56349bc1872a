"""Chat endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException

from little_helper.dependencies import get_conversation_service, verify_token
from little_helper.exceptions import BackendError, RoutingConflict
from little_helper.models.chat import ChatRequest, ChatResponse
from little_helper.services.conversation import format_error_message
from little_helper.utils.error_handling import format_exception_for_response, status_code_for

if TYPE_CHECKING:
    from little_helper.services.conversation import ConversationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_token)])


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> ChatResponse:
    """
    Send the conversation to the selected backend.

    Commands proposed in the reply are classified and either run (Safe),
    or left waiting for the user; their ids are returned for polling.
    Backend failures surface as errors with a friendly `display_message`;
    no other backend is tried.
    """
    try:
        return await conversation_service.send(request.conversation_id, request.messages)
    except RoutingConflict as e:
        raise HTTPException(status_code=status_code_for(e), detail=format_exception_for_response(e)) from e
    except BackendError as e:
        detail = format_exception_for_response(e)
        detail["display_message"] = format_error_message(e)
        raise HTTPException(status_code=status_code_for(e), detail=detail) from e
