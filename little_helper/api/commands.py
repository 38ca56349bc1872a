"""Command request endpoints: submit, poll, confirm, elevate."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from little_helper.dependencies import get_pipeline, get_services, verify_token
from little_helper.exceptions import ConfirmationStateError
from little_helper.models.command import (
    CommandStatusResponse,
    DecisionRequest,
    ElevationSecretRequest,
    PendingCommandsResponse,
    SubmitCommandRequest,
    SubmitCommandResponse,
)
from little_helper.services.privilege_escalation import ElevationSecret
from little_helper.utils.error_handling import format_exception_for_response, status_code_for

if TYPE_CHECKING:
    from little_helper.services.command_pipeline import CommandPipeline
    from little_helper.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_token)])

RequestId = Annotated[str, Path(description="Command request identifier")]


def _not_found(request_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Command request '{request_id}' not found",
    )


def _conflict(e: ConfirmationStateError) -> HTTPException:
    return HTTPException(status_code=status_code_for(e), detail=format_exception_for_response(e))


@router.post(
    "/conversations/{conversation_id}/commands",
    response_model=SubmitCommandResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_command(
    conversation_id: Annotated[str, Path(min_length=1)],
    request: SubmitCommandRequest,
    services: ServiceContainer = Depends(get_services),
) -> SubmitCommandResponse:
    """
    Propose a command for a conversation and return a request id for polling.

    Requests in one conversation are processed one at a time in order.
    """
    outcome = services.pipeline.submit(
        conversation_id,
        request.command,
        working_directory=request.working_directory or services.default_working_directory,
        rationale=request.rationale,
    )
    request_id = outcome.request.request_id
    return SubmitCommandResponse(
        request_id=request_id,
        danger_level=outcome.classification.level,
        state=outcome.state,
        prompt=outcome.prompt,
        poll_url=f"/api/v1/commands/{request_id}",
    )


@router.get("/commands/pending", response_model=PendingCommandsResponse)
async def list_pending(
    pipeline: CommandPipeline = Depends(get_pipeline),
) -> PendingCommandsResponse:
    """Requests waiting for a confirmation answer or an administrator password."""
    return PendingCommandsResponse(
        requests=[CommandStatusResponse.from_outcome(o) for o in pipeline.pending()]
    )


@router.get("/commands/{request_id}", response_model=CommandStatusResponse)
async def get_command(
    request_id: RequestId,
    pipeline: CommandPipeline = Depends(get_pipeline),
) -> CommandStatusResponse:
    """Lifecycle state, decision and (once finished) output of a request."""
    outcome = pipeline.get(request_id)
    if outcome is None:
        raise _not_found(request_id)
    return CommandStatusResponse.from_outcome(outcome)


@router.post("/commands/{request_id}/decision", response_model=CommandStatusResponse)
async def decide_command(
    request_id: RequestId,
    request: DecisionRequest,
    pipeline: CommandPipeline = Depends(get_pipeline),
) -> CommandStatusResponse:
    """
    Answer a confirmation prompt: approved, denied or cancelled.

    Only the first answer counts; later answers get 409.
    """
    outcome = pipeline.get(request_id)
    if outcome is None:
        raise _not_found(request_id)
    try:
        pipeline.decide(request_id, request.decision)
    except ConfirmationStateError as e:
        raise _conflict(e) from e
    return CommandStatusResponse.from_outcome(outcome)


@router.post("/commands/{request_id}/elevation", response_model=CommandStatusResponse)
async def provide_elevation(
    request_id: RequestId,
    request: ElevationSecretRequest,
    pipeline: CommandPipeline = Depends(get_pipeline),
) -> CommandStatusResponse:
    """Supply the administrator password for one privileged run. Never stored."""
    outcome = pipeline.get(request_id)
    if outcome is None:
        raise _not_found(request_id)
    secret = ElevationSecret(request.secret.get_secret_value())
    try:
        pipeline.provide_secret(request_id, secret)
    except ConfirmationStateError as e:
        raise _conflict(e) from e
    return CommandStatusResponse.from_outcome(outcome)


@router.delete("/commands/{request_id}/elevation", response_model=CommandStatusResponse)
async def cancel_elevation(
    request_id: RequestId,
    pipeline: CommandPipeline = Depends(get_pipeline),
) -> CommandStatusResponse:
    """Decline the password prompt; the command does not run."""
    outcome = pipeline.get(request_id)
    if outcome is None:
        raise _not_found(request_id)
    try:
        pipeline.cancel(request_id)
    except ConfirmationStateError as e:
        raise _conflict(e) from e
    return CommandStatusResponse.from_outcome(outcome)
