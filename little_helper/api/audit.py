"""Audit log reporting endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Query

from little_helper.dependencies import get_audit_logger, verify_token
from little_helper.models.command import AuditLogResponse

if TYPE_CHECKING:
    from little_helper.services.audit_log import AuditLogger

router = APIRouter(prefix="/api/v1/audit", dependencies=[Depends(verify_token)])


@router.get("", response_model=AuditLogResponse)
async def read_audit_log(
    after: Annotated[int, Query(ge=0, description="Return entries after this sequence")] = 0,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    audit: AuditLogger = Depends(get_audit_logger),
) -> AuditLogResponse:
    """Page through recorded command decisions, oldest first."""
    entries = audit.read(after_sequence=after, limit=limit)
    next_sequence = entries[-1].sequence if entries else after
    return AuditLogResponse(entries=entries, next_sequence=next_sequence)
