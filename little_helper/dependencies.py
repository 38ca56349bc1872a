from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from little_helper.config import settings
from little_helper.services.container import get_container

if TYPE_CHECKING:
    from little_helper.services.audit_log import AuditLogger
    from little_helper.services.command_pipeline import CommandPipeline
    from little_helper.services.container import ServiceContainer
    from little_helper.services.conversation import ConversationService
    from little_helper.services.health import HealthCheckService
    from little_helper.services.provider_detector import ProviderDetector
    from little_helper.services.provider_router import ProviderRouter

security = HTTPBearer()


async def verify_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> None:
    """
    Verify the bearer token matches the configured auth token.

    Reads through the settings proxy, so a reloaded config.yaml applies
    to the next request.
    """
    if not secrets.compare_digest(credentials.credentials, settings.auth_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )


async def get_services() -> ServiceContainer:
    return get_container()


async def get_detector() -> ProviderDetector:
    """Get provider detector via dependency injection."""
    return get_container().detector


async def get_router() -> ProviderRouter:
    """Get provider router via dependency injection."""
    return get_container().router


async def get_pipeline() -> CommandPipeline:
    """Get command pipeline via dependency injection."""
    return get_container().pipeline


async def get_conversation_service() -> ConversationService:
    """Get conversation service via dependency injection."""
    return get_container().conversation_service


async def get_audit_logger() -> AuditLogger:
    """Get audit logger via dependency injection."""
    return get_container().audit_logger


async def get_health_service() -> HealthCheckService:
    """Get health check service via dependency injection."""
    return get_container().health_service
