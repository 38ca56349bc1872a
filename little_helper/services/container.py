"""
Service dependency container.

Services are created once in the application lifespan and reached from
routes through FastAPI's Depends() getters in little_helper.dependencies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from little_helper.services.audit_log import AuditLogger
    from little_helper.services.command_pipeline import CommandPipeline
    from little_helper.services.conversation import ConversationService
    from little_helper.services.health import HealthCheckService
    from little_helper.services.provider_detector import ProviderDetector
    from little_helper.services.provider_router import ProviderRouter
    from little_helper.services.token_lifecycle import TokenLifecycle


class ServiceContainer:
    """Container for all application services."""

    def __init__(
        self,
        detector: ProviderDetector,
        router: ProviderRouter,
        pipeline: CommandPipeline,
        conversation_service: ConversationService,
        audit_logger: AuditLogger,
        health_service: HealthCheckService,
        default_working_directory: str,
        token_lifecycle: TokenLifecycle | None = None,
    ) -> None:
        self.detector = detector
        self.router = router
        self.token_lifecycle = token_lifecycle or router.lifecycle
        self.pipeline = pipeline
        self.conversation_service = conversation_service
        self.audit_logger = audit_logger
        self.health_service = health_service
        self.default_working_directory = default_working_directory


_container: ServiceContainer | None = None


def init_container(container: ServiceContainer) -> None:
    """Install the container (called once in the FastAPI lifespan)."""
    global _container
    _container = container


def reset_container() -> None:
    global _container
    _container = None


def get_container() -> ServiceContainer:
    """
    Get the service container.

    Raises:
        RuntimeError: If the container is not initialized (lifespan not running)
    """
    if _container is None:
        msg = "Service container not initialized - application lifespan may not be running"
        raise RuntimeError(msg)
    return _container
