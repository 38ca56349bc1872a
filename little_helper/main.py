import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from little_helper.api import audit, chat, commands, health, providers, routing
from little_helper.config import settings
from little_helper.exceptions import ConfigurationError
from little_helper.logging_config import configure_json_logging
from little_helper.middleware.request_id import RequestIDMiddleware
from little_helper.models.command import default_working_directory
from little_helper.services.audit_log import AuditLogger
from little_helper.services.chat_backends import HttpChatBackends
from little_helper.services.command_classifier import CommandClassifier
from little_helper.services.command_pipeline import CommandPipeline
from little_helper.services.confirmation_gate import ConfirmationGate
from little_helper.services.container import ServiceContainer, init_container, reset_container
from little_helper.services.conversation import ConversationService
from little_helper.services.credential_store import CredentialStore
from little_helper.services.executor import CommandExecutor
from little_helper.services.health import HealthCheckService
from little_helper.services.privilege_escalation import PrivilegeEscalation
from little_helper.services.provider_catalog import build_catalog
from little_helper.services.provider_detector import ProviderDetector
from little_helper.services.provider_router import ProviderRouter
from little_helper.services.token_lifecycle import TokenLifecycle
from little_helper.version import get_version

logger = logging.getLogger(__name__)


async def periodic_request_cleanup(pipeline: CommandPipeline, interval_seconds: int = 300) -> None:
    """Drop finished command requests past their retention window."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            pipeline.cleanup_expired()
        except asyncio.CancelledError:
            logger.info("Command cleanup task cancelled")
            break
        except Exception as e:
            logger.error("Error in command cleanup", extra={"error": str(e)})


def build_services() -> ServiceContainer:
    """Wire every service from the current settings."""
    catalog = build_catalog(
        claude_home=settings.claude_home_path,
        credentials_path=settings.credentials_path,
        keys_dir=settings.keys_path,
        default_models=settings.default_models,
    )
    store = CredentialStore()
    detector = ProviderDetector(catalog, store)
    router = ProviderRouter(detector, TokenLifecycle(store))

    executor = CommandExecutor(
        timeout_seconds=settings.execution_timeout_seconds,
        kill_grace_seconds=settings.kill_grace_seconds,
        max_output_bytes=settings.max_output_bytes,
    )
    audit_logger = AuditLogger(settings.audit_log_path)
    pipeline = CommandPipeline(
        classifier=CommandClassifier(),
        gate=ConfirmationGate(timeout_seconds=settings.confirmation_timeout_seconds),
        escalation=PrivilegeEscalation(executor),
        executor=executor,
        audit=audit_logger,
        elevate_on_permission_denied=settings.elevate_on_permission_denied,
    )

    working_directory = default_working_directory(settings.default_working_directory)
    if not Path(working_directory).is_dir():
        raise ConfigurationError(
            "Default working directory does not exist",
            context={"key": "commands.default_working_directory", "path": working_directory},
        )
    conversation_service = ConversationService(
        router=router,
        backends=HttpChatBackends(
            timeout_seconds=settings.provider_timeout_seconds,
            ollama_base_url=settings.ollama_base_url,
        ),
        pipeline=pipeline,
        working_directory=working_directory,
        max_iterations=settings.max_agent_iterations,
    )

    return ServiceContainer(
        detector=detector,
        router=router,
        pipeline=pipeline,
        conversation_service=conversation_service,
        audit_logger=audit_logger,
        health_service=HealthCheckService(audit_logger, detector, router, version=get_version()),
        default_working_directory=working_directory,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup and shutdown."""
    logger.info("Starting Little Helper service", extra={"version": get_version()})

    container = build_services()
    init_container(container)

    statuses = await container.detector.detect_async()
    selection = await container.router.auto_select(statuses)
    logger.info(
        "Little Helper ready",
        extra={
            "ready_providers": [s.provider_id for s in statuses if s.is_ready],
            "selected_provider": selection.provider_id if selection else None,
        },
    )

    cleanup_task = asyncio.create_task(periodic_request_cleanup(container.pipeline))

    yield

    logger.info("Little Helper shutting down")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    await container.pipeline.shutdown()
    reset_container()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Little Helper",
        description="Local assistant service: provider routing and guarded command execution",
        version=get_version(),
        lifespan=lifespan,
    )
    app.add_middleware(RequestIDMiddleware)

    # Only the desktop UI's web view needs cross-origin access
    allowed_origins = settings.cors_allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
            max_age=3600,
        )
        logger.info("CORS configured", extra={"origins": allowed_origins})

    app.include_router(providers.router, tags=["providers"])
    app.include_router(routing.router, tags=["routing"])
    app.include_router(chat.router, tags=["chat"])
    app.include_router(commands.router, tags=["commands"])
    app.include_router(audit.router, tags=["audit"])
    app.include_router(health.router)
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API on the loopback interface."""
    import uvicorn

    configure_json_logging(log_level=settings.log_level, use_json=settings.log_json)
    uvicorn.run(
        "little_helper.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
