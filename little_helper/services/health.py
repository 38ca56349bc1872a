"""Health check service."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from little_helper.models.health import HealthCheckResponse, HealthStatus, ServiceHealth

if TYPE_CHECKING:
    from little_helper.services.audit_log import AuditLogger
    from little_helper.services.provider_detector import ProviderDetector
    from little_helper.services.provider_router import ProviderRouter

logger = logging.getLogger(__name__)


class HealthCheckService:
    """Checks the audit log and chat backends."""

    def __init__(
        self,
        audit: AuditLogger,
        detector: ProviderDetector,
        router: ProviderRouter,
        version: str = "unknown",
    ) -> None:
        self.audit = audit
        self.detector = detector
        self.router = router
        self.version = version

    async def check_audit_health(self) -> ServiceHealth:
        """
        Audit log must be writable.

        Commands are never run without an audit trail, so this is the one
        hard requirement for readiness.
        """
        start = time.monotonic()
        writable = await asyncio.to_thread(self.audit.writable)
        elapsed = (time.monotonic() - start) * 1000
        if not writable:
            return ServiceHealth(
                name="audit_log",
                status=HealthStatus.UNHEALTHY,
                message="Audit log is not writable",
                details={"path": str(self.audit.path)},
            )
        return ServiceHealth(
            name="audit_log",
            status=HealthStatus.HEALTHY,
            message="Audit log writable",
            response_time_ms=elapsed,
            details={"path": str(self.audit.path), "last_sequence": self.audit.last_sequence},
        )

    async def check_provider_health(self) -> ServiceHealth:
        """At least one backend must be Ready to serve chat."""
        start = time.monotonic()
        try:
            statuses = await self.detector.detect_async()
        except Exception as e:
            logger.exception("Provider health check failed")
            return ServiceHealth(
                name="providers",
                status=HealthStatus.DEGRADED,
                message=f"Provider detection failed: {e}",
            )
        elapsed = (time.monotonic() - start) * 1000

        ready = [s.provider_id for s in statuses if s.is_ready]
        selection = self.router.selection
        details = {
            "ready": ready,
            "selected": selection.provider_id if selection else None,
        }
        if not ready:
            return ServiceHealth(
                name="providers",
                status=HealthStatus.UNHEALTHY,
                message="No chat backend is ready",
                response_time_ms=elapsed,
                details=details,
            )
        return ServiceHealth(
            name="providers",
            status=HealthStatus.HEALTHY,
            message=f"{len(ready)} chat backend(s) ready",
            response_time_ms=elapsed,
            details=details,
        )

    async def check_health(self) -> HealthCheckResponse:
        """Run all checks in parallel and combine them."""
        services = list(
            await asyncio.gather(self.check_audit_health(), self.check_provider_health())
        )

        if any(s.status == HealthStatus.UNHEALTHY for s in services):
            overall_status = HealthStatus.UNHEALTHY
        elif any(s.status == HealthStatus.DEGRADED for s in services):
            overall_status = HealthStatus.DEGRADED
        else:
            overall_status = HealthStatus.HEALTHY

        return HealthCheckResponse(status=overall_status, version=self.version, services=services)
