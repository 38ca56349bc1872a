"""
Custom exception classes with context for Little Helper.

All exceptions inherit from LittleHelperError and support attaching
contextual information for structured logging. Context dictionaries must
never carry secret material (access secrets, refresh secrets, elevation
passwords); callers pass masked values or omit them.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from little_helper.models.command import ExecutionResult


class LittleHelperError(Exception):
    """
    Base exception for Little Helper.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary with additional context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, object] | None = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dictionary with contextual information
                    (operation name, provider id, file paths, etc.)
        """
        super().__init__(message)
        self.context = context or {}


class ConfigurationError(LittleHelperError):
    """
    Configuration error.

    Raised when configuration loading, validation, or parsing fails.

    Example:
        raise ConfigurationError(
            "Missing required configuration key",
            context={"key": "auth.token", "config_file": "~/.config/little-helper/config.yaml"}
        )
    """


# --- Credentials -----------------------------------------------------------


class CredentialError(LittleHelperError):
    """Base class for credential store failures."""

    def __init__(
        self,
        message: str,
        provider_id: str,
        context: dict[str, object] | None = None,
    ):
        super().__init__(message, context={"provider_id": provider_id, **(context or {})})
        self.provider_id = provider_id


class CredentialNotFound(CredentialError):
    """
    No credential material exists for a backend.

    Example:
        raise CredentialNotFound(
            "No credential configured",
            provider_id="openai",
            context={"sources": ["env:OPENAI_API_KEY", "file:keys/openai"]},
        )
    """


class CredentialMalformed(CredentialError):
    """
    A credential candidate exists but fails to parse.

    Example:
        raise CredentialMalformed(
            "Credential record is missing required fields",
            provider_id="claude_subscription",
            context={"source": "~/.claude/.credentials.json", "fields": ["access_secret"]},
        )
    """


class CredentialExpired(CredentialError):
    """A credential's expiry falls inside the safety margin."""


class RefreshFailed(CredentialExpired):
    """
    Re-reading the store did not yield a usable credential.

    The external sign-in tool owns the refresh protocol; once this is raised
    the user must re-run that tool or pick another backend.
    """


# --- Providers and routing -------------------------------------------------


class RoutingFailure(str, Enum):
    """Typed reasons a routing selection was refused."""

    UNKNOWN_PROVIDER = "unknown_provider"
    NOT_READY = "not_ready"
    CREDENTIAL_EXPIRED = "credential_expired"


class RoutingConflict(LittleHelperError):
    """
    Selecting a provider failed; the previous selection is untouched.

    Example:
        raise RoutingConflict(
            "Provider is not ready",
            reason=RoutingFailure.NOT_READY,
            context={"provider_id": "openai", "readiness": "unavailable"},
        )
    """

    def __init__(
        self,
        message: str,
        reason: RoutingFailure,
        context: dict[str, object] | None = None,
    ):
        super().__init__(message, context={"reason": reason.value, **(context or {})})
        self.reason = reason


class BackendError(LittleHelperError):
    """Base class for chat/completion backend failures."""

    def __init__(
        self,
        message: str,
        provider_id: str,
        status_code: int | None = None,
        context: dict[str, object] | None = None,
    ):
        super().__init__(
            message,
            context={"provider_id": provider_id, "status_code": status_code, **(context or {})},
        )
        self.provider_id = provider_id
        self.status_code = status_code


class BackendAuthRejected(BackendError):
    """The backend rejected the credential (401/403)."""


class BackendRateLimited(BackendError):
    """The backend is throttling requests (429)."""


class ProviderUnreachable(BackendError):
    """Network failure or transient backend error (timeouts, 5xx)."""


class BackendFatal(BackendError):
    """The backend returned an error that retrying will not fix."""


# --- Command lifecycle -----------------------------------------------------


class CommandLifecycleError(LittleHelperError):
    """Base class for failures that end a command request's lifecycle."""

    def __init__(
        self,
        message: str,
        request_id: str,
        context: dict[str, object] | None = None,
    ):
        super().__init__(message, context={"request_id": request_id, **(context or {})})
        self.request_id = request_id


class ConfirmationDenied(CommandLifecycleError):
    """The user denied (or cancelled) a command."""


class ConfirmationTimedOut(CommandLifecycleError):
    """No answer arrived before the confirmation timeout."""


class ConfirmationStateError(CommandLifecycleError):
    """
    A decision was delivered for a request that cannot accept one.

    Raised for unknown request ids and for a second decision on a request
    that has already been decided.
    """


class ElevationFailure(str, Enum):
    """Why a privileged attempt did not go ahead or did not authenticate."""

    CANCELLED = "cancelled"
    AUTHENTICATION_FAILED = "authentication_failed"
    UNAVAILABLE = "unavailable"


class ElevationFailed(CommandLifecycleError):
    """
    Privilege escalation failed.

    Never carries the secret. When the privileged mechanism ran and rejected
    the secret, ``result`` holds that attempt's captured output.
    """

    def __init__(
        self,
        message: str,
        request_id: str,
        reason: ElevationFailure,
        result: ExecutionResult | None = None,
        context: dict[str, object] | None = None,
    ):
        super().__init__(message, request_id, context={"reason": reason.value, **(context or {})})
        self.reason = reason
        self.result = result


class ExecutionTimedOut(CommandLifecycleError):
    """The command exceeded its wall-clock limit and was killed."""


class ExecutionNonZeroExit(CommandLifecycleError):
    """The command finished with a non-zero exit status."""


class AuditLogError(LittleHelperError):
    """
    Audit log operation failed.

    Example:
        raise AuditLogError(
            "Failed to append audit entry",
            context={"operation": "append", "path": "~/.local/share/little-helper/audit.jsonl"}
        )
    """
