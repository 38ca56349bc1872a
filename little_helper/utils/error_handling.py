"""
Error handling utilities for Little Helper.

Provides decorators and helpers for consistent error handling and logging.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from fastapi import status

from little_helper.exceptions import (
    BackendAuthRejected,
    BackendError,
    BackendRateLimited,
    ConfirmationStateError,
    CredentialError,
    LittleHelperError,
    ProviderUnreachable,
    RoutingConflict,
)
from little_helper.utils.redaction import redact_dict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def log_errors(operation_name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to log errors with context.

    Logs exceptions with the operation name, function name and the
    exception's own context, then re-raises.

    Example:
        @log_errors("audit_append")
        async def append(self, entry: AuditEntry) -> None:
            ...
    """

    def _log(func: Callable[..., T], e: Exception) -> None:
        context = e.context if isinstance(e, LittleHelperError) else {}
        logger.exception(
            f"Error in {operation_name}",
            extra={
                "operation": operation_name,
                "error_type": type(e).__name__,
                "function": func.__name__,
                "error_context": redact_dict(dict(context)),
            },
        )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                _log(func, e)
                raise

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                _log(func, e)
                raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator


def format_exception_for_response(e: Exception) -> dict[str, object]:
    """
    Format exception for API error response.

    Example:
        try:
            await router.select(provider_id)
        except RoutingConflict as e:
            raise HTTPException(status_code=409, detail=format_exception_for_response(e))
    """
    error_dict: dict[str, object] = {
        "error": type(e).__name__,
        "message": str(e),
    }

    if isinstance(e, LittleHelperError) and e.context:
        error_dict["context"] = redact_dict(dict(e.context))

    return error_dict


def status_code_for(e: Exception) -> int:
    """HTTP status used when a domain error reaches the API surface."""
    if isinstance(e, (RoutingConflict, ConfirmationStateError)):
        return status.HTTP_409_CONFLICT
    if isinstance(e, BackendAuthRejected):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(e, BackendRateLimited):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(e, ProviderUnreachable):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(e, BackendError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(e, CredentialError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR
