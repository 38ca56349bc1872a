"""Models for the Little Helper service."""

from little_helper.models.chat import ChatMessage, ChatRequest, ChatResponse, ChatRole
from little_helper.models.command import (
    AuditEntry,
    Classification,
    CommandOutcome,
    CommandRequest,
    DangerLevel,
    DecisionActor,
    DecisionOutcome,
    ExecutionDecision,
    ExecutionResult,
    RequestState,
)
from little_helper.models.credentials import Credential, CredentialOrigin, CredentialSource
from little_helper.models.provider import (
    ProviderDescriptor,
    ProviderKind,
    ProviderStatus,
    Readiness,
    RoutingSelection,
)

__all__ = [
    "AuditEntry",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatRole",
    "Classification",
    "CommandOutcome",
    "CommandRequest",
    "Credential",
    "CredentialOrigin",
    "CredentialSource",
    "DangerLevel",
    "DecisionActor",
    "DecisionOutcome",
    "ExecutionDecision",
    "ExecutionResult",
    "ProviderDescriptor",
    "ProviderKind",
    "ProviderStatus",
    "Readiness",
    "RequestState",
    "RoutingSelection",
]
