"""Models for command requests, gate decisions, execution results and audit entries."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr

_PERCENT_RE = re.compile(r"(\d{1,3})%")

PERMISSION_DENIED_MARKERS = ("Permission denied", "Operation not permitted")


class DangerLevel(str, Enum):
    """Danger tier of a proposed command, ordered from least to most severe."""

    SAFE = "safe"
    NEEDS_CONFIRMATION = "needs_confirmation"
    DANGEROUS = "dangerous"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_SEVERITY = {
    DangerLevel.SAFE: 0,
    DangerLevel.NEEDS_CONFIRMATION: 1,
    DangerLevel.DANGEROUS: 2,
}

_LABELS = {
    DangerLevel.SAFE: "Safe",
    DangerLevel.NEEDS_CONFIRMATION: "Needs confirmation",
    DangerLevel.DANGEROUS: "Dangerous",
}


def _new_request_id() -> str:
    return f"cmdreq_{uuid4().hex[:16]}"


class CommandRequest(BaseModel):
    """A single proposed shell invocation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=_new_request_id)
    conversation_id: str = Field(..., min_length=1)
    command: str = Field(..., description="Literal command text")
    working_directory: str = Field(..., description="Directory the command runs in")
    rationale: str = Field("", description="Why the AI wants to run this command")
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class Classification:
    """Danger tier of a command plus how it was reached."""

    level: DangerLevel
    rule: str
    description: str
    requires_elevation: bool = False
    is_default: bool = False  # no rule matched; fail-closed default applied


class DecisionOutcome(str, Enum):
    """Outcome of the confirmation gate."""

    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class DecisionActor(str, Enum):
    """Who decided."""

    USER = "user"
    AUTOMATIC = "automatic"


class ExecutionDecision(BaseModel):
    """The gate's single, immutable decision for a request."""

    model_config = ConfigDict(frozen=True)

    outcome: DecisionOutcome
    actor: DecisionActor
    decided_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def approved(self) -> bool:
        return self.outcome is DecisionOutcome.APPROVED


class ElevationOutcome(str, Enum):
    """What happened with privilege escalation for a request."""

    NOT_REQUIRED = "not_required"
    GRANTED = "granted"
    CANCELLED = "cancelled"
    AUTHENTICATION_FAILED = "authentication_failed"
    UNAVAILABLE = "unavailable"


class FailureReason(str, Enum):
    """Why a command did not produce a normal exit status."""

    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


@dataclass(frozen=True)
class ExecutionResult:
    """Captured output of one command execution."""

    command: str
    stdout: bytes
    stderr: bytes
    exit_status: int | None
    duration_ms: int
    failure_reason: FailureReason | None = None
    failure_detail: str | None = None
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    elevated: bool = False
    pid: int | None = field(default=None, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.failure_reason is None and self.exit_status == 0

    @property
    def timed_out(self) -> bool:
        return self.failure_reason is FailureReason.TIMED_OUT

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    @property
    def permission_denied(self) -> bool:
        if self.succeeded:
            return False
        stderr = self.stderr_text
        return any(marker in stderr for marker in PERMISSION_DENIED_MARKERS)

    @property
    def progress_percent(self) -> int | None:
        """Last percentage (0-100) printed by the command, if any."""
        last = None
        for match in _PERCENT_RE.finditer(self.stdout_text + self.stderr_text):
            value = int(match.group(1))
            if value <= 100:
                last = value
        return last

    @property
    def summary(self) -> str:
        from little_helper.utils.command_summary import summarize_result

        return summarize_result(self)

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            stdout=self.stdout_text,
            stderr=self.stderr_text,
            exit_status=self.exit_status,
            failure_reason=self.failure_reason,
            failure_detail=self.failure_detail,
            duration_ms=self.duration_ms,
            stdout_truncated=self.stdout_truncated,
            stderr_truncated=self.stderr_truncated,
            elevated=self.elevated,
            summary=self.summary,
        )


class ExecutionRecord(BaseModel):
    """Serializable form of an ExecutionResult, for audit entries and the UI."""

    model_config = ConfigDict(frozen=True)

    stdout: str
    stderr: str
    exit_status: int | None
    failure_reason: FailureReason | None = None
    failure_detail: str | None = None
    duration_ms: int
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    elevated: bool = False
    summary: str = ""


class AuditEntry(BaseModel):
    """
    Append-only record of one command's classification, decision and outcome.

    Only written once the decision (and result, if the command ran) is known.
    """

    model_config = ConfigDict(frozen=True)

    sequence: int = Field(..., ge=1)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    request: CommandRequest
    danger_level: DangerLevel
    rule: str
    classification_default: bool = False
    prompt: str = Field(..., description="Rationale shown to the user at the gate")
    decision: ExecutionDecision
    elevation: ElevationOutcome = ElevationOutcome.NOT_REQUIRED
    result: ExecutionRecord | None = None
    prior_result: ExecutionRecord | None = Field(
        None,
        description="Unprivileged attempt that reported permission denied before escalation",
    )


class RequestState(str, Enum):
    """Lifecycle state of a command request, as seen by the UI."""

    QUEUED = "queued"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_ELEVATION = "awaiting_elevation"
    RUNNING = "running"
    COMPLETED = "completed"
    DENIED = "denied"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    ELEVATION_FAILED = "elevation_failed"
    # an internal error stopped processing; the command may or may not have run
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = {
    RequestState.COMPLETED,
    RequestState.DENIED,
    RequestState.CANCELLED,
    RequestState.TIMED_OUT,
    RequestState.ELEVATION_FAILED,
    RequestState.FAILED,
}


@dataclass
class CommandOutcome:
    """Everything known about a finished (or still running) command request."""

    request: CommandRequest
    classification: Classification
    prompt: str
    state: RequestState = RequestState.QUEUED
    decision: ExecutionDecision | None = None
    elevation: ElevationOutcome = ElevationOutcome.NOT_REQUIRED
    result: ExecutionResult | None = None
    prior_result: ExecutionResult | None = None
    error: str | None = None
    audit_sequence: int | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def message_for_model(self) -> str:
        """Text fed back to the conversation so the AI can react to the outcome."""
        command = self.request.command
        if self.result is not None:
            result = self.result
            body = result.stdout_text
            if result.stderr:
                body = f"{body}\n{result.stderr_text}" if body else result.stderr_text
            if result.timed_out:
                status = "timed out"
            elif result.failure_reason is not None:
                status = f"failed to start ({result.failure_detail or result.failure_reason.value})"
            else:
                status = f"exit code {result.exit_status}"
            return f"[Command Output: {command}]\n{body.rstrip()}\n({status})"
        if self.state is RequestState.DENIED:
            return f"[Command '{command}' was declined by the user]"
        if self.state is RequestState.TIMED_OUT:
            return f"[Command '{command}' was not confirmed in time and did not run]"
        if self.state is RequestState.ELEVATION_FAILED:
            return f"[Command '{command}' could not get administrator access and did not run]"
        if self.state is RequestState.CANCELLED:
            return f"[Command '{command}' was cancelled]"
        if self.state is RequestState.FAILED:
            return f"[Command '{command}' failed: {self.error or 'internal error'}]"
        return f"[Command '{command}' needs user confirmation]"


# --- API models ------------------------------------------------------------


class SubmitCommandRequest(BaseModel):
    """Request to run a shell command on the user's behalf."""

    command: str = Field(..., min_length=1, description="Shell command text")
    working_directory: str | None = Field(
        None, description="Directory to run in (defaults to the configured directory)"
    )
    rationale: str = Field("", description="Why the command should run")


class SubmitCommandResponse(BaseModel):
    """Response after submitting a command request."""

    request_id: str = Field(..., description="Unique request identifier")
    danger_level: DangerLevel = Field(..., description="Danger tier")
    state: RequestState = Field(..., description="Initial lifecycle state")
    prompt: str = Field(..., description="Text to show the user at the confirmation prompt")
    poll_url: str = Field(..., description="URL to poll for status and output")


class DecisionRequest(BaseModel):
    """The user's answer to a confirmation prompt."""

    decision: DecisionOutcome = Field(..., description="approved, denied or cancelled")


class ElevationSecretRequest(BaseModel):
    """One-shot administrator password for a pending elevation prompt."""

    secret: SecretStr = Field(..., min_length=1)


class CommandStatusResponse(BaseModel):
    """Status of a command request for UI polling."""

    request_id: str
    conversation_id: str
    command: str
    working_directory: str
    rationale: str
    danger_level: DangerLevel
    rule: str
    requires_elevation: bool
    prompt: str
    state: RequestState
    decision: ExecutionDecision | None = None
    elevation: ElevationOutcome
    result: ExecutionRecord | None = None
    prior_result: ExecutionRecord | None = None
    progress_percent: int | None = None
    error: str | None = None
    audit_sequence: int | None = None
    message_for_model: str

    @classmethod
    def from_outcome(cls, outcome: CommandOutcome) -> CommandStatusResponse:
        request = outcome.request
        return cls(
            request_id=request.request_id,
            conversation_id=request.conversation_id,
            command=request.command,
            working_directory=request.working_directory,
            rationale=request.rationale,
            danger_level=outcome.classification.level,
            rule=outcome.classification.rule,
            requires_elevation=outcome.classification.requires_elevation,
            prompt=outcome.prompt,
            state=outcome.state,
            decision=outcome.decision,
            elevation=outcome.elevation,
            result=outcome.result.to_record() if outcome.result else None,
            prior_result=outcome.prior_result.to_record() if outcome.prior_result else None,
            progress_percent=outcome.result.progress_percent if outcome.result else None,
            error=outcome.error,
            audit_sequence=outcome.audit_sequence,
            message_for_model=outcome.message_for_model(),
        )


class PendingCommandsResponse(BaseModel):
    """Requests waiting for the user (confirmation or elevation)."""

    requests: list[CommandStatusResponse] = Field(default_factory=list)


class AuditLogResponse(BaseModel):
    """A page of audit entries."""

    entries: list[AuditEntry] = Field(default_factory=list)
    next_sequence: int = Field(..., description="Use as `after` for the next page")


def default_working_directory(configured: str | None) -> str:
    """Resolve the configured default working directory (home when unset)."""
    if configured:
        return str(Path(configured).expanduser())
    return str(Path.home())
