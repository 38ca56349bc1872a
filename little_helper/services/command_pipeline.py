"""
Command request lifecycle: classify, confirm, elevate, execute, audit.

Requests from one conversation run strictly one at a time; a second request
is queued until the first has been decided and (if approved) has finished.
Request state is kept in memory for UI polling and expires after a
retention window. The durable record is the audit log.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from little_helper.exceptions import (
    CommandLifecycleError,
    ConfirmationDenied,
    ConfirmationStateError,
    ConfirmationTimedOut,
    ElevationFailed,
    ElevationFailure,
    ExecutionNonZeroExit,
    ExecutionTimedOut,
)
from little_helper.models.command import (
    CommandOutcome,
    CommandRequest,
    DecisionActor,
    DecisionOutcome,
    ElevationOutcome,
    ExecutionDecision,
    ExecutionResult,
    RequestState,
)
from little_helper.services.audit_log import AuditLogger
from little_helper.services.command_classifier import CommandClassifier
from little_helper.services.confirmation_gate import ConfirmationGate, describe_request
from little_helper.services.executor import CommandExecutor
from little_helper.services.privilege_escalation import ElevationSecret, PrivilegeEscalation

logger = logging.getLogger(__name__)

_SETTLED_STATES = {RequestState.AWAITING_CONFIRMATION, RequestState.AWAITING_ELEVATION}

_DECISION_STATES = {
    DecisionOutcome.DENIED: RequestState.DENIED,
    DecisionOutcome.CANCELLED: RequestState.CANCELLED,
    DecisionOutcome.TIMED_OUT: RequestState.TIMED_OUT,
}

_ELEVATION_OUTCOMES = {
    ElevationFailure.CANCELLED: ElevationOutcome.CANCELLED,
    ElevationFailure.AUTHENTICATION_FAILED: ElevationOutcome.AUTHENTICATION_FAILED,
    ElevationFailure.UNAVAILABLE: ElevationOutcome.UNAVAILABLE,
}
_ELEVATION_FAILURES = {v: k for k, v in _ELEVATION_OUTCOMES.items()}


def lifecycle_error(outcome: CommandOutcome) -> CommandLifecycleError | None:
    """The typed error for a finished request that did not succeed, else None."""
    request_id = outcome.request.request_id
    result = outcome.result
    state = outcome.state

    if state is RequestState.DENIED:
        return ConfirmationDenied("Command was declined", request_id)
    if state is RequestState.CANCELLED:
        return ConfirmationDenied("Command was cancelled", request_id, context={"outcome": "cancelled"})
    if state is RequestState.ELEVATION_FAILED:
        reason = _ELEVATION_FAILURES.get(outcome.elevation, ElevationFailure.CANCELLED)
        return ElevationFailed("Administrator access failed", request_id, reason, result=result)
    if state is RequestState.TIMED_OUT:
        if result is not None and result.timed_out:
            return ExecutionTimedOut(
                "Command exceeded its time limit and was stopped",
                request_id,
                context={"duration_ms": result.duration_ms},
            )
        return ConfirmationTimedOut("Command was not confirmed in time", request_id)
    if state is RequestState.COMPLETED and result is not None and not result.succeeded:
        return ExecutionNonZeroExit(
            f"Command failed with exit status {result.exit_status}",
            request_id,
            context={
                "exit_status": result.exit_status,
                "failure_reason": result.failure_reason.value if result.failure_reason else None,
            },
        )
    return None


@dataclass
class _TrackedRequest:
    outcome: CommandOutcome
    settled: asyncio.Event = field(default_factory=asyncio.Event)
    cancel_requested: bool = False
    task: asyncio.Task[None] | None = None


class CommandPipeline:
    """
    Owns every command request from submission to its audit entry.

    Args:
        classifier: Danger-tier classifier
        gate: Confirmation gate
        escalation: Privilege escalation handler
        executor: Command executor
        audit: Audit logger
        elevate_on_permission_denied: Offer elevation when an unprivileged
            run reports permission denied
        retention_minutes: How long finished requests stay pollable
    """

    def __init__(
        self,
        classifier: CommandClassifier,
        gate: ConfirmationGate,
        escalation: PrivilegeEscalation,
        executor: CommandExecutor,
        audit: AuditLogger,
        elevate_on_permission_denied: bool = True,
        retention_minutes: int = 60,
    ) -> None:
        self.classifier = classifier
        self.gate = gate
        self.escalation = escalation
        self.executor = executor
        self.audit = audit
        self.elevate_on_permission_denied = elevate_on_permission_denied
        self.retention_minutes = retention_minutes
        self._requests: dict[str, _TrackedRequest] = {}
        self._conversation_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._changed = asyncio.Event()

    # --- submission and queries -------------------------------------------

    def submit(
        self,
        conversation_id: str,
        command: str,
        working_directory: str,
        rationale: str = "",
    ) -> CommandOutcome:
        """Register a request and start processing it in the background."""
        request = CommandRequest(
            conversation_id=conversation_id,
            command=command,
            working_directory=working_directory,
            rationale=rationale,
        )
        classification = self.classifier.explain(command)
        outcome = CommandOutcome(
            request=request,
            classification=classification,
            prompt=describe_request(request, classification),
        )
        tracked = _TrackedRequest(outcome=outcome)
        self._requests[request.request_id] = tracked
        tracked.task = asyncio.create_task(self._process(tracked))

        logger.info(
            "Command request submitted",
            extra={
                "request_id": request.request_id,
                "conversation_id": conversation_id,
                "danger_level": classification.level.value,
                "rule": classification.rule,
            },
        )
        return outcome

    def get(self, request_id: str) -> CommandOutcome | None:
        tracked = self._requests.get(request_id)
        return tracked.outcome if tracked else None

    def pending(self) -> list[CommandOutcome]:
        """Requests waiting on the user, oldest first."""
        waiting = [
            t.outcome for t in self._requests.values() if t.outcome.state in _SETTLED_STATES
        ]
        return sorted(waiting, key=lambda o: o.request.requested_at)

    def active_count(self) -> int:
        return sum(1 for t in self._requests.values() if not t.outcome.state.is_terminal)

    async def wait_settled(self, request_id: str, timeout: float | None = None) -> CommandOutcome:
        """
        Wait until the request has finished or is waiting on the user.

        Raises:
            ConfirmationStateError: Unknown request
            TimeoutError: `timeout` elapsed first
        """
        tracked = self._require(request_id)
        await asyncio.wait_for(tracked.settled.wait(), timeout=timeout)
        return tracked.outcome

    async def wait_unblocked(self, request_id: str) -> CommandOutcome:
        """
        Like wait_settled, but also return once the request is stuck in the
        queue behind an earlier request of its conversation that is waiting on
        the user. The returned outcome is then still `queued`.

        Raises:
            ConfirmationStateError: Unknown request
        """
        tracked = self._require(request_id)
        while not tracked.settled.is_set() and not self._blocked_by_user(tracked):
            changed = self._changed
            await changed.wait()
        return tracked.outcome

    def _blocked_by_user(self, tracked: _TrackedRequest) -> bool:
        conversation_id = tracked.outcome.request.conversation_id
        for other in self._requests.values():
            if other is tracked:
                return False
            if (
                other.outcome.request.conversation_id == conversation_id
                and other.outcome.state in _SETTLED_STATES
            ):
                return True
        return False

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    async def wait_finished(self, request_id: str) -> CommandOutcome:
        """Wait until the request reaches a terminal state."""
        tracked = self._require(request_id)
        if tracked.task is not None:
            await asyncio.shield(tracked.task)
        return tracked.outcome

    # --- user input -------------------------------------------------------

    def decide(self, request_id: str, outcome: DecisionOutcome) -> ExecutionDecision:
        """
        Deliver the user's confirmation answer.

        Raises:
            ConfirmationStateError: Unknown, not awaiting confirmation, or already decided
        """
        tracked = self._require(request_id)
        if outcome is DecisionOutcome.CANCELLED and tracked.outcome.state is RequestState.QUEUED:
            self.cancel(request_id)
            return ExecutionDecision(outcome=outcome, actor=DecisionActor.USER)
        if tracked.outcome.state is not RequestState.AWAITING_CONFIRMATION:
            raise ConfirmationStateError(
                "Command request is not awaiting confirmation",
                request_id,
                context={"state": tracked.outcome.state.value},
            )
        return self.gate.decide(request_id, outcome)

    def provide_secret(self, request_id: str, secret: ElevationSecret) -> None:
        """
        Deliver the one-shot administrator password.

        Raises:
            ConfirmationStateError: Unknown or not awaiting elevation
        """
        tracked = self._require(request_id)
        if not self.escalation.provide_secret(request_id, secret):
            raise ConfirmationStateError(
                "Command request is not awaiting administrator access",
                request_id,
                context={"state": tracked.outcome.state.value},
            )

    def cancel(self, request_id: str) -> CommandOutcome:
        """
        Cancel a request that has not started running.

        Raises:
            ConfirmationStateError: Unknown, already running, or finished
        """
        tracked = self._require(request_id)
        state = tracked.outcome.state
        if state is RequestState.QUEUED:
            tracked.cancel_requested = True
        elif state is RequestState.AWAITING_CONFIRMATION:
            self.gate.cancel(request_id)
        elif state is RequestState.AWAITING_ELEVATION:
            self.escalation.cancel(request_id)
        else:
            raise ConfirmationStateError(
                "Command request can no longer be cancelled",
                request_id,
                context={"state": state.value},
            )
        logger.info("Command cancel requested", extra={"request_id": request_id, "state": state.value})
        return tracked.outcome

    # --- processing -------------------------------------------------------

    async def _process(self, tracked: _TrackedRequest) -> None:
        outcome = tracked.outcome
        request = outcome.request
        try:
            async with self._conversation_locks[request.conversation_id]:
                await self._run_lifecycle(tracked)
        except Exception as e:
            outcome.error = str(e)
            # a finished command keeps its state and result
            if not outcome.state.is_terminal:
                self._set_state(tracked, RequestState.FAILED)
            logger.exception(
                "Command lifecycle failed",
                extra={
                    "request_id": request.request_id,
                    "state": outcome.state.value,
                    "error_type": type(e).__name__,
                },
            )
        else:
            error = lifecycle_error(outcome)
            if error is not None and outcome.error is None:
                outcome.error = str(error)
            logger.info(
                "Command request finished",
                extra={
                    "request_id": request.request_id,
                    "state": outcome.state.value,
                    "error_type": type(error).__name__ if error else None,
                    "audit_sequence": outcome.audit_sequence,
                },
            )
        finally:
            self.gate.forget(request.request_id)
            tracked.settled.set()
            self._notify()

    async def _run_lifecycle(self, tracked: _TrackedRequest) -> None:
        outcome = tracked.outcome
        request = outcome.request

        if tracked.cancel_requested:
            decision = ExecutionDecision(outcome=DecisionOutcome.CANCELLED, actor=DecisionActor.USER)
        else:
            entry = self.gate.submit(request, outcome.classification)
            if not entry.is_decided:
                self._set_state(tracked, RequestState.AWAITING_CONFIRMATION)
            decision = await self.gate.wait(request.request_id)
        outcome.decision = decision

        if not decision.approved:
            self._set_state(tracked, _DECISION_STATES[decision.outcome])
            await self._record(tracked)
            return

        if outcome.classification.requires_elevation:
            await self._run_with_elevation(tracked)
        else:
            self._set_state(tracked, RequestState.RUNNING)
            result = await self.executor.run(request)
            if (
                result.permission_denied
                and self.elevate_on_permission_denied
                and self.escalation.available()
            ):
                outcome.prior_result = result
                await self._run_with_elevation(tracked)
            else:
                self._finish(tracked, result)

        await self._record(tracked)

    async def _run_with_elevation(self, tracked: _TrackedRequest) -> None:
        outcome = tracked.outcome
        request = outcome.request
        try:
            if not self.escalation.available():
                raise ElevationFailed(
                    "Administrator access is not available on this system",
                    request.request_id,
                    ElevationFailure.UNAVAILABLE,
                )
            self._set_state(tracked, RequestState.AWAITING_ELEVATION)
            secret = await self.escalation.request_secret(request)
            self._set_state(tracked, RequestState.RUNNING)
            result = await self.escalation.run_elevated(request, secret)
        except ElevationFailed as e:
            outcome.elevation = _ELEVATION_OUTCOMES[e.reason]
            outcome.result = e.result
            outcome.error = str(e)
            self._set_state(tracked, RequestState.ELEVATION_FAILED)
            return

        outcome.elevation = ElevationOutcome.GRANTED
        self._finish(tracked, result)

    def _finish(self, tracked: _TrackedRequest, result: ExecutionResult) -> None:
        tracked.outcome.result = result
        state = RequestState.TIMED_OUT if result.timed_out else RequestState.COMPLETED
        self._set_state(tracked, state)

    async def _record(self, tracked: _TrackedRequest) -> None:
        outcome = tracked.outcome
        if outcome.decision is None:
            return
        entry = await self.audit.append(
            request=outcome.request,
            classification=outcome.classification,
            prompt=outcome.prompt,
            decision=outcome.decision,
            elevation=outcome.elevation,
            result=outcome.result,
            prior_result=outcome.prior_result,
        )
        outcome.audit_sequence = entry.sequence

    def _set_state(self, tracked: _TrackedRequest, state: RequestState) -> None:
        tracked.outcome.state = state
        tracked.outcome.updated_at = datetime.now(UTC)
        if state in _SETTLED_STATES or state.is_terminal:
            tracked.settled.set()
        self._notify()
        logger.debug(
            "Command state changed",
            extra={"request_id": tracked.outcome.request.request_id, "state": state.value},
        )

    def _require(self, request_id: str) -> _TrackedRequest:
        tracked = self._requests.get(request_id)
        if tracked is None:
            raise ConfirmationStateError("Unknown command request", request_id)
        return tracked

    # --- housekeeping -----------------------------------------------------

    def cleanup_expired(self) -> int:
        """Forget finished requests older than the retention window."""
        cutoff = datetime.now(UTC) - timedelta(minutes=self.retention_minutes)
        expired = [
            rid
            for rid, t in self._requests.items()
            if t.outcome.state.is_terminal and t.outcome.updated_at < cutoff
        ]
        for rid in expired:
            del self._requests[rid]

        active = {
            t.outcome.request.conversation_id
            for t in self._requests.values()
            if not t.outcome.state.is_terminal
        }
        for conversation_id in list(self._conversation_locks):
            if conversation_id not in active and not self._conversation_locks[conversation_id].locked():
                del self._conversation_locks[conversation_id]
        if expired:
            logger.info(
                "Cleaned up expired command requests",
                extra={"count": len(expired), "retention_minutes": self.retention_minutes},
            )
        return len(expired)

    async def shutdown(self) -> None:
        """Cancel prompts and in-flight processing (application shutdown)."""
        for request_id in self.escalation.pending_ids():
            self.escalation.cancel(request_id)
        for entry in self.gate.pending():
            self.gate.cancel(entry.request_id)
        tasks = [t.task for t in self._requests.values() if t.task and not t.task.done()]
        if tasks:
            await asyncio.wait(tasks, timeout=5)
