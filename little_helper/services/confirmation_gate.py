"""
The confirmation gate between classification and execution.

Every request receives exactly one ExecutionDecision. Safe requests are
approved automatically; everything else waits for the user. A
needs-confirmation prompt that nobody answers in time is cancelled, never
approved. Dangerous prompts wait indefinitely.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from little_helper.exceptions import ConfirmationStateError
from little_helper.models.command import (
    Classification,
    CommandRequest,
    DangerLevel,
    DecisionActor,
    DecisionOutcome,
    ExecutionDecision,
)

logger = logging.getLogger(__name__)

USER_OUTCOMES = frozenset({DecisionOutcome.APPROVED, DecisionOutcome.DENIED, DecisionOutcome.CANCELLED})


def describe_request(request: CommandRequest, classification: Classification) -> str:
    """The prompt shown to the user. Same inputs always give the same text."""
    lines = [
        f"Run this command in {request.working_directory}?",
        f"  {request.command}",
        f"Risk: {classification.level.label}. {classification.description}.",
    ]
    if classification.requires_elevation:
        lines.append("This needs your administrator password.")
    if request.rationale:
        lines.append(f"Why: {request.rationale}")
    return "\n".join(lines)


@dataclass
class PendingConfirmation:
    """One request at the gate, decided or not."""

    request: CommandRequest
    classification: Classification
    prompt: str
    created_at: datetime
    deadline: datetime | None
    decision: ExecutionDecision | None = None
    _decided: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def is_decided(self) -> bool:
        return self.decision is not None


class ConfirmationGate:
    """Holds pending prompts and records one decision per request."""

    def __init__(self, timeout_seconds: float = 120.0):
        self.timeout_seconds = timeout_seconds
        self._entries: dict[str, PendingConfirmation] = {}

    def submit(self, request: CommandRequest, classification: Classification) -> PendingConfirmation:
        """
        Register a request. Safe requests are approved on the spot.

        Raises:
            ConfirmationStateError: The request id was already submitted
        """
        if request.request_id in self._entries:
            raise ConfirmationStateError("Request already submitted", request.request_id)

        now = datetime.now(UTC)
        deadline = None
        if classification.level is DangerLevel.NEEDS_CONFIRMATION:
            deadline = now + timedelta(seconds=self.timeout_seconds)

        entry = PendingConfirmation(
            request=request,
            classification=classification,
            prompt=describe_request(request, classification),
            created_at=now,
            deadline=deadline,
        )
        self._entries[request.request_id] = entry

        if classification.level is DangerLevel.SAFE:
            self._record(entry, DecisionOutcome.APPROVED, DecisionActor.AUTOMATIC)
        else:
            logger.info(
                "Command awaiting confirmation",
                extra={
                    "request_id": request.request_id,
                    "danger_level": classification.level.value,
                    "rule": classification.rule,
                },
            )
        return entry

    def get(self, request_id: str) -> PendingConfirmation | None:
        return self._entries.get(request_id)

    def decide(
        self,
        request_id: str,
        outcome: DecisionOutcome,
        actor: DecisionActor = DecisionActor.USER,
    ) -> ExecutionDecision:
        """
        Deliver the user's answer.

        Raises:
            ConfirmationStateError: Unknown request, already decided, or an
                outcome the user cannot choose
        """
        entry = self._entries.get(request_id)
        if entry is None:
            raise ConfirmationStateError("Unknown command request", request_id)
        if actor is DecisionActor.USER and outcome not in USER_OUTCOMES:
            raise ConfirmationStateError(
                f"Cannot choose {outcome.value}", request_id, context={"outcome": outcome.value}
            )
        if entry.decision is not None:
            raise ConfirmationStateError(
                "Command request was already decided",
                request_id,
                context={"decision": entry.decision.outcome.value},
            )
        return self._record(entry, outcome, actor)

    async def wait(self, request_id: str) -> ExecutionDecision:
        """
        Suspend until the request is decided.

        Needs-confirmation requests are recorded as TimedOut once their
        deadline passes.

        Raises:
            ConfirmationStateError: Unknown request
        """
        entry = self._entries.get(request_id)
        if entry is None:
            raise ConfirmationStateError("Unknown command request", request_id)
        if entry.decision is not None:
            return entry.decision

        if entry.deadline is None:
            await entry._decided.wait()
        else:
            remaining = max((entry.deadline - datetime.now(UTC)).total_seconds(), 0.0)
            try:
                await asyncio.wait_for(entry._decided.wait(), timeout=remaining)
            except TimeoutError:
                if entry.decision is None:
                    self._record(entry, DecisionOutcome.TIMED_OUT, DecisionActor.AUTOMATIC)

        if entry.decision is None:
            raise ConfirmationStateError("Command request was released without a decision", request_id)
        return entry.decision

    def cancel(self, request_id: str) -> ExecutionDecision | None:
        """Cancel an undecided request. Returns None if it was already decided."""
        entry = self._entries.get(request_id)
        if entry is None:
            raise ConfirmationStateError("Unknown command request", request_id)
        if entry.decision is not None:
            return None
        return self._record(entry, DecisionOutcome.CANCELLED, DecisionActor.USER)

    def pending(self) -> list[PendingConfirmation]:
        """Undecided prompts, oldest first."""
        return sorted(
            (e for e in self._entries.values() if e.decision is None),
            key=lambda e: e.created_at,
        )

    def forget(self, request_id: str) -> None:
        """Drop a decided request once its outcome has been recorded elsewhere."""
        entry = self._entries.get(request_id)
        if entry is not None and entry.decision is not None:
            del self._entries[request_id]

    def _record(
        self,
        entry: PendingConfirmation,
        outcome: DecisionOutcome,
        actor: DecisionActor,
    ) -> ExecutionDecision:
        decision = ExecutionDecision(outcome=outcome, actor=actor)
        entry.decision = decision
        entry._decided.set()
        logger.info(
            "Command decision recorded",
            extra={
                "request_id": entry.request_id,
                "outcome": outcome.value,
                "actor": actor.value,
            },
        )
        return decision
