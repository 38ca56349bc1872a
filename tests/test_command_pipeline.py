"""End-to-end tests for the command lifecycle."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from little_helper.exceptions import (
    AuditLogError,
    ConfirmationDenied,
    ConfirmationStateError,
    ConfirmationTimedOut,
    ExecutionNonZeroExit,
)
from little_helper.models.command import (
    DecisionActor,
    DecisionOutcome,
    ElevationOutcome,
    ExecutionResult,
    RequestState,
)
from little_helper.services.command_pipeline import CommandPipeline, lifecycle_error
from little_helper.services.executor import CommandExecutor
from little_helper.services.privilege_escalation import ElevationSecret


async def wait_for_state(
    pipeline: CommandPipeline, request_id: str, state: RequestState, timeout: float = 5.0
) -> None:
    async def _poll() -> None:
        while pipeline.get(request_id).state is not state:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


def audit_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


async def test_safe_command_runs_without_prompt(pipeline_factory, workdir: Path, audit_path: Path) -> None:
    pipeline = pipeline_factory()
    (workdir / "notes.txt").write_text("x")

    submitted = pipeline.submit("conv-1", "ls", working_directory=str(workdir))
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.decision.actor is DecisionActor.AUTOMATIC
    assert outcome.result.stdout_text.strip() == "notes.txt"
    assert outcome.audit_sequence == 1
    assert audit_lines(audit_path)[0]["result"]["exit_status"] == 0


async def test_denied_elevated_command_never_runs(pipeline_factory, workdir: Path, audit_path: Path, fake_sudo: str) -> None:
    pipeline = pipeline_factory(sudo_path=fake_sudo)

    submitted = pipeline.submit("conv-1", "sudo apt update", working_directory=str(workdir))
    request_id = submitted.request.request_id
    settled = await pipeline.wait_settled(request_id)
    assert settled.state is RequestState.AWAITING_CONFIRMATION
    assert [o.request.request_id for o in pipeline.pending()] == [request_id]

    pipeline.decide(request_id, DecisionOutcome.DENIED)
    outcome = await pipeline.wait_finished(request_id)

    assert outcome.state is RequestState.DENIED
    assert outcome.result is None
    assert pipeline.escalation.pending_ids() == []
    entry = audit_lines(audit_path)[0]
    assert entry["decision"]["outcome"] == "denied"
    assert entry["decision"]["actor"] == "user"
    assert entry["result"] is None
    assert entry["danger_level"] == "dangerous"


async def test_denied_command_has_no_side_effects(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()

    submitted = pipeline.submit("conv-1", "rm -rf keep", working_directory=str(workdir))
    (workdir / "keep").mkdir()
    await pipeline.wait_settled(submitted.request.request_id)
    pipeline.decide(submitted.request.request_id, DecisionOutcome.DENIED)
    await pipeline.wait_finished(submitted.request.request_id)

    assert (workdir / "keep").is_dir()


async def test_approved_command_runs(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()

    submitted = pipeline.submit("conv-1", "mkdir created", working_directory=str(workdir))
    await pipeline.wait_settled(submitted.request.request_id)
    assert not (workdir / "created").exists()

    pipeline.decide(submitted.request.request_id, DecisionOutcome.APPROVED)
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.COMPLETED
    assert (workdir / "created").is_dir()


async def test_second_decision_conflicts(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    submitted = pipeline.submit("conv-1", "mkdir created", working_directory=str(workdir))
    await pipeline.wait_settled(submitted.request.request_id)
    pipeline.decide(submitted.request.request_id, DecisionOutcome.DENIED)

    with pytest.raises(ConfirmationStateError):
        pipeline.decide(submitted.request.request_id, DecisionOutcome.APPROVED)


async def test_unanswered_confirmation_times_out(pipeline_factory, workdir: Path, audit_path: Path) -> None:
    pipeline = pipeline_factory(confirmation_timeout=0.2)

    submitted = pipeline.submit("conv-1", "mkdir created", working_directory=str(workdir))
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.TIMED_OUT
    assert outcome.decision.outcome is DecisionOutcome.TIMED_OUT
    assert outcome.decision.actor is DecisionActor.AUTOMATIC
    assert not (workdir / "created").exists()
    assert audit_lines(audit_path)[0]["decision"]["outcome"] == "timed_out"


async def test_requests_in_one_conversation_run_in_order(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()

    first = pipeline.submit("conv-1", "mkdir first", working_directory=str(workdir))
    second = pipeline.submit("conv-1", "ls", working_directory=str(workdir))
    other = pipeline.submit("conv-2", "pwd", working_directory=str(workdir))
    await pipeline.wait_settled(first.request.request_id)
    await pipeline.wait_finished(other.request.request_id)

    assert pipeline.get(second.request.request_id).state is RequestState.QUEUED

    pipeline.decide(first.request.request_id, DecisionOutcome.APPROVED)
    outcome = await pipeline.wait_finished(second.request.request_id)

    assert outcome.state is RequestState.COMPLETED
    assert "first" in outcome.result.stdout_text
    assert pipeline.get(first.request.request_id).audit_sequence < outcome.audit_sequence


async def test_cancel_queued_request(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    first = pipeline.submit("conv-1", "mkdir first", working_directory=str(workdir))
    second = pipeline.submit("conv-1", "mkdir second", working_directory=str(workdir))
    await pipeline.wait_settled(first.request.request_id)

    pipeline.cancel(second.request.request_id)
    pipeline.decide(first.request.request_id, DecisionOutcome.DENIED)
    outcome = await pipeline.wait_finished(second.request.request_id)

    assert outcome.state is RequestState.CANCELLED
    assert outcome.decision.actor is DecisionActor.USER
    assert not (workdir / "second").exists()


async def test_elevated_command_with_correct_password(
    pipeline_factory, workdir: Path, audit_path: Path, fake_sudo: str, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG)
    pipeline = pipeline_factory(sudo_path=fake_sudo)

    submitted = pipeline.submit("conv-1", "sudo echo elevated", working_directory=str(workdir))
    request_id = submitted.request.request_id
    await pipeline.wait_settled(request_id)
    pipeline.decide(request_id, DecisionOutcome.APPROVED)
    await wait_for_state(pipeline, request_id, RequestState.AWAITING_ELEVATION)

    pipeline.provide_secret(request_id, ElevationSecret("hunter2-correct"))
    outcome = await pipeline.wait_finished(request_id)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.elevation is ElevationOutcome.GRANTED
    assert outcome.result.stdout_text.strip() == "elevated"
    assert "hunter2" not in audit_path.read_text()
    assert "hunter2" not in caplog.text


async def test_rejected_password_is_recorded_without_secret(
    pipeline_factory, workdir: Path, audit_path: Path, fake_sudo: str, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG)
    pipeline = pipeline_factory(sudo_path=fake_sudo)

    submitted = pipeline.submit("conv-1", "sudo touch marker", working_directory=str(workdir))
    request_id = submitted.request.request_id
    await pipeline.wait_settled(request_id)
    pipeline.decide(request_id, DecisionOutcome.APPROVED)
    await wait_for_state(pipeline, request_id, RequestState.AWAITING_ELEVATION)

    pipeline.provide_secret(request_id, ElevationSecret("wrong-guess-password"))
    outcome = await pipeline.wait_finished(request_id)

    assert outcome.state is RequestState.ELEVATION_FAILED
    assert outcome.elevation is ElevationOutcome.AUTHENTICATION_FAILED
    assert not (workdir / "marker").exists()
    entry = audit_lines(audit_path)[0]
    assert entry["elevation"] == "authentication_failed"
    assert "wrong-guess-password" not in audit_path.read_text()
    assert "wrong-guess-password" not in caplog.text


async def test_password_stays_out_of_audit_when_sudo_does_not_ask(
    pipeline_factory, workdir: Path, audit_path: Path, nopasswd_sudo: str
) -> None:
    pipeline = pipeline_factory(sudo_path=nopasswd_sudo)

    submitted = pipeline.submit("conv-1", "sudo cat", working_directory=str(workdir))
    request_id = submitted.request.request_id
    await pipeline.wait_settled(request_id)
    pipeline.decide(request_id, DecisionOutcome.APPROVED)
    await wait_for_state(pipeline, request_id, RequestState.AWAITING_ELEVATION)

    pipeline.provide_secret(request_id, ElevationSecret("TopSecretPw123"))
    outcome = await pipeline.wait_finished(request_id)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.elevation is ElevationOutcome.GRANTED
    assert "TopSecretPw123" not in outcome.result.stdout_text
    assert "TopSecretPw123" not in audit_path.read_text()


async def test_cancelled_elevation_does_not_run(pipeline_factory, workdir: Path, fake_sudo: str) -> None:
    pipeline = pipeline_factory(sudo_path=fake_sudo)

    submitted = pipeline.submit("conv-1", "sudo touch marker", working_directory=str(workdir))
    request_id = submitted.request.request_id
    await pipeline.wait_settled(request_id)
    pipeline.decide(request_id, DecisionOutcome.APPROVED)
    await wait_for_state(pipeline, request_id, RequestState.AWAITING_ELEVATION)

    pipeline.cancel(request_id)
    outcome = await pipeline.wait_finished(request_id)

    assert outcome.state is RequestState.ELEVATION_FAILED
    assert outcome.elevation is ElevationOutcome.CANCELLED
    assert outcome.result is None
    assert not (workdir / "marker").exists()


async def test_elevation_unavailable(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory(sudo_path=None)

    submitted = pipeline.submit("conv-1", "sudo apt update", working_directory=str(workdir))
    await pipeline.wait_settled(submitted.request.request_id)
    pipeline.decide(submitted.request.request_id, DecisionOutcome.APPROVED)
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.ELEVATION_FAILED
    assert outcome.elevation is ElevationOutcome.UNAVAILABLE


class PermissionDeniedExecutor(CommandExecutor):
    """Unprivileged runs always report permission denied."""

    async def run(self, request, timeout_seconds=None, argv=None, stdin=None):  # type: ignore[override]
        if argv is None:
            return ExecutionResult(
                command=request.command,
                stdout=b"",
                stderr=b"cat: notes.txt: Permission denied\n",
                exit_status=1,
                duration_ms=2,
            )
        return await super().run(request, timeout_seconds=timeout_seconds, argv=argv, stdin=stdin)


async def test_permission_denied_offers_elevation(pipeline_factory, workdir: Path, audit_path: Path, fake_sudo: str) -> None:
    pipeline = pipeline_factory(sudo_path=fake_sudo)
    executor = PermissionDeniedExecutor()
    pipeline.executor = executor
    pipeline.escalation._executor = executor
    (workdir / "notes.txt").write_text("private")

    submitted = pipeline.submit("conv-1", "cat notes.txt", working_directory=str(workdir))
    request_id = submitted.request.request_id
    settled = await pipeline.wait_settled(request_id)
    assert settled.state is RequestState.AWAITING_ELEVATION

    pipeline.provide_secret(request_id, ElevationSecret("hunter2-correct"))
    outcome = await pipeline.wait_finished(request_id)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.prior_result.permission_denied
    assert outcome.result.stdout_text == "private"
    entry = audit_lines(audit_path)[0]
    assert entry["prior_result"]["exit_status"] == 1
    assert entry["result"]["elevated"] is True


async def test_permission_denied_without_fallback(pipeline_factory, workdir: Path, fake_sudo: str) -> None:
    pipeline = pipeline_factory(sudo_path=fake_sudo, elevate_on_permission_denied=False)
    pipeline.executor = PermissionDeniedExecutor()

    submitted = pipeline.submit("conv-1", "cat notes.txt", working_directory=str(workdir))
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.result.permission_denied
    assert outcome.prior_result is None


async def test_execution_timeout_state(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    pipeline.executor = CommandExecutor(timeout_seconds=0.5, kill_grace_seconds=0.1)

    submitted = pipeline.submit("conv-1", "sleep 5", working_directory=str(workdir))
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.TIMED_OUT
    assert outcome.result.timed_out
    assert "timed out" in outcome.message_for_model()


async def test_cleanup_keeps_recent_requests(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    submitted = pipeline.submit("conv-1", "ls", working_directory=str(workdir))
    await pipeline.wait_finished(submitted.request.request_id)

    assert pipeline.cleanup_expired() == 0
    pipeline.retention_minutes = 0
    assert pipeline.cleanup_expired() == 1
    assert pipeline.get(submitted.request.request_id) is None


def test_unknown_request_id(pipeline_factory) -> None:
    with pytest.raises(ConfirmationStateError):
        pipeline_factory().decide("cmdreq_missing", DecisionOutcome.APPROVED)


async def test_finished_requests_carry_typed_error(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory(confirmation_timeout=0.2)

    failed = pipeline.submit("conv-1", "ls missing-dir", working_directory=str(workdir))
    timed_out = pipeline.submit("conv-2", "mkdir x", working_directory=str(workdir))
    ok = pipeline.submit("conv-3", "pwd", working_directory=str(workdir))

    failed_outcome = await pipeline.wait_finished(failed.request.request_id)
    timed_out_outcome = await pipeline.wait_finished(timed_out.request.request_id)
    ok_outcome = await pipeline.wait_finished(ok.request.request_id)

    assert isinstance(lifecycle_error(failed_outcome), ExecutionNonZeroExit)
    assert "exit status" in failed_outcome.error
    assert isinstance(lifecycle_error(timed_out_outcome), ConfirmationTimedOut)
    assert lifecycle_error(ok_outcome) is None
    assert ok_outcome.error is None


async def test_denied_request_error(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    submitted = pipeline.submit("conv-1", "rm -rf stuff", working_directory=str(workdir))
    await pipeline.wait_settled(submitted.request.request_id)
    pipeline.decide(submitted.request.request_id, DecisionOutcome.DENIED)

    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert isinstance(lifecycle_error(outcome), ConfirmationDenied)
    assert outcome.error == "Command was declined"


async def test_conversation_locks_dropped_once_idle(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    first = pipeline.submit("conv-a", "pwd", working_directory=str(workdir))
    second = pipeline.submit("conv-b", "rm -rf build", working_directory=str(workdir))
    await pipeline.wait_finished(first.request.request_id)
    await pipeline.wait_settled(second.request.request_id)

    pipeline.cleanup_expired()

    assert "conv-a" not in pipeline._conversation_locks
    assert "conv-b" in pipeline._conversation_locks

    pipeline.decide(second.request.request_id, DecisionOutcome.DENIED)
    await pipeline.wait_finished(second.request.request_id)
    pipeline.cleanup_expired()

    assert pipeline._conversation_locks == {}


async def test_audit_failure_after_run_keeps_result(
    pipeline_factory, workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    pipeline = pipeline_factory()

    async def broken_append(**kwargs):
        raise AuditLogError("Failed to append audit entry", context={"operation": "append"})

    monkeypatch.setattr(pipeline.audit, "append", broken_append)

    submitted = pipeline.submit("conv-1", "echo kept", working_directory=str(workdir))
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.result.stdout_text.strip() == "kept"
    assert outcome.error == "Failed to append audit entry"
    assert outcome.audit_sequence is None


class ExplodingExecutor(CommandExecutor):
    async def run(self, request, timeout_seconds=None, argv=None, stdin=None):  # type: ignore[override]
        raise RuntimeError("executor crashed")


async def test_internal_error_before_finish_is_failed_not_cancelled(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    pipeline.executor = ExplodingExecutor()

    submitted = pipeline.submit("conv-1", "pwd", working_directory=str(workdir))
    outcome = await pipeline.wait_finished(submitted.request.request_id)

    assert outcome.state is RequestState.FAILED
    assert outcome.state.is_terminal
    assert outcome.error == "executor crashed"
    assert "failed: executor crashed" in outcome.message_for_model()


async def test_wait_unblocked_returns_when_queued_behind_prompt(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    blocker = pipeline.submit("conv-1", "rm -rf build", working_directory=str(workdir))
    await pipeline.wait_settled(blocker.request.request_id)

    queued = pipeline.submit("conv-1", "pwd", working_directory=str(workdir))
    outcome = await asyncio.wait_for(pipeline.wait_unblocked(queued.request.request_id), timeout=2)

    assert outcome.state is RequestState.QUEUED

    pipeline.decide(blocker.request.request_id, DecisionOutcome.DENIED)
    finished = await pipeline.wait_finished(queued.request.request_id)
    assert finished.state is RequestState.COMPLETED


async def test_wait_unblocked_waits_for_running_predecessor(pipeline_factory, workdir: Path) -> None:
    pipeline = pipeline_factory()
    pipeline.submit("conv-1", "sleep 0.2", working_directory=str(workdir))
    second = pipeline.submit("conv-1", "echo after", working_directory=str(workdir))

    outcome = await asyncio.wait_for(pipeline.wait_unblocked(second.request.request_id), timeout=5)

    assert outcome.state is RequestState.COMPLETED
    assert outcome.result.stdout_text.strip() == "after"
