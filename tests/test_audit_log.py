"""Tests for the append-only audit log."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from little_helper.exceptions import AuditLogError
from little_helper.models.command import (
    DecisionActor,
    DecisionOutcome,
    ExecutionDecision,
    ExecutionResult,
)
from little_helper.services.audit_log import AuditLogger
from little_helper.services.command_classifier import explain
from little_helper.services.confirmation_gate import describe_request


def approved() -> ExecutionDecision:
    return ExecutionDecision(outcome=DecisionOutcome.APPROVED, actor=DecisionActor.AUTOMATIC)


async def append(audit: AuditLogger, request, decision=None, result=None):
    classification = explain(request.command)
    return await audit.append(
        request=request,
        classification=classification,
        prompt=describe_request(request, classification),
        decision=decision or approved(),
        result=result,
    )


def read_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


async def test_append_writes_one_line(audit_path: Path, make_request) -> None:
    audit = AuditLogger(audit_path)
    request = make_request("ls")
    result = ExecutionResult(command="ls", stdout=b"a\nb\n", stderr=b"", exit_status=0, duration_ms=4)

    entry = await append(audit, request, result=result)

    assert entry.sequence == 1
    lines = read_lines(audit_path)
    assert len(lines) == 1
    assert lines[0]["request"]["request_id"] == request.request_id
    assert lines[0]["danger_level"] == "safe"
    assert lines[0]["rule"] == "ls"
    assert lines[0]["decision"]["outcome"] == "approved"
    assert lines[0]["result"]["stdout"] == "a\nb\n"
    assert audit_path.stat().st_mode & 0o777 == 0o600


async def test_concurrent_appends_are_gap_free(audit_path: Path, make_request) -> None:
    audit = AuditLogger(audit_path)

    entries = await asyncio.gather(
        *(append(audit, make_request(f"echo {i}", conversation_id=f"c{i % 3}")) for i in range(50))
    )

    assert sorted(e.sequence for e in entries) == list(range(1, 51))
    assert [line["sequence"] for line in read_lines(audit_path)] == list(range(1, 51))


async def test_resumes_sequence_after_reopen(audit_path: Path, make_request) -> None:
    first = AuditLogger(audit_path)
    await append(first, make_request("ls"))
    await append(first, make_request("pwd"))

    reopened = AuditLogger(audit_path)
    entry = await append(reopened, make_request("date"))

    assert reopened.last_sequence == 3
    assert entry.sequence == 3


async def test_torn_final_line_is_skipped(audit_path: Path, make_request) -> None:
    audit = AuditLogger(audit_path)
    await append(audit, make_request("ls"))
    with audit_path.open("a") as f:
        f.write('{"sequence": 2, "request": {"comm')

    reopened = AuditLogger(audit_path)
    entry = await append(reopened, make_request("pwd"))

    assert entry.sequence == 2
    assert [e.sequence for e in reopened.read()] == [1, 2]


async def test_read_pages(audit_path: Path, make_request) -> None:
    audit = AuditLogger(audit_path)
    for i in range(5):
        await append(audit, make_request(f"echo {i}"))

    page = audit.read(after_sequence=2, limit=2)

    assert [e.sequence for e in page] == [3, 4]
    assert AuditLogger(audit_path.parent / "missing.jsonl").read() == []


async def test_denied_entry_has_no_result(audit_path: Path, make_request) -> None:
    audit = AuditLogger(audit_path)
    decision = ExecutionDecision(outcome=DecisionOutcome.DENIED, actor=DecisionActor.USER)

    entry = await append(audit, make_request("sudo apt update"), decision=decision)

    assert entry.result is None
    assert read_lines(audit_path)[0]["result"] is None
    assert read_lines(audit_path)[0]["decision"]["outcome"] == "denied"


async def test_secrets_in_output_are_redacted(audit_path: Path, make_request) -> None:
    audit = AuditLogger(audit_path)
    key = "sk-ant-api03-" + "A" * 40
    result = ExecutionResult(
        command="printenv", stdout=f"ANTHROPIC_API_KEY={key}\n".encode(), stderr=b"", exit_status=0, duration_ms=1
    )

    await append(audit, make_request("printenv"), result=result)

    assert key not in audit_path.read_text()


async def test_unwritable_location_raises(tmp_path: Path, make_request) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    audit = AuditLogger(blocker / "audit.jsonl")

    assert not audit.writable()
    with pytest.raises(AuditLogError):
        await append(audit, make_request("ls"))
    assert audit.last_sequence == 0
