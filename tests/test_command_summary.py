"""Tests for human-readable command result summaries."""

from __future__ import annotations

import pytest

from little_helper.models.command import ExecutionResult, FailureReason
from little_helper.utils.command_summary import summarize_result


def result(command: str, stdout: str = "", stderr: str = "", exit_status: int | None = 0, **kwargs) -> ExecutionResult:
    return ExecutionResult(
        command=command,
        stdout=stdout.encode(),
        stderr=stderr.encode(),
        exit_status=exit_status,
        duration_ms=kwargs.pop("duration_ms", 12),
        **kwargs,
    )


@pytest.mark.parametrize(
    ("res", "expected"),
    [
        (result("ls -la", "a\nb\nc\n"), "Found 3 items (12ms)"),
        (result("grep foo notes.txt", ""), "No matches found"),
        (result("grep foo notes.txt", "foo\nfoo bar\n"), "Found 2 matches (12ms)"),
        (result("cat notes.txt", "one\ntwo\n"), "Displayed 2 lines (12ms)"),
        (result("mkdir reports"), "Directory created"),
        (result("cp a b"), "File operation complete"),
        (result("rm old.txt"), "Deleted successfully"),
        (result("git status", "nothing to commit, working tree clean"), "Working tree clean"),
        (result("git status", "modified: a.txt"), "Changes detected"),
        (result("sudo -n ls /root", "x\n"), "Found 1 items (12ms)"),
        (result("uptime", "up 3 days"), "Complete (12ms)"),
    ],
)
def test_successful_summaries(res: ExecutionResult, expected: str) -> None:
    assert summarize_result(res) == expected


@pytest.mark.parametrize(
    ("res", "expected"),
    [
        (result("foo", stderr="sh: foo: command not found", exit_status=127), "'foo' is not installed"),
        (result("cat nope", stderr="cat: nope: No such file or directory", exit_status=1), "File or directory not found"),
        (result("cat /etc/shadow", stderr="Permission denied", exit_status=1), "Permission denied - may need admin access"),
        (result("false", exit_status=1), "Command failed (12ms)"),
    ],
)
def test_failure_summaries(res: ExecutionResult, expected: str) -> None:
    assert summarize_result(res) == expected


def test_timeout_and_spawn_failure() -> None:
    timed_out = result("sleep 99", exit_status=None, failure_reason=FailureReason.TIMED_OUT, duration_ms=2500)
    spawn = result(
        "ls", exit_status=None, failure_reason=FailureReason.SPAWN_FAILED, failure_detail="No such directory"
    )

    assert summarize_result(timed_out) == "Timed out after 2.5s"
    assert summarize_result(spawn) == "Could not start command: No such directory"
