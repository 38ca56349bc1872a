"""Utilities for turning command output into short, readable summaries."""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from little_helper.models.command import ExecutionResult

LISTING_PROGRAMS = {"ls", "find", "tree", "du"}
SEARCH_PROGRAMS = {"grep", "rg", "ag"}
DISPLAY_PROGRAMS = {"cat", "head", "tail", "less"}
FILE_OP_PROGRAMS = {"cp", "mv", "ln"}
DELETE_PROGRAMS = {"rm", "rmdir"}


def _program_and_words(command: str) -> tuple[str, list[str]]:
    try:
        words = shlex.split(command)
    except ValueError:
        words = command.split()
    if not words:
        return command.strip(), []
    # Summaries describe what ran, not how it was elevated.
    if words[0] in {"sudo", "doas"} and len(words) > 1:
        words = words[1:]
        while len(words) > 1 and words[0].startswith("-"):
            words = words[1:]
    return words[0], words


def _count_lines(text: str) -> int:
    return len([line for line in text.splitlines() if line.strip()])


def summarize_failure(program: str, stderr: str, duration_ms: int) -> str:
    if "command not found" in stderr:
        return f"'{program}' is not installed"
    if "No such file" in stderr:
        return "File or directory not found"
    if "Permission denied" in stderr or "Operation not permitted" in stderr:
        return "Permission denied - may need admin access"
    return f"Command failed ({duration_ms}ms)"


def summarize_result(result: ExecutionResult) -> str:
    """Summarize what a finished command did, for the chat transcript."""
    program, words = _program_and_words(result.command)
    duration_ms = result.duration_ms

    if result.timed_out:
        return f"Timed out after {duration_ms / 1000:.1f}s"
    if result.failure_reason is not None:
        return f"Could not start command: {result.failure_detail or result.failure_reason.value}"
    if not result.succeeded:
        return summarize_failure(program, result.stderr_text, duration_ms)

    stdout = result.stdout_text
    if program in LISTING_PROGRAMS:
        return f"Found {_count_lines(stdout)} items ({duration_ms}ms)"
    if program in SEARCH_PROGRAMS:
        matches = _count_lines(stdout)
        if matches == 0:
            return "No matches found"
        return f"Found {matches} matches ({duration_ms}ms)"
    if program in DISPLAY_PROGRAMS:
        return f"Displayed {_count_lines(stdout)} lines ({duration_ms}ms)"
    if program in FILE_OP_PROGRAMS:
        return "File operation complete"
    if program == "mkdir":
        return "Directory created"
    if program in DELETE_PROGRAMS:
        return "Deleted successfully"
    if program == "git" and len(words) > 1:
        subcommand = words[1]
        if subcommand == "status":
            return "Working tree clean" if "nothing to commit" in stdout else "Changes detected"
        if subcommand == "commit":
            return "Committed successfully"
        if subcommand == "push":
            return "Pushed to remote"
        return f"Git operation complete ({duration_ms}ms)"
    return f"Complete ({duration_ms}ms)"
