"""Parse proposed shell commands out of assistant replies."""

from __future__ import annotations

import re

COMMAND_TAG_RE = re.compile(r"<command>(.*?)</command>", re.DOTALL)
RUN_BLOCK_RE = re.compile(r"\[RUN\][^`]*?```(?:bash|sh|shell|zsh)?[ \t]*\n(.*?)```", re.DOTALL)
EXECUTE_RE = re.compile(r"\[EXECUTE\]\s*`([^`]+)`")

_ACTION_TAG_RES = (
    re.compile(r"<command>.*?</command>", re.DOTALL),
    re.compile(r"<preview>.*?</preview>", re.DOTALL),
    re.compile(r"<search>.*?</search>", re.DOTALL),
)

AGENT_SYSTEM_PROMPT = """You are Little Helper, a friendly assistant that can run commands on the user's computer.

## How to Run Commands
When you need to run a command, use one of these formats:

1. Command tags (preferred):
   <command>ls -la</command>

2. Code blocks with a [RUN] marker:
   [RUN]
   ```bash
   ls -la
   ```

3. Inline with an [EXECUTE] marker:
   [EXECUTE] `git status`

Read-only commands run automatically. Anything that changes files or the
system waits for the user to confirm, and commands needing administrator
access ask the user for their password.

## Safety Rules
- Never run destructive commands without explicit user confirmation
- Never access sensitive files without permission
- If a command fails because of permissions, explain what happened

## Response Style
- Be conversational and helpful
- Explain what commands do before running them
- Summarize results in plain English
"""


def extract_commands(response: str) -> list[str]:
    """
    Commands proposed in an assistant reply, in the order they appear.

    Duplicates proposed in more than one format are kept once.
    """
    found: list[tuple[int, str]] = []

    for match in COMMAND_TAG_RE.finditer(response):
        command = match.group(1).strip()
        if command:
            found.append((match.start(), command))

    for match in RUN_BLOCK_RE.finditer(response):
        offset = match.start(1)
        for line in match.group(1).splitlines():
            command = line.strip()
            if command and not command.startswith("#"):
                found.append((offset, command))
            offset += len(line) + 1

    for match in EXECUTE_RE.finditer(response):
        command = match.group(1).strip()
        if command:
            found.append((match.start(), command))

    found.sort(key=lambda item: item[0])
    commands: list[str] = []
    for _, command in found:
        if command not in commands:
            commands.append(command)
    return commands


def clean_response(response: str) -> str:
    """Assistant text with action tags removed, for display."""
    cleaned = response
    for pattern in _ACTION_TAG_RES:
        cleaned = pattern.sub("", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()
