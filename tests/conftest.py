import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

# Point the settings proxy at a throwaway config BEFORE any little_helper import
_tmp_dir = tempfile.TemporaryDirectory(prefix="pytest_config_")
_config_file = Path(_tmp_dir.name) / "config.yaml"
_config_file.write_text(
    f"""
auth:
  token: test-token-123

storage:
  data_path: {_tmp_dir.name}/data

providers:
  claude_home: {_tmp_dir.name}/claude

commands:
  confirmation_timeout_seconds: 5
  execution_timeout_seconds: 10

logging:
  level: DEBUG
  json: false
"""
)
os.environ["CONFIG_PATH"] = str(_config_file)

from little_helper.models.command import CommandRequest  # noqa: E402
from little_helper.services.audit_log import AuditLogger  # noqa: E402
from little_helper.services.command_classifier import CommandClassifier  # noqa: E402
from little_helper.services.command_pipeline import CommandPipeline  # noqa: E402
from little_helper.services.confirmation_gate import ConfirmationGate  # noqa: E402
from little_helper.services.executor import CommandExecutor  # noqa: E402
from little_helper.services.privilege_escalation import PrivilegeEscalation  # noqa: E402

AUTH_HEADERS = {"Authorization": "Bearer test-token-123"}

FAKE_SUDO = """#!/bin/sh
# `-S -v` checks "hunter2-correct" on stdin and leaves a ticket file,
# `-n -- cmd...` runs cmd only while the ticket exists, `-k` removes it
ticket="$0.ticket"
mode=run
for arg in "$@"; do
    case "$arg" in
        --) break ;;
        -v) mode=validate ;;
        -k) mode=reset ;;
    esac
done
case "$mode" in
    validate)
        read -r password
        if [ "$password" != "hunter2-correct" ]; then
            echo "Sorry, try again." >&2
            echo "sudo: 1 incorrect password attempt" >&2
            exit 1
        fi
        touch "$ticket"
        exit 0 ;;
    reset)
        rm -f "$ticket"
        exit 0 ;;
esac
if [ ! -f "$ticket" ]; then
    echo "sudo: a password is required" >&2
    exit 1
fi
while [ "$1" != "--" ]; do shift; done
shift
exec "$@"
"""

# Never reads stdin, like sudo under a NOPASSWD rule or when already root
NOPASSWD_SUDO = """#!/bin/sh
for arg in "$@"; do
    shift
    if [ "$arg" = "--" ]; then
        exec "$@"
    fi
done
exit 0
"""


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def make_request(workdir: Path):
    """Factory for CommandRequests rooted in a temporary working directory."""

    def _make(command: str, conversation_id: str = "conv-1", rationale: str = "") -> CommandRequest:
        return CommandRequest(
            conversation_id=conversation_id,
            command=command,
            working_directory=str(workdir),
            rationale=rationale,
        )

    return _make


@pytest.fixture
def fake_sudo(tmp_path: Path) -> str:
    """Path to a sudo stand-in script that checks a fixed password."""
    path = tmp_path / "bin" / "sudo"
    path.parent.mkdir()
    path.write_text(FAKE_SUDO)
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def nopasswd_sudo(tmp_path: Path) -> str:
    """Path to a sudo stand-in that runs commands without reading a password."""
    path = tmp_path / "nopasswd" / "sudo"
    path.parent.mkdir()
    path.write_text(NOPASSWD_SUDO)
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def audit_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "audit.jsonl"


@pytest.fixture
def executor() -> CommandExecutor:
    return CommandExecutor(timeout_seconds=10, kill_grace_seconds=0.5)


@pytest.fixture
def pipeline_factory(audit_path: Path, executor: CommandExecutor):
    """Build a CommandPipeline with real components and a chosen sudo path."""

    def _build(
        sudo_path: str | None = None,
        confirmation_timeout: float = 5.0,
        elevate_on_permission_denied: bool = True,
    ) -> CommandPipeline:
        escalation = PrivilegeEscalation(executor, sudo_path=sudo_path)
        if sudo_path is None:
            escalation.available = lambda: False  # type: ignore[method-assign]
        return CommandPipeline(
            classifier=CommandClassifier(),
            gate=ConfirmationGate(timeout_seconds=confirmation_timeout),
            escalation=escalation,
            executor=executor,
            audit=AuditLogger(audit_path),
            elevate_on_permission_denied=elevate_on_permission_denied,
        )

    return _build


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove credential environment variables that would leak into detection."""
    for var in (
        "CLAUDE_CODE_OAUTH_TOKEN",
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "OLLAMA_BASE_URL",
        "OLLAMA_HOST",
    ):
        monkeypatch.delenv(var, raising=False)
    yield
