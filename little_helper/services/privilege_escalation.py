"""
Privileged execution through sudo with a one-shot password.

The password lives only in an ElevationSecret: a bytearray that is handed
to sudo's stdin once and then overwritten. It is never logged, never put in
an exception, and never given to the audit logger.

The password is checked on its own (`sudo -v`) and the command then runs
non-interactively (`sudo -n`) with an empty stdin, so a sudo that does not
read the password (NOPASSWD rules, running as root) cannot pass it on to
the command.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import shlex
import shutil

from little_helper.exceptions import ElevationFailed, ElevationFailure
from little_helper.models.command import CommandRequest, ExecutionResult, FailureReason
from little_helper.services.command_classifier import ELEVATION_PROGRAMS
from little_helper.services.executor import SHELL, CommandExecutor

logger = logging.getLogger(__name__)

SUDO_REJECTION_MARKERS = (
    "incorrect password",
    "sorry, try again",
    "no password was provided",
    "a password is required",
    "authentication failure",
)

SCRUBBED = b"[REDACTED]"

_OPTIONS_WITH_VALUES = frozenset({"-u", "-g", "-U", "-h", "-p", "-C", "-D", "-r", "-t"})


class ElevationSecret:
    """
    Single-use holder for an administrator password.

    `consume()` hands out the bytes once; `wipe()` zeroes them. The value
    never appears in repr or str.
    """

    __slots__ = ("_buffer", "_consumed")

    def __init__(self, secret: str | bytes | bytearray):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._buffer = bytearray(secret)
        self._consumed = False

    def __repr__(self) -> str:
        return "ElevationSecret(****)"

    __str__ = __repr__

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> bytearray:
        """
        Return the secret buffer. Only allowed once.

        Raises:
            RuntimeError: The secret was already consumed or wiped
        """
        if self._consumed:
            msg = "Elevation secret was already used"
            raise RuntimeError(msg)
        self._consumed = True
        return self._buffer

    def wipe(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer = bytearray()
        self._consumed = True


def _after_words(text: str, count: int) -> str:
    """The text following its first `count` shell words, quoting and operators untouched."""
    i, n = 0, len(text)
    for _ in range(count):
        while i < n and text[i].isspace():
            i += 1
        quote = None
        while i < n:
            ch = text[i]
            if quote:
                if ch == quote:
                    quote = None
                elif ch == "\\" and quote == '"':
                    i += 1
            elif ch in "'\"":
                quote = ch
            elif ch == "\\":
                i += 1
            elif ch.isspace():
                break
            i += 1
    return text[i:].strip()


def strip_elevation_prefix(command: str) -> str:
    """
    The command text without a leading sudo/doas/pkexec and its options.

    `sudo -u root apt update` becomes `apt update`. The rest of the line is
    cut from the original text, so operators and redirections stay as typed.
    `su -c '<command>'` yields the quoted command.
    """
    try:
        words = shlex.split(command)
    except ValueError:
        return command
    if not words or words[0] not in ELEVATION_PROGRAMS:
        return command

    if words[0] == "su":
        if "-c" in words[:-1]:
            return words[words.index("-c") + 1]
        return command

    i = 1
    while i < len(words) and words[i].startswith("-"):
        if words[i] == "--":
            i += 1
            break
        # options that take a value
        if words[i] in _OPTIONS_WITH_VALUES and i + 1 < len(words):
            i += 1
        i += 1
    if i >= len(words):
        return command
    return _after_words(command, i)


def sudo_rejected(result: ExecutionResult) -> bool:
    """True when sudo itself refused the password."""
    if result.succeeded:
        return False
    stderr = result.stderr_text.lower()
    return any(marker in stderr for marker in SUDO_REJECTION_MARKERS)


def scrub_secret(result: ExecutionResult, secret: bytes | bytearray) -> ExecutionResult:
    """Replace any copy of the secret in captured output."""
    needle = bytes(secret).rstrip(b"\n")
    if not needle or (needle not in result.stdout and needle not in result.stderr):
        return result
    return dataclasses.replace(
        result,
        stdout=result.stdout.replace(needle, SCRUBBED),
        stderr=result.stderr.replace(needle, SCRUBBED),
    )


class PrivilegeEscalation:
    """
    Collects the one-shot secret from the UI and runs the privileged attempt.

    Not retried: a rejected password is reported to the pipeline, which
    records it and stops.
    """

    def __init__(self, executor: CommandExecutor, sudo_path: str | None = None):
        self._executor = executor
        self._sudo_path = sudo_path
        self._prompts: dict[str, asyncio.Future[ElevationSecret | None]] = {}

    @property
    def sudo_path(self) -> str | None:
        return self._sudo_path or shutil.which("sudo")

    def available(self) -> bool:
        return self.sudo_path is not None

    def awaiting(self, request_id: str) -> bool:
        future = self._prompts.get(request_id)
        return future is not None and not future.done()

    def pending_ids(self) -> list[str]:
        return [rid for rid, fut in self._prompts.items() if not fut.done()]

    async def request_secret(self, request: CommandRequest) -> ElevationSecret:
        """
        Suspend until the UI supplies the secret or cancels.

        Raises:
            ElevationFailed: cancelled by the user
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ElevationSecret | None] = loop.create_future()
        self._prompts[request.request_id] = future
        logger.info("Waiting for administrator password", extra={"request_id": request.request_id})
        try:
            secret = await future
        finally:
            self._prompts.pop(request.request_id, None)

        if secret is None:
            raise ElevationFailed(
                "Administrator access was cancelled",
                request.request_id,
                ElevationFailure.CANCELLED,
            )
        return secret

    def provide_secret(self, request_id: str, secret: ElevationSecret) -> bool:
        """Hand the secret to a waiting request. False if nothing is waiting."""
        future = self._prompts.get(request_id)
        if future is None or future.done():
            secret.wipe()
            return False
        future.set_result(secret)
        return True

    def cancel(self, request_id: str) -> bool:
        """Cancel a waiting password prompt. False if nothing is waiting."""
        future = self._prompts.get(request_id)
        if future is None or future.done():
            return False
        future.set_result(None)
        return True

    async def run_elevated(
        self,
        request: CommandRequest,
        secret: ElevationSecret,
        timeout_seconds: float | None = None,
    ) -> ExecutionResult:
        """
        Check the secret with sudo, then run the request's command through it.

        The secret only ever reaches the validating sudo's stdin. It is wiped
        before this returns, whatever the outcome, and sudo's cached
        credentials are dropped again.

        Raises:
            ElevationFailed: sudo is unavailable, or it rejected the secret
                (the attempt's result is attached)
        """
        sudo = self.sudo_path
        if sudo is None:
            secret.wipe()
            raise ElevationFailed(
                "Administrator access is not available on this system",
                request.request_id,
                ElevationFailure.UNAVAILABLE,
            )

        try:
            payload = secret.consume()
            payload.extend(b"\n")
            validation = await self._executor.run(
                request,
                timeout_seconds=timeout_seconds,
                argv=[sudo, "-S", "-p", "", "-v"],
                stdin=payload,
            )
            validation = scrub_secret(validation, payload)
            if validation.failure_reason is FailureReason.SPAWN_FAILED:
                raise ElevationFailed(
                    "Administrator access is not available on this system",
                    request.request_id,
                    ElevationFailure.UNAVAILABLE,
                    result=validation,
                )
            if not validation.succeeded:
                logger.warning(
                    "Administrator password was rejected",
                    extra={"request_id": request.request_id},
                )
                raise ElevationFailed(
                    "The administrator password was not accepted",
                    request.request_id,
                    ElevationFailure.AUTHENTICATION_FAILED,
                    result=validation,
                )

            inner = strip_elevation_prefix(request.command)
            result = await self._executor.run(
                request,
                timeout_seconds=timeout_seconds,
                argv=[sudo, "-n", "--", SHELL, "-c", inner],
            )
            result = scrub_secret(result, payload)
        finally:
            secret.wipe()
            await self._drop_cached_credentials(request, sudo)

        if sudo_rejected(result):
            logger.warning(
                "Administrator access lapsed before the command ran",
                extra={"request_id": request.request_id},
            )
            raise ElevationFailed(
                "The administrator password was not accepted",
                request.request_id,
                ElevationFailure.AUTHENTICATION_FAILED,
                result=result,
            )
        return result

    async def _drop_cached_credentials(self, request: CommandRequest, sudo: str) -> None:
        reset = await self._executor.run(request, timeout_seconds=10, argv=[sudo, "-k"])
        if not reset.succeeded:
            logger.warning(
                "Could not drop cached administrator credentials",
                extra={"request_id": request.request_id, "exit_status": reset.exit_status},
            )
