"""Append-only JSON Lines audit log of command decisions and outcomes."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from little_helper.exceptions import AuditLogError
from little_helper.models.command import (
    AuditEntry,
    Classification,
    CommandRequest,
    ElevationOutcome,
    ExecutionDecision,
    ExecutionResult,
)
from little_helper.utils.error_handling import log_errors
from little_helper.utils.redaction import redact_dict

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Durable, gap-free audit trail.

    Sequence numbers are assigned under a lock and each entry is written
    with a single write followed by flush and fsync before the call returns.
    On start the logger resumes after the last readable sequence number.
    """

    def __init__(self, path: Path):
        """
        Args:
            path: Location of the audit.jsonl file (created on first append)
        """
        self.path = path
        self._lock = asyncio.Lock()
        self._last_sequence, self._needs_newline = self._scan()

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def _scan(self) -> tuple[int, bool]:
        """Last readable sequence number, and whether the file ends mid-line."""
        if not self.path.exists():
            return 0, False
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise AuditLogError(
                "Failed to read audit log",
                context={"operation": "scan", "path": str(self.path), "error": str(e)},
            ) from e

        last = 0
        for line in raw.splitlines():
            try:
                sequence = json.loads(line).get("sequence")
            except (ValueError, AttributeError):
                logger.warning("Skipping unreadable audit line", extra={"path": str(self.path)})
                continue
            if isinstance(sequence, int) and sequence > last:
                last = sequence

        needs_newline = bool(raw) and not raw.endswith(b"\n")
        logger.info(
            "Audit log opened",
            extra={"path": str(self.path), "last_sequence": last},
        )
        return last, needs_newline

    @log_errors("audit_append")
    async def append(
        self,
        request: CommandRequest,
        classification: Classification,
        prompt: str,
        decision: ExecutionDecision,
        elevation: ElevationOutcome = ElevationOutcome.NOT_REQUIRED,
        result: ExecutionResult | None = None,
        prior_result: ExecutionResult | None = None,
    ) -> AuditEntry:
        """
        Record one command's final outcome.

        Raises:
            AuditLogError: The entry could not be made durable
        """
        async with self._lock:
            entry = AuditEntry(
                sequence=self._last_sequence + 1,
                request=request,
                danger_level=classification.level,
                rule=classification.rule,
                classification_default=classification.is_default,
                prompt=prompt,
                decision=decision,
                elevation=elevation,
                result=result.to_record() if result else None,
                prior_result=prior_result.to_record() if prior_result else None,
            )
            line = json.dumps(redact_dict(entry.model_dump(mode="json")), separators=(",", ":"))
            if self._needs_newline:
                line = "\n" + line
            await asyncio.to_thread(self._write_durably, line + "\n")
            self._needs_newline = False
            self._last_sequence = entry.sequence

        logger.info(
            "Audit entry recorded",
            extra={
                "sequence": entry.sequence,
                "request_id": request.request_id,
                "outcome": decision.outcome.value,
            },
        )
        return entry

    def _write_durably(self, data: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            try:
                with os.fdopen(fd, "w", encoding="utf-8", closefd=False) as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
            finally:
                os.close(fd)
        except OSError as e:
            raise AuditLogError(
                "Failed to append audit entry",
                context={"operation": "append", "path": str(self.path), "error": str(e)},
            ) from e

    def read(self, after_sequence: int = 0, limit: int = 100) -> list[AuditEntry]:
        """Entries with sequence greater than `after_sequence`, oldest first."""
        if not self.path.exists():
            return []
        entries: list[AuditEntry] = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = AuditEntry.model_validate_json(line)
                except ValidationError:
                    logger.warning("Skipping unreadable audit line", extra={"path": str(self.path)})
                    continue
                if entry.sequence > after_sequence:
                    entries.append(entry)
                    if len(entries) >= limit:
                        break
        return entries

    def writable(self) -> bool:
        """True when the audit directory exists (or can be created) and is writable."""
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        if self.path.exists():
            return os.access(self.path, os.W_OK)
        return os.access(directory, os.W_OK)
