"""
Read-only access to backend credentials.

Lookup order per backend is the structured record file, then the
environment variable, then the plain-text fallback file. The first source
that holds a candidate wins; a candidate that fails to parse is reported
immediately rather than skipped.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from little_helper.exceptions import CredentialMalformed, CredentialNotFound
from little_helper.models.credentials import (
    CREDENTIAL_SCHEMA_VERSION,
    Credential,
    CredentialOrigin,
    CredentialRecord,
    CredentialSource,
)

logger = logging.getLogger(__name__)

_MISSING = object()


class CredentialStore:
    """Loads credentials from disk and the environment. Never writes."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        """
        Args:
            environ: Environment to read variables from (defaults to os.environ)
        """
        self._environ = environ if environ is not None else os.environ

    def load(self, provider_id: str, source: CredentialSource) -> Credential:
        """
        Return the first credential found for a backend.

        Raises:
            CredentialMalformed: A candidate exists but cannot be parsed
            CredentialNotFound: No source holds a candidate
        """
        if source.record_path is not None and source.record_key:
            record = self._read_record(provider_id, source.record_path, source.record_key)
            if record is not None:
                return record

        if source.env_var:
            value = self._environ.get(source.env_var, "").strip()
            if value:
                logger.debug(
                    "Credential found in environment",
                    extra={"provider_id": provider_id, "env_var": source.env_var},
                )
                return Credential(
                    provider_id=provider_id,
                    access_secret=value,
                    origin=CredentialOrigin.ENVIRONMENT,
                    source=f"env:{source.env_var}",
                )

        if source.fallback_path is not None:
            fallback = self._read_fallback(provider_id, source.fallback_path)
            if fallback is not None:
                return fallback

        raise CredentialNotFound(
            "No credential configured",
            provider_id=provider_id,
            context={"sources": source.describe()},
        )

    def _read_record(self, provider_id: str, path: Path, key: str) -> Credential | None:
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CredentialMalformed(
                f"Credential file is unreadable: {e.strerror}",
                provider_id=provider_id,
                context={"source": str(path)},
            ) from e

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CredentialMalformed(
                "Credential file is not valid JSON",
                provider_id=provider_id,
                context={"source": str(path), "line": e.lineno},
            ) from e

        entry = self._select_entry(provider_id, path, document, key)
        if entry is _MISSING:
            return None
        if not isinstance(entry, dict):
            raise CredentialMalformed(
                "Credential record is not an object",
                provider_id=provider_id,
                context={"source": f"{path}#{key}"},
            )

        try:
            record = CredentialRecord.model_validate(entry)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise CredentialMalformed(
                "Credential record is missing or has invalid fields",
                provider_id=provider_id,
                context={"source": f"{path}#{key}", "fields": fields},
            ) from None

        logger.debug(
            "Credential found in record",
            extra={"provider_id": provider_id, "source": f"{path}#{key}"},
        )
        return record.to_credential(provider_id, source=f"file:{path}#{key}")

    @staticmethod
    def _select_entry(provider_id: str, path: Path, document: Any, key: str) -> Any:
        """Pick one backend's record from either supported file layout."""
        if not isinstance(document, dict):
            raise CredentialMalformed(
                "Credential file must contain a JSON object",
                provider_id=provider_id,
                context={"source": str(path)},
            )

        backends = document.get("backends")
        if isinstance(backends, dict):
            version = document.get("schema_version")
            if version != CREDENTIAL_SCHEMA_VERSION:
                raise CredentialMalformed(
                    f"Unsupported credential file schema version {version!r}",
                    provider_id=provider_id,
                    context={"source": str(path)},
                )
            return backends.get(key, _MISSING)
        return document.get(key, _MISSING)

    @staticmethod
    def _read_fallback(provider_id: str, path: Path) -> Credential | None:
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CredentialMalformed(
                f"Key file is unreadable: {e.strerror}",
                provider_id=provider_id,
                context={"source": str(path)},
            ) from e

        secret = raw.strip()
        if not secret or any(ch.isspace() for ch in secret):
            raise CredentialMalformed(
                "Key file must contain exactly one secret",
                provider_id=provider_id,
                context={"source": str(path)},
            )

        logger.debug(
            "Credential found in key file",
            extra={"provider_id": provider_id, "source": str(path)},
        )
        return Credential(
            provider_id=provider_id,
            access_secret=secret,
            origin=CredentialOrigin.FALLBACK_FILE,
            source=f"file:{path}",
        )
