"""Static catalog of the chat backends this application knows how to use."""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from pathlib import Path

from little_helper.models.credentials import CredentialSource
from little_helper.models.provider import ProviderDescriptor, ProviderKind

CLAUDE_SUBSCRIPTION = "claude_subscription"
CLAUDE_API = "claude_api"
OLLAMA = "ollama"
OPENAI = "openai"
GEMINI = "gemini"

DEFAULT_MODELS = {
    CLAUDE_SUBSCRIPTION: "claude-sonnet-4-5",
    CLAUDE_API: "claude-sonnet-4-5",
    OLLAMA: "llama3.2",
    OPENAI: "gpt-4o-mini",
    GEMINI: "gemini-1.5-flash",
}


def ollama_probe(environ: Mapping[str, str] | None = None) -> bool:
    """True when a local Ollama runtime looks installed or configured."""
    env = environ if environ is not None else os.environ
    if env.get("OLLAMA_BASE_URL") or env.get("OLLAMA_HOST"):
        return True
    return shutil.which("ollama") is not None


class ProviderCatalog:
    """
    Immutable, ranked set of backend descriptors.

    Paths are resolved once from configuration; the descriptors never change
    afterwards.
    """

    def __init__(self, descriptors: list[ProviderDescriptor]):
        ordered = sorted(descriptors, key=lambda d: d.sort_key)
        self._descriptors: tuple[ProviderDescriptor, ...] = tuple(ordered)
        self._by_id = {d.provider_id: d for d in ordered}

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._by_id

    def get(self, provider_id: str) -> ProviderDescriptor | None:
        return self._by_id.get(provider_id)

    def ids(self) -> list[str]:
        return [d.provider_id for d in self._descriptors]


def build_catalog(
    claude_home: Path,
    credentials_path: Path,
    keys_dir: Path,
    default_models: Mapping[str, str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProviderCatalog:
    """Build the catalog for the given credential locations."""
    models = {**DEFAULT_MODELS, **(default_models or {})}

    return ProviderCatalog(
        [
            ProviderDescriptor(
                provider_id=CLAUDE_SUBSCRIPTION,
                label="Claude (subscription sign-in)",
                kind=ProviderKind.SSO,
                icon="sparkles",
                badge="Pro/Max",
                adapter="anthropic",
                default_model=models[CLAUDE_SUBSCRIPTION],
                credential_source=CredentialSource(
                    record_path=claude_home / ".credentials.json",
                    record_key="claudeAiOauth",
                    env_var="CLAUDE_CODE_OAUTH_TOKEN",
                    fallback_path=keys_dir / "claude_subscription",
                ),
            ),
            ProviderDescriptor(
                provider_id=CLAUDE_API,
                label="Claude (API key)",
                kind=ProviderKind.STATIC_KEY,
                icon="key",
                badge="API",
                adapter="anthropic",
                default_model=models[CLAUDE_API],
                credential_source=CredentialSource(
                    record_path=credentials_path,
                    record_key=CLAUDE_API,
                    env_var="ANTHROPIC_API_KEY",
                    fallback_path=keys_dir / "anthropic",
                ),
            ),
            ProviderDescriptor(
                provider_id=OLLAMA,
                label="Local model (Ollama)",
                kind=ProviderKind.LOCAL,
                icon="cpu",
                badge="Local",
                adapter="ollama",
                default_model=models[OLLAMA],
                local_probe=lambda: ollama_probe(environ),
            ),
            ProviderDescriptor(
                provider_id=OPENAI,
                label="OpenAI",
                kind=ProviderKind.OPTIONAL_CLOUD,
                icon="cloud",
                badge="Cloud",
                adapter="openai",
                default_model=models[OPENAI],
                credential_source=CredentialSource(
                    record_path=credentials_path,
                    record_key=OPENAI,
                    env_var="OPENAI_API_KEY",
                    fallback_path=keys_dir / "openai",
                ),
                order=0,
            ),
            ProviderDescriptor(
                provider_id=GEMINI,
                label="Google Gemini",
                kind=ProviderKind.OPTIONAL_CLOUD,
                icon="cloud",
                badge="Cloud",
                adapter="gemini",
                default_model=models[GEMINI],
                credential_source=CredentialSource(
                    record_path=credentials_path,
                    record_key=GEMINI,
                    env_var="GEMINI_API_KEY",
                    fallback_path=keys_dir / "gemini",
                ),
                order=1,
            ),
        ]
    )
