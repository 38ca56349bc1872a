from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.config/little-helper/config.yaml"
DEFAULT_DATA_PATH = "~/.local/share/little-helper"


def default_config_path() -> Path:
    """Config file location from CONFIG_PATH, falling back to the per-user default."""
    return Path(os.environ.get("CONFIG_PATH", DEFAULT_CONFIG_PATH)).expanduser()


def expand_env_vars(config_str: str) -> str:
    """
    Expand environment variables in the format ${VAR_NAME} within a YAML string.
    Skips expansion in YAML comments (lines starting with #).

    Args:
        config_str: YAML configuration string potentially containing ${VAR_NAME} placeholders

    Returns:
        YAML string with all ${VAR_NAME} placeholders expanded to environment variable values

    Raises:
        KeyError: If a referenced environment variable is not set
    """
    def replace_var(match: re.Match[str]) -> str:
        var_name = match.group(1)
        try:
            return os.environ[var_name]
        except KeyError:
            msg = f"Environment variable '{var_name}' referenced in config.yaml but not set"
            raise KeyError(msg) from None

    lines = []
    for line in config_str.split("\n"):
        stripped = line.lstrip()
        if stripped.startswith("#"):
            lines.append(line)
        else:
            lines.append(re.sub(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}", replace_var, line))

    return "\n".join(lines)


def parse_config_text(config_str: str) -> dict[str, Any]:
    """
    Expand environment variables and parse YAML text into a mapping.

    Raises:
        ValueError: If an environment variable is missing or the YAML is invalid
    """
    try:
        expanded_config = expand_env_vars(config_str)
    except KeyError as e:
        msg = f"Error expanding environment variables in config.yaml: {e}"
        raise ValueError(msg) from None

    try:
        config_dict = yaml.safe_load(expanded_config)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in config.yaml: {e}"
        raise ValueError(msg) from None

    if not isinstance(config_dict, dict):
        msg = "config.yaml must contain a YAML mapping/dictionary at root level"
        raise ValueError(msg)

    return config_dict


def load_config_from_yaml(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load YAML configuration file and expand environment variables.

    Args:
        config_path: Path to config.yaml. If None, uses CONFIG_PATH environment variable
                     or ~/.config/little-helper/config.yaml.

    Raises:
        FileNotFoundError: If config file is not found
        ValueError: If YAML is invalid or a referenced environment variable is not set
    """
    config_file = Path(config_path).expanduser() if config_path else default_config_path()
    if not config_file.exists():
        msg = (
            f"Configuration file not found at {config_file}\n"
            f"Use CONFIG_PATH environment variable to override location."
        )
        raise FileNotFoundError(msg)

    return parse_config_text(config_file.read_text())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
    )

    # Security
    auth_token: str  # Required; presented by the desktop UI as a bearer token

    # Storage
    data_path: str = DEFAULT_DATA_PATH

    # Providers
    claude_home: str = "~/.claude"
    credentials_file: str | None = None  # defaults to <data_path>/credentials.json
    keys_dir: str | None = None  # defaults to <data_path>/keys
    ollama_base_url: str = "http://127.0.0.1:11434"
    provider_timeout_seconds: float = Field(
        default=120.0,
        description="Timeout for chat backend HTTP calls",
    )
    default_models: dict[str, str] = Field(default_factory=dict)

    # Commands
    confirmation_timeout_seconds: float = Field(
        default=120.0,
        description="How long a needs-confirmation prompt waits before it is cancelled",
    )
    execution_timeout_seconds: float = Field(
        default=60.0,
        description="Wall-clock limit for one command",
    )
    kill_grace_seconds: float = 1.0
    max_output_bytes: int = 1024 * 1024
    default_working_directory: str | None = None
    elevate_on_permission_denied: bool = True
    max_agent_iterations: int = 5

    # Observability
    log_level: str = "INFO"
    log_json: bool = True

    # Server
    host: str = "127.0.0.1"
    port: int = 8765
    cors_allowed_origins: list[str] = Field(default_factory=list)

    @field_validator("auth_token")
    @classmethod
    def validate_auth_token(cls, v: str) -> str:
        if not v or not v.strip():
            msg = "auth.token must be a non-empty string"
            raise ValueError(msg)
        return v

    @field_validator("confirmation_timeout_seconds", "execution_timeout_seconds")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        if v <= 0:
            msg = "timeouts must be positive"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level

    @property
    def data_dir(self) -> Path:
        return Path(self.data_path).expanduser()

    @property
    def audit_log_path(self) -> Path:
        return self.data_dir / "audit.jsonl"

    @property
    def credentials_path(self) -> Path:
        if self.credentials_file:
            return Path(self.credentials_file).expanduser()
        return self.data_dir / "credentials.json"

    @property
    def keys_path(self) -> Path:
        if self.keys_dir:
            return Path(self.keys_dir).expanduser()
        return self.data_dir / "keys"

    @property
    def claude_home_path(self) -> Path:
        return Path(self.claude_home).expanduser()


def _section(config_dict: dict[str, Any], name: str) -> dict[str, Any]:
    value = config_dict.get(name)
    return value if isinstance(value, dict) else {}


def flatten_config(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested YAML structure to Settings field format."""
    flat_config: dict[str, Any] = {}

    auth = _section(config_dict, "auth")
    if "token" in auth:
        flat_config["auth_token"] = auth["token"]

    storage = _section(config_dict, "storage")
    if "data_path" in storage:
        flat_config["data_path"] = storage["data_path"]

    providers = _section(config_dict, "providers")
    for yaml_key, field_name in (
        ("claude_home", "claude_home"),
        ("credentials_file", "credentials_file"),
        ("keys_dir", "keys_dir"),
        ("ollama_base_url", "ollama_base_url"),
        ("request_timeout_seconds", "provider_timeout_seconds"),
        ("default_models", "default_models"),
    ):
        if yaml_key in providers:
            flat_config[field_name] = providers[yaml_key]

    commands = _section(config_dict, "commands")
    for key in (
        "confirmation_timeout_seconds",
        "execution_timeout_seconds",
        "kill_grace_seconds",
        "max_output_bytes",
        "default_working_directory",
        "elevate_on_permission_denied",
        "max_agent_iterations",
    ):
        if key in commands:
            flat_config[key] = commands[key]

    logging_section = _section(config_dict, "logging")
    if "level" in logging_section:
        flat_config["log_level"] = logging_section["level"]
    if "json" in logging_section:
        flat_config["log_json"] = logging_section["json"]

    server = _section(config_dict, "server")
    if "host" in server:
        flat_config["host"] = server["host"]
    if "cors_allowed_origins" in server:
        flat_config["cors_allowed_origins"] = server["cors_allowed_origins"]
    if "port" in server:
        flat_config["port"] = server["port"]

    return flat_config


def build_settings(config_dict: dict[str, Any]) -> Settings:
    """Create a Settings object from a parsed config.yaml mapping."""
    return Settings(**flatten_config(config_dict))


from little_helper.services.config_manager import ConfigManager  # noqa: E402


class _SettingsProxy:
    """
    Proxy to Settings that enables dynamic reloading.

    Checks for file changes on every attribute access and reloads if
    necessary, while letting code read `settings.<field>` directly.
    """

    def __init__(self, config_manager: ConfigManager | None = None):
        object.__setattr__(self, "_config_manager", config_manager)

    def _manager(self) -> ConfigManager:
        manager = object.__getattribute__(self, "_config_manager")
        if manager is None:
            manager = ConfigManager()
            object.__setattr__(self, "_config_manager", manager)
        return manager

    def __getattr__(self, name: str) -> object:
        current_settings = self._manager().get_settings()
        return getattr(current_settings, name)

    def __setattr__(self, name: str, value: object) -> None:
        msg = "Settings are read-only; use ConfigManager.reload() to reload from disk"
        raise AttributeError(msg)


settings: Settings = _SettingsProxy()  # type: ignore[assignment]


def get_config_manager() -> ConfigManager:
    """Get the global ConfigManager instance for explicit reloads."""
    return settings._manager()  # type: ignore[attr-defined]
