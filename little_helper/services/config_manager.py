"""
Dynamic configuration manager with file modification detection and graceful fallback.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

if TYPE_CHECKING:
    from little_helper.config import Settings

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Manages application configuration with dynamic reloading.

    Features:
    - Tracks file modification time to detect changes
    - Lazy reloads config before accessing values
    - Maintains fallback config if reload fails
    - Logs all reload events

    The first load must succeed; later failures keep the last valid settings.
    """

    def __init__(self, config_path: str | Path | None = None):
        """
        Initialize ConfigManager.

        Args:
            config_path: Path to config.yaml. If None, uses CONFIG_PATH env var
                         or ~/.config/little-helper/config.yaml
        """
        from little_helper.config import default_config_path

        self.config_path = Path(config_path).expanduser() if config_path else default_config_path()
        self._current_settings: Settings | None = None
        self._last_mtime: float | None = None

        self._load_config()

    def _fail(self, msg: str, error: Exception | None = None) -> None:
        """Raise on the initial load, otherwise log and keep the previous settings."""
        if self._current_settings is None:
            if error is not None:
                raise error
            raise ValueError(msg)
        logger.warning(msg, extra={"path": str(self.config_path)})

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Reads the file before taking its mtime so the recorded mtime is never
        newer than the contents it describes. Only replaces the current
        settings when the new file validates.
        """
        from little_helper.config import build_settings, parse_config_text

        if not self.config_path.exists():
            msg = (
                f"Configuration file not found at {self.config_path}\n"
                f"Use CONFIG_PATH environment variable to override location."
            )
            if self._current_settings is None:
                raise FileNotFoundError(msg)
            logger.warning("Config file missing on reload", extra={"path": str(self.config_path)})
            return

        try:
            config_str = self.config_path.read_text()
            current_mtime = self.config_path.stat().st_mtime
        except OSError as e:
            self._fail(f"Failed to read config file: {e}", e)
            return

        if self._last_mtime is not None and current_mtime == self._last_mtime:
            logger.debug(
                "Config file unchanged, skipping reload", extra={"path": str(self.config_path)}
            )
            return

        try:
            config_dict = parse_config_text(config_str)
        except ValueError as e:
            self._fail(str(e), e)
            return

        try:
            new_settings = build_settings(config_dict)
        except ValidationError as e:
            if self._current_settings is None:
                raise
            logger.warning(
                f"Configuration validation error: {e}",
                extra={"validation_errors": len(e.errors())},
            )
            return

        self._current_settings = new_settings
        self._last_mtime = current_mtime

        logger.info(
            "Configuration loaded successfully",
            extra={"path": str(self.config_path), "mtime": current_mtime},
        )

    def _config_file_changed(self) -> bool:
        """
        Check whether the config file should be reloaded.

        - exists and mtime changed: reload
        - exists and mtime unchanged: keep
        - deleted at runtime: keep last valid config
        """
        try:
            if not self.config_path.exists():
                if self._last_mtime is not None:
                    logger.warning("Config file was deleted", extra={"path": str(self.config_path)})
                return False
            current_mtime = self.config_path.stat().st_mtime
        except OSError:
            return False

        if self._last_mtime is None:
            logger.info("Config file created at runtime", extra={"path": str(self.config_path)})
            return True
        return current_mtime != self._last_mtime

    def get_settings(self) -> Settings:
        """
        Get current settings, reloading if config file has changed.

        Returns the last valid config if a reload fails.
        """
        if self._config_file_changed():
            logger.info(f"Config file modified, reloading from {self.config_path}")
            self._load_config()

        if self._current_settings is None:
            msg = "No valid configuration available"
            raise RuntimeError(msg)

        return self._current_settings

    def reload(self) -> None:
        """Force immediate reload of configuration, keeping the last valid config on failure."""
        logger.info(f"Forcing config reload from {self.config_path}")
        previous_mtime = self._last_mtime
        self._last_mtime = None
        self._load_config()
        if self._last_mtime is None:
            self._last_mtime = previous_mtime
