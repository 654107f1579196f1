"""Configuration loading for nasdrive.

Settings come from four layers, lowest first: model defaults, the YAML file at
``~/.nasdrive/config.yaml``, ``NASDRIVE__SECTION__KEY`` environment variables,
and explicit CLI overrides.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import NasdriveConfig
from .resolver import (
    LEGACY_ROOT_ENV,
    env_overrides_from,
    resolve_with_precedence,
)

DEFAULT_CONFIG_PATH = Path("~/.nasdrive/config.yaml")
_HEADER_LINES = (
    "# nasdrive configuration file",
    "# Edit by hand or with `nasdrive config set KEY --value VALUE`.",
)


def _render(data: Mapping[str, Any]) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    header = "\n".join((*_HEADER_LINES, f"# Last updated: {stamp}"))
    return f"{header}\n{yaml.safe_dump(dict(data), sort_keys=False)}"


class ConfigManager:
    """Read, layer and persist the nasdrive configuration file."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config_path: YAML file location; defaults to ``~/.nasdrive/config.yaml``.
            env: Environment mapping consulted by :meth:`load`; defaults to
                ``os.environ``.
        """
        self._path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = os.environ if env is None else env

    @property
    def config_path(self) -> Path:
        return self._path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        env_overrides: Mapping[str, str] | None = None,
        ensure_file: bool = False,
    ) -> NasdriveConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Highest-priority overrides, nested or dotted keys.
            include_env: Whether environment variables participate.
            env_overrides: Environment mapping used instead of the manager's.
            ensure_file: Write a default file first when none exists.

        Raises:
            ConfigError: If the file is not a YAML mapping or a value is invalid.
        """
        if ensure_file:
            self.ensure_exists()

        env_layer = None
        if include_env:
            env_layer = env_overrides_from(self._env if env_overrides is None else env_overrides)

        return resolve_with_precedence(
            defaults=NasdriveConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=env_layer or None,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the mapping stored in the config file (empty when absent)."""
        text = self.read_text()
        if not text:
            return {}
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {self._path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self._path} must contain a mapping at the top level.")
        return data

    def save(self, config: NasdriveConfig | Mapping[str, Any]) -> None:
        """Write ``config`` to the file, replacing its contents."""
        if isinstance(config, NasdriveConfig):
            config = config.model_dump(mode="python")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(_render(config), encoding="utf-8")

    def ensure_exists(self) -> Path:
        """Write the default configuration unless a file is already present."""
        if not self._path.exists():
            self.save(NasdriveConfig())
        return self._path

    def read_text(self) -> str:
        if not self._path.exists():
            return ""
        return self._path.read_text(encoding="utf-8")


__all__ = [
    "ConfigManager",
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "LEGACY_ROOT_ENV",
    "NasdriveConfig",
    "env_overrides_from",
    "resolve_with_precedence",
]
