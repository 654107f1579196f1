"""Merging of configuration layers into a validated :class:`NasdriveConfig`."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import NasdriveConfig

ENV_PREFIX = "NASDRIVE__"
LEGACY_ROOT_ENV = "NAS_ROOT_DIR"


def resolve_with_precedence(
    *,
    defaults: NasdriveConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> NasdriveConfig:
    """Layer overrides onto ``defaults``; later layers win (file, env, CLI).

    Override keys may be nested mappings or dotted paths such as
    ``"upload.concurrency"``.

    Raises:
        ConfigError: If a layer is malformed or the result fails validation.
    """
    layers = (("file", file_overrides), ("environment", env_overrides), ("cli", cli_overrides))
    merged = defaults.model_dump(mode="python")
    for label, layer in layers:
        if layer is not None:
            merged = _deep_merge(merged, _expand(layer, label))

    try:
        return NasdriveConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def env_overrides_from(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``NASDRIVE__SECTION__KEY`` variables as dotted overrides.

    Values are parsed as YAML scalars so ``"5"`` becomes an integer. The
    legacy ``NAS_ROOT_DIR`` variable maps to ``storage.root`` unless the
    prefixed form is also set.
    """
    overrides: dict[str, Any] = {}
    if env.get(LEGACY_ROOT_ENV):
        overrides["storage.root"] = env[LEGACY_ROOT_ENV]

    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        try:
            overrides[".".join(segments)] = yaml.safe_load(raw)
        except yaml.YAMLError:
            overrides[".".join(segments)] = raw
    return overrides


def _expand(layer: Mapping[str, Any], label: str) -> dict[str, Any]:
    if not isinstance(layer, MappingABC):
        raise ConfigError(f"{label.capitalize()} overrides must be a mapping.")

    expanded: dict[str, Any] = {}
    for key, value in layer.items():
        if not isinstance(key, str):
            raise ConfigError(f"{label.capitalize()} override keys must be strings.")
        *parents, leaf = key.split(".")
        node = expanded
        for parent in parents:
            child = node.setdefault(parent, {})
            if not isinstance(child, dict):
                raise ConfigError(f"{label.capitalize()} override {key} conflicts with {parent}.")
            node = child
        if isinstance(value, MappingABC):
            existing = node.get(leaf)
            base = existing if isinstance(existing, dict) else {}
            value = _deep_merge(base, _expand(value, label))
        node[leaf] = value
    return expanded


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "resolve_with_precedence",
    "env_overrides_from",
    "ENV_PREFIX",
    "LEGACY_ROOT_ENV",
]
