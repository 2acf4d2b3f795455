"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from infra_provisioner.config.schema import Config
from infra_provisioner.config.variables import UndefinedVariableError, substitute_variables
from infra_provisioner.errors import LoadError

logger = logging.getLogger(__name__)


class ConfigError(LoadError):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_SETTINGS_ENV_MAP: dict[str, str] = {
    "state_path": "INFRA_STATE_PATH",
    "concurrency": "INFRA_CONCURRENCY",
    "timeout": "INFRA_TIMEOUT",
    "lock_timeout": "INFRA_LOCK_TIMEOUT",
}

# Reserved for ``${var.…}`` expressions.
_RESERVED_NAMES = frozenset({"var"})


def _resolve_settings(raw_settings: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve settings fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = dict(raw_settings)
    for field, env_key in _SETTINGS_ENV_MAP.items():
        if field in resolved:
            continue
        val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val
    return resolved


def _substitute(raw_resources: Any, variables: dict[str, Any]) -> Any:
    if not isinstance(raw_resources, list):
        return raw_resources
    out = []
    for entry in raw_resources:
        if isinstance(entry, dict):
            entry = dict(entry)
            name = entry.get("name", "?")
            try:
                for key in ("attributes", "depends_on"):
                    if key in entry:
                        entry[key] = substitute_variables(entry[key], variables)
            except UndefinedVariableError as exc:
                raise ConfigError(f"Resource '{name}': {exc}") from exc
        out.append(entry)
    return out


def _validate_bindings(config: Config) -> list[str]:
    """Every declared kind needs a provider; every name must be usable."""
    errors: list[str] = []
    bound = config.bound_kinds()
    for r in config.resources:
        if r.kind not in bound:
            errors.append(f"Resource '{r.address}': no provider bound for kind '{r.kind}'")
        if r.name in _RESERVED_NAMES:
            errors.append(f"Resource '{r.address}': name '{r.name}' is reserved")
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    variables = raw.get("variables") or {}
    if not isinstance(variables, dict):
        raise ConfigError(f"{path}: 'variables' must be a mapping")

    try:
        raw["settings"] = _resolve_settings(raw.get("settings") or {}, path.parent)
        raw["resources"] = _substitute(raw.get("resources"), variables)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent

    errors = _validate_bindings(config)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
