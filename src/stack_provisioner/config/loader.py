"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from stack_provisioner.config.modules import ModuleExpansionError, expand_modules
from stack_provisioner.config.schema import Config

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from stack_provisioner.resources.unit import DeploymentUnit

DEFAULT_CONFIG_FILE = "stack-provisioner.yaml"


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_ENVIRONMENT_ENV_MAP: dict[str, str] = {
    "account": "STACK_ACCOUNT",
    "region": "STACK_REGION",
}


def _resolve_environment(raw_env: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve environment fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _ENVIRONMENT_ENV_MAP.items():
        val = raw_env.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            # Account ids are numeric in YAML but always strings.
            resolved[field] = str(val)

    return resolved


def _validate_unique_units(units: list[DeploymentUnit]) -> list[str]:
    """Check that no two units (from YAML or modules) share the same id."""
    seen: set[str] = set()
    errors: list[str] = []
    for u in units:
        if u.id in seen:
            errors.append(f"Duplicate unit id '{u.id}'")
        seen.add(u.id)
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

    try:
        raw["environment"] = _resolve_environment(raw.get("environment") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    if not config.state_path.is_absolute():
        config.state_path = config.config_dir / config.state_path

    if config.modules:
        logger.debug("Expanding %d module(s)", len(config.modules))
        try:
            config._module_units = expand_modules(config.modules, config.config_dir)
        except ModuleExpansionError as exc:
            raise ConfigError(str(exc)) from exc

    errors = _validate_unique_units(config.deployment_units)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d units)", path, len(config.deployment_units))
    return config
