"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stack_provisioner.config.loader import DEFAULT_CONFIG_FILE, ConfigError, load_config
from stack_provisioner.config.modules import ModuleExpansionError
from stack_provisioner.config.registry import default_registry, load_registry
from stack_provisioner.config.schema import Config, EnvironmentConfig, ExecutionConfig
from stack_provisioner.engine.engine import StackEngine
from stack_provisioner.engine.store import LocalStateStore

if TYPE_CHECKING:
    from pathlib import Path

    from stack_provisioner.engine.builder import ResourceGraph
    from stack_provisioner.engine.scheduler import CancellationToken, ProgressCallback
    from stack_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "Config",
    "ConfigError",
    "EnvironmentConfig",
    "ExecutionConfig",
    "apply",
    "check_plan",
    "default_registry",
    "engine_from_config",
    "graph",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "validate",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def engine_from_config(config: Config, *, fail_fast: bool | None = None) -> StackEngine:
    """Build a ``StackEngine`` from a ``Config`` instance."""
    try:
        registry = load_registry(config.provider, config.config_dir)
    except ModuleExpansionError as exc:
        raise ConfigError(str(exc)) from exc
    execution = config.execution
    return StackEngine(
        store=LocalStateStore(config.state_path, wait_for_lock=execution.wait_for_lock),
        registry=registry,
        environment=config.environment.to_environment(),
        max_parallel=execution.max_parallel,
        fail_fast=execution.fail_fast if fail_fast is None else fail_fast,
        timeout=execution.timeout,
        retry=execution.retry.policy(),
    )


def validate(config: Config) -> ResourceGraph:
    """Run every static check without touching state."""
    return engine_from_config(config).validate(config.deployment_units)


def graph(config: Config) -> ResourceGraph:
    """Build the dependency graph for the given configuration."""
    return engine_from_config(config).graph(config.deployment_units)


def plan(config: Config, *, destroy: bool = False) -> Plan:
    """Plan changes for the given configuration."""
    return engine_from_config(config).plan(config.deployment_units, destroy=destroy)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
    fail_fast: bool | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config, fail_fast=fail_fast)
    return engine.apply(plan_obj, progress=progress, cancel=cancel)


def check_plan(plan_obj: Plan, config: Config) -> None:
    """Refuse a saved plan that was made from a different configuration."""
    engine_from_config(config).check_plan_config(plan_obj, config.deployment_units)


def plan_and_apply(config: Config, *, destroy: bool = False) -> ApplyResult:
    """Plan and apply in one step."""
    engine = engine_from_config(config)
    plan_obj = engine.plan(config.deployment_units, destroy=destroy)
    return engine.apply(plan_obj)
