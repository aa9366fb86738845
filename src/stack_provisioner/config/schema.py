"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stack_provisioner.config.modules import (
    ModuleSpec,  # noqa: TC001 (Pydantic needs this at runtime)
)
from stack_provisioner.core.environment import Environment
from stack_provisioner.engine.retry import RetryPolicy
from stack_provisioner.resources.unit import (
    DeploymentUnit,  # noqa: TC001 (Pydantic needs this at runtime)
)


class EnvironmentConfig(BaseSettings):
    """Default target environment for every unit.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``STACK_`` prefix. Constructor kwargs take precedence. A unit's
    own ``env`` overrides these per field.
    """

    model_config = SettingsConfigDict(env_prefix="STACK_", extra="ignore")

    account: str | None = None
    region: str | None = None

    def to_environment(self) -> Environment:
        return Environment(account=self.account, region=self.region)


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts, base_delay=self.base_delay, max_delay=self.max_delay
        )


class ExecutionConfig(BaseModel):
    """How apply runs: parallelism, failure handling, per-call timeout (seconds).

    With ``wait_for_lock`` false a plan or apply fails at once when another
    run holds the state lock.
    """

    model_config = ConfigDict(extra="forbid")

    max_parallel: int = Field(default=4, ge=1)
    fail_fast: bool = False
    timeout: float | None = Field(default=300.0, gt=0)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    wait_for_lock: bool = True


class ProviderConfig(BaseModel):
    """Which handlers provision resources.

    ``factory`` is ``"module.path:function"`` (or an entry point name in group
    ``stack_provisioner.providers``) returning a ``ResourceTypeRegistry``.
    Without it the built-in simulated provider is used.
    """

    model_config = ConfigDict(extra="forbid")

    factory: str | None = None


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _units_from_mapping(v: Any) -> Any:
    """Accept ``{unit_id: spec}`` as well as a list of units."""
    if v is None:
        return []
    if isinstance(v, dict):
        return [{"id": uid, **(spec or {})} for uid, spec in v.items()]
    return v


class Config(BaseModel):
    """Provisioning configuration; validates YAML structure directly."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    state_path: Path = Path(".stack-state.json")
    units: Annotated[list[DeploymentUnit], BeforeValidator(_units_from_mapping)] = []
    modules: Annotated[list[ModuleSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    _module_units: list[DeploymentUnit] = PrivateAttr(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def deployment_units(self) -> list[DeploymentUnit]:
        """Units declared in YAML followed by units generated by modules."""
        return [*self.units, *self._module_units]
