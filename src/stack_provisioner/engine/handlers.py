"""Engine-facing handler interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from stack_provisioner.core.environment import Environment

if TYPE_CHECKING:
    from stack_provisioner.core.state import ResourceInstance
    from stack_provisioner.resources.base import Resource


@dataclass(frozen=True)
class EngineContext:
    """Context passed to handlers."""

    environment: Environment = field(default_factory=Environment)
    unit: str = ""
    timeout: float | None = None


@dataclass(frozen=True)
class ResolvedResource:
    """A declared resource whose references have all been replaced by values."""

    address: str
    unit: str
    id: str
    resource_type: str
    inputs: dict[str, Any]


class ResourceHandler:
    """Base class for resource handlers.

    Handlers translate resolved resources into provider API calls. Subclass
    and override the CRUD methods; validation is optional. ``create`` and
    ``update`` must be idempotent: calling them twice with the same inputs
    returns the same outputs without duplicating side effects.
    """

    def validate(self, ctx: EngineContext, desired: Resource) -> list[str]:
        """Single-resource validation before planning.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def create(self, ctx: EngineContext, desired: ResolvedResource) -> dict[str, Any]:
        """Create the resource. Return its outputs."""
        raise NotImplementedError

    def update(
        self, ctx: EngineContext, desired: ResolvedResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        """Update the resource in place. Return its outputs."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        """Delete the resource."""
        raise NotImplementedError
