"""Base resource model."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, computed_field

from stack_provisioner.resources.references import (
    IDENT_PATTERN,
    ImportRef,
    Marker,
    OutputRef,
    iter_markers,
    normalize_markers,
)


class RemovalPolicy(str, Enum):
    DESTROY = "destroy"
    RETAIN = "retain"


def _normalize_inputs(v: Any) -> Any:
    if v is None:
        return {}
    return normalize_markers(v) if isinstance(v, dict) else v


class Resource(BaseModel):
    """A declared resource.

    Resources are pure data - they define the desired state. The unit that
    owns a resource fills in ``unit``; handlers know how to provision it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    unit: str = Field(default="", pattern=rf"^$|{IDENT_PATTERN}")
    id: str = Field(pattern=IDENT_PATTERN)
    type: str = Field(min_length=1)
    inputs: Annotated[dict[str, Any], BeforeValidator(_normalize_inputs)] = Field(
        default_factory=dict
    )
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY

    # Explicit ordering edges to other resources, as addresses ("<unit>.<id>")
    # or ids within the same unit.
    depends_on: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'dns.cert')."""
        return f"{self.unit}.{self.id}"

    @property
    def retained(self) -> bool:
        return self.removal_policy is RemovalPolicy.RETAIN

    def markers(self) -> list[tuple[str, Marker]]:
        """``(input_path, marker)`` pairs for every reference in the inputs."""
        return list(iter_markers(self.inputs))

    def output_refs(self) -> list[tuple[str, OutputRef]]:
        return [(p, m) for p, m in self.markers() if isinstance(m, OutputRef)]

    def import_refs(self) -> list[tuple[str, ImportRef]]:
        return [(p, m) for p, m in self.markers() if isinstance(m, ImportRef)]

    def qualified_depends_on(self) -> list[str]:
        """``depends_on`` with bare ids expanded to addresses in the owning unit."""
        return [d if "." in d else f"{self.unit}.{d}" for d in self.depends_on]
