"""Deployment unit (stack) model."""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stack_provisioner.core.environment import Environment
from stack_provisioner.resources.base import Resource
from stack_provisioner.resources.references import IDENT_PATTERN, split_dotted


def _resources_from_mapping(raw: Any) -> Any:
    """Accept ``{id: spec}`` as well as a list of resources."""
    if isinstance(raw, dict):
        items: list[Any] = []
        for rid, spec in raw.items():
            if isinstance(spec, Resource):
                items.append(spec)
            else:
                items.append({"id": rid, **(spec or {})})
        return items
    return raw


class DeploymentUnit(BaseModel):
    """A named, independently provisionable group of resources.

    ``exports`` maps an export name to ``"<resource>.<output>"`` of a resource
    the unit owns. ``imports`` maps a local name to ``"<unit>.<export>"`` of
    another unit; resources consume imports with ``{import: <name>}`` inputs.
    Resource order is the declaration order used for deterministic plans.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(pattern=IDENT_PATTERN)
    description: str = ""
    env: Environment | None = None
    resources: list[Resource] = Field(default_factory=list)
    exports: dict[str, str] = Field(default_factory=dict)
    imports: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _assign_unit(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        unit_id = data.get("id")
        resources = _resources_from_mapping(data.get("resources") or [])
        assigned: list[Any] = []
        for r in resources:
            if isinstance(r, Resource):
                assigned.append(r if r.unit else r.model_copy(update={"unit": unit_id}))
            elif isinstance(r, dict) and not r.get("unit"):
                assigned.append({**r, "unit": unit_id})
            else:
                assigned.append(r)
        data["resources"] = assigned
        return data

    @model_validator(mode="after")
    def _check_references(self) -> Self:
        errors: list[str] = []
        ids: set[str] = set()
        for r in self.resources:
            if r.id in ids:
                errors.append(f"duplicate resource id '{r.id}'")
            ids.add(r.id)
            if r.unit != self.id:
                errors.append(f"resource '{r.id}' belongs to unit '{r.unit}', not '{self.id}'")

        for r in self.resources:
            for path, marker in r.output_refs():
                if marker.resource_id not in ids:
                    errors.append(
                        f"resource '{r.id}' input '{path}' references unknown resource "
                        f"'{marker.resource_id}'"
                    )
                elif marker.resource_id == r.id:
                    errors.append(f"resource '{r.id}' input '{path}' references itself")
            for path, marker in r.import_refs():
                if marker.name not in self.imports:
                    errors.append(
                        f"resource '{r.id}' input '{path}' uses undeclared import '{marker.name}'"
                    )
            for dep in r.depends_on:
                if "." not in dep and dep not in ids:
                    errors.append(f"resource '{r.id}' depends on unknown resource '{dep}'")

        for name, target in self.exports.items():
            try:
                rid, _ = split_dotted(target, what="resource")
            except ValueError as exc:
                errors.append(f"export '{name}': {exc}")
                continue
            if rid not in ids:
                errors.append(f"export '{name}' refers to resource '{rid}' not owned by this unit")

        for name, source in self.imports.items():
            try:
                uid, _ = split_dotted(source, what="unit")
            except ValueError as exc:
                errors.append(f"import '{name}': {exc}")
                continue
            if uid == self.id:
                errors.append(f"import '{name}' imports from its own unit")

        if errors:
            raise ValueError(f"Invalid unit '{self.id}': " + "; ".join(errors))
        return self

