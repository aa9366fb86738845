"""Dependency graph builder.

Turns a set of declared deployment units into one graph over resources plus
a coarser graph over units, and rejects dangling references and cycles
before anything else runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import DanglingReferenceError, DuplicateAddressError
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.resources.references import Reference, split_dotted

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stack_provisioner.resources.base import Resource
    from stack_provisioner.resources.unit import DeploymentUnit

logger = logging.getLogger(__name__)

UNIT_NODE_PREFIX = "unit:"


def unit_node(unit_id: str) -> str:
    return f"{UNIT_NODE_PREFIX}{unit_id}"


@dataclass(frozen=True)
class ResourceGraph:
    """Result of a graph build. All mappings keep declaration order."""

    units: dict[str, DeploymentUnit]
    resources: dict[str, Resource]
    references: list[Reference]
    dependencies: dict[str, list[str]]
    unit_dependencies: dict[str, list[str]]
    graph: DependencyGraph = field(repr=False)
    unit_graph: DependencyGraph = field(repr=False)

    def references_from(self, address: str) -> list[Reference]:
        return [r for r in self.references if r.from_address == address]

    def references_to(self, address: str) -> list[Reference]:
        return [r for r in self.references if r.to_address == address]

    def dependents_of(self, address: str) -> list[str]:
        return self.graph.dependents(address)

    def unit_resources(self, unit_id: str) -> list[str]:
        return [a for a, r in self.resources.items() if r.unit == unit_id]


class GraphBuilder:
    """Build a :class:`ResourceGraph` from declared units."""

    def build(self, units: Sequence[DeploymentUnit]) -> ResourceGraph:
        units_by_id: dict[str, DeploymentUnit] = {}
        resources: dict[str, Resource] = {}
        for unit in units:
            if unit.id in units_by_id:
                raise DuplicateAddressError(unit.id)
            units_by_id[unit.id] = unit
            for r in unit.resources:
                if r.address in resources:
                    raise DuplicateAddressError(r.address)
                resources[r.address] = r

        errors: list[str] = []
        exports = self._exports(units_by_id, errors)

        references: list[Reference] = []
        dependencies: dict[str, list[str]] = {}
        unit_dependencies: dict[str, list[str]] = {u: [] for u in units_by_id}

        for addr, r in resources.items():
            unit = units_by_id[r.unit]
            deps: list[str] = []

            for path, marker in r.output_refs():
                target = f"{r.unit}.{marker.resource_id}"
                references.append(
                    Reference(
                        from_address=addr,
                        input_path=path,
                        to_address=target,
                        output_name=marker.output_name,
                    )
                )
                deps.append(target)

            for path, marker in r.import_refs():
                source = unit.imports[marker.name]
                producer_unit, export_name = split_dotted(source, what="unit")
                if producer_unit not in units_by_id:
                    errors.append(
                        f"{addr} input '{path}' imports '{source}' from unknown unit "
                        f"'{producer_unit}'"
                    )
                    continue
                exported = exports.get((producer_unit, export_name))
                if exported is None:
                    errors.append(
                        f"{addr} input '{path}' imports '{source}' but unit '{producer_unit}' "
                        f"does not export '{export_name}'"
                    )
                    continue
                target, output_name = exported
                references.append(
                    Reference(
                        from_address=addr,
                        input_path=path,
                        to_address=target,
                        output_name=output_name,
                    )
                )
                deps.append(target)

            for dep in r.qualified_depends_on():
                if dep not in resources:
                    errors.append(f"{addr} depends on unknown resource '{dep}'")
                    continue
                deps.append(dep)

            dependencies[addr] = list(dict.fromkeys(deps))
            for dep in dependencies[addr]:
                dep_unit = resources[dep].unit
                if dep_unit != r.unit and dep_unit not in unit_dependencies[r.unit]:
                    unit_dependencies[r.unit].append(dep_unit)

        # Imports declared but never consumed still order the units.
        for unit in units_by_id.values():
            for source in unit.imports.values():
                producer_unit, export_name = split_dotted(source, what="unit")
                if producer_unit not in units_by_id:
                    errors.append(f"unit '{unit.id}' imports from unknown unit '{producer_unit}'")
                elif (producer_unit, export_name) not in exports:
                    errors.append(
                        f"unit '{unit.id}' imports '{source}' but unit '{producer_unit}' "
                        f"does not export '{export_name}'"
                    )
                elif producer_unit not in unit_dependencies[unit.id]:
                    unit_dependencies[unit.id].append(producer_unit)

        if errors:
            raise DanglingReferenceError(list(dict.fromkeys(errors)))

        graph = DependencyGraph(resources, dependencies)
        graph.check_acyclic()
        unit_graph = DependencyGraph(units_by_id, unit_dependencies)
        unit_graph.check_acyclic()
        self._check_combined_acyclic(resources, dependencies, unit_dependencies)
        logger.debug(
            "Built graph: %d units, %d resources, %d references",
            len(units_by_id),
            len(resources),
            len(references),
        )
        return ResourceGraph(
            units=units_by_id,
            resources=resources,
            references=references,
            dependencies=dependencies,
            unit_dependencies=unit_dependencies,
            graph=graph,
            unit_graph=unit_graph,
        )

    @staticmethod
    def _exports(
        units: dict[str, DeploymentUnit], errors: list[str]
    ) -> dict[tuple[str, str], tuple[str, str]]:
        """``(unit, export) -> (resource address, output name)``."""
        exports: dict[tuple[str, str], tuple[str, str]] = {}
        for unit in units.values():
            for name, target in unit.exports.items():
                try:
                    rid, output = split_dotted(target, what="resource")
                except ValueError as exc:
                    errors.append(f"unit '{unit.id}' export '{name}': {exc}")
                    continue
                exports[(unit.id, name)] = (f"{unit.id}.{rid}", output)
        return exports

    @staticmethod
    def _check_combined_acyclic(
        resources: dict[str, Resource],
        dependencies: dict[str, list[str]],
        unit_dependencies: dict[str, list[str]],
    ) -> None:
        """Check the resource graph layered with unit nodes for cycles.

        A unit node depends on every resource it owns; every resource depends
        on the unit nodes its unit imports from. A cycle here means some unit
        could never finish before another one starts.
        """
        nodes: list[str] = []
        deps: dict[str, list[str]] = {}
        for unit_id in unit_dependencies:
            node = unit_node(unit_id)
            nodes.append(node)
            deps[node] = [a for a, r in resources.items() if r.unit == unit_id]
        for addr, r in resources.items():
            nodes.append(addr)
            deps[addr] = [
                *dependencies[addr],
                *(unit_node(p) for p in unit_dependencies[r.unit]),
            ]
        DependencyGraph(nodes, deps).check_acyclic()
