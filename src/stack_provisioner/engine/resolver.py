"""Cross-unit reference resolution."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Final

from stack_provisioner.engine.errors import ReferenceTypeError, UnresolvedReferenceError
from stack_provisioner.engine.types import KNOWN_AFTER_APPLY
from stack_provisioner.resources.references import substitute_markers, top_level_input

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from stack_provisioner.engine.builder import ResourceGraph
    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.resources.base import Resource
    from stack_provisioner.resources.references import Marker, Reference

logger = logging.getLogger(__name__)

Outputs = Mapping[str, Mapping[str, Any]]


class _Unresolved:
    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED: Final = _Unresolved()


class ReferenceResolver:
    """Bind references to the concrete outputs of provisioned producers.

    ``outputs`` arguments map a producer address to the outputs it reported;
    a producer missing from the mapping has not been provisioned (yet).
    Resolution never blocks: a missing value is reported as ``UNRESOLVED``.
    """

    def __init__(
        self,
        references: Iterable[Reference],
        unit_dependencies: Mapping[str, list[str]] | None = None,
    ) -> None:
        self._references = list(references)
        self._unit_dependencies = dict(unit_dependencies or {})
        self._by_input: dict[tuple[str, str], Reference] = {
            (r.from_address, r.input_path): r for r in self._references
        }

    @classmethod
    def for_graph(cls, graph: ResourceGraph) -> ReferenceResolver:
        return cls(graph.references, graph.unit_dependencies)

    def validate(self, resources: Mapping[str, Resource], registry: ResourceTypeRegistry) -> None:
        """Statically check every reference against producer and consumer schemas.

        Raises ``ReferenceTypeError`` listing every mismatch.
        """
        errors: list[str] = []
        for reference in self._references:
            producer = resources[reference.to_address]
            consumer = resources[reference.from_address]
            produced = registry.get(producer.type).schema.output_type(reference.output_name)
            if produced is None:
                errors.append(
                    f"{reference}: type '{producer.type}' has no output "
                    f"'{reference.output_name}'"
                )
                continue
            # Only a reference that is the whole value of an input can be checked
            # against that input's declared type.
            if top_level_input(reference.input_path) != reference.input_path:
                continue
            expected = registry.get(consumer.type).schema.input_type(reference.input_path)
            if not expected.accepts(produced):
                errors.append(
                    f"{reference}: output is {produced.value} but input "
                    f"'{reference.input_path}' of '{consumer.type}' expects {expected.value}"
                )
        if errors:
            raise ReferenceTypeError(errors)
        logger.debug("Validated %d references", len(self._references))

    def references_from(self, address: str) -> list[Reference]:
        return [r for r in self._references if r.from_address == address]

    def resolve(self, reference: Reference, outputs: Outputs) -> Any:
        """Return the referenced value, or ``UNRESOLVED`` if the producer is not ready."""
        produced = outputs.get(reference.to_address)
        if produced is None or reference.output_name not in produced:
            return UNRESOLVED
        return produced[reference.output_name]

    def unresolved(self, resource: Resource, outputs: Outputs) -> list[Reference]:
        return [
            r
            for r in self.references_from(resource.address)
            if self.resolve(r, outputs) is UNRESOLVED
        ]

    def resolve_inputs(self, resource: Resource, outputs: Outputs) -> dict[str, Any]:
        """Return *resource*'s inputs with every reference replaced by its value.

        Raises ``UnresolvedReferenceError`` if any producer is not ready.
        """
        missing = self.unresolved(resource, outputs)
        if missing:
            raise UnresolvedReferenceError(resource.address, [str(r) for r in missing])

        def _value(path: str, _marker: Marker) -> Any:
            return self.resolve(self._by_input[(resource.address, path)], outputs)

        return substitute_markers(resource.inputs, _value)

    def preview_inputs(
        self, resource: Resource, outputs: Outputs, pending: Collection[str] = ()
    ) -> dict[str, Any]:
        """Inputs as far as they are known at plan time.

        References to producers in *pending* (about to be created or replaced)
        or to outputs not produced yet become ``KNOWN_AFTER_APPLY``.
        """

        def _value(path: str, _marker: Marker) -> Any:
            reference = self._by_input[(resource.address, path)]
            if reference.to_address in pending:
                return KNOWN_AFTER_APPLY
            value = self.resolve(reference, outputs)
            return KNOWN_AFTER_APPLY if value is UNRESOLVED else value

        return substitute_markers(resource.inputs, _value)

    def unit_ready(self, unit_id: str, completed_units: Collection[str]) -> bool:
        """Whether every unit *unit_id* depends on has completed."""
        return all(p in completed_units for p in self._unit_dependencies.get(unit_id, []))
