"""Resource type registry for schema lookup and handler dispatch."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import UnknownResourceTypeError

if TYPE_CHECKING:
    from stack_provisioner.engine.handlers import ResourceHandler
    from stack_provisioner.resources.schema import ResourceSchema


@dataclass(frozen=True)
class ResourceTypeRegistration:
    resource_type: str
    schema: ResourceSchema
    handler: ResourceHandler


class ResourceTypeRegistry:
    """Registry mapping resource_type -> (schema, handler)."""

    def __init__(self) -> None:
        self._registrations: dict[str, ResourceTypeRegistration] = {}

    def register(
        self, resource_type: str, schema: ResourceSchema, handler: ResourceHandler
    ) -> None:
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError("Resource type must be a non-empty string")

        if resource_type in self._registrations:
            raise ValueError(f"Resource type already registered: {resource_type}")

        self._registrations[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            schema=schema,
            handler=handler,
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._registrations

    def resource_types(self) -> list[str]:
        return sorted(self._registrations)
