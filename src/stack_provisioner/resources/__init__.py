"""Declaration models: resources, references, units and type schemas."""

from stack_provisioner.resources.base import RemovalPolicy, Resource
from stack_provisioner.resources.catalog import BUILTIN_SCHEMAS
from stack_provisioner.resources.references import (
    ImportRef,
    OutputRef,
    Reference,
    imported,
    ref,
)
from stack_provisioner.resources.schema import ResourceSchema, ValueType
from stack_provisioner.resources.unit import DeploymentUnit

__all__ = [
    "BUILTIN_SCHEMAS",
    "DeploymentUnit",
    "ImportRef",
    "OutputRef",
    "Reference",
    "RemovalPolicy",
    "Resource",
    "ResourceSchema",
    "ValueType",
    "imported",
    "ref",
]
