"""Per-type resource schemas.

A schema tells the engine what it needs to know about a resource type
without knowing anything about the provider behind it:

- ``inputs``: expected value type per input (used to type-check references)
- ``outputs``: value type of every output the type produces
- ``immutable``: inputs whose change forces a replacement
- ``compare``: per-input comparison strategy used when diffing
- ``create_before_destroy``: replacements create the new instance first
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]


class ValueType(str, Enum):
    ANY = "any"
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    MAP = "map"

    def accepts(self, produced: ValueType) -> bool:
        """Whether a value of type *produced* may flow into an input of this type."""
        return ValueType.ANY in (self, produced) or self is produced

    def matches(self, value: Any) -> bool:
        """Whether a concrete *value* conforms to this type."""
        match self:
            case ValueType.ANY:
                return True
            case ValueType.STRING:
                return isinstance(value, str)
            case ValueType.NUMBER:
                return isinstance(value, (int, float)) and not isinstance(value, bool)
            case ValueType.BOOLEAN:
                return isinstance(value, bool)
            case ValueType.LIST:
                return isinstance(value, list)
            case ValueType.MAP:
                return isinstance(value, dict)


class ResourceSchema(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    inputs: dict[str, ValueType] = Field(default_factory=dict)
    outputs: dict[str, ValueType] = Field(default_factory=dict)
    immutable: frozenset[str] = frozenset()
    compare: dict[str, CompareStrategy] = Field(default_factory=dict)
    create_before_destroy: bool = False

    def input_type(self, name: str) -> ValueType:
        return self.inputs.get(name, ValueType.ANY)

    def output_type(self, name: str) -> ValueType | None:
        """Declared type of output *name*; ``None`` if the type declares no such output.

        A schema without any declared outputs accepts every output name as ``ANY``.
        """
        if not self.outputs:
            return ValueType.ANY
        return self.outputs.get(name)

    def is_immutable(self, name: str) -> bool:
        return name in self.immutable
