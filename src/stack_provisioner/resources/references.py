"""Reference markers embedded in resource inputs.

Two markers can appear anywhere inside a resource's ``inputs`` (at any depth
of nested dicts/lists):

- ``OutputRef``: ``{ref: "<resource>.<output>"}``, an output of another
  resource in the same unit
- ``ImportRef``: ``{import: "<name>"}``, a value the unit imports from another
  unit's exports

Helper functions walk inputs to find markers and to substitute resolved values.
The graph builder turns markers into concrete ``Reference`` edges.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, TypeAlias

from pydantic import BaseModel, ConfigDict, field_validator, model_serializer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

_IDENT = r"[A-Za-z][A-Za-z0-9_-]*"
IDENT_PATTERN = rf"^{_IDENT}$"
_DOTTED = re.compile(rf"^({_IDENT})\.({_IDENT})$")


def split_dotted(value: str, *, what: str) -> tuple[str, str]:
    """Split ``"<left>.<right>"`` into its two identifiers or raise ``ValueError``."""
    m = _DOTTED.match(value)
    if m is None:
        raise ValueError(f"Invalid {what} '{value}': expected '<{what}>.<name>'")
    return m.group(1), m.group(2)


class OutputRef(BaseModel):
    """Input value taken from an output of a resource in the same unit."""

    model_config = ConfigDict(frozen=True)

    ref: str

    @field_validator("ref")
    @classmethod
    def _check_ref(cls, v: str) -> str:
        split_dotted(v, what="resource")
        return v

    @property
    def resource_id(self) -> str:
        return self.ref.split(".", 1)[0]

    @property
    def output_name(self) -> str:
        return self.ref.split(".", 1)[1]

    @model_serializer
    def _serialize(self) -> dict[str, str]:
        return {"ref": self.ref}


class ImportRef(BaseModel):
    """Input value taken from one of the unit's declared imports."""

    model_config = ConfigDict(frozen=True)

    name: str

    @model_serializer
    def _serialize(self) -> dict[str, str]:
        return {"import": self.name}


Marker: TypeAlias = OutputRef | ImportRef


def ref(target: str) -> OutputRef:
    """Shorthand for ``OutputRef(ref=target)``."""
    return OutputRef(ref=target)


def imported(name: str) -> ImportRef:
    """Shorthand for ``ImportRef(name=name)``."""
    return ImportRef(name=name)


class Reference(BaseModel):
    """A resolved edge from a consumer input to a producer output."""

    model_config = ConfigDict(frozen=True)

    from_address: str
    input_path: str
    to_address: str
    output_name: str

    @property
    def target(self) -> str:
        return f"{self.to_address}.{self.output_name}"

    def __str__(self) -> str:
        return f"{self.from_address}:{self.input_path} <- {self.target}"


# ── Walking inputs ──────────────────────────────────────────────────


def _as_marker(value: Any) -> Any:
    """Turn a ``{ref: ...}`` / ``{import: ...}`` mapping into a marker."""
    if isinstance(value, dict) and len(value) == 1:
        key, inner = next(iter(value.items()))
        if key == "ref" and isinstance(inner, str):
            return OutputRef(ref=inner)
        if key == "import" and isinstance(inner, str):
            return ImportRef(name=inner)
    return value


def normalize_markers(value: Any) -> Any:
    """Recursively replace marker mappings with marker objects."""
    value = _as_marker(value)
    if isinstance(value, dict):
        return {k: normalize_markers(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_markers(v) for v in value]
    return value


def iter_markers(value: Any, path: str = "") -> Iterator[tuple[str, Marker]]:
    """Yield ``(input_path, marker)`` for every marker inside *value*.

    Paths are dot-separated for dict keys and ``[i]`` for list items, e.g.
    ``"origin.bucket"`` or ``"targets[0]"``.
    """
    if isinstance(value, (OutputRef, ImportRef)):
        yield path, value
    elif isinstance(value, dict):
        for k, v in value.items():
            yield from iter_markers(v, f"{path}.{k}" if path else str(k))
    elif isinstance(value, list):
        for i, v in enumerate(value):
            yield from iter_markers(v, f"{path}[{i}]")


def substitute_markers(value: Any, fn: Callable[[str, Marker], Any], path: str = "") -> Any:
    """Return a copy of *value* with every marker replaced by ``fn(path, marker)``."""
    if isinstance(value, (OutputRef, ImportRef)):
        return fn(path, value)
    if isinstance(value, dict):
        return {
            k: substitute_markers(v, fn, f"{path}.{k}" if path else str(k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [substitute_markers(v, fn, f"{path}[{i}]") for i, v in enumerate(value)]
    return value


def top_level_input(path: str) -> str:
    """Name of the top-level input an input path belongs to."""
    return re.split(r"[.\[]", path, maxsplit=1)[0]
