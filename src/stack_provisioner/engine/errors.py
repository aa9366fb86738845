"""Engine error types."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stack_provisioner.engine.types import ApplyResult


class EngineError(Exception):
    """Base exception for engine errors."""


# ── Configuration errors (static, raised before any side effect) ────


class ConfigurationError(EngineError):
    """Declared configuration cannot be planned. Always fatal."""


class UnknownResourceTypeError(ConfigurationError):
    """Raised when a resource type has no registration/handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(ConfigurationError):
    """Raised when multiple declared resources share the same address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class DanglingReferenceError(ConfigurationError):
    """One or more references point at something that is not declared."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Dangling references:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class DependencyCycleError(ConfigurationError):
    """Raised when dependencies contain a cycle.

    ``path`` lists the nodes along the cycle with the first node repeated at
    the end, e.g. ``["a", "b", "a"]``.
    """

    def __init__(self, path: list[str]) -> None:
        msg = "Dependency cycle detected"
        if path:
            msg += f": {' -> '.join(path)}"
        super().__init__(msg)
        self.path = path


class ReferenceTypeError(ConfigurationError):
    """Referenced outputs do not match what the consuming inputs expect."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Reference type mismatch:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class UnsafeReplaceOrderError(ConfigurationError):
    """A replacement would delete a resource that active dependents still use."""

    def __init__(self, address: str, dependents: list[str]) -> None:
        super().__init__(
            f"Unsafe replace of {address}: still used by {', '.join(dependents)} "
            "which would not be moved off the old instance first"
        )
        self.address = address
        self.dependents = dependents


class ValidationError(ConfigurationError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


# ── Runtime errors ──────────────────────────────────────────────────


class UnresolvedReferenceError(EngineError):
    """An action was about to run with an input whose producer is not ready."""

    def __init__(self, address: str, references: list[str]) -> None:
        super().__init__(f"Unresolved references for {address}: {', '.join(references)}")
        self.address = address
        self.references = references


class ProvisionErrorKind(str, Enum):
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    CONFLICT = "conflict"
    FATAL = "fatal"


class ProvisionError(EngineError):
    """Raised by executors when a create/update/delete call fails."""

    def __init__(
        self, kind: ProvisionErrorKind, message: str, *, address: str = "", attempts: int = 1
    ) -> None:
        self.kind = ProvisionErrorKind(kind)
        self.address = address
        self.message = message
        self.attempts = attempts
        prefix = f"{address}: " if address else ""
        super().__init__(f"{prefix}[{self.kind.value}] {message}")


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class StateStoreError(EngineError):
    """Reading or writing the provisioned state failed. Fatal for the whole run."""


class ApplyError(EngineError):
    """Raised when an apply ends with one or more failures.

    Carries the full result (what was applied, what failed, what was skipped)
    so callers can inspect progress and resume later.
    """

    def __init__(self, result: ApplyResult, message: str) -> None:
        self.result = result
        super().__init__(message)


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""

    def __init__(self, result: ApplyResult | None = None) -> None:
        self.result = result
        super().__init__("Apply canceled")
