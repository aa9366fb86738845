"""Plan and apply engine for multi-unit infrastructure."""

from stack_provisioner.engine.builder import GraphBuilder, ResourceGraph
from stack_provisioner.engine.engine import StackEngine
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    ConfigurationError,
    DanglingReferenceError,
    DependencyCycleError,
    DuplicateAddressError,
    EngineError,
    ProvisionError,
    ProvisionErrorKind,
    ReferenceTypeError,
    StalePlanError,
    StateLockError,
    StateStoreError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    UnsafeReplaceOrderError,
    ValidationError,
)
from stack_provisioner.engine.executor import ExecutableAction, Executor, HandlerExecutor
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.handlers import EngineContext, ResolvedResource, ResourceHandler
from stack_provisioner.engine.planner import ReconciliationPlanner
from stack_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from stack_provisioner.engine.resolver import UNRESOLVED, ReferenceResolver
from stack_provisioner.engine.retry import RetryPolicy
from stack_provisioner.engine.scheduler import CancellationToken, Scheduler
from stack_provisioner.engine.store import LocalStateStore, StateStore
from stack_provisioner.engine.types import (
    Action,
    ApplyResult,
    Plan,
    PlanMetadata,
    ReplaceMode,
    ResourceChange,
)

__all__ = [
    "UNRESOLVED",
    "Action",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "CancellationToken",
    "ConfigurationError",
    "DanglingReferenceError",
    "DependencyCycleError",
    "DependencyGraph",
    "DuplicateAddressError",
    "EngineContext",
    "EngineError",
    "ExecutableAction",
    "Executor",
    "GraphBuilder",
    "HandlerExecutor",
    "LocalStateStore",
    "Plan",
    "PlanMetadata",
    "ProvisionError",
    "ProvisionErrorKind",
    "ReconciliationPlanner",
    "ReferenceResolver",
    "ReferenceTypeError",
    "ReplaceMode",
    "ResolvedResource",
    "ResourceChange",
    "ResourceGraph",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "RetryPolicy",
    "Scheduler",
    "StackEngine",
    "StalePlanError",
    "StateLockError",
    "StateStore",
    "StateStoreError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "UnsafeReplaceOrderError",
    "ValidationError",
]
