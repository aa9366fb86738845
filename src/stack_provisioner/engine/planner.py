"""Reconciliation planner.

Compares declared resources with the provisioned state record, decides per
resource what has to happen, then lays the resulting executor calls out as an
operation graph that the scheduler runs wave by wave.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from stack_provisioner.core.environment import Environment
from stack_provisioner.engine.errors import UnsafeReplaceOrderError
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.resolver import ReferenceResolver
from stack_provisioner.engine.types import (
    KNOWN_AFTER_APPLY,
    Action,
    OperationKind,
    PlannedOperation,
    ReplaceMode,
    ResourceChange,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from stack_provisioner.core.state import ResourceInstance, State
    from stack_provisioner.engine.builder import ResourceGraph
    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.resources.base import Resource
    from stack_provisioner.resources.schema import CompareStrategy, ResourceSchema

logger = logging.getLogger(__name__)

_MISSING = object()


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (recorded) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return {_canonical_json(v) for v in desired} != {_canonical_json(v) for v in prior}
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _is_unknown(value: Any) -> bool:
    """Whether *value* holds anything only known after apply."""
    if isinstance(value, str):
        return value == KNOWN_AFTER_APPLY
    if isinstance(value, dict):
        return any(_is_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(_is_unknown(v) for v in value)
    return False


def _diff_inputs(
    planned: Mapping[str, Any],
    prior: Mapping[str, Any],
    compare: Mapping[str, CompareStrategy],
) -> dict[str, dict[str, Any]]:
    diff: dict[str, dict[str, Any]] = {}
    for key, value in planned.items():
        old = prior.get(key, _MISSING)
        if (
            _is_unknown(value)
            or old is _MISSING
            or _values_differ(value, old, strategy=compare.get(key))
        ):
            diff[key] = {"from": None if old is _MISSING else old, "to": value}
    for key, old in prior.items():
        if key not in planned:
            diff[key] = {"from": old, "to": None}
    return diff


def _moves_off(consumer: ResourceChange) -> bool:
    """Whether *consumer* stops using the old instance of a replaced producer.

    An update moves off because its provision step runs after the producer's
    new instance exists and re-reads the new outputs.
    """
    match consumer.action:
        case Action.DELETE | Action.REPLACE | Action.UPDATE:
            return True
        case Action.CREATE:
            # A retained replacement keeps its old instance (and what it uses) alive.
            return consumer.replace_mode is None
        case _:
            return False


def operation_waves(operations: Sequence[PlannedOperation]) -> list[list[str]]:
    """Group operation keys into waves that can run concurrently."""
    return DependencyGraph(
        [op.key for op in operations], {op.key: op.deps for op in operations}
    ).waves()


class ReconciliationPlanner:
    """Decide create/update/replace/delete/no-op per resource and order the work.

    Classification rules, first match wins:

    - not in state: create
    - resource type, environment or an immutable input changed: replace
      (a retained resource is instead created anew and the old instance is
      kept as an orphan)
    - any other input changed: update
    - in state but no longer declared: delete, or an orphaned no-op when the
      resource is retained
    - otherwise: no-op

    Inputs that reference a producer being created or replaced are
    ``KNOWN_AFTER_APPLY`` and always count as changed.
    """

    def __init__(
        self, registry: ResourceTypeRegistry, environment: Environment | None = None
    ) -> None:
        self._registry = registry
        self._environment = environment or Environment()

    def environment_for(self, graph: ResourceGraph, unit_id: str) -> Environment:
        return self._environment.merged(graph.units[unit_id].env)

    def plan(
        self, graph: ResourceGraph, state: State
    ) -> tuple[list[ResourceChange], list[PlannedOperation]]:
        resolver = ReferenceResolver.for_graph(graph)
        outputs = state.outputs()
        pending: set[str] = set()
        changes: dict[str, ResourceChange] = {}

        for addr in graph.graph.topological_order():
            change = self._classify(graph, resolver, graph.resources[addr], state, outputs, pending)
            if change.action in (Action.CREATE, Action.REPLACE):
                pending.add(addr)
            changes[addr] = change

        self._propagate_delete_before_create(graph, changes)

        removed = [a for a in state.resources if a not in graph.resources]
        for change in self._plan_removals(state, removed, reason="no longer declared"):
            changes[change.address] = change

        self._check_replace_safety(graph, state, changes)
        ordered = list(changes.values())
        return ordered, self._operations(ordered, state, graph)

    def plan_destroy(self, state: State) -> tuple[list[ResourceChange], list[PlannedOperation]]:
        changes = self._plan_removals(state, list(state.resources), reason="destroy requested")
        return changes, self._operations(changes, state, None)

    # ── Classification ──────────────────────────────────────────────

    def _classify(
        self,
        graph: ResourceGraph,
        resolver: ReferenceResolver,
        resource: Resource,
        state: State,
        outputs: Mapping[str, Mapping[str, Any]],
        pending: set[str],
    ) -> ResourceChange:
        addr = resource.address
        schema = self._registry.get(resource.type).schema
        environment = self.environment_for(graph, resource.unit)
        planned = resolver.preview_inputs(resource, outputs, pending)
        common: dict[str, Any] = {
            "address": addr,
            "unit": resource.unit,
            "resource_type": resource.type,
            "desired": resource.model_dump(mode="json", exclude={"address"}),
            "planned": planned,
            "depends_on": graph.dependencies[addr],
            "references": graph.references_from(addr),
            "removal_policy": resource.removal_policy,
            "environment": environment,
        }

        prior = state.resources.get(addr)
        if prior is None:
            logger.debug("Classified %s as create", addr)
            return ResourceChange(action=Action.CREATE, reason="not in state", **common)

        diff = _diff_inputs(planned, prior.inputs, schema.compare)
        immutable = sorted(k for k in diff if schema.is_immutable(k))
        replace_reason = ""
        if prior.resource_type != resource.type:
            replace_reason = f"resource type changed ({prior.resource_type} -> {resource.type})"
        elif prior.environment != environment:
            replace_reason = "environment changed"
            diff["environment"] = {
                "from": prior.environment.model_dump(),
                "to": environment.model_dump(),
            }
        elif immutable:
            replace_reason = f"immutable inputs changed: {', '.join(immutable)}"

        change: ResourceChange
        if replace_reason:
            mode = self._replace_mode(resource, prior, schema)
            if mode is ReplaceMode.RETAIN_OLD:
                change = ResourceChange(
                    action=Action.CREATE,
                    reason=f"{replace_reason}; old instance is retained",
                    replace_mode=mode,
                    **common,
                )
            else:
                change = ResourceChange(
                    action=Action.REPLACE, reason=replace_reason, replace_mode=mode, **common
                )
        elif diff:
            change = ResourceChange(
                action=Action.UPDATE, reason=f"inputs changed: {', '.join(sorted(diff))}", **common
            )
        elif prior.removal_policy is not resource.removal_policy:
            diff = {
                "removal_policy": {
                    "from": prior.removal_policy.value,
                    "to": resource.removal_policy.value,
                }
            }
            change = ResourceChange(action=Action.UPDATE, reason="removal policy changed", **common)
        else:
            change = ResourceChange(action=Action.NOOP, **common)

        logger.debug("Classified %s as %s", addr, change.action.value)
        return change.model_copy(update={"prior": dict(prior.inputs), "diff": diff or None})

    @staticmethod
    def _replace_mode(
        resource: Resource, prior: ResourceInstance, schema: ResourceSchema
    ) -> ReplaceMode:
        if resource.retained or prior.retained:
            return ReplaceMode.RETAIN_OLD
        if schema.create_before_destroy:
            return ReplaceMode.CREATE_BEFORE_DESTROY
        return ReplaceMode.DELETE_BEFORE_CREATE

    @staticmethod
    def _propagate_delete_before_create(
        graph: ResourceGraph, changes: dict[str, ResourceChange]
    ) -> None:
        """Replaced consumers of a delete-before-create producer go the same way.

        The producer's old instance can only go once its consumers' old
        instances are gone, and its new one must exist before theirs.
        """
        for addr in graph.graph.topological_order():
            if changes[addr].replace_mode is not ReplaceMode.DELETE_BEFORE_CREATE:
                continue
            for dependent in graph.dependents_of(addr):
                consumer = changes[dependent]
                if consumer.replace_mode is ReplaceMode.CREATE_BEFORE_DESTROY:
                    logger.debug("%s: delete-before-create forced by %s", dependent, addr)
                    changes[dependent] = consumer.model_copy(
                        update={"replace_mode": ReplaceMode.DELETE_BEFORE_CREATE}
                    )

    def _plan_removals(
        self, state: State, addresses: Iterable[str], *, reason: str
    ) -> list[ResourceChange]:
        """Deletes (or orphaned no-ops) in reverse dependency order."""
        changes: list[ResourceChange] = []
        for addr in self._delete_order(state, list(addresses)):
            inst = state.resources[addr]
            common: dict[str, Any] = {
                "address": addr,
                "unit": inst.unit,
                "resource_type": inst.resource_type,
                "prior": dict(inst.inputs),
                "depends_on": list(inst.dependencies),
                "removal_policy": inst.removal_policy,
                "environment": inst.environment,
            }
            if inst.retained:
                logger.debug("Classified %s as orphaned no-op", addr)
                changes.append(
                    ResourceChange(
                        action=Action.NOOP,
                        orphaned=True,
                        reason="retained; left in place and no longer managed",
                        **common,
                    )
                )
                continue
            self._registry.get(inst.resource_type)  # fail early if unknown
            logger.debug("Classified %s as delete", addr)
            changes.append(ResourceChange(action=Action.DELETE, reason=reason, **common))
        return changes

    @staticmethod
    def _delete_order(state: State, addresses: list[str]) -> list[str]:
        members = set(addresses)
        dep_map = {
            addr: [d for d in state.resources[addr].dependencies if d in members]
            for addr in addresses
        }
        return DependencyGraph(addresses, dep_map).reverse_topological_order()

    # ── Replace safety ──────────────────────────────────────────────

    @staticmethod
    def _consumers(address: str, graph: ResourceGraph | None, state: State) -> list[str]:
        """Declared dependents plus recorded-only resources that used *address*."""
        declared = graph.dependents_of(address) if graph is not None else []
        recorded = [
            a
            for a, inst in state.resources.items()
            if (graph is None or a not in graph.resources) and address in inst.dependencies
        ]
        return [*declared, *recorded]

    def _check_replace_safety(
        self, graph: ResourceGraph, state: State, changes: Mapping[str, ResourceChange]
    ) -> None:
        for change in changes.values():
            if change.action is not Action.REPLACE:
                continue
            blocking = [
                consumer
                for consumer in self._consumers(change.address, graph, state)
                if not _moves_off(changes[consumer])
            ]
            if blocking:
                raise UnsafeReplaceOrderError(change.address, blocking)

    # ── Operation graph ─────────────────────────────────────────────

    def _operations(
        self,
        changes: Sequence[ResourceChange],
        state: State,
        graph: ResourceGraph | None,
    ) -> list[PlannedOperation]:
        """Translate changes into executor calls with their ordering constraints.

        - a create/update runs after the create/update of everything it
          depends on and of every resource in the units its unit imports from
        - a resource is deleted only after whatever recorded it as a
          dependency has been deleted
        - delete-before-create: the old instance goes before the new one is made
        - create-before-destroy: the old instance goes after the new one is
          made and consumers have moved over
        - plain deletes run last, unless that would contradict the above
        """
        ops: dict[str, PlannedOperation] = {}
        provision: dict[str, str] = {}
        deletes: dict[str, str] = {}
        plain_deletes: list[str] = []

        def add(kind: OperationKind, address: str) -> str:
            op = PlannedOperation(key=f"{kind.value}:{address}", kind=kind, address=address)
            if op.key in ops:
                raise ValueError(f"Duplicate operation key in plan: {op.key}")
            ops[op.key] = op
            return op.key

        def need(key: str, dep: str) -> None:
            if dep not in ops[key].deps:
                ops[key].deps.append(dep)

        for c in changes:
            match c.action:
                case Action.CREATE:
                    provision[c.address] = add(OperationKind.CREATE, c.address)
                case Action.UPDATE:
                    provision[c.address] = add(OperationKind.UPDATE, c.address)
                case Action.REPLACE if c.replace_mode is ReplaceMode.DELETE_BEFORE_CREATE:
                    deletes[c.address] = add(OperationKind.DELETE, c.address)
                    provision[c.address] = add(OperationKind.CREATE, c.address)
                case Action.REPLACE:
                    provision[c.address] = add(OperationKind.CREATE, c.address)
                    deletes[c.address] = add(OperationKind.DELETE, c.address)
                case Action.DELETE:
                    deletes[c.address] = add(OperationKind.DELETE, c.address)
                    plain_deletes.append(c.address)
                case Action.NOOP if c.orphaned:
                    add(OperationKind.FORGET, c.address)
                case _:
                    pass

        for c in changes:
            key = provision.get(c.address)
            if key is None:
                continue
            for dep in c.depends_on:
                if dep in provision:
                    need(key, provision[dep])
            if graph is not None:
                upstream = graph.unit_graph.ancestors(c.unit)
                for other in changes:
                    if other.unit in upstream and other.address in provision:
                        need(key, provision[other.address])
            if c.action is Action.REPLACE:
                if c.replace_mode is ReplaceMode.DELETE_BEFORE_CREATE:
                    need(key, deletes[c.address])
                else:
                    need(deletes[c.address], key)
                    consumers = graph.dependents_of(c.address) if graph is not None else []
                    for consumer in consumers:
                        if consumer in provision:
                            need(deletes[c.address], provision[consumer])

        for address, key in deletes.items():
            for other, other_key in deletes.items():
                inst = state.resources.get(other)
                if other != address and inst is not None and address in inst.dependencies:
                    need(key, other_key)

        for address in plain_deletes:
            key = deletes[address]
            blocked = DependencyGraph(ops, {k: op.deps for k, op in ops.items()}).descendants(key)
            for pkey in provision.values():
                if pkey not in blocked:
                    need(key, pkey)

        logger.debug("Planned %d operations", len(ops))
        return list(ops.values())
