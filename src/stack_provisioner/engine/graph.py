"""Dependency graph utilities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import DependencyCycleError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Node order as given is the declaration order; it is the tie-break for
    every ordering this class produces, so identical input always yields
    identical output. Dependencies on nodes outside the graph are ignored.
    """

    def __init__(self, nodes: Iterable[str], dependencies: Mapping[str, Iterable[str]]) -> None:
        self._index: dict[str, int] = {}
        for node in nodes:
            self._index.setdefault(node, len(self._index))
        # node -> filtered deps within graph, in declaration order
        self._deps: dict[str, list[str]] = {}
        for node in self._index:
            raw = list(dependencies.get(node, []))
            if node in raw:
                raise DependencyCycleError([node, node])
            deps = {d for d in raw if d in self._index}
            self._deps[node] = sorted(deps, key=self._index.__getitem__)
        self._dependents: dict[str, list[str]] = {n: [] for n in self._index}
        for node, deps in self._deps.items():
            for dep in deps:
                self._dependents[dep].append(node)

    @property
    def nodes(self) -> list[str]:
        return list(self._index)

    def dependencies(self, node: str) -> list[str]:
        return list(self._deps[node])

    def dependents(self, node: str) -> list[str]:
        return list(self._dependents[node])

    def find_cycle(self) -> list[str] | None:
        """Return one cycle as ``[n0, n1, ..., n0]`` (producer -> consumer), or None.

        Depth-first search over dependents with an explicit recursion stack;
        the first back edge found closes the reported cycle.
        """
        visited: set[str] = set()
        for root in self._index:
            if root in visited:
                continue
            on_stack: set[str] = {root}
            path: list[str] = [root]
            iters = [iter(self._dependents[root])]
            visited.add(root)
            while iters:
                child = next(iters[-1], None)
                if child is None:
                    iters.pop()
                    on_stack.discard(path.pop())
                    continue
                if child in on_stack:
                    return [*path[path.index(child) :], child]
                if child in visited:
                    continue
                visited.add(child)
                on_stack.add(child)
                path.append(child)
                iters.append(iter(self._dependents[child]))
        return None

    def check_acyclic(self) -> None:
        cycle = self.find_cycle()
        if cycle is not None:
            raise DependencyCycleError(cycle)

    def waves(self) -> list[list[str]]:
        """Partition nodes into waves.

        Wave ``i`` holds every node whose dependencies all sit in waves
        ``0..i-1``. Within a wave nodes keep declaration order.
        """
        self.check_acyclic()
        level: dict[str, int] = {}
        for node in self._topological():
            deps = self._deps[node]
            level[node] = max((level[d] + 1 for d in deps), default=0)

        waves: list[list[str]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
        for node in self._index:
            waves[level[node]].append(node)
        return waves

    def _topological(self) -> list[str]:
        indegree = {n: len(deps) for n, deps in self._deps.items()}
        ready = [n for n in self._index if indegree[n] == 0]
        order: list[str] = []
        while ready:
            node = ready.pop(0)
            order.append(node)
            for child in self._dependents[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    ready.append(child)
        return order

    def topological_order(self) -> list[str]:
        """Deterministic topological order: wave by wave, declaration order within a wave."""
        return [node for wave in self.waves() for node in wave]

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order

    def ancestors(self, node: str) -> set[str]:
        """Every node *node* depends on, directly or transitively."""
        return self._walk(node, self._deps)

    def descendants(self, node: str) -> set[str]:
        """Every node that depends on *node*, directly or transitively."""
        return self._walk(node, self._dependents)

    @staticmethod
    def _walk(start: str, edges: Mapping[str, list[str]]) -> set[str]:
        seen: set[str] = set()
        stack = list(edges[start])
        while stack:
            n = stack.pop()
            if n in seen:
                continue
            seen.add(n)
            stack.extend(edges[n])
        return seen
