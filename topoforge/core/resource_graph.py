"""Resource dependency DAG — the explicit "must happen before" relation.

The graph enforces:
- Every dependency names a resource in the graph.
- The graph is acyclic; a cycle is a hard error, never retried.
- Iteration order is topological with ties broken by resource id, so the
  same inputs always produce the same order.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Iterable

from topoforge.models.deployment import ResourceNode


class CyclicDependencyError(ValueError):
    """Raised when the resource graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Resource graph has a cycle: {' -> '.join(cycle)}")


class MissingDependencyError(ValueError):
    """Raised when a resource depends on an id that is not in the graph."""


class ResourceGraph:
    """Directed acyclic graph of resources, built from ``depends_on``.

    Raises
    ------
    MissingDependencyError
        If a dependency names an unknown resource.
    CyclicDependencyError
        If the dependencies form a cycle.
    """

    def __init__(self, nodes: Iterable[ResourceNode]) -> None:
        self._nodes: dict[str, ResourceNode] = {}
        for node in nodes:
            if node.resource_id in self._nodes:
                raise ValueError(f"Duplicate resource id {node.resource_id!r}")
            self._nodes[node.resource_id] = node

        missing = self.missing_dependencies()
        if missing:
            raise MissingDependencyError(
                "Unknown dependencies: "
                + "; ".join(f"{rid} needs {dep}" for rid, dep in missing)
            )

        # Forward edges: resource -> its dependencies
        self._depends_on: dict[str, list[str]] = {
            rid: sorted(set(node.depends_on)) for rid, node in self._nodes.items()
        }
        # Reverse edges: resource -> resources that depend on it
        self._dependents: dict[str, list[str]] = {rid: [] for rid in self._nodes}
        for rid, deps in self._depends_on.items():
            for dep in deps:
                self._dependents[dep].append(rid)
        for deps in self._dependents.values():
            deps.sort()

        self._order = self._topological_order()

    def missing_dependencies(self) -> list[tuple[str, str]]:
        """Return ``(resource_id, dependency)`` pairs naming unknown resources."""
        return [
            (rid, dep)
            for rid, node in sorted(self._nodes.items())
            for dep in node.depends_on
            if dep not in self._nodes
        ]

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm with a min-heap so ties resolve by resource id."""
        in_degree = {rid: len(deps) for rid, deps in self._depends_on.items()}
        ready = [rid for rid, deg in in_degree.items() if deg == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            rid = heapq.heappop(ready)
            order.append(rid)
            for dependent in self._dependents[rid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, dependent)

        if len(order) != len(self._nodes):
            raise CyclicDependencyError(self._find_cycle(set(self._nodes) - set(order)))
        return order

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        """Walk dependencies inside the unsorted remainder until a node repeats."""
        start = min(remaining)
        path: list[str] = []
        seen: dict[str, int] = {}
        node = start
        while node not in seen:
            seen[node] = len(path)
            path.append(node)
            node = next(d for d in self._depends_on[node] if d in remaining)
        return path[seen[node]:] + [node]

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    @property
    def order(self) -> list[str]:
        """All resource ids in dependency order."""
        return list(self._order)

    def nodes(self) -> list[ResourceNode]:
        """All nodes in dependency order."""
        return [self._nodes[rid] for rid in self._order]

    def get_dependencies(self, resource_id: str) -> list[str]:
        return list(self._depends_on.get(resource_id, []))

    def get_dependents(self, resource_id: str) -> list[str]:
        """Return all transitive dependents (BFS), i.e. what a change invalidates."""
        result: list[str] = []
        queue = deque(self._dependents.get(resource_id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents.get(node, []))
        return result

    def precedes(self, before: str, after: str) -> bool:
        """True if ``before`` is a transitive dependency of ``after``."""
        return after in self.get_dependents(before)
