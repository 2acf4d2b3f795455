"""Dependency graph utilities and the resource graph builder."""

from __future__ import annotations

import heapq
import logging
from typing import TYPE_CHECKING

from infra_provisioner.errors import CycleError, DuplicateNameError, LoadError, ResolutionError
from infra_provisioner.resources.refs import ReferenceSyntaxError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence

    from infra_provisioner.resources.base import ResourceSpec

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Nodes are stored by stable index (sorted by key) and edges as
    ``(dependent, dependency)`` index pairs. Dependencies on keys outside the
    node set are ignored. All traversals are iterative.
    """

    def __init__(self, nodes: Iterable[str], dependencies: Mapping[str, Iterable[str]]) -> None:
        self._keys: list[str] = sorted(set(nodes))
        self._index: dict[str, int] = {k: i for i, k in enumerate(self._keys)}
        self._deps: list[list[int]] = [[] for _ in self._keys]
        self._dependents: list[list[int]] = [[] for _ in self._keys]
        self._edges: list[tuple[int, int]] = []

        for i, key in enumerate(self._keys):
            targets = {self._index[d] for d in dependencies.get(key, []) if d in self._index}
            for j in sorted(targets):
                self._deps[i].append(j)
                self._dependents[j].append(i)
                self._edges.append((i, j))

    @property
    def nodes(self) -> list[str]:
        return list(self._keys)

    @property
    def edges(self) -> list[tuple[int, int]]:
        return list(self._edges)

    def index(self, key: str) -> int:
        return self._index[key]

    def dependencies(self, key: str) -> list[str]:
        return [self._keys[j] for j in self._deps[self._index[key]]]

    def dependents(self, key: str) -> list[str]:
        return [self._keys[j] for j in self._dependents[self._index[key]]]

    def find_cycle(self) -> list[str] | None:
        """Return the nodes of one cycle in dependency order, or None if acyclic."""
        visit = [_WHITE] * len(self._keys)
        for start in range(len(self._keys)):
            if visit[start] != _WHITE:
                continue
            visit[start] = _GREY
            path = [start]
            stack: list[Iterator[int]] = [iter(self._deps[start])]
            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    visit[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if visit[nxt] == _GREY:
                    return [self._keys[i] for i in path[path.index(nxt) :]]
                if visit[nxt] == _WHITE:
                    visit[nxt] = _GREY
                    path.append(nxt)
                    stack.append(iter(self._deps[nxt]))
        return None

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (dependencies first, lexicographic tie-break)."""
        cycle = self.find_cycle()
        if cycle is not None:
            raise CycleError(cycle)

        indegree = [len(d) for d in self._deps]
        ready = [i for i, deg in enumerate(indegree) if deg == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            i = heapq.heappop(ready)
            order.append(self._keys[i])
            for child in self._dependents[i]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, child)
        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order


class ResourceGraph:
    """Declared resources plus the dependency edges between them (by address)."""

    def __init__(
        self, specs: Sequence[ResourceSpec], dependencies: Mapping[str, Iterable[str]]
    ) -> None:
        self._specs = {s.address: s for s in sorted(specs, key=lambda s: s.address)}
        self._by_name = {s.name: s for s in self._specs.values()}
        self._graph = DependencyGraph(self._specs, dependencies)

        cycle = self._graph.find_cycle()
        if cycle is not None:
            raise CycleError([self._specs[a].name for a in cycle])

    @classmethod
    def empty(cls) -> ResourceGraph:
        return cls([], {})

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, address: object) -> bool:
        return address in self._specs

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self._specs.values())

    @property
    def specs(self) -> list[ResourceSpec]:
        return list(self._specs.values())

    @property
    def edges(self) -> list[tuple[int, int]]:
        """``(dependent, dependency)`` index pairs; indices follow :attr:`specs`."""
        return self._graph.edges

    def get(self, address: str) -> ResourceSpec:
        return self._specs[address]

    def resolve_name(self, name: str) -> ResourceSpec | None:
        return self._by_name.get(name)

    def dependencies(self, address: str) -> list[str]:
        return self._graph.dependencies(address)

    def dependents(self, address: str) -> list[str]:
        return self._graph.dependents(address)

    def topological_order(self) -> list[str]:
        return self._graph.topological_order()

    def reverse_topological_order(self) -> list[str]:
        return self._graph.reverse_topological_order()


def _resolve_dependency(spec: ResourceSpec, ref: str, by_name: Mapping[str, ResourceSpec]) -> str:
    target = by_name.get(ref)
    if target is None:
        # Explicit depends_on may also use the full address.
        kind, _, name = ref.partition(".")
        candidate = by_name.get(name)
        if candidate is not None and candidate.kind == kind:
            target = candidate
    if target is None:
        raise ResolutionError(spec.address, ref)
    return target.address


def build_graph(specs: Sequence[ResourceSpec]) -> ResourceGraph:
    """Build a :class:`ResourceGraph` from declared specs.

    Raises:
        DuplicateNameError: Two specs share a logical name.
        ResolutionError: A reference or ``depends_on`` names an undeclared resource.
        CycleError: The dependencies contain a cycle.
    """
    by_name: dict[str, ResourceSpec] = {}
    for spec in specs:
        prior = by_name.get(spec.name)
        if prior is not None:
            raise DuplicateNameError(spec.name, [prior.address, spec.address])
        by_name[spec.name] = spec

    dependencies: dict[str, list[str]] = {}
    for spec in specs:
        deps: list[str] = []
        try:
            refs = [*spec.depends_on, *(r.name for r in spec.references())]
        except ReferenceSyntaxError as exc:
            raise LoadError(f"Resource '{spec.address}': {exc}") from exc
        for ref in refs:
            address = _resolve_dependency(spec, ref, by_name)
            if address == spec.address:
                raise CycleError([spec.name])
            if address not in deps:
                deps.append(address)
        dependencies[spec.address] = deps

    graph = ResourceGraph(list(specs), dependencies)
    logger.debug("Built resource graph: %d nodes, %d edges", len(graph), len(graph.edges))
    return graph
