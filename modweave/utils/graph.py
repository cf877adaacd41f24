"""Directed graphs over mod ids.

Graphs are plain adjacency dicts: ``graph[a]`` is the set of ids ``a`` has an
edge to. Ids that only appear as edge targets are treated as nodes too.
"""

import heapq
from collections.abc import Iterable, Mapping

Graph = Mapping[str, Iterable[str]]


def _all_nodes(graph: Graph) -> set[str]:
    nodes = set(graph)
    for targets in graph.values():
        nodes.update(targets)
    return nodes


def kahn_order(graph: Graph) -> tuple[list[str], set[str]]:
    """Order nodes so that every edge target comes before its source.

    With ``graph[a] = {b}`` meaning "a depends on b", the result lists ``b``
    before ``a``. Ties are broken by id.

    Returns:
        (ordered ids, ids left with residual in-degree because of a cycle)
    """
    nodes = _all_nodes(graph)
    pending = {n: set(graph.get(n, ())) & nodes for n in nodes}
    dependents: dict[str, set[str]] = {n: set() for n in nodes}
    for node, targets in pending.items():
        for target in targets:
            dependents[target].add(node)

    ready = [n for n, targets in pending.items() if not targets]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            pending[dependent].discard(node)
            if not pending[dependent]:
                heapq.heappush(ready, dependent)

    residual = {n for n, targets in pending.items() if targets}
    return order, residual


def strongly_connected_components(graph: Graph) -> list[list[str]]:
    """Tarjan's algorithm, iterative.

    Returns:
        Components as sorted id lists, in order of their smallest id
    """
    nodes = sorted(_all_nodes(graph))
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    for root in nodes:
        if root in index:
            continue
        work: list[tuple[str, list[str]]] = [(root, sorted(graph.get(root, ())))]
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, targets = work[-1]
            if targets:
                target = targets.pop(0)
                if target not in index:
                    index[target] = lowlink[target] = counter
                    counter += 1
                    stack.append(target)
                    on_stack.add(target)
                    work.append((target, sorted(graph.get(target, ()))))
                elif target in on_stack:
                    lowlink[node] = min(lowlink[node], index[target])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index[node]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))

    return sorted(components, key=lambda c: c[0])


def find_cycles(graph: Graph) -> list[list[str]]:
    """Get every strongly connected component that contains a cycle."""
    cycles = []
    for component in strongly_connected_components(graph):
        if len(component) > 1 or component[0] in set(graph.get(component[0], ())):
            cycles.append(component)
    return cycles
