"""
Graph traversal primitives shared by the engine, aggregation and bulk code.

Graphs are passed as a neighbour function (task id -> iterable of task ids)
so the same search runs over database-backed lookups and over in-memory
adjacency maps. Every traversal keeps a visited set and terminates on
cyclic input.
"""

import logging
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

Neighbours = Callable[[str], Iterable[str]]

WHITE, GRAY, BLACK = 0, 1, 2


def find_path(start: str, target: str, neighbours: Neighbours) -> Optional[List[str]]:
    """
    Breadth-first search for a path from start to target.

    Returns:
        The shortest path as a list of ids [start, ..., target], or None if
        target is unreachable
    """
    if start == target:
        return [start]

    parents: Dict[str, Optional[str]] = {start: None}
    queue = deque([start])

    while queue:
        current = queue.popleft()
        for neighbour in neighbours(current):
            if neighbour in parents:
                continue
            parents[neighbour] = current
            if neighbour == target:
                path = [neighbour]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])
                path.reverse()
                return path
            queue.append(neighbour)

    return None


def detect_cycles(nodes: Iterable[str], neighbours: Neighbours, max_steps: int = 100000) -> List[List[str]]:
    """
    Find cycles with an iterative white/gray/black depth-first search.

    Each back edge to a gray node yields one cycle, reported as the node ids
    along the stack from the re-entered node, closed by repeating it. The
    walk stops after max_steps edge visits so corrupted data cannot hang it.

    Returns:
        List of cycles, empty for an acyclic graph
    """
    colour: Dict[str, int] = {}
    cycles: List[List[str]] = []
    seen_cycles: Set[frozenset] = set()
    steps = 0

    for root in nodes:
        if colour.get(root, WHITE) != WHITE:
            continue

        colour[root] = GRAY
        stack = [(root, iter(list(neighbours(root))))]
        path = [root]

        while stack:
            node, children = stack[-1]
            advanced = False

            for child in children:
                steps += 1
                if steps > max_steps:
                    logger.warning(f"Cycle detection stopped after {max_steps} steps")
                    return cycles

                state = colour.get(child, WHITE)
                if state == WHITE:
                    colour[child] = GRAY
                    stack.append((child, iter(list(neighbours(child)))))
                    path.append(child)
                    advanced = True
                    break
                if state == GRAY:
                    cycle = path[path.index(child):] + [child]
                    key = frozenset(cycle)
                    if key not in seen_cycles:
                        seen_cycles.add(key)
                        cycles.append(cycle)

            if not advanced:
                colour[node] = BLACK
                stack.pop()
                path.pop()

    return cycles


def topological_levels(nodes: List[str], neighbours: Neighbours) -> Dict[str, int]:
    """
    Longest-path distance of every node from a source (Kahn layering).

    Nodes left over because they sit on or behind a cycle keep the best
    level reached from their already-layered predecessors.
    """
    node_set = set(nodes)
    indegree: Dict[str, int] = {node: 0 for node in nodes}
    successors: Dict[str, List[str]] = {}

    for node in nodes:
        successors[node] = [n for n in neighbours(node) if n in node_set]
        for successor in successors[node]:
            indegree[successor] += 1

    levels: Dict[str, int] = {node: 0 for node in nodes}
    queue = deque(node for node in nodes if indegree[node] == 0)

    while queue:
        node = queue.popleft()
        for successor in successors[node]:
            levels[successor] = max(levels[successor], levels[node] + 1)
            indegree[successor] -= 1
            if indegree[successor] == 0:
                queue.append(successor)

    return levels
