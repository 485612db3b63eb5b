"""
Graph utilities for workflow traversal.

All functions operate on WorkflowNode / WorkflowEdge lists and are pure
(no side effects, no I/O) so they can be called safely from the validator,
compiler and manager alike.
"""

from __future__ import annotations

from collections import deque

from cadence.exceptions import InvalidDefinition
from cadence.types import WorkflowEdge, WorkflowNode


# ── Traversal helpers ─────────────────────────────────────────────────────────


def get_children(
    node_id: str, edges: list[WorkflowEdge]
) -> list[tuple[str, WorkflowEdge]]:
    """Return (target_id, edge) pairs for all outgoing edges of node_id."""
    return [(e.target, e) for e in edges if e.source == node_id]


def get_parents(
    node_id: str, edges: list[WorkflowEdge]
) -> list[tuple[str, WorkflowEdge]]:
    """Return (source_id, edge) pairs for all incoming edges of node_id."""
    return [(e.source, e) for e in edges if e.target == node_id]


def reachable_from(start_id: str, edges: list[WorkflowEdge]) -> set[str]:
    """Return every node ID reachable from start_id along directed edges, start included."""
    adjacency: dict[str, list[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)

    seen: set[str] = set()
    queue: deque[str] = deque([start_id])
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        queue.extend(adjacency.get(node, []))
    return seen


# ── Topological sort (Kahn's algorithm) ──────────────────────────────────────


def topological_sort(
    nodes: list[WorkflowNode], edges: list[WorkflowEdge]
) -> list[str]:
    """
    Return node IDs in topological order.

    Uses Kahn's BFS algorithm: seed with zero-in-degree nodes, emit and
    decrement children's in-degrees; if fewer nodes are emitted than exist
    the remainder sit on (or behind) a cycle.

    Raises:
        InvalidDefinition: if the graph contains a cycle, naming the
            node IDs that could not be ordered.
    """
    node_ids = [n.id for n in nodes]
    if not node_ids:
        return []

    in_degree: dict[str, int] = {nid: 0 for nid in node_ids}
    adjacency: dict[str, list[str]] = {nid: [] for nid in node_ids}

    for edge in edges:
        # Only count edges whose endpoints exist (validator reports the rest)
        if edge.source in adjacency and edge.target in in_degree:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    queue: deque[str] = deque(nid for nid in node_ids if in_degree[nid] == 0)
    order: list[str] = []

    while queue:
        node = queue.popleft()
        order.append(node)
        for child in adjacency[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(order) != len(node_ids):
        emitted = set(order)
        cycle_nodes = [nid for nid in node_ids if nid not in emitted]
        raise InvalidDefinition(
            f"Cycle detected in workflow graph. Involved node IDs: {cycle_nodes}",
            violations=[f"Cycle detected involving nodes: {cycle_nodes}"],
        )

    return order
