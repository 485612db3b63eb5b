"""
Workflow compiler — turns a validated definition into an immutable step graph.

The compiled form maps every node id to its data and to a Transition
holding its successor(s), so the execution engine resolves each hop with a
single dict lookup.  Compilation is pure and deterministic; instances are
frozen and safe to share across concurrent run advancement.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from cadence.exceptions import CompilerError, InvalidDefinition
from cadence.types import Branch, NodeData, NodeKind, WorkflowDefinition

from .graph import get_children, topological_sort
from .validator import WorkflowValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """Outgoing pointers of one node. Condition nodes use on_true/on_false."""
    next: Optional[str] = None
    on_true: Optional[str] = None
    on_false: Optional[str] = None


@dataclass(frozen=True)
class CompiledWorkflow:
    workflow_id: str
    version: int
    entry_node_id: str
    nodes: Mapping[str, NodeData]
    transitions: Mapping[str, Transition]
    order: tuple[str, ...]

    def node(self, node_id: str) -> NodeData:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise CompilerError(
                f"Node '{node_id}' is not part of workflow '{self.workflow_id}' v{self.version}",
                node_id=node_id,
            ) from None

    def step(self, node_id: str, outcome: Optional[bool] = None) -> Optional[str]:
        """
        Return the node that follows *node_id*, or None when the run ends.

        *outcome* is the condition result for condition nodes and must be
        None for every other kind.
        """
        try:
            transition = self.transitions[node_id]
        except KeyError:
            raise CompilerError(
                f"No transition for node '{node_id}' in workflow '{self.workflow_id}'",
                node_id=node_id,
            ) from None
        if outcome is None:
            return transition.next
        return transition.on_true if outcome else transition.on_false


def compile_definition(
    definition: WorkflowDefinition,
    workflow_id: str = "",
    version: int = 1,
    validator: Optional[WorkflowValidator] = None,
) -> CompiledWorkflow:
    """
    Validate and compile *definition*.

    Raises:
        InvalidDefinition: with every violation when the graph is invalid.
    """
    result = (validator or WorkflowValidator()).validate(definition)
    if not result.valid:
        raise InvalidDefinition(
            "Workflow definition is invalid", violations=result.violations
        )

    order = topological_sort(definition.nodes, definition.edges)
    by_id = {n.id: n for n in definition.nodes}
    entry = definition.trigger_nodes()[0].id

    nodes: dict[str, NodeData] = {}
    transitions: dict[str, Transition] = {}
    for node_id in order:
        node = by_id[node_id]
        nodes[node_id] = node.data
        children = get_children(node_id, definition.edges)
        if node.kind == NodeKind.CONDITION:
            on_true = on_false = None
            for target, edge in children:
                if edge.resolved_branch() == Branch.TRUE:
                    on_true = target
                else:
                    on_false = target
            transitions[node_id] = Transition(on_true=on_true, on_false=on_false)
        else:
            transitions[node_id] = Transition(next=children[0][0] if children else None)

    return CompiledWorkflow(
        workflow_id=workflow_id,
        version=version,
        entry_node_id=entry,
        nodes=MappingProxyType(nodes),
        transitions=MappingProxyType(transitions),
        order=tuple(order),
    )


class WorkflowCompiler:
    """Memoizes compiled graphs by (workflow_id, version).

    A version number always identifies one definition, so entries never go
    stale; the cache is only bounded to cap memory.
    """

    def __init__(self, max_entries: int = 512, validator: Optional[WorkflowValidator] = None) -> None:
        self._max_entries = max_entries
        self._validator = validator or WorkflowValidator()
        self._cache: OrderedDict[tuple[str, int], CompiledWorkflow] = OrderedDict()

    def compile(
        self, workflow_id: str, version: int, definition: WorkflowDefinition
    ) -> CompiledWorkflow:
        key = (workflow_id, version)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        compiled = compile_definition(definition, workflow_id, version, self._validator)
        self._cache[key] = compiled
        if len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        logger.debug("Compiled workflow=%s v%d (%d nodes)", workflow_id, version, len(compiled.nodes))
        return compiled

    def invalidate(self, workflow_id: str) -> None:
        for key in [k for k in self._cache if k[0] == workflow_id]:
            del self._cache[key]
