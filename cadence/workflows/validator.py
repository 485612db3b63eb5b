"""
WorkflowValidator — structural correctness checker for WorkflowDefinition.

All checks are non-destructive reads of the workflow graph.  Warnings
(soft issues) are returned separately with a "WARNING:" prefix; only
violations block activation.
"""

from __future__ import annotations

from collections import Counter

from cadence.exceptions import InvalidDefinition
from cadence.types import (
    Branch,
    NodeKind,
    TriggerNodeData,
    TriggerType,
    ValidationResult,
    Workflow,
    WorkflowDefinition,
)

from .graph import get_children, get_parents, reachable_from, topological_sort


class WorkflowValidator:
    """
    Validates the structural integrity of a WorkflowDefinition.

    Usage::

        result = WorkflowValidator().validate(definition)
        if not result.valid:
            raise InvalidDefinition("Invalid workflow", violations=result.violations)

    All checks are run even if earlier ones fail, so callers get the full
    violation list in one shot.
    """

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        violations: list[str] = []
        warnings: list[str] = []
        nodes = definition.nodes
        edges = definition.edges

        # ── Node identity ─────────────────────────────────────────────────────
        counts = Counter(n.id for n in nodes)
        for node_id, count in counts.items():
            if count > 1:
                violations.append(f"Node id '{node_id}' is used by {count} nodes.")

        for node in nodes:
            if node.type is not None and node.type != node.kind:
                violations.append(
                    f"Node '{node.id}': type '{node.type.value}' does not match "
                    f"data.type '{node.kind.value}'."
                )

        # ── Trigger count ─────────────────────────────────────────────────────
        triggers = definition.trigger_nodes()
        if not triggers:
            violations.append("Workflow has no trigger node.")
        elif len(triggers) > 1:
            ids = [t.id for t in triggers]
            violations.append(f"Workflow has {len(triggers)} trigger nodes; exactly one is allowed: {ids}")

        # ── Edge references ───────────────────────────────────────────────────
        # Must run before graph algorithms so they work on a consistent set.
        node_ids = definition.node_ids()
        valid_edges = []
        for edge in edges:
            edge_ok = True
            if edge.source not in node_ids:
                violations.append(
                    f"Edge '{edge.id}': source '{edge.source}' references a node that does not exist."
                )
                edge_ok = False
            if edge.target not in node_ids:
                violations.append(
                    f"Edge '{edge.id}': target '{edge.target}' references a node that does not exist."
                )
                edge_ok = False
            if edge_ok:
                valid_edges.append(edge)

        # ── Fan-out per node kind ─────────────────────────────────────────────
        for node in nodes:
            outgoing = get_children(node.id, valid_edges)
            if node.kind == NodeKind.CONDITION:
                if len(outgoing) > 2:
                    violations.append(
                        f"Condition node '{node.id}' has {len(outgoing)} outgoing edges; "
                        "at most two (true and false) are allowed."
                    )
                branches: list[Branch] = []
                for _, edge in outgoing:
                    branch = edge.resolved_branch()
                    if branch is None:
                        violations.append(
                            f"Edge '{edge.id}' leaves condition node '{node.id}' without a "
                            "branch; set branch to 'true' or 'false'."
                        )
                    else:
                        branches.append(branch)
                for branch, count in Counter(branches).items():
                    if count > 1:
                        violations.append(
                            f"Condition node '{node.id}' has {count} edges on the "
                            f"'{branch.value}' branch."
                        )
                if not outgoing:
                    warnings.append(
                        f"WARNING: Condition node '{node.id}' has no outgoing edges; "
                        "runs complete after evaluating it."
                    )
            elif len(outgoing) > 1:
                violations.append(
                    f"{node.kind.value.capitalize()} node '{node.id}' has {len(outgoing)} "
                    "outgoing edges; at most one is allowed."
                )

        # ── Trigger placement ─────────────────────────────────────────────────
        for trigger in triggers:
            if get_parents(trigger.id, valid_edges):
                violations.append(f"Trigger node '{trigger.id}' must not have incoming edges.")
            if not get_children(trigger.id, valid_edges):
                warnings.append(
                    f"WARNING: Trigger node '{trigger.id}' has no steps after it."
                )

        # ── Acyclicity ────────────────────────────────────────────────────────
        try:
            topological_sort(nodes, valid_edges)
        except InvalidDefinition as exc:
            violations.extend(exc.violations)

        # ── Reachability ──────────────────────────────────────────────────────
        if len(triggers) == 1:
            reachable = reachable_from(triggers[0].id, valid_edges)
            for node in nodes:
                if node.id not in reachable:
                    violations.append(
                        f"Node '{node.id}' is not reachable from the trigger node."
                    )

        return ValidationResult(valid=not violations, violations=violations, warnings=warnings)

    def validate_workflow(self, workflow: Workflow) -> ValidationResult:
        """Graph checks plus trigger consistency between workflow metadata and graph."""
        result = self.validate(workflow.definition)
        violations = list(result.violations)

        for node in workflow.definition.trigger_nodes():
            data = node.data
            if isinstance(data, TriggerNodeData) and data.trigger_type != workflow.trigger:
                violations.append(
                    f"Trigger node '{node.id}' is '{data.trigger_type.value}' but the "
                    f"workflow trigger is '{workflow.trigger.value}'."
                )

        violations.extend(check_trigger_config(workflow))
        return ValidationResult(
            valid=not violations, violations=violations, warnings=result.warnings
        )


def check_trigger_config(workflow: Workflow) -> list[str]:
    """Trigger configuration shape rules that depend on the trigger kind."""
    errors: list[str] = []
    cfg = workflow.trigger_config
    if workflow.trigger == TriggerType.CUSTOM_DATE and cfg.custom_date is None:
        errors.append("CUSTOM_DATE trigger requires triggerConfig.customDate.")
    if workflow.trigger == TriggerType.FORM_SUBMITTED and not cfg.form_id:
        errors.append("FORM_SUBMITTED trigger requires triggerConfig.formId.")
    return errors
