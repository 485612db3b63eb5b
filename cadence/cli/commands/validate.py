"""cadence validate / compile — check a workflow graph from the terminal."""

import json
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from cadence.exceptions import InvalidDefinition
from cadence.types import NodeKind, ValidationResult, Workflow, WorkflowDefinition
from cadence.workflows.compiler import compile_definition
from cadence.workflows.validator import WorkflowValidator

console = Console()


def _load(path: Path) -> tuple[Optional[Workflow], WorkflowDefinition]:
    """Read an ``export_json`` payload, or a bare ``{nodes, edges}`` graph."""
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot read {path}:[/red] {exc}")
        raise typer.Exit(2)
    try:
        if isinstance(data, dict) and "trigger" in data:
            data.setdefault("publicationId", "local")
            workflow = Workflow.model_validate(data)
            return workflow, workflow.definition
        return None, WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        console.print(f"[red]Not a workflow:[/red] {exc.error_count()} schema error(s)")
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            console.print(f"  [dim]{loc}[/dim] {err['msg']}")
        raise typer.Exit(2)


def _print_result(result: ValidationResult) -> None:
    for violation in result.violations:
        console.print(f"  [red]✗[/red] {violation}")
    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")


def validate_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Workflow JSON file"),
):
    """Run the activation checks against a workflow file.

    Exits 1 when the graph could not be activated.

    Example:
        cadence validate welcome-series.json
    """
    workflow, definition = _load(path)
    validator = WorkflowValidator()
    result = validator.validate_workflow(workflow) if workflow else validator.validate(definition)

    if result.valid:
        console.print(
            f"[green]✓ valid[/green] — {len(definition.nodes)} nodes, {len(definition.edges)} edges"
        )
        _print_result(result)
        return
    console.print(f"[red]✗ invalid[/red] — {len(result.violations)} violation(s)")
    _print_result(result)
    raise typer.Exit(1)


def compile_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Workflow JSON file"),
):
    """Print the node-by-node transition table the engine would follow."""
    workflow, definition = _load(path)
    try:
        compiled = compile_definition(
            definition,
            workflow_id=workflow.id if workflow else path.stem,
            version=workflow.version if workflow else 1,
        )
    except InvalidDefinition as exc:
        console.print(f"[red]✗ cannot compile:[/red] {exc.message}")
        for violation in exc.violations:
            console.print(f"  [red]✗[/red] {violation}")
        raise typer.Exit(1)

    kinds = {n.id: n for n in definition.nodes}
    table = Table(box=box.ROUNDED, header_style="bold dim", title=f"[bold]{path.name}[/bold]")
    table.add_column("#", width=4, justify="right")
    table.add_column("Node", style="cyan")
    table.add_column("Kind")
    table.add_column("Next")

    for index, node_id in enumerate(compiled.order, start=1):
        node = kinds[node_id]
        transition = compiled.transitions[node_id]
        if node.kind == NodeKind.CONDITION:
            nxt = f"yes → {transition.on_true or 'end'}\nno → {transition.on_false or 'end'}"
        else:
            nxt = transition.next or "[dim]end[/dim]"
        marker = " [green](entry)[/green]" if node_id == compiled.entry_node_id else ""
        table.add_row(str(index), node_id + marker, node.subtype, nxt)

    console.print(table)
