"""cadence preview / variables — personalization from the terminal."""

from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cadence.personalization import get_available_variables, render_preview, validate_template

console = Console()


def _parse_vars(pairs: Optional[list[str]]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            console.print(f"[red]Expected KEY=VALUE, got:[/red] {pair}")
            raise typer.Exit(2)
        key = key.strip()
        if not key.startswith("{{"):
            key = "{{" + key + "}}"
        values[key] = value
    return values


def preview_email(
    subject: str = typer.Option(..., "--subject", "-s", help="Subject template"),
    content: str = typer.Option(..., "--content", "-c", help="Body template"),
    var: Optional[list[str]] = typer.Option(None, "--var", help="Override a sample value: subscriber.firstName=Ada"),
):
    """Render a subject and body with sample data, as the editor preview does.

    Example:
        cadence preview -s "Hi {{subscriber.firstName}}" -c "Welcome to {{publication.name}}"
    """
    overrides = _parse_vars(var)
    preview = render_preview(subject, content, overrides)
    console.print(Panel(preview.subject, title="Subject", title_align="left"))
    console.print(Panel(preview.content, title="Content", title_align="left"))

    for label, template in (("subject", subject), ("content", content)):
        check = validate_template(template)
        if check.invalid_variables:
            console.print(
                f"[yellow]Unknown variables in {label}:[/yellow] {', '.join(check.invalid_variables)}"
            )


def variables_list():
    """List the personalization variables available to email templates."""
    table = Table(box=box.ROUNDED, header_style="bold dim", title="[bold]Personalization variables[/bold]")
    table.add_column("Token", style="cyan")
    table.add_column("Label")
    table.add_column("Example", style="dim")
    for variable in get_available_variables():
        table.add_row(variable.key, variable.label, variable.example)
    console.print(table)
