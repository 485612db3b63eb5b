"""cadence CLI — Typer application."""

import typer
from rich.console import Console

from cadence.version import __version__

app = typer.Typer(
    name="cadence",
    help="cadence — marketing automation workflows for newsletter publications.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """cadence CLI."""
    if version:
        console.print(f"cadence v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Authoring ──────────────────────────────────────────────────────────────────
from cadence.cli.commands import validate, preview  # noqa: E402

app.command(name="validate", help="Validate an exported workflow or bare graph")(validate.validate_file)
app.command(name="compile", help="Show the compiled step table of a workflow graph")(validate.compile_file)
app.command(name="preview", help="Render a subject/content pair with sample data")(preview.preview_email)
app.command(name="variables", help="List personalization variables")(preview.variables_list)

# ── Operations ─────────────────────────────────────────────────────────────────
from cadence.cli.commands import config, serve  # noqa: E402

app.command(name="config", help="Show resolved configuration")(config.config_show)
app.command(name="serve", help="Start the API server")(serve.serve_api)
app.command(name="scheduler", help="Run the due-run scheduler and CUSTOM_DATE sweeper")(serve.run_scheduler)


if __name__ == "__main__":
    app()
