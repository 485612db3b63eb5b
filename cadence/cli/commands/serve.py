"""cadence serve / scheduler — long-running processes."""

import typer
from rich.console import Console

console = Console()


def serve_api(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to listen on"),
    reload: bool = typer.Option(False, help="Reload on code changes (development)"),
):
    """Start the cadence API server."""
    import uvicorn
    console.print(f"[green]Starting cadence API on {host}:{port}[/green]")
    uvicorn.run("cadence.api.main:app", host=host, port=port, reload=reload)


def run_scheduler():
    """Advance due runs and fire CUSTOM_DATE workflows until interrupted.

    Only one instance does work at a time; others wait on the Redis lock.
    """
    from cadence.engine.runner import main
    console.print("[green]Starting cadence scheduler[/green]")
    main()
