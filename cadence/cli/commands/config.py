"""cadence config — Show resolved cadence configuration."""

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def config_show():
    """Show the resolved configuration.

    Reads from environment variables and .env file.
    Credentials and connection strings are masked.

    Example:
        cadence config
    """
    from cadence.config import CadenceConfig
    cfg = CadenceConfig()

    def mask(val: str) -> str:
        s = str(val)
        if len(s) <= 8:
            return "***"
        return s[:4] + "…" + "***"

    sensitive = {"database_url", "email_api_key", "platform_api_key"}

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        show_lines=False,
        title="[bold]cadence Configuration[/bold]",
    )
    table.add_column("Key", style="cyan", width=34)
    table.add_column("Value", width=45)
    table.add_column("Env Var", style="dim", width=42)

    sections = [
        ("App", ["debug", "log_level"]),
        ("Storage", ["database_url", "redis_url", "task_queue_url", "inline_event_processing"]),
        ("Scheduler", [
            "scheduler_tick_seconds", "scheduler_batch_size",
            "scheduler_concurrency", "custom_date_sweep_seconds",
        ]),
        ("Engine", ["claim_lease_seconds", "max_steps_per_advance"]),
        ("Email", ["email_api_url", "email_api_key", "email_from_address", "email_max_attempts"]),
        ("Platform", ["platform_api_url", "platform_api_key"]),
        ("Alerts", ["delivery_failure_alert_threshold", "delivery_failure_window_seconds"]),
        ("Server", ["host", "port", "cors_origins"]),
    ]

    first = True
    for section_name, fields in sections:
        if not first:
            table.add_row("", "", "")
        first = False
        table.add_row(f"[bold dim]── {section_name} ──[/bold dim]", "", "")
        for attr in fields:
            val = getattr(cfg, attr, None)
            if val is None:
                display = "[dim](not set)[/dim]"
            elif attr in sensitive:
                display = mask(str(val))
            else:
                display = str(val)
            table.add_row(f"  {attr}", display, f"CADENCE_{attr.upper()}")

    console.print()
    console.print(table)
    console.print()
    console.print("[dim]Source: environment variables + .env file (prefix: CADENCE_)[/dim]")
