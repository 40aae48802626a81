"""
Indexer CLI

Command-line interface for order book indexer administration.

Commands:
- sync: Backfill a height range
- listen: Run the live listener in the foreground
- reconcile: Compare indexed orders with the ledger
- checkpoint: Show the sync checkpoint
"""

from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from basecore.logging import setup_logging
from orderbook_indexer.config import IndexerConfig
from orderbook_indexer.errors import IndexerError, SyncFailed

app = typer.Typer(
    name="indexer-cli",
    help="Order Book Indexer CLI",
)

console = Console()


def load_service(**overrides):
    """Build a service from settings, applying command-line overrides."""
    from orderbook_indexer.service import build_service

    try:
        config = IndexerConfig.from_settings()
        if overrides:
            config = IndexerConfig.build(**{**config.model_dump(), **{k: v for k, v in overrides.items() if v is not None}})
    except IndexerError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    return build_service(config)


@app.callback()
def main(log_level: str = typer.Option("INFO", help="Log level")):
    setup_logging(level=log_level)


@app.command()
def sync(
    from_height: Optional[int] = typer.Option(None, "--from", help="First height (defaults to genesis)"),
    to_height: Optional[int] = typer.Option(None, "--to", help="Last height (defaults to latest)"),
    batch_size: Optional[int] = typer.Option(None, help="Heights per batch"),
):
    """
    Backfill events for a height range.

    Resumes from the checkpoint when it is further along than --from.
    """
    service = load_service(batch_size=batch_size)

    try:
        summary = service.backfill.run(from_height, to_height if to_height is not None else "latest")
    except SyncFailed as e:
        rprint(f"[red]Sync failed for heights {e.from_height}-{e.to_height}: {e.cause}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        service.backfill.stop()
        rprint("[yellow]Interrupted[/yellow]")
        raise typer.Exit(130)

    table = Table(title=f"Sync {summary.source}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Heights", f"{summary.from_height} - {summary.to_height}")
    table.add_row("Batches", str(summary.batches))
    for kind, count in sorted(summary.applied.items()):
        table.add_row(f"Applied {kind}", str(count))
    table.add_row("Duplicates", str(summary.duplicates))
    table.add_row("Ordering violations", str(summary.ordering_violations))
    table.add_row("Stopped early", "yes" if summary.stopped else "no")
    console.print(table)


@app.command()
def listen():
    """
    Run the live listener in the foreground until Ctrl+C.
    """
    service = load_service()
    listener = service.listener
    listener.start()
    rprint(f"[green]Listening on {service.config.source}[/green] (Ctrl+C to stop)")

    try:
        while not listener.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        rprint("[yellow]Stopping...[/yellow]")
        listener.stop()
    except IndexerError as e:
        rprint(f"[red]Listener stopped: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def reconcile(
    limit: int = typer.Option(100, help="Max orders to check"),
):
    """
    Compare indexed orders against ledger state (read-only).
    """
    from orderbook_indexer.reconciliation import Reconciler

    service = load_service()
    report = Reconciler(service.projector.session_factory, service.ledger).run(limit=limit)

    rprint(f"Checked [bold]{report.checked}[/bold] orders, unreachable: {len(report.unreachable)}")
    for side, totals in report.totals.items():
        rprint(f"  {side}: filled={totals['filled']} remaining={totals['remaining']}")

    if report.ok:
        rprint("[green]No divergences[/green]")
        return

    table = Table(title="Divergences")
    table.add_column("Order", style="cyan")
    table.add_column("Field")
    table.add_column("Indexed")
    table.add_column("Ledger")
    for d in report.divergences:
        table.add_row(str(d.order_id), d.field, str(d.indexed), str(d.ledger))
    for d in report.total_divergences:
        table.add_row("(all)", f"total {d.field}", str(d.indexed), str(d.ledger))
    console.print(table)
    raise typer.Exit(2)


@app.command()
def checkpoint():
    """
    Show the sync checkpoint for the configured source.
    """
    service = load_service()
    cp = service.checkpoints.get(service.config.source)

    if not cp:
        rprint(f"[yellow]No checkpoint yet for {service.config.source}[/yellow]")
        return

    table = Table(title="Checkpoint")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in cp.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


if __name__ == "__main__":
    app()
