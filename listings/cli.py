"""Listings CLI - run a sync from the terminal, serve the API, manage the database."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from .config import settings
from .logging_config import configure_logging

app = typer.Typer(
    name="listings",
    help="Business listings sync - pull profile data into the local store",
    no_args_is_help=True,
)
console = Console()


def _output_result(result: dict[str, Any]) -> None:
    console.print_json(json.dumps(result, default=str))


def _render_event(event) -> None:
    payload = event.payload
    if event.type == "progress":
        console.print(f"[cyan][{payload.get('progress')}/{payload.get('total')}][/cyan] {payload.get('message')}")
    elif event.type == "warning":
        console.print(f"[yellow]warning:[/yellow] {payload.get('message')}")
    elif event.type == "save-error":
        console.print(f"[red]save failed:[/red] {payload.get('saveType')} {payload.get('locationId')}: {payload.get('error')}")
    elif event.type == "error":
        console.print(f"[red]error:[/red] {payload.get('error')}")


def _summary_table(summary) -> Table:
    table = Table(title=f"Sync {summary.status}")
    table.add_column("Facet", style="cyan")
    table.add_column("Fetched", justify="right")
    table.add_column("Saved", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    for facet, counters in summary.counters.items():
        table.add_row(facet, str(counters.fetched), str(counters.saved), str(counters.failed))
    return table


@app.command("sync")
def sync(
    token: str = typer.Option(..., "--token", "-t", envvar="LISTINGS_ACCESS_TOKEN", help="OAuth access token"),
    concurrency: int = typer.Option(
        settings.sync_max_concurrent_locations, "--concurrency", "-c", min=1, help="Locations processed at once"
    ),
    resume: str | None = typer.Option(None, "--resume", help="Resume an unfinished run by id"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Print the summary as JSON"),
):
    """Run a full sync for the account behind TOKEN."""
    from .database import async_session_factory, create_tables
    from .gbp.client import GBPClient, GBPConfig
    from .schemas.sync import SyncConfig
    from .sync.orchestrator import SyncOrchestrator
    from .sync.run_store import SyncRunStore

    configure_logging(settings.log_level)

    async def _run():
        if settings.is_sqlite:
            await create_tables()
        orchestrator = SyncOrchestrator(
            async_session_factory,
            lambda t: GBPClient(GBPConfig(token=t)),
            config=SyncConfig(max_concurrent_locations=concurrency),
            run_store=SyncRunStore(async_session_factory),
        )
        runner = asyncio.create_task(orchestrator.run(token, resume_run_id=resume))
        async for event in orchestrator.emitter.events():
            if not json_output:
                _render_event(event)
        return await runner

    summary = asyncio.run(_run())
    if json_output:
        _output_result(summary.model_dump(mode="json"))
    else:
        console.print(_summary_table(summary))
        console.print(
            f"Locations: {summary.processed_locations} processed, "
            f"{summary.skipped_locations} skipped, {summary.warnings} warnings"
        )
        if summary.run_id:
            console.print(f"[dim]Run id: {summary.run_id}[/dim]")
    if summary.status != "COMPLETE":
        raise typer.Exit(1)


@app.command("run-status")
def run_status(run_id: str = typer.Argument(..., help="Sync run id")):
    """Show the persisted state of a sync run."""
    from .database import async_session_factory
    from .sync.errors import SyncRunNotFoundError
    from .sync.run_store import SyncRunStore

    async def _get():
        return await SyncRunStore(async_session_factory).get(run_id)

    try:
        run = asyncio.run(_get())
    except SyncRunNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    _output_result({
        "run_id": str(run.id),
        "status": run.status,
        "current_step": run.current_step,
        "total_locations": run.total_locations,
        "completed_locations": len(run.completed_location_ids or []),
        "counters": run.counters,
        "warnings": run.warnings,
        "error": run.error,
    })


@app.command("init-db")
def init_db():
    """Create all tables in the configured database."""
    from .database import create_tables

    asyncio.run(create_tables())
    console.print(f"[green]Tables created in {settings.database_url}[/green]")


@app.command("serve")
def serve(
    port: int = typer.Option(8030, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    reload: bool = typer.Option(
        not settings.is_production, "--reload/--no-reload", help="Reload on code changes"
    ),
):
    """Launch the sync HTTP API."""
    import uvicorn

    console.print(f"[bold cyan]Starting listings sync at http://{host}:{port}[/bold cyan]")
    uvicorn.run("listings.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
