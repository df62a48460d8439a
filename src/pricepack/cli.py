"""Click-based CLI for pricepack.

Thin wrapper around library modules. Every operation delegates to the
ingestion package.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from pricepack.core import ConfigError, load_config

        try:
            config = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as exc:
            _fail(f"Invalid configuration: {exc}")
        _configure_logging("DEBUG" if ctx.obj.get("verbose") else config.log_level)
        ctx.obj["config"] = config
    return ctx.obj["config"]


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from pricepack.ingestion import create_store

    return await create_store(config.storage)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PRICEPACK_CONFIG",
    default=None,
    help="Path to pricepack.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="pricepack")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """pricepack: ingest and export zipped price CSVs."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console


# ---------------------------------------------------------------------------
# ingest
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--type",
    "archive_type",
    type=click.Choice(["zip", "tar"], case_sensitive=False),
    default="zip",
    help="Container format of ARCHIVE.",
)
@click.option(
    "--id-policy",
    type=click.Choice(["generate", "source"], case_sensitive=False),
    default=None,
    help="Override ingest.id_policy from config.",
)
@click.pass_context
def ingest(
    ctx: click.Context,
    archive: Path,
    archive_type: str,
    id_policy: str | None,
) -> None:
    """Load ARCHIVE into the store and print the stats delta as JSON."""
    from pricepack.core import IdentityPolicy, PricePackError
    from pricepack.ingestion import ingest_archive, report_stats

    config = _load_config(ctx)
    policy = IdentityPolicy(id_policy.lower()) if id_policy else config.ingest.id_policy

    async def _run():
        store = await _create_store_async(config)
        try:
            with archive.open("rb") as container:
                return await ingest_archive(
                    store, container, archive_type.lower(), id_policy=policy
                )
        finally:
            await store.close()

    try:
        delta = _run_async(_run())
    except PricePackError as exc:
        _fail(f"Ingestion failed: {exc}")

    click.echo(json.dumps(report_stats(delta)))
    console.print(f"[green]✓[/green] Ingested {delta.total_items} records from {archive.name}")


# ---------------------------------------------------------------------------
# export
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("output", type=click.Path(dir_okay=False, writable=True, path_type=Path))
@click.pass_context
def export(ctx: click.Context, output: Path) -> None:
    """Write every stored record to OUTPUT as a zipped data.csv."""
    from pricepack.core import PricePackError
    from pricepack.ingestion import export_store

    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await export_store(store)
        finally:
            await store.close()

    try:
        payload = _run_async(_run())
    except PricePackError as exc:
        _fail(f"Export failed: {exc}")

    output.write_bytes(payload)
    console.print(f"[green]✓[/green] Wrote {output} ({len(payload)} bytes)")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default: api.host).")
@click.option("--port", type=int, default=None, help="Port (default: api.port).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port
    if ctx.obj.get("config_path"):
        # The app factory reloads config in the server process.
        os.environ["PRICEPACK_CONFIG"] = str(Path(ctx.obj["config_path"]).resolve())

    console.print(f"Starting pricepack API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "pricepack.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show storage backend and record count."""
    from pricepack.core import PricePackError

    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await store.health_check(), await store.count_records()
        finally:
            await store.close()

    try:
        healthy, total = _run_async(_run())
    except PricePackError as exc:
        _fail(f"Store unavailable: {exc}")

    table = Table(title="pricepack Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Storage backend", config.storage.backend.value)
    if config.storage.backend.value == "sqlite":
        table.add_row("Database path", config.storage.sqlite_path)
    else:
        table.add_row(
            "Database",
            f"{config.storage.postgres_host}:{config.storage.postgres_port}/{config.storage.postgres_db}",
        )
    table.add_row("Healthy", "yes" if healthy else "no")
    table.add_row("Stored records", str(total))
    table.add_row("Identity policy", config.ingest.id_policy.value)

    console.print(table)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
