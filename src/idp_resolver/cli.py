"""CLI entry point for the IdP attribute resolver."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from idp_resolver.config import DEFAULT_STORE_PATH

app = typer.Typer(
    name="idp-resolver",
    help="IdP attribute resolver: resolve attributes and manage pairwise identifiers.",
    no_args_is_help=True,
)
console = Console()


def _ensure_db_dir(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.command()
def init(
    db: Path = typer.Option(DEFAULT_STORE_PATH, help="Path to SQLite identifier store"),
) -> None:
    """Create the identifier store schema."""
    from idp_resolver.storage.sqlite import SQLiteIdentifierStore

    _ensure_db_dir(db)

    async def _init() -> None:
        store = SQLiteIdentifierStore(db)
        await store.initialize()
        await store.close()

    asyncio.run(_init())
    console.print(f"[green]Initialized identifier store at {db}[/green]")


@app.command()
def resolve(
    config: Path = typer.Option(..., exists=True, dir_okay=False, help="Resolver YAML configuration"),
    principal: str = typer.Option(..., help="Authenticated principal name"),
    idp: str = typer.Option(..., help="IdP entity id"),
    rp: str = typer.Option(..., help="Relying party entity id"),
    attribute: list[str] = typer.Option([], "--attribute", "-a", help="Attribute to resolve (repeatable)"),
    db: Path | None = typer.Option(None, help="Override the configured identifier store path"),
) -> None:
    """Resolve attributes for a principal and relying party."""
    import yaml
    from pydantic import ValidationError

    from idp_resolver.config import build_resolver, load_resolver_config
    from idp_resolver.errors import ComponentInitializationError, ResolutionError
    from idp_resolver.storage.sqlite import SQLiteIdentifierStore

    async def _resolve() -> None:
        store = None
        resolver = None
        try:
            resolver_config = load_resolver_config(config)
            if resolver_config.uses_store:
                store_path = db or resolver_config.store.path
                _ensure_db_dir(store_path)
                store = SQLiteIdentifierStore(
                    store_path,
                    transaction_retries=resolver_config.store.transaction_retries,
                    busy_timeout=resolver_config.store.busy_timeout,
                )
                await store.initialize()
            resolver = build_resolver(resolver_config, store)
            resolver.initialize()
            attributes = await resolver.resolve(principal, idp, rp, attribute or None)
        except (ComponentInitializationError, ValidationError, yaml.YAMLError) as e:
            console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
            raise typer.Exit(1) from e
        except ResolutionError as e:
            console.print(f"[red]Resolution failed: {escape(str(e))}[/red]")
            raise typer.Exit(1) from e
        finally:
            if resolver is not None:
                resolver.destroy()
            if store is not None:
                await store.close()

        if not attributes:
            console.print("[dim]No attributes were resolved.[/dim]")
            return

        table = Table(title=f"Attributes for {principal} → {rp}")
        table.add_column("Attribute", style="bold")
        table.add_column("Values")
        for attribute_id, resolved in attributes.items():
            table.add_row(attribute_id, "\n".join(str(v) for v in resolved.values))
        console.print(table)

    asyncio.run(_resolve())


@app.command()
def deactivate(
    idp: str = typer.Option(..., help="IdP entity id"),
    rp: str = typer.Option(..., help="Relying party entity id"),
    identifier: str = typer.Option(..., help="Issued identifier to rotate out"),
    as_of: str | None = typer.Option(None, help="ISO-8601 deactivation time (default: now)"),
    db: Path = typer.Option(DEFAULT_STORE_PATH, help="Path to SQLite identifier store"),
) -> None:
    """Deactivate an issued identifier so the next resolution issues a new one."""
    from idp_resolver.storage.sqlite import SQLiteIdentifierStore

    when = None
    if as_of:
        try:
            when = datetime.fromisoformat(as_of)
        except ValueError as e:
            raise typer.BadParameter(f"not an ISO-8601 timestamp: {as_of}", param_hint="--as-of") from e

    async def _deactivate() -> None:
        store = SQLiteIdentifierStore(db)
        await store.initialize()
        try:
            record = await store.get_by_identifier(idp, rp, identifier)
            if record is None:
                console.print(f"[red]No active identifier {identifier} for {rp}[/red]")
                raise typer.Exit(1)
            await store.deactivate(idp, rp, identifier, when)
            console.print(f"[green]Deactivated identifier for {record.principal_name} at {rp}[/green]")
        finally:
            await store.close()

    asyncio.run(_deactivate())


@app.command()
def lookup(
    idp: str = typer.Option(..., help="IdP entity id"),
    rp: str = typer.Option(..., help="Relying party entity id"),
    identifier: str = typer.Option(..., help="Issued identifier"),
    db: Path = typer.Option(DEFAULT_STORE_PATH, help="Path to SQLite identifier store"),
) -> None:
    """Find the principal an active identifier was issued for."""
    from idp_resolver.storage.sqlite import SQLiteIdentifierStore

    async def _lookup() -> None:
        store = SQLiteIdentifierStore(db)
        await store.initialize()
        try:
            record = await store.get_by_identifier(idp, rp, identifier)
        finally:
            await store.close()
        if record is None:
            console.print(f"[red]No active identifier {identifier} for {rp}[/red]")
            raise typer.Exit(1)
        console.print(f"[bold]Principal:[/bold] {record.principal_name}")
        console.print(f"[bold]Issued:[/bold] {record.created_at.isoformat()}")
        if record.peer_provided_id:
            console.print(f"[bold]Peer-provided id:[/bold] {record.peer_provided_id}")

    asyncio.run(_lookup())


@app.command()
def status(
    idp: str | None = typer.Option(None, help="Only count records for this IdP"),
    db: Path = typer.Option(DEFAULT_STORE_PATH, help="Path to SQLite identifier store"),
) -> None:
    """Show issued identifier counts per relying party."""
    from idp_resolver.storage.sqlite import SQLiteIdentifierStore

    async def _status() -> None:
        store = SQLiteIdentifierStore(db)
        await store.initialize()
        try:
            records = await store.list_records(idp_id=idp)
        finally:
            await store.close()

        if not records:
            console.print("[dim]No identifiers have been issued.[/dim]")
            return

        active_counts: dict[str, int] = {}
        inactive_counts: dict[str, int] = {}
        for record in records:
            counts = active_counts if record.is_active() else inactive_counts
            counts[record.rp_id] = counts.get(record.rp_id, 0) + 1

        console.print("\n[bold]Issued Identifiers[/bold]")
        for rp_id in sorted(set(active_counts) | set(inactive_counts)):
            console.print(
                f"  {rp_id}: {active_counts.get(rp_id, 0)} active, "
                f"{inactive_counts.get(rp_id, 0)} deactivated"
            )
        console.print(f"\n[bold]Total records:[/bold] {len(records)}")

    asyncio.run(_status())


if __name__ == "__main__":
    app()
