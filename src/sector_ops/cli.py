"""
Sector Ops CLI

Operator tools for the duty and roster backend.

Usage:
    sector-ops init-db            # Create database tables
    sector-ops generate-rosters   # Ingest route sheets and regenerate rosters
    sector-ops routes             # Show the stored route pool
    sector-ops ranks              # Show the rank ladder
    sector-ops issue-token        # Mint a development bearer token
    sector-ops check              # Validate current configuration
    sector-ops serve              # Run the API with uvicorn
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import inspect, text

from .auth import PILOT, ROLES, issue_access_token
from .config import Settings
from .database import get_engine, init_db, session_factory
from .ranks import RANK_TIERS
from .rosters import ingest_and_generate_rosters, list_routes
from .sources import load_sources

app = typer.Typer(
    name="sector-ops",
    help="Sector Ops duty, roster and PIREP backend tools.",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    env_file: Path = typer.Option(Path(".env"), "--env-file", help="Environment file to load first"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at INFO level"),
):
    load_dotenv(env_file)
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("init-db")
def init_db_command():
    """Create database tables."""
    settings = Settings.from_env()
    init_db(get_engine(settings.database_url))
    console.print("[green]✓[/green] Database tables ready")


@app.command("generate-rosters")
def generate_rosters_command(
    seed: Optional[int] = typer.Option(None, help="Seed for reproducible rosters"),
):
    """Fetch every route source and replace the generated rosters."""
    import random

    settings = Settings.from_env()
    init_db(get_engine(settings.database_url))
    session = session_factory(settings.database_url)()
    rng = random.Random(seed) if seed is not None else None
    try:
        result = asyncio.run(ingest_and_generate_rosters(session, settings, rng=rng))
    finally:
        session.close()

    table = Table(title="Roster Generation")
    table.add_column("Legs found", justify="right")
    table.add_column("Rosters created", justify="right")
    table.add_row(str(result["legs_found"]), str(result["created"]))
    console.print(table)

    if result["legs_found"] == 0:
        console.print("[yellow]![/yellow] No legs found; existing rosters were kept")
        raise typer.Exit(1)
    if result["created"] == 0:
        console.print("[yellow]![/yellow] No roster could be chained from these legs; existing rosters were kept")
        raise typer.Exit(1)


@app.command()
def routes(
    departure: Optional[str] = typer.Option(None, "--departure", "-d", help="Filter by departure ICAO"),
    operator: Optional[str] = typer.Option(None, "--operator", help="Filter by operator name"),
):
    """List the route pool stored by the last ingestion."""
    settings = Settings.from_env()
    init_db(get_engine(settings.database_url))
    session = session_factory(settings.database_url)()
    try:
        legs = list_routes(session, departure=departure, operator=operator)
    finally:
        session.close()

    if not legs:
        console.print("[dim]No routes stored. Run `sector-ops generate-rosters`.[/dim]")
        return

    table = Table(title=f"Routes ({len(legs)})")
    table.add_column("Flight")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Aircraft")
    table.add_column("Hours", justify="right")
    table.add_column("Operator")
    table.add_column("Rank")
    for leg in legs:
        table.add_row(
            leg["flight_number"],
            leg["departure"],
            leg["arrival"],
            leg["aircraft"],
            f"{leg['flight_time']:.2f}",
            leg["operator"] or "",
            leg["required_rank"] or "",
        )
    console.print(table)


@app.command()
def ranks():
    """Show the rank ladder."""
    table = Table(title="Ranks")
    table.add_column("Rank")
    table.add_column("Min hours", justify="right")
    table.add_column("Perks")
    for tier in RANK_TIERS:
        table.add_row(tier.label, f"{tier.min_hours:g}", ", ".join(tier.perks))
    console.print(table)


@app.command("issue-token")
def issue_token(
    pilot_id: str = typer.Option(..., "--pilot-id", help="Token subject"),
    role: str = typer.Option(PILOT, "--role", help=f"One of: {', '.join(sorted(ROLES))}"),
    expires: int = typer.Option(60, "--expires", help="Lifetime in minutes"),
):
    """Mint a bearer token signed with JWT_SECRET (development only)."""
    settings = Settings.from_env()
    if not settings.jwt_secret:
        console.print("[red]✗[/red] JWT_SECRET not set")
        raise typer.Exit(1)
    if role not in ROLES:
        console.print(f"[red]✗[/red] Unknown role '{role}'")
        raise typer.Exit(1)

    token = issue_access_token(pilot_id, role, settings.jwt_secret, expires_minutes=expires)
    # Plain print keeps the token on one line for copy/paste
    print(token)


def check_database_connection(url: str) -> tuple[bool, str]:
    """Test database connection and return (success, message)."""
    try:
        with get_engine(url).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True, "Connection successful"
    except Exception as e:
        return False, str(e)


def _run_check(settings: Settings) -> bool:
    """Internal check implementation. Returns True if all checks pass."""
    all_passed = True

    console.print("\n[bold]Environment:[/bold]")

    if settings.jwt_secret:
        console.print("  [green]✓[/green] JWT_SECRET configured")
    else:
        console.print("  [red]✗[/red] JWT_SECRET not set (every authenticated request will be denied)")
        all_passed = False

    console.print("\n[bold]Database:[/bold]")

    success, message = check_database_connection(settings.database_url)
    if success:
        console.print("  [green]✓[/green] Connection successful")
        tables = inspect(get_engine(settings.database_url)).get_table_names()
        missing = {"pilots", "rosters", "flight_reports", "route_legs"} - set(tables)
        if missing:
            console.print(f"  [yellow]![/yellow] Missing tables: {', '.join(sorted(missing))} (run init-db)")
        else:
            console.print(f"  [green]✓[/green] Tables exist ({len(tables)} tables)")
    else:
        console.print(f"  [red]✗[/red] Connection failed: {message}")
        all_passed = False

    console.print("\n[bold]Route sources:[/bold]")

    try:
        sources = load_sources(settings.route_sources_path, settings.routes_sheet_url)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"  [red]✗[/red] {e}")
        all_passed = False
    else:
        for source in sources:
            console.print(f"  [green]✓[/green] {source.name} ({source.kind})")

    console.print("\n[bold]Integrations:[/bold]")

    if settings.ledger_webhook_url:
        console.print("  [green]✓[/green] Ledger mirror enabled")
    else:
        console.print("  [yellow]![/yellow] LEDGER_WEBHOOK_URL not set (ledger mirror disabled)")

    if settings.storage_endpoint_url or settings.storage_access_key:
        console.print(f"  [green]✓[/green] Object storage bucket '{settings.storage_bucket}'")
    else:
        console.print("  [yellow]![/yellow] Object storage uses the default AWS credential chain")

    if all_passed:
        console.print("\n[bold green]All checks passed![/bold green]")
    else:
        console.print("\n[bold red]Some checks failed.[/bold red]")

    return all_passed


@app.command()
def check():
    """Validate current configuration."""
    console.print(
        Panel.fit(
            "[bold blue]Sector Ops - Configuration Check[/bold blue]",
            border_style="blue",
        )
    )
    success = _run_check(Settings.from_env())
    raise typer.Exit(0 if success else 1)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
):
    """Run the API with uvicorn (development)."""
    from .http_server import dev

    dev(host, port)


if __name__ == "__main__":
    app()
