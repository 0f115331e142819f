"""
SQLAgent CLI

Command-line interface for managing database connections and asking questions.

Usage:
    sqlagent connections add shop --dialect postgresql --host localhost --database shop
    sqlagent connections list                    # List your connections
    sqlagent connections test --dialect sqlite --database ./shop.db
    sqlagent schema discover <connection-id>     # Introspect and cache the schema
    sqlagent ask <connection-id> "how many orders are there"
    sqlagent ask <connection-id> "top customers" --dry-run
    sqlagent run <connection-id> "SELECT count(*) FROM orders"
    sqlagent explain "SELECT ..." --dialect mysql
    sqlagent validate "SELECT ..."
    sqlagent history show <connection-id>
"""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from sqlagent import __version__
from sqlagent.agent import SQLAgent
from sqlagent.errors import SQLAgentError
from sqlagent.models import (
    ConnectionCredentials,
    DatabaseConnection,
    Dialect,
    ExecutionResult,
    SchemaSnapshot,
)
from sqlagent.services import validate_sql

console = Console()
T = TypeVar("T")

DIALECT_CHOICES = click.Choice([d.value for d in Dialect], case_sensitive=False)


def configure_cli_logging() -> None:
    logging.disable(logging.CRITICAL)
    for logger_name in ("sqlagent", "asyncpg", "httpx", "openai", "anthropic", "asyncio"):
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)


# ============================================================================
# Helper Functions
# ============================================================================


async def create_agent_from_config() -> SQLAgent:
    """Create an agent from environment configuration."""
    return await SQLAgent.from_settings()


def run_with_agent(action: Callable[[SQLAgent], Awaitable[T]]) -> T:
    """Build an agent, run ``action`` with it, and always close it."""

    async def runner() -> T:
        agent = await create_agent_from_config()
        try:
            return await action(agent)
        finally:
            await agent.close()

    try:
        return asyncio.run(runner())
    except (SQLAgentError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _credentials_from_options(
    host: str | None,
    port: int | None,
    database: str | None,
    username: str | None,
    password: str | None,
    connection_string: str | None,
) -> ConnectionCredentials:
    return ConnectionCredentials(
        host=host,
        port=port,
        database=database,
        username=username,
        password=password,
        connection_string=connection_string,
    )


def credential_options(func):
    """Shared credential flags for ``connections add`` and ``connections test``."""
    options = [
        click.option("--dialect", type=DIALECT_CHOICES, required=True, help="Database type."),
        click.option("--host", help="Database host."),
        click.option("--port", type=int, help="Database port."),
        click.option("--database", help="Database name, or file path for SQLite."),
        click.option("--username", help="Database user."),
        click.option("--password", help="Database password.", envvar="SQLAGENT_DB_PASSWORD"),
        click.option("--connection-string", help="Full connection URL instead of fields."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def print_connections(connections: list[DatabaseConnection]) -> None:
    if not connections:
        console.print("[yellow]No connections found[/yellow]")
        return

    table = Table(
        title=f"Connections ({len(connections)} found)",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type", style="green")
    table.add_column("Status")
    table.add_column("Last connected")

    for conn in connections:
        status_style = {"active": "green", "error": "red"}.get(conn.status, "yellow")
        table.add_row(
            conn.id,
            conn.name,
            conn.dialect.value,
            f"[{status_style}]{conn.status}[/{status_style}]",
            conn.last_connected_at.isoformat(timespec="seconds") if conn.last_connected_at else "-",
        )
    console.print(table)


def print_connection(conn: DatabaseConnection) -> None:
    details = Table(show_header=False, box=None)
    details.add_row("ID:", conn.id)
    details.add_row("Name:", conn.name)
    details.add_row("Type:", conn.dialect.value)
    details.add_row("Status:", conn.status)
    if conn.description:
        details.add_row("Description:", conn.description)
    if conn.last_error:
        details.add_row("Last error:", f"[red]{conn.last_error}[/red]")
    details.add_row("Created:", conn.created_at.isoformat(timespec="seconds"))
    console.print(Panel(details, title=f"[bold cyan]{conn.name}[/bold cyan]"))


def print_schema(snapshot: SchemaSnapshot) -> None:
    if snapshot.ai_summary:
        console.print(Panel(snapshot.ai_summary, title="[bold green]Summary[/bold green]"))

    for table_info in snapshot.tables:
        rows = f"{table_info.row_count} rows" if table_info.row_count is not None else "? rows"
        table = Table(
            title=f"{table_info.qualified_name} ({rows})",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Column", style="cyan")
        table.add_column("Type")
        table.add_column("Key")
        table.add_column("Nullable")
        for column in table_info.columns:
            key = "PK" if column.is_primary_key else ""
            if column.is_foreign_key and column.foreign_table:
                key = f"{key} FK -> {column.foreign_table}.{column.foreign_column}".strip()
            table.add_row(column.name, column.data_type, key, "yes" if column.is_nullable else "no")
        console.print(table)

    if snapshot.cached_at:
        console.print(f"[dim]Cached at {snapshot.cached_at.isoformat(timespec='seconds')}[/dim]")


def _format_value(value: Any) -> str:
    return "NULL" if value is None else str(value)


def print_result(result: ExecutionResult) -> None:
    """Format and display an execution result."""
    if result.generated_sql:
        console.print(Panel(Syntax(result.generated_sql, "sql"), title="SQL", border_style="cyan"))
    if result.explanation:
        console.print(Panel(result.explanation, title="[bold green]Explanation[/bold green]"))

    if not result.success:
        code = f" ({result.error_code})" if result.error_code else ""
        console.print(f"[red]Query failed{code}: {result.error}[/red]")
    elif result.rows is not None:
        names = [column.name for column in result.columns or []]
        if not names and result.rows:
            names = list(result.rows[0].keys())
        table = Table(show_header=True, header_style="bold cyan")
        for name in names:
            table.add_column(name)
        for row in result.rows:
            table.add_row(*(_format_value(row.get(name)) for name in names))
        console.print(table)
        console.print(f"[dim]{result.row_count} rows in {result.execution_time_ms or 0:.0f}ms[/dim]")

    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")


# ============================================================================
# Commands
# ============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="SQLAgent")
@click.option(
    "--user",
    "user_id",
    envvar="SQLAGENT_USER",
    default="local",
    show_default=True,
    help="User id that owns connections and history.",
)
@click.option("--verbose", is_flag=True, help="Show library logs.")
@click.pass_context
def cli(ctx: click.Context, user_id: str, verbose: bool):
    """SQLAgent - Ask questions of your databases in plain language."""
    if not verbose:
        configure_cli_logging()
    ctx.obj = {"user_id": user_id}


@cli.group(name="connections")
def connections():
    """Manage database connections."""
    pass


@connections.command(name="add")
@click.argument("name")
@credential_options
@click.option("--description", help="Optional description.")
@click.pass_obj
def add_connection(
    obj: dict,
    name: str,
    dialect: str,
    host: str | None,
    port: int | None,
    database: str | None,
    username: str | None,
    password: str | None,
    connection_string: str | None,
    description: str | None,
):
    """Register a new connection."""
    credentials = _credentials_from_options(
        host, port, database, username, password, connection_string
    )
    conn = run_with_agent(
        lambda agent: agent.create_connection(
            obj["user_id"], name, dialect, credentials, description=description
        )
    )
    console.print(f"[green]✓ Connection saved[/green] id={conn.id}")


@connections.command(name="list")
@click.pass_obj
def list_connections(obj: dict):
    """List connections."""
    print_connections(run_with_agent(lambda agent: agent.list_connections(obj["user_id"])))


@connections.command(name="show")
@click.argument("connection_id")
@click.pass_obj
def show_connection(obj: dict, connection_id: str):
    """Show one connection (never its credentials)."""
    conn = run_with_agent(lambda agent: agent.get_connection(obj["user_id"], connection_id))
    if conn is None:
        console.print(f"[red]Connection not found: {connection_id}[/red]")
        sys.exit(1)
    print_connection(conn)


@connections.command(name="test")
@credential_options
def test_connection(
    dialect: str,
    host: str | None,
    port: int | None,
    database: str | None,
    username: str | None,
    password: str | None,
    connection_string: str | None,
):
    """Test credentials without saving them."""
    credentials = _credentials_from_options(
        host, port, database, username, password, connection_string
    )
    with console.status("[cyan]Connecting...[/cyan]", spinner="dots"):
        outcome = run_with_agent(lambda agent: agent.test_connection(credentials, dialect))
    if outcome.success:
        console.print("[green]✓ Connection successful[/green]")
    else:
        console.print(f"[red]✗ Connection failed: {outcome.error}[/red]")
        sys.exit(1)


@connections.command(name="check")
@click.argument("connection_id")
@click.pass_obj
def check_connection(obj: dict, connection_id: str):
    """Probe a saved connection and record its status."""
    outcome = run_with_agent(lambda agent: agent.check_connection(obj["user_id"], connection_id))
    if outcome.success:
        console.print("[green]✓ Connection healthy[/green]")
    else:
        console.print(f"[red]✗ Connection failed: {outcome.error}[/red]")
        sys.exit(1)


@connections.command(name="remove")
@click.argument("connection_id")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_obj
def remove_connection(obj: dict, connection_id: str, yes: bool):
    """Delete a connection with its cached schema and history."""
    if not yes and not click.confirm(f"Delete connection {connection_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        return
    run_with_agent(lambda agent: agent.delete_connection(obj["user_id"], connection_id))
    console.print("[green]✓ Connection deleted[/green]")


@cli.group(name="schema")
def schema():
    """Discover and inspect database schemas."""
    pass


@schema.command(name="discover")
@click.argument("connection_id")
@click.pass_obj
def discover_schema(obj: dict, connection_id: str):
    """Introspect the database and refresh the cached schema."""
    with console.status("[cyan]Discovering schema...[/cyan]", spinner="dots"):
        snapshot = run_with_agent(
            lambda agent: agent.discover_schema(obj["user_id"], connection_id)
        )
    print_schema(snapshot)


@schema.command(name="show")
@click.argument("connection_id")
@click.pass_obj
def show_schema(obj: dict, connection_id: str):
    """Show the cached schema if it is still fresh."""
    snapshot = run_with_agent(
        lambda agent: agent.get_cached_schema(obj["user_id"], connection_id)
    )
    if snapshot is None:
        console.print("[yellow]No fresh cached schema.[/yellow]")
        console.print("[cyan]Hint: Run 'sqlagent schema discover <connection-id>'.[/cyan]")
        return
    print_schema(snapshot)


@cli.command()
@click.argument("connection_id")
@click.argument("question")
@click.option("--dry-run", is_flag=True, help="Generate SQL without running it.")
@click.option("--timeout", type=float, help="Statement timeout in seconds (max 120).")
@click.option("--max-rows", type=int, help="Row cap (default 1000).")
@click.pass_obj
def ask(
    obj: dict,
    connection_id: str,
    question: str,
    dry_run: bool,
    timeout: float | None,
    max_rows: int | None,
):
    """Ask a question in plain language."""
    with console.status("[cyan]Processing query...[/cyan]", spinner="dots"):
        result = run_with_agent(
            lambda agent: agent.execute_natural_language_query(
                obj["user_id"],
                connection_id,
                question,
                timeout=timeout,
                max_rows=max_rows,
                dry_run=dry_run,
            )
        )
    print_result(result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("connection_id")
@click.argument("sql")
@click.option("--timeout", type=float, help="Statement timeout in seconds (max 120).")
@click.option("--max-rows", type=int, help="Row cap (default 1000).")
@click.pass_obj
def run(obj: dict, connection_id: str, sql: str, timeout: float | None, max_rows: int | None):
    """Run a read-only SQL statement."""
    result = run_with_agent(
        lambda agent: agent.execute_sql_query(
            obj["user_id"], connection_id, sql, timeout=timeout, max_rows=max_rows
        )
    )
    print_result(result)
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("sql")
@click.option("--dialect", type=DIALECT_CHOICES, default="postgresql", show_default=True)
def explain(sql: str, dialect: str):
    """Describe a SQL statement in plain language."""
    explanation = run_with_agent(lambda agent: agent.explain_query(sql, dialect))
    console.print(Panel(explanation, title="[bold green]Explanation[/bold green]"))


@cli.command()
@click.argument("sql")
def validate(sql: str):
    """Check that a statement is a single read-only query."""
    verdict = validate_sql(sql)
    if verdict.valid:
        console.print("[green]✓ Query is valid[/green]")
    else:
        console.print(f"[red]✗ {verdict.error}[/red]")
        sys.exit(1)


@cli.group(name="history")
def history():
    """Show or clear query history."""
    pass


@history.command(name="show")
@click.argument("connection_id")
@click.option("--limit", type=int, default=None, help="Number of entries (default 50).")
@click.pass_obj
def show_history(obj: dict, connection_id: str, limit: int | None):
    """Show recent questions for a connection."""
    entries = run_with_agent(
        lambda agent: agent.get_query_history(obj["user_id"], connection_id, limit)
    )
    if not entries:
        console.print("[yellow]No history entries[/yellow]")
        return

    table = Table(title="Query history", show_header=True, header_style="bold cyan")
    table.add_column("When", style="dim")
    table.add_column("Question")
    table.add_column("SQL", style="cyan")
    table.add_column("Result")
    table.add_column("Time", justify="right")
    for entry in entries:
        outcome = (
            f"[green]{entry.row_count if entry.row_count is not None else '-'} rows[/green]"
            if entry.success
            else f"[red]{entry.error or 'failed'}[/red]"
        )
        elapsed = f"{entry.execution_time_ms:.0f}ms" if entry.execution_time_ms is not None else "-"
        table.add_row(
            entry.created_at.isoformat(timespec="seconds"),
            entry.question,
            entry.generated_sql,
            outcome,
            elapsed,
        )
    console.print(table)


@history.command(name="clear")
@click.argument("connection_id")
@click.option("--yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_obj
def clear_history(obj: dict, connection_id: str, yes: bool):
    """Delete query history for a connection."""
    if not yes and not click.confirm(f"Clear history for {connection_id}?"):
        console.print("[yellow]Aborted[/yellow]")
        return
    removed = run_with_agent(
        lambda agent: agent.clear_query_history(obj["user_id"], connection_id)
    )
    console.print(f"[green]✓ Removed {removed} history entries[/green]")


# ============================================================================
# Entry Point
# ============================================================================


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
