"""memstore CLI — operate a memory store from the shell.

memstore add "prefers dark mode" -o alice --type preference
memstore recall "dark mode" -o alice
memstore clear -o alice --category chat
memstore status / stats / test / prune / errors
"""

from __future__ import annotations

import logging
import time

import click
from rich.console import Console
from rich.table import Table

from memstore import __version__
from memstore.categories import VALID_CATEGORIES
from memstore.config import Config
from memstore.errors import ERROR_LOG, ConfigError, clear_error_log, get_recent_errors
from memstore.models import MemoryRecord
from memstore.store import MemoryStore
from memstore.utils import get_logger

console = Console()


def _fmt_time(ts: float | None) -> str:
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ts)) if ts else "-"


def _records_table(title: str, records: list[MemoryRecord]) -> Table:
    table = Table(title=title, show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Created", style="dim")
    table.add_column("Category", style="bold")
    table.add_column("Type")
    table.add_column("Content", max_width=70)
    for r in records:
        score = f" [dim]({r.score:.3f})[/dim]" if r.score is not None else ""
        table.add_row(
            str(r.id if r.id is not None else "-"),
            _fmt_time(r.created_at),
            r.metadata.category or "-",
            r.metadata.type,
            r.content + score,
        )
    return table


def _store(ctx: click.Context) -> MemoryStore:
    """Build the MemoryStore on first use and close it when the command ends."""
    obj = ctx.ensure_object(dict)
    if obj.get("store") is None:
        overrides = {}
        if obj.get("backend"):
            overrides["storage_backend"] = obj["backend"]
        if obj.get("db"):
            overrides["db_path"] = obj["db"]
        try:
            config = Config(obj.get("config"), overrides=overrides)
        except ConfigError as exc:
            console.print(f"[red]{exc}[/red] [dim]{exc.detail}[/dim]")
            ctx.exit(1)
        for problem in config.validate():
            console.print(f"[yellow]config: {problem}[/yellow]")
        obj["store"] = MemoryStore(config, logger=obj.get("logger"))
        ctx.call_on_close(obj["store"].close)
    return obj["store"]


category_option = click.option(
    "--category", "-c", "categories", multiple=True,
    type=click.Choice(VALID_CATEGORIES),
    help="Restrict to a category (repeatable).",
)
owner_option = click.option(
    "--owner", "-o", envvar="MEMSTORE_OWNER", required=True,
    help="Owner id (or set MEMSTORE_OWNER).",
)


@click.group()
@click.version_option(__version__, prog_name="memstore")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Config YAML file.")
@click.option("--backend", type=click.Choice(["database", "semantic"]), help="Override storage_backend.")
@click.option("--db", type=click.Path(dir_okay=False), help="Override db_path.")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def cli(ctx, config_path, backend, db, verbose):
    """memstore — dual-backend memory store.

    Stores memories in SQLite and, optionally, a semantic search server.
    """
    ctx.ensure_object(dict)
    ctx.obj.update(
        config=config_path,
        backend=backend,
        db=db,
        logger=get_logger("memstore", logging.DEBUG if verbose else logging.WARNING),
    )


@cli.command()
@click.argument("content")
@owner_option
@click.option("--type", "memory_type", default="user_message", show_default=True, help="Memory type.")
@click.option("--category", "-c", default=None, help="Category (out-of-whitelist values become 'system').")
@click.pass_context
def add(ctx, content, owner, memory_type, category):
    """Store a new memory."""
    metadata = {"type": memory_type}
    if category:
        metadata["category"] = category
    if _store(ctx).store_memory(owner, content, metadata):
        console.print(f"[green]Stored memory[/green] for {owner}")
    else:
        console.print("[red]Failed to store memory.[/red] [dim]See 'memstore errors'.[/dim]")
        ctx.exit(1)


@cli.command()
@click.argument("query")
@owner_option
@click.option("--limit", "-n", default=5, show_default=True, help="Maximum results.")
@category_option
@click.pass_context
def recall(ctx, query, owner, limit, categories):
    """Search an owner's memories."""
    results = _store(ctx).recall_memories(owner, query, limit, list(categories) or None)
    if not results:
        console.print("[dim]No memories found.[/dim]")
        return
    console.print(_records_table(f"Memories for {owner}", results))


@cli.command(name="list")
@click.option("--owner", "-o", envvar="MEMSTORE_OWNER", default=None, help="Only this owner.")
@click.option("--limit", "-n", default=20, show_default=True, help="Maximum rows.")
@click.pass_context
def list_cmd(ctx, owner, limit):
    """List the newest memories in the database."""
    store = _store(ctx)
    if not store.relational_available:
        console.print("[red]Memory table unavailable.[/red]")
        ctx.exit(1)
    records = store.relational.recent(limit, owner)
    if not records:
        console.print("[dim]No memories stored yet.[/dim]")
        return
    console.print(_records_table("Recent memories", records))


@cli.command()
@owner_option
@category_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def clear(ctx, owner, categories, yes):
    """Delete an owner's memories (all, or only some categories)."""
    scope = ", ".join(categories) if categories else "all categories"
    if not yes:
        click.confirm(f"Delete memories of {owner} in {scope}?", abort=True)
    if _store(ctx).clear_memories(owner, list(categories) or None):
        console.print(f"[green]Cleared memories[/green] of {owner} in {scope}")
    else:
        console.print("[red]Failed to clear memories.[/red] [dim]See 'memstore errors'.[/dim]")
        ctx.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show which backends are configured and reachable."""
    st = _store(ctx).status()

    table = Table(show_header=True, title="Memory Store Status")
    table.add_column("Check", style="bold", min_width=20)
    table.add_column("Status", min_width=6)
    table.add_column("Detail")

    ok, fail, skip = "[green]OK[/green]", "[red]FAIL[/red]", "[dim]--[/dim]"
    table.add_row("Memory", ok if st["enabled"] else skip, "enabled" if st["enabled"] else "disabled")
    table.add_row("Preferred backend", ok, st["backend"])
    table.add_row("Database", ok if st["relational_available"] else fail, st["db_path"])
    if st["backend"] == "semantic":
        detail = st["channel_state"] or "-"
        if st["channel_error"]:
            detail += f" ({st['channel_error'][:80]})"
        table.add_row("Semantic server", ok if st["semantic_running"] else fail, detail)
    else:
        table.add_row("Semantic server", skip, "Not configured")
    console.print(table)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show database statistics."""
    data = _store(ctx).stats()
    if not data:
        console.print("[red]Statistics unavailable.[/red]")
        ctx.exit(1)

    console.print(f"[bold]Total memories:[/bold] {data['total_count']}")
    for title, key, label in (
        ("Top owners", "owner_counts", "Owner"),
        ("By type", "type_counts", "Type"),
        ("By category", "category_counts", "Category"),
    ):
        table = Table(title=title, show_header=True)
        table.add_column(label, style="bold")
        table.add_column("Count", justify="right")
        for name, count in data[key].items():
            table.add_row(str(name), str(count))
        console.print(table)

    latest = [MemoryRecord.model_validate(r) for r in data["latest"]]
    if latest:
        console.print(_records_table("Latest", latest))


@cli.command(name="test")
@owner_option
@click.pass_context
def test_cmd(ctx, owner):
    """Store a test memory and recall it."""
    result = _store(ctx).self_test(owner)
    if not result["stored"]:
        console.print("[red]Failed to store test memory.[/red]")
        ctx.exit(1)
    if result["retrieved"]:
        console.print("[green]Memory test successful:[/green] stored and retrieved.")
        console.print(f"  [dim]{result['memory']['content']}[/dim]")
    else:
        console.print("[yellow]Stored test memory but could not recall it.[/yellow]")


@cli.command()
@click.option("--owner", "-o", envvar="MEMSTORE_OWNER", default=None, help="Only this owner.")
@click.pass_context
def prune(ctx, owner):
    """Apply retention_days and max_memories_per_owner."""
    removed = _store(ctx).enforce_retention(owner)
    console.print(f"Removed [bold]{removed}[/bold] memories.")


@cli.command()
@click.option("--limit", "-n", default=20, help="Number of recent errors to show.")
@click.option("--clear", "clear_log", is_flag=True, help="Clear the error log.")
def errors(limit, clear_log):
    """View recent errors."""
    if clear_log:
        clear_error_log()
        console.print("[green]Error log cleared.[/green]")
        return

    recent = get_recent_errors(limit)
    if not recent:
        console.print("[dim]No errors recorded.[/dim]")
        return

    table = Table(title=f"Recent Errors (last {len(recent)})", show_header=True)
    table.add_column("Time", style="dim", max_width=19)
    table.add_column("Component", style="bold")
    table.add_column("Severity")
    table.add_column("Message", max_width=60)

    severity_styles = {
        "critical": "[red bold]CRIT[/red bold]",
        "error": "[red]ERR[/red]",
        "warning": "[yellow]WARN[/yellow]",
        "info": "[blue]INFO[/blue]",
        "debug": "[dim]DBG[/dim]",
    }

    for err in recent:
        sev = err.get("severity", "error")
        table.add_row(
            err.get("timestamp", "?")[:19],
            err.get("component", "?"),
            severity_styles.get(sev, sev),
            err.get("message", "")[:60],
        )

    console.print(table)
    console.print(f"\n[dim]Full log: {ERROR_LOG}[/dim]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
