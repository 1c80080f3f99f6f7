"""Main CLI for agent worktrees."""

from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..core.config import DEFAULT_CONFIG_PATH, load_config
from ..core.records import WorktreeState
from ..errors.taxonomy import WorktreeError
from ..errors.translator import EXIT_FAILURE, ErrorTranslator
from ..utils.rich_logging import setup_logging
from ..workspace.bootstrap import WorktreeComponents, build_components


console = Console()
translator = ErrorTranslator()

STATE_STYLES = {
    WorktreeState.SPAWNING: "yellow",
    WorktreeState.ACTIVE: "green",
    WorktreeState.DIRTY: "cyan",
    WorktreeState.COMMITTING: "yellow",
    WorktreeState.REMOVING: "yellow",
    WorktreeState.REMOVED: "dim",
    WorktreeState.ORPHANED: "red",
}


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path),
              default=DEFAULT_CONFIG_PATH, show_default=True, help="Config file")
@click.option("--repo", "-r", type=click.Path(path_type=Path), help="Primary repository (overrides config)")
@click.option("--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR (overrides config)")
@click.pass_context
def cli(ctx, config_path, repo, log_level):
    """Agent Worktrees - isolated git worktrees for concurrent agents."""
    ctx.ensure_object(dict)
    try:
        settings = load_config(config_path)
    except (ValidationError, ValueError, OSError) as e:
        console.print(f"[red]Invalid configuration {escape(str(config_path))}:[/]\n{escape(str(e))}")
        ctx.exit(EXIT_FAILURE)

    if repo is not None:
        settings = settings.model_copy(update={"repository": Path(repo).expanduser().resolve()})

    setup_logging(log_level or settings.log_level, log_dir=settings.log_dir)
    ctx.obj["settings"] = settings


def _components(ctx) -> WorktreeComponents:
    """Build the lifecycle core once per invocation."""
    if "components" not in ctx.obj:
        ctx.obj["components"] = build_components(ctx.obj["settings"])
    return ctx.obj["components"]


def _fail(ctx, error: Exception) -> None:
    friendly = translator.translate(error)
    console.print(translator.format_for_cli(friendly))
    ctx.exit(friendly.exit_code)


@cli.command()
@click.argument("agent_id")
@click.option("--base", "-b", "base_ref", help="Base ref for a new branch (default from config)")
@click.pass_context
def spawn(ctx, agent_id, base_ref):
    """Create (or return) the worktree for AGENT_ID."""
    try:
        handle = _components(ctx).manager.spawn(agent_id, base_ref=base_ref)
    except WorktreeError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]✓ Worktree ready for {escape(handle.agent_id)}[/]")
    console.print(f"  Path:   {escape(handle.path)}")
    console.print(f"  Branch: {escape(handle.branch)}")
    if handle.head_sha:
        console.print(f"  Head:   {handle.head_sha[:12]}")


@cli.command()
@click.argument("agent_id")
@click.option("--force", "-f", is_flag=True, help="Discard uncommitted changes")
@click.pass_context
def nuke(ctx, agent_id, force):
    """Remove the worktree for AGENT_ID."""
    try:
        _components(ctx).manager.nuke(agent_id, force=force)
    except WorktreeError as e:
        _fail(ctx, e)
        return

    console.print(f"[green]✓ No worktree remains for {escape(agent_id)}[/]")


@cli.command()
@click.argument("agent_id")
@click.pass_context
def status(ctx, agent_id):
    """Show uncommitted changes in AGENT_ID's worktree."""
    try:
        report = _components(ctx).inspector.status(agent_id)
    except WorktreeError as e:
        _fail(ctx, e)
        return

    if report.clean:
        console.print(f"[green]Clean[/] ({escape(agent_id)})")
        return

    console.print(f"[yellow]Dirty[/] ({escape(agent_id)}): {len(report.entries)} change(s)")
    for entry in report.entries:
        console.print(f"  {escape(entry.code):>2} {escape(entry.path)}")


@cli.command()
@click.argument("agent_id")
@click.argument("message")
@click.option("--author", "-a", help='Commit author "Name <email>" (default from config)')
@click.pass_context
def sync(ctx, agent_id, message, author):
    """Commit all changes in AGENT_ID's worktree."""
    try:
        head_sha = _components(ctx).committer.sync(agent_id, message, author=author)
    except WorktreeError as e:
        _fail(ctx, e)
        return

    console.print(head_sha)


@cli.command()
@click.pass_context
def reconcile(ctx):
    """Repair divergence between the registry and the repository."""
    try:
        report = _components(ctx).reconciler.reconcile()
    except WorktreeError as e:
        _fail(ctx, e)
        return

    if report.is_noop and not (report.awaiting_operator or report.unresolved or report.corrupt):
        console.print("[green]✓ Registry and repository agree[/]")
        return

    table = Table(title="Reconcile")
    table.add_column("Outcome", no_wrap=True)
    table.add_column("Count", justify="right", no_wrap=True)
    table.add_column("Entries")
    for outcome in (
        "purged", "orphaned", "adopted", "removed", "completed", "escalated",
        "refreshed", "awaiting_operator", "unresolved", "corrupt",
    ):
        items = getattr(report, outcome)
        if items:
            table.add_row(outcome, str(len(items)), escape(", ".join(items)))
    if report.failures:
        table.add_row("[red]failures[/]", str(len(report.failures)), escape(", ".join(report.failures)))
    console.print(table)

    for agent_id, failure in report.failures.items():
        console.print(f"[red]{escape(agent_id)}[/]: {escape(failure)}")
    if report.failures:
        ctx.exit(EXIT_FAILURE)


@cli.command("list")
@click.pass_context
def list_worktrees(ctx):
    """List registered worktrees."""
    try:
        records = _components(ctx).manager.list_records()
    except WorktreeError as e:
        _fail(ctx, e)
        return

    if not records:
        console.print("[dim]No worktrees registered[/]")
        return

    table = Table()
    table.add_column("Agent", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Branch", no_wrap=True)
    table.add_column("Head", no_wrap=True)
    table.add_column("Path", overflow="fold")
    for record in records:
        style = STATE_STYLES.get(record.state, "")
        table.add_row(
            escape(record.agent_id),
            f"[{style}]{record.state.value}[/]",
            escape(record.branch),
            (record.head_sha or "-")[:12],
            escape(record.path),
        )
    console.print(table)


if __name__ == "__main__":
    cli()
