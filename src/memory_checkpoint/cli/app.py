"""Command line interface for the checkpoint engine."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import click
from rich.console import Console
from rich.table import Table

from ..config.checkpoint_config import load_config
from ..exceptions import CheckpointEngineError
from ..models.checkpoint_models import CheckpointType
from ..services.integration_service import CheckpointIntegration
from ..utils.files import read_json

logger = logging.getLogger(__name__)

console = Console()

Action = Callable[[CheckpointIntegration], Awaitable[Any]]


def format_bytes(size: int) -> str:
    """Format a byte count for display."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"


def format_timestamp(timestamp_ms: Optional[int]) -> str:
    if not timestamp_ms:
        return "-"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def run_action(
    ctx: click.Context, action: Action, overrides: Optional[Dict[str, Any]] = None
) -> Any:
    """
    Build an engine, run one action against it and exit 1 on failure.

    Args:
        ctx: Click context carrying the global options
        action: Coroutine function receiving the integration facade
        overrides: Config fields set for this command only

    Returns:
        Action result
    """

    async def runner() -> Any:
        config = load_config(ctx.obj.get("config_path"), **(overrides or {}))
        integration = CheckpointIntegration(config)
        await integration.initialize(start_session=False, start_monitor=False)
        try:
            return await action(integration)
        finally:
            await integration.events.drain()

    try:
        return asyncio.run(runner())
    except (CheckpointEngineError, OSError, ValueError) as e:
        if ctx.obj.get("verbose"):
            logger.exception("Command failed")
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(),
    help="Config file path",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], verbose: bool) -> None:
    """
    Memory checkpoint and recovery engine.

    Create, inspect, restore and roll back checkpoints of agent memory,
    and run recovery strategies by hand.
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@main.command()
@click.option("--memory-dir", type=click.Path(), help="Memory directory")
@click.option("--checkpoint-dir", type=click.Path(), help="Checkpoint directory")
@click.pass_context
def init(
    ctx: click.Context, memory_dir: Optional[str], checkpoint_dir: Optional[str]
) -> None:
    """Create the checkpoint directory layout."""
    overrides: Dict[str, Any] = {}
    if memory_dir:
        overrides["memory_dir"] = memory_dir
    if checkpoint_dir:
        overrides["checkpoint_dir"] = checkpoint_dir

    async def action(integration: CheckpointIntegration) -> list:
        return integration.config.required_directories()

    directories = run_action(ctx, action, overrides)
    console.print("[green]Checkpoint system initialized[/green]")
    for directory in directories:
        console.print(f"  {directory}")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show engine status."""

    async def action(integration: CheckpointIntegration) -> None:
        report = integration.get_status()
        health = report["checkpoint"]
        recovery = report["recovery"]

        table = Table(title="Memory Checkpoint Status", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value")
        table.add_row(
            "Health", "[green]healthy[/green]" if health["healthy"] else "[red]unhealthy[/red]"
        )
        table.add_row("Active Checkpoints", str(health["metrics"]["active_checkpoints"]))
        table.add_row("Current Session", health["metrics"]["current_session"] or "None")
        table.add_row("Failed Operations", str(health["metrics"]["failed_operations"]))
        table.add_row("VCS Hook", "on" if report["integration"]["vcs_hook"] else "off")
        table.add_row("Auto-recovery", "on" if recovery["enabled"] else "off")
        table.add_row("Total Recoveries", str(recovery["total_recoveries"]))
        table.add_row("Successful Recoveries", str(recovery["successful_recoveries"]))
        table.add_row("Strategies", ", ".join(recovery["available_strategies"]))
        console.print(table)

        for warning in health["warnings"]:
            console.print(f"[yellow]- {warning}[/yellow]")

    run_action(ctx, action)


@main.command()
@click.argument("description", nargs=-1, required=True)
@click.pass_context
def create(ctx: click.Context, description: tuple) -> None:
    """Create a manual checkpoint."""
    text = " ".join(description)

    async def action(integration: CheckpointIntegration) -> str:
        return await integration.create_manual_checkpoint(text)

    checkpoint_id = run_action(ctx, action)
    console.print(f"[green]Checkpoint created:[/green] {checkpoint_id}")


@main.command("list")
@click.option(
    "--type", "checkpoint_type",
    type=click.Choice([t.value for t in CheckpointType]),
    help="Only show checkpoints of this type",
)
@click.option("--limit", type=int, default=10, show_default=True, help="Maximum rows")
@click.pass_context
def list_checkpoints(
    ctx: click.Context, checkpoint_type: Optional[str], limit: int
) -> None:
    """List checkpoints, newest first."""

    async def action(integration: CheckpointIntegration) -> None:
        stats = integration.store.get_checkpoint_stats()
        checkpoints = integration.store.list_checkpoints(
            checkpoint_type=checkpoint_type, limit=limit
        )

        console.print(f"Total checkpoints: {stats.total}")
        for name, count in sorted(stats.by_type.items()):
            console.print(f"  {name}: {count}")

        if not checkpoints:
            console.print("[dim]No checkpoints found[/dim]")
            return

        table = Table(title="Recent Checkpoints")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Created")
        table.add_column("Session")
        table.add_column("Compressed")
        for checkpoint in checkpoints:
            table.add_row(
                checkpoint.id,
                checkpoint.type,
                format_timestamp(checkpoint.timestamp),
                checkpoint.session_id or "-",
                "yes" if checkpoint.compressed else "no",
            )
        console.print(table)

    run_action(ctx, action)


@main.command()
@click.argument("checkpoint_id")
@click.pass_context
def restore(ctx: click.Context, checkpoint_id: str) -> None:
    """Restore memory from a checkpoint."""

    async def action(integration: CheckpointIntegration) -> bool:
        return await integration.sessions.restore_from_checkpoint(checkpoint_id)

    run_action(ctx, action)
    console.print(f"[green]Restored from checkpoint {checkpoint_id}[/green]")


@main.command()
@click.argument("checkpoint_id")
@click.pass_context
def rollback(ctx: click.Context, checkpoint_id: str) -> None:
    """Roll back to a checkpoint (a safety checkpoint is taken first)."""

    async def action(integration: CheckpointIntegration) -> bool:
        return await integration.rollback.rollback_to_point(checkpoint_id)

    run_action(ctx, action)
    console.print(f"[green]Rolled back to checkpoint {checkpoint_id}[/green]")


@main.command()
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Create recovery backups of agent memory and coordination state."""

    async def action(integration: CheckpointIntegration) -> dict:
        return await integration.backups.create_recovery_backups()

    summary = run_action(ctx, action)
    console.print(
        f"[green]Backed up {len(summary['agents'])} agents[/green]"
        + (f", coordination: {summary['coordination']}" if summary["coordination"] else "")
    )


@main.command()
@click.argument("failure_type")
@click.pass_context
def recovery(ctx: click.Context, failure_type: str) -> None:
    """
    Run a recovery strategy.

    Built-in failure types: memory_corruption, session_failure,
    agent_memory_failure, coordination_failure, system_failure.
    """

    async def action(integration: CheckpointIntegration):
        return await integration.recovery.perform_recovery(failure_type, {})

    result = run_action(ctx, action)
    style = "green" if result.success else "yellow"
    console.print(f"[{style}]Recovery finished (success={result.success})[/{style}]")
    console.print(f"Strategy: {result.strategy}")
    if result.checkpoint_id:
        console.print(f"Checkpoint: {result.checkpoint_id}")
    if result.reason:
        console.print(f"Reason: {result.reason}")


@main.command()
@click.option(
    "--days",
    type=click.FloatRange(min=0, min_open=True),
    help="Retention in days for this run",
)
@click.pass_context
def cleanup(ctx: click.Context, days: Optional[float]) -> None:
    """Apply the retention policy now."""

    async def action(integration: CheckpointIntegration) -> int:
        return await integration.store.cleanup()

    overrides = {"retention_days": days} if days is not None else None
    if days is not None:
        console.print(f"Cleaning checkpoints older than {days:g} days")
    evicted = run_action(ctx, action, overrides)
    console.print(f"[green]Cleanup complete, {evicted} checkpoints evicted[/green]")


@main.command()
@click.pass_context
def metrics(ctx: click.Context) -> None:
    """Show memory and process metrics."""

    async def action(integration: CheckpointIntegration) -> None:
        usage = await integration.store.get_memory_usage()
        process = integration.capture.capture_system_state().process_info
        compressed = sum(1 for c in integration.store.index.values() if c.compressed)

        table = Table(title="System Metrics", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value")
        table.add_row("Active Checkpoints", str(usage.checkpoints))
        table.add_row("Compressed Checkpoints", str(compressed))
        table.add_row("Total Memory Size", format_bytes(usage.total_memory_size))
        table.add_row("Compressed Size", format_bytes(usage.compressed_size))
        table.add_row("Process RSS", format_bytes(process.memory_rss_bytes))
        table.add_row("Process Threads", str(process.thread_count))
        console.print(table)

    run_action(ctx, action)


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Run a health check."""

    async def action(integration: CheckpointIntegration) -> None:
        report = integration.store.get_health_status()
        config = integration.config

        overall = "[green]healthy[/green]" if report.healthy else "[red]unhealthy[/red]"
        console.print(f"Overall health: {overall}")
        for key, value in report.metrics.items():
            console.print(f"  {key}: {value}")

        if report.warnings:
            console.print("Warnings:")
            for warning in report.warnings:
                console.print(f"  [yellow]- {warning}[/yellow]")
        else:
            console.print("[green]No warnings found[/green]")

        for label, directory in (
            ("Memory directory", config.memory_dir),
            ("Checkpoint directory", config.checkpoint_dir),
            ("Coordination directory", config.coordination_dir),
        ):
            mark = "[green]ok[/green]" if Path(directory).is_dir() else "[red]missing[/red]"
            console.print(f"  {label}: {mark}")

    run_action(ctx, action)


@main.command("export")
@click.argument("checkpoint_id")
@click.argument("output_file", type=click.Path())
@click.pass_context
def export_checkpoint(ctx: click.Context, checkpoint_id: str, output_file: str) -> None:
    """Export a checkpoint to a JSON file."""

    async def action(integration: CheckpointIntegration) -> Path:
        return await integration.store.export_checkpoint(checkpoint_id, output_file)

    path = run_action(ctx, action)
    console.print(f"[green]Checkpoint exported to {path}[/green]")


@main.command("import")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_checkpoint(ctx: click.Context, input_file: str) -> None:
    """Import a checkpoint from a JSON file."""

    async def action(integration: CheckpointIntegration) -> str:
        data = await read_json(input_file)
        if not isinstance(data, dict):
            raise ValueError("Checkpoint file must contain a JSON object")
        return await integration.store.import_checkpoint(data)

    checkpoint_id = run_action(ctx, action)
    console.print(f"[green]Checkpoint imported: {checkpoint_id}[/green]")


if __name__ == "__main__":
    main()
