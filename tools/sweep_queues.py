#!/usr/bin/env -S uv run
"""
Pending Queue Maintenance Tool for tqueue

Inspects and garbage-collects the pending queues of a deployment. The
connection is configured through the TQUEUE_* environment variables (see
tqueue.config).

Usage:
    uv run tools/sweep_queues.py list
    uv run tools/sweep_queues.py list --unused-only
    uv run tools/sweep_queues.py sweep
    uv run tools/sweep_queues.py sweep --days 14
    uv run tools/sweep_queues.py --help
"""
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pydantic>=2.0",
#     "azure-storage-queue>=12.9",
#     "aiohttp>=3.9",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

# Import tqueue from the local checkout
sys.path.insert(0, str(Path(__file__).parent.parent))

from tqueue import QueueServiceConfig, create_client, delete_unused_worker_queues
from tqueue.domain.models import QueueMetadata
from tqueue.ports.queue_client import QueueClientPort

app = typer.Typer(
    help="Inspect and garbage-collect tqueue pending queues",
    add_completion=False,
)
console = Console()


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class QueueRow:
    """One pending queue as shown by `list`."""

    name: str
    metadata: QueueMetadata
    message_count: int

    def age(self, now: datetime) -> timedelta | None:
        if self.metadata.last_used is None:
            return None
        return now - self.metadata.last_used

    def format_age(self, now: datetime) -> str:
        age = self.age(now)
        if age is None:
            return "never"
        if age < timedelta(hours=1):
            return f"{int(age.total_seconds() // 60)}m"
        if age < timedelta(days=2):
            return f"{age.total_seconds() / 3600:.1f}h"
        return f"{age.days}d"


# ---------------------------------------------------------------------------
# Core Functions
# ---------------------------------------------------------------------------


async def collect_rows(client: QueueClientPort, prefix: str) -> list[QueueRow]:
    """Walk every list_queues page under prefix and fetch message counts."""
    rows: list[QueueRow] = []
    marker: str | None = None
    while True:
        page = await client.list_queues(prefix=f"{prefix}-", marker=marker)
        props = await asyncio.gather(*(client.get_metadata(q.name) for q in page.queues))
        rows.extend(
            QueueRow(
                name=q.name,
                metadata=QueueMetadata.from_mapping(q.metadata),
                message_count=p.approximate_message_count,
            )
            for q, p in zip(page.queues, props, strict=True)
        )
        marker = page.next_marker
        if marker is None:
            return rows


async def run_list(config: QueueServiceConfig, unused_only: bool, days: int) -> list[QueueRow]:
    client = create_client(config)
    try:
        rows = await collect_rows(client, config.prefix)
    finally:
        close = getattr(client, "close", None)
        if close is not None:
            await close()
    if unused_only:
        cutoff = datetime.now(UTC) - timedelta(days=days)
        rows = [r for r in rows if r.metadata.is_unused_since(cutoff)]
    return rows


async def run_sweep(config: QueueServiceConfig, days: int) -> int:
    client = create_client(config)
    try:
        return await delete_unused_worker_queues(
            client,
            config.prefix,
            datetime.now(UTC),
            max_unused=timedelta(days=days),
        )
    finally:
        close = getattr(client, "close", None)
        if close is not None:
            await close()


def format_rows(rows: list[QueueRow]) -> None:
    """Print queues as a Rich table."""
    now = datetime.now(UTC)
    table = Table(title=f"Pending queues ({len(rows)})")
    table.add_column("Queue", style="cyan")
    table.add_column("Provisioner")
    table.add_column("Worker type")
    table.add_column("Last used", justify="right")
    table.add_column("Messages", justify="right")
    for row in sorted(rows, key=lambda r: r.name):
        table.add_row(
            row.name,
            row.metadata.provisioner_id or "[red]missing[/red]",
            row.metadata.worker_type or "[red]missing[/red]",
            row.format_age(now),
            str(row.message_count),
        )
    console.print(table)


def load_config() -> QueueServiceConfig:
    try:
        return QueueServiceConfig.from_env()
    except ValueError as exc:
        console.print(f"[red]Invalid TQUEUE_* configuration:[/red]\n{exc}")
        raise typer.Exit(code=2) from exc


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command("list")
def list_queues(
    unused_only: bool = typer.Option(
        False,
        "--unused-only",
        "-u",
        help="Only show queues the garbage collector would consider",
    ),
    days: int = typer.Option(10, "--days", "-d", help="Unused threshold in days"),
) -> None:
    """List pending queues with their metadata and approximate depth."""
    rows = asyncio.run(run_list(load_config(), unused_only, days))
    format_rows(rows)


@app.command()
def sweep(
    days: int = typer.Option(10, "--days", "-d", help="Unused threshold in days"),
) -> None:
    """Delete empty pending queues not used for --days days."""
    deleted = asyncio.run(run_sweep(load_config(), days))
    console.print(f"Deleted [bold]{deleted}[/bold] queue(s)")


if __name__ == "__main__":
    app()
