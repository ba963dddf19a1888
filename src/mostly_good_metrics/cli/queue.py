"""CLI: mgm queue count|list|clear"""

import json

import click
from rich.console import Console
from rich.table import Table

from mostly_good_metrics.models.event import format_timestamp

console = Console()


async def _get_client():
    from mostly_good_metrics.cli.main import _get_client
    return await _get_client()


def _run(coro):
    from mostly_good_metrics.cli.main import _run
    return _run(coro)


def _events_storage():
    from mostly_good_metrics.cli.main import EVENTS_FILE
    from mostly_good_metrics.storage import FileEventStorage
    return FileEventStorage(EVENTS_FILE)


@click.group()
def queue():
    """Pending event queue."""


@queue.command("count")
def queue_count():
    """Number of events waiting to be sent."""

    async def _count():
        client = await _get_client()
        try:
            click.echo(await client.pending_event_count())
        finally:
            await client.shutdown()

    _run(_count())


@queue.command("list")
@click.option("--limit", default=20, type=int)
@click.option("--json-output", "--json", is_flag=True)
def queue_list(limit, json_output):
    """Show the oldest pending events."""

    async def _list():
        storage = _events_storage()
        events = await storage.fetch(limit)
        total = await storage.count()
        if json_output:
            click.echo(json.dumps([e.to_wire() for e in events], indent=2))
            return
        table = Table(title=f"Pending events ({total} total)")
        table.add_column("Name", style="bold")
        table.add_column("Timestamp")
        table.add_column("User")
        table.add_column("Properties")
        for e in events:
            props = json.dumps(e.properties) if e.properties else ""
            table.add_row(e.name, format_timestamp(e.timestamp), e.user_id or "", props)
        console.print(table)

    _run(_list())


@queue.command("clear")
@click.confirmation_option(prompt="Delete all pending events?")
def queue_clear():
    """Delete every pending event without sending it."""

    async def _clear():
        client = await _get_client()
        try:
            await client.clear_pending_events()
        finally:
            await client.shutdown()
        console.print("[green]Pending events cleared.[/green]")

    _run(_clear())
