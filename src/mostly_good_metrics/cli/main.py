"""
MostlyGoodMetrics CLI: `mgm` command.

Commands:
  mgm config set|show          Store API key, base URL and environment
  mgm track <name>             Queue an event (optionally flush right away)
  mgm flush                    Send pending events
  mgm identify <user-id>       Identify the current user
  mgm reset                    Forget the identified user
  mgm variant <experiment>     Show the assigned experiment variant
  mgm queue count|list|clear   Inspect the pending event queue

Queued events and identity state live under ~/.mgm/ so they survive between
invocations, the same way they survive app restarts.
"""

import asyncio
import json
from typing import Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install mostly-good-metrics[cli]")

from mostly_good_metrics import __version__
from mostly_good_metrics.client import AsyncMostlyGoodMetrics
from mostly_good_metrics.delivery import FlushOutcome
from mostly_good_metrics.errors import MGMError
from mostly_good_metrics.log import debug_logging_enabled, set_debug_logging
from mostly_good_metrics.models.config import DEFAULT_BASE_URL, MGMConfiguration
from mostly_good_metrics.models.event import UserProfile
from mostly_good_metrics.storage import DEFAULT_STORAGE_DIR, FileEventStorage, FileStateStorage

console = Console()
CONFIG_FILE = DEFAULT_STORAGE_DIR / "config.json"
EVENTS_FILE = DEFAULT_STORAGE_DIR / "mgm_events.json"
STATE_FILE = DEFAULT_STORAGE_DIR / "mgm_state.json"


def _load_config() -> dict:
    try:
        return json.loads(CONFIG_FILE.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def _save_config(cfg: dict) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(cfg, indent=2))


def _build_configuration(api_key: Optional[str] = None, base_url: Optional[str] = None) -> MGMConfiguration:
    cfg = _load_config()
    api_key = api_key or cfg.get("api_key")
    if not api_key:
        console.print("[red]No API key. Run `mgm config set --api-key ...` or set MGM_API_KEY.[/red]")
        raise SystemExit(1)
    return MGMConfiguration(
        api_key=api_key,
        base_url=base_url or cfg.get("base_url", DEFAULT_BASE_URL),
        environment=cfg.get("environment", "production"),
        app_version=cfg.get("app_version"),
        enable_debug_logging=debug_logging_enabled(),
        # A CLI invocation is not an app launch.
        track_app_lifecycle_events=False,
    )


async def _get_client() -> AsyncMostlyGoodMetrics:
    ctx = click.get_current_context()
    obj = ctx.find_root().obj or {}
    config = _build_configuration(obj.get("api_key"), obj.get("base_url"))
    client = AsyncMostlyGoodMetrics()
    await client.configure(
        config,
        event_storage=FileEventStorage(EVENTS_FILE, max_stored_events=config.max_stored_events),
        state_storage=FileStateStorage(STATE_FILE),
    )
    return client


def _run(coro):
    try:
        return asyncio.run(coro)
    except MGMError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option(__version__)
@click.option("--api-key", envvar="MGM_API_KEY", default=None, help="Overrides the stored API key.")
@click.option("--base-url", envvar="MGM_BASE_URL", default=None, help="Overrides the stored base URL.")
@click.option("--debug", is_flag=True, help="Show SDK debug logs.")
@click.pass_context
def main(ctx, api_key, base_url, debug):
    """MostlyGoodMetrics CLI: send and inspect analytics events."""
    ctx.obj = {"api_key": api_key, "base_url": base_url}
    if debug:
        set_debug_logging(True, handler=RichHandler(console=console, show_path=False))
    else:
        set_debug_logging(False)


@main.group()
def config():
    """Stored CLI configuration."""


@config.command("set")
@click.option("--api-key", default=None)
@click.option("--base-url", default=None)
@click.option("--environment", default=None)
@click.option("--app-version", default=None)
def config_set(api_key, base_url, environment, app_version):
    """Update ~/.mgm/config.json."""
    cfg = _load_config()
    updates = {
        "api_key": api_key,
        "base_url": base_url,
        "environment": environment,
        "app_version": app_version,
    }
    changed = {k: v for k, v in updates.items() if v is not None}
    if not changed:
        console.print("[yellow]Nothing to update.[/yellow]")
        return
    cfg.update(changed)
    _save_config(cfg)
    console.print(f"[green]Saved {', '.join(changed)} to {CONFIG_FILE}[/green]")


@config.command("show")
def config_show():
    """Print the stored configuration (API key masked)."""
    cfg = dict(_load_config())
    if cfg.get("api_key"):
        key = cfg["api_key"]
        cfg["api_key"] = key[:4] + "..." if len(key) > 4 else "..."
    click.echo(json.dumps(cfg, indent=2))


def _parse_properties(pairs: tuple[str, ...], json_props: Optional[str]) -> dict:
    props: dict = {}
    if json_props:
        try:
            loaded = json.loads(json_props)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"invalid JSON: {e}", param_hint="--json")
        if not isinstance(loaded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--json")
        props.update(loaded)
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--property")
        try:
            props[key] = json.loads(raw)
        except json.JSONDecodeError:
            props[key] = raw
    return props


@main.command("track")
@click.argument("name")
@click.option("-p", "--property", "pairs", multiple=True, help="key=value; values are parsed as JSON when possible.")
@click.option("--json", "json_props", default=None, help="Properties as a JSON object.")
@click.option("--flush", "flush_now", is_flag=True, help="Send pending events right away.")
def track_cmd(name, pairs, json_props, flush_now):
    """Queue an event."""
    properties = _parse_properties(pairs, json_props)

    async def _track():
        client = await _get_client()
        try:
            event = client.track(name, properties or None)
            await client.wait_for_pending_writes()
            console.print(f"[green]Queued {event.name}[/green] ({event.client_event_id})")
            if flush_now:
                outcome = await client.flush()
                _print_outcome(outcome)
        finally:
            await client.shutdown()

    _run(_track())


def _print_outcome(outcome: FlushOutcome) -> None:
    styles = {
        FlushOutcome.SENT: "green",
        FlushOutcome.EMPTY: "dim",
        FlushOutcome.RETAINED: "yellow",
        FlushOutcome.RATE_LIMITED: "yellow",
    }
    style = styles.get(outcome, "white")
    console.print(f"Flush: [{style}]{outcome.value}[/{style}]")


@main.command("flush")
@click.option("--all", "flush_all", is_flag=True, help="Keep flushing until the queue is empty.")
def flush_cmd(flush_all):
    """Send pending events."""

    async def _flush():
        client = await _get_client()
        try:
            while True:
                with console.status("Sending events..."):
                    outcome = await client.flush()
                _print_outcome(outcome)
                if not flush_all or outcome != FlushOutcome.SENT:
                    break
            remaining = await client.pending_event_count()
            console.print(f"{remaining} events pending")
        finally:
            await client.shutdown()

    _run(_flush())


@main.command("identify")
@click.argument("user_id")
@click.option("--email", default=None)
@click.option("--name", default=None)
def identify_cmd(user_id, email, name):
    """Identify the current user."""

    async def _identify():
        client = await _get_client()
        try:
            profile = UserProfile(email=email, name=name) if (email or name) else None
            await client.identify(user_id, profile)
            await client.wait_for_pending_writes()
            console.print(f"[green]Identified as {user_id}[/green]")
        finally:
            await client.shutdown()

    _run(_identify())


@main.command("reset")
def reset_cmd():
    """Forget the identified user and start a new session."""

    async def _reset():
        client = await _get_client()
        try:
            await client.reset_identity()
            console.print(f"[green]Identity reset. Anonymous id: {client.anonymous_id}[/green]")
        finally:
            await client.shutdown()

    _run(_reset())


@main.command("variant")
@click.argument("experiment")
@click.option("--timeout", default=10.0, type=float, help="Seconds to wait for experiments to load.")
def variant_cmd(experiment, timeout):
    """Show the variant assigned to the current user."""

    async def _variant():
        client = await _get_client()
        try:
            try:
                with console.status("Loading experiments..."):
                    await asyncio.wait_for(client.experiments_ready(), timeout)
            except asyncio.TimeoutError:
                console.print("[yellow]Experiments did not load in time, using fallback assignment.[/yellow]")
            variant = await client.get_variant(experiment)
            if variant is None:
                console.print(f"[yellow]Unknown experiment: {experiment}[/yellow]")
            else:
                console.print(f"{experiment}: [bold]{variant}[/bold]")
        finally:
            await client.shutdown()

    _run(_variant())


# Register subcommands from separate modules
from mostly_good_metrics.cli.queue import queue

main.add_command(queue)


if __name__ == "__main__":
    main()
