from __future__ import annotations

import os
import sys

import typer
from rich import print

from . import __version__
from .config import (
    HonchoClaudisConfig,
    get_all_sessions,
    get_session_for_path,
    load_config,
    remove_session_for_path,
    session_name_for_path,
    set_session_for_path,
)
from .formatter import format_context
from .hooks import user_prompt
from .store import CacheStore

app = typer.Typer(help="honcho-claudis: Honcho memory for Claude Code prompts")
hook_app = typer.Typer(help="Claude Code hook entry points")
queue_app = typer.Typer(help="Inspect and flush the local message queue")
cache_app = typer.Typer(help="Inspect and clear the local caches")
sessions_app = typer.Typer(help="Map directories to Honcho sessions")
peers_app = typer.Typer(help="Provision Honcho peers")
app.add_typer(hook_app, name="hook")
app.add_typer(queue_app, name="queue")
app.add_typer(cache_app, name="cache")
app.add_typer(sessions_app, name="sessions")
app.add_typer(peers_app, name="peers")


def _config_or_exit() -> HonchoClaudisConfig:
    config = load_config()
    if config is None:
        print("[red]No usable config (need peerName, apiKey and workspace).[/red]")
        raise typer.Exit(code=1)
    return config


def _store(config: HonchoClaudisConfig) -> CacheStore:
    return CacheStore(
        config.cache_path,
        stale_after_s=config.context_stale_after_s,
        refresh_every=config.refresh_every_messages,
    )


@app.command("version")
def version() -> None:
    """Print the installed version."""

    print(__version__)


@hook_app.command("user-prompt")
def hook_user_prompt() -> None:
    """UserPromptSubmit hook: reads the hook JSON on stdin."""

    # Always exit 0; a failing hook would abort the assistant's turn.
    user_prompt.main(sys.stdin, sys.stdout)


@queue_app.command("status")
def queue_status() -> None:
    """Show pending and uploaded messages per directory."""

    config = _config_or_exit()
    store = _store(config)
    try:
        rows = store.queue_status()
    finally:
        store.close()
    if not rows:
        print("Queue is empty")
        return
    for row in rows:
        print(
            f"- {row['location_key']} pending={row['pending']} uploaded={row['uploaded']} "
            f"max_attempts={row['max_attempts']} oldest_pending={row['oldest_pending'] or ''}"
        )


@queue_app.command("flush")
def queue_flush() -> None:
    """Upload every pending message now."""

    config = _config_or_exit()
    store = _store(config)
    try:
        result = user_prompt.upload_pending(config, store, user_prompt.default_client_factory)
    finally:
        store.close()
    print(f"Uploaded {result.uploaded} messages ({result.failed} failed, {result.remaining} pending)")
    if result.failed:
        raise typer.Exit(code=1)


@queue_app.command("prune")
def queue_prune(
    days: int = typer.Option(30, help="Delete entries uploaded more than this many days ago"),
) -> None:
    """Delete messages whose upload was confirmed long ago."""

    config = _config_or_exit()
    store = _store(config)
    try:
        removed = store.prune_uploaded(older_than_days=days)
    finally:
        store.close()
    print(f"Removed {removed} uploaded messages")


@cache_app.command("show")
def cache_show(
    cwd: str = typer.Option(None, help="Directory whose context cache to show"),
) -> None:
    """Show cached identities and the context snapshot for a directory."""

    config = _config_or_exit()
    scope = cwd or os.getcwd()
    store = _store(config)
    try:
        entries = store.identity_entries()
        snapshot = store.get_snapshot(scope)
        stale = store.is_stale(scope)
        state = store.refresh_state(scope)
    finally:
        store.close()
    print("[bold]Identities[/bold]")
    if not entries:
        print("  (none)")
    for entry in entries:
        label = f" ({entry['name']})" if entry.get("name") and entry["name"] != entry["key"] else ""
        print(f"  {entry['kind']}: {entry['key']}{label} -> {entry['remote_id']}")
    print(f"[bold]Context[/bold] {scope}")
    print(
        f"  messages_since_refresh={state.messages_since_last_refresh} "
        f"last_refreshed_at={state.last_refreshed_at.isoformat() if state.last_refreshed_at else ''}"
    )
    if snapshot is None:
        print("  no snapshot")
        return
    print(f"  fetched_at={snapshot.fetched_at.isoformat()} stale={stale}")
    rendered = format_context(config.peer_name, snapshot)
    print(f"  {rendered}" if rendered else "  (empty snapshot)")


@cache_app.command("clear")
def cache_clear(
    identity: bool = typer.Option(True, help="Clear cached workspace/peer/session ids"),
    context: bool = typer.Option(True, help="Clear context snapshots and refresh counters"),
) -> None:
    """Clear local caches. The message queue is never touched."""

    config = _config_or_exit()
    store = _store(config)
    try:
        cleared_ids = store.clear_identity() if identity else 0
        cleared_snapshots = store.clear_context() if context else 0
    finally:
        store.close()
    print(f"Cleared {cleared_ids} identities and {cleared_snapshots} context snapshots")


@app.command("context")
def context(
    query: str = typer.Argument(..., help="Text to search memory with"),
    cwd: str = typer.Option(None, help="Directory whose session to use"),
    dialectic: bool = typer.Option(True, help="Also ask Honcho's dialectic chat"),
) -> None:
    """Fetch fresh context for a query and print it."""

    config = _config_or_exit()
    scope = cwd or os.getcwd()
    store = _store(config)
    try:
        with user_prompt.default_client_factory(config) as client:
            outcome = user_prompt.fetch_context(
                config, store, client, cwd=scope, prompt=query, include_dialectic=dialectic
            )
    except Exception as exc:
        print(f"[red]Context fetch failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    rendered = format_context(config.peer_name, outcome.snapshot, outcome.dialectic)
    print(rendered or "No context")


@peers_app.command("ensure")
def peers_ensure() -> None:
    """Create the user and assistant peers in Honcho and cache their ids."""

    config = _config_or_exit()
    store = _store(config)
    try:
        with user_prompt.default_client_factory(config) as client:
            peers = user_prompt.provision_peers(client, store, config)
    except Exception as exc:
        print(f"[red]Peer provisioning failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    for name, peer_id in peers.items():
        print(f"- {name} -> {peer_id}")


@sessions_app.command("list")
def sessions_list() -> None:
    """List configured directory -> session mappings."""

    sessions = get_all_sessions()
    if not sessions:
        print("No sessions configured")
        return
    for path, name in sorted(sessions.items()):
        print(f"- {path} -> {name}")


@sessions_app.command("show")
def sessions_show(
    path: str = typer.Argument(None, help="Directory (defaults to the current one)"),
) -> None:
    """Show which session a directory writes to."""

    target = path or os.getcwd()
    configured = get_session_for_path(target)
    name = session_name_for_path(target, configured)
    source = "configured" if configured else "derived"
    print(f"{target} -> {name} ({source})")


@sessions_app.command("set")
def sessions_set(
    path: str = typer.Argument(..., help="Directory"),
    name: str = typer.Argument(..., help="Honcho session name"),
) -> None:
    """Map a directory to a session name."""

    try:
        set_session_for_path(path, name)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"{path} -> {name}")


@sessions_app.command("remove")
def sessions_remove(path: str = typer.Argument(..., help="Directory")) -> None:
    """Remove a directory mapping."""

    try:
        removed = remove_session_for_path(path)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not removed:
        print(f"No session configured for {path}")
        raise typer.Exit(code=1)
    print(f"Removed session mapping for {path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
