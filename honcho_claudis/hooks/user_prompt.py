"""UserPromptSubmit hook.

Reads the hook payload from stdin, queues the prompt locally, mirrors it to
Honcho in the background and, when the prompt is worth it, injects cached or
freshly fetched memory about the user as additional context.

The hook always exits 0: a non-zero exit would abort the assistant's turn.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import sys
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TextIO

from ..config import HonchoClaudisConfig, load_config, session_name_for_path
from ..formatter import format_context
from ..logs import configure_hook_logging, remove_handler
from ..policy import needs_refresh, should_skip_context
from ..remote import ChatResult, ContextResult, HonchoClient
from ..store import CacheStore, ContextSnapshot, DrainResult, QueuedMessage, StateStore
from ..tasks import BackgroundTask

logger = logging.getLogger(__name__)

HOOK_EVENT_NAME = "UserPromptSubmit"

CONTEXT_QUERY_CHARS = 500
DIALECTIC_QUERY_CHARS = 200
CONTEXT_TOP_K = 10
CONTEXT_MAX_DISTANCE = 0.7
CONTEXT_MAX_OBSERVATIONS = 15

ClientFactory = Callable[[HonchoClaudisConfig], HonchoClient]


def default_client_factory(config: HonchoClaudisConfig) -> HonchoClient:
    return HonchoClient(
        config.api_key, base_url=config.base_url, timeout_s=config.request_timeout_s
    )


@dataclass(frozen=True)
class HookInput:
    prompt: str
    cwd: str
    session_id: str | None = None


def parse_hook_input(raw: str | None) -> HookInput | None:
    """Parse the stdin payload; None means "exit quietly"."""

    if not raw or not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return None
    cwd = payload.get("cwd")
    if not isinstance(cwd, str) or not cwd.strip():
        cwd = os.getcwd()
    session_id = payload.get("session_id")
    return HookInput(
        prompt=prompt,
        cwd=cwd,
        session_id=session_id if isinstance(session_id, str) and session_id else None,
    )


def build_hook_output(additional_context: str) -> dict[str, Any]:
    return {
        "hookSpecificOutput": {
            "hookEventName": HOOK_EVENT_NAME,
            "additionalContext": additional_context,
        }
    }


# Identity resolution: local cache first, remote get-or-create on a miss.


def resolve_workspace_id(
    client: HonchoClient, store: StateStore, config: HonchoClaudisConfig
) -> str:
    cached = store.get_workspace_id(config.workspace)
    if cached:
        return cached
    workspace = client.get_or_create_workspace(config.workspace)
    store.set_workspace_id(config.workspace, workspace.id)
    return workspace.id


def resolve_session_id(
    client: HonchoClient,
    store: StateStore,
    config: HonchoClaudisConfig,
    workspace_id: str,
    cwd: str,
) -> str:
    session_name = session_name_for_path(cwd, config.sessions.get(cwd))
    cached = store.get_session_id(cwd)
    # A remapped directory must not keep writing into its old session.
    if cached and store.get_session_name(cwd) in (None, session_name):
        return cached
    session = client.get_or_create_session(workspace_id, session_name, metadata={"cwd": cwd})
    store.set_session_id(cwd, session_name, session.id)
    return session.id


def resolve_peer_id(store: StateStore, config: HonchoClaudisConfig) -> str:
    # Peers are provisioned out of band (`peers ensure`); until then the
    # configured name is the id.
    return store.get_peer_id(config.peer_name) or config.peer_name


def provision_peers(
    client: HonchoClient, store: StateStore, config: HonchoClaudisConfig
) -> dict[str, str]:
    """Get-or-create the user and assistant peers and cache their ids."""

    workspace_id = resolve_workspace_id(client, store, config)
    peers: dict[str, str] = {}
    for name in (config.peer_name, config.claude_peer):
        if not name or name in peers:
            continue
        peer = client.get_or_create_peer(workspace_id, name)
        store.set_peer_id(name, peer.id)
        peers[name] = peer.id
    return peers


# Upload path


def upload_pending(
    config: HonchoClaudisConfig,
    store: StateStore,
    client_factory: ClientFactory = default_client_factory,
) -> DrainResult:
    """Drain every queued message, this prompt's and any left by earlier runs."""

    with client_factory(config) as client:

        def upload(message: QueuedMessage) -> None:
            workspace_id = resolve_workspace_id(client, store, config)
            session_id = resolve_session_id(
                client, store, config, workspace_id, message.location_key
            )
            client.create_messages(
                workspace_id,
                session_id,
                [
                    {
                        "content": message.content,
                        "peer_id": message.author,
                        "metadata": message.metadata,
                    }
                ],
            )

        result = store.drain(upload)
    logger.info(
        "queue drained",
        extra={
            "event": "queue.drained",
            "uploaded": result.uploaded,
            "failed": result.failed,
            "remaining": result.remaining,
        },
    )
    return result


# Context path


@dataclass(frozen=True)
class FetchOutcome:
    snapshot: ContextSnapshot | None = None
    dialectic: str | None = None


def fetch_context(
    config: HonchoClaudisConfig,
    store: StateStore,
    client: HonchoClient,
    *,
    cwd: str,
    prompt: str,
    include_dialectic: bool = False,
    now: dt.datetime | None = None,
) -> FetchOutcome:
    """Fetch fresh context and replace the cached snapshot on success.

    With ``include_dialectic`` the semantic search and the chat call run
    concurrently and settle independently: either may fail without affecting
    the other.
    """

    workspace_id = resolve_workspace_id(client, store, config)
    peer_id = resolve_peer_id(store, config)

    def semantic() -> ContextResult:
        return client.get_peer_context(
            workspace_id,
            peer_id,
            search_query=prompt[:CONTEXT_QUERY_CHARS],
            search_top_k=CONTEXT_TOP_K,
            search_max_distance=CONTEXT_MAX_DISTANCE,
            max_observations=CONTEXT_MAX_OBSERVATIONS,
            include_most_derived=True,
        )

    def dialectic() -> ChatResult:
        session_id = resolve_session_id(client, store, config, workspace_id, cwd)
        query = (
            f"Based on what you know about {config.peer_name}, what context is relevant "
            f'to this query: "{prompt[:DIALECTIC_QUERY_CHARS]}"? Answer in 1-2 sentences.'
        )
        return client.chat(workspace_id, peer_id, query=query, session_id=session_id)

    context_result: ContextResult | None = None
    chat_result: ChatResult | None = None
    if include_dialectic:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="honcho-context") as pool:
            semantic_future = pool.submit(semantic)
            dialectic_future = pool.submit(dialectic)
            try:
                context_result = semantic_future.result()
            except Exception as exc:
                logger.warning(
                    "context search failed", extra={"event": "context.search_failed"}, exc_info=exc
                )
            try:
                chat_result = dialectic_future.result()
            except Exception as exc:
                logger.warning(
                    "dialectic chat failed", extra={"event": "context.chat_failed"}, exc_info=exc
                )
    else:
        context_result = semantic()

    snapshot: ContextSnapshot | None = None
    if context_result is not None:
        fetched_at = now or dt.datetime.now(dt.UTC)
        snapshot = context_result.to_snapshot(fetched_at=fetched_at)
        store.set_snapshot(cwd, snapshot)
    return FetchOutcome(
        snapshot=snapshot, dialectic=chat_result.content if chat_result is not None else None
    )


def decide_context(
    config: HonchoClaudisConfig,
    store: StateStore,
    hook_input: HookInput,
    client_factory: ClientFactory = default_client_factory,
) -> str:
    if should_skip_context(hook_input.prompt):
        logger.info("context skipped for trivial prompt", extra={"event": "context.skipped"})
        return ""

    scope = hook_input.cwd
    count = store.increment_message_count(scope)
    snapshot = store.get_snapshot(scope)
    stale = store.is_stale(scope)
    force = store.should_force_refresh(scope)
    if not needs_refresh(snapshot is not None, stale, force):
        logger.info(
            "context served from cache",
            extra={"event": "context.cache_hit", "messages_since_refresh": count},
        )
        return format_context(config.peer_name, snapshot)

    logger.info(
        "context refresh",
        extra={
            "event": "context.refresh",
            "has_snapshot": snapshot is not None,
            "stale": stale,
            "forced": force,
            "messages_since_refresh": count,
        },
    )
    try:
        with client_factory(config) as client:
            outcome = fetch_context(
                config,
                store,
                client,
                cwd=scope,
                prompt=hook_input.prompt,
                include_dialectic=config.dialectic_on_prompt,
            )
    except Exception as exc:
        logger.warning(
            "context fetch failed", extra={"event": "context.fetch_failed"}, exc_info=exc
        )
        return ""
    # Only a threshold refresh resets the counter; staleness refreshes leave it running.
    if force and outcome.snapshot is not None:
        store.acknowledge_refresh(scope, now=outcome.snapshot.fetched_at)
    return format_context(config.peer_name, outcome.snapshot, outcome.dialectic)


def handle_user_prompt(
    raw_input: str,
    *,
    config: HonchoClaudisConfig,
    store: StateStore,
    out: TextIO,
    client_factory: ClientFactory = default_client_factory,
) -> int:
    hook_input = parse_hook_input(raw_input)
    if hook_input is None:
        return 0

    upload_task: BackgroundTask | None = None
    if config.save_messages:
        # Queue first: this is the only step guaranteed to finish if the user
        # interrupts the turn.
        store.enqueue(
            hook_input.prompt,
            config.peer_name,
            hook_input.cwd,
            metadata={
                "cwd": hook_input.cwd,
                "instance_id": hook_input.session_id,
                "source": "user_prompt",
            },
        )
        upload_task = BackgroundTask(
            lambda: upload_pending(config, store, client_factory), name="honcho-upload"
        ).start()

    try:
        try:
            additional_context = decide_context(config, store, hook_input, client_factory)
        except Exception as exc:
            logger.warning(
                "context decision failed", extra={"event": "context.failed"}, exc_info=exc
            )
            additional_context = ""
        if additional_context:
            out.write(json.dumps(build_hook_output(additional_context), ensure_ascii=False))
            out.write("\n")
            out.flush()
    finally:
        if upload_task is not None:
            upload_task.join(timeout=config.upload_join_timeout_s)
    return 0


def main(stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    config = load_config()
    if config is None:
        return 0
    handler = configure_hook_logging(config.hook_log)
    try:
        raw = stdin.read()
        store = CacheStore.open_or_memory(
            config.cache_path,
            stale_after_s=config.context_stale_after_s,
            refresh_every=config.refresh_every_messages,
        )
        try:
            return handle_user_prompt(raw, config=config, store=store, out=stdout)
        finally:
            store.close()
    except Exception as exc:
        logger.exception("user prompt hook failed", exc_info=exc)
        return 0
    finally:
        remove_handler(handler)


if __name__ == "__main__":
    raise SystemExit(main())
