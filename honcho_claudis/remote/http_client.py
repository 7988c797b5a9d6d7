from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from ..config import DEFAULT_BASE_URL
from .types import (
    ChatResult,
    ContextResult,
    HonchoAPIError,
    MessageCreateResult,
    PeerResult,
    SessionResult,
    WorkspaceResult,
)


API_PREFIX = "/v2"
ERROR_SNIPPET_CHARS = 240


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return DEFAULT_BASE_URL
    if "://" in trimmed:
        return trimmed
    return f"https://{trimmed}"


def _seg(value: str) -> str:
    return quote(value, safe="")


class HonchoClient:
    """Thin client for the Honcho memory API.

    Every method raises ``HonchoAPIError`` on transport failures, non-2xx
    statuses and undecodable bodies; callers decide what degrades.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=build_base_url(base_url),
            timeout=timeout_s,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
        )

    def __enter__(self) -> HonchoClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{API_PREFIX}{path}"
        try:
            response = self._client.request(method, url, json=body, params=params)
        except httpx.HTTPError as exc:
            raise HonchoAPIError(f"{method} {url} failed: {exc}", path=url) from exc
        if response.status_code >= 400:
            snippet = response.text[:ERROR_SNIPPET_CHARS].strip()
            message = f"{method} {url} returned {response.status_code}"
            if snippet:
                message = f"{message}: {snippet}"
            raise HonchoAPIError(message, status=response.status_code, path=url)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise HonchoAPIError(
                f"{method} {url} returned non-json body", status=response.status_code, path=url
            ) from exc

    def _request_object(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        payload = self._request(method, path, **kwargs)
        if not isinstance(payload, dict):
            raise HonchoAPIError(f"{method} {path} returned unexpected payload", path=path)
        return payload

    def get_or_create_workspace(
        self, name: str, *, metadata: dict[str, Any] | None = None
    ) -> WorkspaceResult:
        body: dict[str, Any] = {"id": name}
        if metadata:
            body["metadata"] = metadata
        return WorkspaceResult.from_payload(self._request_object("POST", "/workspaces", body=body))

    def get_or_create_peer(self, workspace_id: str, name: str) -> PeerResult:
        payload = self._request_object(
            "POST", f"/workspaces/{_seg(workspace_id)}/peers", body={"id": name}
        )
        return PeerResult.from_payload(payload)

    def get_or_create_session(
        self, workspace_id: str, name: str, *, metadata: dict[str, Any] | None = None
    ) -> SessionResult:
        body: dict[str, Any] = {"id": name}
        if metadata:
            body["metadata"] = metadata
        return SessionResult.from_payload(
            self._request_object("POST", f"/workspaces/{_seg(workspace_id)}/sessions", body=body)
        )

    def create_messages(
        self, workspace_id: str, session_id: str, messages: list[dict[str, Any]]
    ) -> MessageCreateResult:
        payload = self._request(
            "POST",
            f"/workspaces/{_seg(workspace_id)}/sessions/{_seg(session_id)}/messages",
            body={"messages": messages},
        )
        return MessageCreateResult.from_payload(payload)

    def get_peer_context(
        self,
        workspace_id: str,
        peer_id: str,
        *,
        search_query: str,
        search_top_k: int = 10,
        search_max_distance: float = 0.7,
        max_observations: int = 15,
        include_most_derived: bool = True,
    ) -> ContextResult:
        params = {
            "search_query": search_query,
            "search_top_k": search_top_k,
            "search_max_distance": search_max_distance,
            "max_observations": max_observations,
            "include_most_derived": "true" if include_most_derived else "false",
        }
        payload = self._request_object(
            "GET",
            f"/workspaces/{_seg(workspace_id)}/peers/{_seg(peer_id)}/context",
            params=params,
        )
        return ContextResult.from_payload(payload)

    def chat(
        self, workspace_id: str, peer_id: str, *, query: str, session_id: str | None = None
    ) -> ChatResult:
        body: dict[str, Any] = {"query": query, "stream": False}
        if session_id:
            body["session_id"] = session_id
        payload = self._request_object(
            "POST",
            f"/workspaces/{_seg(workspace_id)}/peers/{_seg(peer_id)}/chat",
            body=body,
        )
        return ChatResult.from_payload(payload)
