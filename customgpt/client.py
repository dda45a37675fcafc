"""
HTTP client for the console server.

The session controller never talks to targets or the database directly: it
goes through the server's /proxy and /api/* routes, just as a browser page
would. Error bodies are turned back into the typed errors of customgpt.errors.
"""

from __future__ import annotations

import logging

import httpx

from customgpt.errors import (
    DatabaseUnavailable,
    ProxyTransportError,
    error_from_response,
)
from customgpt.proxy import ProxyEnvelope, ProxyRequest
from customgpt.storage.models import Chat

logger = logging.getLogger(__name__)


class ConsoleClient:
    """Async client for the console server's HTTP surface."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 90.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Tests hand in an ASGI or mock transport
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _call(self, method: str, path: str, unreachable, **kwargs) -> dict:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Console server %s %s failed: %r", method, path, e)
            raise unreachable(f"Console server unreachable at {self.base_url}: {e!r}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {"error": resp.text[:200]}
        if resp.status_code >= 400:
            raise error_from_response(resp.status_code, data if isinstance(data, dict) else {})
        return data

    # ── proxy ────────────────────────────────────────────────────────────

    async def proxy(self, request: ProxyRequest) -> ProxyEnvelope:
        """POST /proxy. Raises ProxyTransportError when the target is unreachable."""
        data = await self._call("POST", "/proxy", ProxyTransportError, json=request.to_dict())
        return ProxyEnvelope.from_dict(data)

    async def health(self) -> dict:
        return await self._call("GET", "/health", ProxyTransportError)

    # ── chats ────────────────────────────────────────────────────────────

    async def db_health(self) -> bool:
        try:
            data = await self._call("GET", "/api/dbhealth", DatabaseUnavailable)
        except DatabaseUnavailable:
            return False
        return bool(data.get("ok"))

    async def create_chat(self, chat_name: str | None = None, config_name: str | None = None) -> dict:
        payload = {}
        if chat_name:
            payload["chat_name"] = chat_name
        if config_name:
            payload["config_name"] = config_name
        return await self._call("POST", "/api/chats", DatabaseUnavailable, json=payload)

    async def list_chats(self, limit: int = 50, skip: int = 0) -> dict:
        return await self._call(
            "GET", "/api/chats", DatabaseUnavailable, params={"limit": limit, "skip": skip}
        )

    async def get_chat(self, chat_id: str) -> Chat:
        data = await self._call("GET", f"/api/chats/{chat_id}", DatabaseUnavailable)
        return Chat.from_dict(data["chat"])

    async def append_message(
        self,
        chat_id: str,
        role: str,
        interaction_type: str,
        message_content: str,
        parent_id: str = "root",
        status: str = "success",
    ) -> tuple[str, Chat]:
        data = await self._call(
            "POST",
            f"/api/chats/{chat_id}/messages",
            DatabaseUnavailable,
            json={
                "role": role,
                "interaction_type": interaction_type,
                "message_content": message_content,
                "parent_id": parent_id,
                "status": status,
            },
        )
        return data["message_id"], Chat.from_dict(data["chat"])

    async def update_chat(
        self,
        chat_id: str,
        chat_name: str | None = None,
        config_name: str | None = None,
    ) -> Chat:
        payload = {}
        if chat_name is not None:
            payload["chat_name"] = chat_name
        if config_name is not None:
            payload["config_name"] = config_name
        data = await self._call("PATCH", f"/api/chats/{chat_id}", DatabaseUnavailable, json=payload)
        return Chat.from_dict(data["chat"])
