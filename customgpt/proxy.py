"""
Proxy: the server half of the console.
Performs the HTTP call a target describes and hands back a normalized
envelope, so the console never has to care about CORS or raw transports.

The envelope is returned for every upstream answer, 2xx or not. Callers
branch on envelope.ok / envelope.status, never on the proxy's own status.
Only transport failures (DNS, connect, timeout, TLS, anything the client
raises) surface as ProxyTransportError.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from customgpt.errors import ProxyTransportError
from customgpt.wiretap import WireLog

logger = logging.getLogger(__name__)

RESPONSE_TYPES = ("text", "json", "arrayBuffer")
_BODYLESS_METHODS = ("GET", "HEAD")


@dataclass
class ProxyRequest:
    """What the console asks the proxy to send."""
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    response_type: str = "text"

    def to_dict(self) -> dict:
        data = {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "responseType": self.response_type,
        }
        if self.body is not None:
            data["body"] = self.body
        return data


@dataclass
class ProxyEnvelope:
    """Normalized upstream answer."""
    ok: bool
    status: int
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = ""

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "status": self.status,
            "statusText": self.status_text,
            "headers": self.headers,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProxyEnvelope":
        return cls(
            ok=bool(data.get("ok", False)),
            status=int(data.get("status", 0)),
            status_text=data.get("statusText", ""),
            headers=data.get("headers") or {},
            body=data.get("body", ""),
        )


def _find_header(headers: dict[str, str], name: str) -> str | None:
    """Case-insensitive header key lookup."""
    for key in headers:
        if key.lower() == name:
            return key
    return None


def encode_body(headers: dict[str, str], body) -> tuple[dict[str, str], dict]:
    """
    Work out how to put `body` on the wire.
    Returns (headers, httpx request kwargs). Does not mutate the input headers.
    """
    headers = dict(headers)
    ct_key = _find_header(headers, "content-type")

    if isinstance(body, (dict, list)):
        if ct_key is None:
            headers["Content-Type"] = "application/json"
            return headers, {"content": json.dumps(body)}
        content_type = headers[ct_key] or ""
        if "application/x-www-form-urlencoded" in content_type and isinstance(body, dict):
            return headers, {"data": {k: "" if v is None else str(v) for k, v in body.items()}}
        return headers, {"content": json.dumps(body)}

    if isinstance(body, (bytes, str)):
        return headers, {"content": body}

    # numbers, booleans, null: whatever JSON gave us
    return headers, {"content": json.dumps(body)}


def decode_response(resp: httpx.Response, response_type: str):
    """Decode the upstream body the way the console asked for it."""
    if response_type == "json":
        try:
            return resp.json()
        except ValueError:
            return resp.text
    if response_type == "arrayBuffer":
        return base64.b64encode(resp.content).decode("ascii")
    return resp.text


class ProxyExecutor:
    """Stateless relay between the console and arbitrary HTTP targets."""

    def __init__(self, timeout: float = 60.0, wire: WireLog | None = None):
        self.timeout = timeout
        self.wire = wire

    def _tap(self, direction: str, role: str, request: ProxyRequest, content: str, status: int = 0):
        if not self.wire:
            return
        try:
            self.wire.log(
                direction=direction,
                role=role,
                content=content,
                method=request.method.upper(),
                url=request.url,
                status=status,
            )
        except OSError as e:
            logger.warning("Wiretap write failed: %s", e)

    async def execute(self, request: ProxyRequest) -> ProxyEnvelope:
        """
        Perform the outbound call and return its envelope.
        Raises ProxyTransportError when no HTTP response came back.
        """
        method = (request.method or "GET").upper()
        headers = {str(k): str(v) for k, v in (request.headers or {}).items()}
        kwargs: dict = {}
        if method not in _BODYLESS_METHODS and request.body is not None:
            headers, kwargs = encode_body(headers, request.body)

        preview = kwargs.get("content", kwargs.get("data", ""))
        if isinstance(preview, bytes):
            preview = preview.decode("utf-8", errors="replace")
        self._tap("outbound", "request", request, str(preview))

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                resp = await client.request(method, request.url, headers=headers, **kwargs)
                body = decode_response(resp, request.response_type)
        except httpx.TimeoutException as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Proxy %s %s timed out after %.0fms", method, request.url, latency)
            self._tap("internal", "error", request, f"timeout: {e!r}")
            raise ProxyTransportError(f"Timeout after {self.timeout}s: {e!r}") from e
        except Exception as e:
            logger.warning("Proxy %s %s failed: %r", method, request.url, e)
            self._tap("internal", "error", request, repr(e))
            raise ProxyTransportError(repr(e)) from e

        latency = (time.monotonic() - t0) * 1000
        envelope = ProxyEnvelope(
            ok=resp.is_success,
            status=resp.status_code,
            status_text=resp.reason_phrase,
            headers=dict(resp.headers.items()),
            body=body,
        )
        logger.info(
            "Proxy %s %s -> %d %s (%.0fms)",
            method, request.url, envelope.status, envelope.status_text, latency,
        )
        self._tap(
            "inbound",
            "response",
            request,
            body if isinstance(body, str) else json.dumps(body, ensure_ascii=False),
            status=envelope.status,
        )
        return envelope
