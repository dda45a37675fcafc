"""
Tests for the proxy executor: envelopes, body encoding, transport failures.
httpx.AsyncClient is patched; responses are real httpx.Response objects.
Run with: pytest tests/test_proxy.py
"""

import base64
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from customgpt.errors import ProxyTransportError
from customgpt.proxy import (
    ProxyEnvelope,
    ProxyExecutor,
    ProxyRequest,
    decode_response,
    encode_body,
)
from customgpt.wiretap import WireLog


def _response(status=200, **kwargs) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("GET", "https://x/api"), **kwargs)


def _patched_client(mock_client_cls, response=None, side_effect=None):
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.request.side_effect = side_effect
    else:
        mock_client.request.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


# ---------------------------------------------------------------------------
# ProxyExecutor
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_execute_json_envelope():
    """Upstream JSON comes back parsed inside a 2xx envelope."""
    executor = ProxyExecutor(timeout=5)
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        mock_client = _patched_client(mock_client_cls, _response(200, json={"choices": [{"text": "hi"}]}))
        env = await executor.execute(ProxyRequest(
            url="https://x/api", method="post", body={"prompt": "hello"}, response_type="json",
        ))

    assert env.ok is True
    assert env.status == 200
    assert env.status_text == "OK"
    assert env.body == {"choices": [{"text": "hi"}]}
    assert env.headers["content-type"] == "application/json"

    args, kwargs = mock_client.request.call_args
    assert args == ("POST", "https://x/api")
    assert kwargs["headers"] == {"Content-Type": "application/json"}
    assert json.loads(kwargs["content"]) == {"prompt": "hello"}
    mock_client_cls.assert_called_once_with(timeout=5, follow_redirects=True)


@pytest.mark.asyncio
async def test_execute_upstream_error_is_still_an_envelope():
    executor = ProxyExecutor()
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, _response(404, text="nope"))
        env = await executor.execute(ProxyRequest(url="https://x/api"))

    assert env.ok is False
    assert env.status == 404
    assert env.status_text == "Not Found"
    assert env.body == "nope"


@pytest.mark.asyncio
async def test_execute_json_falls_back_to_text():
    executor = ProxyExecutor()
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, _response(200, text="<html>not json</html>"))
        env = await executor.execute(ProxyRequest(url="https://x/api", response_type="json"))
    assert env.body == "<html>not json</html>"


@pytest.mark.asyncio
async def test_execute_array_buffer_is_base64():
    executor = ProxyExecutor()
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, _response(200, content=b"\x00\x01binary"))
        env = await executor.execute(ProxyRequest(url="https://x/api", response_type="arrayBuffer"))
    assert base64.b64decode(env.body) == b"\x00\x01binary"


@pytest.mark.asyncio
async def test_get_never_sends_a_body():
    executor = ProxyExecutor()
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        mock_client = _patched_client(mock_client_cls, _response(200, text="ok"))
        await executor.execute(ProxyRequest(url="https://x/api", method="get", body={"a": 1}))

    args, kwargs = mock_client.request.call_args
    assert args[0] == "GET"
    assert "content" not in kwargs
    assert "data" not in kwargs
    assert kwargs["headers"] == {}


@pytest.mark.asyncio
async def test_timeout_raises_transport_error():
    executor = ProxyExecutor(timeout=1)
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(ProxyTransportError) as exc:
            await executor.execute(ProxyRequest(url="https://x/api"))
    assert "Timeout after 1s" in exc.value.message
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_connect_error_raises_transport_error():
    executor = ProxyExecutor()
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ProxyTransportError) as exc:
            await executor.execute(ProxyRequest(url="https://x/api"))
    assert "ConnectError" in exc.value.message


@pytest.mark.asyncio
async def test_wiretap_records_request_and_response(tmp_path):
    wire = WireLog(str(tmp_path / "wire.jsonl"))
    executor = ProxyExecutor(wire=wire)
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, _response(201, json={"ok": 1}))
        await executor.execute(ProxyRequest(url="https://x/api", method="POST", body="raw", response_type="json"))
    wire.close()

    entries = [json.loads(line) for line in (tmp_path / "wire.jsonl").read_text().splitlines()]
    assert [(e["dir"], e["role"]) for e in entries] == [("outbound", "request"), ("inbound", "response")]
    assert entries[0]["method"] == "POST"
    assert entries[0]["content"] == "raw"
    assert entries[1]["status"] == 201
    assert json.loads(entries[1]["content"]) == {"ok": 1}


@pytest.mark.asyncio
async def test_wiretap_records_transport_error(tmp_path):
    wire = WireLog(str(tmp_path / "wire.jsonl"))
    executor = ProxyExecutor(wire=wire)
    with patch("customgpt.proxy.httpx.AsyncClient") as mock_client_cls:
        _patched_client(mock_client_cls, side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ProxyTransportError):
            await executor.execute(ProxyRequest(url="https://x/api"))
    wire.close()

    entries = [json.loads(line) for line in (tmp_path / "wire.jsonl").read_text().splitlines()]
    assert entries[-1]["role"] == "error"
    assert entries[-1]["dir"] == "internal"


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------

def test_encode_object_without_content_type():
    headers, kwargs = encode_body({}, {"a": 1})
    assert headers == {"Content-Type": "application/json"}
    assert json.loads(kwargs["content"]) == {"a": 1}


def test_encode_object_with_json_content_type():
    original = {"content-type": "application/json; charset=utf-8"}
    headers, kwargs = encode_body(original, [1, 2])
    assert headers == original
    assert headers is not original
    assert json.loads(kwargs["content"]) == [1, 2]


def test_encode_object_as_form():
    headers, kwargs = encode_body({"Content-Type": "application/x-www-form-urlencoded"}, {"q": "hi", "n": 2})
    assert kwargs == {"data": {"q": "hi", "n": "2"}}


def test_encode_string_forwarded_as_is():
    headers, kwargs = encode_body({"Content-Type": "text/plain"}, "hello {{prompt}}")
    assert kwargs == {"content": "hello {{prompt}}"}
    assert headers == {"Content-Type": "text/plain"}


def test_encode_scalar_is_json():
    _, kwargs = encode_body({}, 42)
    assert kwargs == {"content": "42"}


def test_decode_response_text_default():
    assert decode_response(_response(200, text="plain"), "text") == "plain"


def test_wire_shapes():
    req = ProxyRequest(url="https://x", method="POST", headers={"A": "1"}, body={"b": 2}, response_type="json")
    assert req.to_dict() == {
        "url": "https://x", "method": "POST", "headers": {"A": "1"},
        "responseType": "json", "body": {"b": 2},
    }
    assert "body" not in ProxyRequest(url="https://x").to_dict()

    env = ProxyEnvelope.from_dict({"ok": True, "status": 200, "statusText": "OK", "headers": {}, "body": "x"})
    assert env.to_dict()["statusText"] == "OK"
    assert env.ok and env.status == 200
