"""
Request builder — turn a TargetConfig plus a prompt into a ProxyRequest.

The target is never touched: everything here works on copies, and every call
returns a fresh request.
"""

from __future__ import annotations

import copy
import json
import logging
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

from customgpt.proxy import ProxyRequest
from customgpt.storage.models import Message
from customgpt.target import BODYLESS_METHODS, PROMPT_TOKEN, TargetConfig

logger = logging.getLogger(__name__)


def _build_url(url: str, pairs: list[tuple[str, str]]) -> str:
    """Append pairs to the url's query string, keeping any query already there."""
    if not pairs:
        return url
    parts = urlsplit(url)
    # quote_via=quote gives %20 for spaces, like encodeURIComponent
    extra = urlencode(pairs, quote_via=quote, safe="")
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", query, parts.fragment))


def _replace_prompt(node, prompt: str):
    """Replace every string leaf holding the placeholder with the raw prompt."""
    if isinstance(node, dict):
        return {k: _replace_prompt(v, prompt) for k, v in node.items()}
    if isinstance(node, list):
        return [_replace_prompt(v, prompt) for v in node]
    if isinstance(node, str) and PROMPT_TOKEN in node:
        return prompt
    return node


def chat_history(transcript: list[Message], prompt: str) -> list[dict]:
    """
    Messages for a chat-mode body: the trailing run of the transcript since the
    last completion-type message, then the new user turn.
    """
    run: list[Message] = []
    for msg in reversed(transcript):
        if msg.interaction_type == "completion":
            break
        if msg.role in ("user", "assistant", "system") and not msg.is_root:
            run.append(msg)
    run.reverse()
    history = [m.to_openai_format() for m in run]
    history.append({"role": "user", "content": prompt})
    return history


def _default_body(config: TargetConfig, prompt: str, transcript: list[Message]) -> dict:
    if config.model_type == "chat":
        return {"messages": chat_history(transcript, prompt)}
    return {"prompt": prompt}


def build_body(config: TargetConfig, prompt: str, transcript: list[Message] | None = None):
    """The request body for a prompt. Falls back to the raw prompt on bad JSON."""
    transcript = transcript or []
    default = _default_body(config, prompt, transcript)
    template = config.body_template or ""
    if not template:
        return default

    if PROMPT_TOKEN in template:
        if not template.strip().startswith("{"):
            return template.replace(PROMPT_TOKEN, prompt)
        try:
            parsed = json.loads(template)
        except ValueError:
            logger.debug("Body template is not valid JSON, sending raw prompt")
            return prompt
        return _replace_prompt(parsed, prompt)

    try:
        parsed = json.loads(template)
    except ValueError:
        logger.debug("Body template is not valid JSON, sending raw prompt")
        return prompt
    if not isinstance(parsed, dict):
        return prompt
    if config.model_type == "chat":
        parsed["messages"] = default["messages"]
    else:
        parsed["prompt"] = prompt
    return parsed


def _with_json_default(headers: dict[str, str], method: str, body) -> dict[str, str]:
    if method in BODYLESS_METHODS or not isinstance(body, (dict, list)):
        return headers
    if any(k.lower() == "content-type" for k in headers):
        return headers
    headers["Content-Type"] = "application/json"
    return headers


def build_request(
    config: TargetConfig,
    prompt: str,
    transcript: list[Message] | None = None,
) -> ProxyRequest:
    """Build the proxied request for one user prompt."""
    config = copy.deepcopy(config)
    method = (config.method or "GET").upper()

    pairs = []
    for row in config.query_params:
        if not row.key or not row.value:
            continue
        value = row.value.replace(PROMPT_TOKEN, prompt) if PROMPT_TOKEN in row.value else row.value
        pairs.append((row.key, value))

    body = build_body(config, prompt, transcript)
    headers = _with_json_default(config.header_map(), method, body)

    return ProxyRequest(
        url=_build_url(config.url, pairs),
        method=method,
        headers=headers,
        body=None if method in BODYLESS_METHODS else body,
        response_type=config.output_type,
    )


def build_test_request(config: TargetConfig) -> ProxyRequest:
    """
    The request "test configuration" sends: query values and body go out as
    written, placeholder included. A body that looks like JSON (or is declared
    JSON) is parsed so the proxy re-encodes it.
    """
    config = copy.deepcopy(config)
    method = (config.method or "GET").upper()
    headers = config.header_map()
    pairs = [(q.key, q.value) for q in config.query_params if q.key and q.value]

    body = None
    template = config.body_template or ""
    if method not in BODYLESS_METHODS and template:
        body = template
        ct_key = next((k for k in headers if k.lower() == "content-type"), None)
        if ct_key is None:
            if template.strip().startswith(("{", "[")):
                headers["Content-Type"] = "application/json"
                try:
                    body = json.loads(template)
                except ValueError:
                    body = template
        elif "application/json" in headers[ct_key]:
            try:
                body = json.loads(template)
            except ValueError:
                body = template

    return ProxyRequest(
        url=_build_url(config.url, pairs),
        method=method,
        headers=headers,
        body=body,
        response_type=config.output_type,
    )
