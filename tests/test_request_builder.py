"""
Tests for the request builder: query assembly, body templating, headers.
Run with: pytest tests/test_request_builder.py
"""

import copy

from customgpt.request_builder import (
    build_body,
    build_request,
    build_test_request,
    chat_history,
)
from customgpt.storage.models import Message
from customgpt.target import KeyValue, TargetConfig


def _completions(**overrides) -> TargetConfig:
    base = dict(url="https://x/api", method="POST", body_template='{"prompt":"{{prompt}}"}')
    base.update(overrides)
    return TargetConfig(**base)


def _msg(role, content, interaction_type="chat") -> Message:
    return Message(role=role, message_content=content, interaction_type=interaction_type)


# ---------------------------------------------------------------------------
# Body templating
# ---------------------------------------------------------------------------

def test_end_to_end_prompt_body():
    """The documented hello example produces {"prompt": "hello"}."""
    req = build_request(_completions(), "hello")
    assert req.url == "https://x/api"
    assert req.method == "POST"
    assert req.body == {"prompt": "hello"}
    assert req.headers == {"Content-Type": "application/json"}
    assert req.response_type == "json"


def test_nested_leaves_replaced_with_raw_prompt():
    config = _completions(
        body_template='{"a": {"b": ["{{prompt}}", "x"]}, "c": "pre {{prompt}} post", "n": 3}'
    )
    assert build_body(config, 'say "hi"') == {
        "a": {"b": ['say "hi"', "x"]},
        "c": 'say "hi"',
        "n": 3,
    }


def test_literal_template():
    req = build_request(_completions(body_template="Say: {{prompt}}!"), "hi")
    assert req.body == "Say: hi!"
    # string bodies get no default content type
    assert req.headers == {}


def test_broken_json_template_falls_back_to_prompt():
    assert build_body(_completions(body_template='{"prompt": {{prompt}}}'), "hi") == "hi"


def test_template_without_placeholder_completions():
    config = _completions(body_template='{"max_tokens": 5}', query_params=[KeyValue("q", "{{prompt}}")])
    assert build_body(config, "hi") == {"max_tokens": 5, "prompt": "hi"}


def test_template_without_placeholder_chat():
    config = _completions(
        body_template='{"model": "m", "messages": []}',
        model_type="chat",
        query_params=[KeyValue("q", "{{prompt}}")],
    )
    transcript = [_msg("user", "a"), _msg("assistant", "b")]
    assert build_body(config, "c", transcript) == {
        "model": "m",
        "messages": [
            {"role": "user", "content": "a"},
            {"role": "assistant", "content": "b"},
            {"role": "user", "content": "c"},
        ],
    }


def test_template_without_placeholder_not_an_object():
    assert build_body(_completions(body_template="[1, 2]"), "hi") == "hi"
    assert build_body(_completions(body_template="not json"), "hi") == "hi"


def test_empty_template_defaults():
    assert build_body(_completions(body_template=""), "hi") == {"prompt": "hi"}
    chat = _completions(body_template="", model_type="chat")
    assert build_body(chat, "hi") == {"messages": [{"role": "user", "content": "hi"}]}


def test_chat_history_stops_at_last_completion():
    transcript = [
        Message.root(),
        _msg("user", "old", "chat"),
        _msg("user", "one-shot", "completion"),
        _msg("assistant", "done", "completion"),
        _msg("user", "b", "chat"),
        _msg("assistant", "c", "chat"),
    ]
    assert chat_history(transcript, "new") == [
        {"role": "user", "content": "b"},
        {"role": "assistant", "content": "c"},
        {"role": "user", "content": "new"},
    ]


def test_chat_history_skips_root():
    assert chat_history([Message.root(), _msg("user", "a")], "b") == [
        {"role": "user", "content": "a"},
        {"role": "user", "content": "b"},
    ]


# ---------------------------------------------------------------------------
# URL / headers
# ---------------------------------------------------------------------------

def test_query_assembly():
    config = TargetConfig(
        url="https://x/api",
        method="GET",
        query_params=[
            KeyValue("q", "{{prompt}}"),
            KeyValue("k", "v w"),
            KeyValue("", "ignored"),
            KeyValue("empty", ""),
        ],
    )
    req = build_request(config, "hello world & more")
    assert req.url == "https://x/api?q=hello%20world%20%26%20more&k=v%20w"
    assert req.body is None


def test_query_appends_to_existing_query():
    config = TargetConfig(url="https://x/api?a=1", query_params=[KeyValue("q", "{{prompt}}")])
    assert build_request(config, "hi").url == "https://x/api?a=1&q=hi"


def test_explicit_content_type_kept():
    config = _completions(headers=[KeyValue("content-type", "application/vnd.api+json")])
    req = build_request(config, "hi")
    assert req.headers == {"content-type": "application/vnd.api+json"}


def test_get_request_has_no_body_or_default_content_type():
    config = _completions(method="get", query_params=[], body_template='{"prompt":"{{prompt}}"}')
    req = build_request(config, "hi")
    assert req.method == "GET"
    assert req.body is None
    assert "Content-Type" not in req.headers


def test_builder_never_mutates_config():
    config = _completions(
        headers=[KeyValue("X-A", "1")],
        query_params=[KeyValue("k", "v")],
        model_type="chat",
        body_template='{"messages": []}',
    )
    before = copy.deepcopy(config)
    first = build_request(config, "hi", [_msg("user", "a")])
    second = build_request(config, "hi", [_msg("user", "a")])
    assert config == before
    assert first == second
    assert first is not second
    assert first.headers is not second.headers


# ---------------------------------------------------------------------------
# Test-configuration request
# ---------------------------------------------------------------------------

def test_test_request_keeps_placeholder_and_parses_json():
    config = _completions(body_template='{"prompt": "{{prompt}}"}')
    req = build_test_request(config)
    assert req.body == {"prompt": "{{prompt}}"}
    assert req.headers == {"Content-Type": "application/json"}


def test_test_request_raw_query_values():
    config = TargetConfig(url="https://x/api", query_params=[KeyValue("q", "{{prompt}}")])
    req = build_test_request(config)
    assert req.url == "https://x/api?q=%7B%7Bprompt%7D%7D"
    assert req.body is None


def test_test_request_text_body():
    config = _completions(
        headers=[KeyValue("Content-Type", "text/plain")],
        body_template="Say: {{prompt}}",
    )
    req = build_test_request(config)
    assert req.body == "Say: {{prompt}}"
    assert req.headers == {"Content-Type": "text/plain"}


def test_test_request_declared_json_that_does_not_parse():
    config = _completions(
        headers=[KeyValue("Content-Type", "application/json")],
        body_template="{{prompt}}",
    )
    assert build_test_request(config).body == "{{prompt}}"
