"""
Tests for target configs: validation order, parsing, YAML loading.
Run with: pytest tests/test_target.py
"""

import pytest

from customgpt.errors import TargetConfigError
from customgpt.target import (
    DEFAULT_EXPRESSION,
    KeyValue,
    TargetConfig,
    load_target,
    validate_target,
)


def _target(**overrides) -> TargetConfig:
    base = dict(
        url="https://x/api",
        method="POST",
        headers=[KeyValue("Content-Type", "application/json")],
        body_template='{"prompt": "{{prompt}}"}',
        output_type="json",
        response_expression="response.choices[0].text",
    )
    base.update(overrides)
    return TargetConfig(**base)


def _error(config: TargetConfig) -> str:
    with pytest.raises(TargetConfigError) as exc:
        validate_target(config)
    return exc.value.message


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def test_defaults():
    """A blank target starts from the console defaults."""
    t = TargetConfig()
    assert t.method == "GET"
    assert t.model_type == "completions"
    assert t.output_type == "json"
    assert t.response_expression == DEFAULT_EXPRESSION
    assert t.name == "default"
    assert t.interaction_type == "completion"
    assert TargetConfig(model_type="chat").interaction_type == "chat"


def test_valid_target_passes():
    validate_target(_target())


def test_valid_query_target_passes():
    validate_target(_target(
        method="GET",
        body_template="",
        headers=[],
        query_params=[KeyValue("q", "{{prompt}}")],
    ))


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------

def test_url_required():
    assert _error(_target(url="")) == "URL is required"


def test_placeholder_missing():
    msg = _error(_target(body_template='{"prompt": "hi"}'))
    assert "must be present" in msg


def test_placeholder_in_both_places():
    msg = _error(_target(query_params=[KeyValue("q", "{{prompt}}")]))
    assert "only appear once" in msg


def test_placeholder_checked_before_url_format():
    """A bad URL with no placeholder reports the placeholder first."""
    msg = _error(_target(url="not a url", body_template="plain"))
    assert "must be present" in msg


def test_invalid_url_format():
    assert _error(_target(url="not a url")) == "Invalid URL format"
    assert _error(_target(url="ftp://x/api")) == "Invalid URL format"


def test_invalid_json_body_with_json_content_type():
    msg = _error(_target(body_template='{"prompt": {{prompt}}}'))
    assert msg == "Invalid JSON in request body"


def test_invalid_json_body_allowed_for_get():
    validate_target(_target(
        method="GET",
        body_template='{"unused": }',
        query_params=[KeyValue("q", "{{prompt}}")],
    ))


@pytest.mark.parametrize("method", ["GET", "head"])
def test_body_placeholder_rejected_for_bodyless_methods(method):
    msg = _error(_target(method=method))
    assert msg.startswith(f"{{{{prompt}}}} in the body is never sent with {method.upper()}")


def test_placeholder_in_keyless_query_row_does_not_count():
    msg = _error(_target(
        method="GET",
        body_template="",
        headers=[],
        query_params=[KeyValue("", "{{prompt}}")],
    ))
    assert "must be present" in msg


def test_keyless_query_row_does_not_clash_with_body():
    validate_target(_target(query_params=[KeyValue("", "{{prompt}}")]))


def test_invalid_json_body_allowed_without_json_content_type():
    validate_target(_target(
        headers=[KeyValue("Content-Type", "text/plain")],
        body_template="Say: {{prompt}}",
    ))


def test_expression_required():
    msg = _error(_target(response_expression="   "))
    assert "Response mapping expression is required" in msg


def test_text_output_requires_identity_expression():
    msg = _error(_target(output_type="text", response_expression="response.text"))
    assert "must be 'response'" in msg
    validate_target(_target(output_type="text", response_expression="response"))


def test_expression_grammar_checked():
    msg = _error(_target(response_expression="response.choices.map(lambda c: c)"))
    assert msg.startswith("Invalid response mapping")


def test_unknown_model_and_output_types():
    assert "model_type" in _error(_target(model_type="embeddings"))
    assert "output_type" in _error(_target(output_type="blob"))


def test_validate_does_not_mutate():
    t = _target()
    before = t.to_dict()
    validate_target(t)
    assert t.to_dict() == before


# ---------------------------------------------------------------------------
# Parsing / loading
# ---------------------------------------------------------------------------

def test_from_dict_accepts_rows_and_mappings():
    t = TargetConfig.from_dict({
        "url": "https://x/api",
        "headers": {"Content-Type": "application/json"},
        "query_params": [{"key": "q", "value": "{{prompt}}"}],
    })
    assert t.headers == [KeyValue("Content-Type", "application/json")]
    assert t.query_params == [KeyValue("q", "{{prompt}}")]
    assert t.header_map() == {"Content-Type": "application/json"}
    assert t.prompt_in_query()
    assert not t.prompt_in_body()


def test_from_dict_serialises_mapping_body():
    t = TargetConfig.from_dict({"body_template": {"prompt": "{{prompt}}"}})
    assert t.body_template == '{"prompt": "{{prompt}}"}'


def test_from_dict_rejects_unknown_fields():
    with pytest.raises(TargetConfigError, match="bodyContent"):
        TargetConfig.from_dict({"bodyContent": "x"})


def test_header_map_skips_empty_keys():
    t = _target(headers=[KeyValue("", "x"), KeyValue("X-A", "1")])
    assert t.header_map() == {"X-A": "1"}


def test_load_target_resolves_env(tmp_path, monkeypatch):
    monkeypatch.setenv("CUSTOMGPT_TEST_KEY", "sekrit")
    path = tmp_path / "target.yaml"
    path.write_text(
        "name: t1\n"
        "method: POST\n"
        "url: https://x/api\n"
        "headers:\n"
        "  - {key: Authorization, value: 'Bearer ${CUSTOMGPT_TEST_KEY}'}\n"
        "body_template: '{\"prompt\": \"{{prompt}}\"}'\n"
    )
    t = load_target(path)
    assert t.name == "t1"
    assert t.header_map() == {"Authorization": "Bearer sekrit"}
    assert t.body_template == '{"prompt": "{{prompt}}"}'


def test_load_target_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_target(tmp_path / "nope.yaml")


def test_load_target_rejects_non_mapping(tmp_path):
    path = tmp_path / "target.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(TargetConfigError):
        load_target(path)
