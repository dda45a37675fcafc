"""
Target configuration — the user-authored description of an HTTP endpoint.

A target says where to send the prompt (method, url, headers, query params,
body template with a {{prompt}} placeholder) and how to read the reply
(output type + response mapping expression).

Targets live only for the session. They can be written as YAML and loaded
with load_target():

    name: local-tgi
    method: POST
    url: http://localhost:8080/generate
    headers:
      - {key: Content-Type, value: application/json}
    body_template: '{"inputs": "{{prompt}}"}'
    model_type: completions
    output_type: json
    response_expression: response["generated_text"]
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from urllib.parse import urlsplit

import yaml

from customgpt.config import resolve_env_refs
from customgpt.errors import TargetConfigError
from customgpt.extractor import compile_expression

PROMPT_TOKEN = "{{prompt}}"

MODEL_TYPES = ("completions", "chat")
OUTPUT_TYPES = ("text", "json", "arrayBuffer")
BODYLESS_METHODS = ("GET", "HEAD")
IDENTITY_EXPRESSION = "response"
DEFAULT_EXPRESSION = "response.choices[0].text"


@dataclass
class KeyValue:
    """One header or query-param row. Rows with an empty key are ignored."""
    key: str = ""
    value: str = ""


@dataclass
class TargetConfig:
    url: str = ""
    method: str = "GET"
    headers: list[KeyValue] = field(default_factory=list)
    query_params: list[KeyValue] = field(default_factory=list)
    body_template: str = ""
    model_type: str = "completions"
    output_type: str = "json"
    response_expression: str = DEFAULT_EXPRESSION
    name: str = "default"

    @property
    def interaction_type(self) -> str:
        """Message interaction type recorded for turns sent with this target."""
        return "chat" if self.model_type == "chat" else "completion"

    def header_map(self) -> dict[str, str]:
        return {h.key: h.value for h in self.headers if h.key}

    def content_type(self) -> str:
        for h in self.headers:
            if h.key.lower() == "content-type":
                return h.value or ""
        return ""

    def prompt_in_query(self) -> bool:
        # rows without a key are never sent
        return any(q.key and q.value and PROMPT_TOKEN in q.value for q in self.query_params)

    def prompt_in_body(self) -> bool:
        return bool(self.body_template) and PROMPT_TOKEN in self.body_template

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TargetConfig":
        data = dict(data or {})
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise TargetConfigError(f"Unknown target fields: {', '.join(sorted(unknown))}")
        data["headers"] = _rows(data.get("headers"))
        data["query_params"] = _rows(data.get("query_params"))
        if data.get("body_template") is not None and not isinstance(data["body_template"], str):
            # YAML mappings are accepted and re-serialised as the JSON template
            data["body_template"] = json.dumps(data["body_template"])
        return cls(**{k: v for k, v in data.items() if v is not None})


def _rows(raw) -> list[KeyValue]:
    """Accept a list of {key, value} rows or a plain mapping."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [KeyValue(str(k), "" if v is None else str(v)) for k, v in raw.items()]
    rows = []
    for item in raw:
        if isinstance(item, KeyValue):
            rows.append(KeyValue(item.key, item.value))
        elif isinstance(item, dict):
            rows.append(KeyValue(str(item.get("key", "")), str(item.get("value", "") or "")))
        else:
            raise TargetConfigError(f"Invalid header/query row: {item!r}")
    return rows


def load_target(path: str | Path) -> TargetConfig:
    """Read a TargetConfig from a YAML file. ${ENV_VAR} references are resolved."""
    target_path = Path(path)
    if not target_path.exists():
        raise FileNotFoundError(f"Target config not found: {target_path}")
    with open(target_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise TargetConfigError(f"{target_path}: expected a mapping at the top level")
    return TargetConfig.from_dict(resolve_env_refs(data))


def validate_target(config: TargetConfig) -> None:
    """
    Check a target before it is tested or used. Raises TargetConfigError with
    a message meant for the person editing the config.
    """
    if not config.url:
        raise TargetConfigError("URL is required")

    in_query = config.prompt_in_query()
    in_body = config.prompt_in_body()
    if not in_query and not in_body:
        raise TargetConfigError(
            "The placeholder {{prompt}} must be present in either query parameters "
            "or body content to indicate where user input should be inserted. Add it to either:\n"
            "- Query parameter value: {{prompt}}\n"
            '- Body content: directly as {{prompt}} for text, or {"prompt": "{{prompt}}"} for JSON'
        )
    if in_query and in_body:
        raise TargetConfigError(
            "The placeholder {{prompt}} should only appear once, either in query "
            "parameters or body content, not both. Please remove it from one location."
        )
    method = (config.method or "GET").upper()
    if in_body and method in BODYLESS_METHODS:
        raise TargetConfigError(
            f"{PROMPT_TOKEN} in the body is never sent with {method}. "
            "Move it to a query parameter or use a method that sends a body."
        )

    parts = urlsplit(config.url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise TargetConfigError("Invalid URL format")

    if config.model_type not in MODEL_TYPES:
        raise TargetConfigError(f"model_type must be one of {', '.join(MODEL_TYPES)}")
    if config.output_type not in OUTPUT_TYPES:
        raise TargetConfigError(f"output_type must be one of {', '.join(OUTPUT_TYPES)}")

    if (
        method != "GET"
        and "application/json" in config.content_type()
        and config.body_template
    ):
        try:
            json.loads(config.body_template)
        except ValueError:
            raise TargetConfigError("Invalid JSON in request body")

    expression = (config.response_expression or "").strip()
    if not expression:
        raise TargetConfigError(
            "Response mapping expression is required to extract the desired value from the response."
        )
    if config.output_type == "text" and expression != IDENTITY_EXPRESSION:
        raise TargetConfigError(
            "When output type is 'text', the response mapping must be 'response' to access the raw text."
        )
    try:
        compile_expression(expression)
    except ValueError as e:
        raise TargetConfigError(f"Invalid response mapping: {e}")
