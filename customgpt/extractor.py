"""
Response extractor: pull the display value out of a decoded response body.

The response mapping is a path expression rooted at `response`:

    response
    response.choices[0].text
    response["choices"][0]["text"]
    response["response"][0]["generated_text"].at(-1)["content"]
    response.data[-1].content
    response.results.length

Dot segments (`.from`, `.class`) are first rewritten to bracket keys so that
keys which happen to be Python keywords still resolve. The expression is
then parsed with `ast` and walked against a whitelist, the same way the
calculator tool evaluates math: names other than `response`, operators,
comprehensions and any call except `.at(n)` are rejected up front. Nothing the
user types is ever handed to eval().

Evaluation never raises. A missing key, an index out of range, a syntax error
or a rejected construct all come back as NO_VALUE.
"""

from __future__ import annotations

import ast
import json
import logging
import re

logger = logging.getLogger(__name__)

ROOT_NAME = "response"


class _NoValue:
    """Sentinel for 'the mapping produced nothing'. Falsy, unique."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NO_VALUE"


NO_VALUE = _NoValue()
NO_VALUE_TEXT = "(no response)"


def _index_value(node) -> int | str:
    """Constant subscript: string key, int index, or -int from the end."""
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, str)) \
            and not isinstance(node.value, bool):
        return node.value
    if (
        isinstance(node, ast.UnaryOp)
        and isinstance(node.op, ast.USub)
        and isinstance(node.operand, ast.Constant)
        and isinstance(node.operand.value, int)
        and not isinstance(node.operand.value, bool)
    ):
        return -node.operand.value
    raise ValueError(f"Unsupported subscript: {type(node).__name__}")


def _check(node):
    """Recursively reject anything outside the path grammar."""
    if isinstance(node, ast.Expression):
        return _check(node.body)
    elif isinstance(node, ast.Name):
        if node.id != ROOT_NAME:
            raise ValueError(f"Unknown name '{node.id}' (expressions start with '{ROOT_NAME}')")
    elif isinstance(node, ast.Attribute):
        _check(node.value)
    elif isinstance(node, ast.Subscript):
        _index_value(node.slice)
        _check(node.value)
    elif isinstance(node, ast.Call):
        func = node.func
        if not (isinstance(func, ast.Attribute) and func.attr == "at"):
            raise ValueError("Only .at(n) calls are supported")
        if node.keywords or len(node.args) != 1:
            raise ValueError(".at() takes exactly one index")
        if not isinstance(_index_value(node.args[0]), int):
            raise ValueError(".at() takes an integer index")
        _check(func.value)
    else:
        raise ValueError(f"Unsupported expression: {type(node).__name__}")


# a quoted string, or a `.name` segment that is not a method call
_SEGMENT = re.compile(
    r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')"""
    r"""|\.\s*([A-Za-z_$][\w$]*)(?![\w$]|\s*\()"""
)


def _bracket_dots(expression: str) -> str:
    """`response.from.x` -> `response["from"]["x"]`; string literals are left alone."""
    def swap(m):
        if m.group(1) is not None:
            return m.group(1)
        return f"[{json.dumps(m.group(2))}]"
    return _SEGMENT.sub(swap, expression)


def compile_expression(expression: str) -> ast.Expression:
    """
    Parse and whitelist-check a mapping expression.
    Raises ValueError (syntax errors included) when it is not a valid path.
    """
    try:
        tree = ast.parse(_bracket_dots(expression.strip()), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Syntax error: {e.msg}") from e
    _check(tree)
    return tree


def _lookup(container, key):
    """One path step. Raises LookupError/TypeError when there is nothing there."""
    if isinstance(container, dict):
        if key in container:
            return container[key]
        # JS property access stringifies numeric keys
        if isinstance(key, int) and str(key) in container:
            return container[str(key)]
        raise KeyError(key)
    if isinstance(container, (list, str)):
        if isinstance(key, int):
            return container[key]
        if key == "length":
            return len(container)
        raise KeyError(key)
    raise TypeError(f"cannot read {key!r} of {type(container).__name__}")


def _walk(node, root):
    if isinstance(node, ast.Expression):
        return _walk(node.body, root)
    elif isinstance(node, ast.Name):
        return root
    elif isinstance(node, ast.Attribute):
        return _lookup(_walk(node.value, root), node.attr)
    elif isinstance(node, ast.Subscript):
        return _lookup(_walk(node.value, root), _index_value(node.slice))
    elif isinstance(node, ast.Call):
        target = _walk(node.func.value, root)
        if not isinstance(target, (list, str)):
            raise TypeError(f".at() on {type(target).__name__}")
        return target[_index_value(node.args[0])]
    raise ValueError(f"Unsupported expression: {type(node).__name__}")


def extract(body, expression: str | None):
    """
    Apply a response mapping to a decoded body.
    Empty expression returns the body unchanged; any failure returns NO_VALUE.
    """
    if expression is None or not expression.strip():
        return body
    try:
        tree = compile_expression(expression)
        return _walk(tree, body)
    except Exception as e:
        logger.debug("Mapping %r produced no value: %s", expression, e)
        return NO_VALUE


def decode_body(body, output_type: str):
    """
    Envelope bodies for json targets may still be text (the proxy falls back to
    text when the upstream sent invalid JSON). Try once more, keep text on failure.
    """
    if isinstance(body, str) and output_type == "json":
        try:
            return json.loads(body)
        except ValueError:
            return body
    return body


def render_extracted(value) -> str:
    """Turn an extracted value into transcript text."""
    if value is NO_VALUE:
        return NO_VALUE_TEXT
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, ensure_ascii=False)
    return json.dumps(value)
