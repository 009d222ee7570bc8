"""`{name}` placeholders and canonical text formatting of values.

Placeholders appear in two places:

- label/title text, rendered to a display string by `render_text`;
- expression text, where `substitute_placeholders` inlines each value as a
  source literal before the expression is parsed.

Nested braces are substituted innermost first, so `{stat{idx}}` with
`idx = 2` reads the variable `stat2`.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Collection, Mapping
from typing import TYPE_CHECKING, Any

from .errors import UnknownVariable, VarflowError

if TYPE_CHECKING:
    from .evaluator import Evaluator

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"^\s*([A-Za-z_$][\w$]*)\s*(?:\[\s*(.+?)\s*\])?\s*$")


def format_value(value: Any) -> str:
    """Canonical display text: JSON for containers, `true`/`false`, '' for null."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=format_value)
    return str(value)


def to_source(value: Any) -> str:
    """Render a value as expression source text."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_value(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(to_source(item) for item in value) + "]"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return json.dumps(format_value(value), ensure_ascii=False)


def split_placeholders(text: str) -> list[tuple[bool, str]]:
    """Split text into (is_placeholder, content) segments on balanced braces.

    An unmatched `{` and everything after it stays literal text.
    """
    segments: list[tuple[bool, str]] = []
    buf: list[str] = []
    i = 0
    while i < len(text):
        if text[i] != "{":
            buf.append(text[i])
            i += 1
            continue
        depth = 1
        j = i + 1
        while j < len(text) and depth:
            if text[j] == "{":
                depth += 1
            elif text[j] == "}":
                depth -= 1
            j += 1
        if depth:
            logger.warning("unmatched '{' in %r", text)
            buf.append(text[i:])
            break
        if buf:
            segments.append((False, "".join(buf)))
            buf = []
        segments.append((True, text[i + 1 : j - 1]))
        i = j
    if buf:
        segments.append((False, "".join(buf)))
    return segments


def _index_key(raw: str, scope: Mapping[str, Any]) -> Any:
    if re.fullmatch(r"-?\d+", raw):
        return int(raw)
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[1:-1]
    if raw in scope:
        return scope[raw]
    return raw


def _lookup_index(value: Any, key: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get(key, value.get(str(key)))
    if isinstance(value, (list, tuple, str)):
        if isinstance(key, float) and key.is_integer():
            key = int(key)
        if isinstance(key, int) and not isinstance(key, bool) and -len(value) <= key < len(value):
            return value[key]
    return None


def lookup_placeholder(inner: str, scope: Mapping[str, Any]) -> tuple[bool, Any]:
    """Resolve `name` or `name[index]`.

    Returns (True, value) when the placeholder is a simple reference present
    in scope, (False, name) when it is simple but missing, and raises
    ValueError when it is not a simple reference at all.
    """
    m = PLACEHOLDER.match(inner)
    if not m:
        raise ValueError(inner)
    name, index = m.groups()
    if name not in scope:
        return False, name
    value = scope[name]
    if index is not None:
        value = _lookup_index(value, _index_key(index, scope))
    return True, value


def _quote_state(text: str, quote: str | None) -> str | None:
    """Quote character still open after scanning `text` (None if closed)."""
    escaped = False
    for ch in text:
        if escaped:
            escaped = False
        elif ch == "\\" and quote:
            escaped = True
        elif quote and ch == quote:
            quote = None
        elif not quote and ch in "'\"":
            quote = ch
    return quote


def _substitute_nested(inner: str, scope: Mapping[str, Any]) -> str:
    out = []
    for is_placeholder, content in split_placeholders(inner):
        if not is_placeholder:
            out.append(content)
            continue
        content = _substitute_nested(content, scope)
        try:
            found, value = lookup_placeholder(content, scope)
        except ValueError:
            out.append("{" + content + "}")
            continue
        out.append(format_value(value) if found else "{" + content + "}")
    return "".join(out)


def substitute_placeholders(text: str, scope: Mapping[str, Any]) -> str:
    """Inline `{name}` placeholders of expression text as source literals.

    Inside a string literal the raw display text is spliced in instead.
    Complex `{expr}` placeholders outside strings become `(expr)`.

    Raises:
        UnknownVariable: a simple placeholder names something not in scope.
    """
    if "{" not in text:
        return text

    out = []
    quote: str | None = None
    for is_placeholder, content in split_placeholders(text):
        if not is_placeholder:
            out.append(content)
            quote = _quote_state(content, quote)
            continue
        content = _substitute_nested(content, scope)
        try:
            found, value = lookup_placeholder(content, scope)
        except ValueError:
            out.append("{" + content + "}" if quote else "(" + content + ")")
            continue
        if not found:
            raise UnknownVariable(value)
        if quote:
            raw = format_value(value).replace("\\", "\\\\").replace(quote, "\\" + quote)
            out.append(raw)
        else:
            out.append(to_source(value))
    return "".join(out)


async def render_text(
    template: str,
    scope: Mapping[str, Any],
    evaluator: Evaluator | None = None,
    declared: Collection[str] | None = None,
) -> str:
    """Render label/title text with `{name}`, `{name[i]}` and `{expr}` placeholders.

    Args:
        template: Text to render
        scope: Resolved variables
        evaluator: Used for `{expr}` placeholders; without one they stay as-is
        declared: Declared variable names. A simple placeholder naming
            something outside this set raises UnknownVariable; a declared but
            not yet resolved name keeps its `{name}` text.

    Returns:
        The rendered text
    """
    if not isinstance(template, str) or "{" not in template:
        return format_value(template)

    out = []
    for is_placeholder, content in split_placeholders(template):
        if not is_placeholder:
            out.append(content)
            continue
        content = _substitute_nested(content, scope)
        try:
            found, value = lookup_placeholder(content, scope)
        except ValueError:
            out.append(await _render_expression(content, scope, evaluator))
            continue
        if found:
            out.append(format_value(value))
        elif declared is not None and value not in declared:
            raise UnknownVariable(value)
        else:
            out.append("{" + content + "}")
    return "".join(out)


async def _render_expression(
    content: str, scope: Mapping[str, Any], evaluator: Evaluator | None
) -> str:
    if evaluator is None:
        return "{" + content + "}"
    try:
        value = await evaluator.evaluate(content, scope)
    except VarflowError as exc:
        logger.warning("failed to render {%s}: %s", content, exc)
        return "{" + content + "}"
    return format_value(value)
