from __future__ import annotations

import html
import re
from typing import Any, Iterable


_PLACEHOLDER_RE = re.compile(r"{{\s*([a-zA-Z0-9_]+)\s*}}")


def escape_html(value: Any) -> str:
    return html.escape(str(value), quote=True)


def render_template(template: str | None, variables: dict[str, Any] | None = None, safe_keys: Iterable[str] = ()) -> str:
    """
    Substitute `{{ name }}` placeholders.

    Missing or None values render as an empty string. Values are HTML-escaped
    unless their key is listed in `safe_keys` (used for pre-rendered anchor
    buttons).
    """

    values = variables or {}
    safe = set(safe_keys or ())

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        val = values.get(key)
        if val is None:
            return ""
        if key in safe:
            return str(val)
        return escape_html(val)

    return _PLACEHOLDER_RE.sub(_sub, str(template or ""))


def newlines_to_br(text: str) -> str:
    return str(text or "").replace("\r\n", "\n").replace("\n", "<br/>")


def button_html(url: str, label: str, color: str = "#4CAF50") -> str:
    return (
        f'<a href="{escape_html(url)}" style="display:inline-block;background-color:{color};color:white;'
        f'padding:10px 20px;text-decoration:none;border-radius:5px;margin-right:10px;">{escape_html(label)}</a>'
    )
