"""``{{placeholder}}`` rendering for provider request templates."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping
from urllib.parse import quote

_PLACEHOLDER = re.compile(r"{{(\w+)}}")
_WHOLE_PLACEHOLDER = re.compile(r"^{{(\w+)}}$")
_URL_LIKE = re.compile(r"^https?://")


def _to_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(template: str | None, params: Mapping[str, Any]) -> str | None:
    """Replace ``{{key}}`` in a string template.

    Unknown keys are left in place. Values are URL-encoded when the template
    looks like a URL (absolute http(s) or carries a query string).
    """
    if not template:
        return template
    is_url = bool(_URL_LIKE.match(template)) or "?" in template

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in params or params[key] is None:
            return match.group(0)
        text = _to_text(params[key])
        return quote(text, safe="") if is_url else text

    return _PLACEHOLDER.sub(replace, template)


def render_json_template(template: Any, params: Mapping[str, Any]) -> Any:
    """Render a JSON-shaped template recursively.

    A string that is exactly ``"{{key}}"`` is replaced by the value itself,
    keeping its type (lists, objects, numbers). Placeholders embedded in a
    longer string are substituted as text.
    """
    if isinstance(template, dict):
        return {
            render_json_template(k, params): render_json_template(v, params)
            for k, v in template.items()
        }
    if isinstance(template, list):
        return [render_json_template(item, params) for item in template]
    if isinstance(template, str):
        whole = _WHOLE_PLACEHOLDER.match(template)
        if whole:
            key = whole.group(1)
            return params[key] if key in params else template

        def replace(match: re.Match) -> str:
            key = match.group(1)
            if key not in params or params[key] is None:
                return match.group(0)
            return _to_text(params[key])

        return _PLACEHOLDER.sub(replace, template)
    return template
