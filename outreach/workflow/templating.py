# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Placeholder interpolation for node configs.

Replaces {name}, {business.email} and {{name}} with context values.
Unknown placeholders are left untouched so a broken template is visible in
the rendered output instead of silently blank.
"""

import json
import re
from typing import Any, Dict

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}|\{([A-Za-z_][\w.]*)\}")

_MISSING = object()


def _lookup(variables: Dict[str, Any], path: str) -> Any:
    if path in variables:
        return variables[path]
    value: Any = variables
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, (list, tuple)) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return value


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def render(template: str, variables: Dict[str, Any]) -> str:
    """Interpolate placeholders in a string"""
    if not template:
        return template

    def replace(match: "re.Match") -> str:
        path = match.group(1) or match.group(2)
        value = _lookup(variables, path)
        if value is _MISSING:
            return match.group(0)
        return _to_text(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def render_value(value: Any, variables: Dict[str, Any]) -> Any:
    """Recursively interpolate strings inside dicts and lists"""
    if isinstance(value, str):
        return render(value, variables)
    if isinstance(value, dict):
        return {k: render_value(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, variables) for v in value]
    return value
