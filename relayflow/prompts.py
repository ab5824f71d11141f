"""Prompt template interpolation for AI steps."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{([^{}]+)\}\}")


def render_value(value: Any) -> str:
    """Render a variable the way it should appear inside a prompt.

    Containers, booleans and ``None`` are JSON encoded, strings are inserted
    as-is and any other scalar goes through ``str``.
    """
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def interpolate(template: str, variables: Mapping[str, Any]) -> str:
    """Replace every ``{{key}}`` in ``template`` with ``variables[key]``.

    Placeholders without a matching key are left untouched. Substituted values
    are not scanned again, so a value containing ``{{...}}`` stays literal.
    """

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        return render_value(variables[key])

    return _PLACEHOLDER.sub(_substitute, template)


def placeholders(template: str) -> list[str]:
    """Return the distinct placeholder names used by ``template`` in order of appearance."""
    seen: list[str] = []
    for name in _PLACEHOLDER.findall(template):
        if name not in seen:
            seen.append(name)
    return seen
