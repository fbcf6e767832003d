"""Placeholder substitution for notification templates.

Both ``{name}`` and ``{{name}}`` are accepted, with optional dotted paths
(``{newState.stage}``). A placeholder without a value is an error, never an
empty string.
"""

import re
from datetime import datetime
from typing import Any

from ventushub.core.errors import TemplateRenderError
from ventushub.core.timeutil import utcnow

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}|\{\s*([A-Za-z_][\w.]*)\s*\}")

_MISSING = object()


def _lookup(context: dict, path: str) -> Any:
    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _format(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M")
    return str(value)


def render(template: str, context: dict) -> str:
    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        value = _lookup(context, name)
        if value is _MISSING or value is None:
            raise TemplateRenderError(name, template)
        return _format(value)

    return PLACEHOLDER.sub(substitute, template)


def render_structure(value: Any, context: dict) -> Any:
    """Render every string inside a JSON-like structure (rich content templates)."""
    if isinstance(value, str):
        return render(value, context)
    if isinstance(value, list):
        return [render_structure(item, context) for item in value]
    if isinstance(value, dict):
        return {key: render_structure(item, context) for key, item in value.items()}
    return value


def placeholders(template: str) -> list[str]:
    return [m.group(1) or m.group(2) for m in PLACEHOLDER.finditer(template)]


def build_context(event) -> dict:
    """Render context for an event: context, newState and changes merged, plus event fields."""
    context = dict(getattr(event, "context", None) or {})
    context.update(getattr(event, "new_state", None) or {})
    context.update(getattr(event, "changes", None) or {})
    context.update({
        "entityType": event.entity_type,
        "entityId": event.entity_id,
        "userId": event.user_id,
        "action": event.action,
        "timestamp": getattr(event, "created_at", None) or utcnow(),
        "context": getattr(event, "context", None) or {},
        "newState": getattr(event, "new_state", None) or {},
        "previousState": getattr(event, "previous_state", None) or {},
        "changes": getattr(event, "changes", None) or {},
    })
    return context
