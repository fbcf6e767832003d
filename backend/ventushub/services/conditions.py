"""Side-effect-free evaluation of structured conditions against an event payload."""

import logging
from typing import Any

from ventushub.schemas.conditions import (
    All, Any_, Changed, Compare, Exists, In, Not, parse_condition,
)

logger = logging.getLogger(__name__)

MISSING = object()

ROOTS = ("context", "newState", "previousState", "changes")


def event_payload(event) -> dict:
    """Build the evaluation payload for an ActivityLogEntry or EventIn."""
    context = getattr(event, "context", None) or {}
    new_state = getattr(event, "new_state", None) or {}
    changes = getattr(event, "changes", None) or {}
    previous_state = getattr(event, "previous_state", None) or {}
    merged = {**context, **new_state, **changes}
    return {
        "context": context,
        "newState": new_state,
        "previousState": previous_state,
        "changes": changes,
        "action": getattr(event, "action", None),
        "entityType": getattr(event, "entity_type", None),
        "entityId": getattr(event, "entity_id", None),
        "userId": getattr(event, "user_id", None),
        "_merged": merged,
    }


def resolve_path(payload: dict, path: str) -> Any:
    parts = path.split(".")
    if parts[0] in ROOTS or parts[0] in ("action", "entityType", "entityId", "userId"):
        current: Any = payload
    else:
        current = payload.get("_merged", {})
    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return MISSING
    return current


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "eq":
        return left == right
    if op == "ne":
        return left != right
    try:
        if op == "gt":
            return left > right
        if op == "gte":
            return left >= right
        if op == "lt":
            return left < right
        if op == "lte":
            return left <= right
    except TypeError:
        return False
    return False


def evaluate(condition, payload: dict) -> bool:
    if condition is None:
        return True
    if isinstance(condition, Compare):
        value = resolve_path(payload, condition.path)
        if value is MISSING:
            return False
        return _compare(condition.op, value, condition.value)
    if isinstance(condition, In):
        value = resolve_path(payload, condition.path)
        return value is not MISSING and value in condition.values
    if isinstance(condition, Exists):
        return resolve_path(payload, condition.path) is not MISSING
    if isinstance(condition, Changed):
        before = resolve_path(payload, f"previousState.{condition.path}")
        after = resolve_path(payload, f"newState.{condition.path}")
        return after is not MISSING and before != after
    if isinstance(condition, All):
        return all(evaluate(c, payload) for c in condition.conditions)
    if isinstance(condition, Any_):
        return any(evaluate(c, payload) for c in condition.conditions)
    if isinstance(condition, Not):
        return not evaluate(condition.condition, payload)
    raise TypeError(f"Unknown condition type: {type(condition).__name__}")


def matches(raw_condition: dict | None, payload: dict) -> bool:
    """Parse-and-evaluate for conditions stored as JSON."""
    return evaluate(parse_condition(raw_condition), payload)
