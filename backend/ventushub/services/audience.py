"""Recipient resolution for triggers.

User accounts and roles belong to the surrounding application. The evaluator
only needs a way to expand role names into user ids, supplied as a
UserDirectory.
"""

from typing import Protocol

from ventushub.schemas.templates import ActorTarget, FieldTarget, UsersTarget, target_adapter
from ventushub.services.conditions import MISSING, resolve_path


class UserDirectory(Protocol):
    async def users_with_roles(self, roles: list[str]) -> list[str]:
        ...


class NullUserDirectory:
    """No role lookups; role-targeted triggers reach only their explicit targets."""

    async def users_with_roles(self, roles: list[str]) -> list[str]:
        return []


class StaticUserDirectory:
    def __init__(self, roles: dict[str, list[str]]):
        self.roles = roles

    async def users_with_roles(self, roles: list[str]) -> list[str]:
        users = []
        for role in roles:
            users.extend(self.roles.get(role, []))
        return users


def parse_target(raw: dict | None):
    if not raw:
        return ActorTarget()
    return target_adapter.validate_python(raw)


async def resolve_recipients(trigger, payload: dict, directory: UserDirectory) -> list[str]:
    """Recipients for one trigger firing, de-duplicated in first-seen order."""
    target = parse_target(trigger.target_conditions)
    recipients: list[str] = []

    if isinstance(target, ActorTarget):
        if payload.get("userId"):
            recipients.append(payload["userId"])
    elif isinstance(target, FieldTarget):
        value = resolve_path(payload, target.path)
        if value is not MISSING and value is not None:
            if isinstance(value, list):
                recipients.extend(str(v) for v in value)
            else:
                recipients.append(str(value))
    elif isinstance(target, UsersTarget):
        recipients.extend(target.user_ids)

    if trigger.target_roles:
        recipients.extend(await directory.users_with_roles(list(trigger.target_roles)))

    seen = set()
    unique = []
    for user_id in recipients:
        if user_id not in seen:
            seen.add(user_id)
            unique.append(user_id)
    return unique
