"""Structured trigger/template conditions.

A closed set of predicate shapes discriminated by ``op``. They are validated
when a trigger or template is written and stored as plain JSON.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class Compare(BaseModel):
    op: Literal["eq", "ne", "gt", "gte", "lt", "lte"]
    path: str
    value: Any


class In(BaseModel):
    op: Literal["in"]
    path: str
    values: list[Any]


class Exists(BaseModel):
    op: Literal["exists"]
    path: str


class Changed(BaseModel):
    """Field differs between previousState and newState (path relative to the state)."""
    op: Literal["changed"]
    path: str


class All(BaseModel):
    op: Literal["all"]
    conditions: list["Condition"]


class Any_(BaseModel):
    op: Literal["any"]
    conditions: list["Condition"]


class Not(BaseModel):
    op: Literal["not"]
    condition: "Condition"


Condition = Annotated[
    Union[Compare, In, Exists, Changed, All, Any_, Not],
    Field(discriminator="op"),
]

All.model_rebuild()
Any_.model_rebuild()
Not.model_rebuild()

_adapter = TypeAdapter(Condition)


def parse_condition(raw: dict | None):
    """Parse stored JSON into a Condition.

    A legacy flat mapping ({"stage": 3, "context.kind": "sale"}) is accepted
    as ``all`` of ``eq`` checks. Paths without a known root resolve against
    the merged payload.
    """
    if not raw:
        return None
    if "op" not in raw:
        return All(op="all", conditions=[
            Compare(op="eq", path=key, value=value) for key, value in raw.items()
        ])
    return _adapter.validate_python(raw)


def dump_condition(condition) -> dict | None:
    if condition is None:
        return None
    return _adapter.dump_python(condition, mode="json")
