"""Dialect-aware INSERT ... ON CONFLICT helpers.

PostgreSQL and SQLite share the same ON CONFLICT grammar, but SQLAlchemy keeps
the constructs in their dialect packages, so pick one from the session's bind.
"""

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(session: AsyncSession):
    name = session.bind.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"ON CONFLICT is not supported for dialect '{name}'")
    return insert


def _column_values(model, values: dict) -> dict:
    # Attribute names may differ from column names (e.g. `meta` -> "metadata")
    mapper = inspect(model)
    return {mapper.attrs[attr].columns[0]: value for attr, value in values.items()}


async def insert_or_skip(session: AsyncSession, model, values: dict, conflict_columns: list[str]):
    """Insert a row unless it collides on `conflict_columns`.

    Returns the new primary key, or None when the row already existed.
    """
    insert = _dialect_insert(session)
    table = model.__table__
    stmt = (
        insert(table)
        .values(_column_values(model, values))
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(table.c.id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def ensure_row(session: AsyncSession, model, key: dict, defaults: dict | None = None):
    """Get-or-create a row identified by a unique `key`, safe under concurrent callers."""
    await insert_or_skip(session, model, {**(defaults or {}), **key}, list(key.keys()))
    query = select(model)
    for attr, value in key.items():
        query = query.where(getattr(model, attr) == value)
    result = await session.execute(query)
    return result.scalar_one()
