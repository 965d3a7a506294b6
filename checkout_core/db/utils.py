from typing import Any, Dict

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def _normalize_db_url(url: str | None) -> str | None:
    # hosted postgres often hands out "postgres://..." and asyncpg needs the explicit driver
    if not url:
        return None
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


async def insert_ignore_conflict(session: AsyncSession, model, values: Dict[str, Any], conflict_cols: list[str]) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING for pg and sqlite. Returns True when a row was written."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=conflict_cols)
    else:
        stmt = insert(model).values(**values)
    res = await session.execute(stmt)
    return (res.rowcount or 0) > 0
