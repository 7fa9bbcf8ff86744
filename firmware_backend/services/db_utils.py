# FILE: firmware_backend/services/db_utils.py
from typing import Any, Dict

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(db: AsyncSession, model, values: Dict[str, Any]) -> None:
    """
    INSERT that silently does nothing when a unique constraint already holds the row.
    Dialect specific: ON CONFLICT DO NOTHING (sqlite/postgres), INSERT IGNORE (mysql).
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing()
    else:
        stmt = insert(model).values(**values).prefix_with("IGNORE")

    await db.execute(stmt)
