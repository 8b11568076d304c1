from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

import classbook.db.models  # noqa: F401
from classbook.db.models.base import Base


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
