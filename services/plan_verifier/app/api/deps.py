"""FastAPI dependency helpers."""
from __future__ import annotations

import uuid
from typing import AsyncIterator

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from ..persistence.db import get_session_factory


async def get_db_session() -> AsyncIterator[AsyncSession]:
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_correlation_id(x_correlation_id: str | None = Header(default=None)) -> str:
    return x_correlation_id or str(uuid.uuid4())


__all__ = ["get_correlation_id", "get_db_session"]
