"""
Explicit unit of work around an AsyncSession.

Everything done inside ``async with UnitOfWork(db):`` commits together on a
clean exit and is rolled back together when the block raises. Rolled-back
ORM instances are expired, so callers must refresh before reading them again.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


class UnitOfWork:
    def __init__(self, db: AsyncSession, *, name: str = "unit_of_work"):
        self.db = db
        self.name = name
        self.committed = False

    async def __aenter__(self) -> AsyncSession:
        return self.db

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            await self.db.commit()
            self.committed = True
            return False

        await self.db.rollback()
        logger.warning(
            "uow.rolled_back",
            unit=self.name,
            error_type=exc_type.__name__,
            error=str(exc),
        )
        return False
