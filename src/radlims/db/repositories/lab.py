"""Repository for the inspection office registry."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from radlims.db.models.lab import Lab
from radlims.db.repositories.base import BaseRepository


class LabRepository(BaseRepository[Lab]):
    """Read access to the lab registry."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Lab)

    async def get_active_by_code(self, code: str) -> Lab | None:
        """Return the lab only if it exists and accepts samples."""
        stmt = select(Lab).where(Lab.code == code, Lab.is_active == True)  # noqa: E712
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self, active_only: bool = False) -> list[Lab]:
        stmt = select(Lab).order_by(Lab.code)
        if active_only:
            stmt = stmt.where(Lab.is_active == True)  # noqa: E712
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def active_codes(self) -> frozenset[str]:
        stmt = select(Lab.code).where(Lab.is_active == True)  # noqa: E712
        result = await self.session.execute(stmt)
        return frozenset(result.scalars().all())
