"""Base repository with primary-key lookup shared by all repositories."""

from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from radlims.db.models.lab import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Generic base repository.

    Has no generic insert, update or delete. Samples change only
    through conditional workflow writes, and ledger rows never change.

    Type Parameters:
        ModelT: The SQLAlchemy model type this repository manages
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self.session = session
        self.model = model

    async def get_by_id(
        self, id: Any, options: Sequence[Any] | None = None
    ) -> ModelT | None:
        """Retrieve a single record by primary key.

        Args:
            id: Primary key of the record to retrieve
            options: Optional loader options (e.g. selectinload) for eager loading

        Returns:
            The model instance if found, None otherwise
        """
        if options:
            stmt = select(self.model).where(self.model.id == id).options(*options)
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        return await self.session.get(self.model, id)

