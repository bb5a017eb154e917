"""Repository for samples and their ledgers."""

from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from radlims.core.workflow.states import SampleStatus
from radlims.db.models.sample import HistoryEntry, ModificationEntry, Sample
from radlims.db.repositories.base import BaseRepository


def _with_ledgers():
    return (
        selectinload(Sample.history),
        selectinload(Sample.modification_history),
    )


class SampleRepository(BaseRepository[Sample]):
    """Queries over samples.

    Writes to samples go through the workflow engine and the audit ledger,
    which issue conditional updates; this repository only reads.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Sample)

    async def get_with_history(self, sample_id: str, refresh: bool = False) -> Sample | None:
        """Load a sample with both ledgers.

        Args:
            sample_id: Sample identifier
            refresh: Overwrite any copy already held by the session

        Returns:
            The sample if found, None otherwise
        """
        stmt = select(Sample).where(Sample.id == sample_id).options(*_with_ledgers())
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def code_exists(self, code: str) -> bool:
        stmt = select(func.count()).select_from(Sample).where(Sample.code == code)
        result = await self.session.execute(stmt)
        return result.scalar_one() > 0

    async def max_code_sequence(self, prefix: str) -> int:
        """Highest numeric suffix among codes starting with prefix.

        Args:
            prefix: Code prefix including the trailing separator, e.g. ``FISH-260112-``

        Returns:
            The largest suffix, or 0 when no code uses the prefix
        """
        stmt = select(Sample.code).where(Sample.code.startswith(prefix, autoescape=True))
        result = await self.session.execute(stmt)
        highest = 0
        for code in result.scalars().all():
            suffix = code[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return highest

    def _lab_query(
        self,
        labs: Optional[Iterable[str]],
        status: Optional[SampleStatus] = None,
    ):
        stmt = select(Sample)
        if labs is not None:
            stmt = stmt.where(Sample.lab.in_(list(labs)))
        if status is not None:
            stmt = stmt.where(Sample.status == status)
        return stmt

    async def list_by_labs(
        self,
        labs: Optional[Iterable[str]],
        status: Optional[SampleStatus] = None,
        offset: int = 0,
        limit: Optional[int] = 100,
        with_history: bool = False,
    ) -> list[Sample]:
        """List samples whose lab is in labs, newest first.

        Args:
            labs: Lab codes to include; None means every lab
            status: Optional status filter
            offset: Number of records to skip
            limit: Maximum number of records (None for no limit)
            with_history: Eagerly load both ledgers
        """
        stmt = self._lab_query(labs, status).order_by(
            Sample.created_at.desc(), Sample.id
        )
        if with_history:
            stmt = stmt.options(*_with_ledgers()).execution_options(populate_existing=True)
        stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_labs(
        self,
        labs: Optional[Iterable[str]],
        status: Optional[SampleStatus] = None,
    ) -> int:
        stmt = select(func.count()).select_from(self._lab_query(labs, status).subquery())
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def status_counts(
        self, labs: Optional[Iterable[str]]
    ) -> dict[str, dict[SampleStatus, int]]:
        """Sample counts per lab and status for the dashboard."""
        stmt = select(Sample.lab, Sample.status, func.count()).group_by(
            Sample.lab, Sample.status
        )
        if labs is not None:
            stmt = stmt.where(Sample.lab.in_(list(labs)))
        result = await self.session.execute(stmt)

        counts: dict[str, dict[SampleStatus, int]] = {}
        for lab, status, total in result.all():
            counts.setdefault(lab, {})[status] = total
        return counts

    async def history_tail(self, sample_id: str) -> tuple[int, Optional[datetime]]:
        """Highest seq and latest timestamp of a sample's history."""
        stmt = select(func.max(HistoryEntry.seq), func.max(HistoryEntry.timestamp)).where(
            HistoryEntry.sample_id == sample_id
        )
        result = await self.session.execute(stmt)
        seq, timestamp = result.one()
        return seq or 0, timestamp

    async def modification_tail(self, sample_id: str) -> int:
        stmt = select(func.max(ModificationEntry.seq)).where(
            ModificationEntry.sample_id == sample_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one() or 0

