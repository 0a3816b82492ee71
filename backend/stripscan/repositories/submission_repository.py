"""
StripScan Backend — Submission Repository
===========================================

What:  Data access for Submission rows (insert, paginated listing, lookups).
Why:   Keeps SQL in one place so the pipeline and history service only deal
       with domain operations.
How:   Thin wrapper around an AsyncSession; one repository per session.
Who:   Created per request by UploadPipeline and HistoryService.

Query plans:
    find_many:       ORDER BY created_at DESC OFFSET :skip LIMIT :take
                     → idx_submissions_created_at
    find_by_id:      primary key lookup
    find_by_qr_code: unique index on qr_code
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stripscan.models.submission import Submission

logger = logging.getLogger(__name__)


class SubmissionRepository:
    """Reads and writes `test_strip_submissions` through one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> Submission:
        """
        Insert a submission and flush it.

        The flush assigns id and created_at and surfaces unique-constraint
        violations (sqlalchemy IntegrityError) to the caller immediately.
        The commit happens when the request's session closes.
        """
        submission = Submission(**fields)
        self.session.add(submission)
        await self.session.flush()
        logger.info("Submission record created: %s", submission.id)
        return submission

    async def find_many(self, skip: int = 0, take: int = 10) -> List[Submission]:
        """Newest first; an offset past the end yields an empty list."""
        result = await self.session.execute(
            select(Submission)
            .order_by(desc(Submission.created_at))
            .offset(skip)
            .limit(take)
        )
        return list(result.scalars().all())

    async def find_by_id(self, submission_id: UUID) -> Optional[Submission]:
        result = await self.session.execute(
            select(Submission).where(Submission.id == submission_id)
        )
        return result.scalar_one_or_none()

    async def find_by_qr_code(self, qr_code: str) -> Optional[Submission]:
        result = await self.session.execute(
            select(Submission).where(Submission.qr_code == qr_code)
        )
        return result.scalar_one_or_none()

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(Submission.id)))
        return result.scalar() or 0
