"""
StripScan Backend — History Service
=====================================

What:  Paginated listing and detail retrieval of submissions.
Why:   Feeds the client's upload history screen.
How:   Reads through SubmissionRepository and annotates each row with
       expiration fields derived from its stored code.

Derived fields:
    isExpired / expirationYear are recomputed on every read with the same
    year rule the extractor uses; they are never stored because "current
    year" changes over time.

Not-found handling:
    get_submission() returns None for an unknown id. A lookup miss is a valid
    empty result, not an error; the route turns None into a 404.
"""

import logging
import os
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stripscan.exceptions import PersistenceError
from stripscan.models.submission import Submission
from stripscan.repositories.submission_repository import SubmissionRepository
from stripscan.schemas.submission import (
    SubmissionDetail,
    SubmissionListItem,
    SubmissionListResponse,
)
from stripscan.services.qr_extractor import check_expiration, current_year

logger = logging.getLogger(__name__)


class HistoryService:
    """Read side of the submission store."""

    def __init__(
        self,
        thumbnails_url_prefix: str = "/uploads/thumbnails",
        year_provider: Callable[[], int] = current_year,
    ):
        self.thumbnails_url_prefix = thumbnails_url_prefix.rstrip("/")
        self.year_provider = year_provider

    def thumbnail_url(self, thumbnail_path: Optional[str]) -> str:
        """Public URL built from the basename only; the storage layout stays private."""
        return f"{self.thumbnails_url_prefix}/{os.path.basename(thumbnail_path or '')}"

    def _summary_fields(self, row: Submission, year: int) -> dict:
        is_expired, expiration_year = check_expiration(row.qr_code, year)
        return {
            "id": row.id,
            "qr_code": row.qr_code,
            "status": row.status,
            "thumbnail_url": self.thumbnail_url(row.thumbnail_path),
            "created_at": row.created_at,
            "is_expired": is_expired,
            "expiration_year": expiration_year,
        }

    async def list_submissions(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 10,
    ) -> SubmissionListResponse:
        """
        Page `page` (1-based) of `limit` submissions, newest first.

        Pages past the end come back empty.
        """
        repository = SubmissionRepository(db)
        skip = (page - 1) * limit

        try:
            rows = await repository.find_many(skip=skip, take=limit)
            total_count = await repository.count()
        except SQLAlchemyError as e:
            logger.error("Database error listing submissions: %s", str(e), exc_info=True)
            raise PersistenceError(
                message="Could not retrieve submissions. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        year = self.year_provider()
        return SubmissionListResponse(
            submissions=[
                SubmissionListItem(**self._summary_fields(row, year)) for row in rows
            ],
            page=page,
            limit=limit,
            total_count=total_count,
        )

    async def get_submission(
        self, db: AsyncSession, submission_id: UUID
    ) -> Optional[SubmissionDetail]:
        """Full record for `submission_id`, or None when it does not exist."""
        try:
            row = await SubmissionRepository(db).find_by_id(submission_id)
        except SQLAlchemyError as e:
            logger.error("Database error fetching submission %s: %s", submission_id, str(e))
            raise PersistenceError(
                message="Could not retrieve the submission. Please try again.",
                context={"submission_id": str(submission_id)},
            ) from e

        if row is None:
            return None

        return SubmissionDetail(
            **self._summary_fields(row, self.year_provider()),
            original_image_path=row.original_image_path,
            image_size=row.image_size or 0,
            image_dimensions=row.image_dimensions or "",
            error_message=row.error_message,
        )
