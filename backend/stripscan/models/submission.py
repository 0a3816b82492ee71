"""
StripScan Backend — Submission SQLAlchemy Model
=================================================

What:  ORM model representing the `test_strip_submissions` table.
Why:   Maps Python objects to database rows for type-safe database operations.
How:   Inherits from SQLAlchemy's DeclarativeBase; `init_models()` creates the table.
Who:   Used by SubmissionRepository for inserts and lookups.
When:  Instantiated once per accepted upload; read by the history endpoints.

Table Design Rationale:
    - UUID primary key: Non-sequential, safe to expose in URLs
    - qr_code: UNIQUE when present. This constraint is the authoritative
      duplicate guard; the pipeline's lookup before insert is only a fast path.
      NULL values never collide, so many "no code found" rows can coexist.
    - original_image_path / thumbnail_path: relative to the upload root so
      responses never leak absolute file system paths
    - status: always 'processed' today (see SubmissionStatus)
    - created_at: UTC with timezone; the only ordering key for listings

Lifecycle:
    Written once, atomically and in full, then read-only. There is no
    update path; deletion is not exposed.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from stripscan.database import Base


class SubmissionStatus(str, enum.Enum):
    """
    Processing state of a submission.

    Only PROCESSED is ever written: uploads are processed synchronously, so
    a row exists only once processing finished. An extraction problem is
    recorded in error_message, not in the status.
    """

    PROCESSED = "processed"


class Submission(Base):
    """A processed test strip photo and the QR code read from it."""

    __tablename__ = "test_strip_submissions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier, generated at creation",
    )

    # Normalized code when valid, raw code as read when invalid, NULL when none
    qr_code: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        unique=True,
        comment="QR code stored for duplicate detection",
    )

    original_image_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Path of the raw upload relative to the upload root",
    )

    # NULL when thumbnail generation failed (non-fatal)
    thumbnail_path: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Path of the thumbnail relative to the upload root",
    )

    image_size: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Upload size in bytes",
    )

    # Format: "<width>x<height>"
    image_dimensions: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Original image dimensions",
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SubmissionStatus.PROCESSED.value,
        comment="Processing state",
    )

    # Mutually exclusive with a valid qr_code
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        default=None,
        comment="Why no valid QR code was recorded",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When this submission was created (UTC)",
    )

    __table_args__ = (
        Index("idx_submissions_created_at", created_at.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<Submission(id={self.id}, qr_code='{self.qr_code}', "
            f"status='{self.status}', created_at='{self.created_at}')>"
        )
