"""
StripScan Backend — Upload Pipeline (Business Logic Orchestrator)
===================================================================

What:  Turns one uploaded test strip photo into exactly one Submission record.
Why:   Encapsulates the whole upload workflow, independent of HTTP concerns.
How:   Composes FileService, QRExtractor and SubmissionRepository.
Who:   Called by the upload route handler.
When:  For every POST /test-strips/upload.

Orchestration Flow:
    ┌──────────┐   ┌──────────────┐   ┌───────────┐   ┌──────────┐   ┌───────────┐   ┌─────────┐
    │ Validate │──▶│ Decode &     │──▶│ Thumbnail │──▶│ QR       │──▶│ Duplicate │──▶│ Persist │
    │ & Store  │   │ check size   │   │ (non-     │   │ extract  │   │ check     │   │         │
    └──────────┘   └──────────────┘   │  fatal)   │   └──────────┘   └───────────┘   └─────────┘
                                      └───────────┘

    Fatal steps short-circuit: image errors (400), duplicate code (409),
    persistence/unexpected errors (500). Thumbnail and QR extraction failures
    never abort the upload.

    On a fatal failure the thumbnail written for this upload and the stored
    raw image are removed, and no Submission row is left behind (the row is
    only flushed as the very last step; the request session rolls back).

Duplicate Guard:
    The lookup by code before insert is a fast path. The unique constraint on
    qr_code is authoritative: if two uploads of the same code race past the
    lookup, the loser's insert fails and is reported as the same duplicate
    error, carrying the winner's id.

Design Decision:
    The pipeline never reads the global settings object. It receives a
    PipelineConfig at construction, so pipelines with different storage roots
    can coexist (one per test, for instance).
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stripscan.config import Settings
from stripscan.exceptions import (
    DuplicateQrCodeError,
    ImageDecodeError,
    ImageDimensionError,
    PersistenceError,
    ProcessingFailedError,
    StripScanError,
    ThumbnailGenerationError,
)
from stripscan.models.submission import Submission, SubmissionStatus
from stripscan.repositories.submission_repository import SubmissionRepository
from stripscan.schemas.submission import ImageMetadata, UploadResponse
from stripscan.services.file_service import FileService, StoredFile, file_extension
from stripscan.services.qr_extractor import QRExtractionResult, QRExtractor

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpg"

INVALID_FORMAT_MESSAGE = "Invalid QR code format"
NOT_FOUND_MESSAGE = "QR code not found"


@dataclass(frozen=True)
class PipelineConfig:
    """Everything the pipeline needs to know about storage and image rules."""

    upload_root: Path
    max_file_size: int = 10_485_760
    min_image_dimension: int = 100
    max_image_dimension: int = 10_000
    detection_max_dimension: int = 1024
    thumbnail_size: int = 200
    thumbnail_quality: int = 80
    thumbnails_url_prefix: str = "/uploads/thumbnails"

    @classmethod
    def from_settings(cls, config: Settings) -> "PipelineConfig":
        return cls(
            upload_root=Path(config.upload_root),
            max_file_size=config.max_file_size,
            min_image_dimension=config.min_image_dimension,
            max_image_dimension=config.max_image_dimension,
            detection_max_dimension=config.detection_max_dimension,
            thumbnail_size=config.thumbnail_size,
            thumbnail_quality=config.thumbnail_quality,
            thumbnails_url_prefix=config.thumbnails_url_prefix,
        )


def error_message_for(qr: QRExtractionResult) -> Optional[str]:
    """
    Diagnostic stored with the submission, by priority:
    valid code → None; code read but malformed → format error;
    extractor error → that error; otherwise → not found.
    """
    if qr.valid:
        return None
    if qr.raw_code:
        return INVALID_FORMAT_MESSAGE
    if qr.error:
        return qr.error
    return NOT_FOUND_MESSAGE


class UploadPipeline:
    """
    Orchestrates validation, thumbnailing, QR extraction, duplicate detection
    and persistence for one upload.

    Stateless between calls: the database session is passed per call and all
    files are named uniquely per upload, so concurrent requests share nothing
    but the database.
    """

    def __init__(
        self,
        config: PipelineConfig,
        file_service: Optional[FileService] = None,
        extractor: Optional[QRExtractor] = None,
    ):
        self.config = config
        self.file_service = file_service or FileService(
            upload_root=config.upload_root,
            max_file_size=config.max_file_size,
            thumbnail_size=config.thumbnail_size,
            thumbnail_quality=config.thumbnail_quality,
        )
        self.extractor = extractor or QRExtractor(
            max_dimension=config.detection_max_dimension,
        )

    async def handle_upload(
        self,
        db: AsyncSession,
        filename: str,
        content: bytes,
        content_type: Optional[str],
        content_length: Optional[int] = None,
    ) -> UploadResponse:
        """
        Validate and store a raw upload, then process it.

        Raises:
            ValidationError:  Content type, size or JPEG signature rejected
                              (nothing was written)
            FileStorageError: The raw image could not be written
            plus everything process() raises. In those cases the raw image
            is removed again.
        """
        self.file_service.validate_upload(content, content_type, content_length)
        stored = await self.file_service.store_raw(content, filename)

        try:
            return await self.process(
                db,
                stored=stored,
                filename=filename,
                size=len(content),
                content_type=content_type,
            )
        except Exception:
            await self.file_service.cleanup_file(stored.absolute_path)
            raise

    async def process(
        self,
        db: AsyncSession,
        stored: StoredFile,
        filename: str,
        size: int,
        content_type: Optional[str] = None,
    ) -> UploadResponse:
        """
        Process an already stored raw image.

        Args:
            db:           Request session (committed by the caller's dependency)
            stored:       The raw image on disk
            filename:     Filename declared by the client
            size:         Upload size in bytes
            content_type: Declared content type, echoed in the response

        Raises:
            ImageDecodeError / ImageDimensionError: unusable image (before any
                QR extraction is attempted)
            DuplicateQrCodeError: the code was already submitted
            PersistenceError: the insert failed
            ProcessingFailedError: anything unexpected
        """
        thumbnail: Optional[StoredFile] = None

        try:
            # ── Step 1: Decode & validate dimensions ──────────────────────
            image, dimensions = await asyncio.to_thread(
                self._load_image, stored.absolute_path
            )

            # ── Step 2: Thumbnail (non-fatal) ─────────────────────────────
            thumbnail = await self._generate_thumbnail(image, filename)

            # ── Step 3: QR extraction on the full-resolution original ─────
            qr = await asyncio.to_thread(self.extractor.extract, stored.absolute_path)

            # ── Step 4: Canonical code for storage ────────────────────────
            # Invalid codes are kept as read; they help debug format issues
            code_to_store = qr.normalized_code if qr.valid else qr.raw_code

            repository = SubmissionRepository(db)

            # ── Step 5: Duplicate check (fast path) ───────────────────────
            if code_to_store:
                await self._ensure_not_submitted(repository, code_to_store)

            # ── Step 6: Persist ───────────────────────────────────────────
            submission = await self._persist(
                db,
                repository,
                qr_code=code_to_store,
                original_image_path=stored.relative_path,
                thumbnail_path=thumbnail.relative_path if thumbnail else None,
                image_size=size,
                image_dimensions=dimensions,
                status=SubmissionStatus.PROCESSED.value,
                error_message=error_message_for(qr),
            )

        except StripScanError:
            await self._discard_thumbnail(thumbnail)
            raise
        except Exception as e:
            await self._discard_thumbnail(thumbnail)
            logger.error("Unexpected error processing %s: %s", filename, str(e), exc_info=True)
            raise ProcessingFailedError(
                context={"original_error": type(e).__name__},
            ) from e

        # ── Step 7: Respond ───────────────────────────────────────────────
        logger.info(
            "Upload processed: submission=%s code=%r valid=%s expired=%s",
            submission.id,
            submission.qr_code,
            qr.valid,
            qr.is_expired,
        )
        return UploadResponse(
            id=submission.id,
            status=submission.status,
            qr_code=submission.qr_code,
            qr_code_valid=qr.valid,
            processed_at=submission.created_at,
            is_expired=qr.is_expired,
            expiration_year=qr.expiration_year,
            image_metadata=ImageMetadata(
                size=size,
                dimensions=dimensions,
                mime_type=content_type or DEFAULT_MIME_TYPE,
                extension=file_extension(filename),
            ),
        )

    # ── Steps ─────────────────────────────────────────────────────────────

    def _load_image(self, path: Union[str, Path]) -> Tuple[Image.Image, str]:
        """
        Decode the original image and enforce the dimension bounds.

        The size is checked from the header before the pixel data is decoded,
        so oversized images are rejected without allocating them.
        """
        try:
            with Image.open(path) as source:
                width, height = source.size
                if not self._dimensions_allowed(width, height):
                    raise ImageDimensionError(
                        width,
                        height,
                        self.config.min_image_dimension,
                        self.config.max_image_dimension,
                    )
                image = source.copy()
        except ImageDimensionError:
            logger.warning("Image dimensions rejected for %s", Path(path).name)
            raise
        except Exception as e:
            logger.warning("Image decode failed for %s: %s", Path(path).name, str(e))
            raise ImageDecodeError(
                message=f"Invalid image file: {e}",
                context={"error_type": type(e).__name__},
            ) from e

        return image, f"{width}x{height}"

    def _dimensions_allowed(self, width: int, height: int) -> bool:
        low = self.config.min_image_dimension
        high = self.config.max_image_dimension
        return low <= width <= high and low <= height <= high

    async def _generate_thumbnail(
        self, image: Image.Image, filename: str
    ) -> Optional[StoredFile]:
        try:
            return await self.file_service.write_thumbnail(image, filename)
        except ThumbnailGenerationError as e:
            # The submission is still recorded, just without a thumbnail
            logger.error("Thumbnail generation failed for %s: %s", filename, e.context)
            return None

    async def _ensure_not_submitted(
        self, repository: SubmissionRepository, qr_code: str
    ) -> None:
        try:
            existing = await repository.find_by_qr_code(qr_code)
        except SQLAlchemyError as e:
            logger.error("Duplicate lookup failed for %r: %s", qr_code, str(e))
            raise PersistenceError(context={"operation": "find_by_qr_code"}) from e

        if existing is not None:
            logger.info("Duplicate QR code %r (existing submission %s)", qr_code, existing.id)
            raise DuplicateQrCodeError(qr_code, existing.id)

    async def _persist(
        self,
        db: AsyncSession,
        repository: SubmissionRepository,
        **fields,
    ) -> Submission:
        qr_code = fields.get("qr_code")
        try:
            return await repository.create(**fields)
        except IntegrityError as e:
            # A concurrent upload of the same code won the race
            await db.rollback()
            existing = await repository.find_by_qr_code(qr_code) if qr_code else None
            if existing is not None:
                logger.info(
                    "Unique constraint rejected %r (existing submission %s)",
                    qr_code,
                    existing.id,
                )
                raise DuplicateQrCodeError(qr_code, existing.id) from e
            logger.error("Integrity error persisting submission: %s", str(e))
            raise PersistenceError(context={"operation": "create"}) from e
        except SQLAlchemyError as e:
            logger.error("Database error persisting submission: %s", str(e), exc_info=True)
            raise PersistenceError(context={"operation": "create"}) from e

    async def _discard_thumbnail(self, thumbnail: Optional[StoredFile]) -> None:
        if thumbnail is not None:
            await self.file_service.cleanup_file(thumbnail.absolute_path)
