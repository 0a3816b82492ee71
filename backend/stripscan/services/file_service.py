"""
StripScan Backend — File Storage Service
============================================

What:  Handles upload validation, raw image storage, thumbnails, and cleanup.
Why:   Centralizes all file system operations with security checks.
How:   Validates declared content type, size and JPEG signature, stores raw
       uploads and thumbnails under unique generated names.
Who:   Called by UploadPipeline during the upload workflow and by the
       thumbnail route to resolve served files.
When:  Before image processing (validation, raw storage) and during it
       (thumbnail).

Security Model:
    1. Content-type check: Only JPEG is accepted by the upload endpoint
    2. Signature check:    First three bytes must be FF D8 FF, so a client
                           lying about the content type is still rejected
    3. Size check:         Declared and actual size both bounded (10 MiB)
    4. Generated names:    Raw files get a timestamp + random name; thumbnail
                           names embed only a sanitized basename, so no user
                           input can traverse out of the storage directories
    5. Relative paths:     Only paths relative to the upload root are stored
                           and returned, never absolute file system paths

Directory Structure:
    uploads/
    ├── raw/
    │   └── 1718000000000-a1b2c3.jpg
    └── thumbnails/
        └── thumb-1718000000123-4821-strip.jpg
"""

import asyncio
import io
import logging
import os
import random
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import aiofiles
from PIL import Image

from stripscan.exceptions import (
    FileStorageError,
    ThumbnailGenerationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# ── Allowed Uploads ───────────────────────────────────────────────────────
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg"}

# JPEG files start with SOI (FF D8) followed by a marker prefix (FF)
JPEG_SIGNATURE = b"\xff\xd8\xff"

DEFAULT_EXTENSION = ".jpg"

RAW_DIR_NAME = "raw"
THUMBNAILS_DIR_NAME = "thumbnails"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """
    Reduce a client-supplied filename to a safe basename.

    Directory components are dropped and every character outside
    `[A-Za-z0-9._-]` is replaced by an underscore.
    """
    base = os.path.basename(filename.replace("\\", "/"))
    return _UNSAFE_FILENAME_CHARS.sub("_", base) or "upload"


def file_extension(filename: str) -> str:
    """Lower-cased extension including the dot, or '' when there is none."""
    return Path(filename).suffix.lower()


@dataclass(frozen=True)
class StoredFile:
    """A file written by the service: absolute path for I/O, relative for the DB."""

    absolute_path: Path
    relative_path: str


class FileService:
    """
    Manages upload validation and the raw/thumbnail storage lifecycle.

    Lifecycle of an uploaded file:
        1. validate_upload(): content type, size, JPEG signature
        2. store_raw(): written to raw/ under a generated unique name
        3. write_thumbnail(): resized JPEG written to thumbnails/
        4. On a fatal processing failure: cleanup_file() removes both
    """

    def __init__(
        self,
        upload_root: Union[str, Path],
        max_file_size: int = 10_485_760,
        thumbnail_size: int = 200,
        thumbnail_quality: int = 80,
    ):
        """
        Args:
            upload_root: Directory holding raw/ and thumbnails/. Each pipeline
                         gets its own root, so tests can use temp directories.
        """
        self.upload_root = Path(upload_root).resolve()
        self.raw_dir = self.upload_root / RAW_DIR_NAME
        self.thumbnails_dir = self.upload_root / THUMBNAILS_DIR_NAME
        self.max_file_size = max_file_size
        self.thumbnail_size = thumbnail_size
        self.thumbnail_quality = thumbnail_quality

        self.raw_dir.mkdir(parents=True, exist_ok=True)
        self.thumbnails_dir.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with upload_root=%s", self.upload_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_content_type(self, content_type: Optional[str]) -> None:
        """Only JPEG uploads are accepted."""
        if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(
                message=f"Only JPG/JPEG files are allowed. Received: {content_type}",
                field="image",
                context={"content_type": content_type},
            )

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Validate file size against the configured maximum.

        Why two checks:
            - content_length: What the client declared (may be missing)
            - actual_size: What was actually received (clients can lie)
        """
        max_mb = self.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(
                message="Uploaded file is empty",
                field="image",
            )

        if content_length and content_length > self.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="image",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > self.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="image",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_jpeg_signature(self, content: bytes) -> None:
        """Reject uploads whose first bytes are not the JPEG magic sequence."""
        if not content.startswith(JPEG_SIGNATURE):
            raise ValidationError(
                message="Uploaded file is not a valid JPEG image",
                field="image",
                context={"header": content[:3].hex()},
            )

    def validate_upload(
        self,
        content: bytes,
        content_type: Optional[str],
        content_length: Optional[int] = None,
    ) -> None:
        """
        Run all upload checks, cheapest first.

        Nothing is written to disk unless every check passes.
        """
        self.validate_content_type(content_type)
        self.validate_size(content_length, len(content))
        self.validate_jpeg_signature(content)

    # ── Raw Storage ───────────────────────────────────────────────────────

    def _generate_raw_path(self, extension: str) -> StoredFile:
        """Unique `raw/<epoch-ms>-<random><ext>` path."""
        unique_name = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}{extension}"
        relative_path = f"{RAW_DIR_NAME}/{unique_name}"
        return StoredFile(self.upload_root / relative_path, relative_path)

    async def store_raw(self, content: bytes, filename: str) -> StoredFile:
        """
        Write validated upload bytes to raw/.

        Raises:
            FileStorageError if the directory or file cannot be written.
        """
        stored = self._generate_raw_path(file_extension(filename) or DEFAULT_EXTENSION)

        try:
            stored.absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(stored.absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store upload at %s: %s", stored.absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"path": str(stored.absolute_path), "os_error": str(e)},
            )

        logger.info("Upload stored: %s (%d bytes)", stored.relative_path, len(content))
        return stored

    # ── Thumbnails ────────────────────────────────────────────────────────

    def thumbnail_filename(self, original_filename: str) -> str:
        """Collision-resistant name: timestamp, random suffix, sanitized basename."""
        return (
            f"thumb-{int(time.time() * 1000)}-{random.randint(0, 9999)}-"
            f"{sanitize_filename(original_filename)}"
        )

    def encode_thumbnail(self, image: Image.Image) -> bytes:
        """Resize to the fixed thumbnail box and encode as reduced-quality JPEG."""
        thumbnail = image.convert("RGB").resize(
            (self.thumbnail_size, self.thumbnail_size),
            Image.Resampling.BILINEAR,
        )
        buffer = io.BytesIO()
        thumbnail.save(buffer, format="JPEG", quality=self.thumbnail_quality)
        return buffer.getvalue()

    async def write_thumbnail(self, image: Image.Image, original_filename: str) -> StoredFile:
        """
        Generate and write the thumbnail for an upload.

        Raises:
            ThumbnailGenerationError on any encoding or I/O failure. Callers
            treat it as non-fatal.
        """
        name = self.thumbnail_filename(original_filename)
        stored = StoredFile(
            self.thumbnails_dir / name,
            f"{THUMBNAILS_DIR_NAME}/{name}",
        )

        try:
            data = await asyncio.to_thread(self.encode_thumbnail, image)
            self.thumbnails_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(stored.absolute_path, "wb") as f:
                await f.write(data)
        except Exception as e:
            raise ThumbnailGenerationError(
                message="Failed to generate thumbnail",
                context={"path": str(stored.absolute_path), "error": str(e)},
            ) from e

        logger.info("Thumbnail stored: %s (%d bytes)", stored.relative_path, len(data))
        return stored

    def resolve_thumbnail(self, filename: str) -> Path:
        """
        Map a public thumbnail filename to its file inside thumbnails/.

        Raises:
            ValidationError if the name would escape the thumbnails directory.
        """
        candidate = (self.thumbnails_dir / filename).resolve()
        if candidate.parent != self.thumbnails_dir:
            raise ValidationError(message="Invalid file path", field="filename")
        return candidate

    # ── Cleanup ───────────────────────────────────────────────────────────

    async def cleanup_file(self, file_path: Union[str, Path]) -> None:
        """
        Remove a file written for an upload that was ultimately rejected.

        Best effort: a missing file is ignored, other failures are logged.
        """
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.info("Cleaned up file: %s", path.name)
            else:
                logger.debug("Cleanup: file already gone: %s", path.name)
        except OSError as e:
            logger.warning("Failed to clean up file %s: %s", file_path, str(e))
