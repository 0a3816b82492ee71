"""
StripScan Backend — Custom Exception Hierarchy
=================================================

What:  Defines application-specific exceptions for different error scenarios.
Why:   Each failure carries an explicit `kind`, so the HTTP boundary chooses a
       status code by switching on the kind, never by reading message text.
How:   Each exception class carries a message, an optional context dict and a
       class-level ErrorKind. One global handler (registered in main.py) maps
       the kind to a status code and returns a structured JSON error.
Who:   Raised by services and middleware; caught by the global handler.
When:  During request processing when recoverable errors occur.

Exception Hierarchy:
    StripScanError (base)
    ├── ValidationError           → 400 Bad Request (client can fix)
    ├── ImageInvalidError         → 400 Bad Request
    │   ├── ImageDecodeError          (not a readable image)
    │   └── ImageDimensionError       (outside the accepted size range)
    ├── DuplicateQrCodeError      → 409 Conflict (carries the existing id)
    ├── NotFoundError             → 404 Not Found
    ├── RateLimitExceededError    → 429 Too Many Requests
    ├── FileStorageError          → 500 Internal Server Error
    ├── PersistenceError          → 500 Internal Server Error
    ├── ProcessingFailedError     → 500 Internal Server Error
    └── ThumbnailGenerationError  → never reaches the client (logged only)

QR extraction failures are not exceptions: they degrade to "no code detected"
and travel in `QRExtractionResult.error`.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Machine-readable error categories shared by server and client."""

    VALIDATION = "validation_error"
    IMAGE_INVALID = "image_invalid"
    DUPLICATE_QR_CODE = "duplicate_qr_code"
    NOT_FOUND = "not_found"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    FILE_STORAGE = "file_storage_error"
    PERSISTENCE_FAILED = "persistence_failed"
    PROCESSING_FAILED = "processing_failed"
    THUMBNAIL_FAILED = "thumbnail_failed"
    CONNECTIVITY_FAILURE = "connectivity_failure"
    UPLOAD_REJECTED = "upload_rejected"
    SERVICE_ERROR = "service_error"


class StripScanError(Exception):
    """
    Base exception for all StripScan application errors.

    Attributes:
        kind:     Error category used by the boundary to pick a status code
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged; only selected keys are returned)
    """

    kind: ErrorKind = ErrorKind.PROCESSING_FAILED

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(StripScanError):
    """
    Raised when the upload itself is unacceptable before any image work starts.

    When:    Missing file, wrong declared content type, JPEG signature mismatch,
             size exceeded.
    HTTP:    400 Bad Request
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class ImageInvalidError(StripScanError):
    """
    Raised when the stored upload cannot be used as a test strip photo.

    HTTP:    400 Bad Request
    """

    kind = ErrorKind.IMAGE_INVALID

    def __init__(
        self,
        message: str = "Invalid image file",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ImageDecodeError(ImageInvalidError):
    """The bytes could not be decoded as an image."""


class ImageDimensionError(ImageInvalidError):
    """
    Width or height is outside the accepted range.

    Too small cannot contain a legible code; too large is a resource-abuse guard.
    """

    def __init__(
        self,
        width: int,
        height: int,
        min_dimension: int,
        max_dimension: int,
    ):
        if width < min_dimension or height < min_dimension:
            message = (
                f"Invalid image file: Image dimensions too small "
                f"(minimum {min_dimension}x{min_dimension} pixels)"
            )
        else:
            message = (
                f"Invalid image file: Image dimensions too large "
                f"(maximum {max_dimension}x{max_dimension} pixels)"
            )
        super().__init__(
            message=message,
            context={"width": width, "height": height},
        )
        self.width = width
        self.height = height


class DuplicateQrCodeError(StripScanError):
    """
    Raised when a submission with the same stored QR code already exists.

    HTTP:    409 Conflict
    The conflicting record's id is returned in `details.existing_id` so the
    client can show an "already submitted" outcome instead of a generic failure.
    """

    kind = ErrorKind.DUPLICATE_QR_CODE

    def __init__(self, qr_code: str, existing_id: Any):
        super().__init__(
            message=f"QR code already exists (ID: {existing_id})",
            context={"qr_code": qr_code, "existing_id": str(existing_id)},
        )
        self.qr_code = qr_code
        self.existing_id = existing_id


class NotFoundError(StripScanError):
    """
    Raised by the HTTP layer when a requested resource does not exist.

    The history service returns None for a lookup miss (a valid empty result);
    only the route converts that into this exception for the 404 response.
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class FileStorageError(StripScanError):
    """
    Raised when writing an upload to disk fails.

    HTTP:    500 Internal Server Error (file system paths are never returned)
    """

    kind = ErrorKind.FILE_STORAGE

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ThumbnailGenerationError(StripScanError):
    """
    Raised by the file service when a thumbnail cannot be produced or written.

    Never surfaces to the client: the pipeline logs it and records the
    submission without a thumbnail.
    """

    kind = ErrorKind.THUMBNAIL_FAILED

    def __init__(
        self,
        message: str = "Thumbnail generation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PersistenceError(StripScanError):
    """
    Raised when a database operation fails unexpectedly.

    HTTP:    500 Internal Server Error
    Security: the client always gets a generic message; SQL details are logged only.
    """

    kind = ErrorKind.PERSISTENCE_FAILED

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ProcessingFailedError(StripScanError):
    """Unexpected internal failure while processing an upload."""

    kind = ErrorKind.PROCESSING_FAILED

    def __init__(
        self,
        message: str = "Failed to process upload",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(StripScanError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests (with Retry-After header)
    """

    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
