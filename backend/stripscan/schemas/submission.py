"""
StripScan Backend — Pydantic Request/Response Schemas
=======================================================

What:  Pydantic models defining the API contract between client and server.
Why:   Strict serialization, automatic OpenAPI docs, and one set of models
       shared by the FastAPI routes and the Python client.
How:   Attributes are snake_case in Python and camelCase on the wire
       (`qr_code_valid` ↔ `qrCodeValid`). FastAPI serializes by alias; the
       client validates responses with the same models.

Design Decision:
    Schemas are separate from SQLAlchemy models because the wire format
    carries derived fields (isExpired, expirationYear, thumbnailUrl) that are
    computed at read time and never stored.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for wire models: camelCase JSON, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ══════════════════════════════════════════════════════════════════════════
# Upload
# ══════════════════════════════════════════════════════════════════════════


class ImageMetadata(CamelModel):
    """Echo of the uploaded image's metadata."""

    size: int = Field(description="Upload size in bytes")
    dimensions: str = Field(description="Original dimensions as <width>x<height>")
    mime_type: str = Field(description="Declared content type (default image/jpg)")
    extension: str = Field(description="Lower-cased extension of the uploaded filename")


class UploadResponse(CamelModel):
    """
    What:  Result of processing one test strip photo.
    Who:   Returned by POST /test-strips/upload with HTTP 201.

    qr_code is the normalized code when valid, otherwise the raw code as read
    (or null when none was found). Expiration fields come from the extraction.
    """

    id: uuid.UUID = Field(description="Submission identifier")
    status: str = Field(description="Processing state (processed)")
    qr_code: Optional[str] = Field(default=None, description="Stored QR code")
    qr_code_valid: bool = Field(description="Whether the code matches ELI-YYYY-XXX")
    processed_at: datetime = Field(description="Creation timestamp (UTC)")
    is_expired: bool = Field(description="Code year is before the current year")
    expiration_year: Optional[int] = Field(default=None, description="Year encoded in the code")
    image_metadata: ImageMetadata


# ══════════════════════════════════════════════════════════════════════════
# History
# ══════════════════════════════════════════════════════════════════════════


class SubmissionListItem(CamelModel):
    """
    What:  Compact submission representation for the history list.
    Why:   isExpired/expirationYear are recomputed on every read because the
           current year changes; they are never stored.
    """

    id: uuid.UUID
    qr_code: Optional[str] = None
    status: str
    thumbnail_url: str = Field(description="Public thumbnail URL (basename only)")
    created_at: datetime
    is_expired: bool = False
    expiration_year: Optional[int] = None


class SubmissionDetail(SubmissionListItem):
    """Full submission record returned by GET /test-strips/{id}."""

    original_image_path: str = Field(description="Raw upload path relative to the upload root")
    image_size: int = 0
    image_dimensions: str = ""
    error_message: Optional[str] = None


class SubmissionListResponse(CamelModel):
    """Page of submissions plus the echoed pagination values."""

    submissions: List[SubmissionListItem]
    page: int
    limit: int
    total_count: int = Field(description="Total number of submissions")


# ══════════════════════════════════════════════════════════════════════════
# Errors & Health
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "duplicate_qr_code",
            "message": "QR code already exists (ID: 6f1c...)",
            "details": {"existing_id": "6f1c..."},
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Machine-readable error kind")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(CamelModel):
    """Reachability signal polled by the client every 30 seconds."""

    status: str = Field(description="ok or unhealthy")
    version: str
    database: str = Field(description="connected or disconnected")
    uptime_seconds: float
