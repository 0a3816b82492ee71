"""
StripScan Client — Photo Submission
======================================

What:  Prepares a photo for upload, sends it and classifies the answer.
How:   prepare_submission() re-encodes the photo as a smaller JPEG with Pillow.
       SubmissionUploader.submit() uploads it; a connectivity failure puts it
       in the offline queue instead of surfacing as an error.

Outcomes:
    success     valid, unexpired QR code
    no_qr_code  no code found, or the code does not match ELI-YYYY-XXX
    expired     valid code whose year is in the past
    duplicate   the server already has this code
    queued      server unreachable; saved for replay

Validation rejections (4xx) and server errors (5xx) are not outcomes: they
propagate to the caller, which shows them as a failed upload.
"""

import asyncio
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageOps

from stripscan.client.api import StripScanClient
from stripscan.client.errors import (
    ConnectivityError,
    DuplicateSubmissionError,
    ServiceError,
)
from stripscan.client.health import HealthMonitor
from stripscan.client.queue import OfflineQueue, QueuedSubmission
from stripscan.schemas.submission import UploadResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 1200
DEFAULT_QUALITY = 80


# ══════════════════════════════════════════════════════════════════════════
# Photo Preparation
# ══════════════════════════════════════════════════════════════════════════


def compressed_name(file_name: str) -> str:
    """'IMG 0001.jpg' → 'compressed-IMG_0001.jpg'"""
    return "compressed-" + re.sub(r"\s+", "_", file_name)


def compress_jpeg(photo_path, max_width: int = DEFAULT_MAX_WIDTH, quality: int = DEFAULT_QUALITY) -> bytes:
    """
    Re-encode a photo as JPEG no wider than max_width (aspect ratio kept).

    EXIF orientation is applied first so portrait shots stay portrait after
    the metadata is dropped.
    """
    with Image.open(photo_path) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        if img.width > max_width:
            height = max(1, round(img.height * max_width / img.width))
            img = img.resize((max_width, height), Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()


async def prepare_submission(
    photo_path,
    max_width: int = DEFAULT_MAX_WIDTH,
    quality: int = DEFAULT_QUALITY,
) -> QueuedSubmission:
    """Compress the photo off the event loop and wrap it as a submission."""
    path = Path(photo_path)
    payload = await asyncio.to_thread(compress_jpeg, path, max_width, quality)
    return QueuedSubmission(
        photo_uri=str(path),
        payload=payload,
        file_name=compressed_name(path.name or "photo.jpg"),
        content_type="image/jpeg",
    )


# ══════════════════════════════════════════════════════════════════════════
# Submission
# ══════════════════════════════════════════════════════════════════════════


class Outcome(str, Enum):
    SUCCESS = "success"
    NO_QR_CODE = "no_qr_code"
    EXPIRED = "expired"
    DUPLICATE = "duplicate"
    QUEUED = "queued"


@dataclass(frozen=True)
class SubmitResult:
    outcome: Outcome
    response: Optional[UploadResponse] = None
    existing_id: Optional[str] = None
    item: Optional[QueuedSubmission] = None


def classify_response(response: UploadResponse) -> Outcome:
    if not response.qr_code_valid:
        return Outcome.NO_QR_CODE
    if response.is_expired:
        return Outcome.EXPIRED
    return Outcome.SUCCESS


def describe_outcome(result: SubmitResult) -> Tuple[str, str]:
    """(title, message) for the alert shown after a submission."""
    response = result.response
    if result.outcome is Outcome.DUPLICATE:
        return (
            "QR Code Duplicate",
            "This QR code has already been uploaded. Please try a different test strip.",
        )
    if result.outcome is Outcome.QUEUED:
        return ("Saved", "Submission saved. Will retry when backend is available.")
    if result.outcome is Outcome.NO_QR_CODE:
        return (
            "No QR Code Detected",
            "The uploaded image does not contain a valid QR code. "
            "Please try again with a clearer image.",
        )
    if result.outcome is Outcome.EXPIRED:
        return (
            "QR Code Expired",
            f"This test strip has expired ({response.expiration_year}). QR Code: {response.qr_code}",
        )
    return ("Upload Successful", f"Valid QR Code detected: {response.qr_code}")


class SubmissionUploader:
    """
    Sends prepared photos and routes unreachable-server failures to the queue.

    Args:
        client:  API client
        queue:   Offline queue for submissions that could not be delivered
        monitor: Optional HealthMonitor; while it reports the server down, a
                 5xx answer is also treated as "unreachable" and queued
    """

    def __init__(
        self,
        client: StripScanClient,
        queue: OfflineQueue,
        monitor: Optional[HealthMonitor] = None,
    ):
        self.client = client
        self.queue = queue
        self.monitor = monitor

    async def submit(self, photo_path) -> SubmitResult:
        item = await prepare_submission(
            photo_path,
            max_width=self.client.config.compress_max_width,
            quality=self.client.config.compress_quality,
        )
        return await self.submit_prepared(item)

    async def submit_prepared(self, item: QueuedSubmission) -> SubmitResult:
        try:
            response = await self.client.upload(item)
        except DuplicateSubmissionError as e:
            logger.info("Duplicate QR code for %s (existing id %s)", item.file_name, e.existing_id)
            return SubmitResult(outcome=Outcome.DUPLICATE, existing_id=e.existing_id, item=item)
        except ConnectivityError as e:
            logger.warning("Backend unreachable, queueing %s: %s", item.file_name, e.message)
            await self.queue.enqueue(item)
            return SubmitResult(outcome=Outcome.QUEUED, item=item)
        except ServiceError as e:
            if self.monitor is None or self.monitor.reachable is not False:
                raise
            logger.warning("Server error while backend reported down, queueing %s: %s", item.file_name, e.message)
            await self.queue.enqueue(item)
            return SubmitResult(outcome=Outcome.QUEUED, item=item)

        return SubmitResult(outcome=classify_response(response), response=response, item=item)
