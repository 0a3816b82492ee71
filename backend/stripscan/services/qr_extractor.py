"""
StripScan Backend — QR Code Extraction
========================================

What:  Reads the QR code printed on a test strip and classifies it.
Why:   The code identifies the strip (duplicate detection) and carries its
       expiration year.
How:   Pillow decodes the photo, a downscaled working copy is handed to the
       OpenCV QR detector, and the payload is normalized and matched against
       the strip code format `ELI-YYYY-XXX`.
Who:   Called by UploadPipeline; `check_expiration` is also used by the
       history service to derive expiration at read time.

Failure model:
    `QRExtractor.extract()` never raises. A photo without a readable code is a
    normal outcome (`raw_code=None, valid=False`), and any decoding exception
    is reported through `error` so the caller can still record the upload.

Expiration rule:
    Year granularity only: a code expires when its year is strictly before the
    current calendar year. A code for the current year is not expired.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

# Strip code format: ELI-<4 digit year>-<3 alphanumerics>, matched after upper-casing
QR_CODE_PATTERN = re.compile(r"^ELI-(\d{4})-[A-Z0-9]{3}$")

DEFAULT_DETECTION_MAX_DIMENSION = 1024

QRDecoder = Callable[[Image.Image], Optional[str]]


@dataclass(frozen=True)
class QRExtractionResult:
    """
    Outcome of one extraction attempt (never persisted as such).

    raw_code is exactly what was read (trimmed); normalized_code is its
    upper-cased canonical form. Expiration fields are only set when valid.
    """

    raw_code: Optional[str] = None
    normalized_code: Optional[str] = None
    valid: bool = False
    expiration_year: Optional[int] = None
    is_expired: bool = False
    error: Optional[str] = None


def current_year() -> int:
    return date.today().year


def check_expiration(
    code: Optional[str], year: Optional[int] = None
) -> Tuple[bool, Optional[int]]:
    """
    Derive (is_expired, expiration_year) from a stored or decoded code.

    Codes that do not match the strip format have no expiration: (False, None).
    """
    if not code:
        return False, None
    match = QR_CODE_PATTERN.match(code.strip().upper())
    if not match:
        return False, None
    expiration_year = int(match.group(1))
    reference = year if year is not None else current_year()
    return expiration_year < reference, expiration_year


def classify_code(raw: str, year: Optional[int] = None) -> QRExtractionResult:
    """Normalize a decoded payload and apply the format and expiration rules."""
    raw_code = raw.strip()
    normalized = raw_code.upper()
    valid = QR_CODE_PATTERN.match(normalized) is not None

    expiration_year: Optional[int] = None
    is_expired = False
    if valid:
        is_expired, expiration_year = check_expiration(normalized, year)

    return QRExtractionResult(
        raw_code=raw_code,
        normalized_code=normalized,
        valid=valid,
        expiration_year=expiration_year,
        is_expired=is_expired,
    )


def downscale_for_detection(image: Image.Image, max_dimension: int) -> Image.Image:
    """
    Return a working copy whose sides are both <= max_dimension.

    Aspect ratio is preserved. The input image is never modified, even when it
    is already small enough (a plain copy is returned in that case).
    """
    working = image.copy()
    if working.width > max_dimension or working.height > max_dimension:
        working.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    return working


def decode_with_opencv(image: Image.Image) -> Optional[str]:
    """
    Default decoder: OpenCV's QRCodeDetector on a BGR pixel buffer.

    Returns None when no QR payload is found.
    """
    pixels = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2BGR)
    detector = cv2.QRCodeDetector()
    data, _points, _straight = detector.detectAndDecode(pixels)
    return data or None


class QRExtractor:
    """
    Decodes and classifies the QR code of a test strip photo.

    Args:
        max_dimension: Cap applied to the detection working copy. Bounds the
                       decoder's cost on large phone photos.
        decoder:       Callable turning a PIL image into a payload or None.
                       Defaults to the OpenCV detector.
        year_provider: Returns the current calendar year (injectable for tests).
    """

    def __init__(
        self,
        max_dimension: int = DEFAULT_DETECTION_MAX_DIMENSION,
        decoder: Optional[QRDecoder] = None,
        year_provider: Callable[[], int] = current_year,
    ):
        self.max_dimension = max_dimension
        self.decoder = decoder or decode_with_opencv
        self.year_provider = year_provider

    def extract(self, image_path: Union[str, Path]) -> QRExtractionResult:
        """
        Extract the QR code from the image at `image_path`.

        The original file is only read; detection runs on a downscaled copy.
        """
        try:
            with Image.open(image_path) as image:
                image.load()
                working = downscale_for_detection(image, self.max_dimension)

            payload = self.decoder(working)
            if payload is None or not payload.strip():
                logger.info("No QR code detected in %s", Path(image_path).name)
                return QRExtractionResult()

            result = classify_code(payload, self.year_provider())
            logger.info(
                "QR code read from %s: %r (valid=%s, expired=%s)",
                Path(image_path).name,
                result.normalized_code,
                result.valid,
                result.is_expired,
            )
            return result

        except Exception as e:
            # Extraction must never abort the upload; degrade to "no code"
            logger.error(
                "QR extraction failed for %s: %s",
                Path(image_path).name,
                str(e),
                exc_info=True,
            )
            return QRExtractionResult(error=str(e))
