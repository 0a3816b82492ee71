"""
StripScan Backend — QR Extractor Unit Tests
==============================================

What:  Tests for code classification, expiration and the extraction flow.
How:   The decoder is replaced by a stub; images are generated with Pillow.

Test Strategy:
    ✅ Format rule (ELI-YYYY-XXX after upper-casing)
    ✅ Expiration rule (year < current year)
    ✅ Downscaling never touches the original image
    ✅ Decoder failures degrade to "no code" with an error
    ✅ Real OpenCV decode of a generated QR code
"""

import cv2
import pytest
from PIL import Image

from stripscan.services.qr_extractor import (
    QRExtractionResult,
    QRExtractor,
    check_expiration,
    classify_code,
    downscale_for_detection,
)

from conftest import StaticDecoder, jpeg_bytes


class TestClassifyCode:

    @pytest.mark.parametrize(
        "raw",
        ["ELI-2025-ABC", "eli-2030-x9z", "  ELI-1999-000  ", "Eli-2024-a1B"],
    )
    def test_matching_codes_are_valid(self, raw):
        result = classify_code(raw, year=2025)
        assert result.valid is True
        assert result.normalized_code == raw.strip().upper()

    @pytest.mark.parametrize(
        "raw",
        ["ELI-25-ABC", "ELI-2025-ABCD", "ELX-2025-ABC", "ELI2025ABC", "ELI-2025-AB!", "hello"],
    )
    def test_non_matching_codes_are_invalid(self, raw):
        result = classify_code(raw, year=2025)
        assert result.valid is False
        assert result.expiration_year is None
        assert result.is_expired is False

    def test_raw_code_keeps_original_case(self):
        result = classify_code(" eli-2030-abc ", year=2025)
        assert result.raw_code == "eli-2030-abc"
        assert result.normalized_code == "ELI-2030-ABC"

    def test_past_year_is_expired(self):
        result = classify_code("ELI-2020-ABC", year=2025)
        assert result.is_expired is True
        assert result.expiration_year == 2020

    def test_future_year_is_not_expired(self):
        result = classify_code("ELI-2099-XYZ", year=2025)
        assert result.is_expired is False
        assert result.expiration_year == 2099

    def test_current_year_is_not_expired(self):
        assert classify_code("ELI-2025-ABC", year=2025).is_expired is False


class TestCheckExpiration:

    def test_none_code(self):
        assert check_expiration(None, 2025) == (False, None)

    def test_invalid_code_has_no_expiration(self):
        assert check_expiration("SOMETHING-2020", 2025) == (False, None)

    def test_lowercase_stored_code(self):
        assert check_expiration("eli-2020-abc", 2025) == (True, 2020)

    @pytest.mark.parametrize("year", [1990, 2024, 2025, 2026, 2099])
    def test_expired_iff_before_current_year(self, year):
        is_expired, expiration_year = check_expiration(f"ELI-{year}-ABC", 2025)
        assert expiration_year == year
        assert is_expired == (year < 2025)


class TestDownscale:

    def test_large_image_is_capped(self):
        image = Image.new("RGB", (4000, 3000))
        working = downscale_for_detection(image, 1024)
        assert max(working.size) == 1024
        assert working.size == (1024, 768)

    def test_original_is_untouched(self):
        image = Image.new("RGB", (4000, 3000))
        downscale_for_detection(image, 1024)
        assert image.size == (4000, 3000)

    def test_small_image_is_copied_not_resized(self):
        image = Image.new("RGB", (500, 400))
        working = downscale_for_detection(image, 1024)
        assert working.size == (500, 400)
        assert working is not image


class TestQRExtractor:

    @pytest.fixture
    def image_path(self, tmp_path):
        path = tmp_path / "strip.jpg"
        path.write_bytes(jpeg_bytes(2048, 1536))
        return path

    def test_valid_code(self, image_path):
        extractor = QRExtractor(decoder=StaticDecoder("eli-2020-abc"), year_provider=lambda: 2025)
        result = extractor.extract(image_path)

        assert result.valid is True
        assert result.normalized_code == "ELI-2020-ABC"
        assert result.is_expired is True
        assert result.expiration_year == 2020
        assert result.error is None

    def test_decoder_sees_downscaled_copy(self, image_path):
        seen = []
        extractor = QRExtractor(max_dimension=1024, decoder=lambda img: seen.append(img.size))
        extractor.extract(image_path)
        assert seen == [(1024, 768)]

    def test_no_code_found(self, image_path):
        result = QRExtractor(decoder=StaticDecoder(None)).extract(image_path)
        assert result == QRExtractionResult()

    def test_blank_payload_is_no_code(self, image_path):
        result = QRExtractor(decoder=StaticDecoder("   ")).extract(image_path)
        assert result.raw_code is None
        assert result.valid is False

    def test_decoder_exception_is_reported_not_raised(self, image_path):
        def broken(image):
            raise RuntimeError("detector crashed")

        result = QRExtractor(decoder=broken).extract(image_path)
        assert result.valid is False
        assert result.raw_code is None
        assert result.error == "detector crashed"

    def test_unreadable_file_is_reported_not_raised(self, tmp_path):
        path = tmp_path / "not-an-image.jpg"
        path.write_bytes(b"\xff\xd8\xff garbage")

        result = QRExtractor(decoder=StaticDecoder("ELI-2025-ABC")).extract(path)
        assert result.valid is False
        assert result.error

    def test_opencv_decodes_generated_qr(self, tmp_path):
        encoder = cv2.QRCodeEncoder.create()
        matrix = encoder.encode("ELI-2099-XYZ")
        code = Image.fromarray(matrix).convert("RGB").resize((300, 300), Image.Resampling.NEAREST)
        canvas = Image.new("RGB", (400, 400), "white")
        canvas.paste(code, (50, 50))
        path = tmp_path / "qr.jpg"
        canvas.save(path, format="JPEG", quality=95)

        result = QRExtractor(year_provider=lambda: 2025).extract(path)
        assert result.normalized_code == "ELI-2099-XYZ"
        assert result.valid is True
        assert result.is_expired is False
