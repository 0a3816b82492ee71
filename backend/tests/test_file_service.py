"""
StripScan Backend — File Service Unit Tests
===============================================

What:  Tests for upload validation, raw storage, thumbnails and cleanup.
Why:   File validation is a security boundary: nothing unchecked may land
       on disk and no client filename may escape its directory.
How:   Each test gets its own upload root under pytest's tmp_path.

Test Strategy:
    ✅ Content type allow-list (image/jpeg, image/jpg)
    ✅ Size limits (declared and actual, empty file)
    ✅ JPEG magic bytes even when the content type lies
    ✅ Filename sanitization and traversal rejection
    ✅ Thumbnail size and quality
"""

import io
from unittest.mock import patch

import pytest
from PIL import Image

from stripscan.exceptions import (
    FileStorageError,
    ThumbnailGenerationError,
    ValidationError,
)
from stripscan.services.file_service import FileService, file_extension, sanitize_filename

from conftest import jpeg_bytes


class TestFileValidation:
    """Tests for the checks run before anything is written."""

    @pytest.fixture(autouse=True)
    def _service(self, upload_root):
        self.service = FileService(upload_root, max_file_size=1_048_576)

    # ── Content Type ──────────────────────────────────────────────────────

    @pytest.mark.parametrize("content_type", ["image/jpeg", "image/jpg", "IMAGE/JPEG"])
    def test_jpeg_content_types_accepted(self, content_type):
        self.service.validate_content_type(content_type)

    @pytest.mark.parametrize("content_type", ["image/png", "application/pdf", "", None])
    def test_other_content_types_rejected(self, content_type):
        with pytest.raises(ValidationError, match="Only JPG/JPEG files are allowed"):
            self.service.validate_content_type(content_type)

    # ── Size ──────────────────────────────────────────────────────────────

    def test_size_within_limit(self):
        self.service.validate_size(None, 1000)

    def test_size_at_limit(self):
        self.service.validate_size(1_048_576, 1_048_576)

    def test_actual_size_over_limit(self):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(None, 1_048_577)

    def test_declared_size_over_limit(self):
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(5_000_000, 1000)

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(0, 0)

    # ── Magic Bytes ───────────────────────────────────────────────────────

    def test_real_jpeg_signature_accepted(self):
        self.service.validate_jpeg_signature(jpeg_bytes(120, 120))

    def test_png_with_jpeg_content_type_rejected(self):
        buffer = io.BytesIO()
        Image.new("RGB", (120, 120)).save(buffer, format="PNG")
        with pytest.raises(ValidationError, match="not a valid JPEG"):
            self.service.validate_upload(buffer.getvalue(), "image/jpeg")

    def test_validation_order_content_type_first(self):
        with pytest.raises(ValidationError, match="Only JPG/JPEG"):
            self.service.validate_upload(b"", "image/png")


class TestFilenames:

    @pytest.mark.parametrize(
        "given, expected",
        [
            ("photo.jpg", "photo.jpg"),
            ("my photo (1).jpg", "my_photo__1_.jpg"),
            ("../../etc/passwd", "passwd"),
            ("..\\..\\boot.ini", "boot.ini"),
            ("ünïcode.jpeg", "_n_code.jpeg"),
            ("", "upload"),
        ],
    )
    def test_sanitize_filename(self, given, expected):
        assert sanitize_filename(given) == expected

    def test_file_extension_lowercased(self):
        assert file_extension("IMG_1.JPEG") == ".jpeg"
        assert file_extension("noext") == ""

    def test_thumbnail_filename_shape(self, upload_root):
        name = FileService(upload_root).thumbnail_filename("../my photo.jpg")
        assert name.startswith("thumb-")
        assert name.endswith("-my_photo.jpg")
        assert "/" not in name

    def test_resolve_thumbnail_inside_directory(self, upload_root):
        service = FileService(upload_root)
        path = service.resolve_thumbnail("thumb-1-2-a.jpg")
        assert path.parent == service.thumbnails_dir

    @pytest.mark.parametrize("name", ["../raw/secret.jpg", "../../etc/passwd", "sub/thumb.jpg"])
    def test_resolve_thumbnail_rejects_traversal(self, upload_root, name):
        with pytest.raises(ValidationError, match="Invalid file path"):
            FileService(upload_root).resolve_thumbnail(name)


class TestStorage:

    @pytest.fixture(autouse=True)
    def _service(self, upload_root):
        self.service = FileService(upload_root)

    @pytest.mark.asyncio
    async def test_store_raw_writes_under_raw(self):
        content = jpeg_bytes(150, 150)
        stored = await self.service.store_raw(content, "strip.JPG")

        assert stored.relative_path.startswith("raw/")
        assert stored.relative_path.endswith(".jpg")
        assert stored.absolute_path.read_bytes() == content

    @pytest.mark.asyncio
    async def test_store_raw_default_extension(self):
        stored = await self.service.store_raw(jpeg_bytes(), "no-extension")
        assert stored.relative_path.endswith(".jpg")

    @pytest.mark.asyncio
    async def test_store_raw_names_are_unique(self):
        first = await self.service.store_raw(jpeg_bytes(), "a.jpg")
        second = await self.service.store_raw(jpeg_bytes(), "a.jpg")
        assert first.absolute_path != second.absolute_path

    @pytest.mark.asyncio
    async def test_store_raw_os_error(self):
        with patch("stripscan.services.file_service.aiofiles.open", side_effect=OSError("disk full")):
            with pytest.raises(FileStorageError):
                await self.service.store_raw(jpeg_bytes(), "a.jpg")

    @pytest.mark.asyncio
    async def test_thumbnail_is_fixed_size_jpeg(self):
        image = Image.new("RGB", (640, 480), (10, 120, 200))
        stored = await self.service.write_thumbnail(image, "strip.jpg")

        assert stored.relative_path.startswith("thumbnails/thumb-")
        with Image.open(stored.absolute_path) as thumb:
            assert thumb.format == "JPEG"
            assert thumb.size == (200, 200)

    @pytest.mark.asyncio
    async def test_thumbnail_from_non_rgb_image(self):
        image = Image.new("RGBA", (300, 300), (0, 0, 0, 0))
        stored = await self.service.write_thumbnail(image, "alpha.jpg")
        assert stored.absolute_path.exists()

    @pytest.mark.asyncio
    async def test_thumbnail_failure_is_typed(self):
        with patch.object(self.service, "encode_thumbnail", side_effect=OSError("read-only")):
            with pytest.raises(ThumbnailGenerationError):
                await self.service.write_thumbnail(Image.new("RGB", (300, 300)), "x.jpg")

    @pytest.mark.asyncio
    async def test_cleanup_removes_file(self):
        stored = await self.service.store_raw(jpeg_bytes(), "a.jpg")
        await self.service.cleanup_file(stored.absolute_path)
        assert not stored.absolute_path.exists()

    @pytest.mark.asyncio
    async def test_cleanup_missing_file_is_ignored(self, upload_root):
        await self.service.cleanup_file(upload_root / "raw" / "missing.jpg")
