"""
StripScan Backend — API Endpoint Tests
=========================================

What:  HTTP-level tests for the upload, history, thumbnail and health routes.
How:   HTTPX AsyncClient over ASGITransport with the database session and the
       services overridden (see conftest.test_client).

Test Strategy:
    ✅ Status codes chosen from the error kind (400 / 404 / 409 / 429 / 500)
    ✅ camelCase response bodies
    ✅ Pagination header and envelope
    ✅ Thumbnail traversal rejection
"""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from stripscan.exceptions import PersistenceError
from stripscan.middleware.rate_limit import RateLimitMiddleware

from conftest import jpeg_bytes


def image_part(content=None, filename="strip.jpg", content_type="image/jpeg"):
    return {"image": (filename, content if content is not None else jpeg_bytes(), content_type)}


class TestUploadEndpoint:

    @pytest.mark.asyncio
    async def test_upload_success(self, test_client):
        response = await test_client.post("/test-strips/upload", files=image_part())

        assert response.status_code == 201
        body = response.json()
        assert body["qrCode"] == "ELI-2099-XYZ"
        assert body["qrCodeValid"] is True
        assert body["isExpired"] is False
        assert body["expirationYear"] == 2099
        assert body["status"] == "processed"
        assert body["imageMetadata"] == {
            "size": len(jpeg_bytes()),
            "dimensions": "300x300",
            "mimeType": "image/jpeg",
            "extension": ".jpg",
        }
        assert "processedAt" in body
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_missing_file(self, test_client):
        response = await test_client.post("/test-strips/upload", data={"other": "x"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert response.json()["message"] == "No image file provided"

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, test_client):
        response = await test_client.post(
            "/test-strips/upload",
            files=image_part(filename="strip.png", content_type="image/png"),
        )
        assert response.status_code == 400
        assert "Only JPG/JPEG" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_lying_content_type(self, test_client):
        response = await test_client.post(
            "/test-strips/upload",
            files=image_part(content=b"%PDF-1.7 not a photo"),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Uploaded file is not a valid JPEG image"

    @pytest.mark.asyncio
    async def test_too_small_image(self, test_client):
        response = await test_client.post(
            "/test-strips/upload",
            files=image_part(content=jpeg_bytes(99, 300)),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "image_invalid"
        assert "too small" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, test_client):
        first = await test_client.post("/test-strips/upload", files=image_part())
        second = await test_client.post("/test-strips/upload", files=image_part())

        assert second.status_code == 409
        body = second.json()
        assert body["error"] == "duplicate_qr_code"
        assert body["details"]["existing_id"] == first.json()["id"]
        assert "QR code already exists" in body["message"]

    @pytest.mark.asyncio
    async def test_server_error_hides_details(self, test_client):
        with patch.object(
            test_client.pipeline,
            "process",
            new=AsyncMock(side_effect=PersistenceError(context={"sql": "INSERT ..."})),
        ):
            response = await test_client.post("/test-strips/upload", files=image_part())

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "persistence_failed"
        assert body["message"] == "Failed to process upload"
        assert body["details"] is None


class TestHistoryEndpoints:

    @pytest.mark.asyncio
    async def test_list_envelope_and_header(self, test_client):
        for code in ("ELI-2099-AAA", "ELI-2020-BBB"):
            test_client.decoder.payload = code
            assert (await test_client.post("/test-strips/upload", files=image_part())).status_code == 201

        response = await test_client.get("/test-strips/list", params={"page": 1, "limit": 10})

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        body = response.json()
        assert body["page"] == 1
        assert body["limit"] == 10
        assert body["totalCount"] == 2
        items = {item["qrCode"]: item for item in body["submissions"]}
        assert items["ELI-2020-BBB"]["isExpired"] is True
        assert items["ELI-2099-AAA"]["isExpired"] is False
        assert items["ELI-2099-AAA"]["thumbnailUrl"].startswith("/uploads/thumbnails/thumb-")

    @pytest.mark.asyncio
    async def test_list_defaults(self, test_client):
        body = (await test_client.get("/test-strips/list")).json()
        assert body["page"] == 1
        assert body["limit"] == 10
        assert body["submissions"] == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}, {"page": "x"}])
    async def test_list_rejects_bad_pagination(self, test_client, params):
        response = await test_client.get("/test-strips/list", params=params)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_detail(self, test_client):
        created = (await test_client.post("/test-strips/upload", files=image_part())).json()
        response = await test_client.get(f"/test-strips/{created['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == created["id"]
        assert body["imageDimensions"] == "300x300"
        assert body["originalImagePath"].startswith("raw/")
        assert body["errorMessage"] is None

    @pytest.mark.asyncio
    async def test_detail_unknown_id(self, test_client):
        response = await test_client.get(f"/test-strips/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestThumbnailEndpoint:

    @pytest.mark.asyncio
    async def test_serves_generated_thumbnail(self, test_client):
        created = (await test_client.post("/test-strips/upload", files=image_part())).json()
        detail = (await test_client.get(f"/test-strips/{created['id']}")).json()

        response = await test_client.get(detail["thumbnailUrl"])
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert response.content.startswith(b"\xff\xd8\xff")

    @pytest.mark.asyncio
    async def test_missing_thumbnail(self, test_client):
        response = await test_client.get("/uploads/thumbnails/thumb-0-0-none.jpg")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_traversal_rejected(self, test_client):
        response = await test_client.get("/uploads/thumbnails/..%2Fraw%2Fsecret.jpg")
        assert response.status_code in (400, 404)
        assert response.headers["content-type"].startswith("application/json")


class TestHealthEndpoint:

    @pytest.mark.asyncio
    async def test_health_ok(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "connected"
        assert "uptimeSeconds" in body

    @pytest.mark.asyncio
    async def test_health_database_down(self, test_client):
        broken = MagicMock()
        broken.connect.side_effect = OSError("connection refused")
        with patch("stripscan.database.engine", broken):
            response = await test_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_uploads_over_limit_get_429(self):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, max_requests=2, window_seconds=60)

        @app.post("/test-strips/upload")
        async def fake_upload():
            return {"ok": True}

        @app.get("/test-strips/list")
        async def fake_list():
            return []

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            statuses = [(await client.post("/test-strips/upload")).status_code for _ in range(3)]
            listed = await client.get("/test-strips/list")
            limited = await client.post("/test-strips/upload")

        assert statuses == [200, 200, 429]
        assert listed.status_code == 200
        assert limited.json()["error"] == "rate_limit_exceeded"
        assert int(limited.headers["Retry-After"]) >= 1
