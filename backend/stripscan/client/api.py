"""
StripScan Client — HTTP Adapter
==================================

What:  Async client for the StripScan REST API built on httpx.
Why:   Turns every server answer into either a validated response model or a
       typed error, so callers never look at status codes or message text.
How:   One httpx.AsyncClient with an explicit timeout. Transport failures are
       retried with tenacity (exponential backoff with jitter) and, once the
       attempts are used up, raised as ConnectivityError. Uploads are not
       idempotent: they are only retried when the request never left the
       client (connect errors), so a lost reply is queued instead of resent.

Status mapping:
    2xx              → parsed response model
    409              → DuplicateSubmissionError (existing id from details)
    502 / 503 / 504  → ConnectivityError (gateway up, service not)
    other 4xx        → UploadRejectedError
    other 5xx        → ServiceError
    transport error  → ConnectivityError (timeouts included)

History envelopes:
    list_submissions() accepts a bare array, {"submissions": [...]} or
    {"items": [...]}. Any other shape is treated as an empty page.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type, Union
from uuid import UUID

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from stripscan.client.config import ClientSettings
from stripscan.client.errors import (
    ConnectivityError,
    DuplicateSubmissionError,
    ServiceError,
    UploadRejectedError,
)
from stripscan.client.queue import QueuedSubmission
from stripscan.schemas.submission import (
    SubmissionDetail,
    SubmissionListItem,
    UploadResponse,
)

logger = logging.getLogger(__name__)

GATEWAY_STATUSES = frozenset({502, 503, 504})
UPLOAD_FIELD = "image"

# Failures where the server cannot have seen the request
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def normalize_submission_list(body: Any) -> List[Dict[str, Any]]:
    """Extract the list of submission dicts from any supported envelope."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ("submissions", "items"):
            if isinstance(body.get(key), list):
                return body[key]
    return []


def _error_fields(response: httpx.Response) -> Dict[str, Any]:
    """Best-effort read of the server's {"error", "message", "details"} body."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class StripScanClient:
    """
    Async adapter for the StripScan API.

    Usage:
        async with StripScanClient(ClientSettings()) as client:
            result = await client.upload(item)

    Args:
        config:    Client settings (base URL, timeout, retry policy)
        transport: Optional httpx transport (httpx.MockTransport in tests)
    """

    def __init__(
        self,
        config: Optional[ClientSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ClientSettings()
        self._http = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.request_timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "StripScanClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Transport ─────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        retry_on: Tuple[Type[Exception], ...] = (httpx.TransportError,),
        **kwargs,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(retry_on),
            stop=stop_after_attempt(self.config.retry_max_attempts),
            wait=(
                wait_exponential(
                    multiplier=self.config.retry_min_wait,
                    max=self.config.retry_max_wait,
                )
                + wait_random(0, self.config.retry_min_wait)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectivityError(
                message=f"Request timed out after {self.config.request_timeout}s",
                context={"url": url, "error_type": type(e).__name__},
            ) from e
        except httpx.TransportError as e:
            raise ConnectivityError(
                message=f"Backend unreachable: {e}",
                context={"url": url, "error_type": type(e).__name__},
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        fields = _error_fields(response)
        message = fields.get("message") or fields.get("detail") or f"HTTP {status}"
        if not isinstance(message, str):
            message = str(message)
        error_code = fields.get("error")

        if status == 409:
            details = fields.get("details") or {}
            raise DuplicateSubmissionError(message=message, existing_id=details.get("existing_id"))
        if status in GATEWAY_STATUSES:
            raise ConnectivityError(
                message=f"Backend unavailable (HTTP {status})",
                context={"status_code": status, "url": str(response.request.url)},
            )
        if status < 500:
            raise UploadRejectedError(status_code=status, message=message, error_code=error_code)
        raise ServiceError(status_code=status, message=message, error_code=error_code)

    # ── Endpoints ─────────────────────────────────────────────────────────

    async def check_health(self) -> Dict[str, Any]:
        """GET /health; any failure (including 503 unhealthy) raises ConnectivityError."""
        response = await self._request("GET", "/health")
        self._raise_for_status(response)
        # A proxy or captive portal can answer 200 with an HTML page
        try:
            body = response.json()
        except ValueError as e:
            raise ConnectivityError(
                message="Health check returned a non-JSON body",
                context={"content_type": response.headers.get("content-type")},
            ) from e
        if not isinstance(body, dict) or "status" not in body:
            raise ConnectivityError(
                message="Health check returned an unexpected body",
                context={"body_type": type(body).__name__},
            )
        return body

    async def upload(self, submission: QueuedSubmission) -> UploadResponse:
        """POST /test-strips/upload with the prepared JPEG as multipart field 'image'."""
        files = {
            UPLOAD_FIELD: (submission.file_name, submission.payload, submission.content_type),
        }
        response = await self._request(
            "POST", "/test-strips/upload", retry_on=UNSENT_ERRORS, files=files
        )
        self._raise_for_status(response)
        result = UploadResponse.model_validate(response.json())
        logger.info(
            "Uploaded %s: id=%s qr_code=%s valid=%s",
            submission.file_name,
            result.id,
            result.qr_code,
            result.qr_code_valid,
        )
        return result

    async def list_submissions(self, page: int = 1, limit: int = 10) -> List[SubmissionListItem]:
        response = await self._request(
            "GET", "/test-strips/list", params={"page": page, "limit": limit}
        )
        self._raise_for_status(response)
        return [
            SubmissionListItem.model_validate(item)
            for item in normalize_submission_list(response.json())
        ]

    async def get_submission(self, submission_id: Union[str, UUID]) -> Optional[SubmissionDetail]:
        """Returns None when the server has no such submission."""
        response = await self._request("GET", f"/test-strips/{submission_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return SubmissionDetail.model_validate(response.json())
