"""
StripScan Client — Errors
============================

What:  Typed failures raised by StripScanClient.
Why:   The uploader decides between "queue for later" and "tell the user" by
       exception type, never by inspecting message text.

Hierarchy (all derive from stripscan.exceptions.StripScanError):
    ConnectivityError        transport error, timeout, 502/503/504 → offline queue
    DuplicateSubmissionError 409, carries the existing submission id
    UploadRejectedError      any other 4xx (bad file, bad image, rate limit)
    ServiceError             any other 5xx
"""

from typing import Any, Dict, Optional

from stripscan.exceptions import ErrorKind, StripScanError


class ConnectivityError(StripScanError):
    """The server could not be reached or answered as unavailable."""

    kind = ErrorKind.CONNECTIVITY_FAILURE

    def __init__(
        self,
        message: str = "Backend unreachable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class HttpStatusError(StripScanError):
    """Base for failures where the server answered with an error status."""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["status_code"] = status_code
        if error_code:
            ctx["error_code"] = error_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.error_code = error_code


class DuplicateSubmissionError(HttpStatusError):
    """The server already holds a submission with this QR code."""

    kind = ErrorKind.DUPLICATE_QR_CODE

    def __init__(self, message: str, existing_id: Optional[str] = None):
        super().__init__(
            status_code=409,
            message=message,
            error_code=ErrorKind.DUPLICATE_QR_CODE.value,
            context={"existing_id": existing_id},
        )
        self.existing_id = existing_id


class UploadRejectedError(HttpStatusError):
    """The server refused the request (4xx other than 409)."""

    kind = ErrorKind.UPLOAD_REJECTED


class ServiceError(HttpStatusError):
    """The server failed while handling the request (5xx)."""

    kind = ErrorKind.SERVICE_ERROR
