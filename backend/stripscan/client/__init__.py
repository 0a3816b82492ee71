# Client package init
"""
StripScan Client
==================

What:  The capture-side half of StripScan: prepares photos, uploads them,
       keeps an offline queue and watches the server's health.
Why:   Field devices lose connectivity; a photo taken offline must reach the
       server later, in the order it was taken, without the user retrying.

Module Inventory:
    - config.py:   ClientSettings (STRIPSCAN_CLIENT_* environment variables)
    - errors.py:   ConnectivityError, DuplicateSubmissionError, UploadRejectedError,
                   ServiceError
    - api.py:      StripScanClient, the httpx adapter for the REST endpoints
    - queue.py:    QueuedSubmission, JsonFileQueueStorage, OfflineQueue (FIFO replay)
    - health.py:   HealthMonitor, fixed-interval polling that triggers replay
    - uploader.py: prepare_submission, SubmissionUploader, describe_outcome

Flow:
    photo → prepare_submission → SubmissionUploader.submit
        ├── server answered      → SubmitResult(success | no_qr_code | expired | duplicate)
        └── server unreachable   → OfflineQueue.enqueue → SubmitResult(queued)
    HealthMonitor (every 30s) → reachable → OfflineQueue.replay_all(client.upload)
"""

from stripscan.client.api import StripScanClient
from stripscan.client.config import ClientSettings
from stripscan.client.errors import (
    ConnectivityError,
    DuplicateSubmissionError,
    ServiceError,
    UploadRejectedError,
)
from stripscan.client.health import HealthMonitor
from stripscan.client.queue import JsonFileQueueStorage, OfflineQueue, QueuedSubmission
from stripscan.client.uploader import (
    Outcome,
    SubmissionUploader,
    SubmitResult,
    describe_outcome,
    prepare_submission,
)

__all__ = [
    "ClientSettings",
    "ConnectivityError",
    "DuplicateSubmissionError",
    "HealthMonitor",
    "JsonFileQueueStorage",
    "OfflineQueue",
    "Outcome",
    "QueuedSubmission",
    "ServiceError",
    "StripScanClient",
    "SubmissionUploader",
    "SubmitResult",
    "UploadRejectedError",
    "describe_outcome",
    "prepare_submission",
]
