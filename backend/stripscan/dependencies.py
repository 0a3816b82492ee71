"""
StripScan Backend — Service Wiring
====================================

What:  FastAPI dependencies that build the service objects from settings.
Why:   Services take their configuration at construction instead of reading
       module-level globals; this is the one place that reads `settings`.
How:   Each provider is cached, so one instance serves all requests.
       Tests replace them with `app.dependency_overrides`.
"""

from functools import lru_cache

from stripscan.config import settings
from stripscan.services.history_service import HistoryService
from stripscan.services.upload_pipeline import PipelineConfig, UploadPipeline


@lru_cache
def get_upload_pipeline() -> UploadPipeline:
    return UploadPipeline(PipelineConfig.from_settings(settings))


@lru_cache
def get_history_service() -> HistoryService:
    return HistoryService(thumbnails_url_prefix=settings.thumbnails_url_prefix)
