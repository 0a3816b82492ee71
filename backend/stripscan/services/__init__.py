# Services package init
"""
StripScan Backend — Services Layer
=====================================

What:  Business logic between the routes (HTTP) and the repository (database).
How:   Services take plain values and an AsyncSession, apply the rules and
       return response models. They are injected into routes via FastAPI's
       dependency injection (see stripscan.dependencies).

Service Inventory:
    - QRExtractor:     Downscale, detect, classify a QR code (never raises)
    - FileService:     Upload validation, raw storage, thumbnails, cleanup
    - UploadPipeline:  validate → store → decode → thumbnail → QR → dedupe → persist
    - HistoryService:  Paginated history and single-record lookup with
                       expiration derived at read time
"""
