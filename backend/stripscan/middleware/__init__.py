# Middleware package init
"""
StripScan Backend — Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    1. Rate Limit: upload bursts are rejected before the body is processed
    2. Request ID: correlation ID shared by every log line of a request
    3. Logging: method, path, status and duration, tagged with the request ID

    Responses travel back through the same chain in reverse, so the request ID
    header is attached and the duration covers the whole route.
"""
