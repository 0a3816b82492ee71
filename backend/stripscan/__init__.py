"""
StripScan Backend — Application Package Initializer
===================================================

What: Marks the `stripscan` directory as a Python package.
Why:  Enables module imports like `from stripscan.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    The server follows a layered architecture; the companion client lives in
    `stripscan.client` and talks to the server over HTTP only.

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (Upload Pipeline, QR,    │  ← Orchestration, validation
    │   History, File storage)            │
    ├─────────────────────────────────────┤
    │  Repositories / Models & Schemas    │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Routes map typed errors to status codes; services never know about HTTP.
"""

__version__ = "1.0.0"
