"""
NoteMind Backend — Application Package
========================================

AI assistance for notes: Gemini-generated summaries and tags, wrapped in a
reliability layer (error classification, bounded retries, backup/rollback of
AI-written fields, partial-success reporting) so that a failed AI call never
leaves a note worse off than before.

Layers:

    ┌─────────────────────────────────────┐
    │      Routes + Middleware (HTTP)     │  ← status codes, identity, rate limit
    ├─────────────────────────────────────┤
    │   Services (AI orchestration etc.)  │  ← classify, retry, back up, persist
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
