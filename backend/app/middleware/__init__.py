# Middleware package init
"""
NoteMind Backend — Middleware Package
=======================================

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Rate Limit: only AI generation requests; rejected before anything else runs
    2. Request ID: correlation id for log lines and error bodies
    3. Logging: one access line with status and duration
"""
