# Routes package init
"""
NoteMind Backend — API Routes Package
=======================================

Route Inventory:
    - ai.py:      POST /api/notes/{id}/ai/summary    (generate summary)
                  POST /api/notes/{id}/ai/tags       (generate tags)
                  POST /api/notes/{id}/ai            (summary + tags, partial success)
                  POST /api/ai/test-connection       (round trip to Gemini)
                  PUT  /api/notes/{id}/summary       (manual summary edit)
                  PUT  /api/notes/{id}/tags          (manual tags edit)
                  POST/DELETE /api/notes/{id}/ai/backups[/{backup_id}[/rollback]]
    - admin.py:   GET/DELETE /api/admin/ai-errors/*  (error monitor, X-Admin-Key)
    - health.py:  GET  /health                       (service health check)

Routes stay thin: resolve identity, call NoteAIService, return its result.
"""
