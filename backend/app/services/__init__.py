# Services package init
"""
NoteMind Backend — Services Layer
===================================

Service Inventory:
    - LLMService (abstract) / GeminiService: text generation provider
    - token_estimator: pre-flight token estimate and limit check
    - error_classifier: any exception → ErrorKind + fixed user message
    - error_monitor: bounded in-memory log of classified AI failures
    - retry: RetryController, exponential backoff with jitter (tenacity)
    - backup_service: BackupManager, snapshots of summary/tags with expiry
    - note_store: async persistence of notes, summaries and tags
    - identity: current-user resolution behind an injectable provider
    - ai_service: NoteAIService, orchestrates all of the above per action

Routes receive services through FastAPI dependencies, so tests can swap any
of them for a double.
"""
