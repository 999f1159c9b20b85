"""
NoteMind Backend — AI Action Routes
=====================================

What:  HTTP surface for AI summary/tag generation, manual edits and backups.
How:   Thin handlers: resolve the caller's identity, delegate to
       NoteAIService, return its structured result.

Status codes:
    Generation and edit endpoints always answer 200 with an AIOperationResult
    or EditResult; the outcome (including partial success) is in the body.
    Backup endpoints raise NoteMindError subclasses, mapped by the global
    handlers (401 no identity, 404 note not found/not owned).
"""

import logging

from fastapi import APIRouter, Depends, Response

from app.schemas.ai import (
    AIOperationResult,
    BackupCreatedResponse,
    BackupKind,
    EditResult,
    ErrorResponse,
    RollbackResponse,
    SummaryUpdateRequest,
    TagsUpdateRequest,
)
from app.services.ai_service import NoteAIService, get_ai_service
from app.services.identity import IdentityProvider, get_identity_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["AI"])


# ── Generation ────────────────────────────────────────────────────────────

@router.post(
    "/notes/{note_id}/ai/summary",
    response_model=AIOperationResult,
    response_model_exclude_none=True,
    summary="Generate an AI summary for a note",
)
async def generate_summary(
    note_id: str,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> AIOperationResult:
    return await service.generate_summary(note_id, identity)


@router.post(
    "/notes/{note_id}/ai/tags",
    response_model=AIOperationResult,
    response_model_exclude_none=True,
    summary="Generate AI tags for a note",
)
async def generate_tags(
    note_id: str,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> AIOperationResult:
    return await service.generate_tags(note_id, identity)


@router.post(
    "/notes/{note_id}/ai",
    response_model=AIOperationResult,
    response_model_exclude_none=True,
    summary="Generate summary and tags together",
    description=(
        "Runs summary and tag generation concurrently. When only one half "
        "succeeds the response has partial_success=true and partial_data holds "
        "the half that was saved."
    ),
)
async def generate_both(
    note_id: str,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> AIOperationResult:
    return await service.generate_both(note_id, identity)


@router.post(
    "/ai/test-connection",
    response_model=AIOperationResult,
    response_model_exclude_none=True,
    summary="Check that the AI provider answers",
)
async def test_connection(
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> AIOperationResult:
    return await service.test_connection(identity)


# ── Manual edits ──────────────────────────────────────────────────────────

@router.put(
    "/notes/{note_id}/summary",
    response_model=EditResult,
    response_model_exclude_none=True,
    summary="Replace a note's summary by hand",
)
async def update_summary(
    note_id: str,
    body: SummaryUpdateRequest,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> EditResult:
    return await service.update_summary(note_id, body.content, identity)


@router.put(
    "/notes/{note_id}/tags",
    response_model=EditResult,
    response_model_exclude_none=True,
    summary="Replace a note's tags by hand",
)
async def update_tags(
    note_id: str,
    body: TagsUpdateRequest,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> EditResult:
    return await service.update_tags(note_id, body.tags, identity)


# ── Backups ───────────────────────────────────────────────────────────────

_BACKUP_ERRORS = {
    401: {"description": "No authenticated caller", "model": ErrorResponse},
    404: {"description": "Note not found", "model": ErrorResponse},
}


@router.post(
    "/notes/{note_id}/ai/backups",
    response_model=BackupCreatedResponse,
    status_code=201,
    responses=_BACKUP_ERRORS,
    summary="Snapshot the current summary and tags before an AI run",
)
async def create_backup(
    note_id: str,
    kind: BackupKind = BackupKind.BOTH,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> BackupCreatedResponse:
    backup_id = await service.create_backup(note_id, identity, kind)
    return BackupCreatedResponse(backup_id=backup_id)


@router.post(
    "/notes/{note_id}/ai/backups/{backup_id}/rollback",
    response_model=RollbackResponse,
    responses=_BACKUP_ERRORS,
    summary="Restore the summary and tags saved in a backup",
)
async def rollback(
    note_id: str,
    backup_id: str,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> RollbackResponse:
    restored = await service.rollback(note_id, backup_id, identity)
    if not restored:
        logger.info("Rollback of %s for note %s did not restore anything", backup_id, note_id)
    return RollbackResponse(restored=restored)


@router.delete(
    "/notes/{note_id}/ai/backups/{backup_id}",
    status_code=204,
    responses=_BACKUP_ERRORS,
    summary="Discard a backup",
)
async def discard_backup(
    note_id: str,
    backup_id: str,
    service: NoteAIService = Depends(get_ai_service),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Response:
    await service.discard_backup(note_id, backup_id, identity)
    return Response(status_code=204)
