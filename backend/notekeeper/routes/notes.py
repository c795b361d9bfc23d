"""
NoteKeeper Backend — Notes Route Handlers
===========================================

What:  CRUD on notes: /api/notes and /api/notes/{note_id}.
How:   Validates bodies with the payload schemas, delegates to NoteService,
       sets status codes and the Location header.
Who:   Any API client.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.container import ServiceContainer, get_container
from notekeeper.database import get_db_session
from notekeeper.schemas.note import (
    ErrorResponse,
    NoteCreatePayload,
    NoteResponse,
    NoteUpdatePayload,
)

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api", tags=["Notes"])


@router.get(
    "/notes",
    response_model=List[NoteResponse],
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="List all notes",
)
async def list_notes(
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> List[NoteResponse]:
    notes = await container.note_service.list_notes(db)
    return [NoteResponse.from_note(note) for note in notes]


@router.post(
    "/notes",
    status_code=status.HTTP_201_CREATED,
    response_model=NoteResponse,
    responses={
        403: {"description": "Note limit reached", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Create a note",
)
async def create_note(
    payload: NoteCreatePayload,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> NoteResponse:
    """
    Create a note. 403 once settings.max_notes notes exist.

    The Location header points at GET /api/notes/{id}.
    """
    note = await container.note_service.create_note(db, payload)
    response.headers["Location"] = str(request.url_for("get_note", note_id=note.id))
    return NoteResponse.from_note(note)


@router.get(
    "/notes/{note_id}",
    response_model=NoteResponse,
    responses={
        404: {"description": "Note not found", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Get a single note by ID",
)
async def get_note(
    note_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> NoteResponse:
    note = await container.note_service.get_note(db, note_id)
    return NoteResponse.from_note(note)


@router.patch(
    "/notes/{note_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={
        404: {"description": "Note not found", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Update a note",
)
async def update_note(
    note_id: str,
    payload: NoteUpdatePayload,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    """Blank or missing fields are left unchanged."""
    await container.note_service.update_note(db, note_id, payload)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/notes/{note_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={
        404: {"description": "Note not found", "model": ErrorResponse},
        409: {"description": "An archive job of the note is in progress", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Delete a note with its attachments and archives",
)
async def delete_note(
    note_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    """
    Delete a note, its attachments, its archives and its archive job records.

    Refused with 409 while any archive job of the note is InProgress; in
    that case nothing is deleted.
    """
    await container.note_service.delete_note(db, note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
