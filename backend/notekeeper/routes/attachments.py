"""
NoteKeeper Backend — Attachment Route Handlers
================================================

What:  /api/notes/{note_id}/attachments[/{attachment_id}]
How:   PUT takes multipart form data with the file under `fileData`; the
       part's content type is stored with the object and returned on GET.
Who:   Any API client.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.container import ServiceContainer, get_container
from notekeeper.database import get_db_session
from notekeeper.routes.headers import content_disposition, url_for_path
from notekeeper.schemas.note import AttachmentResponse, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes/{note_id}/attachments", tags=["Attachments"])


@router.get(
    "",
    response_model=List[AttachmentResponse],
    responses={404: {"description": "Note or container not found", "model": ErrorResponse}},
    summary="List the attachments of a note",
)
async def list_attachments(
    note_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> List[AttachmentResponse]:
    objects = await container.attachment_service.list_attachments(db, note_id)
    return [AttachmentResponse.from_properties(props) for props in objects]


@router.put(
    "/{attachment_id}",
    status_code=status.HTTP_201_CREATED,
    response_class=Response,
    responses={
        201: {"description": "Attachment created"},
        204: {"description": "Attachment replaced"},
        400: {"description": "Invalid attachment id or file too large", "model": ErrorResponse},
        403: {"description": "Attachment limit reached", "model": ErrorResponse},
        404: {"description": "Note not found", "model": ErrorResponse},
    },
    summary="Upload or replace an attachment",
)
async def put_attachment(
    note_id: str,
    attachment_id: str,
    request: Request,
    fileData: UploadFile = File(...),
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    content = await fileData.read()
    _, created = await container.attachment_service.put_attachment(
        db,
        note_id,
        attachment_id,
        content,
        content_type=fileData.content_type,
    )
    if not created:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    location = url_for_path(request, "get_attachment", note_id=note_id, attachment_id=attachment_id)
    return Response(status_code=status.HTTP_201_CREATED, headers={"Location": location})


@router.get(
    "/{attachment_id}",
    response_class=Response,
    responses={
        200: {"description": "Attachment bytes"},
        404: {"description": "Note, container or attachment not found", "model": ErrorResponse},
    },
    summary="Download an attachment",
)
async def get_attachment(
    note_id: str,
    attachment_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    props, content = await container.attachment_service.get_attachment(db, note_id, attachment_id)
    return Response(
        content=content,
        media_type=props.content_type,
        headers={"Content-Disposition": content_disposition(attachment_id)},
    )


@router.delete(
    "/{attachment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={404: {"description": "Note, container or attachment not found", "model": ErrorResponse}},
    summary="Delete an attachment",
)
async def delete_attachment(
    note_id: str,
    attachment_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    await container.attachment_service.delete_attachment(db, note_id, attachment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
