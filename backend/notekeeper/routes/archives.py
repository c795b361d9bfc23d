"""
NoteKeeper Backend — Archive Route Handlers
=============================================

What:  Request, poll, download, list and delete attachment archives of a note.
How:   POST returns 202 immediately; the archive is produced later by the
       queue worker. Clients poll the status endpoint until the job is
       Completed or Failed, then fetch the archive from the Location URL.

    POST   /api/notes/{note_id}/archives                  → 202 + Location
    GET    /api/notes/{note_id}/archives                  → finished archives
    GET    /api/notes/{note_id}/archives/jobs             → all job statuses
    GET    /api/notes/{note_id}/archives/{job_id}/status  → one job status
    GET    /api/notes/{note_id}/archives/{job_id}         → zip bytes
    DELETE /api/notes/{note_id}/archives/{job_id}         → 204

    `/jobs` is declared before `/{job_id}` so it is not taken for a job id.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.container import ServiceContainer, get_container
from notekeeper.database import get_db_session
from notekeeper.routes.headers import content_disposition, url_for_path
from notekeeper.schemas.archive import (
    ArchiveAcceptedResponse,
    ArchiveResponse,
    JobStatusResponse,
)
from notekeeper.schemas.note import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes/{note_id}/archives", tags=["Archives"])


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ArchiveAcceptedResponse,
    responses={
        404: {"description": "Note not found", "model": ErrorResponse},
        500: {"description": "Queue or status store failure", "model": ErrorResponse},
    },
    summary="Request a zip archive of all attachments",
)
async def request_archive(
    note_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> JSONResponse:
    """
    Queue an archive job.

    Location points at the archive download URL, which answers 404 until the
    job has completed.
    """
    ticket = await container.archive_dispatcher.request_archive(db, note_id)
    archive_url = url_for_path(request, "get_archive", note_id=note_id, job_id=ticket.job_id)
    status_url = url_for_path(request, "get_job_status", note_id=note_id, job_id=ticket.job_id)
    body = ArchiveAcceptedResponse(
        zip_file_id=ticket.job_id,
        status=ticket.record.state,
        status_url=status_url,
        archive_url=archive_url,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json", by_alias=True),
        headers={"Location": archive_url},
    )


@router.get(
    "",
    response_model=List[ArchiveResponse],
    responses={404: {"description": "Note or archive container not found", "model": ErrorResponse}},
    summary="List finished archives",
)
async def list_archives(
    note_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> List[ArchiveResponse]:
    objects = await container.archive_service.list_archives(db, note_id)
    return [ArchiveResponse.from_properties(props) for props in objects]


@router.get(
    "/jobs",
    response_model=List[JobStatusResponse],
    responses={404: {"description": "Note not found or no jobs", "model": ErrorResponse}},
    summary="Status of every archive job of a note",
)
async def list_job_statuses(
    note_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> List[JobStatusResponse]:
    records = await container.status_query.get_all(db, note_id)
    return [JobStatusResponse.from_record(record) for record in records]


@router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    responses={404: {"description": "Note or job not found", "model": ErrorResponse}},
    summary="Status of one archive job",
)
async def get_job_status(
    note_id: str,
    job_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> JobStatusResponse:
    record = await container.status_query.get_one(db, note_id, job_id)
    return JobStatusResponse.from_record(record)


@router.get(
    "/{job_id}",
    response_class=Response,
    responses={
        200: {"description": "The zip archive", "content": {"application/zip": {}}},
        404: {"description": "Not produced yet, or note/archive unknown", "model": ErrorResponse},
    },
    summary="Download an archive",
)
async def get_archive(
    note_id: str,
    job_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    props, content = await container.archive_service.get_archive(db, note_id, job_id)
    return Response(
        content=content,
        media_type=props.content_type,
        headers={"Content-Disposition": content_disposition(job_id)},
    )


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={404: {"description": "Note, container or archive not found", "model": ErrorResponse}},
    summary="Delete an archive",
)
async def delete_archive(
    note_id: str,
    job_id: str,
    db: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
) -> Response:
    await container.archive_service.delete_archive(db, note_id, job_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
