"""
Bulk idea import endpoints.

Route summary
-------------
POST /api/ideas/bulk-import            : upload a spreadsheet, start an import job (202)
GET  /api/import-jobs                  : the caller's jobs, newest first
GET  /api/import-jobs/{job_id}         : poll one job
POST /api/import-jobs/{job_id}/cancel  : stop a running job after the current row
"""
from __future__ import annotations

import logging
import os
import uuid
from typing import List

import aiofiles
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.auth import get_current_user_id, get_import_manager, get_or_create_user
from app.models.database_models import User
from app.models.schemas import BulkImportResponse, ImportJobResponse, RowError
from app.services.import_manager import (
    ImportJobManager,
    ImportJobNotFound,
    ImportJobState,
    ImportJobStateError,
    ImportValidationError,
)
from app.services.spreadsheet_parser import SpreadsheetParseError
from app.utils.helpers import format_error_summary, safe_remove

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(state: ImportJobState) -> ImportJobResponse:
    return ImportJobResponse(
        id=state.job_id,
        user_id=state.user_id,
        filename=state.filename,
        status=state.status.value,
        total_rows=state.total_rows,
        processed_rows=state.processed_rows,
        successful_rows=state.successful_rows,
        failed_rows=state.failed_rows,
        errors=[RowError(**e) for e in state.errors],
        results=state.results,
        started_at=state.started_at,
        completed_at=state.completed_at,
        error_summary=format_error_summary(state.errors, settings.IMPORT_ERROR_PREVIEW_LIMIT),
    )


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@router.post(
    "/ideas/bulk-import",
    response_model=BulkImportResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def bulk_import(
    file: UploadFile = File(...),
    user: User = Depends(get_or_create_user),
    manager: ImportJobManager = Depends(get_import_manager),
    db: AsyncSession = Depends(get_db),
) -> BulkImportResponse:
    """
    Accept a ``.csv``, ``.xlsx`` or ``.xls`` file and import it in the background.

    Returns as soon as the job exists; poll ``GET /api/import-jobs/{jobId}``
    for progress.
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Upload must include a filename.",
        )
    try:
        file_ext = manager.validate_extension(file.filename)
    except ImportValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    # The worker writes ideas owned by this user from other sessions
    await db.commit()

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    file_path = os.path.join(settings.UPLOAD_DIR, f"{uuid.uuid4().hex}{file_ext}")
    file_size = 0

    # Stream to disk while enforcing the size limit
    async with aiofiles.open(file_path, "wb") as out:
        while True:
            chunk = await file.read(1024 * 1024)   # 1 MB slices
            if not chunk:
                break
            file_size += len(chunk)
            if file_size > settings.MAX_FILE_SIZE:
                await out.close()
                safe_remove(file_path)
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=(
                        f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB "
                        "size limit."
                    ),
                )
            await out.write(chunk)

    logger.info("Saved import upload %r → %s (%d bytes)", file.filename, file_path, file_size)

    try:
        job = await manager.create_job(user.id, file.filename, file_path)
    except ImportValidationError as exc:
        safe_remove(file_path)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except SpreadsheetParseError as exc:
        safe_remove(file_path)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except Exception:
        safe_remove(file_path)
        raise

    return BulkImportResponse(
        job_id=job.job_id,
        status=job.status.value,
        total_rows=job.total_rows,
        message=f"Import started for {job.total_rows} row(s).",
    )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@router.get("/import-jobs", response_model=List[ImportJobResponse])
async def list_import_jobs(
    user_id: str = Depends(get_current_user_id),
    manager: ImportJobManager = Depends(get_import_manager),
) -> List[ImportJobResponse]:
    jobs = await manager.list_jobs(user_id)
    return [_to_response(job) for job in jobs]


@router.get("/import-jobs/{job_id}", response_model=ImportJobResponse)
async def get_import_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: ImportJobManager = Depends(get_import_manager),
) -> ImportJobResponse:
    """Current snapshot of a job.  Other users' jobs read as 404."""
    try:
        state = await manager.load_status(job_id, user_id)
    except ImportJobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return _to_response(state)


@router.post("/import-jobs/{job_id}/cancel", response_model=ImportJobResponse)
async def cancel_import_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: ImportJobManager = Depends(get_import_manager),
) -> ImportJobResponse:
    """Request cancellation; rows already imported stay imported."""
    try:
        state = await manager.cancel(job_id, user_id)
    except ImportJobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ImportJobStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return _to_response(state)
