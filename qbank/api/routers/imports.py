"""
Admin endpoints for CSV question imports: upload, progress polling and rollback.
"""
import asyncio
import logging
import math

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from qbank.api.dependencies import ALLOWED_EXTENSIONS, get_import_queue, get_rate_limit_store
from qbank.api.schemas.imports import ImportProgressResponse, ImportQueuedResponse, RollbackResponse
from qbank.core.config import settings
from qbank.core.rate_limit import RateLimitStore
from qbank.core.security import AuthenticatedUser, require_admin
from qbank.domain.imports.batch import get_progress
from qbank.domain.imports.orchestrator import start_import
from qbank.domain.imports.results import Err, ImportErrorKind
from qbank.domain.imports.rollback import rollback_import
from qbank.domain.imports.tasks import ImportTaskQueue

router = APIRouter(prefix="/admin", tags=["imports"])

logger = logging.getLogger(__name__)

ESTIMATED_MS_PER_ROW = 100

_ERROR_STATUS = {
    ImportErrorKind.NOT_FOUND: 404,
    ImportErrorKind.ALREADY_ROLLED_BACK: 409,
    ImportErrorKind.INVALID_STATE: 409,
    ImportErrorKind.ROLLBACK_FAILED: 500,
}


def raise_for_error(error: Err) -> None:
    raise HTTPException(status_code=_ERROR_STATUS.get(error.kind, 500), detail=error.message)


def estimate_minutes(file_content: bytes) -> int:
    """Rough duration estimate: 100 ms per line, at least one minute."""
    lines = file_content.count(b"\n") + 1
    return max(1, math.ceil((lines * ESTIMATED_MS_PER_ROW) / 60000))


@router.post("/import/csv", status_code=202, response_model=ImportQueuedResponse)
async def upload_question_csv(
    file: UploadFile = File(...),
    current_user: AuthenticatedUser = Depends(require_admin),
    queue: ImportTaskQueue = Depends(get_import_queue),
    rate_limits: RateLimitStore = Depends(get_rate_limit_store),
):
    """
    Queue a CSV of questions for import.

    The import record is created immediately in ``queued`` status and the
    pipeline runs on the background work queue. Poll
    ``/admin/import/{import_id}/progress`` for its state.
    """
    filename = file.filename or "upload.csv"
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Only .csv files can be imported")

    file_content = await file.read()
    if not file_content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    max_bytes = settings.upload_max_file_size_mb * 1024 * 1024
    if len(file_content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {settings.upload_max_file_size_mb} MB upload limit",
        )

    # Only uploads that would start an import count against the quota.
    decision = rate_limits.hit(f"csv-import:{current_user.id}")
    if decision.limited:
        raise HTTPException(status_code=429, detail="Too many imports, try again later")

    loop = asyncio.get_running_loop()
    import_id = await loop.run_in_executor(None, start_import, filename, current_user.id)
    queue.submit(import_id, file_content, filename, current_user.id)
    logger.info("Admin %s queued import %s for '%s'", current_user.id, import_id, filename)

    return ImportQueuedResponse(
        import_id=import_id,
        filename=filename,
        estimated_time_minutes=estimate_minutes(file_content),
    )


@router.get("/import/{import_id}/progress", response_model=ImportProgressResponse)
def get_import_progress(import_id: str, current_user: AuthenticatedUser = Depends(require_admin)):
    result = get_progress(import_id)
    if isinstance(result, Err):
        raise_for_error(result)
    return ImportProgressResponse.from_progress(result.value)


@router.post("/import/{import_id}/rollback", response_model=RollbackResponse)
def rollback_import_endpoint(import_id: str, current_user: AuthenticatedUser = Depends(require_admin)):
    result = rollback_import(import_id)
    if isinstance(result, Err):
        logger.warning("Rollback of %s by %s refused: %s", import_id, current_user.id, result.message)
        raise_for_error(result)
    summary = result.value
    return RollbackResponse(
        import_id=summary.import_id,
        deleted_count=summary.deleted_count,
        message=f"Rollback completed. Deleted {summary.deleted_count} imported questions.",
    )
