from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from qbank.domain.imports.models import ImportProgress, ImportRecord, ImportStatus


class ImportQueuedResponse(BaseModel):
    """Returned by the upload endpoint as soon as the import is queued."""
    import_id: str
    status: ImportStatus = ImportStatus.QUEUED
    filename: str
    estimated_time_minutes: int
    message: str = "Import started. Check progress using the import ID."


class ImportProgressResponse(BaseModel):
    import_id: str
    status: ImportStatus
    processed: int
    total: int
    progress_percent: int = Field(ge=0, le=100)
    successful: int
    failed: int
    duplicates: int = 0
    estimated_remaining_minutes: int = 0

    @classmethod
    def from_progress(cls, progress: ImportProgress) -> "ImportProgressResponse":
        return cls(
            import_id=progress.import_id,
            status=progress.status,
            processed=progress.processed,
            total=progress.total,
            progress_percent=progress.percent_complete,
            successful=progress.successful,
            failed=progress.failed,
            duplicates=progress.duplicates,
            estimated_remaining_minutes=progress.estimated_remaining_minutes,
        )


class RollbackResponse(BaseModel):
    import_id: str
    status: ImportStatus = ImportStatus.ROLLBACK
    deleted_count: int
    message: str


class ImportRecordInfo(BaseModel):
    """Metadata about one CSV import."""
    id: str
    admin_id: str
    csv_filename: str
    total_rows: int
    successful_imports: int
    duplicate_count: int
    error_count: int
    status: ImportStatus
    error_details: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ImportRecord) -> "ImportRecordInfo":
        return cls(
            id=record.id,
            admin_id=record.admin_id,
            csv_filename=record.csv_filename,
            total_rows=record.total_rows,
            successful_imports=record.successful_imports,
            duplicate_count=record.duplicate_count,
            error_count=record.error_count,
            status=record.status,
            error_details=record.error_details,
            started_at=record.started_at,
            completed_at=record.completed_at,
            created_at=record.created_at,
        )


class ImportListResponse(BaseModel):
    """Response wrapper for a page of imports."""
    success: bool
    imports: List[ImportRecordInfo]
    total_count: int
    limit: int
    offset: int
