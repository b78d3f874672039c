"""
Read-only import history for the admin UI.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from qbank.api.schemas.imports import ImportListResponse, ImportRecordInfo
from qbank.core.security import AuthenticatedUser, require_admin
from qbank.domain.imports.records import get_import, list_imports

router = APIRouter(prefix="/admin", tags=["import-history"])


@router.get("/imports", response_model=ImportListResponse)
def list_imports_endpoint(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    mine_only: bool = True,
    current_user: AuthenticatedUser = Depends(require_admin),
):
    """List imports, newest first. By default only the caller's own uploads."""
    records, total = list_imports(
        admin_id=current_user.id if mine_only else None,
        limit=limit,
        offset=offset,
    )
    return ImportListResponse(
        success=True,
        imports=[ImportRecordInfo.from_record(record) for record in records],
        total_count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/import/{import_id}", response_model=ImportRecordInfo)
def get_import_endpoint(import_id: str, current_user: AuthenticatedUser = Depends(require_admin)):
    record = get_import(import_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Import not found")
    return ImportRecordInfo.from_record(record)
