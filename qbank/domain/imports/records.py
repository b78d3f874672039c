"""
Persistence for ``question_imports`` rows, one per uploaded CSV.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text

from qbank.utils.serialization import dump_json, from_db_timestamp, load_json, to_db_timestamp, utcnow
from qbank.db.session import get_engine

from .models import ImportRecord, ImportStatus

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = """
    id, admin_id, csv_filename, total_rows, successful_imports, duplicate_count,
    error_count, status, error_details, started_at, completed_at, created_at
"""

_UPDATABLE_COLUMNS = (
    "total_rows",
    "successful_imports",
    "duplicate_count",
    "error_count",
)


def _row_to_record(row: Any) -> ImportRecord:
    return ImportRecord(
        id=str(row["id"]),
        admin_id=row["admin_id"],
        csv_filename=row["csv_filename"],
        total_rows=row["total_rows"] or 0,
        successful_imports=row["successful_imports"] or 0,
        duplicate_count=row["duplicate_count"] or 0,
        error_count=row["error_count"] or 0,
        status=ImportStatus(row["status"]),
        error_details=load_json(row["error_details"]),
        started_at=from_db_timestamp(row["started_at"]),
        completed_at=from_db_timestamp(row["completed_at"]),
        created_at=from_db_timestamp(row["created_at"]),
    )


def create_import_record(filename: str, admin_id: str) -> ImportRecord:
    """Persist a new import in ``queued`` status."""
    engine = get_engine()
    import_id = str(uuid.uuid4())
    insert_sql = text("""
        INSERT INTO question_imports (
            id, admin_id, csv_filename, total_rows, successful_imports,
            duplicate_count, error_count, status, created_at
        )
        VALUES (:id, :admin_id, :csv_filename, 0, 0, 0, 0, :status, :created_at)
    """)
    with engine.begin() as conn:
        conn.execute(insert_sql, {
            "id": import_id,
            "admin_id": admin_id,
            "csv_filename": filename,
            "status": ImportStatus.QUEUED.value,
            "created_at": to_db_timestamp(utcnow()),
        })
    logger.info("Created import record %s for '%s' (admin %s)", import_id, filename, admin_id)
    record = get_import(import_id)
    if record is None:
        raise RuntimeError("Failed to create import record")
    return record


def update_import_record(
    import_id: str,
    *,
    status: Optional[ImportStatus] = None,
    error_details: Optional[Dict[str, Any]] = None,
    started: bool = False,
    completed: bool = False,
    **counts: int,
) -> None:
    """
    Update status, counters and timestamps of an import.

    Args:
        import_id: UUID of the import
        status: New status, left untouched when None
        error_details: Structured failure payload stored as JSON
        started: Stamp ``started_at`` if it is still empty
        completed: Stamp ``completed_at`` if it is still empty
        counts: Any of total_rows, successful_imports, duplicate_count, error_count
    """
    unknown = set(counts) - set(_UPDATABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown import record columns: {sorted(unknown)}")

    update_parts: List[str] = []
    params: Dict[str, Any] = {"import_id": import_id}
    now = to_db_timestamp(utcnow())

    if status is not None:
        update_parts.append("status = :status")
        params["status"] = status.value
    for column, value in counts.items():
        update_parts.append(f"{column} = :{column}")
        params[column] = value
    if error_details is not None:
        update_parts.append("error_details = :error_details")
        params["error_details"] = dump_json(error_details)
    if started:
        update_parts.append("started_at = COALESCE(started_at, :now)")
        params["now"] = now
    if completed:
        update_parts.append("completed_at = COALESCE(completed_at, :now)")
        params["now"] = now

    if not update_parts:
        return

    engine = get_engine()
    update_sql = f"UPDATE question_imports SET {', '.join(update_parts)} WHERE id = :import_id"
    with engine.begin() as conn:
        conn.execute(text(update_sql), params)


def get_import(import_id: str) -> Optional[ImportRecord]:
    engine = get_engine()
    query = text(f"SELECT {_RECORD_COLUMNS} FROM question_imports WHERE id = :import_id")
    with engine.connect() as conn:
        row = conn.execute(query, {"import_id": import_id}).mappings().first()
    return _row_to_record(row) if row else None


def list_imports(
    admin_id: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
) -> Tuple[List[ImportRecord], int]:
    """
    List imports newest first.

    Returns:
        Tuple of (records, total_count)
    """
    engine = get_engine()
    where_clause = ""
    params: Dict[str, Any] = {"limit": limit, "offset": offset}
    if admin_id:
        where_clause = "WHERE admin_id = :admin_id"
        params["admin_id"] = admin_id

    count_sql = text(f"SELECT COUNT(*) FROM question_imports {where_clause}")
    query_sql = text(f"""
        SELECT {_RECORD_COLUMNS}
        FROM question_imports
        {where_clause}
        ORDER BY created_at DESC
        LIMIT :limit OFFSET :offset
    """)
    with engine.connect() as conn:
        total = conn.execute(count_sql, params).scalar() or 0
        rows = conn.execute(query_sql, params).mappings().all()
    return [_row_to_record(row) for row in rows], total
