"""
Rollback of completed question imports.

A rollback deletes every question linked to the import through
``import_question_mapping`` and marks the import ``rollback``. Both happen
in one transaction: either all linked questions are gone and the status is
updated, or nothing changed.
"""
import logging

from sqlalchemy import text

from qbank.db.session import get_engine

from .models import ImportStatus, RollbackSummary
from .results import Err, ImportErrorKind, Ok, Result

logger = logging.getLogger(__name__)


class _RollbackConflict(Exception):
    """Raised inside the transaction to abort it when the status changed underneath us."""


def rollback_import(import_id: str) -> Result[RollbackSummary]:
    """
    Roll back a completed import.

    Returns:
        Ok(RollbackSummary) with the number of deleted questions, or Err with
        NOT_FOUND, ALREADY_ROLLED_BACK, INVALID_STATE or ROLLBACK_FAILED.
    """
    engine = get_engine()

    try:
        with engine.begin() as conn:
            row = conn.execute(
                text("SELECT status FROM question_imports WHERE id = :import_id"),
                {"import_id": import_id},
            ).first()
            if row is None:
                return Err(ImportErrorKind.NOT_FOUND, f"Import not found: {import_id}")

            status = ImportStatus(row[0])
            if status == ImportStatus.ROLLBACK:
                return Err(ImportErrorKind.ALREADY_ROLLED_BACK, f"Import {import_id} was already rolled back")
            if status != ImportStatus.COMPLETED:
                return Err(
                    ImportErrorKind.INVALID_STATE,
                    f"Import {import_id} is '{status.value}'; only completed imports can be rolled back",
                )

            # Claim the import first so a concurrent rollback of the same id loses.
            claimed = conn.execute(
                text("""
                    UPDATE question_imports
                    SET status = :rollback_status
                    WHERE id = :import_id AND status = :completed_status
                """),
                {
                    "import_id": import_id,
                    "rollback_status": ImportStatus.ROLLBACK.value,
                    "completed_status": ImportStatus.COMPLETED.value,
                },
            ).rowcount
            if claimed != 1:
                raise _RollbackConflict()

            deleted = conn.execute(
                text("""
                    DELETE FROM questions
                    WHERE id IN (
                        SELECT question_id FROM import_question_mapping WHERE import_id = :import_id
                    )
                """),
                {"import_id": import_id},
            ).rowcount
            conn.execute(
                text("DELETE FROM import_question_mapping WHERE import_id = :import_id"),
                {"import_id": import_id},
            )
    except _RollbackConflict:
        return Err(ImportErrorKind.ALREADY_ROLLED_BACK, f"Import {import_id} was already rolled back")
    except Exception as exc:
        logger.exception("Rollback of import %s failed", import_id)
        return Err(ImportErrorKind.ROLLBACK_FAILED, f"Failed to rollback import: {exc}")

    logger.info("Rolled back import %s: deleted %d questions", import_id, deleted)
    return Ok(RollbackSummary(import_id=import_id, deleted_count=deleted))
