"""
CSV question import orchestration.

Runs the stages of one import strictly in order:

    queued -> parsing -> deduplicating -> mapping -> processing -> completed

Any stage may end in ``failed``. Counts are persisted on the import record
as soon as they are known so a failed import still reports how far it got.
``execute_import`` never raises; every failure is folded into the returned
``ImportResult``.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .batch import BatchProcessor
from .deduplication import deduplicate, fetch_dedup_snapshot
from .models import (
    BatchOutcome,
    BatchProgress,
    CSVRow,
    ImportJob,
    ImportResult,
    ImportStatus,
    MappedRow,
    ParseResult,
)
from .parser import parse_csv
from .records import create_import_record, update_import_record
from .results import CSVParseError
from .topic_mapping import TopicResolver

logger = logging.getLogger(__name__)

ImportProgressCallback = Callable[[ImportJob], None]

# Overall progress reported when each stage starts; processing fills 70-100.
STAGE_PROGRESS = {
    ImportStatus.PARSING: 10,
    ImportStatus.DEDUPLICATING: 30,
    ImportStatus.MAPPING: 50,
    ImportStatus.PROCESSING: 70,
    ImportStatus.COMPLETED: 100,
}
FAILED_ROWS_DETAIL_LIMIT = 100
PARSE_ERRORS_DETAIL_LIMIT = 100


class _ImportRun:
    """Mutable state of one ``execute_import`` call."""

    def __init__(self, filename: str, user_id: str, on_progress: Optional[ImportProgressCallback]):
        self.filename = filename
        self.user_id = user_id
        self.on_progress = on_progress
        self.import_id: Optional[str] = None
        self.stage = ImportStatus.QUEUED
        self.total_rows = 0
        self.parsed_rows: List[CSVRow] = []
        self.parse_error_rows = 0
        self.duplicate_count = 0
        self.successful = 0
        self.write_failures = 0

    @property
    def error_count(self) -> int:
        return self.parse_error_rows + self.write_failures

    def report(self, status: ImportStatus, progress: Optional[int] = None) -> None:
        if self.on_progress is None or self.import_id is None:
            return
        job = ImportJob(
            import_id=self.import_id,
            filename=self.filename,
            user_id=self.user_id,
            total_rows=self.total_rows,
            status=status,
            progress=STAGE_PROGRESS.get(status, 0) if progress is None else progress,
        )
        try:
            self.on_progress(job)
        except Exception as exc:
            logger.warning("Import %s: progress reporting failed: %s", self.import_id, exc)

    def enter(self, status: ImportStatus, **updates: Any) -> None:
        self.stage = status
        update_import_record(self.import_id, status=status, **updates)
        logger.info("Import %s: %s", self.import_id, status.value)
        self.report(status)


def _parse_error_details(parse_result: ParseResult) -> List[Dict[str, Any]]:
    return [
        {"row": error.row_number, "error": error.message}
        for error in parse_result.errors[:PARSE_ERRORS_DETAIL_LIMIT]
    ]


def _apply_mappings(rows: List[CSVRow], resolver: TopicResolver) -> List[MappedRow]:
    """Attach a canonical topic id to every row, creating topics for unmapped labels."""
    mappings = resolver.map_labels(row.topic for row in rows)
    unmapped = [label for label, mapping in mappings.items() if mapping is None]
    for label in unmapped:
        mappings[label] = resolver.resolve_with_fallback(label)
    if unmapped:
        logger.info("Created or reused %d canonical topics for unmapped labels: %s", len(unmapped), unmapped)
    return [MappedRow(row=row, topic_id=mappings[row.topic].topic_id) for row in rows]


def _completion_message(run: _ImportRun) -> str:
    message = (
        f"Import completed: {run.successful} questions added, "
        f"{run.duplicate_count} duplicates skipped"
    )
    if run.error_count:
        message += f", {run.error_count} rows failed"
    return message


def start_import(filename: str, user_id: str) -> str:
    """Create the ``queued`` import record and return its id."""
    return create_import_record(filename, user_id).id


def execute_import(
    file_content: bytes,
    filename: str,
    user_id: str,
    on_progress: Optional[ImportProgressCallback] = None,
    import_id: Optional[str] = None,
    batch_processor: Optional[BatchProcessor] = None,
) -> ImportResult:
    """
    Run the full import pipeline for one uploaded CSV.

    Args:
        file_content: Raw bytes of the upload
        filename: Original file name, stored on the import record
        user_id: Id of the uploading admin
        on_progress: Optional callback receiving an ``ImportJob`` at every stage
            and after every batch; its failures are logged and ignored
        import_id: Existing ``queued`` record to run; a new one is created when None
        batch_processor: Override for the batch writer (tests, tuning)

    Returns:
        ImportResult describing the terminal state. Never raises.
    """
    started = time.monotonic()
    run = _ImportRun(filename, user_id, on_progress)

    def _duration_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        run.import_id = import_id or start_import(filename, user_id)

        # Stage 1: parse
        run.enter(ImportStatus.PARSING, started=True)
        parse_result = parse_csv(file_content)
        run.parsed_rows = parse_result.rows
        run.parse_error_rows = parse_result.error_row_count
        run.total_rows = len(parse_result.rows) + run.parse_error_rows
        if not parse_result.is_valid:
            reasons = "; ".join(
                f"Row {error.row_number}: {error.message}" for error in parse_result.errors[:10]
            ) or "no rows found"
            raise CSVParseError(f"CSV parsing failed: {reasons}")

        # Stage 2: deduplicate against the corpus snapshot
        run.enter(
            ImportStatus.DEDUPLICATING,
            total_rows=run.total_rows,
            error_count=run.parse_error_rows,
        )
        dedup_result = deduplicate(parse_result.rows, fetch_dedup_snapshot())
        run.duplicate_count = len(dedup_result.duplicates)

        # Stage 3: topic mapping
        run.enter(ImportStatus.MAPPING, duplicate_count=run.duplicate_count)
        resolver = TopicResolver.from_database()
        mapped_rows = _apply_mappings(dedup_result.new_questions, resolver)
        logger.info(
            "Import %s: topic mapping complete (%s)",
            run.import_id,
            resolver.confidence_stats(),
        )

        # Stage 4: batch writes
        run.enter(ImportStatus.PROCESSING)

        def _on_batch(progress: BatchProgress) -> None:
            run.successful = progress.successful
            run.write_failures = progress.failed
            update_import_record(
                run.import_id,
                successful_imports=run.successful,
                error_count=run.error_count,
            )
            run.report(
                ImportStatus.PROCESSING,
                progress=STAGE_PROGRESS[ImportStatus.PROCESSING] + round(progress.percent_complete * 0.3),
            )

        processor = batch_processor or BatchProcessor()
        outcome: BatchOutcome = processor.process_import(run.import_id, user_id, mapped_rows, _on_batch)
        run.successful = outcome.successful
        run.write_failures = outcome.failed

        details: Optional[Dict[str, Any]] = None
        if parse_result.errors or outcome.failures:
            details = {
                "parse_errors": _parse_error_details(parse_result),
                "failed_rows": [
                    {"row": failure.row_number, "error": failure.error, "attempts": failure.attempts}
                    for failure in outcome.failures[:FAILED_ROWS_DETAIL_LIMIT]
                ],
            }

        run.stage = ImportStatus.COMPLETED
        update_import_record(
            run.import_id,
            status=ImportStatus.COMPLETED,
            successful_imports=run.successful,
            error_count=run.error_count,
            error_details=details,
            completed=True,
        )
        run.report(ImportStatus.COMPLETED)
        logger.info(
            "Import %s completed: %d added, %d duplicates, %d errors of %d rows",
            run.import_id, run.successful, run.duplicate_count, run.error_count, run.total_rows,
        )

        return ImportResult(
            import_id=run.import_id,
            filename=filename,
            total_rows=run.total_rows,
            successful_imports=run.successful,
            duplicates_found=run.duplicate_count,
            error_count=run.error_count,
            status=ImportStatus.COMPLETED,
            message=_completion_message(run),
            duration_ms=_duration_ms(),
        )

    except Exception as exc:
        logger.exception("Import %s failed during %s", run.import_id or "(unsaved)", run.stage.value)
        _mark_failed(run, exc)
        return ImportResult(
            import_id=run.import_id or "unknown",
            filename=filename,
            total_rows=run.total_rows,
            successful_imports=run.successful,
            duplicates_found=run.duplicate_count,
            error_count=run.error_count,
            status=ImportStatus.FAILED,
            message=f"Import failed: {exc}",
            duration_ms=_duration_ms(),
        )


def _mark_failed(run: _ImportRun, exc: Exception) -> None:
    if run.import_id is None:
        return
    details = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "stage": run.stage.value,
        "parsed_rows": len(run.parsed_rows),
        "total_rows": run.total_rows,
        "successful_imports": run.successful,
        "duplicate_count": run.duplicate_count,
        "error_count": run.error_count,
    }
    try:
        update_import_record(
            run.import_id,
            status=ImportStatus.FAILED,
            total_rows=run.total_rows,
            successful_imports=run.successful,
            duplicate_count=run.duplicate_count,
            error_count=run.error_count,
            error_details=details,
            completed=True,
        )
    except Exception:
        logger.exception("Import %s: could not persist failed status", run.import_id)
    run.report(ImportStatus.FAILED, progress=0)
