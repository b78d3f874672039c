"""
Batch persistence of mapped question rows.

Rows are written in fixed-size batches, each batch (questions plus their
``import_question_mapping`` links) in one transaction. A failed batch never
stops the import: its rows are retried one at a time with exponential
backoff and whatever still fails is counted against the import.
"""
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from sqlalchemy import text

from qbank.core.config import settings
from qbank.db.session import get_engine
from qbank.utils.serialization import to_db_timestamp, utcnow

from .models import BatchOutcome, BatchProgress, ImportProgress, MappedRow, RowFailure
from .records import get_import
from .results import Err, ImportErrorKind, Ok, Result

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], None]

_INSERT_QUESTION_SQL = text("""
    INSERT INTO questions (
        id, question_text, option_a, option_b, option_c, option_d, option_e,
        correct_answer, difficulty, topic_id, source_type, explanation,
        created_by, created_at
    ) VALUES (
        :id, :question_text, :option_a, :option_b, :option_c, :option_d, :option_e,
        :correct_answer, :difficulty, :topic_id, :source_type, :explanation,
        :created_by, :created_at
    )
""")

_INSERT_LINK_SQL = text("""
    INSERT INTO import_question_mapping (import_id, question_id, created_at)
    VALUES (:import_id, :question_id, :created_at)
""")


def _question_params(mapped: MappedRow, question_id: str, user_id: str, created_at: str) -> dict:
    row = mapped.row
    options = list(row.options) + [None] * (5 - len(row.options))
    return {
        "id": question_id,
        "question_text": row.text,
        "option_a": options[0],
        "option_b": options[1],
        "option_c": options[2],
        "option_d": options[3],
        "option_e": options[4],
        "correct_answer": row.correct_answer,
        "difficulty": row.difficulty,
        "topic_id": mapped.topic_id,
        "source_type": row.source_type.value,
        "explanation": row.explanation,
        "created_by": user_id,
        "created_at": created_at,
    }


def insert_question_batch(import_id: str, user_id: str, rows: List[MappedRow]) -> List[str]:
    """
    Insert questions and their import links in a single transaction.

    Returns:
        The new question ids, in row order
    """
    if not rows:
        return []

    created_at = to_db_timestamp(utcnow())
    question_ids = [str(uuid.uuid4()) for _ in rows]
    question_params = [
        _question_params(mapped, question_id, user_id, created_at)
        for mapped, question_id in zip(rows, question_ids)
    ]
    link_params = [
        {"import_id": import_id, "question_id": question_id, "created_at": created_at}
        for question_id in question_ids
    ]

    engine = get_engine()
    with engine.begin() as conn:
        conn.execute(_INSERT_QUESTION_SQL, question_params)
        conn.execute(_INSERT_LINK_SQL, link_params)
    return question_ids


class _ProgressCounter:
    """Running totals shared by batch writers; updates are serialized by a lock."""

    def __init__(self, import_id: str, total: int):
        self.import_id = import_id
        self.total = total
        self.processed = 0
        self.successful = 0
        self.failed = 0
        self._lock = threading.Lock()

    def record(self, batch_size: int, outcome: BatchOutcome) -> BatchProgress:
        with self._lock:
            self.processed += batch_size
            self.successful += outcome.successful
            self.failed += outcome.failed
            return BatchProgress(
                import_id=self.import_id,
                processed=self.processed,
                total=self.total,
                successful=self.successful,
                failed=self.failed,
            )


class BatchProcessor:
    """Writes mapped rows for one import and reports progress after every batch."""

    def __init__(
        self,
        batch_size: Optional[int] = None,
        max_workers: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.batch_size = max(1, batch_size or settings.import_batch_size)
        self.max_workers = max(1, max_workers or settings.import_batch_workers)
        self.max_retries = max(1, settings.import_max_retries if max_retries is None else max_retries)
        self.retry_delay_seconds = (
            settings.import_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        )
        self._sleep = sleep

    def _batches(self, rows: List[MappedRow]) -> List[List[MappedRow]]:
        return [rows[start:start + self.batch_size] for start in range(0, len(rows), self.batch_size)]

    def _retry_rows_individually(self, import_id: str, user_id: str, batch: List[MappedRow]) -> BatchOutcome:
        outcome = BatchOutcome()
        for mapped in batch:
            last_error: Optional[Exception] = None
            for attempt in range(self.max_retries):
                if attempt > 0 and self.retry_delay_seconds > 0:
                    self._sleep(self.retry_delay_seconds * (2 ** (attempt - 1)))
                try:
                    outcome.question_ids.extend(insert_question_batch(import_id, user_id, [mapped]))
                    outcome.successful += 1
                    last_error = None
                    break
                except Exception as exc:
                    last_error = exc
                    logger.warning(
                        "Import %s: row %d attempt %d/%d failed: %s",
                        import_id, mapped.row.row_number, attempt + 1, self.max_retries, exc,
                    )
            if last_error is not None:
                outcome.failed += 1
                outcome.failures.append(
                    RowFailure(mapped.row.row_number, str(last_error), attempts=self.max_retries)
                )
        return outcome

    def _write_batch(self, import_id: str, user_id: str, batch: List[MappedRow]) -> BatchOutcome:
        try:
            question_ids = insert_question_batch(import_id, user_id, batch)
            return BatchOutcome(successful=len(batch), question_ids=question_ids)
        except Exception as exc:
            logger.warning(
                "Import %s: batch starting at row %d failed (%s); retrying %d rows individually",
                import_id, batch[0].row.row_number, exc, len(batch),
            )
            return self._retry_rows_individually(import_id, user_id, batch)

    def _report(self, on_progress: Optional[ProgressCallback], progress: BatchProgress) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception as exc:
            logger.warning("Import %s: progress callback failed: %s", progress.import_id, exc)

    def process_import(
        self,
        import_id: str,
        user_id: str,
        rows: List[MappedRow],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchOutcome:
        """
        Persist every row and return aggregated counts.

        All batches are always attempted; ``successful + failed`` equals ``len(rows)``.
        """
        batches = self._batches(rows)
        counter = _ProgressCounter(import_id, len(rows))
        total = BatchOutcome()

        logger.info(
            "Import %s: writing %d rows in %d batches (batch_size=%d, workers=%d)",
            import_id, len(rows), len(batches), self.batch_size, self.max_workers,
        )

        if self.max_workers == 1 or len(batches) <= 1:
            for batch in batches:
                outcome = self._write_batch(import_id, user_id, batch)
                _merge(total, outcome)
                self._report(on_progress, counter.record(len(batch), outcome))
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self._write_batch, import_id, user_id, batch): batch
                    for batch in batches
                }
                for future in as_completed(futures):
                    batch = futures[future]
                    try:
                        outcome = future.result()
                    except Exception as exc:  # pragma: no cover - _write_batch handles its own errors
                        outcome = BatchOutcome(
                            failed=len(batch),
                            failures=[RowFailure(m.row.row_number, str(exc), 1) for m in batch],
                        )
                    _merge(total, outcome)
                    self._report(on_progress, counter.record(len(batch), outcome))

        total.failures.sort(key=lambda failure: failure.row_number)
        logger.info(
            "Import %s: batch writes finished, %d succeeded, %d failed",
            import_id, total.successful, total.failed,
        )
        return total


def _merge(total: BatchOutcome, outcome: BatchOutcome) -> None:
    total.successful += outcome.successful
    total.failed += outcome.failed
    total.failures.extend(outcome.failures)
    total.question_ids.extend(outcome.question_ids)


def get_progress(import_id: str) -> Result[ImportProgress]:
    """Progress snapshot for polling, derived from the persisted import record."""
    record = get_import(import_id)
    if record is None:
        return Err(ImportErrorKind.NOT_FOUND, f"Import not found: {import_id}")

    return Ok(ImportProgress(
        import_id=record.id,
        status=record.status,
        processed=min(record.processed_rows, record.total_rows) if record.total_rows else record.processed_rows,
        total=record.total_rows,
        successful=record.successful_imports,
        failed=record.error_count,
        duplicates=record.duplicate_count,
    ))


def count_linked_questions(import_id: str) -> int:
    engine = get_engine()
    with engine.connect() as conn:
        return conn.execute(
            text("SELECT COUNT(*) FROM import_question_mapping WHERE import_id = :import_id"),
            {"import_id": import_id},
        ).scalar() or 0
