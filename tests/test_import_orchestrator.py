from qbank.domain.imports import batch, orchestrator
from qbank.domain.imports.batch import BatchProcessor, count_linked_questions
from qbank.domain.imports.models import ImportStatus
from qbank.domain.imports.orchestrator import execute_import, start_import
from qbank.domain.imports.records import get_import
from qbank.domain.imports.results import Err, ImportErrorKind
from qbank.domain.imports.rollback import rollback_import
from tests.utils.question_bank import (
    QUESTION_STEMS,
    build_csv,
    count_rows,
    question_row,
    seed_question,
    seed_topic,
)


def _assert_counts_add_up(record):
    assert record.successful_imports + record.duplicate_count + record.error_count == record.total_rows


def test_clean_upload_with_unknown_topic_creates_one_canonical_topic():
    seed_topic("Cardiology")
    rows = [question_row(i) for i in range(1, 9)]
    rows += [question_row(9, topic="Tropical Medicine"), question_row(10, topic="tropical  medicine")]

    result = execute_import(build_csv(rows), "clean.csv", "admin-1")

    assert result.status == ImportStatus.COMPLETED
    assert result.total_rows == 10
    assert result.successful_imports == 10
    assert result.duplicates_found == 0
    assert result.error_count == 0
    assert count_rows("topics") == 2
    assert count_rows("topics", "name_key = :key", {"key": "tropical medicine"}) == 1

    record = get_import(result.import_id)
    assert record.status == ImportStatus.COMPLETED
    assert record.successful_imports == 10
    assert record.started_at is not None
    assert record.completed_at is not None
    assert record.error_details is None
    _assert_counts_add_up(record)
    assert count_linked_questions(result.import_id) == 10


def test_malformed_rows_are_counted_as_errors_and_the_rest_import():
    rows = [question_row(i) for i in range(1, 11)]
    for index in (2, 5, 8):
        rows[index]["option_b"] = ""

    result = execute_import(build_csv(rows), "partial.csv", "admin-1")

    assert result.status == ImportStatus.COMPLETED
    assert result.total_rows == 10
    assert result.successful_imports == 7
    assert result.error_count == 3
    record = get_import(result.import_id)
    _assert_counts_add_up(record)
    assert [error["row"] for error in record.error_details["parse_errors"]] == [4, 7, 10]
    assert record.error_details["failed_rows"] == []
    assert count_rows("questions") == 7


def test_rows_matching_the_corpus_are_skipped_as_duplicates():
    topic_id = seed_topic("Cardiology")
    rows = [question_row(i) for i in range(1, 11)]
    for row in rows[:4]:
        seed_question(row["text"].upper(), topic_id)

    result = execute_import(build_csv(rows), "dupes.csv", "admin-1")

    assert result.status == ImportStatus.COMPLETED
    assert result.duplicates_found == 4
    assert result.successful_imports == 6
    assert result.error_count == 0
    assert count_rows("questions") == 10
    _assert_counts_add_up(get_import(result.import_id))


def test_progress_callback_sees_every_stage_in_order():
    statuses = []

    result = execute_import(
        build_csv([question_row(i) for i in range(1, 4)]),
        "stages.csv",
        "admin-1",
        on_progress=lambda job: statuses.append((job.status, job.progress)),
    )

    assert result.status == ImportStatus.COMPLETED
    stage_order = []
    for status, _ in statuses:
        if not stage_order or stage_order[-1] != status:
            stage_order.append(status)
    assert stage_order == [
        ImportStatus.PARSING,
        ImportStatus.DEDUPLICATING,
        ImportStatus.MAPPING,
        ImportStatus.PROCESSING,
        ImportStatus.COMPLETED,
    ]
    progress_values = [progress for _, progress in statuses]
    assert progress_values == sorted(progress_values)
    assert progress_values[-1] == 100


def test_failing_progress_callback_does_not_fail_the_import():
    def broken_callback(job):
        raise RuntimeError("client disconnected")

    result = execute_import(
        build_csv([question_row(1), question_row(2)]), "q.csv", "admin-1", on_progress=broken_callback
    )

    assert result.status == ImportStatus.COMPLETED
    assert result.successful_imports == 2


def test_file_without_valid_rows_fails_the_import():
    content = b"text,option_a\nonly,two columns\n"

    result = execute_import(content, "broken.csv", "admin-1")

    assert result.status == ImportStatus.FAILED
    assert "Missing required columns" in result.message
    record = get_import(result.import_id)
    assert record.status == ImportStatus.FAILED
    assert record.error_details["stage"] == ImportStatus.PARSING.value
    assert record.completed_at is not None
    assert count_rows("questions") == 0


def test_unexpected_stage_error_marks_import_failed_with_details(monkeypatch):
    def exploding_snapshot(limit=None):
        raise RuntimeError("corpus unavailable")

    monkeypatch.setattr(orchestrator, "fetch_dedup_snapshot", exploding_snapshot)
    rows = [question_row(i) for i in range(1, 6)]
    rows[0]["difficulty"] = "impossible"

    result = execute_import(build_csv(rows), "q.csv", "admin-1")

    assert result.status == ImportStatus.FAILED
    assert "corpus unavailable" in result.message
    record = get_import(result.import_id)
    assert record.status == ImportStatus.FAILED
    assert record.total_rows == 5
    assert record.error_count == 1
    assert record.error_details["stage"] == ImportStatus.DEDUPLICATING.value
    assert record.error_details["error_type"] == "RuntimeError"
    assert record.error_details["parsed_rows"] == 4


def test_write_failures_are_recorded_per_row(monkeypatch):
    real_insert = batch.insert_question_batch

    def flaky_insert(import_id, user_id, rows):
        if any(mapped.row.text == QUESTION_STEMS[2] for mapped in rows):
            raise RuntimeError("value too long")
        return real_insert(import_id, user_id, rows)

    monkeypatch.setattr(batch, "insert_question_batch", flaky_insert)

    result = execute_import(
        build_csv([question_row(i) for i in range(1, 6)]),
        "q.csv",
        "admin-1",
        batch_processor=BatchProcessor(batch_size=2, max_retries=2, retry_delay_seconds=0),
    )

    assert result.status == ImportStatus.COMPLETED
    assert result.successful_imports == 4
    assert result.error_count == 1
    record = get_import(result.import_id)
    assert record.error_details["failed_rows"] == [{"row": 4, "error": "value too long", "attempts": 2}]
    _assert_counts_add_up(record)


def test_existing_queued_record_is_reused():
    import_id = start_import("queued.csv", "admin-7")
    assert get_import(import_id).status == ImportStatus.QUEUED

    result = execute_import(build_csv([question_row(1)]), "queued.csv", "admin-7", import_id=import_id)

    assert result.import_id == import_id
    assert count_rows("question_imports") == 1
    assert get_import(import_id).status == ImportStatus.COMPLETED


def test_consecutive_imports_deduplicate_against_each_other():
    content = build_csv([question_row(i) for i in range(1, 6)])

    first = execute_import(content, "first.csv", "admin-1")
    second = execute_import(content, "second.csv", "admin-1")

    assert first.successful_imports == 5
    assert second.successful_imports == 0
    assert second.duplicates_found == 5
    assert count_rows("questions") == 5


def test_failure_after_writes_keeps_linked_questions(monkeypatch):
    real_update = orchestrator.update_import_record

    def failing_completion(import_id, **kwargs):
        if kwargs.get("status") == ImportStatus.COMPLETED:
            raise RuntimeError("connection reset")
        return real_update(import_id, **kwargs)

    monkeypatch.setattr(orchestrator, "update_import_record", failing_completion)

    result = execute_import(build_csv([question_row(i) for i in range(1, 4)]), "q.csv", "admin-1")

    assert result.status == ImportStatus.FAILED
    record = get_import(result.import_id)
    assert record.status == ImportStatus.FAILED
    assert record.error_details["stage"] == ImportStatus.COMPLETED.value
    assert record.error_details["successful_imports"] == 3
    assert count_linked_questions(result.import_id) == 3

    rollback = rollback_import(result.import_id)
    assert isinstance(rollback, Err)
    assert rollback.kind == ImportErrorKind.INVALID_STATE
