"""
Value types shared by the CSV question import stages.

Rows, mappings and progress snapshots are transient; only ``ImportRecord``
mirrors a persisted row (``question_imports``).
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ImportStatus(str, Enum):
    QUEUED = "queued"
    PARSING = "parsing"
    DEDUPLICATING = "deduplicating"
    MAPPING = "mapping"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLBACK = "rollback"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.ROLLBACK)


class SourceType(str, Enum):
    REAL_EXAM = "real_exam"
    AI_GENERATED = "ai_generated"


class MappingMethod(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    FALLBACK = "fallback"


ANSWER_LETTERS = ("A", "B", "C", "D", "E")
VALID_DIFFICULTIES = ("easy", "medium", "hard")
ESTIMATED_MS_PER_REMAINING_ROW = 500


@dataclass
class CSVRow:
    """One parsed question from the upload, before it becomes a ``questions`` row."""
    text: str
    options: List[str]
    correct_answer: str
    difficulty: str
    topic: str
    row_number: int
    explanation: Optional[str] = None
    source_type: SourceType = SourceType.REAL_EXAM


@dataclass(frozen=True)
class ParseError:
    row_number: int
    message: str


@dataclass
class ParseResult:
    rows: List[CSVRow]
    errors: List[ParseError]
    encoding: str
    row_count: int

    @property
    def is_valid(self) -> bool:
        """Downstream stages need at least one parsed row; row errors alone are not fatal."""
        return len(self.rows) > 0

    @property
    def error_row_count(self) -> int:
        return len({error.row_number for error in self.errors if error.row_number > 0})

    def summary(self) -> Dict[str, Any]:
        successful = len(self.rows)
        errors = self.error_row_count
        seen = successful + errors
        error_rate = (errors / seen) * 100 if seen else 0.0
        return {"successful": successful, "errors": errors, "error_rate": round(error_rate, 2)}


@dataclass(frozen=True)
class ExistingQuestion:
    id: str
    text: str


@dataclass(frozen=True)
class DuplicateMatch:
    row_number: int
    existing_question_id: Optional[str]  # None when the row repeats an earlier row of the same file
    existing_text: str
    similarity: float


@dataclass
class DeduplicationResult:
    new_questions: List[CSVRow]
    duplicates: List[DuplicateMatch]

    def statistics(self) -> Dict[str, Any]:
        total = len(self.new_questions) + len(self.duplicates)
        rate = (len(self.duplicates) / total) * 100 if total else 0.0
        return {
            "new_count": len(self.new_questions),
            "duplicate_count": len(self.duplicates),
            "duplicate_rate": round(rate, 2),
        }


@dataclass(frozen=True)
class Topic:
    id: str
    name: str


@dataclass(frozen=True)
class TopicMapping:
    label: str
    topic_id: str
    topic_name: str
    confidence: float  # 0-100
    method: MappingMethod


@dataclass
class MappedRow:
    row: CSVRow
    topic_id: str


@dataclass(frozen=True)
class BatchProgress:
    import_id: str
    processed: int
    total: int
    successful: int
    failed: int

    @property
    def percent_complete(self) -> int:
        if self.total <= 0:
            return 0
        return round((self.processed / self.total) * 100)


@dataclass(frozen=True)
class ImportProgress:
    """Polling snapshot derived from the persisted import record."""
    import_id: str
    status: ImportStatus
    processed: int
    total: int
    successful: int
    failed: int
    duplicates: int

    @property
    def percent_complete(self) -> int:
        if self.status == ImportStatus.COMPLETED:
            return 100
        if self.total <= 0:
            return 0
        return min(100, round((self.processed / self.total) * 100))

    @property
    def remaining_rows(self) -> int:
        if self.status.is_terminal:
            return 0
        return max(0, self.total - self.processed)

    @property
    def estimated_remaining_seconds(self) -> int:
        return round((self.remaining_rows * ESTIMATED_MS_PER_REMAINING_ROW) / 1000)

    @property
    def estimated_remaining_minutes(self) -> int:
        return math.ceil(self.estimated_remaining_seconds / 60)


@dataclass(frozen=True)
class RowFailure:
    row_number: int
    error: str
    attempts: int


@dataclass
class BatchOutcome:
    successful: int = 0
    failed: int = 0
    failures: List[RowFailure] = field(default_factory=list)
    question_ids: List[str] = field(default_factory=list)


@dataclass
class ImportRecord:
    id: str
    admin_id: str
    csv_filename: str
    total_rows: int
    successful_imports: int
    duplicate_count: int
    error_count: int
    status: ImportStatus
    error_details: Optional[Dict[str, Any]]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: Optional[datetime]

    @property
    def processed_rows(self) -> int:
        return self.successful_imports + self.duplicate_count + self.error_count


@dataclass(frozen=True)
class ImportJob:
    """Snapshot handed to orchestrator progress callbacks."""
    import_id: str
    filename: str
    user_id: str
    total_rows: int
    status: ImportStatus
    progress: int  # 0-100 across all stages


@dataclass(frozen=True)
class ImportResult:
    import_id: str
    filename: str
    total_rows: int
    successful_imports: int
    duplicates_found: int
    error_count: int
    status: ImportStatus
    message: str
    duration_ms: int


@dataclass(frozen=True)
class RollbackSummary:
    import_id: str
    deleted_count: int
