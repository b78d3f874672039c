"""
Duplicate detection for uploaded questions.

Candidates are compared against a bounded snapshot of the existing corpus
(most recent questions first). Matching is conservative: an exact match on
normalized text, or a near-exact ``SequenceMatcher`` ratio, marks the row as
a duplicate. A row repeating an earlier row of the same upload is a
duplicate too.
"""
import logging
import re
import unicodedata
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import text

from qbank.core.config import settings
from qbank.db.session import get_engine

from .models import CSVRow, DeduplicationResult, DuplicateMatch, ExistingQuestion

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_EDGE_PUNCTUATION = re.compile(r"(^[^\w]+|[^\w]+$)")


def normalize_question_text(value: str) -> str:
    """
    Normalize question text for comparison.

    Examples:
        "  What is  the   capital of France? " -> "what is the capital of france"
        "Ｗｈａｔ is DNA?" -> "what is dna"
    """
    normalized = unicodedata.normalize("NFKC", value or "").casefold()
    words = [_EDGE_PUNCTUATION.sub("", word) for word in _WHITESPACE.split(normalized)]
    return " ".join(word for word in words if word)


def calculate_similarity(first: str, second: str) -> float:
    """Similarity ratio between two normalized strings (0.0 to 1.0)."""
    if not first and not second:
        return 1.0
    return SequenceMatcher(None, first, second, autojunk=False).ratio()


def _length_compatible(first: str, second: str, threshold: float) -> bool:
    # ratio() can never reach the threshold when the lengths differ too much.
    longer = max(len(first), len(second))
    if longer == 0:
        return True
    return (2 * min(len(first), len(second))) / (len(first) + len(second)) >= threshold


def _best_near_match(
    candidate: str,
    snapshot: List[Tuple[str, ExistingQuestion]],
    threshold: float,
) -> Optional[Tuple[ExistingQuestion, float]]:
    matcher = SequenceMatcher(None, autojunk=False)
    matcher.set_seq2(candidate)
    for normalized, existing in snapshot:
        if not _length_compatible(candidate, normalized, threshold):
            continue
        matcher.set_seq1(normalized)
        if matcher.real_quick_ratio() < threshold or matcher.quick_ratio() < threshold:
            continue
        score = matcher.ratio()
        if score >= threshold:
            return existing, score
    return None


def deduplicate(
    rows: List[CSVRow],
    existing_questions: Iterable[ExistingQuestion],
    threshold: Optional[float] = None,
) -> DeduplicationResult:
    """
    Partition parsed rows into new questions and duplicates.

    Args:
        rows: Parsed rows in file order
        existing_questions: Corpus snapshot; an empty snapshot simply means no corpus duplicates
        threshold: Near-exact similarity ratio, defaults to ``settings.dedup_similarity_threshold``

    Returns:
        DeduplicationResult preserving the file order of both partitions
    """
    threshold = settings.dedup_similarity_threshold if threshold is None else threshold

    exact_index: Dict[str, ExistingQuestion] = {}
    snapshot: List[Tuple[str, ExistingQuestion]] = []
    for existing in existing_questions:
        normalized = normalize_question_text(existing.text)
        exact_index.setdefault(normalized, existing)
        snapshot.append((normalized, existing))

    seen_in_file: Dict[str, CSVRow] = {}
    new_questions: List[CSVRow] = []
    duplicates: List[DuplicateMatch] = []

    for row in rows:
        normalized = normalize_question_text(row.text)

        exact = exact_index.get(normalized)
        if exact is not None:
            duplicates.append(DuplicateMatch(row.row_number, exact.id, exact.text, 1.0))
            continue

        earlier = seen_in_file.get(normalized)
        if earlier is not None:
            duplicates.append(DuplicateMatch(row.row_number, None, earlier.text, 1.0))
            continue

        near = _best_near_match(normalized, snapshot, threshold)
        if near is not None:
            existing, score = near
            duplicates.append(DuplicateMatch(row.row_number, existing.id, existing.text, round(score, 4)))
            continue

        seen_in_file[normalized] = row
        new_questions.append(row)

    result = DeduplicationResult(new_questions=new_questions, duplicates=duplicates)
    logger.info(
        "Deduplication: %d new, %d duplicates (snapshot of %d questions)",
        len(new_questions),
        len(duplicates),
        len(snapshot),
    )
    return result


def fetch_dedup_snapshot(limit: Optional[int] = None) -> List[ExistingQuestion]:
    """Load the most recent ``limit`` questions used as the comparison corpus."""
    limit = settings.dedup_snapshot_limit if limit is None else limit
    engine = get_engine()
    query = text("""
        SELECT id, question_text
        FROM questions
        ORDER BY created_at DESC
        LIMIT :limit
    """)
    with engine.connect() as conn:
        result = conn.execute(query, {"limit": limit})
        return [ExistingQuestion(id=str(row[0]), text=row[1]) for row in result]
