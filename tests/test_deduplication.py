from qbank.domain.imports.deduplication import (
    calculate_similarity,
    deduplicate,
    fetch_dedup_snapshot,
    normalize_question_text,
)
from qbank.domain.imports.models import CSVRow, ExistingQuestion
from tests.utils.question_bank import seed_question, seed_topic


def _row(text: str, row_number: int) -> CSVRow:
    return CSVRow(
        text=text,
        options=["a", "b", "c", "d"],
        correct_answer="A",
        difficulty="easy",
        topic="Cardiology",
        row_number=row_number,
    )


def test_normalization_ignores_case_spacing_and_edge_punctuation():
    assert normalize_question_text("  What is  the   capital of France? ") == "what is the capital of france"
    assert normalize_question_text("WHAT IS DNA?!") == normalize_question_text("what is dna")
    assert normalize_question_text("") == ""


def test_exact_normalized_match_is_always_a_duplicate():
    existing = [ExistingQuestion("q-1", "What is the most common cause of mitral stenosis?")]
    rows = [_row("what is the MOST common cause of   mitral stenosis", 2)]

    result = deduplicate(rows, existing, threshold=1.01)

    assert result.new_questions == []
    assert len(result.duplicates) == 1
    match = result.duplicates[0]
    assert match.row_number == 2
    assert match.existing_question_id == "q-1"
    assert match.similarity == 1.0


def test_near_exact_text_is_a_duplicate():
    existing = [ExistingQuestion("q-1", "Which nerve innervates the deltoid muscle?")]
    rows = [
        _row("Which nerve innervates the deltoid muscles?", 2),
        _row("Which artery supplies the sinoatrial node?", 3),
    ]

    result = deduplicate(rows, existing, threshold=0.85)

    assert [row.row_number for row in result.new_questions] == [3]
    assert result.duplicates[0].existing_question_id == "q-1"
    assert 0.85 <= result.duplicates[0].similarity < 1.0


def test_repeated_row_within_the_upload_is_a_duplicate():
    rows = [_row("What is Virchow's triad?", 2), _row("what is virchow's triad", 3)]

    result = deduplicate(rows, [])

    assert [row.row_number for row in result.new_questions] == [2]
    assert result.duplicates[0].row_number == 3
    assert result.duplicates[0].existing_question_id is None


def test_empty_snapshot_means_no_corpus_duplicates():
    rows = [_row(f"Distinct question number {i} about renal physiology", i + 1) for i in range(5)]

    result = deduplicate(rows, [])

    assert len(result.new_questions) == 5
    assert result.duplicates == []
    assert result.statistics() == {"new_count": 5, "duplicate_count": 0, "duplicate_rate": 0.0}


def test_new_questions_keep_file_order():
    existing = [ExistingQuestion("q-1", "Question two")]
    rows = [_row("Question one about the liver", 2), _row("Question two", 3), _row("Question three about bones", 4)]

    result = deduplicate(rows, existing)

    assert [row.row_number for row in result.new_questions] == [2, 4]
    assert result.statistics()["duplicate_rate"] == 33.33


def test_similarity_bounds():
    assert calculate_similarity("", "") == 1.0
    assert calculate_similarity("abc", "abc") == 1.0
    assert calculate_similarity("abc", "xyz") == 0.0


def test_snapshot_is_bounded_to_most_recent_questions():
    topic_id = seed_topic("Cardiology")
    for index in range(5):
        seed_question(f"Stored question {index}", topic_id)

    snapshot = fetch_dedup_snapshot(limit=3)

    assert len(snapshot) == 3
    assert all(question.text.startswith("Stored question") for question in snapshot)


def test_long_texts_compare_every_character():
    first = "a" * 150 + "b" * 150
    second = "a" * 150 + "c" * 150

    assert calculate_similarity(first, second) == 0.5
