"""
CSV parsing for question uploads.

Parsing is best-effort per row: a malformed row becomes a ``ParseError``
and is skipped, the rest of the file is still returned. Only a file whose
header cannot be used at all yields zero rows.
"""
import csv
import io
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from .models import (
    ANSWER_LETTERS,
    VALID_DIFFICULTIES,
    CSVRow,
    ParseError,
    ParseResult,
    SourceType,
)

logger = logging.getLogger(__name__)

BOM_CHARACTERS = ("\ufeff", "\ufffe")

OPTION_COLUMNS = ("option_a", "option_b", "option_c", "option_d", "option_e")
REQUIRED_COLUMNS = ("text", "option_a", "option_b", "option_c", "option_d", "topic", "difficulty")
ANSWER_COLUMNS = ("correct_answer", "correct_index")
COLUMN_ALIASES = {"question_text": "text", "question": "text", "answer": "correct_answer"}


def detect_encoding(file_content: bytes) -> str:
    """Return 'utf-8' when the bytes decode cleanly, otherwise 'iso-8859-1'."""
    try:
        file_content.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        return "iso-8859-1"


def remove_bom(content: str) -> str:
    for bom in BOM_CHARACTERS:
        if content.startswith(bom):
            return content[len(bom):]
    return content


def _normalize_header(header: List[str]) -> List[str]:
    columns = []
    for name in header:
        key = name.strip().lower()
        columns.append(COLUMN_ALIASES.get(key, key))
    return columns


def _missing_columns(columns: List[str]) -> List[str]:
    missing = [column for column in REQUIRED_COLUMNS if column not in columns]
    if not any(column in columns for column in ANSWER_COLUMNS):
        missing.append("correct_answer")
    return missing


def _iter_records(reader) -> Iterator[Tuple[int, int, Optional[List[str]], Optional[str]]]:
    """
    Yield (first_line, last_line, fields, csv_error) for every record.

    ``last_line`` is past ``first_line`` when a quoted field spans lines.
    """
    while True:
        start_line = reader.line_num + 1
        try:
            fields = next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            yield start_line, reader.line_num, None, str(exc)
            continue
        yield start_line, reader.line_num, fields, None


def _resolve_answer(record: Dict[str, str], options: List[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (letter, error). Letters win over the legacy 0-based ``correct_index`` column."""
    letter = record.get("correct_answer", "").strip().upper()
    if letter:
        if letter not in ANSWER_LETTERS:
            return None, "correct_answer must be one of A, B, C, D, E"
    else:
        raw_index = record.get("correct_index", "").strip()
        try:
            index = int(raw_index)
        except ValueError:
            return None, "correct_index must be an integer between 0 and 4"
        if not 0 <= index < len(ANSWER_LETTERS):
            return None, "correct_index must be an integer between 0 and 4"
        letter = ANSWER_LETTERS[index]

    if ANSWER_LETTERS.index(letter) >= len(options):
        return None, f"correct answer {letter} refers to an empty option"
    return letter, None


def _build_row(record: Dict[str, str], row_number: int) -> Tuple[Optional[CSVRow], List[str]]:
    problems: List[str] = []

    text = record.get("text", "")
    if not text:
        problems.append("question text cannot be empty")

    for column in OPTION_COLUMNS[:4]:
        if not record.get(column):
            problems.append(f"{column} cannot be empty")
    options = [record[column] for column in OPTION_COLUMNS[:4] if record.get(column)]
    if record.get("option_e"):
        options.append(record["option_e"])

    difficulty = record.get("difficulty", "").lower()
    if difficulty not in VALID_DIFFICULTIES:
        problems.append(f"difficulty must be one of: {', '.join(VALID_DIFFICULTIES)}")

    topic = record.get("topic", "")
    if not topic:
        problems.append("topic cannot be empty")

    source_value = record.get("source_type", "").lower() or SourceType.REAL_EXAM.value
    try:
        source_type = SourceType(source_value)
    except ValueError:
        problems.append("source_type must be real_exam or ai_generated")
        source_type = SourceType.REAL_EXAM

    letter = None
    if len(options) >= 4:
        letter, answer_problem = _resolve_answer(record, options)
        if answer_problem:
            problems.append(answer_problem)

    if problems:
        return None, problems

    return (
        CSVRow(
            text=text,
            options=options,
            correct_answer=letter,
            difficulty=difficulty,
            topic=topic,
            row_number=row_number,
            explanation=record.get("explanation") or None,
            source_type=source_type,
        ),
        [],
    )


def parse_csv(file_content: bytes) -> ParseResult:
    """
    Parse an uploaded question CSV.

    Args:
        file_content: Raw bytes of the upload

    Returns:
        ParseResult with rows in file order and one ParseError per malformed row.
        Row numbers are 1-based file lines, the header being line 1.
    """
    encoding = detect_encoding(file_content)
    content = remove_bom(file_content.decode(encoding))
    reader = csv.reader(io.StringIO(content, newline=""))

    columns: Optional[List[str]] = None
    rows: List[CSVRow] = []
    errors: List[ParseError] = []
    row_count = 0

    for line_number, last_line, fields, csv_error in _iter_records(reader):
        if columns is None:
            if csv_error:
                errors.append(ParseError(0, f"Failed to parse CSV header: {csv_error}"))
                break
            if not fields or not any(cell.strip() for cell in fields):
                continue
            columns = _normalize_header(fields)
            missing = _missing_columns(columns)
            if missing:
                errors.append(ParseError(0, f"Missing required columns: {', '.join(missing)}"))
                break
            continue

        if csv_error:
            row_count += 1
            errors.append(ParseError(line_number, f"Malformed CSV record: {csv_error}"))
            continue
        if not fields or not any(cell.strip() for cell in fields):
            continue

        row_count += 1
        if len(fields) != len(columns):
            if last_line > line_number:
                # An unbalanced quote pulls the following lines into one field.
                message = (
                    f"Unterminated quoted field: lines {line_number}-{last_line} were read as one record "
                    f"with {len(fields)} of {len(columns)} columns and skipped"
                )
            else:
                message = f"Expected {len(columns)} columns, found {len(fields)}"
            errors.append(ParseError(line_number, message))
            continue

        record = {column: value.strip() for column, value in zip(columns, fields)}
        row, problems = _build_row(record, line_number)
        if problems:
            errors.append(ParseError(line_number, "; ".join(problems)))
            continue
        rows.append(row)

    if columns is None and not errors:
        errors.append(ParseError(0, "CSV file is empty"))

    logger.info(
        "Parsed CSV (%s): %d rows accepted, %d rows rejected",
        encoding,
        len(rows),
        len([error for error in errors if error.row_number > 0]),
    )
    return ParseResult(rows=rows, errors=errors, encoding=encoding, row_count=row_count)
