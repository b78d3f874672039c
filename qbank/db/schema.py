"""
DDL for the question bank tables touched by the CSV import pipeline.

The statements stay within the SQL subset shared by PostgreSQL and SQLite:
ids are UUID strings generated by the application, JSON payloads are stored
as text, and timestamps are written by the application in UTC.
"""
import logging
import threading
from typing import List

from sqlalchemy import text

from qbank.db.session import get_engine

logger = logging.getLogger(__name__)

PIPELINE_TABLES = ("topics", "questions", "question_imports", "import_question_mapping")

_CREATE_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS topics (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        name_key VARCHAR(255) NOT NULL,  -- normalized name, guards insert-if-absent races
        slug VARCHAR(255) NOT NULL,
        description TEXT,
        created_at TIMESTAMP NOT NULL,
        CONSTRAINT uq_topics_name_key UNIQUE (name_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id VARCHAR(36) PRIMARY KEY,
        question_text TEXT NOT NULL,
        option_a TEXT NOT NULL,
        option_b TEXT NOT NULL,
        option_c TEXT NOT NULL,
        option_d TEXT,
        option_e TEXT,
        correct_answer VARCHAR(1) NOT NULL,
        difficulty VARCHAR(20) NOT NULL,
        topic_id VARCHAR(36) NOT NULL REFERENCES topics(id),
        source_type VARCHAR(20) NOT NULL DEFAULT 'real_exam',  -- 'real_exam', 'ai_generated'
        explanation TEXT,
        created_by VARCHAR(255),
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_questions_created_at ON questions(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_questions_topic ON questions(topic_id)",
    """
    CREATE TABLE IF NOT EXISTS question_imports (
        id VARCHAR(36) PRIMARY KEY,
        admin_id VARCHAR(255) NOT NULL,
        csv_filename VARCHAR(500) NOT NULL,
        total_rows INTEGER NOT NULL DEFAULT 0,
        successful_imports INTEGER NOT NULL DEFAULT 0,
        duplicate_count INTEGER NOT NULL DEFAULT 0,
        error_count INTEGER NOT NULL DEFAULT 0,
        status VARCHAR(20) NOT NULL,  -- queued, parsing, deduplicating, mapping, processing, completed, failed, rollback
        error_details TEXT,
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        created_at TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_question_imports_admin ON question_imports(admin_id)",
    "CREATE INDEX IF NOT EXISTS idx_question_imports_status ON question_imports(status)",
    """
    CREATE TABLE IF NOT EXISTS import_question_mapping (
        import_id VARCHAR(36) NOT NULL REFERENCES question_imports(id) ON DELETE CASCADE,
        question_id VARCHAR(36) NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
        created_at TIMESTAMP NOT NULL,
        PRIMARY KEY (import_id, question_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_import_question_mapping_question ON import_question_mapping(question_id)",
]

_tables_initialized = False
_init_lock = threading.Lock()


def create_question_bank_tables(force: bool = False) -> None:
    """Create the pipeline tables and indexes if they don't exist."""
    global _tables_initialized
    if _tables_initialized and not force:
        return

    with _init_lock:
        if _tables_initialized and not force:
            return
        engine = get_engine()
        with engine.begin() as conn:
            for statement in _CREATE_STATEMENTS:
                conn.execute(text(statement))
        _tables_initialized = True
        logger.info("Question bank tables ready: %s", ", ".join(PIPELINE_TABLES))


def drop_question_bank_tables() -> None:
    """Drop the pipeline tables, children first. Used by tests and dev resets."""
    global _tables_initialized
    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(PIPELINE_TABLES):
            conn.execute(text(f"DROP TABLE IF EXISTS {table}"))
    _tables_initialized = False
