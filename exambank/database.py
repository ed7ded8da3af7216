"""
SQLite Database Layer
=====================
Persistent storage for canonical questions and the document pipeline.

Tables:
    questions            Canonical, practice-ready questions
    exam_documents       Uploaded scanned exams
    exam_pages           Page images of a document
    question_candidates  Vision-extracted questions awaiting review

Referential rules (a page belongs to an existing document, a candidate to
an existing document) are enforced here with foreign keys.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Optional

from .config import DEFAULT_DB_PATH
from .models import (
    CandidateStatus,
    CanonicalQuestion,
    IngestedDocument,
    Page,
    QuestionCandidate,
)

logger = logging.getLogger(__name__)


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("EXAMBANK_DB_PATH", DEFAULT_DB_PATH)


@contextmanager
def get_connection(db_path: str = None):
    """
    Context manager for database connections.
    Commits on success, rolls back on error, always closes.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times; uses IF NOT EXISTS.
    """
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS questions (
                id TEXT PRIMARY KEY,
                subject_id TEXT NOT NULL DEFAULT '',
                topic TEXT NOT NULL,
                question_number INTEGER NOT NULL,
                shared_statement TEXT,
                content TEXT NOT NULL,
                options TEXT NOT NULL,
                parent_question_id TEXT,
                parsed_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS exam_documents (
                id TEXT PRIMARY KEY,
                subject_id TEXT NOT NULL,
                filename TEXT NOT NULL,
                original_path TEXT DEFAULT '',
                page_count INTEGER DEFAULT 0,
                status TEXT DEFAULT 'uploaded',
                error_message TEXT,
                uploaded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                processed_at DATETIME
            );

            CREATE TABLE IF NOT EXISTS exam_pages (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                page_number INTEGER NOT NULL,
                image_path TEXT NOT NULL,
                status TEXT DEFAULT 'pending',
                raw_extracted_text TEXT,
                normalized_text TEXT,
                error_message TEXT,
                processed_at DATETIME,
                UNIQUE(document_id, page_number),
                FOREIGN KEY(document_id) REFERENCES exam_documents(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS question_candidates (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                page_id TEXT,
                question_number INTEGER NOT NULL,
                raw_content TEXT NOT NULL,
                normalized_content TEXT,
                options TEXT,
                is_incomplete INTEGER DEFAULT 0,
                question_type TEXT DEFAULT 'mcq',
                status TEXT DEFAULT 'pending',
                reviewer_notes TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                reviewed_at DATETIME,
                FOREIGN KEY(document_id) REFERENCES exam_documents(id) ON DELETE CASCADE,
                FOREIGN KEY(page_id) REFERENCES exam_pages(id) ON DELETE SET NULL
            );

            CREATE INDEX IF NOT EXISTS idx_questions_topic
                ON questions(topic);
            CREATE INDEX IF NOT EXISTS idx_questions_subject
                ON questions(subject_id);
            CREATE INDEX IF NOT EXISTS idx_documents_subject
                ON exam_documents(subject_id);
            CREATE INDEX IF NOT EXISTS idx_pages_document
                ON exam_pages(document_id, page_number);
            CREATE INDEX IF NOT EXISTS idx_candidates_document
                ON question_candidates(document_id, status);
        """)

    logger.info("Database schema initialized successfully")


# ─── Row Conversion ───────────────────────────────────────────────────────────


def _load_options(raw: Optional[str]) -> Optional[dict]:
    return json.loads(raw) if raw else None


def _row_to_question(row: sqlite3.Row) -> CanonicalQuestion:
    data = dict(row)
    data.pop("parsed_at", None)
    data["options"] = _load_options(data["options"]) or {}
    return CanonicalQuestion(**data)


def _row_to_document(row: sqlite3.Row) -> IngestedDocument:
    return IngestedDocument(**dict(row))


def _row_to_page(row: sqlite3.Row) -> Page:
    return Page(**dict(row))


def _row_to_candidate(row: sqlite3.Row) -> QuestionCandidate:
    data = dict(row)
    data.pop("created_at", None)
    data.pop("page_number", None)
    data["options"] = _load_options(data["options"])
    data["is_incomplete"] = bool(data["is_incomplete"])
    return QuestionCandidate(**data)


# ─── Canonical Questions ──────────────────────────────────────────────────────

_UPSERT_QUESTION_SQL = """
    INSERT INTO questions
        (id, subject_id, topic, question_number, shared_statement,
         content, options, parent_question_id, parsed_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
    ON CONFLICT(id) DO UPDATE SET
        subject_id = excluded.subject_id,
        topic = excluded.topic,
        question_number = excluded.question_number,
        shared_statement = excluded.shared_statement,
        content = excluded.content,
        options = excluded.options,
        parent_question_id = excluded.parent_question_id,
        parsed_at = CURRENT_TIMESTAMP
"""


def _question_params(q: CanonicalQuestion) -> tuple:
    return (
        q.id,
        q.subject_id,
        q.topic,
        q.question_number,
        q.shared_statement,
        q.content,
        json.dumps(q.options, ensure_ascii=False),
        q.parent_question_id,
    )


def upsert_question(q: CanonicalQuestion, db_path: str = None):
    """Insert a question or replace the stored copy with the same id."""
    with get_connection(db_path) as conn:
        conn.execute(_UPSERT_QUESTION_SQL, _question_params(q))


def bulk_upsert_questions(questions: list[CanonicalQuestion], db_path: str = None) -> int:
    """Upsert many questions in a single transaction. Returns the count."""
    with get_connection(db_path) as conn:
        conn.executemany(
            _UPSERT_QUESTION_SQL, [_question_params(q) for q in questions]
        )
    return len(questions)


def get_question(question_id: str, db_path: str = None) -> Optional[CanonicalQuestion]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        return _row_to_question(row) if row else None


def list_questions(
    topic: str = None,
    subject_id: str = None,
    db_path: str = None,
) -> list[CanonicalQuestion]:
    """List questions, optionally filtered by topic and/or subject."""
    query = "SELECT * FROM questions WHERE 1 = 1"
    params: list = []
    if topic:
        query += " AND topic = ?"
        params.append(topic)
    if subject_id:
        query += " AND subject_id = ?"
        params.append(subject_id)
    query += " ORDER BY topic, question_number"

    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
        return [_row_to_question(r) for r in rows]


def count_questions(subject_id: str = None, db_path: str = None) -> int:
    with get_connection(db_path) as conn:
        if subject_id:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM questions WHERE subject_id = ?",
                (subject_id,),
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) AS cnt FROM questions").fetchone()
        return row["cnt"] if row else 0


def list_topics(subject_id: str = None, db_path: str = None) -> list[dict]:
    """Distinct topics with their question counts."""
    query = "SELECT topic, COUNT(*) AS question_count FROM questions"
    params: list = []
    if subject_id:
        query += " WHERE subject_id = ?"
        params.append(subject_id)
    query += " GROUP BY topic ORDER BY topic"

    with get_connection(db_path) as conn:
        return [dict(r) for r in conn.execute(query, params).fetchall()]


# ─── Documents ────────────────────────────────────────────────────────────────


def insert_document(document: IngestedDocument, db_path: str = None):
    with get_connection(db_path) as conn:
        conn.execute(
            """INSERT INTO exam_documents
               (id, subject_id, filename, original_path, page_count, status)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                document.id,
                document.subject_id,
                document.filename,
                document.original_path,
                document.page_count,
                document.status.value,
            ),
        )
    logger.info(f"Inserted document id={document.id} filename={document.filename!r}")


def get_document(document_id: str, db_path: str = None) -> Optional[IngestedDocument]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM exam_documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None


def list_documents(subject_id: str = None, db_path: str = None) -> list[IngestedDocument]:
    query = "SELECT * FROM exam_documents"
    params: list = []
    if subject_id:
        query += " WHERE subject_id = ?"
        params.append(subject_id)
    query += " ORDER BY uploaded_at DESC, id"

    with get_connection(db_path) as conn:
        return [_row_to_document(r) for r in conn.execute(query, params).fetchall()]


_DOCUMENT_FIELDS = {
    "subject_id", "filename", "original_path", "page_count",
    "status", "error_message",
}


def update_document(document_id: str, db_path: str = None, **fields) -> bool:
    """Update document fields. Returns True if the row was found."""
    fields = {k: v for k, v in fields.items() if k in _DOCUMENT_FIELDS}
    if not fields:
        return False

    values = [getattr(v, "value", v) for v in fields.values()]
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    status = fields.get("status")
    if status is not None and getattr(status, "value", status) in ("completed", "error"):
        set_clause += ", processed_at = CURRENT_TIMESTAMP"

    with get_connection(db_path) as conn:
        cursor = conn.execute(
            f"UPDATE exam_documents SET {set_clause} WHERE id = ?",
            values + [document_id],
        )
        return cursor.rowcount > 0


def delete_document(document_id: str, db_path: str = None) -> bool:
    """Delete a document with its candidates and pages. True if it existed."""
    with get_connection(db_path) as conn:
        conn.execute(
            "DELETE FROM question_candidates WHERE document_id = ?", (document_id,)
        )
        conn.execute("DELETE FROM exam_pages WHERE document_id = ?", (document_id,))
        cursor = conn.execute(
            "DELETE FROM exam_documents WHERE id = ?", (document_id,)
        )
        return cursor.rowcount > 0


# ─── Pages ────────────────────────────────────────────────────────────────────


def insert_pages(pages: list[Page], db_path: str = None):
    """Insert page rows for a freshly extracted document."""
    with get_connection(db_path) as conn:
        conn.executemany(
            """INSERT INTO exam_pages
               (id, document_id, page_number, image_path, status)
               VALUES (?, ?, ?, ?, ?)""",
            [
                (p.id, p.document_id, p.page_number, p.image_path, p.status.value)
                for p in pages
            ],
        )


def get_page(page_id: str, db_path: str = None) -> Optional[Page]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM exam_pages WHERE id = ?", (page_id,)
        ).fetchone()
        return _row_to_page(row) if row else None


def list_pages(document_id: str, db_path: str = None) -> list[Page]:
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM exam_pages WHERE document_id = ? ORDER BY page_number",
            (document_id,),
        ).fetchall()
        return [_row_to_page(r) for r in rows]


_PAGE_FIELDS = {"status", "raw_extracted_text", "normalized_text", "error_message"}


def update_page(page_id: str, db_path: str = None, **fields) -> bool:
    """Update page fields. Returns True if the row was found."""
    fields = {k: v for k, v in fields.items() if k in _PAGE_FIELDS}
    if not fields:
        return False

    values = [getattr(v, "value", v) for v in fields.values()]
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    status = fields.get("status")
    if status is not None and getattr(status, "value", status) in ("completed", "error"):
        set_clause += ", processed_at = CURRENT_TIMESTAMP"

    with get_connection(db_path) as conn:
        cursor = conn.execute(
            f"UPDATE exam_pages SET {set_clause} WHERE id = ?",
            values + [page_id],
        )
        return cursor.rowcount > 0


# ─── Candidates ───────────────────────────────────────────────────────────────


def upsert_candidate(c: QuestionCandidate, db_path: str = None):
    """
    Insert a candidate, or refresh a pending one with the same id.
    Approved and rejected candidates are frozen and left untouched.
    """
    with get_connection(db_path) as conn:
        conn.execute(
            """INSERT INTO question_candidates
               (id, document_id, page_id, question_number, raw_content,
                normalized_content, options, is_incomplete, question_type, status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   page_id = excluded.page_id,
                   question_number = excluded.question_number,
                   raw_content = excluded.raw_content,
                   normalized_content = excluded.normalized_content,
                   options = excluded.options,
                   is_incomplete = excluded.is_incomplete,
                   question_type = excluded.question_type
               WHERE question_candidates.status = 'pending'""",
            (
                c.id,
                c.document_id,
                c.page_id,
                c.question_number,
                c.raw_content,
                c.normalized_content,
                json.dumps(c.options, ensure_ascii=False) if c.options else None,
                1 if c.is_incomplete else 0,
                c.question_type.value,
                c.status.value,
            ),
        )


def delete_stale_candidates(
    page_id: str, keep_ids: list[str], db_path: str = None
) -> int:
    """
    Drop pending candidates of a page that a fresh extraction no longer
    produced. Returns the number removed.
    """
    query = (
        "DELETE FROM question_candidates WHERE page_id = ? AND status = 'pending'"
    )
    params: list = [page_id]
    if keep_ids:
        query += f" AND id NOT IN ({', '.join('?' for _ in keep_ids)})"
        params.extend(keep_ids)

    with get_connection(db_path) as conn:
        return conn.execute(query, params).rowcount


def get_candidate(candidate_id: str, db_path: str = None) -> Optional[QuestionCandidate]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM question_candidates WHERE id = ?", (candidate_id,)
        ).fetchone()
        return _row_to_candidate(row) if row else None


def list_candidates(
    document_id: str,
    status: Optional[CandidateStatus] = None,
    db_path: str = None,
) -> list[QuestionCandidate]:
    """Candidates of a document in sequence order (page, then number)."""
    query = """
        SELECT c.*, p.page_number
        FROM question_candidates c
        LEFT JOIN exam_pages p ON c.page_id = p.id
        WHERE c.document_id = ?
    """
    params: list = [document_id]
    if status is not None:
        query += " AND c.status = ?"
        params.append(CandidateStatus(status).value)
    query += " ORDER BY COALESCE(p.page_number, 0), c.question_number, c.id"

    with get_connection(db_path) as conn:
        return [_row_to_candidate(r) for r in conn.execute(query, params).fetchall()]


_CANDIDATE_FIELDS = {"normalized_content", "raw_content", "options", "status", "reviewer_notes"}


def update_candidate(candidate_id: str, db_path: str = None, **fields) -> bool:
    """Update candidate fields. Returns True if the row was found."""
    fields = {k: v for k, v in fields.items() if k in _CANDIDATE_FIELDS}
    if not fields:
        return False

    if "options" in fields:
        options = fields["options"]
        fields["options"] = json.dumps(options, ensure_ascii=False) if options else None

    values = [getattr(v, "value", v) for v in fields.values()]
    set_clause = ", ".join(f"{k} = ?" for k in fields)
    if "status" in fields:
        set_clause += ", reviewed_at = CURRENT_TIMESTAMP"

    with get_connection(db_path) as conn:
        cursor = conn.execute(
            f"UPDATE question_candidates SET {set_clause} WHERE id = ?",
            values + [candidate_id],
        )
        return cursor.rowcount > 0


def promote_candidate(
    candidate_id: str,
    question: CanonicalQuestion,
    notes: Optional[str] = None,
    db_path: str = None,
):
    """
    Copy a candidate into the questions table and mark it approved, in a
    single transaction.
    """
    with get_connection(db_path) as conn:
        conn.execute(_UPSERT_QUESTION_SQL, _question_params(question))
        conn.execute(
            """UPDATE question_candidates
               SET status = ?, reviewer_notes = ?, reviewed_at = CURRENT_TIMESTAMP
               WHERE id = ?""",
            (CandidateStatus.APPROVED.value, notes, candidate_id),
        )
