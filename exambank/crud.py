"""
CRUD Service Layer
==================
High-level operations that coordinate the parsers, SQLite and storage.
The CLI and the HTTP API call these instead of the database module
directly.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from . import database as db
from .models import (
    BankParseResult,
    CandidateStatus,
    CanonicalQuestion,
    ValidationReport,
)
from .text_bank import parse_directory, parse_files
from .validator import ValidationEngine

logger = logging.getLogger(__name__)


# ─── Text Banks ───────────────────────────────────────────────────────────────


def parse_bank(
    path: Union[str, Path],
    subject_id: str = "",
) -> tuple[BankParseResult, ValidationReport]:
    """Parse a bank file or directory and validate the result."""
    path = Path(path)
    if path.is_dir():
        result = parse_directory(path, subject_id)
    else:
        result = parse_files([path], subject_id)

    report = ValidationEngine().validate(result.questions)
    return result, report


def store_questions(questions: list[CanonicalQuestion], db_path: str = None) -> dict:
    """
    Upsert the complete questions into the canonical table.

    Questions with fewer than two options or no text are not stored; they
    are reported as skipped so an operator can fix the source and reload.
    """
    complete = [q for q in questions if q.is_complete]
    skipped = [q.id for q in questions if not q.is_complete]
    for question_id in skipped:
        logger.warning(f"[import] Skipping incomplete question {question_id}")

    db.init_db(db_path)
    stored = db.bulk_upsert_questions(complete, db_path)
    logger.info(f"[import] Stored {stored} question(s), skipped {len(skipped)}")
    return {"stored_questions": stored, "skipped_questions": skipped}


def import_text_bank(
    path: Union[str, Path],
    subject_id: str = "",
    db_path: str = None,
) -> dict:
    """Parse a bank file or directory and store its complete questions."""
    result, report = parse_bank(path, subject_id)
    summary = store_questions(result.questions, db_path)

    return {
        "parsed_questions": result.total_questions,
        **summary,
        "parsed_files": result.parsed_files,
        "failed_files": [f.model_dump() for f in result.failed_files],
        "validation": report.model_dump(),
    }


# ─── Documents ────────────────────────────────────────────────────────────────


def get_document_detail(document_id: str, db_path: str = None) -> Optional[dict]:
    """
    A document with its pages and candidate counts by status.
    Returns None if not found.
    """
    document = db.get_document(document_id, db_path)
    if document is None:
        return None

    pages = db.list_pages(document_id, db_path)
    candidates = db.list_candidates(document_id, db_path=db_path)
    counts = {status.value: 0 for status in CandidateStatus}
    for candidate in candidates:
        counts[candidate.status.value] += 1

    return {
        "document": document.model_dump(mode="json"),
        "pages": [p.model_dump(mode="json") for p in pages],
        "candidate_counts": counts,
        "total_candidates": len(candidates),
    }
