"""
Extraction Result Parser
========================
Turns the free text returned by the vision service for one page into
QuestionCandidate records.

Vision pages are treated as self-contained: no shared statement table is
built or consulted here. The output is tolerated in any shape; anything
that does not look like a numbered question is dropped.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import QuestionCandidate, QuestionType
from .options import extract_options
from .segmenter import split_question

logger = logging.getLogger(__name__)

# ─── Markers ──────────────────────────────────────────────────────────────────

NO_QUESTIONS_MARKER = "[NO HAY PREGUNTAS DE TEST EN ESTA PÁGINA]"
INCOMPLETE_MARKER = "[INCOMPLETO]"

# Split before every "## Pregunta N" header
BLOCK_SPLIT_PATTERN = re.compile(r"(?=^## Pregunta \d+)", re.MULTILINE)
HEADER_PATTERN = re.compile(r"^## Pregunta (\d+)[^\n]*\n*")
TRAILING_SEPARATOR_PATTERN = re.compile(r"\n?---\s*$")

# Open questions: "1. ...", "2) ...", "3.- ..." running until the next
# numbered item, a heading, a separator, a "Página N" footer or the end.
OPEN_QUESTION_PATTERN = re.compile(
    r"^(\d+)[.)\-]+[ \t]+(.+?)"
    r"(?=^\d+[.)\-]+[ \t]+|^#{1,3}\s|^---|\*{3}|^P[aá]gina\s+\d+|\Z)",
    re.MULTILINE | re.DOTALL,
)
MIN_OPEN_QUESTION_LENGTH = 20

EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def page_ordinal(page_id: Optional[str], page_number: Optional[int] = None) -> str:
    """Page component of a candidate id: page number, page id suffix or "x"."""
    if page_number is not None:
        return str(page_number)
    if page_id:
        return page_id.rsplit("_", 1)[-1]
    return "x"


def candidate_id(
    document_id: str,
    question_number: int,
    page_id: Optional[str] = None,
    page_number: Optional[int] = None,
) -> str:
    """Deterministic id so reprocessing a page yields the same candidates."""
    return f"{document_id}_p{page_ordinal(page_id, page_number)}_q{question_number}"


def clean_text(text: str) -> str:
    """Trim every line and collapse runs of blank lines to a single one."""
    lines = [line.strip() for line in text.split("\n")]
    return EXCESS_BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


# ─── Multiple-Choice Pages ────────────────────────────────────────────────────


def parse_extracted_questions(
    raw_text: Optional[str],
    document_id: str,
    page_id: Optional[str] = None,
    page_number: Optional[int] = None,
) -> list[QuestionCandidate]:
    """Parse a test-mode vision response into pending candidates."""
    if not raw_text or raw_text.strip() == NO_QUESTIONS_MARKER:
        return []

    candidates: list[QuestionCandidate] = []

    for block in BLOCK_SPLIT_PATTERN.split(raw_text):
        trimmed = block.strip()
        header = HEADER_PATTERN.match(trimmed)
        if not header:
            continue

        number = int(header.group(1))
        content = trimmed[header.end():]
        content = TRAILING_SEPARATOR_PATTERN.sub("", content).strip()

        is_incomplete = INCOMPLETE_MARKER in content
        if is_incomplete:
            content = content.replace(INCOMPLETE_MARKER, "").strip()

        body, options_region = split_question(content)
        options = extract_options(options_region)

        candidates.append(QuestionCandidate(
            id=candidate_id(document_id, number, page_id, page_number),
            document_id=document_id,
            page_id=page_id,
            question_number=number,
            raw_content=trimmed,
            normalized_content=body or None,
            options=options or None,
            is_incomplete=is_incomplete,
        ))

    logger.debug(
        f"Document {document_id} page {page_ordinal(page_id, page_number)}: "
        f"{len(candidates)} candidate(s)"
    )
    return candidates


# ─── Open-Question Pages ──────────────────────────────────────────────────────


def parse_open_questions(
    raw_text: Optional[str],
    document_id: str,
    page_id: Optional[str] = None,
    page_number: Optional[int] = None,
) -> list[QuestionCandidate]:
    """Parse a content-mode vision response into open (optionless) candidates."""
    if not raw_text:
        return []

    candidates = []
    for match in OPEN_QUESTION_PATTERN.finditer(raw_text):
        number = int(match.group(1))
        content = clean_text(match.group(2))
        if len(content) < MIN_OPEN_QUESTION_LENGTH:
            continue

        is_incomplete = INCOMPLETE_MARKER in content
        if is_incomplete:
            content = content.replace(INCOMPLETE_MARKER, "").strip()

        candidates.append(QuestionCandidate(
            id=candidate_id(document_id, number, page_id, page_number),
            document_id=document_id,
            page_id=page_id,
            question_number=number,
            raw_content=match.group(0).strip(),
            normalized_content=content,
            options=None,
            is_incomplete=is_incomplete,
            question_type=QuestionType.OPEN,
        ))
    return candidates


def normalize_questions(candidates: list[QuestionCandidate]) -> list[QuestionCandidate]:
    """
    Clean the display text of each candidate in place: normalized content
    when present, else the raw block. Raw text is never copied into
    normalized content, so a block without statement text stays without it.
    """
    normalized = []
    for c in candidates:
        if c.normalized_content is not None:
            update = {"normalized_content": clean_text(c.normalized_content)}
        else:
            update = {"raw_content": clean_text(c.raw_content)}
        normalized.append(c.model_copy(update=update))
    return normalized
