"""
Text Bank Parser
================
Parses curated markdown question banks (Preguntas_<Topic>.md) into
CanonicalQuestion records.

Handles:
    - Question headers: "## Pregunta N" or "## Pregunta N (Pagina X-Y)"
    - Shared statements: "**Enunciado N:**" referenced by later questions
    - Options: a) / A. prefixes, one per line or all on one line
    - "Continuando con la pregunta anterior" context links
    - Multi-file banks where one broken file must not stop the batch
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Union

from .errors import BatchFileError
from .models import (
    Anomaly,
    AnomalyType,
    BankParseResult,
    CanonicalQuestion,
    FailedFile,
)
from .options import MIN_OPTIONS, extract_options
from .segmenter import split_question, strip_leading_number
from .statements import SharedStatementTable

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# ─── Patterns ─────────────────────────────────────────────────────────────────

# "## Pregunta 12", "## Pregunta 12 (Pagina 3)", "## Pregunta 12 (Pagina 3-4)"
QUESTION_HEADER_PATTERN = re.compile(
    r"^## Pregunta (\d+)(?:\s*\(P[aá]gina\s*[\d\-]+\))?", re.MULTILINE
)

TRAILING_SEPARATOR_PATTERN = re.compile(r"\n---\s*$")

# "Preguntas_Tema3.md" -> "Tema3"
BANK_FILE_PATTERN = re.compile(r"Preguntas_(Tema\d+|SinTema)")
BANK_FILE_GLOB = "Preguntas_*.md"

CONTINUATION_PATTERN = re.compile(
    r"continuando\s+con\s+(?:el\s+ejercicio|la\s+pregunta)\s+anterior",
    re.IGNORECASE,
)

UNKNOWN_TOPIC = "Unknown"


def topic_from_filename(name: str) -> str:
    """Topic identifier encoded in a bank file name."""
    match = BANK_FILE_PATTERN.search(Path(name).stem)
    return match.group(1) if match else UNKNOWN_TOPIC


def question_id(topic: str, question_number: int) -> str:
    return f"{topic.lower()}_pregunta{question_number}"


# ─── Single Text ──────────────────────────────────────────────────────────────


def parse_text(
    text: str,
    topic: str,
    subject_id: str = "",
) -> list[CanonicalQuestion]:
    """
    Parse one bank text into questions, one per header found.

    A header whose block cannot be fully parsed still yields a record,
    flagged with anomalies, so gaps stay visible.
    """
    statements = SharedStatementTable.build(text)
    headers = list(QUESTION_HEADER_PATTERN.finditer(text))

    if not headers:
        logger.warning(f"No question headers found for topic {topic!r}")
        return []

    questions: list[CanonicalQuestion] = []
    previous_id: Optional[str] = None

    for i, header in enumerate(headers):
        end = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        block = text[header.end():end].strip()
        block = TRAILING_SEPARATOR_PATTERN.sub("", block).strip()

        question = parse_block(
            block,
            question_number=int(header.group(1)),
            topic=topic,
            subject_id=subject_id,
            statements=statements,
            previous_id=previous_id,
        )
        questions.append(question)
        previous_id = question.id

    logger.info(
        f"Parsed {len(questions)} questions for topic {topic!r} "
        f"({len(statements)} shared statements)"
    )
    return questions


def parse_block(
    block: str,
    question_number: int,
    topic: str,
    subject_id: str,
    statements: SharedStatementTable,
    previous_id: Optional[str] = None,
) -> CanonicalQuestion:
    """Turn one question block (header removed) into a question record."""
    content = strip_leading_number(block)
    anomalies: list[Anomaly] = []

    shared_statement = None
    reference = statements.find_reference(content)
    if reference is not None:
        shared_statement = statements.resolve(reference)
        if shared_statement is None:
            anomalies.append(Anomaly(
                type=AnomalyType.UNRESOLVED_STATEMENT_REFERENCE,
                severity=30,
                message=f"Enunciado {reference} is referenced but never declared",
                context={"label": reference},
            ))

    # A statement declared inside the block wins over a referenced one
    inline = statements.find_inline(content)
    if inline:
        shared_statement = inline[1]

    body, options_region = split_question(content)
    options = extract_options(options_region)

    parent_id = None
    if previous_id and CONTINUATION_PATTERN.search(body):
        parent_id = previous_id

    if not options_region:
        anomalies.append(Anomaly(
            type=AnomalyType.MISSING_OPTIONS,
            severity=60,
            message="Block has no options region",
        ))
    elif len(options) < MIN_OPTIONS:
        anomalies.append(Anomaly(
            type=AnomalyType.INSUFFICIENT_OPTIONS,
            severity=50,
            message=f"Only {len(options)} option(s) recovered",
            context={"found": sorted(options)},
        ))

    if not body:
        anomalies.append(Anomaly(
            type=AnomalyType.MISSING_QUESTION_TEXT,
            severity=80,
            message="Question has no text content",
        ))

    if anomalies:
        logger.warning(
            f"{topic} question {question_number}: "
            + "; ".join(a.message for a in anomalies)
        )

    return CanonicalQuestion(
        id=question_id(topic, question_number),
        subject_id=subject_id,
        topic=topic,
        question_number=question_number,
        shared_statement=shared_statement,
        content=body,
        options=options,
        parent_question_id=parent_id,
        anomalies=anomalies,
    )


# ─── Files & Batches ──────────────────────────────────────────────────────────


def parse_file(path: PathLike, subject_id: str = "") -> list[CanonicalQuestion]:
    """Read one bank file (UTF-8) and parse it under its filename topic."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return parse_text(text, topic_from_filename(path.name), subject_id)


def parse_files(
    paths: Iterable[PathLike],
    subject_id: str = "",
) -> BankParseResult:
    """
    Parse several bank files. A file that fails to read or parse is logged
    and skipped; the remaining files are still parsed.
    """
    result = BankParseResult()

    for path in paths:
        path = Path(path)
        try:
            questions = parse_file(path, subject_id)
        except Exception as e:
            error = BatchFileError(str(path), e)
            logger.error(str(error))
            result.failed_files.append(FailedFile(file=path.name, error=str(e)))
            continue

        result.questions.extend(questions)
        result.parsed_files.append(path.name)

    logger.info(
        f"Bank parse finished: {result.total_questions} questions from "
        f"{len(result.parsed_files)} file(s), {len(result.failed_files)} failed"
    )
    return result


def find_bank_files(directory: PathLike) -> list[Path]:
    return sorted(Path(directory).glob(BANK_FILE_GLOB))


def parse_directory(directory: PathLike, subject_id: str = "") -> BankParseResult:
    """Parse every Preguntas_*.md file in a directory, in name order."""
    files = find_bank_files(directory)
    if not files:
        logger.warning(f"No bank files found in: {directory}")
    return parse_files(files, subject_id)


def available_topics(directory: PathLike) -> list[str]:
    """Topic identifiers of the bank files in a directory."""
    topics = []
    for path in find_bank_files(directory):
        topic = topic_from_filename(path.name)
        if topic != UNKNOWN_TOPIC:
            topics.append(topic)
    return topics
