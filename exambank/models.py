"""
Data Models
===========
Pydantic models for canonical questions and the document ingestion pipeline.
All models are serializable to JSON for the HTTP API and the CLI.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field

# Fixed option alphabet. Source labels of any case are normalized to these.
OPTION_LABELS: tuple[str, ...] = ("a", "b", "c", "d")


# ─── Enums ────────────────────────────────────────────────────────────────────


class DocumentStatus(str, Enum):
    """Lifecycle status of an uploaded scanned document."""
    UPLOADED = "uploaded"
    EXTRACTED = "extracted"
    COMPLETED = "completed"
    ERROR = "error"


class PageStatus(str, Enum):
    """Lifecycle status of a single page image."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class CandidateStatus(str, Enum):
    """Review status of a machine-extracted question."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuestionType(str, Enum):
    """Supported candidate formats."""
    MCQ = "mcq"
    OPEN = "open"


class ExtractionMode(str, Enum):
    """What the vision service is asked to extract from a page."""
    TEST = "test"
    CONTENT = "content"


class AnomalyType(str, Enum):
    """Structural problems detected while parsing a text bank."""
    MISSING_OPTIONS = "missing_options"
    INSUFFICIENT_OPTIONS = "insufficient_options"
    MISSING_QUESTION_TEXT = "missing_question_text"
    DUPLICATE_QUESTION_NUMBER = "duplicate_question_number"
    UNRESOLVED_STATEMENT_REFERENCE = "unresolved_statement_reference"


# ─── Anomaly Model ────────────────────────────────────────────────────────────


class Anomaly(BaseModel):
    """A structural anomaly detected in a question block."""
    type: AnomalyType
    severity: int = Field(
        ge=0, le=100,
        description="Severity score 0-100"
    )
    message: str
    context: Optional[dict] = None


def count_filled(options: Optional[dict[str, Optional[str]]]) -> int:
    """Number of option slots holding non-empty text."""
    if not options:
        return 0
    return sum(1 for v in options.values() if v and v.strip())


# ─── Canonical Question ──────────────────────────────────────────────────────


class CanonicalQuestion(BaseModel):
    """
    An accepted, practice-ready question.

    Produced directly by the text bank parser or by promoting an approved
    candidate. Parse-time anomalies travel with the record for reporting but
    are never persisted.
    """
    id: str
    subject_id: str = ""
    topic: str
    question_number: int
    shared_statement: Optional[str] = None
    content: str = ""
    options: dict[str, str] = Field(default_factory=dict)
    parent_question_id: Optional[str] = None
    anomalies: list[Anomaly] = Field(default_factory=list, exclude=True)

    @computed_field
    @property
    def option_count(self) -> int:
        return count_filled(self.options)

    @computed_field
    @property
    def is_complete(self) -> bool:
        """True when the record satisfies the canonical table invariant."""
        return self.option_count >= 2 and bool(self.content.strip())


# ─── Document Pipeline Models ─────────────────────────────────────────────────


class IngestedDocument(BaseModel):
    """One uploaded scanned exam."""
    id: str
    subject_id: str
    filename: str
    original_path: str = ""
    page_count: int = 0
    status: DocumentStatus = DocumentStatus.UPLOADED
    error_message: Optional[str] = None
    uploaded_at: Optional[str] = None
    processed_at: Optional[str] = None


class Page(BaseModel):
    """One page image of an IngestedDocument."""
    id: str
    document_id: str
    page_number: int = Field(ge=1)
    image_path: str
    status: PageStatus = PageStatus.PENDING
    raw_extracted_text: Optional[str] = None
    normalized_text: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: Optional[str] = None


class QuestionCandidate(BaseModel):
    """A question proposed from a page, awaiting human review."""
    id: str
    document_id: str
    page_id: Optional[str] = None
    question_number: int
    raw_content: str
    normalized_content: Optional[str] = None
    options: Optional[dict[str, str]] = None
    is_incomplete: bool = False
    question_type: QuestionType = QuestionType.MCQ
    status: CandidateStatus = CandidateStatus.PENDING
    reviewer_notes: Optional[str] = None
    reviewed_at: Optional[str] = None

    @computed_field
    @property
    def option_count(self) -> int:
        return count_filled(self.options)

    @property
    def display_content(self) -> str:
        """Cleaned text when present, raw text otherwise."""
        return self.normalized_content or self.raw_content


# ─── Operation Results ───────────────────────────────────────────────────────


class ProcessingSummary(BaseModel):
    """Outcome of running vision extraction over a document."""
    document_id: str
    pages_processed: int = 0
    pages_failed: int = 0
    pages_skipped: int = 0
    questions_extracted: int = 0
    failed_pages: list[str] = Field(default_factory=list)


class PageResult(BaseModel):
    """Outcome of processing a single page."""
    page_id: str
    status: PageStatus
    candidates: list[QuestionCandidate] = Field(default_factory=list)
    error: Optional[str] = None

    @computed_field
    @property
    def questions_found(self) -> int:
        return len(self.candidates)


class ApprovalSummary(BaseModel):
    """Counts returned by bulk approval."""
    approved: int = 0
    skipped: int = 0

    @computed_field
    @property
    def total(self) -> int:
        return self.approved + self.skipped


class FailedFile(BaseModel):
    """A bank file that could not be read or parsed."""
    file: str
    error: str


class BankParseResult(BaseModel):
    """Union of questions parsed from a multi-file text bank."""
    questions: list[CanonicalQuestion] = Field(default_factory=list)
    parsed_files: list[str] = Field(default_factory=list)
    failed_files: list[FailedFile] = Field(default_factory=list)

    @computed_field
    @property
    def total_questions(self) -> int:
        return len(self.questions)


class ValidationReport(BaseModel):
    """Post-parse validation report for a text bank."""
    total_questions_detected: int = 0
    structured_successfully: int = 0
    missing_question_numbers: dict[str, list[int]] = Field(default_factory=dict)
    duplicate_question_numbers: dict[str, list[int]] = Field(default_factory=dict)
    questions_missing_options: list[str] = Field(default_factory=list)
    questions_missing_text: list[str] = Field(default_factory=list)
    anomaly_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_questions_detected == 0:
            return 0.0
        return round(
            self.structured_successfully / self.total_questions_detected * 100,
            2
        )
