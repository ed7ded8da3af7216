"""
Approval Workflow
=================
The human gate between machine-extracted candidates and the canonical
question table.

A candidate is promoted only while `pending` and only when it carries at
least two non-empty options and statement text of its own. Decided
candidates are frozen: approving, rejecting or editing them again is an
IllegalTransition.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import database as db
from .errors import InsufficientOptions, MissingQuestionText, NotFound, ValidationFailure
from .models import (
    OPTION_LABELS,
    ApprovalSummary,
    CandidateStatus,
    CanonicalQuestion,
    QuestionCandidate,
    count_filled,
)
from .options import MIN_OPTIONS
from .state_machine import CandidateAction, next_candidate_status

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "Exam"


def promoted_question_id(subject_id: str, candidate_id: str) -> str:
    return f"{subject_id}_exam_{candidate_id}"


class ApprovalWorkflow:
    """Approve, reject, bulk-approve and edit question candidates."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path

    def get_candidate(self, candidate_id: str) -> QuestionCandidate:
        candidate = db.get_candidate(candidate_id, self.db_path)
        if candidate is None:
            raise NotFound("Candidate", candidate_id)
        return candidate

    # ─── Single Decisions ─────────────────────────────────────────────────

    def approve(
        self,
        candidate_id: str,
        topic: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CanonicalQuestion:
        """
        Promote a pending candidate into the canonical question table.

        Raises:
            IllegalTransition: the candidate was already decided.
            InsufficientOptions: fewer than two non-empty options.
            MissingQuestionText: the candidate has no statement text.
        """
        candidate = self.get_candidate(candidate_id)
        next_candidate_status(candidate.status, CandidateAction.APPROVE)

        found = count_filled(candidate.options)
        if found < MIN_OPTIONS:
            raise InsufficientOptions(candidate.id, found)
        if not (candidate.normalized_content or "").strip():
            raise MissingQuestionText(candidate.id)

        question = self._to_question(candidate, topic)
        db.promote_candidate(candidate.id, question, notes, self.db_path)
        logger.info(f"Approved candidate {candidate.id} as question {question.id}")
        return question

    def reject(self, candidate_id: str, notes: Optional[str] = None) -> QuestionCandidate:
        candidate = self.get_candidate(candidate_id)
        status = next_candidate_status(candidate.status, CandidateAction.REJECT)
        db.update_candidate(
            candidate.id, self.db_path, status=status, reviewer_notes=notes
        )
        logger.info(f"Rejected candidate {candidate.id}")
        return self.get_candidate(candidate.id)

    # ─── Bulk ─────────────────────────────────────────────────────────────

    def approve_all(
        self, document_id: str, topic: Optional[str] = None
    ) -> ApprovalSummary:
        """
        Approve every pending candidate of a document in sequence order.
        Candidates with fewer than two options or no statement text are
        skipped, not fatal.

        The topic override applies to the whole batch even if the
        document mixes topics.
        """
        if db.get_document(document_id, self.db_path) is None:
            raise NotFound("Document", document_id)

        summary = ApprovalSummary()
        pending = db.list_candidates(document_id, CandidateStatus.PENDING, self.db_path)
        for candidate in pending:
            try:
                self.approve(candidate.id, topic)
            except (InsufficientOptions, MissingQuestionText) as e:
                logger.debug(f"Skipping candidate: {e}")
                summary.skipped += 1
                continue
            summary.approved += 1

        logger.info(
            f"Bulk approval for {document_id}: "
            f"{summary.approved} approved, {summary.skipped} skipped"
        )
        return summary

    # ─── Edits ────────────────────────────────────────────────────────────

    def update_candidate(
        self,
        candidate_id: str,
        content: Optional[str] = None,
        options: Optional[dict[str, str]] = None,
        raw_content: Optional[str] = None,
    ) -> QuestionCandidate:
        """Reviewer correction of a pending candidate before it is decided."""
        candidate = self.get_candidate(candidate_id)
        next_candidate_status(candidate.status, CandidateAction.EDIT)

        fields = {}
        if content is not None:
            fields["normalized_content"] = content
        if raw_content is not None:
            fields["raw_content"] = raw_content
        if options is not None:
            fields["options"] = _clean_options(options)

        if fields:
            db.update_candidate(candidate.id, self.db_path, **fields)
            logger.info(f"Updated candidate {candidate.id}: {', '.join(fields)}")
        return self.get_candidate(candidate.id)

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _to_question(
        self, candidate: QuestionCandidate, topic: Optional[str]
    ) -> CanonicalQuestion:
        document = db.get_document(candidate.document_id, self.db_path)
        subject_id = document.subject_id if document else ""
        return CanonicalQuestion(
            id=promoted_question_id(subject_id, candidate.id),
            subject_id=subject_id,
            topic=topic or DEFAULT_TOPIC,
            question_number=candidate.question_number,
            content=candidate.normalized_content.strip(),
            options=_clean_options(candidate.options or {}),
        )


def _clean_options(options: dict) -> dict[str, str]:
    """Lower-case labels, drop empty slots, reject labels outside a-d."""
    cleaned: dict[str, str] = {}
    for label, text in options.items():
        key = str(label).strip().lower()
        if key not in OPTION_LABELS:
            raise ValidationFailure(f"Unknown option label: {label!r}")
        if text is not None and str(text).strip():
            cleaned[key] = str(text).strip()
    return {k: cleaned[k] for k in OPTION_LABELS if k in cleaned}
