"""
Tests for the approval workflow that promotes candidates to canonical
questions.
"""

from __future__ import annotations

import pytest

from exambank import database as db
from exambank.approval import DEFAULT_TOPIC, ApprovalWorkflow, promoted_question_id
from exambank.errors import (
    IllegalTransition,
    InsufficientOptions,
    MissingQuestionText,
    NotFound,
    ValidationFailure,
)
from exambank.models import CandidateStatus

PAGE = (
    "## Pregunta 1\n"
    "¿Qué es un átomo?\n"
    "a) Una partícula\n"
    "b) Una onda\n\n"
    "## Pregunta 2\n"
    "¿Qué es un ion?\n"
    "a) Átomo cargado\n"
    "b) Molécula\n"
    "c) Electrón\n\n"
    "## Pregunta 3\n"
    "¿Solo una opción?\n"
    "a) única\n"
)


@pytest.fixture
def document(pipeline, vision, pdf_file):
    """A processed document whose first page yields three candidates."""
    vision.responses = {"page-1": PAGE}
    document = pipeline.upload(pdf_file, "fisica")
    pipeline.extract_pages(document.id)
    pipeline.process_document(document.id)
    return document


@pytest.fixture
def workflow(db_path) -> ApprovalWorkflow:
    return ApprovalWorkflow(db_path)


def _cid(document, number: int) -> str:
    return f"{document.id}_p1_q{number}"


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLE DECISIONS
# ═══════════════════════════════════════════════════════════════════════════════


class TestApprove:

    def test_approve_promotes_candidate(self, workflow, document, db_path):
        question = workflow.approve(_cid(document, 1))

        assert question.id == promoted_question_id("fisica", _cid(document, 1))
        assert question.id == f"fisica_exam_{document.id}_p1_q1"
        assert question.subject_id == "fisica"
        assert question.topic == DEFAULT_TOPIC
        assert question.question_number == 1
        assert question.content == "¿Qué es un átomo?"
        assert question.options == {"a": "Una partícula", "b": "Una onda"}

        stored = db.get_question(question.id, db_path)
        assert stored is not None
        assert stored.options == question.options

        candidate = workflow.get_candidate(_cid(document, 1))
        assert candidate.status == CandidateStatus.APPROVED
        assert candidate.reviewed_at is not None

    def test_topic_and_notes(self, workflow, document):
        question = workflow.approve(_cid(document, 2), topic="Tema3", notes="revisada")
        assert question.topic == "Tema3"
        assert workflow.get_candidate(_cid(document, 2)).reviewer_notes == "revisada"

    def test_insufficient_options(self, workflow, document, db_path):
        with pytest.raises(InsufficientOptions) as exc:
            workflow.approve(_cid(document, 3))

        assert exc.value.found == 1
        assert db.count_questions(db_path=db_path) == 0
        assert workflow.get_candidate(_cid(document, 3)).status == CandidateStatus.PENDING

    def test_cannot_approve_twice(self, workflow, document, db_path):
        workflow.approve(_cid(document, 1))
        with pytest.raises(IllegalTransition):
            workflow.approve(_cid(document, 1))
        assert db.count_questions(db_path=db_path) == 1

    def test_unknown_candidate(self, workflow):
        with pytest.raises(NotFound):
            workflow.approve("missing")


class TestStatementText:

    BARE_PAGE = (
        "## Pregunta 1\n\n"
        "a) Uno\n"
        "b) Dos\n\n"
        "## Pregunta 2\n"
        "¿Con enunciado?\n"
        "a) Sí\n"
        "b) No\n"
    )

    @pytest.fixture
    def bare_document(self, pipeline, vision, pdf_file):
        vision.responses = {"page-1": self.BARE_PAGE}
        document = pipeline.upload(pdf_file, "fisica")
        pipeline.extract_pages(document.id)
        pipeline.process_document(document.id)
        return document

    def test_no_statement_is_refused(self, workflow, bare_document, db_path):
        with pytest.raises(MissingQuestionText) as exc:
            workflow.approve(_cid(bare_document, 1))

        assert isinstance(exc.value, ValidationFailure)
        assert db.count_questions(db_path=db_path) == 0
        candidate = workflow.get_candidate(_cid(bare_document, 1))
        assert candidate.status == CandidateStatus.PENDING
        assert candidate.normalized_content is None

    def test_bulk_approval_skips_it(self, workflow, bare_document, db_path):
        summary = workflow.approve_all(bare_document.id)

        assert summary.approved == 1
        assert summary.skipped == 1
        (question,) = db.list_questions(db_path=db_path)
        assert question.content == "¿Con enunciado?"

    def test_reviewer_text_makes_it_approvable(self, workflow, bare_document):
        workflow.update_candidate(_cid(bare_document, 1), content="¿Cuál es correcta?")
        question = workflow.approve(_cid(bare_document, 1))

        assert question.content == "¿Cuál es correcta?"
        assert "## Pregunta" not in question.content


class TestReject:

    def test_reject_stores_notes(self, workflow, document, db_path):
        candidate = workflow.reject(_cid(document, 1), notes="duplicada")

        assert candidate.status == CandidateStatus.REJECTED
        assert candidate.reviewer_notes == "duplicada"
        assert candidate.reviewed_at is not None
        assert db.count_questions(db_path=db_path) == 0

    def test_rejected_candidate_is_frozen(self, workflow, document):
        workflow.reject(_cid(document, 1))
        with pytest.raises(IllegalTransition):
            workflow.approve(_cid(document, 1))
        with pytest.raises(IllegalTransition):
            workflow.reject(_cid(document, 1))


# ═══════════════════════════════════════════════════════════════════════════════
# BULK APPROVAL
# ═══════════════════════════════════════════════════════════════════════════════


class TestApproveAll:

    def test_skips_insufficient_options(self, workflow, document, db_path):
        summary = workflow.approve_all(document.id)

        assert summary.approved == 2
        assert summary.skipped == 1
        assert summary.total == 3
        assert db.count_questions(db_path=db_path) == 2

        pending = db.list_candidates(document.id, CandidateStatus.PENDING, db_path)
        assert [c.id for c in pending] == [_cid(document, 3)]

    def test_topic_applies_to_batch(self, workflow, document, db_path):
        workflow.approve_all(document.id, topic="Tema1")
        topics = {q.topic for q in db.list_questions(db_path=db_path)}
        assert topics == {"Tema1"}

    def test_only_pending_candidates(self, workflow, document, db_path):
        workflow.reject(_cid(document, 1))
        summary = workflow.approve_all(document.id)
        assert summary.approved == 1
        assert summary.skipped == 1

    def test_second_run_is_a_no_op(self, workflow, document):
        workflow.approve_all(document.id)
        summary = workflow.approve_all(document.id)
        assert summary.approved == 0
        assert summary.skipped == 1

    def test_unknown_document(self, workflow):
        with pytest.raises(NotFound):
            workflow.approve_all("missing")


# ═══════════════════════════════════════════════════════════════════════════════
# EDITS
# ═══════════════════════════════════════════════════════════════════════════════


class TestUpdateCandidate:

    def test_edit_then_approve(self, workflow, document):
        candidate = workflow.update_candidate(
            _cid(document, 3),
            content="¿Cuál es la opción correcta?",
            options={"A": "única", "b": " otra ", "c": ""},
        )

        assert candidate.normalized_content == "¿Cuál es la opción correcta?"
        assert candidate.options == {"a": "única", "b": "otra"}
        assert candidate.status == CandidateStatus.PENDING

        question = workflow.approve(candidate.id)
        assert question.content == "¿Cuál es la opción correcta?"
        assert question.options == {"a": "única", "b": "otra"}

    def test_raw_content_edit(self, workflow, document):
        candidate = workflow.update_candidate(_cid(document, 1), raw_content="texto")
        assert candidate.raw_content == "texto"
        assert candidate.normalized_content == "¿Qué es un átomo?"

    def test_unknown_label_rejected(self, workflow, document):
        with pytest.raises(ValidationFailure):
            workflow.update_candidate(_cid(document, 1), options={"e": "fuera"})

        candidate = workflow.get_candidate(_cid(document, 1))
        assert candidate.options == {"a": "Una partícula", "b": "Una onda"}

    def test_decided_candidate_cannot_be_edited(self, workflow, document):
        workflow.approve(_cid(document, 1))
        with pytest.raises(IllegalTransition):
            workflow.update_candidate(_cid(document, 1), content="otra cosa")
