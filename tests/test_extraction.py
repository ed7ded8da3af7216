"""
Tests for parsing vision output into question candidates.
"""

from __future__ import annotations

from exambank.extraction import (
    INCOMPLETE_MARKER,
    NO_QUESTIONS_MARKER,
    candidate_id,
    clean_text,
    normalize_questions,
    parse_extracted_questions,
    parse_open_questions,
)
from exambank.models import CandidateStatus, QuestionCandidate, QuestionType


TWO_QUESTIONS = (
    "## Pregunta 1\n"
    "¿Qué es un átomo?\n"
    "a) Una partícula\n"
    "b) Una onda\n"
    "c) Un campo\n\n"
    "---\n\n"
    "## Pregunta 2\n"
    "¿Qué es un ion?\n"
    "a) Átomo cargado\n"
    "b) Molécula\n"
)


# ═══════════════════════════════════════════════════════════════════════════════
# MULTIPLE-CHOICE PAGES
# ═══════════════════════════════════════════════════════════════════════════════


class TestParseExtractedQuestions:

    def test_no_questions_marker(self):
        assert parse_extracted_questions(NO_QUESTIONS_MARKER, "doc1", "doc1_page_3", 3) == []

    def test_no_questions_marker_with_whitespace(self):
        raw = f"\n  {NO_QUESTIONS_MARKER}  \n"
        assert parse_extracted_questions(raw, "doc1", "doc1_page_3", 3) == []

    def test_empty_response(self):
        assert parse_extracted_questions("", "doc1") == []
        assert parse_extracted_questions(None, "doc1") == []

    def test_two_questions(self):
        candidates = parse_extracted_questions(TWO_QUESTIONS, "doc1", "doc1_page_3", 3)

        assert [c.id for c in candidates] == ["doc1_p3_q1", "doc1_p3_q2"]
        first, second = candidates
        assert first.document_id == "doc1"
        assert first.page_id == "doc1_page_3"
        assert first.question_number == 1
        assert first.normalized_content == "¿Qué es un átomo?"
        assert first.options == {"a": "Una partícula", "b": "Una onda", "c": "Un campo"}
        assert first.status == CandidateStatus.PENDING
        assert first.question_type == QuestionType.MCQ
        assert first.raw_content.startswith("## Pregunta 1")
        assert second.options == {"a": "Átomo cargado", "b": "Molécula"}
        assert not second.is_incomplete

    def test_ids_are_stable_across_runs(self):
        first = parse_extracted_questions(TWO_QUESTIONS, "doc1", "doc1_page_3", 3)
        again = parse_extracted_questions(TWO_QUESTIONS, "doc1", "doc1_page_3", 3)
        assert [c.id for c in first] == [c.id for c in again]

    def test_marker_followed_by_questions_still_parsed(self):
        raw = f"{NO_QUESTIONS_MARKER}\n\n{TWO_QUESTIONS}"
        assert len(parse_extracted_questions(raw, "doc1", "doc1_page_1", 1)) == 2

    def test_incomplete_question(self):
        raw = f"## Pregunta 1\n¿Cuál es la {INCOMPLETE_MARKER}"
        (candidate,) = parse_extracted_questions(raw, "doc1", "doc1_page_5", 5)

        assert candidate.is_incomplete
        assert candidate.normalized_content == "¿Cuál es la"
        assert INCOMPLETE_MARKER not in candidate.normalized_content
        assert candidate.options is None
        assert candidate.option_count == 0

    def test_headerless_text_dropped(self):
        raw = "Texto suelto sin cabecera\na) uno\nb) dos"
        assert parse_extracted_questions(raw, "doc1", "doc1_page_1", 1) == []

    def test_preamble_before_first_header_dropped(self):
        raw = "Instrucciones del examen.\n\n" + TWO_QUESTIONS
        candidates = parse_extracted_questions(raw, "doc1", "doc1_page_1", 1)
        assert [c.question_number for c in candidates] == [1, 2]


class TestCandidateId:

    def test_page_number_used_when_given(self):
        assert candidate_id("doc1", 4, "doc1_page_9", 2) == "doc1_p2_q4"

    def test_page_id_suffix_fallback(self):
        assert candidate_id("doc1", 2, page_id="doc1_page_7") == "doc1_p7_q2"
        raw = "## Pregunta 2\n¿Algo?\na) x\nb) y"
        (candidate,) = parse_extracted_questions(raw, "doc1", "doc1_page_7")
        assert candidate.id == "doc1_p7_q2"

    def test_no_page(self):
        assert candidate_id("doc1", 2) == "doc1_px_q2"


# ═══════════════════════════════════════════════════════════════════════════════
# OPEN-QUESTION PAGES & NORMALIZATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestParseOpenQuestions:

    RAW = (
        "1. Explica el principio de conservación de la energía.\n"
        "2. Corto\n"
        "3) Describe el ciclo de Krebs en detalle.\n"
    )

    def test_short_items_dropped(self):
        candidates = parse_open_questions(self.RAW, "doc1", "doc1_page_1", 1)

        assert [c.question_number for c in candidates] == [1, 3]
        assert [c.id for c in candidates] == ["doc1_p1_q1", "doc1_p1_q3"]
        assert candidates[0].normalized_content == (
            "Explica el principio de conservación de la energía."
        )

    def test_open_candidates_have_no_options(self):
        for candidate in parse_open_questions(self.RAW, "doc1", "doc1_page_1", 1):
            assert candidate.question_type == QuestionType.OPEN
            assert candidate.options is None

    def test_empty(self):
        assert parse_open_questions("", "doc1") == []


class TestNormalization:

    def test_clean_text(self):
        assert clean_text("  uno  \n\n\n\n  dos \n") == "uno\n\ndos"

    def test_normalize_cleans_the_field_it_chose(self):
        candidates = [
            QuestionCandidate(
                id="doc1_p1_q1", document_id="doc1", question_number=1,
                raw_content="## Pregunta 1\nraw", normalized_content="  limpio  ",
            ),
            QuestionCandidate(
                id="doc1_p1_q2", document_id="doc1", question_number=2,
                raw_content="  línea  \n\n\n\notra ",
            ),
        ]
        first, second = normalize_questions(candidates)
        assert first.normalized_content == "limpio"
        assert first.raw_content == "## Pregunta 1\nraw"
        assert second.raw_content == "línea\n\notra"
        assert second.normalized_content is None
        assert candidates[1].raw_content == "  línea  \n\n\n\notra "

    def test_block_without_statement_keeps_no_normalized_content(self):
        raw = "## Pregunta 1\n\na) Uno\nb) Dos\n"
        candidates = normalize_questions(
            parse_extracted_questions(raw, "doc1", "doc1_page_1", 1)
        )

        (candidate,) = candidates
        assert candidate.normalized_content is None
        assert candidate.options == {"a": "Uno", "b": "Dos"}
        assert candidate.display_content.startswith("## Pregunta 1")
