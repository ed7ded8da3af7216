"""
Tests for the HTTP API, using the Flask test client with fake rasterizer
and vision collaborators.
"""

from __future__ import annotations

import io
import threading
from unittest.mock import MagicMock

import pytest

from exambank import background_worker
from exambank.ingestion import page_id_for
from exambank.models import ExtractionMode
from exambank.server import create_app

PAGE = (
    "## Pregunta 1\n¿Qué es un átomo?\na) Una partícula\nb) Una onda\n\n"
    "## Pregunta 2\n¿Solo una?\na) única\n"
)


@pytest.fixture
def client(pipeline):
    app = create_app(pipeline=pipeline)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def document(pipeline, pdf_file):
    document = pipeline.upload(pdf_file, "fisica")
    pipeline.extract_pages(document.id)
    return pipeline.get_document(document.id)


def _join_worker(document_id: str):
    for thread in threading.enumerate():
        if thread.name == f"exambank-worker-{document_id}":
            thread.join(timeout=10)


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"


class TestDocuments:

    def test_upload(self, client):
        response = client.post(
            "/api/pipeline/upload",
            data={
                "file": (io.BytesIO(b"%PDF-1.4 fake"), "Examen Junio.pdf"),
                "subjectId": "fisica",
            },
            content_type="multipart/form-data",
        )

        assert response.status_code == 201
        exam = response.get_json()["exam"]
        assert exam["status"] == "uploaded"
        assert exam["page_count"] == 2
        assert exam["filename"].endswith("_Examen_Junio.pdf")

        listing = client.get("/api/pipeline/exams?subjectId=fisica").get_json()
        assert [e["id"] for e in listing["exams"]] == [exam["id"]]

    def test_upload_requires_pdf(self, client):
        response = client.post(
            "/api/pipeline/upload",
            data={"file": (io.BytesIO(b"hola"), "notas.txt"), "subjectId": "fisica"},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400

    def test_upload_requires_subject(self, client):
        response = client.post(
            "/api/pipeline/upload",
            data={"file": (io.BytesIO(b"%PDF"), "examen.pdf")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert "subjectId" in response.get_json()["error"]

    def test_unknown_document_is_404(self, client):
        response = client.get("/api/pipeline/exams/missing")
        assert response.status_code == 404
        assert response.get_json()["success"] is False

    def test_detail(self, client, document):
        body = client.get(f"/api/pipeline/exams/{document.id}").get_json()
        assert body["document"]["status"] == "extracted"
        assert len(body["pages"]) == 2
        assert body["processing"] is False

    def test_extract_twice_is_400(self, client, document):
        response = client.post(f"/api/pipeline/exams/{document.id}/extract")
        assert response.status_code == 400
        assert "extract" in response.get_json()["error"]

    def test_delete(self, client, document):
        response = client.delete(f"/api/pipeline/exams/{document.id}")
        assert response.status_code == 200
        assert client.get(f"/api/pipeline/exams/{document.id}").status_code == 404

    def test_delete_while_processing_is_409(self, client, document, monkeypatch):
        monkeypatch.setitem(background_worker._active_workers, document.id, MagicMock())
        response = client.delete(f"/api/pipeline/exams/{document.id}")
        assert response.status_code == 409


class TestProcessing:

    def test_process_runs_in_background(self, client, vision, document):
        vision.responses = {"page-1": PAGE}

        response = client.post(
            f"/api/pipeline/exams/{document.id}/process",
            json={"subjectName": "Física"},
        )
        assert response.status_code == 202
        _join_worker(document.id)

        body = client.get(f"/api/pipeline/exams/{document.id}").get_json()
        assert body["document"]["status"] == "completed"
        assert body["total_candidates"] == 2
        assert vision.calls[0][1] == "Física"

    def test_process_before_extract_is_400(self, client, pipeline, pdf_file):
        document = pipeline.upload(pdf_file, "fisica")
        response = client.post(f"/api/pipeline/exams/{document.id}/process")
        assert response.status_code == 400

    def test_process_already_running_is_409(self, client, document, monkeypatch):
        monkeypatch.setitem(background_worker._active_workers, document.id, MagicMock())
        response = client.post(f"/api/pipeline/exams/{document.id}/process")
        assert response.status_code == 409

    def test_process_unknown_mode_is_400(self, client, vision, document):
        response = client.post(
            f"/api/pipeline/exams/{document.id}/process", json={"mode": "bogus"}
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == "Unknown mode: bogus"
        assert not background_worker.is_processing(document.id)
        assert vision.calls == []

    def test_process_single_page_unknown_mode_is_400(self, client, vision, document):
        page_id = page_id_for(document.id, 1)

        response = client.post(
            f"/api/pipeline/exams/{document.id}/process-page/{page_id}",
            json={"mode": "bogus"},
        )

        assert response.status_code == 400
        assert "Unknown mode" in response.get_json()["error"]
        assert vision.calls == []

    def test_process_content_mode(self, client, vision, document):
        page_id = page_id_for(document.id, 1)

        response = client.post(
            f"/api/pipeline/exams/{document.id}/process-page/{page_id}",
            json={"mode": "content"},
        )

        assert response.status_code == 200
        assert vision.calls[0][2] == ExtractionMode.CONTENT

    def test_cancel_without_worker(self, client, document):
        body = client.post(f"/api/pipeline/exams/{document.id}/cancel").get_json()
        assert body["cancelled"] is False

    def test_process_single_page(self, client, vision, document):
        vision.responses = {"page-1": PAGE}
        page_id = page_id_for(document.id, 1)

        response = client.post(f"/api/pipeline/exams/{document.id}/process-page/{page_id}")

        assert response.status_code == 200
        body = response.get_json()
        assert body["questions_found"] == 2
        assert body["status"] == "completed"

    def test_process_single_page_failure_is_502(self, client, vision, document):
        from exambank.errors import ExternalServiceError

        vision.responses = {"page-1": ExternalServiceError("down")}
        page_id = page_id_for(document.id, 1)

        response = client.post(f"/api/pipeline/exams/{document.id}/process-page/{page_id}")

        assert response.status_code == 502
        assert response.get_json()["error"] == "down"


class TestCandidates:

    @pytest.fixture
    def processed(self, pipeline, vision, document):
        vision.responses = {"page-1": PAGE}
        pipeline.process_document(document.id)
        return document

    def test_list_with_status_filter(self, client, processed):
        body = client.get(
            f"/api/pipeline/exams/{processed.id}/questions?status=pending"
        ).get_json()
        assert len(body["questions"]) == 2

        bad = client.get(f"/api/pipeline/exams/{processed.id}/questions?status=bogus")
        assert bad.status_code == 400

    def test_approve_and_reapprove(self, client, processed):
        candidate_id = f"{processed.id}_p1_q1"

        response = client.post(
            f"/api/pipeline/questions/{candidate_id}/approve", json={"topic": "Tema1"}
        )
        assert response.status_code == 200
        assert response.get_json()["question"]["topic"] == "Tema1"

        again = client.post(f"/api/pipeline/questions/{candidate_id}/approve")
        assert again.status_code == 400

    def test_approve_insufficient_options_is_400(self, client, processed):
        response = client.post(f"/api/pipeline/questions/{processed.id}_p1_q2/approve")
        assert response.status_code == 400
        assert "at least 2" in response.get_json()["error"]

    def test_reject(self, client, processed):
        body = client.post(
            f"/api/pipeline/questions/{processed.id}_p1_q1/reject",
            json={"notes": "borrosa"},
        ).get_json()
        assert body["question"]["status"] == "rejected"
        assert body["question"]["reviewer_notes"] == "borrosa"

    def test_update(self, client, processed):
        candidate_id = f"{processed.id}_p1_q2"
        response = client.put(
            f"/api/pipeline/questions/{candidate_id}",
            json={"content": "¿Corregida?", "options": {"a": "sí", "b": "no"}},
        )
        assert response.status_code == 200
        question = response.get_json()["question"]
        assert question["normalized_content"] == "¿Corregida?"
        assert question["option_count"] == 2

        bad = client.put(
            f"/api/pipeline/questions/{candidate_id}", json={"options": ["a", "b"]}
        )
        assert bad.status_code == 400

    def test_approve_all(self, client, processed):
        body = client.post(f"/api/pipeline/exams/{processed.id}/approve-all").get_json()
        assert body["approved"] == 1
        assert body["skipped"] == 1

    def test_unknown_candidate_is_404(self, client):
        assert client.get("/api/pipeline/questions/missing").status_code == 404
