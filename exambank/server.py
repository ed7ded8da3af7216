"""
HTTP Microservice
=================
Flask-based HTTP API over the ingestion pipeline and approval workflow.

Endpoints:
    POST   /api/pipeline/upload                      → Upload a scanned exam PDF
    GET    /api/pipeline/exams?subjectId=            → List documents
    GET    /api/pipeline/exams/<id>                  → Document with pages
    DELETE /api/pipeline/exams/<id>                  → Delete document + files
    POST   /api/pipeline/exams/<id>/extract          → Render pages
    POST   /api/pipeline/exams/<id>/process          → Vision processing (background)
    POST   /api/pipeline/exams/<id>/cancel           → Abort the vision call in flight
    POST   /api/pipeline/exams/<id>/process-page/<p> → Reprocess one page
    GET    /api/pipeline/exams/<id>/questions        → Candidates (?status=)
    POST   /api/pipeline/exams/<id>/approve-all      → Bulk approval
    GET    /api/pipeline/questions/<id>              → One candidate
    PUT    /api/pipeline/questions/<id>              → Edit a pending candidate
    POST   /api/pipeline/questions/<id>/approve      → Promote a candidate
    POST   /api/pipeline/questions/<id>/reject       → Reject a candidate
    GET    /api/health                               → Health check
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.utils import secure_filename

from . import __version__
from . import background_worker
from . import crud
from . import database as db
from .approval import ApprovalWorkflow
from .config import PipelineConfig
from .errors import IllegalTransition, NotFound, ValidationFailure
from .ingestion import IngestionPipeline
from .models import CandidateStatus, ExtractionMode
from .state_machine import DocumentAction, next_document_status

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(
    config: Optional[PipelineConfig] = None,
    pipeline: Optional[IngestionPipeline] = None,
) -> Flask:
    """Create and configure the Flask app."""
    config = config or (pipeline.config if pipeline else PipelineConfig.from_env())
    pipeline = pipeline or IngestionPipeline(config)

    app.config.setdefault("MAX_CONTENT_LENGTH", 500 * 1024 * 1024)  # 500MB
    app.config["PIPELINE"] = pipeline
    app.config["WORKFLOW"] = ApprovalWorkflow(config.db_path)
    app.config["UPLOAD_DIR"] = str(Path(config.storage_dir) / "_incoming")

    Path(app.config["UPLOAD_DIR"]).mkdir(parents=True, exist_ok=True)
    db.init_db(config.db_path)

    return app


def _pipeline() -> IngestionPipeline:
    return app.config["PIPELINE"]


def _workflow() -> ApprovalWorkflow:
    return app.config["WORKFLOW"]


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _extraction_mode(body: dict) -> ExtractionMode:
    value = body.get("mode", ExtractionMode.TEST.value)
    try:
        return ExtractionMode(value)
    except ValueError:
        raise ValidationFailure(f"Unknown mode: {value}") from None


# ─── Error Mapping ────────────────────────────────────────────────────────────


@app.errorhandler(NotFound)
def handle_not_found(e: NotFound):
    return jsonify({"success": False, "error": str(e)}), 404


@app.errorhandler(IllegalTransition)
@app.errorhandler(ValidationFailure)
def handle_bad_request(e):
    return jsonify({"success": False, "error": str(e)}), 400


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "exambank",
        "version": __version__,
    })


# ─── Documents ────────────────────────────────────────────────────────────────


@app.route("/api/pipeline/upload", methods=["POST"])
def upload_exam():
    """
    Upload a scanned exam PDF for a subject.

    Form fields: file (PDF), subjectId.
    """
    if "file" not in request.files:
        return jsonify({"success": False, "error": "No file provided"}), 400

    file = request.files["file"]
    if not file.filename:
        return jsonify({"success": False, "error": "No file selected"}), 400
    if not file.filename.lower().endswith(".pdf"):
        return jsonify({"success": False, "error": "Only PDF files are accepted"}), 400

    subject_id = request.form.get("subjectId") or request.form.get("subject_id")
    if not subject_id:
        return jsonify({"success": False, "error": "subjectId is required"}), 400

    temp_path = Path(app.config["UPLOAD_DIR"]) / (
        f"{uuid.uuid4().hex}_{secure_filename(file.filename) or 'upload.pdf'}"
    )
    file.save(str(temp_path))

    try:
        document = _pipeline().upload(str(temp_path), subject_id, file.filename)
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    finally:
        if temp_path.exists():
            os.unlink(temp_path)

    return jsonify({"success": True, "exam": document.model_dump(mode="json")}), 201


@app.route("/api/pipeline/exams", methods=["GET"])
def list_exams():
    subject_id = request.args.get("subjectId") or request.args.get("subject_id")
    documents = db.list_documents(subject_id, _pipeline().db_path)
    return jsonify({
        "success": True,
        "exams": [d.model_dump(mode="json") for d in documents],
    })


@app.route("/api/pipeline/exams/<document_id>", methods=["GET"])
def get_exam(document_id: str):
    detail = crud.get_document_detail(document_id, _pipeline().db_path)
    if detail is None:
        raise NotFound("Document", document_id)
    detail["processing"] = background_worker.is_processing(document_id)
    return jsonify({"success": True, **detail})


@app.route("/api/pipeline/exams/<document_id>", methods=["DELETE"])
def delete_exam(document_id: str):
    """Delete a document with its pages, candidates and files."""
    if background_worker.is_processing(document_id):
        return jsonify({
            "success": False,
            "error": "Document is being processed; cancel it first",
        }), 409

    removed = _pipeline().delete_document(document_id)
    return jsonify({
        "success": True,
        "message": f"Exam {document_id} deleted",
        "files_removed": removed,
    })


# ─── Extraction & Processing ──────────────────────────────────────────────────


@app.route("/api/pipeline/exams/<document_id>/extract", methods=["POST"])
def extract_pages(document_id: str):
    """Render every page of an uploaded document."""
    try:
        pages = _pipeline().extract_pages(document_id)
    except (ValueError, RuntimeError) as e:
        logger.error(f"Extraction failed for {document_id}: {e}")
        return jsonify({"success": False, "error": str(e)}), 500

    return jsonify({
        "success": True,
        "pageCount": len(pages),
        "pages": [p.model_dump(mode="json") for p in pages],
    })


@app.route("/api/pipeline/exams/<document_id>/process", methods=["POST"])
def process_exam(document_id: str):
    """
    Start vision processing in a background worker.

    The status and page checks run here so that illegal calls are
    answered with 400 instead of failing silently in the worker.
    """
    pipeline = _pipeline()
    document = pipeline.get_document(document_id)
    next_document_status(document.status, DocumentAction.PROCESS)
    if document.page_count <= 0:
        raise IllegalTransition(
            "document", document.status.value, DocumentAction.PROCESS.value,
            "document has no pages; extract pages first",
        )

    body = _body()
    mode = _extraction_mode(body)
    try:
        background_worker.spawn_processing(
            pipeline, document_id, body.get("subjectName"), mode
        )
    except RuntimeError as e:
        return jsonify({"success": False, "error": str(e)}), 409

    return jsonify({
        "success": True,
        "documentId": document_id,
        "pageCount": document.page_count,
        "message": "Processing started in background",
    }), 202


@app.route("/api/pipeline/exams/<document_id>/cancel", methods=["POST"])
def cancel_processing(document_id: str):
    """Abort the vision call currently in flight for a document."""
    cancelled = background_worker.request_cancel(document_id)
    return jsonify({"success": True, "cancelled": cancelled})


@app.route("/api/pipeline/exams/<document_id>/process-page/<page_id>", methods=["POST"])
def process_single_page(document_id: str, page_id: str):
    """Reprocess one page, whatever the document status."""
    body = _body()
    mode = _extraction_mode(body)
    result = _pipeline().process_page(
        document_id, page_id, body.get("subjectName"), mode
    )

    payload = {"success": result.error is None, **result.model_dump(mode="json")}
    return jsonify(payload), (200 if result.error is None else 502)


# ─── Candidates ───────────────────────────────────────────────────────────────


@app.route("/api/pipeline/exams/<document_id>/questions", methods=["GET"])
def list_exam_questions(document_id: str):
    pipeline = _pipeline()
    pipeline.get_document(document_id)

    status = request.args.get("status")
    if status and status not in {s.value for s in CandidateStatus}:
        return jsonify({"success": False, "error": f"Unknown status: {status}"}), 400

    candidates = db.list_candidates(document_id, status or None, pipeline.db_path)
    return jsonify({
        "success": True,
        "questions": [c.model_dump(mode="json") for c in candidates],
    })


@app.route("/api/pipeline/exams/<document_id>/approve-all", methods=["POST"])
def approve_all(document_id: str):
    summary = _workflow().approve_all(document_id, _body().get("topic"))
    return jsonify({"success": True, **summary.model_dump()})


@app.route("/api/pipeline/questions/<candidate_id>", methods=["GET"])
def get_question(candidate_id: str):
    candidate = _workflow().get_candidate(candidate_id)
    return jsonify({"success": True, "question": candidate.model_dump(mode="json")})


@app.route("/api/pipeline/questions/<candidate_id>", methods=["PUT"])
def update_question(candidate_id: str):
    body = _body()
    options = body.get("options")
    if options is not None and not isinstance(options, dict):
        return jsonify({"success": False, "error": "options must be an object"}), 400

    candidate = _workflow().update_candidate(
        candidate_id,
        content=body.get("content"),
        options=options,
        raw_content=body.get("rawContent"),
    )
    return jsonify({"success": True, "question": candidate.model_dump(mode="json")})


@app.route("/api/pipeline/questions/<candidate_id>/approve", methods=["POST"])
def approve_question(candidate_id: str):
    body = _body()
    question = _workflow().approve(
        candidate_id, body.get("topic"), body.get("notes")
    )
    return jsonify({
        "success": True,
        "question": question.model_dump(mode="json"),
    })


@app.route("/api/pipeline/questions/<candidate_id>/reject", methods=["POST"])
def reject_question(candidate_id: str):
    candidate = _workflow().reject(candidate_id, _body().get("notes"))
    return jsonify({"success": True, "question": candidate.model_dump(mode="json")})


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    config: Optional[PipelineConfig] = None,
):
    """Start the microservice server."""
    create_app(config)
    logger.info(f"Starting server on {host}:{port}")
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
