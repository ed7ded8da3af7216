"""
Ingestion Pipeline
==================
Drives a scanned document through upload → extract → process, turning
each page into question candidates.

Architecture:
    PDF → storage → PageRasterizer → Page rows →
    VisionClient (one page per call) → extraction parser → candidates

Status checks go through the state_machine transition functions before any
side effect. Page failures are recorded on the page and never stop the
loop over the remaining pages.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Callable, Optional

from . import database as db
from . import storage
from .config import PipelineConfig
from .errors import ExternalServiceError, IllegalTransition, NotFound
from .extraction import (
    clean_text,
    normalize_questions,
    parse_extracted_questions,
    parse_open_questions,
)
from .models import (
    DocumentStatus,
    ExtractionMode,
    IngestedDocument,
    Page,
    PageResult,
    PageStatus,
    ProcessingSummary,
)
from .rasterizer import PageRasterizer
from .state_machine import (
    DocumentAction,
    PageAction,
    next_document_status,
    next_page_status,
)
from .vision import VisionClient

logger = logging.getLogger(__name__)


def page_id_for(document_id: str, page_number: int) -> str:
    return f"{document_id}_page_{page_number}"


class IngestionPipeline:
    """
    Document ingestion service.

    Collaborators are injectable so the rasterizer and the vision service
    can be replaced (tests use fakes for both).
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        rasterizer: Optional[PageRasterizer] = None,
        vision: Optional[VisionClient] = None,
    ):
        self.config = config or PipelineConfig.from_env()
        self.db_path = self.config.db_path
        self.storage_dir = self.config.storage_dir
        self.rasterizer = rasterizer or PageRasterizer(dpi=self.config.image_dpi)
        self.vision = vision or VisionClient.from_config(self.config)

    # ─── Lookups ──────────────────────────────────────────────────────────

    def get_document(self, document_id: str) -> IngestedDocument:
        document = db.get_document(document_id, self.db_path)
        if document is None:
            raise NotFound("Document", document_id)
        return document

    def get_page(self, document_id: str, page_id: str) -> Page:
        page = db.get_page(page_id, self.db_path)
        if page is None or page.document_id != document_id:
            raise NotFound("Page", page_id)
        return page

    # ─── Upload ───────────────────────────────────────────────────────────

    def upload(
        self,
        source_path: str,
        subject_id: str,
        original_filename: Optional[str] = None,
    ) -> IngestedDocument:
        """Store a PDF, measure its pages and register it as `uploaded`."""
        source_path = os.path.abspath(source_path)
        if not os.path.exists(source_path):
            raise FileNotFoundError(f"PDF not found: {source_path}")

        document_id = uuid.uuid4().hex[:16]
        stored_path, filename = storage.save_document_file(
            source_path,
            subject_id,
            document_id,
            original_filename or Path(source_path).name,
            root=self.storage_dir,
        )

        try:
            page_count = self.rasterizer.get_page_count(stored_path)
        except Exception:
            storage.delete_document_files(
                subject_id, document_id, filename, root=self.storage_dir
            )
            raise

        document = IngestedDocument(
            id=document_id,
            subject_id=subject_id,
            filename=filename,
            original_path=stored_path,
            page_count=page_count,
            status=DocumentStatus.UPLOADED,
        )
        db.insert_document(document, self.db_path)
        logger.info(
            f"[upload] Document {document_id}: {filename} ({page_count} pages)"
        )
        return self.get_document(document_id)

    # ─── Extract ──────────────────────────────────────────────────────────

    def extract_pages(self, document_id: str) -> list[Page]:
        """
        Rasterize every page and create pending Page rows.
        Only legal while the document is exactly `uploaded`.
        """
        document = self.get_document(document_id)
        next_status = next_document_status(document.status, DocumentAction.EXTRACT)

        output_dir = storage.get_page_image_dir(
            document.subject_id, document.id, root=self.storage_dir
        )
        try:
            rendered = self.rasterizer.render_pages(document.original_path, str(output_dir))
        except Exception as e:
            logger.error(f"[extract] Document {document_id} failed: {e}")
            db.update_document(
                document_id,
                self.db_path,
                status=next_document_status(document.status, DocumentAction.FAIL),
                error_message=str(e),
            )
            raise

        pages = [
            Page(
                id=page_id_for(document.id, r.page_number),
                document_id=document.id,
                page_number=r.page_number,
                image_path=r.image_path,
            )
            for r in rendered
        ]
        db.insert_pages(pages, self.db_path)
        db.update_document(
            document_id,
            self.db_path,
            page_count=len(pages),
            status=next_status,
            error_message=None,
        )
        logger.info(f"[extract] Document {document_id}: {len(pages)} page(s) extracted")
        return db.list_pages(document_id, self.db_path)

    # ─── Process ──────────────────────────────────────────────────────────

    def process_document(
        self,
        document_id: str,
        subject_name: Optional[str] = None,
        mode: ExtractionMode = ExtractionMode.TEST,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ProcessingSummary:
        """
        Run vision extraction over every page not yet completed, one page
        at a time in page order. The document ends `completed` whatever
        the individual page outcomes.

        Args:
            document_id: Document to process.
            subject_name: Optional hint passed to the vision prompt.
            mode: TEST for multiple choice pages, CONTENT for open questions.
            progress_callback: Optional callback(pages_done, total_pages).
        """
        document = self.get_document(document_id)
        next_status = next_document_status(document.status, DocumentAction.PROCESS)

        pages = db.list_pages(document_id, self.db_path)
        if document.page_count <= 0 or not pages:
            raise IllegalTransition(
                "document", document.status.value, DocumentAction.PROCESS.value,
                "document has no pages; extract pages first",
            )

        summary = ProcessingSummary(document_id=document_id)
        for done, page in enumerate(pages, start=1):
            if progress_callback:
                progress_callback(done - 1, len(pages))
            if page.status == PageStatus.COMPLETED:
                summary.pages_skipped += 1
                continue

            logger.info(
                f"[process] Document {document_id}: page {page.page_number}/{len(pages)}"
            )
            result = self._run_page(document, page, subject_name, mode)
            if result.status == PageStatus.COMPLETED:
                summary.pages_processed += 1
                summary.questions_extracted += result.questions_found
            else:
                summary.pages_failed += 1
                summary.failed_pages.append(page.id)

        if progress_callback:
            progress_callback(len(pages), len(pages))

        db.update_document(
            document_id, self.db_path, status=next_status, error_message=None
        )
        logger.info(
            f"[process] Document {document_id} completed: "
            f"{summary.questions_extracted} question(s), "
            f"{summary.pages_failed} failed page(s)"
        )
        return summary

    def process_page(
        self,
        document_id: str,
        page_id: str,
        subject_name: Optional[str] = None,
        mode: ExtractionMode = ExtractionMode.TEST,
    ) -> PageResult:
        """Reprocess a single page, whatever the document status."""
        document = self.get_document(document_id)
        page = self.get_page(document_id, page_id)
        return self._run_page(document, page, subject_name, mode)

    def _run_page(
        self,
        document: IngestedDocument,
        page: Page,
        subject_name: Optional[str],
        mode: ExtractionMode,
    ) -> PageResult:
        status = next_page_status(page.status, PageAction.START)
        db.update_page(page.id, self.db_path, status=status, error_message=None)

        try:
            raw_text = self.vision.extract_page(page.image_path, subject_name, mode)
            parse = (
                parse_open_questions
                if mode == ExtractionMode.CONTENT
                else parse_extracted_questions
            )
            candidates = normalize_questions(
                parse(raw_text, document.id, page.id, page.page_number)
            )
        except ExternalServiceError as e:
            return self._fail_page(page, status, str(e))
        except Exception as e:
            logger.exception(f"[process] Page {page.id}: unexpected failure")
            return self._fail_page(page, status, f"{type(e).__name__}: {e}")

        db.update_page(
            page.id,
            self.db_path,
            status=next_page_status(status, PageAction.SUCCEED),
            raw_extracted_text=raw_text,
            normalized_text=clean_text(raw_text),
        )
        for candidate in candidates:
            db.upsert_candidate(candidate, self.db_path)
        stale = db.delete_stale_candidates(
            page.id, [c.id for c in candidates], self.db_path
        )
        if stale:
            logger.info(f"[process] Page {page.id}: dropped {stale} stale candidate(s)")

        try:
            storage.save_page_text(
                document.subject_id, document.id, page.page_number, raw_text,
                root=self.storage_dir,
            )
        except OSError as e:
            logger.warning(f"[process] Could not snapshot page {page.id}: {e}")

        logger.info(f"[process] Page {page.id}: {len(candidates)} candidate(s)")
        return PageResult(
            page_id=page.id, status=PageStatus.COMPLETED, candidates=candidates
        )

    def _fail_page(self, page: Page, status: PageStatus, message: str) -> PageResult:
        logger.error(f"[process] Page {page.id} failed: {message}")
        db.update_page(
            page.id,
            self.db_path,
            status=next_page_status(status, PageAction.FAIL),
            error_message=message,
        )
        return PageResult(page_id=page.id, status=PageStatus.ERROR, error=message)

    # ─── Failure & Deletion ───────────────────────────────────────────────

    def mark_error(self, document_id: str, message: str) -> IngestedDocument:
        """Move a document to `error`; legal from any state."""
        document = self.get_document(document_id)
        status = next_document_status(document.status, DocumentAction.FAIL)
        db.update_document(document_id, self.db_path, status=status, error_message=message)
        logger.warning(f"Document {document_id} marked as error: {message}")
        return self.get_document(document_id)

    def delete_document(self, document_id: str) -> int:
        """
        Remove a document with its pages and candidates, then its files.
        Returns the number of storage paths removed.
        """
        document = self.get_document(document_id)
        db.delete_document(document_id, self.db_path)
        removed = storage.delete_document_files(
            document.subject_id, document.id, document.filename, root=self.storage_dir
        )
        logger.info(f"Deleted document {document_id}")
        return removed
