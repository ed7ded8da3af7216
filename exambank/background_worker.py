"""
Background Processing Worker
============================
Runs vision processing of a document off the request thread.

Architecture:
    - Each document gets its own worker thread
    - The worker drives IngestionPipeline.process_document, one page at a time
    - Documents share nothing but the SQLite store
    - request_cancel() aborts the vision call in flight on that document's
      own thread; the page it was serving is marked `error` and the loop
      moves on to the next page. Other documents' calls keep running

Usage:
    spawn_processing(pipeline, document_id, subject_name="Física")
    request_cancel(document_id)
"""

from __future__ import annotations

import logging
import threading
import traceback
from typing import Optional

from .errors import ExamBankError
from .ingestion import IngestionPipeline
from .models import ExtractionMode, ProcessingSummary

logger = logging.getLogger(__name__)

# ─── Active Worker Registry ──────────────────────────────────────────────────

_active_workers: dict[str, "ProcessingWorker"] = {}
_workers_lock = threading.Lock()


def get_worker(document_id: str) -> Optional["ProcessingWorker"]:
    """Get the active worker for a document, if any."""
    with _workers_lock:
        return _active_workers.get(document_id)


def is_processing(document_id: str) -> bool:
    return get_worker(document_id) is not None


def spawn_processing(
    pipeline: IngestionPipeline,
    document_id: str,
    subject_name: Optional[str] = None,
    mode: ExtractionMode = ExtractionMode.TEST,
) -> threading.Thread:
    """
    Spawn a background processing thread for one document.

    The worker is registered before the thread starts, so a second call
    for the same document fails fast instead of racing.

    Raises:
        RuntimeError: the document is already being processed.
    """
    worker = ProcessingWorker(pipeline, document_id, subject_name, mode)
    with _workers_lock:
        if document_id in _active_workers:
            raise RuntimeError(f"Document {document_id} is already being processed")
        _active_workers[document_id] = worker

    thread = threading.Thread(
        target=worker.run,
        daemon=True,
        name=f"exambank-worker-{document_id}",
    )
    worker.thread = thread
    thread.start()

    logger.info(f"Spawned worker thread for document {document_id}")
    return thread


def request_cancel(document_id: str) -> bool:
    """
    Cancel the vision call currently in flight for a document.
    Returns False when no worker or no call is active.
    """
    worker = get_worker(document_id)
    if worker is None:
        return False
    return worker.cancel_current_call()


class ProcessingWorker:
    """Background worker for one document's vision processing."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        document_id: str,
        subject_name: Optional[str] = None,
        mode: ExtractionMode = ExtractionMode.TEST,
    ):
        self.pipeline = pipeline
        self.document_id = document_id
        self.subject_name = subject_name
        self.mode = mode
        self.thread: Optional[threading.Thread] = None
        self.summary: Optional[ProcessingSummary] = None
        self.error: Optional[str] = None

    def cancel_current_call(self) -> bool:
        """Cancel the vision call made from this worker's thread only."""
        if self.thread is None or self.thread.ident is None:
            return False
        return self.pipeline.vision.cancel(self.thread.ident)

    def run(self):
        """Main entry point. Runs in a background thread."""
        with _workers_lock:
            _active_workers.setdefault(self.document_id, self)

        try:
            self.summary = self.pipeline.process_document(
                self.document_id, self.subject_name, self.mode
            )
        except ExamBankError as e:
            # Refused before any page was touched; stored state is unchanged
            self.error = str(e)
            logger.error(f"Document {self.document_id}: processing refused: {e}")
        except Exception as e:
            self.error = f"{e}\n{traceback.format_exc()}"
            logger.error(f"Document {self.document_id}: processing FAILED: {self.error}")
            self.pipeline.mark_error(self.document_id, str(e)[:5000])
        finally:
            with _workers_lock:
                _active_workers.pop(self.document_id, None)
