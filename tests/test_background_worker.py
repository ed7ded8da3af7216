"""
Tests for the background processing worker and its registry.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from exambank import background_worker
from exambank.background_worker import ProcessingWorker, request_cancel, spawn_processing


# ═══════════════════════════════════════════════════════════════════════════════
# CANCELLATION SCOPE
# ═══════════════════════════════════════════════════════════════════════════════

class TestCancelCurrentCall:

    def test_cancels_only_this_workers_thread(self):
        pipeline = MagicMock()
        pipeline.vision.cancel.return_value = True
        worker = ProcessingWorker(pipeline, "doc-a")
        worker.thread = MagicMock(ident=123)

        assert worker.cancel_current_call() is True
        pipeline.vision.cancel.assert_called_once_with(123)

    def test_not_started(self):
        pipeline = MagicMock()
        worker = ProcessingWorker(pipeline, "doc-a")

        assert worker.cancel_current_call() is False
        pipeline.vision.cancel.assert_not_called()

    def test_request_cancel_routes_to_document_worker(self, monkeypatch):
        pipeline = MagicMock()
        worker_a = ProcessingWorker(pipeline, "doc-a")
        worker_a.thread = MagicMock(ident=1)
        worker_b = ProcessingWorker(pipeline, "doc-b")
        worker_b.thread = MagicMock(ident=2)
        monkeypatch.setitem(background_worker._active_workers, "doc-a", worker_a)
        monkeypatch.setitem(background_worker._active_workers, "doc-b", worker_b)

        request_cancel("doc-b")

        pipeline.vision.cancel.assert_called_once_with(2)

    def test_request_cancel_without_worker(self):
        assert request_cancel("missing") is False


# ═══════════════════════════════════════════════════════════════════════════════
# SPAWNING
# ═══════════════════════════════════════════════════════════════════════════════

class TestSpawn:

    def test_thread_is_attached_before_it_runs(self):
        seen = {}
        release = threading.Event()
        pipeline = MagicMock()

        def process_document(document_id, subject_name, mode):
            worker = background_worker.get_worker(document_id)
            seen["ident"] = worker.thread.ident
            release.wait(timeout=5)

        pipeline.process_document.side_effect = process_document

        thread = spawn_processing(pipeline, "doc-spawn")
        release.set()
        thread.join(timeout=5)

        assert seen["ident"] == thread.ident
        assert not background_worker.is_processing("doc-spawn")

    def test_second_spawn_is_refused(self, monkeypatch):
        monkeypatch.setitem(background_worker._active_workers, "doc-busy", MagicMock())
        with pytest.raises(RuntimeError, match="already being processed"):
            spawn_processing(MagicMock(), "doc-busy")
