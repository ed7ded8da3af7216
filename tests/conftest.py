"""
Shared fixtures: a temporary SQLite database and storage root, plus fake
rasterizer and vision collaborators for the ingestion pipeline.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from exambank import database as db
from exambank.config import PipelineConfig
from exambank.ingestion import IngestionPipeline
from exambank.models import ExtractionMode
from exambank.rasterizer import RenderedPage
from exambank.storage import page_image_name


class FakeRasterizer:
    """Pretends every PDF has `page_count` pages and writes tiny images."""

    def __init__(self, page_count: int = 2, fail_render: bool = False):
        self.page_count = page_count
        self.fail_render = fail_render
        self.fail_count = False

    def get_page_count(self, pdf_path: str) -> int:
        if self.fail_count:
            raise ValueError(f"Failed to read PDF file: {pdf_path}")
        return self.page_count

    def render_pages(self, pdf_path: str, output_dir: str) -> list[RenderedPage]:
        if self.fail_render:
            raise RuntimeError("pdf renderer crashed")
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        rendered = []
        for n in range(1, self.page_count + 1):
            path = out / page_image_name(n)
            path.write_bytes(b"\x89PNG fake")
            rendered.append(RenderedPage(n, str(path)))
        return rendered


class FakeVision:
    """
    Answers by page image stem ("page-1", "page-2", ...). A value that is
    an exception instance is raised instead of returned.
    """

    def __init__(self, responses: dict | None = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, object, ExtractionMode]] = []

    def extract_page(self, image_path, subject_name=None, mode=ExtractionMode.TEST):
        self.calls.append((Path(image_path).stem, subject_name, mode))
        response = self.responses.get(Path(image_path).stem, "")
        if isinstance(response, Exception):
            raise response
        return response

    def cancel(self, thread_id: int) -> bool:
        return False


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "test.sqlite")
    db.init_db(path)
    return path


@pytest.fixture
def config(tmp_path, db_path) -> PipelineConfig:
    return PipelineConfig(
        db_path=db_path,
        storage_dir=str(tmp_path / "subjects"),
        vision_api_key="test-key",
    )


@pytest.fixture
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer(page_count=2)


@pytest.fixture
def vision() -> FakeVision:
    return FakeVision()


@pytest.fixture
def pipeline(config, rasterizer, vision) -> IngestionPipeline:
    return IngestionPipeline(config, rasterizer=rasterizer, vision=vision)


@pytest.fixture
def pdf_file(tmp_path) -> str:
    path = tmp_path / "Examen Junio.pdf"
    path.write_bytes(b"%PDF-1.4 fake content")
    return str(path)
