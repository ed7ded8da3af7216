"""
Page Rasterizer
===============
Renders each page of a scanned PDF to an image using PyMuPDF (fitz).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import fitz  # PyMuPDF

from .storage import page_image_name

logger = logging.getLogger(__name__)


@dataclass
class RenderedPage:
    page_number: int
    image_path: str


class PageRasterizer:
    """Turns a PDF into one image file per page, in page order."""

    def __init__(self, dpi: int = 150, image_format: str = "png"):
        self.dpi = dpi
        self.image_format = image_format

    def get_page_count(self, pdf_path: str) -> int:
        """Total number of pages in the PDF."""
        try:
            with fitz.open(pdf_path) as doc:
                return doc.page_count
        except (RuntimeError, ValueError) as e:
            raise ValueError(f"Failed to read PDF file: {pdf_path}") from e

    def render_pages(self, pdf_path: str, output_dir: str) -> list[RenderedPage]:
        """Render every page to <output_dir>/page-<N>.<format>."""
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        rendered: list[RenderedPage] = []

        with fitz.open(pdf_path) as doc:
            for index in range(doc.page_count):
                page_number = index + 1
                pix = doc[index].get_pixmap(dpi=self.dpi)
                path = out / page_image_name(page_number, self.image_format)
                pix.save(str(path))
                rendered.append(RenderedPage(page_number, str(path)))

        logger.info(f"Rendered {len(rendered)} page(s) from {pdf_path} at {self.dpi} dpi")
        return rendered
