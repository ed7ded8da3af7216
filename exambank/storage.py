"""
Filesystem Storage Manager
==========================
Path conventions for uploaded documents and their page images.
The pipeline records and deletes these paths; rasterization itself lives
in the rasterizer module.

Directory Layout:
    <storage_dir>/
    └── <subject_id>/
        └── exams/
            ├── originals/            # "<document_id>_<filename>.pdf"
            ├── images/<document_id>/ # "page-<N>.png"
            └── parsed/<document_id>/ # raw vision output snapshots
"""

from __future__ import annotations

import base64
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Optional

from .config import DEFAULT_STORAGE_DIR

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def get_storage_root(root: Optional[str] = None) -> Path:
    return Path(root or os.environ.get("EXAMBANK_STORAGE_DIR", DEFAULT_STORAGE_DIR))


def get_subject_paths(subject_id: str, root: Optional[str] = None) -> dict[str, Path]:
    exams_dir = get_storage_root(root) / _sanitize_name(subject_id) / "exams"
    return {
        "exams": exams_dir,
        "originals": exams_dir / "originals",
        "images": exams_dir / "images",
        "parsed": exams_dir / "parsed",
    }


def init_subject_storage(subject_id: str, root: Optional[str] = None) -> dict[str, Path]:
    """Ensure all directories of a subject exist."""
    paths = get_subject_paths(subject_id, root)
    for path in paths.values():
        path.mkdir(parents=True, exist_ok=True)
    return paths


# ─── Documents ────────────────────────────────────────────────────────────────


def save_document_file(
    source_path: str,
    subject_id: str,
    document_id: str,
    original_filename: str,
    root: Optional[str] = None,
) -> tuple[str, str]:
    """
    Copy an uploaded PDF into the subject's originals folder.
    Returns (absolute_path, stored_filename).
    """
    paths = init_subject_storage(subject_id, root)
    filename = f"{document_id}_{_sanitize_filename(original_filename)}"
    dest = paths["originals"] / filename
    if Path(source_path).resolve() != dest.resolve():
        shutil.copy2(source_path, dest)
    logger.info(f"Document saved: {dest}")
    return str(dest), filename


def get_page_image_dir(
    subject_id: str, document_id: str, root: Optional[str] = None
) -> Path:
    """Image directory of a document. Created if missing."""
    image_dir = get_subject_paths(subject_id, root)["images"] / document_id
    image_dir.mkdir(parents=True, exist_ok=True)
    return image_dir


def page_image_name(page_number: int, image_format: str = "png") -> str:
    return f"page-{page_number}.{image_format}"


def get_parsed_dir(subject_id: str, document_id: str, root: Optional[str] = None) -> Path:
    parsed_dir = get_subject_paths(subject_id, root)["parsed"] / document_id
    parsed_dir.mkdir(parents=True, exist_ok=True)
    return parsed_dir


def save_page_text(
    subject_id: str,
    document_id: str,
    page_number: int,
    text: str,
    root: Optional[str] = None,
) -> str:
    """Keep a snapshot of the raw vision output next to the page images."""
    path = get_parsed_dir(subject_id, document_id, root) / f"page-{page_number}.md"
    path.write_text(text, encoding="utf-8")
    return str(path)


def delete_document_files(
    subject_id: str,
    document_id: str,
    filename: str,
    root: Optional[str] = None,
) -> int:
    """
    Delete the original file, page images and parsed snapshots of a
    document. Missing files are skipped. Returns the number of paths removed.
    """
    paths = get_subject_paths(subject_id, root)
    removed = 0

    original = paths["originals"] / filename
    if filename and original.is_file():
        try:
            original.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Could not delete {original}: {e}")

    for directory in (paths["images"] / document_id, paths["parsed"] / document_id):
        if directory.is_dir():
            try:
                shutil.rmtree(directory)
                removed += 1
            except OSError as e:
                logger.warning(f"Could not delete {directory}: {e}")

    logger.info(f"Deleted {removed} storage path(s) for document {document_id}")
    return removed


# ─── Images ───────────────────────────────────────────────────────────────────


def read_image_base64(image_path: str) -> str:
    return base64.b64encode(Path(image_path).read_bytes()).decode("ascii")


def get_image_media_type(image_path: str) -> str:
    return MEDIA_TYPES.get(Path(image_path).suffix.lower(), "image/png")


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _sanitize_name(name: str) -> str:
    """Sanitize a name for use as a directory."""
    return "".join(
        c if c.isalnum() or c in "-_ " else "_"
        for c in name
    ).strip().replace(" ", "_")[:100]


def _sanitize_filename(filename: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", Path(filename).name)
