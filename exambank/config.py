"""
Pipeline Configuration
======================
Runtime settings for the ingestion pipeline and logging setup for the
exambank package.

Every setting can be overridden from the environment:

    EXAMBANK_DB_PATH          SQLite database file
    EXAMBANK_STORAGE_DIR      Root for uploaded documents and page images
    EXAMBANK_IMAGE_DPI        Rasterization resolution
    EXAMBANK_VISION_URL       Messages endpoint of the vision service
    EXAMBANK_VISION_MODEL     Model name sent to the vision service
    EXAMBANK_VISION_TIMEOUT   Seconds before a page call is aborted
    ANTHROPIC_API_KEY         API key for the vision service
    EXAMBANK_LOG_LEVEL        DEBUG / INFO / WARNING / ERROR
    EXAMBANK_LOG_FILE         Optional log file path
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_DB_PATH = str(_PROJECT_ROOT / "database.sqlite")
DEFAULT_STORAGE_DIR = str(_PROJECT_ROOT / "subjects")
DEFAULT_VISION_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_VISION_MODEL = "claude-sonnet-4-5"
DEFAULT_VISION_TIMEOUT = 120.0


@dataclass
class PipelineConfig:
    """Configuration for the ingestion pipeline."""

    # Persistence
    db_path: str = DEFAULT_DB_PATH
    storage_dir: str = DEFAULT_STORAGE_DIR

    # Rasterization
    image_dpi: int = 150

    # Vision service
    vision_url: str = DEFAULT_VISION_URL
    vision_model: str = DEFAULT_VISION_MODEL
    vision_api_key: str = ""
    vision_timeout: float = DEFAULT_VISION_TIMEOUT
    vision_max_tokens: int = 4096

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "PipelineConfig":
        """Build a config from environment variables, then apply overrides."""
        env = os.environ
        config = cls(
            db_path=env.get("EXAMBANK_DB_PATH", DEFAULT_DB_PATH),
            storage_dir=env.get("EXAMBANK_STORAGE_DIR", DEFAULT_STORAGE_DIR),
            image_dpi=int(env.get("EXAMBANK_IMAGE_DPI", 150)),
            vision_url=env.get("EXAMBANK_VISION_URL", DEFAULT_VISION_URL),
            vision_model=env.get("EXAMBANK_VISION_MODEL", DEFAULT_VISION_MODEL),
            vision_api_key=env.get("ANTHROPIC_API_KEY", ""),
            vision_timeout=float(
                env.get("EXAMBANK_VISION_TIMEOUT", DEFAULT_VISION_TIMEOUT)
            ),
            log_level=env.get("EXAMBANK_LOG_LEVEL", "INFO"),
            log_file=env.get("EXAMBANK_LOG_FILE") or None,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure the exambank package logger (console + optional file)."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    package_logger = logging.getLogger("exambank")
    package_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not package_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(formatter)
        package_logger.addHandler(console)

    if log_file:
        log_dir = Path(log_file).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)
