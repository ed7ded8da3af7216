"""
Shared Statement Table
======================
Tracks "**Enunciado N:**" context blocks declared in a text bank so that
later questions can reference them ("En las condiciones del enunciado N").

A table is built once per source text, consulted read-only while the
blocks of that text are parsed, and then discarded.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Union

logger = logging.getLogger(__name__)

# ─── Patterns ─────────────────────────────────────────────────────────────────

# A declaration runs until the next blank-line separated option block or
# the end of the text.
DECLARATION_PATTERN = re.compile(
    r"\*\*Enunciado\s*(\d+):\*\*\s*(.*?)(?=\n\n[a-dA-D][\.\)]\s|\Z)",
    re.DOTALL,
)

# Inside a single question block the declaration stops at the first
# option line.
INLINE_DECLARATION_PATTERN = re.compile(
    r"\*\*Enunciado\s*(\d+):\*\*\s*(.*?)(?=\n\n?[a-dA-D][\.\)]\s)",
    re.DOTALL,
)

REFERENCE_PATTERN = re.compile(
    r"en\s+las\s+condiciones\s+del\s+enunciado\s+(\d+)", re.IGNORECASE
)

Label = Union[int, str]


class SharedStatementTable:
    """Label → statement text for one source document."""

    def __init__(self, statements: Optional[dict[str, str]] = None):
        self._statements: dict[str, str] = dict(statements or {})

    @classmethod
    def build(cls, text: str) -> "SharedStatementTable":
        """
        Scan the whole text for declarations. A label declared more than
        once keeps its last text.
        """
        table = cls()
        for match in DECLARATION_PATTERN.finditer(text):
            label, statement = match.group(1), match.group(2).strip()
            if label in table._statements:
                logger.debug(f"Enunciado {label} redefined; keeping later text")
            table._statements[label] = statement
        return table

    def resolve(self, label: Label) -> Optional[str]:
        return self._statements.get(str(label))

    @staticmethod
    def find_reference(block: str) -> Optional[str]:
        """Label referenced by "en las condiciones del enunciado N"."""
        match = REFERENCE_PATTERN.search(block)
        return match.group(1) if match else None

    @staticmethod
    def find_inline(block: str) -> Optional[tuple[str, str]]:
        """(label, text) of a statement the block declares itself."""
        match = INLINE_DECLARATION_PATTERN.search(block)
        if not match:
            return None
        return match.group(1), match.group(2).strip()

    def labels(self) -> list[str]:
        return sorted(self._statements, key=lambda k: (len(k), k))

    def __len__(self) -> int:
        return len(self._statements)

    def __contains__(self, label: object) -> bool:
        return str(label) in self._statements
