"""
Question Text Segmenter
=======================
Splits one question block (header already removed) into the statement
text and the options region that follows it.
"""

from __future__ import annotations

import re

# Where the options region may begin. All are tested and the earliest
# offset wins, regardless of the order they are listed in.
OPTIONS_START_PATTERNS = (
    re.compile(r"^[ \t]*a[\.\)]\s", re.MULTILINE),   # "a) ..." / "a. ..." line
    re.compile(r"^[ \t]*A[\.\)]\s", re.MULTILINE),   # "A. ..." / "A) ..." line
    re.compile(r"\Aa[\.\)]\s"),                      # content opens with "a)"
    re.compile(r"\AA[\.\)]\s"),                      # content opens with "A."
)

# Stray "7. " numbering kept from the source document
LEADING_NUMBER_PATTERN = re.compile(r"^\d+\.\s+")


def strip_leading_number(text: str) -> str:
    """Remove a single leading "N. " numeral, if present."""
    return LEADING_NUMBER_PATTERN.sub("", text.strip(), count=1).strip()


def find_options_start(content: str) -> int:
    """Offset of the options region, or len(content) when there is none."""
    first = len(content)
    for pattern in OPTIONS_START_PATTERNS:
        match = pattern.search(content)
        if match and match.start() < first:
            first = match.start()
    return first


def split_question(content: str) -> tuple[str, str]:
    """Return (body, options_region) for a question block."""
    offset = find_options_start(content)
    body = strip_leading_number(content[:offset])
    return body, content[offset:].strip()
