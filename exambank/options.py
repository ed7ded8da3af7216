"""
Option Block Extractor
======================
Extracts up to four labeled answer options from the options region of a
question block.

Tiers are tried in order, and a tier runs only when the previous one
recovered fewer than two options:

    1. Line-oriented:    one option per line, continuation lines appended
    2. Inline lowercase: "a) X b) Y c) Z d) W" on a single line
    3. Inline uppercase: "A. X B. Y C. Z D. W" on a single line

Labels are always normalized to the lowercase alphabet in OPTION_LABELS.
No tier raises; an unparseable region yields an empty mapping.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from .models import OPTION_LABELS

logger = logging.getLogger(__name__)

MIN_OPTIONS = 2

# ─── Patterns ─────────────────────────────────────────────────────────────────

# "a) text", "B. text", "  c) text"
OPTION_LINE_PATTERN = re.compile(r"^\s*([a-dA-D])[\.\)]\s*(.*)")

# Trailing "---" left over from block separators
TRAILING_SEPARATOR_PATTERN = re.compile(r"\s*---\s*$")

LOWERCASE_MARKERS = tuple(f"{label})" for label in OPTION_LABELS)
UPPERCASE_MARKERS = tuple(f"{label.upper()}." for label in OPTION_LABELS)


def _is_section_break(line: str) -> bool:
    return line.strip() == "---" or line.startswith("##")


def _clean_value(value: str) -> str:
    value = TRAILING_SEPARATOR_PATTERN.sub("", value)
    return value.rstrip("\n").strip()


def _finish(raw: dict[str, str]) -> dict[str, str]:
    """Clean values, drop empty slots and order by label."""
    options = {}
    for label in OPTION_LABELS:
        if label in raw:
            value = _clean_value(raw[label])
            if value:
                options[label] = value
    return options


# ─── Tier 1: line-oriented ────────────────────────────────────────────────────


def extract_line_options(text: str) -> dict[str, str]:
    """
    Walk lines, opening an option at every label line.

    Non-label lines extend the open option. A "---" line or a line starting
    a new "##" section stops accumulation for the rest of the block.
    """
    raw: dict[str, str] = {}
    current = None
    buffer: list[str] = []

    for line in text.split("\n"):
        match = OPTION_LINE_PATTERN.match(line)
        if match:
            if current:
                raw[current] = "\n".join(buffer)
            current = match.group(1).lower()
            buffer = [match.group(2)]
        elif current:
            if _is_section_break(line):
                break
            buffer.append(line)

    if current:
        raw[current] = "\n".join(buffer)

    return _finish(raw)


# ─── Tiers 2 and 3: inline markers ────────────────────────────────────────────


def _split_inline(line: str, markers: tuple[str, ...]) -> dict[str, str]:
    """
    Locate markers sequentially on one line and cut the text between them.

    The first marker must sit at line start or after whitespace; every
    later marker must be preceded by whitespace. Stops at the first marker
    that is missing.
    """
    spans: list[tuple[str, int, int]] = []
    search_from = 0

    for index, marker in enumerate(markers):
        prefix = r"(?:^|(?<=\s))" if index == 0 else r"(?<=\s)"
        pattern = re.compile(prefix + re.escape(marker) + r"\s+")
        match = pattern.search(line, search_from)
        if not match:
            break
        spans.append((OPTION_LABELS[index], match.start(), match.end()))
        search_from = match.end()

    raw = {}
    for i, (label, _start, end) in enumerate(spans):
        stop = spans[i + 1][1] if i + 1 < len(spans) else len(line)
        raw[label] = line[end:stop]
    return _finish(raw)


def _extract_inline(text: str, markers: tuple[str, ...]) -> dict[str, str]:
    for line in text.split("\n"):
        options = _split_inline(line, markers)
        if len(options) >= MIN_OPTIONS:
            return options
    return {}


def extract_inline_lowercase(text: str) -> dict[str, str]:
    """
    Inline "a) ... b) ... c) ... d) ..." on a single line.

    Applies only when the line-oriented tier found fewer than two options.
    """
    return _extract_inline(text, LOWERCASE_MARKERS)


def extract_inline_uppercase(text: str) -> dict[str, str]:
    """
    Inline "A. ... B. ... C. ... D. ..." on a single line.

    Applies only when both previous tiers found fewer than two options.
    """
    return _extract_inline(text, UPPERCASE_MARKERS)


TIERS: tuple[Callable[[str], dict[str, str]], ...] = (
    extract_line_options,
    extract_inline_lowercase,
    extract_inline_uppercase,
)


# ─── Driver ───────────────────────────────────────────────────────────────────


def extract_options(text: str) -> dict[str, str]:
    """
    Run the tiers in order and return the first result with two or more
    options. When every tier falls short, the largest partial result is
    returned so the caller can flag it.
    """
    if not text or not text.strip():
        return {}

    best: dict[str, str] = {}
    for tier in TIERS:
        options = tier(text)
        if len(options) >= MIN_OPTIONS:
            logger.debug(f"{tier.__name__} recovered {len(options)} options")
            return options
        if len(options) > len(best):
            best = options

    return best
