"""
Exam Bank Ingestion
===================
Turns exam content into canonical multiple-choice questions.

Architecture:
    - Text Bank Parser: Markdown question banks with shared statements
    - Option Extractor: Tiered option recovery (per line, inline a), inline A.)
    - Extraction Parser: Vision model output to question candidates
    - Ingestion Pipeline: Document and page lifecycle for scanned exams
    - Approval Workflow: Human gate promoting candidates to questions

Version: 1.0.0
"""

__version__ = "1.0.0"
