"""
Error Taxonomy
==============
Exceptions raised by the ingestion pipeline.

Only IllegalTransition, ValidationFailure and NotFound are meant to reach
the invoking layer. External service failures are recorded on the Page
and batch file failures are recorded on the parse result; malformed
source blocks are flagged with anomalies instead of raising.
"""

from __future__ import annotations

from typing import Optional


class ExamBankError(Exception):
    """Base class for all pipeline errors."""


class NotFound(ExamBankError):
    """A referenced document, page or candidate does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class IllegalTransition(ExamBankError):
    """An operation was invoked in a state that does not allow it."""

    def __init__(self, entity: str, current: str, action: str, reason: str = ""):
        self.entity = entity
        self.current = current
        self.action = action
        message = f"Cannot {action} {entity} in state '{current}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ValidationFailure(ExamBankError):
    """A candidate is not fit for the requested operation."""


class InsufficientOptions(ValidationFailure):
    """Approval attempted on a candidate with fewer than two options."""

    def __init__(self, candidate_id: str, found: int):
        self.candidate_id = candidate_id
        self.found = found
        super().__init__(
            f"Candidate {candidate_id} has {found} option(s); at least 2 required"
        )


class MissingQuestionText(ValidationFailure):
    """Approval attempted on a candidate with no statement text."""

    def __init__(self, candidate_id: str):
        self.candidate_id = candidate_id
        super().__init__(f"Candidate {candidate_id} has no question text")


class ExternalServiceError(ExamBankError):
    """The vision service failed or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ExternalServiceTimeout(ExternalServiceError):
    """The vision service did not answer within its time bound."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Vision processing timeout after {timeout:g}s")


class BatchFileError(ExamBankError):
    """One source file of a multi-file bank could not be read or parsed."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Error parsing {path}: {cause}")
