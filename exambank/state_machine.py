"""
Ingestion State Machine
=======================
Legal status transitions for documents, pages and candidates.

Each entity has one transition function taking the current status and an
action, returning the next status or raising IllegalTransition. Callers
compute the next status before performing any side effect, so a rejected
call leaves stored state untouched.

Document:   uploaded --extract--> extracted --process--> completed
            any --fail--> error
Page:       any --start--> processing --succeed/fail--> completed/error
Candidate:  pending --approve/reject--> approved/rejected (frozen)
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from .errors import IllegalTransition
from .models import CandidateStatus, DocumentStatus, PageStatus


class DocumentAction(str, Enum):
    EXTRACT = "extract"
    PROCESS = "process"
    FAIL = "fail"


class PageAction(str, Enum):
    START = "start"
    SUCCEED = "succeed"
    FAIL = "fail"


class CandidateAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


# action -> (allowed source states, or None for any; target state)
# Processing may be re-run after completion or an error; pages already
# completed are skipped by the pipeline.
DOCUMENT_TRANSITIONS: dict[DocumentAction, tuple[Optional[frozenset], DocumentStatus]] = {
    DocumentAction.EXTRACT: (
        frozenset({DocumentStatus.UPLOADED}),
        DocumentStatus.EXTRACTED,
    ),
    DocumentAction.PROCESS: (
        frozenset({
            DocumentStatus.EXTRACTED,
            DocumentStatus.COMPLETED,
            DocumentStatus.ERROR,
        }),
        DocumentStatus.COMPLETED,
    ),
    DocumentAction.FAIL: (None, DocumentStatus.ERROR),
}

PAGE_TRANSITIONS: dict[PageAction, tuple[Optional[frozenset], PageStatus]] = {
    PageAction.START: (None, PageStatus.PROCESSING),
    PageAction.SUCCEED: (frozenset({PageStatus.PROCESSING}), PageStatus.COMPLETED),
    PageAction.FAIL: (frozenset({PageStatus.PROCESSING}), PageStatus.ERROR),
}

CANDIDATE_TRANSITIONS: dict[CandidateAction, tuple[Optional[frozenset], CandidateStatus]] = {
    CandidateAction.APPROVE: (
        frozenset({CandidateStatus.PENDING}),
        CandidateStatus.APPROVED,
    ),
    CandidateAction.REJECT: (
        frozenset({CandidateStatus.PENDING}),
        CandidateStatus.REJECTED,
    ),
    CandidateAction.EDIT: (
        frozenset({CandidateStatus.PENDING}),
        CandidateStatus.PENDING,
    ),
}


def _transition(entity: str, table: dict, status_type: type, current, action):
    current = status_type(current)
    sources, target = table[action]
    if sources is not None and current not in sources:
        allowed = ", ".join(sorted(s.value for s in sources))
        raise IllegalTransition(
            entity, current.value, action.value, f"requires one of: {allowed}"
        )
    return target


def next_document_status(
    current: Union[DocumentStatus, str], action: DocumentAction
) -> DocumentStatus:
    return _transition(
        "document", DOCUMENT_TRANSITIONS, DocumentStatus, current, action
    )


def next_page_status(
    current: Union[PageStatus, str], action: PageAction
) -> PageStatus:
    return _transition("page", PAGE_TRANSITIONS, PageStatus, current, action)


def next_candidate_status(
    current: Union[CandidateStatus, str], action: CandidateAction
) -> CandidateStatus:
    return _transition(
        "candidate", CANDIDATE_TRANSITIONS, CandidateStatus, current, action
    )
