"""
Typed errors for the allocation engine.

Services raise these; the engine boundary turns them into a `Decision`
carrying the ErrorKind so callers never see a generic failure.
"""

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    ineligible_candidate = "ineligible_candidate"
    duplicate_application = "duplicate_application"
    institution_quota_exceeded = "institution_quota_exceeded"
    conflicting_admission = "conflicting_admission"
    capacity_race_lost = "capacity_race_lost"
    invalid_selection = "invalid_selection"
    transaction_aborted = "transaction_aborted"
    application_not_found = "application_not_found"
    target_not_found = "target_not_found"
    candidate_not_found = "candidate_not_found"
    invalid_transition = "invalid_transition"


class AllocationError(Exception):
    """Base class. `kind` identifies the error for callers."""

    kind: ErrorKind = ErrorKind.transaction_aborted

    def __init__(self, message: str = "", reasons: Optional[List[str]] = None):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value
        self.reasons = list(reasons or [])


class IneligibleCandidate(AllocationError):
    kind = ErrorKind.ineligible_candidate


class DuplicateApplication(AllocationError):
    kind = ErrorKind.duplicate_application


class InstitutionQuotaExceeded(AllocationError):
    kind = ErrorKind.institution_quota_exceeded


class ConflictingAdmission(AllocationError):
    kind = ErrorKind.conflicting_admission


class InvalidSelection(AllocationError):
    kind = ErrorKind.invalid_selection


class ApplicationNotFound(AllocationError):
    kind = ErrorKind.application_not_found


class TargetNotFound(AllocationError):
    kind = ErrorKind.target_not_found


class CandidateNotFound(AllocationError):
    kind = ErrorKind.candidate_not_found


class InvalidTransition(AllocationError):
    kind = ErrorKind.invalid_transition


class TransactionAborted(AllocationError):
    """
    The atomic transition was not applied (lost compare-and-set, failed
    guard or store error). Nothing was written; the whole decision is
    retried.
    """

    kind = ErrorKind.transaction_aborted


class CapacityRaceLost(TransactionAborted):
    """A seat guard failed at commit: another writer changed the held count."""

    kind = ErrorKind.capacity_race_lost


ERRORS_BY_KIND = {
    cls.kind: cls for cls in (
        IneligibleCandidate, DuplicateApplication, InstitutionQuotaExceeded,
        ConflictingAdmission, CapacityRaceLost, InvalidSelection,
        TransactionAborted, ApplicationNotFound, TargetNotFound,
        CandidateNotFound, InvalidTransition,
    )
}


def error_for(kind: ErrorKind, message: str = "") -> AllocationError:
    """Build the exception instance for an ErrorKind."""
    return ERRORS_BY_KIND[kind](message)
