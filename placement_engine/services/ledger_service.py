"""
Application Ledger - per-student admission rules.

Checks, in this fixed order so error reporting is deterministic:
1. DuplicateApplication      - open application for the same target exists
2. InstitutionQuotaExceeded  - already N non-withdrawn applications there
3. ConflictingAdmission      - holds an admission not yet confirmed

The same rules are re-asserted at commit time through count guards, so a
concurrent submission by the same student cannot slip past them.
"""

import logging
from typing import List, Optional, Tuple

from placement_engine.core.config import get_settings, Settings
from placement_engine.core.errors import (
    AllocationError,
    ConflictingAdmission,
    DuplicateApplication,
    InstitutionQuotaExceeded,
)
from placement_engine.db.repository import Repository
from placement_engine.schemas.schemas import (
    ApplicationFilter,
    ApplicationStatus,
    CountGuard,
)

logger = logging.getLogger(__name__)

OPEN_STATUSES = [ApplicationStatus.pending, ApplicationStatus.waiting, ApplicationStatus.admitted]
QUOTA_STATUSES = OPEN_STATUSES + [ApplicationStatus.rejected]  # everything but withdrawn


class ApplicationLedger:
    """Read-side view over one student's applications."""

    def __init__(self, repository: Repository, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.repository = repository
        self.max_per_institution = settings.max_applications_per_institution

    def first_violation(
        self,
        student_id: str,
        target_id: str,
        institution_id: str
    ) -> Optional[AllocationError]:
        """The first rule the new application would break, or None."""
        apps = self.repository.list_applications(ApplicationFilter(student_id=student_id))

        if any(a.target_id == target_id and not a.is_terminal for a in apps):
            return DuplicateApplication("You have already applied to this course")

        at_institution = [
            a for a in apps
            if a.institution_id == institution_id and a.status != ApplicationStatus.withdrawn
        ]
        if len(at_institution) >= self.max_per_institution:
            return InstitutionQuotaExceeded(
                f"You can only apply to maximum {self.max_per_institution} courses per institution"
            )

        if any(a.status == ApplicationStatus.admitted and not a.confirmed for a in apps):
            return ConflictingAdmission(
                "You are already admitted to another institution. "
                "Please select your preferred institution first."
            )

        return None

    def can_submit(self, student_id: str, target_id: str, institution_id: str) -> Tuple[bool, Optional[str]]:
        error = self.first_violation(student_id, target_id, institution_id)
        if error is None:
            return True, None
        return False, error.message

    def check(self, student_id: str, target_id: str, institution_id: str) -> None:
        """Raise the typed error of the first violated rule."""
        error = self.first_violation(student_id, target_id, institution_id)
        if error is not None:
            logger.info(f"Application by {student_id} to {target_id} refused: {error.kind.value}")
            raise error

    def guards(
        self,
        student_id: str,
        target_id: str,
        institution_id: str,
        new_status: ApplicationStatus
    ) -> List[CountGuard]:
        """Commit-time guards equivalent to check(), counting the new record."""
        unconfirmed_allowed = 1 if new_status == ApplicationStatus.admitted else 0
        return [
            CountGuard(
                scope=ApplicationFilter(student_id=student_id, target_id=target_id, statuses=OPEN_STATUSES),
                max_count=1
            ),
            CountGuard(
                scope=ApplicationFilter(
                    student_id=student_id, institution_id=institution_id, statuses=QUOTA_STATUSES
                ),
                max_count=self.max_per_institution
            ),
            CountGuard(
                scope=ApplicationFilter(
                    student_id=student_id, statuses=[ApplicationStatus.admitted], confirmed=False
                ),
                max_count=unconfirmed_allowed
            ),
        ]
