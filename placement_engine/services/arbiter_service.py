"""
Admission Arbiter - resolve competing admissions.

A student admitted to more than one course/job picks one. In a single
atomic transition the chosen admission is confirmed, every other admission
is rejected as superseded, and each freed seat is handed to the earliest
waiting application of that target. Either all of it commits or none does.
"""

import logging
from collections import Counter
from typing import List

from placement_engine.core.errors import InvalidSelection
from placement_engine.db.repository import Repository
from placement_engine.schemas.schemas import (
    Application,
    ApplicationFilter,
    ApplicationStatus,
    CountGuard,
    Decision,
    Notification,
    NotificationKind,
    Outcome,
    StatusChange,
    TransitionBatch,
)
from placement_engine.services.allocation_service import AllocationEngine, release_guards

logger = logging.getLogger(__name__)

SUPERSEDED_REASON = "superseded by student selection"


class AdmissionArbiter:
    """Runs confirm_choice through the engine's retry loop and clock."""

    def __init__(self, engine: AllocationEngine):
        self.engine = engine
        self.repository: Repository = engine.repository

    def confirm_choice(self, student_id: str, chosen_application_id: str) -> Decision:
        """
        Keep `chosen_application_id`, release every other admission.

        Fails with InvalidSelection if the application does not exist, is
        not the student's, or is not admitted.
        """
        return self.engine.run_atomic(lambda: self._confirm_once(student_id, chosen_application_id))

    def _confirm_once(self, student_id: str, chosen_application_id: str) -> Decision:
        chosen = self.repository.get_application(chosen_application_id)
        if chosen is None or chosen.student_id != student_id:
            raise InvalidSelection("Invalid selection")
        if chosen.status != ApplicationStatus.admitted:
            raise InvalidSelection(f"Application is {chosen.status.value}, not admitted")

        others = [
            a for a in self.repository.list_applications(
                ApplicationFilter(student_id=student_id, statuses=[ApplicationStatus.admitted])
            )
            if a.id != chosen.id
        ]

        changes: List[StatusChange] = [
            StatusChange(
                application_id=other.id,
                expected_status=ApplicationStatus.admitted,
                new_status=ApplicationStatus.rejected,
                reason=SUPERSEDED_REASON
            )
            for other in others
        ]
        changes.append(StatusChange(
            application_id=chosen.id,
            expected_status=ApplicationStatus.admitted,
            new_status=ApplicationStatus.admitted,
            reason=chosen.reason,
            confirm=True
        ))

        # Exactly one admission survives for this student
        guards: List[CountGuard] = [CountGuard(
            scope=ApplicationFilter(student_id=student_id, statuses=[ApplicationStatus.admitted]),
            max_count=1
        )]

        # One promotion per released seat, earliest waiting entry first
        promoted_ids: List[str] = []
        for target_id, freed in Counter(a.target_id for a in others).items():
            capacity = self.engine.capacity_of(target_id)
            held_before = self.engine.held_seats(target_id)
            planned_here = 0
            while planned_here < freed:
                planned = self.engine.plan_promotion(
                    target_id,
                    capacity,
                    vacated=freed - planned_here,
                    skip_ids=promoted_ids
                )
                if planned is None:
                    break
                app, change = planned
                promoted_ids.append(app.id)
                changes.append(change)
                planned_here += 1
            guards.extend(release_guards(target_id, capacity, held_before, freed, planned_here))

        committed = self.repository.atomic_transition(
            TransitionBatch(at=self.engine.clock(), changes=changes, guards=guards)
        )

        released = committed[:len(others)]
        confirmed = committed[len(others)]
        promoted = committed[len(others) + 1:]
        logger.info(
            f"Student {student_id} confirmed {confirmed.id}; "
            f"released {len(released)}, promoted {len(promoted)}"
        )
        return Decision(
            outcome=Outcome.confirmed,
            application=confirmed,
            affected=released + promoted,
            notifications=self._notifications(released, promoted)
        )

    def _notifications(self, released: List[Application], promoted: List[Application]) -> List[Notification]:
        notes = [
            Notification(
                user_id=app.student_id,
                kind=NotificationKind.superseded,
                payload={
                    "application_id": app.id,
                    "target_id": app.target_id,
                    "institution_id": app.institution_id,
                    "reason": SUPERSEDED_REASON,
                }
            )
            for app in released
        ]
        for app in promoted:
            notes.extend(self.engine.admission_notifications(app))
        return notes


def get_admission_arbiter(engine: AllocationEngine) -> AdmissionArbiter:
    return AdmissionArbiter(engine)
