"""
Allocation Engine - seat decisions and the waitlist state machine.

PURPOSE:
Decide the outcome of a new application and keep every course/job within
capacity, promoting from the waitlist whenever a seat frees up.

STATE MACHINE:
    pending  -> admitted | rejected | withdrawn
    waiting  -> admitted (promotion only) | rejected
    admitted -> rejected (AdmissionArbiter only)
    rejected, withdrawn: terminal

HOW A DECISION IS MADE:
1. RequirementChecker gate (ineligible -> rejected, nothing stored)
2. ApplicationLedger gate (duplicate -> quota -> conflicting admission)
3. Count held seats (pending + admitted) for the target
4. Seat free  -> pending, or admitted when the target auto-admits
   No seat    -> waiting, at the tail of the FIFO waitlist
5. Commit through Repository.atomic_transition with count guards that
   re-check capacity and the ledger rules against the committed state

CONCURRENCY:
The engine keeps no counters. A lost race shows up as TransactionAborted
(or CapacityRaceLost) from the repository; the whole read-decide-commit
cycle is retried with bounded exponential backoff. Every other error is
terminal and returned to the caller as a typed Decision.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from placement_engine.core.config import get_settings, Settings
from placement_engine.core.errors import (
    AllocationError,
    ApplicationNotFound,
    CandidateNotFound,
    IneligibleCandidate,
    InvalidTransition,
    TargetNotFound,
    TransactionAborted,
    ErrorKind,
)
from placement_engine.db.repository import Repository
from placement_engine.schemas.schemas import (
    Application,
    ApplicationFilter,
    ApplicationStatus,
    Candidate,
    CountGuard,
    Decision,
    Notification,
    NotificationKind,
    Outcome,
    Requirement,
    SEAT_HOLDING_STATUSES,
    StatusChange,
    StatusEvent,
    Target,
    TargetType,
    TransitionBatch,
    can_transition,
)
from placement_engine.services.ledger_service import ApplicationLedger
from placement_engine.services.requirement_service import RequirementChecker

logger = logging.getLogger(__name__)

# Days a student has to choose between competing admissions
CHOICE_WINDOW_DAYS = 7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seat_scope(target_id: str) -> ApplicationFilter:
    """Applications holding a seat of `target_id`."""
    return ApplicationFilter(target_id=target_id, statuses=sorted(SEAT_HOLDING_STATUSES))


def seat_guard(target_id: str, capacity: int) -> CountGuard:
    """Held seats must not exceed capacity once the batch is applied."""
    return CountGuard(
        scope=seat_scope(target_id),
        max_count=capacity,
        error=ErrorKind.capacity_race_lost
    )


def release_guards(
    target_id: str,
    capacity: int,
    held_before: int,
    vacated: int,
    promoted: int
) -> List[CountGuard]:
    """
    Seat guard for a batch that frees seats on `target_id`.

    Only promotions can add seats, so a pure release needs no guard. The
    bound never drops below the batch's own outcome, which keeps releases
    working on a target already above a lowered capacity.
    """
    if promoted <= 0:
        return []
    return [CountGuard(
        scope=seat_scope(target_id),
        max_count=max(capacity, held_before - vacated + promoted),
        error=ErrorKind.capacity_race_lost
    )]


class AllocationEngine:
    """
    Orchestrates eligibility, ledger rules and capacity for one store.

    Args:
        repository: persistence collaborator
        settings: policy and retry configuration
        clock: timestamp source (UTC); injectable for tests
    """

    def __init__(
        self,
        repository: Repository,
        settings: Optional[Settings] = None,
        checker: Optional[RequirementChecker] = None,
        ledger: Optional[ApplicationLedger] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.checker = checker or RequirementChecker()
        self.ledger = ledger or ApplicationLedger(repository, self.settings)
        self.clock = clock or utcnow

    # ============================================================
    # RETRY / RESULT PLUMBING
    # ============================================================

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.settings.transaction_retry_attempts)),
            wait=wait_exponential(
                multiplier=self.settings.retry_backoff_seconds,
                max=self.settings.retry_backoff_max_seconds
            ),
            retry=retry_if_exception_type(TransactionAborted),
            before_sleep=lambda state: logger.warning(
                f"Transaction aborted ({state.outcome.exception()}), "
                f"retrying (attempt {state.attempt_number + 1})"
            ),
            reraise=True,
        )

    def run_atomic(self, step: Callable[[], Decision]) -> Decision:
        """
        Run one read-decide-commit step, retrying it on TransactionAborted.

        Typed errors become a failed Decision; anything else propagates.
        """
        attempts = 0
        try:
            for attempt in self._retrying():
                with attempt:
                    attempts += 1
                    decision = step()
        except AllocationError as e:
            logger.info(f"Allocation step failed after {attempts} attempt(s): {e.kind.value}: {e.message}")
            return Decision.failure(e, attempts=attempts)

        decision.attempts = attempts
        return decision

    # ============================================================
    # POLICY / READ HELPERS
    # ============================================================

    def auto_admit(self, target: Target) -> bool:
        """Per-target policy flag, falling back to the default for its type."""
        if target.auto_admit is not None:
            return target.auto_admit
        if target.target_type == TargetType.job:
            return self.settings.job_auto_admit
        return self.settings.course_auto_admit

    def held_seats(self, target_id: str) -> int:
        """Seats in use, always recomputed from the application set."""
        return self.repository.count_applications(seat_scope(target_id))

    def capacity_of(self, target_id: str) -> int:
        found = self.repository.fetch_requirement(target_id)
        if found is None:
            raise TargetNotFound(f"Target {target_id} not found")
        return found[1]

    def waitlist(self, target_id: str) -> List[Application]:
        """Waiting applications for a target, earliest first."""
        return self.repository.list_applications(
            ApplicationFilter(target_id=target_id, statuses=[ApplicationStatus.waiting])
        )

    def _load(self, application_id: str) -> Application:
        app = self.repository.get_application(application_id)
        if app is None:
            raise ApplicationNotFound(f"Application {application_id} not found")
        return app

    # ============================================================
    # NOTIFICATIONS
    # ============================================================

    @staticmethod
    def _payload(app: Application, **extra) -> dict:
        payload = {
            "application_id": app.id,
            "target_id": app.target_id,
            "target_type": app.target_type.value,
            "institution_id": app.institution_id,
            "status": app.status.value,
        }
        payload.update(extra)
        return payload

    def admission_notifications(self, app: Application) -> List[Notification]:
        """Admission notice, plus a choose-one prompt if it competes with another."""
        notes = [Notification(
            user_id=app.student_id,
            kind=NotificationKind.admitted,
            payload=self._payload(app)
        )]

        competing = [
            a for a in self.repository.list_applications(
                ApplicationFilter(student_id=app.student_id, statuses=[ApplicationStatus.admitted])
            )
            if a.id != app.id
        ]
        if competing:
            notes.append(Notification(
                user_id=app.student_id,
                kind=NotificationKind.multiple_admissions,
                payload={
                    "admissions": [app.id] + [a.id for a in competing],
                    "choose_within_days": CHOICE_WINDOW_DAYS,
                }
            ))
        return notes

    def _submission_notifications(self, app: Application) -> List[Notification]:
        if app.status == ApplicationStatus.admitted:
            return self.admission_notifications(app)

        if app.status == ApplicationStatus.waiting:
            queue = [a.id for a in self.waitlist(app.target_id)]
            position = queue.index(app.id) + 1 if app.id in queue else len(queue)
            return [Notification(
                user_id=app.student_id,
                kind=NotificationKind.waitlisted,
                payload=self._payload(app, position=position)
            )]

        return [Notification(
            user_id=app.student_id,
            kind=NotificationKind.application_received,
            payload=self._payload(app)
        )]

    # ============================================================
    # PROMOTION PLANNING
    # ============================================================

    def plan_promotion(
        self,
        target_id: str,
        capacity: int,
        vacated: int = 0,
        skip_ids: Iterable[str] = ()
    ) -> Optional[Tuple[Application, StatusChange]]:
        """
        Pick the earliest waiting application to admit, if a seat is free.

        `vacated` counts seats released by changes in the same batch that
        are not committed yet; `skip_ids` excludes entries already chosen.
        """
        free = capacity - self.held_seats(target_id) + vacated
        if free <= 0:
            return None

        skip = set(skip_ids)
        for app in self.waitlist(target_id):
            if app.id in skip:
                continue
            change = StatusChange(
                application_id=app.id,
                expected_status=ApplicationStatus.waiting,
                new_status=ApplicationStatus.admitted,
                reason="promoted from waiting list"
            )
            return app, change
        return None

    # ============================================================
    # SUBMIT
    # ============================================================

    def submit(
        self,
        candidate: Candidate,
        target: Target,
        requirement: Optional[Requirement] = None,
        priority: int = 0
    ) -> Decision:
        """
        Decide a new application.

        Returns a Decision whose outcome is pending, admitted or waiting
        on success; rejected (ineligible) or a typed error otherwise.
        """
        requirement = requirement or target.requirement

        eligible, reasons = self.checker.is_eligible(candidate, requirement)
        if not eligible:
            logger.info(f"Student {candidate.student_id} ineligible for {target.target_id}: {reasons}")
            return Decision.failure(
                IneligibleCandidate("Requirements not met", reasons),
                outcome=Outcome.rejected
            )

        return self.run_atomic(lambda: self._submit_once(candidate, target, priority))

    def submit_for(self, student_id: str, target_id: str, priority: int = 0) -> Decision:
        """submit() with candidate and target fetched from the repository."""
        candidate = self.repository.fetch_candidate(student_id)
        if candidate is None:
            return Decision.failure(CandidateNotFound(f"Student {student_id} not found"))

        target = self.repository.fetch_target(target_id)
        if target is None:
            return Decision.failure(TargetNotFound(f"Target {target_id} not found"))

        return self.submit(candidate, target, target.requirement, priority)

    def _submit_once(self, candidate: Candidate, target: Target, priority: int) -> Decision:
        student_id = candidate.student_id
        self.ledger.check(student_id, target.target_id, target.institution_id)

        now = self.clock()
        if self.held_seats(target.target_id) < target.capacity:
            status = ApplicationStatus.admitted if self.auto_admit(target) else ApplicationStatus.pending
            capacity_guard = seat_guard(target.target_id, target.capacity)
        else:
            status = ApplicationStatus.waiting
            # Only waitlist while the target is really full
            capacity_guard = CountGuard(
                scope=seat_scope(target.target_id),
                min_count=target.capacity,
                error=ErrorKind.capacity_race_lost
            )

        app = Application(
            student_id=student_id,
            target_id=target.target_id,
            target_type=target.target_type,
            institution_id=target.institution_id,
            status=status,
            priority=priority,
            created_at=now,
            updated_at=now,
            history=[StatusEvent(status=status, at=now, reason="submitted")]
        )
        batch = TransitionBatch(
            at=now,
            creates=[app],
            guards=[capacity_guard] + self.ledger.guards(
                student_id, target.target_id, target.institution_id, status
            )
        )
        committed = self.repository.atomic_transition(batch)[0]

        logger.info(
            f"Application {committed.id}: student {student_id} -> {target.target_id} "
            f"({committed.status.value})"
        )
        return Decision(
            outcome=Outcome(committed.status.value),
            application=committed,
            notifications=self._submission_notifications(committed)
        )

    # ============================================================
    # PROMOTE
    # ============================================================

    def promote_next(self, target_id: str) -> Decision:
        """
        Admit the earliest waiting application for `target_id` if a seat is
        free. No-op (ok, outcome noop) when the waitlist is empty or the
        target is full, so repeated calls never over-promote.
        """
        return self.run_atomic(lambda: self._promote_once(target_id))

    def _promote_once(self, target_id: str) -> Decision:
        capacity = self.capacity_of(target_id)
        planned = self.plan_promotion(target_id, capacity)
        if planned is None:
            logger.debug(f"No promotion for {target_id}")
            return Decision(outcome=Outcome.noop)

        _, change = planned
        now = self.clock()
        committed = self.repository.atomic_transition(TransitionBatch(
            at=now,
            changes=[change],
            guards=[seat_guard(target_id, capacity)]
        ))[0]

        logger.info(f"Promoted application {committed.id} from waiting list of {target_id}")
        return Decision(
            outcome=Outcome.admitted,
            application=committed,
            notifications=self.admission_notifications(committed)
        )

    # ============================================================
    # INSTITUTION DECISIONS / WITHDRAWAL
    # ============================================================

    def decide(
        self,
        application_id: str,
        status: ApplicationStatus,
        institution_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Decision:
        """
        Institution review: pending -> admitted | rejected, waiting -> rejected.
        Rejecting a pending application frees its seat for the waitlist in
        the same transaction.
        """
        return self.run_atomic(lambda: self._decide_once(application_id, status, institution_id, reason))

    def _decide_once(
        self,
        application_id: str,
        status: ApplicationStatus,
        institution_id: Optional[str],
        reason: Optional[str]
    ) -> Decision:
        app = self._load(application_id)
        if institution_id is not None and app.institution_id != institution_id:
            raise ApplicationNotFound("Application not found")

        if status not in (ApplicationStatus.admitted, ApplicationStatus.rejected):
            raise InvalidTransition(f"Institutions cannot set status '{status.value}'")
        if app.status == ApplicationStatus.admitted:
            raise InvalidTransition("Admitted applications are released only by the student's choice")
        if app.status == ApplicationStatus.waiting and status == ApplicationStatus.admitted:
            raise InvalidTransition("Waiting applications are admitted in arrival order as seats free up")
        if not can_transition(app.status, status):
            raise InvalidTransition(f"Cannot move a {app.status.value} application to {status.value}")

        changes = [StatusChange(
            application_id=app.id,
            expected_status=app.status,
            new_status=status,
            reason=reason
        )]
        guards: List[CountGuard] = []

        if app.status == ApplicationStatus.pending and status == ApplicationStatus.rejected:
            guards = self._release_seat(app.target_id, changes)

        return self._commit_changes(changes, guards)

    def withdraw(self, student_id: str, application_id: str) -> Decision:
        """Student withdraws a pending application; its seat goes to the waitlist."""
        return self.run_atomic(lambda: self._withdraw_once(student_id, application_id))

    def _withdraw_once(self, student_id: str, application_id: str) -> Decision:
        app = self._load(application_id)
        if app.student_id != student_id:
            raise ApplicationNotFound("Application not found")
        if not can_transition(app.status, ApplicationStatus.withdrawn):
            raise InvalidTransition(f"Cannot withdraw a {app.status.value} application")

        changes = [StatusChange(
            application_id=app.id,
            expected_status=app.status,
            new_status=ApplicationStatus.withdrawn,
            reason="withdrawn by student"
        )]
        guards = self._release_seat(app.target_id, changes)

        return self._commit_changes(changes, guards)

    def _release_seat(self, target_id: str, changes: List[StatusChange]) -> List[CountGuard]:
        """Plan the promotion for one freed seat; returns the guards it needs."""
        capacity = self.capacity_of(target_id)
        held_before = self.held_seats(target_id)
        planned = self.plan_promotion(target_id, capacity, vacated=1)
        if planned is not None:
            changes.append(planned[1])
        return release_guards(target_id, capacity, held_before, 1, 1 if planned else 0)

    def _commit_changes(self, changes: List[StatusChange], guards: List[CountGuard]) -> Decision:
        """Commit a primary change plus any promotions; build the Decision."""
        now = self.clock()
        committed = self.repository.atomic_transition(
            TransitionBatch(at=now, changes=changes, guards=guards)
        )
        primary, promoted = committed[0], committed[1:]

        notifications: List[Notification] = []
        if primary.status == ApplicationStatus.admitted:
            notifications.extend(self.admission_notifications(primary))
        elif primary.status == ApplicationStatus.rejected:
            notifications.append(Notification(
                user_id=primary.student_id,
                kind=NotificationKind.rejected,
                payload=self._payload(primary, reason=primary.reason)
            ))
        for app in promoted:
            logger.info(f"Promoted application {app.id} from waiting list of {app.target_id}")
            notifications.extend(self.admission_notifications(app))

        logger.info(f"Application {primary.id} is now {primary.status.value}")
        return Decision(
            outcome=Outcome(primary.status.value),
            application=primary,
            affected=promoted,
            notifications=notifications
        )


def get_allocation_engine(repository: Repository) -> AllocationEngine:
    """Get allocation engine instance."""
    return AllocationEngine(repository)
