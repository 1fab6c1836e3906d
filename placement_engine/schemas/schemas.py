"""
Pydantic Schemas - engine inputs, records and decisions.

All engine data structures in one file for simplicity:
- Candidate / Requirement / Target: read-only inputs
- Application: the only mutable record (status + audit history)
- ApplicationFilter / StatusChange / CountGuard / TransitionBatch:
  the atomic-transition contract with the persistence collaborator
- Notification / Decision / MatchResult: engine outputs
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime
from enum import Enum
from uuid import uuid4

from placement_engine.core.errors import AllocationError, ErrorKind


# ============================================================
# ENUMS
# ============================================================

class TargetType(str, Enum):
    course = "course"
    job = "job"


class ApplicationStatus(str, Enum):
    pending = "pending"
    waiting = "waiting"
    admitted = "admitted"
    rejected = "rejected"
    withdrawn = "withdrawn"


class NotificationKind(str, Enum):
    application_received = "application_received"
    waitlisted = "waitlisted"
    admitted = "admitted"
    rejected = "rejected"
    withdrawn = "withdrawn"
    superseded = "superseded"
    multiple_admissions = "multiple_admissions"
    job_recommendation = "job_recommendation"


class Outcome(str, Enum):
    pending = "pending"
    waiting = "waiting"
    admitted = "admitted"
    rejected = "rejected"
    withdrawn = "withdrawn"
    confirmed = "confirmed"
    noop = "noop"


TERMINAL_STATUSES = frozenset({ApplicationStatus.rejected, ApplicationStatus.withdrawn})

# Applications occupying a seat of their target
SEAT_HOLDING_STATUSES = frozenset({ApplicationStatus.pending, ApplicationStatus.admitted})

ALLOWED_TRANSITIONS = {
    ApplicationStatus.pending: frozenset({
        ApplicationStatus.admitted, ApplicationStatus.rejected, ApplicationStatus.withdrawn
    }),
    ApplicationStatus.waiting: frozenset({ApplicationStatus.admitted, ApplicationStatus.rejected}),
    ApplicationStatus.admitted: frozenset({ApplicationStatus.rejected}),
    ApplicationStatus.rejected: frozenset(),
    ApplicationStatus.withdrawn: frozenset(),
}


def can_transition(current: ApplicationStatus, new: ApplicationStatus) -> bool:
    """True if `current -> new` is a legal status transition."""
    return new in ALLOWED_TRANSITIONS[current]


# ============================================================
# CANDIDATE (student profile, read-only)
# ============================================================

class AcademicRecord(BaseModel):
    institution: str = ""
    course: str = ""
    subjects: Dict[str, Any] = {}
    gpa: Optional[float] = Field(None, ge=0)


class WorkExperience(BaseModel):
    description: str = ""
    duration_months: float = Field(0, ge=0)


class Candidate(BaseModel):
    """Student profile as the engine sees it. Most recent record first."""
    student_id: str
    academic_records: List[AcademicRecord] = []
    skills: List[str] = []
    certificates: List[str] = []
    work_experience: List[WorkExperience] = []

    @property
    def best_gpa(self) -> Optional[float]:
        """Highest GPA across academic records, None when no record has one."""
        gpas = [r.gpa for r in self.academic_records if r.gpa is not None]
        return max(gpas) if gpas else None

    @property
    def total_experience_months(self) -> float:
        return sum(exp.duration_months for exp in self.work_experience)

    @property
    def latest_course(self) -> Optional[str]:
        if not self.academic_records:
            return None
        return self.academic_records[0].course or None

    def subject_grades(self) -> Dict[str, List[Any]]:
        """Lower-cased subject name -> grades seen across all records."""
        grades: Dict[str, List[Any]] = {}
        for record in self.academic_records:
            for subject, grade in record.subjects.items():
                grades.setdefault(subject.strip().lower(), []).append(grade)
        return grades


# ============================================================
# REQUIREMENT / TARGET (owned by course or job poster)
# ============================================================

class Requirement(BaseModel):
    """
    Hard and soft requirements of a course or job.

    For scored criteria, None means the criterion is absent from the
    posting (its weight is redistributed); an empty list means it is
    present but lists nothing (neutral score).
    """
    min_gpa: Optional[float] = Field(None, ge=0)
    required_subjects: List[str] = []
    min_subject_grade: Optional[float] = None
    required_skills: Optional[List[str]] = None
    required_certificates: Optional[List[str]] = None
    min_experience_months: Optional[float] = Field(None, ge=0)
    required_courses: Optional[List[str]] = None


class Target(BaseModel):
    target_id: str
    target_type: TargetType = TargetType.course
    institution_id: str
    capacity: int = Field(..., ge=0)
    requirement: Requirement = Field(default_factory=Requirement)
    auto_admit: Optional[bool] = None  # None -> settings default for the type
    title: Optional[str] = None


# ============================================================
# APPLICATION
# ============================================================

class StatusEvent(BaseModel):
    status: ApplicationStatus
    at: datetime
    reason: Optional[str] = None


class Application(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    student_id: str
    target_id: str
    target_type: TargetType = TargetType.course
    institution_id: str
    status: ApplicationStatus
    priority: int = 0
    confirmed: bool = False  # student confirmed this admission as final choice
    reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    seq: Optional[int] = None  # insertion sequence, assigned by the repository
    history: List[StatusEvent] = []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def holds_seat(self) -> bool:
        return self.status in SEAT_HOLDING_STATUSES

    def waitlist_key(self) -> Tuple[datetime, int]:
        """FIFO order: creation time, then insertion sequence."""
        return (self.created_at, self.seq if self.seq is not None else 0)


# ============================================================
# ATOMIC TRANSITION CONTRACT
# ============================================================

class ApplicationFilter(BaseModel):
    """Predicate for list_applications / count guards. None = any."""
    student_id: Optional[str] = None
    target_id: Optional[str] = None
    institution_id: Optional[str] = None
    statuses: Optional[List[ApplicationStatus]] = None
    confirmed: Optional[bool] = None

    def matches(self, app: Application) -> bool:
        if self.confirmed is not None and app.confirmed != self.confirmed:
            return False
        if self.student_id is not None and app.student_id != self.student_id:
            return False
        if self.target_id is not None and app.target_id != self.target_id:
            return False
        if self.institution_id is not None and app.institution_id != self.institution_id:
            return False
        if self.statuses is not None and app.status not in self.statuses:
            return False
        return True


class StatusChange(BaseModel):
    """Compare-and-set on one application's status."""
    application_id: str
    expected_status: ApplicationStatus
    new_status: ApplicationStatus
    reason: Optional[str] = None
    confirm: bool = False

    @field_validator("new_status")
    @classmethod
    def _legal(cls, v, info):
        expected = info.data.get("expected_status")
        if expected is not None and v != expected and not can_transition(expected, v):
            raise ValueError(f"illegal transition {expected.value} -> {v.value}")
        return v


class CountGuard(BaseModel):
    """
    Bound on the number of applications matching `scope`, checked against
    the state the batch would produce. A failed guard aborts the batch.
    """
    scope: ApplicationFilter
    min_count: Optional[int] = None
    max_count: Optional[int] = None
    error: ErrorKind = ErrorKind.transaction_aborted

    def check(self, count: int) -> bool:
        if self.min_count is not None and count < self.min_count:
            return False
        if self.max_count is not None and count > self.max_count:
            return False
        return True

    @property
    def lock_key(self) -> str:
        """Serialisation scope: writers sharing a key conflict in the store."""
        if self.scope.student_id is not None:
            return f"student:{self.scope.student_id}"
        if self.scope.target_id is not None:
            return f"target:{self.scope.target_id}"
        return "global"


class TransitionBatch(BaseModel):
    """All-or-nothing unit handed to Repository.atomic_transition."""
    at: datetime
    creates: List[Application] = []
    changes: List[StatusChange] = []
    guards: List[CountGuard] = []

    def is_empty(self) -> bool:
        return not self.creates and not self.changes


# ============================================================
# OUTPUTS
# ============================================================

class Notification(BaseModel):
    """Side-effect request; executed by the caller after commit."""
    user_id: str
    kind: NotificationKind
    payload: Dict[str, Any] = {}


class Decision(BaseModel):
    ok: bool = True
    outcome: Outcome
    application: Optional[Application] = None
    affected: List[Application] = []  # other records changed by the same batch
    error: Optional[ErrorKind] = None
    reasons: List[str] = []
    notifications: List[Notification] = []
    attempts: int = 1

    @classmethod
    def failure(
        cls,
        error: AllocationError,
        outcome: Outcome = Outcome.noop,
        attempts: int = 1
    ) -> "Decision":
        return cls(
            ok=False,
            outcome=outcome,
            error=error.kind,
            reasons=error.reasons or [error.message],
            attempts=attempts
        )


class CriterionScore(BaseModel):
    criterion: str
    score: float = Field(ge=0.0, le=1.0)
    weight: float = Field(ge=0.0, le=1.0)  # effective weight after redistribution
    applicable: bool = True


class ScoreBreakdown(BaseModel):
    total: float = Field(ge=0.0, le=1.0)
    criteria: List[CriterionScore] = []

    def get(self, criterion: str) -> Optional[CriterionScore]:
        for c in self.criteria:
            if c.criterion == criterion:
                return c
        return None


class MatchResult(BaseModel):
    student_id: str
    target_id: str
    score: float
    eligible: bool
    reasons: List[str] = []
    match_reason: str = ""
    breakdown: Optional[ScoreBreakdown] = None
