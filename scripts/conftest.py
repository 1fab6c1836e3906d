"""Shared fixtures: settings without backoff, in-memory store, fixed clock, profiles."""

from datetime import datetime, timedelta, timezone

import pytest

from placement_engine.core.config import Settings
from placement_engine.db.repository import InMemoryRepository
from placement_engine.schemas.schemas import (
    AcademicRecord,
    Candidate,
    Requirement,
    Target,
    TargetType,
)
from placement_engine.services.allocation_service import AllocationEngine
from placement_engine.services.arbiter_service import AdmissionArbiter


class StepClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


def make_candidate(student_id: str, gpa: float = 3.5, skills=(), course: str = "Computer Science") -> Candidate:
    return Candidate(
        student_id=student_id,
        academic_records=[AcademicRecord(
            institution="State University",
            course=course,
            subjects={"mathematics": 85, "physics": 78},
            gpa=gpa
        )],
        skills=list(skills),
    )


def make_target(
    target_id: str,
    capacity: int = 1,
    institution_id: str = "inst-1",
    target_type: TargetType = TargetType.course,
    requirement: Requirement = None,
    auto_admit=None
) -> Target:
    return Target(
        target_id=target_id,
        target_type=target_type,
        institution_id=institution_id,
        capacity=capacity,
        requirement=requirement or Requirement(),
        auto_admit=auto_admit,
        title=target_id.upper()
    )


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        transaction_retry_attempts=3,
        retry_backoff_seconds=0,
        retry_backoff_max_seconds=0,
    )


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def engine(repo, settings, clock) -> AllocationEngine:
    return AllocationEngine(repo, settings=settings, clock=clock)


@pytest.fixture()
def arbiter(engine) -> AdmissionArbiter:
    return AdmissionArbiter(engine)
