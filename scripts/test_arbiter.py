"""
Admission Arbiter tests

Tests:
1. Choosing one admission rejects the others and promotes their waitlists
2. Invalid selections
3. Nothing changes when the transition cannot commit

Run: pytest scripts/test_arbiter.py
"""

import pytest

from conftest import make_candidate, make_target

from placement_engine.core.errors import ErrorKind, TransactionAborted
from placement_engine.db.repository import InMemoryRepository
from placement_engine.schemas.schemas import (
    ApplicationFilter,
    ApplicationStatus,
    NotificationKind,
    Outcome,
)
from placement_engine.services.allocation_service import AllocationEngine
from placement_engine.services.arbiter_service import SUPERSEDED_REASON, AdmissionArbiter


@pytest.fixture()
def two_admissions(engine, repo):
    """s1 admitted to X (inst-A) and Y (inst-B); s2 waiting for X."""
    course_x = make_target("X", capacity=1, institution_id="inst-A")
    course_y = make_target("Y", capacity=1, institution_id="inst-B")
    repo.add_target(course_x)
    repo.add_target(course_y)

    student = make_candidate("s1")
    app_x = engine.submit(student, course_x).application
    app_y = engine.submit(student, course_y).application
    waiting = engine.submit(make_candidate("s2"), course_x).application

    engine.decide(app_x.id, ApplicationStatus.admitted)
    second = engine.decide(app_y.id, ApplicationStatus.admitted)
    return app_x, app_y, waiting, second


def test_second_admission_asks_student_to_choose(two_admissions):
    _, app_y, _, second = two_admissions

    kinds = [n.kind for n in second.notifications]
    assert kinds == [NotificationKind.admitted, NotificationKind.multiple_admissions]
    assert app_y.id in second.notifications[1].payload["admissions"]


def test_confirm_choice_rejects_others_and_promotes(arbiter, repo, two_admissions):
    app_x, app_y, waiting, _ = two_admissions

    decision = arbiter.confirm_choice("s1", app_y.id)

    assert decision.ok
    assert decision.outcome == Outcome.confirmed
    assert decision.application.id == app_y.id
    assert decision.application.confirmed

    x_now = repo.get_application(app_x.id)
    assert x_now.status == ApplicationStatus.rejected
    assert x_now.reason == SUPERSEDED_REASON
    assert repo.get_application(app_y.id).status == ApplicationStatus.admitted
    assert repo.get_application(waiting.id).status == ApplicationStatus.admitted

    admitted = repo.list_applications(
        ApplicationFilter(student_id="s1", statuses=[ApplicationStatus.admitted])
    )
    assert [a.id for a in admitted] == [app_y.id]

    kinds = [n.kind for n in decision.notifications]
    assert NotificationKind.superseded in kinds
    assert NotificationKind.admitted in kinds
    assert {a.id for a in decision.affected} == {app_x.id, waiting.id}


def test_confirm_commits_one_batch(arbiter, repo, two_admissions):
    before = repo.commits
    arbiter.confirm_choice("s1", two_admissions[1].id)
    assert repo.commits == before + 1


def test_confirmed_student_may_apply_again(engine, arbiter, two_admissions):
    arbiter.confirm_choice("s1", two_admissions[1].id)

    decision = engine.submit(make_candidate("s1"), make_target("Z", institution_id="inst-C"))

    assert decision.ok


def test_confirm_single_admission_is_idempotent(engine, arbiter, repo):
    target = make_target("c1")
    repo.add_target(target)
    app = engine.submit(make_candidate("s1"), target).application
    engine.decide(app.id, ApplicationStatus.admitted)

    first = arbiter.confirm_choice("s1", app.id)
    again = arbiter.confirm_choice("s1", app.id)

    assert first.ok and again.ok
    assert again.affected == []
    assert repo.get_application(app.id).confirmed


def test_invalid_selections(engine, arbiter, repo):
    target = make_target("c1")
    repo.add_target(target)
    app = engine.submit(make_candidate("s1"), target).application

    assert arbiter.confirm_choice("s1", "missing").error == ErrorKind.invalid_selection
    # pending is not an admission yet
    assert arbiter.confirm_choice("s1", app.id).error == ErrorKind.invalid_selection

    engine.decide(app.id, ApplicationStatus.admitted)
    assert arbiter.confirm_choice("s2", app.id).error == ErrorKind.invalid_selection


class FailingRepository(InMemoryRepository):
    """Accepts setup writes, then aborts every transition."""

    failing = False

    def atomic_transition(self, batch):
        if self.failing:
            self.aborts += 1
            raise TransactionAborted("store unavailable")
        return super().atomic_transition(batch)


def test_failed_confirm_leaves_everything_unchanged(settings, clock):
    repo = FailingRepository()
    engine = AllocationEngine(repo, settings=settings, clock=clock)
    arbiter = AdmissionArbiter(engine)
    course_x = make_target("X", institution_id="inst-A")
    course_y = make_target("Y", institution_id="inst-B")
    repo.add_target(course_x)
    repo.add_target(course_y)
    app_x = engine.submit(make_candidate("s1"), course_x).application
    app_y = engine.submit(make_candidate("s1"), course_y).application
    engine.decide(app_x.id, ApplicationStatus.admitted)
    engine.decide(app_y.id, ApplicationStatus.admitted)

    repo.failing = True
    decision = arbiter.confirm_choice("s1", app_y.id)

    assert not decision.ok
    assert decision.error == ErrorKind.transaction_aborted
    assert decision.attempts == settings.transaction_retry_attempts
    assert repo.get_application(app_x.id).status == ApplicationStatus.admitted
    assert not repo.get_application(app_y.id).confirmed


def test_confirm_after_capacity_cut_releases_other_admission(arbiter, repo, two_admissions):
    app_x, app_y, waiting, _ = two_admissions
    repo.add_target(make_target("X", capacity=0, institution_id="inst-A"))

    decision = arbiter.confirm_choice("s1", app_y.id)

    assert decision.ok
    assert decision.attempts == 1
    assert repo.get_application(app_x.id).status == ApplicationStatus.rejected
    assert repo.get_application(waiting.id).status == ApplicationStatus.waiting
    admitted = repo.list_applications(
        ApplicationFilter(student_id="s1", statuses=[ApplicationStatus.admitted])
    )
    assert [a.id for a in admitted] == [app_y.id]
