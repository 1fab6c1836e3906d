"""
Application Ledger tests

Tests:
1. Duplicate, quota and conflicting-admission rules
2. Fixed reporting order when several rules are broken
3. Commit-time guards reject what check() would reject

Run: pytest scripts/test_ledger.py
"""

from datetime import datetime, timezone

import pytest

from placement_engine.core.errors import (
    ConflictingAdmission,
    DuplicateApplication,
    InstitutionQuotaExceeded,
    TransactionAborted,
)
from placement_engine.schemas.schemas import (
    Application,
    ApplicationFilter,
    ApplicationStatus,
    TransitionBatch,
)
from placement_engine.services.ledger_service import ApplicationLedger

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _seed(repo, student_id, target_id, institution_id, status, confirmed=False):
    app = Application(
        student_id=student_id,
        target_id=target_id,
        institution_id=institution_id,
        status=status,
        confirmed=confirmed,
        created_at=NOW,
        updated_at=NOW,
    )
    repo.atomic_transition(TransitionBatch(at=NOW, creates=[app]))
    return app


@pytest.fixture()
def ledger(repo, settings):
    return ApplicationLedger(repo, settings)


def test_clean_student_can_submit(ledger):
    assert ledger.can_submit("s1", "c1", "inst-1") == (True, None)


def test_duplicate_open_application(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.waiting)

    with pytest.raises(DuplicateApplication):
        ledger.check("s1", "c1", "inst-1")


def test_withdrawn_application_is_not_a_duplicate(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.withdrawn)

    ok, _ = ledger.can_submit("s1", "c1", "inst-1")
    assert ok


def test_quota_counts_rejected_but_not_withdrawn(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.rejected)
    _seed(repo, "s1", "c2", "inst-1", ApplicationStatus.withdrawn)
    assert ledger.can_submit("s1", "c3", "inst-1")[0]

    _seed(repo, "s1", "c4", "inst-1", ApplicationStatus.pending)
    ok, message = ledger.can_submit("s1", "c3", "inst-1")
    assert not ok
    assert message == "You can only apply to maximum 2 courses per institution"


def test_quota_is_per_institution(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.pending)
    _seed(repo, "s1", "c2", "inst-1", ApplicationStatus.pending)

    assert ledger.can_submit("s1", "c9", "inst-2")[0]


def test_unconfirmed_admission_blocks_new_applications(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.admitted)

    with pytest.raises(ConflictingAdmission):
        ledger.check("s1", "c7", "inst-2")


def test_confirmed_admission_does_not_block(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.admitted, confirmed=True)

    assert ledger.can_submit("s1", "c7", "inst-2")[0]


def test_duplicate_reported_before_quota_and_conflict(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.admitted)
    _seed(repo, "s1", "c2", "inst-1", ApplicationStatus.pending)

    assert isinstance(ledger.first_violation("s1", "c1", "inst-1"), DuplicateApplication)
    assert isinstance(ledger.first_violation("s1", "c3", "inst-1"), InstitutionQuotaExceeded)
    assert isinstance(ledger.first_violation("s1", "c3", "inst-2"), ConflictingAdmission)


def test_guards_abort_a_second_open_application(repo, ledger):
    _seed(repo, "s1", "c1", "inst-1", ApplicationStatus.pending)
    again = Application(
        student_id="s1", target_id="c1", institution_id="inst-1",
        status=ApplicationStatus.pending, created_at=NOW, updated_at=NOW,
    )

    with pytest.raises(TransactionAborted):
        repo.atomic_transition(TransitionBatch(
            at=NOW,
            creates=[again],
            guards=ledger.guards("s1", "c1", "inst-1", ApplicationStatus.pending)
        ))

    assert repo.count_applications(ApplicationFilter(student_id="s1")) == 1
    assert repo.aborts == 1
