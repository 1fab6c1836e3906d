"""
Matching Service tests

Tests:
1. Candidate ranking with threshold and eligibility gate
2. Student-side job recommendations and their notifications
3. Human-readable match reason

Run: pytest scripts/test_matching.py
"""

import pytest

from conftest import make_candidate, make_target

from placement_engine.schemas.schemas import NotificationKind, Requirement, TargetType
from placement_engine.services.matching_service import MatchingService, match_reason
from placement_engine.services.scoring_service import ScoreCalculator

JOB_REQUIREMENT = Requirement(min_gpa=3.0, required_skills=["python", "sql"])


@pytest.fixture()
def service(settings):
    return MatchingService(settings)


def _job(target_id="j1", requirement=JOB_REQUIREMENT):
    return make_target(target_id, target_type=TargetType.job, institution_id="acme", requirement=requirement)


def test_rank_candidates_orders_and_filters(service):
    strong = make_candidate("strong", gpa=4.0, skills=["Python", "SQL"])
    good = make_candidate("good", gpa=3.4, skills=["Python", "SQL"])
    weak_skills = make_candidate("partial", gpa=4.0, skills=["Python"])
    low_gpa = make_candidate("low", gpa=2.5, skills=["Python", "SQL"])

    ranked = service.rank_candidates(_job(), [good, weak_skills, low_gpa, strong])

    # partial lacks a required skill, low fails the GPA gate
    assert [r.student_id for r in ranked] == ["strong", "good"]
    assert ranked[0].score == pytest.approx(1.0)
    assert ranked[1].score == pytest.approx((0.4 * 0.7 + 0.2 * 1.0) / 0.6, abs=1e-4)


def test_rank_candidates_threshold_and_top_n(service):
    candidates = [make_candidate(f"s{i}", gpa=3.0 + i * 0.2, skills=["python", "sql"]) for i in range(5)]

    assert len(service.rank_candidates(_job(), candidates, min_score=0.0)) == 5
    assert [r.student_id for r in service.rank_candidates(_job(), candidates, min_score=0.0, top_n=2)] == \
        ["s4", "s3"]
    # default threshold 0.7: academic 0.5 at the minimum keeps s0 out
    assert "s0" not in {r.student_id for r in service.rank_candidates(_job(), candidates)}


def test_find_matching_targets_emits_recommendations(service):
    candidate = make_candidate("s1", gpa=3.8, skills=["Python", "SQL", "Docker"])
    close = _job("close")
    far = _job("far", Requirement(min_gpa=3.0, required_skills=["python", "rust", "go", "k8s"]))

    matches, notifications = service.find_matching_targets(candidate, [far, close])

    assert [m.target_id for m in matches] == ["close"]
    assert len(notifications) == 1
    note = notifications[0]
    assert note.user_id == "s1"
    assert note.kind == NotificationKind.job_recommendation
    assert note.payload["target_id"] == "close"
    assert note.payload["match_score"] >= 0.8


def test_match_reports_ineligibility_reasons(service):
    result = service.match(make_candidate("s1", gpa=2.0), _job())

    assert not result.eligible
    assert any("GPA" in r for r in result.reasons)


def test_match_reason_text(settings):
    calculator = ScoreCalculator(settings)
    breakdown = calculator.breakdown(
        make_candidate("s1", gpa=4.0, skills=["python"]), JOB_REQUIREMENT, TargetType.job
    )

    reason = match_reason(breakdown, TargetType.job)

    assert reason.startswith("Overall match: ")
    assert "Good skill match (50%)" in reason
    assert "Academic requirements met" in reason
    assert reason.endswith(".")
