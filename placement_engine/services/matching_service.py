"""
Matching Service

PURPOSE:
Rank candidates for a course or job, and find the postings a student fits
well enough to be told about.

HOW IT WORKS:
1. RequirementChecker gate (ineligible students are never ranked)
2. ScoreCalculator breakdown for each (candidate, posting) pair
3. Keep pairs at or above the configured threshold, best first
4. Attach a human-readable reason; for student-side matches emit a
   job_recommendation notification for the caller to deliver

THRESHOLDS (Settings):
- candidate_match_threshold (0.7): shortlist cut-off for a posting
- notify_match_threshold (0.8): "new job that matches you" cut-off
"""

import logging
from typing import Iterable, List, Optional, Tuple

from placement_engine.core.config import get_settings, Settings
from placement_engine.schemas.schemas import (
    Candidate,
    MatchResult,
    Notification,
    NotificationKind,
    ScoreBreakdown,
    Target,
    TargetType,
)
from placement_engine.services.requirement_service import RequirementChecker
from placement_engine.services.scoring_service import (
    ACADEMIC,
    CERTIFICATES,
    COURSE_RELEVANCE,
    EXPERIENCE,
    SKILLS,
    ScoreCalculator,
)

logger = logging.getLogger(__name__)


def match_reason(breakdown: ScoreBreakdown, target_type: TargetType = TargetType.job) -> str:
    """Generate human-readable match reason."""
    reasons = []

    score_pct = int(round(breakdown.total * 100))
    reasons.append(f"Overall match: {score_pct}%")

    main = breakdown.get(SKILLS if target_type == TargetType.job else COURSE_RELEVANCE)
    label = "skill" if target_type == TargetType.job else "course"
    if main is not None and main.applicable:
        pct = int(round(main.score * 100))
        if pct >= 80:
            reasons.append(f"Excellent {label} match ({pct}%)")
        elif pct >= 50:
            reasons.append(f"Good {label} match ({pct}%)")
        else:
            reasons.append(f"Partial {label} match ({pct}%)")

    academic = breakdown.get(ACADEMIC)
    if academic is not None and academic.applicable and academic.score >= 0.5:
        reasons.append("Academic requirements met")

    experience = breakdown.get(EXPERIENCE)
    if experience is not None and experience.applicable:
        if experience.score >= 1.0:
            reasons.append("Experience requirements met")
        else:
            reasons.append("Experience slightly below requirement")

    certificates = breakdown.get(CERTIFICATES)
    if certificates is not None and certificates.applicable and certificates.score >= 1.0:
        reasons.append("All certificates held")

    return ". ".join(reasons) + "."


class MatchingService:
    """
    Ranks candidates and postings against each other.

    Stateless apart from configuration; safe to share.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        calculator: Optional[ScoreCalculator] = None,
        checker: Optional[RequirementChecker] = None
    ):
        self.settings = settings or get_settings()
        self.calculator = calculator or ScoreCalculator(self.settings)
        self.checker = checker or RequirementChecker()

    def match(self, candidate: Candidate, target: Target) -> MatchResult:
        """Score one pair, including the eligibility verdict."""
        eligible, reasons = self.checker.is_eligible(candidate, target.requirement)
        breakdown = self.calculator.breakdown(candidate, target.requirement, target.target_type)
        return MatchResult(
            student_id=candidate.student_id,
            target_id=target.target_id,
            score=round(breakdown.total, 4),
            eligible=eligible,
            reasons=reasons,
            match_reason=match_reason(breakdown, target.target_type),
            breakdown=breakdown
        )

    def rank_candidates(
        self,
        target: Target,
        candidates: Iterable[Candidate],
        min_score: Optional[float] = None,
        top_n: Optional[int] = None
    ) -> List[MatchResult]:
        """
        Eligible candidates scoring at least `min_score`, best first.

        Args:
            target: course or job being filled
            candidates: student profiles to consider
            min_score: defaults to Settings.candidate_match_threshold
            top_n: keep only the best N (all if None)
        """
        threshold = self.settings.candidate_match_threshold if min_score is None else min_score

        results = []
        for candidate in candidates:
            result = self.match(candidate, target)
            if result.eligible and result.score >= threshold:
                results.append(result)

        # Stable on ties: earlier candidates stay first
        results.sort(key=lambda r: r.score, reverse=True)
        logger.info(f"{len(results)} candidate(s) matched {target.target_id} at >= {threshold}")
        return results[:top_n] if top_n is not None else results

    def find_matching_targets(
        self,
        candidate: Candidate,
        targets: Iterable[Target],
        min_score: Optional[float] = None
    ) -> Tuple[List[MatchResult], List[Notification]]:
        """
        Postings the candidate fits at or above the notification threshold,
        plus one job_recommendation notification per match.
        """
        threshold = self.settings.notify_match_threshold if min_score is None else min_score

        found: List[Tuple[MatchResult, Target]] = []
        for target in targets:
            result = self.match(candidate, target)
            if result.eligible and result.score >= threshold:
                found.append((result, target))

        found.sort(key=lambda pair: pair[0].score, reverse=True)
        notifications = [
            Notification(
                user_id=candidate.student_id,
                kind=NotificationKind.job_recommendation,
                payload={
                    "target_id": target.target_id,
                    "target_type": target.target_type.value,
                    "institution_id": target.institution_id,
                    "title": target.title,
                    "match_score": result.score,
                    "reason": result.match_reason,
                }
            )
            for result, target in found
        ]
        return [result for result, _ in found], notifications


def get_matching_service() -> MatchingService:
    """Get matching service instance."""
    return MatchingService()
