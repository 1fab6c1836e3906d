"""
Score Calculator

PURPOSE:
Rank a student against the requirements of a course or job with a
weighted multi-criteria score in [0, 1].

HOW IT WORKS:
1. Score each criterion independently (academic, relevance or skills,
   experience, certificates)
2. Drop criteria the posting does not state and redistribute their weight
   proportionally over the remaining ones
3. Weighted sum of the sub-scores = overall score

WEIGHTS (fixed per target type, each set sums to 1.0):
- course: academic 0.4, course relevance 0.3, experience 0.2, certificates 0.1
- job:    academic 0.4, skills 0.2, experience 0.15, certificates 0.25

A criterion that is present but empty (e.g. `required_skills=[]`) scores a
neutral 0.5 instead of 1.0, so an absent requirement never inflates a
candidate.
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from placement_engine.core.config import get_settings, Settings
from placement_engine.schemas.schemas import (
    Candidate,
    CriterionScore,
    Requirement,
    ScoreBreakdown,
    TargetType,
)

logger = logging.getLogger(__name__)

ACADEMIC = "academic"
COURSE_RELEVANCE = "course_relevance"
SKILLS = "skills"
EXPERIENCE = "experience"
CERTIFICATES = "certificates"

COURSE_WEIGHTS = {ACADEMIC: 0.4, COURSE_RELEVANCE: 0.3, EXPERIENCE: 0.2, CERTIFICATES: 0.1}
JOB_WEIGHTS = {ACADEMIC: 0.4, SKILLS: 0.2, EXPERIENCE: 0.15, CERTIFICATES: 0.25}

NEUTRAL_SCORE = 0.5


# ============================================================
# SUB-SCORES
# None = criterion not applicable to this posting
# ============================================================

def academic_score(gpa: Optional[float], min_gpa: Optional[float], ceiling: float = 4.0) -> Optional[float]:
    """
    Linear academic score.

    Below the minimum: 0 .. 0.2 proportionally to gpa / min_gpa.
    At or above: 0.5 plus a linear bonus reaching 1.0 at the ceiling.

    Example: gpa 3.6, min 3.0, ceiling 4.0 -> 0.5 + 0.5 * 0.6 = 0.8
    """
    if min_gpa is None:
        return None

    gpa = gpa or 0.0
    if gpa < min_gpa:
        return 0.2 * (gpa / min_gpa)
    if ceiling <= min_gpa:
        return 1.0
    return min(1.0, 0.5 + 0.5 * ((gpa - min_gpa) / (ceiling - min_gpa)))


def _item_matches(have: str, wanted: str) -> bool:
    """Case-insensitive substring match in either direction."""
    have = have.strip().lower()
    wanted = wanted.strip().lower()
    if not have or not wanted:
        return False
    return wanted in have or have in wanted


def matched_items(candidate_items: List[str], required: List[str]) -> List[str]:
    """Required items the candidate covers."""
    return [req for req in required if any(_item_matches(item, req) for item in candidate_items)]


def item_match_score(candidate_items: List[str], required: Optional[List[str]]) -> Optional[float]:
    """Fraction of required items matched; empty requirement list is neutral."""
    if required is None:
        return None

    required = [r for r in required if r and r.strip()]
    if not required:
        return NEUTRAL_SCORE
    return len(matched_items(candidate_items, required)) / len(required)


def experience_score(total_months: float, required_months: Optional[float]) -> Optional[float]:
    """Accumulated / required months, capped at 1.0."""
    if required_months is None:
        return None
    if required_months <= 0:
        return 1.0
    return min(1.0, total_months / required_months)


def course_relevance_score(course: Optional[str], required_courses: Optional[List[str]]) -> Optional[float]:
    """
    How well the candidate's latest course matches the wanted courses.

    exact match 1.0, two or more shared significant words 0.7, else 0.3.
    """
    if required_courses is None:
        return None
    if not required_courses or not course:
        return NEUTRAL_SCORE

    course_lower = course.strip().lower()
    if any(course_lower == req.strip().lower() for req in required_courses):
        return 1.0

    # Partial match: shared keywords longer than 3 characters
    course_words = set(course_lower.split())
    for req in required_courses:
        req_words = set(req.lower().split())
        common = [w for w in course_words & req_words if len(w) > 3]
        if len(common) >= 2:
            return 0.7

    return 0.3


# ============================================================
# CALCULATOR
# ============================================================

class ScoreCalculator:
    """
    Pure scoring function over (candidate, requirement, target type).
    Holds no state beyond configuration.
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.gpa_ceiling = settings.gpa_ceiling

    @staticmethod
    def weights_for(target_type: TargetType) -> Dict[str, float]:
        return JOB_WEIGHTS if target_type == TargetType.job else COURSE_WEIGHTS

    def _sub_scores(
        self,
        candidate: Candidate,
        requirement: Requirement,
        target_type: TargetType
    ) -> Dict[str, Optional[float]]:
        scores = {
            ACADEMIC: academic_score(candidate.best_gpa, requirement.min_gpa, self.gpa_ceiling),
            EXPERIENCE: experience_score(
                candidate.total_experience_months, requirement.min_experience_months
            ),
            CERTIFICATES: item_match_score(candidate.certificates, requirement.required_certificates),
        }
        if target_type == TargetType.job:
            scores[SKILLS] = item_match_score(candidate.skills, requirement.required_skills)
        else:
            scores[COURSE_RELEVANCE] = course_relevance_score(
                candidate.latest_course, requirement.required_courses
            )
        return scores

    def breakdown(
        self,
        candidate: Candidate,
        requirement: Requirement,
        target_type: TargetType = TargetType.course
    ) -> ScoreBreakdown:
        """Overall score plus each criterion's score and effective weight."""
        weights = self.weights_for(target_type)
        sub_scores = self._sub_scores(candidate, requirement, target_type)

        names = list(weights)
        base = np.array([weights[n] for n in names], dtype=float)
        applicable = np.array([sub_scores[n] is not None for n in names])
        values = np.array([sub_scores[n] if sub_scores[n] is not None else 0.0 for n in names])

        applicable_weight = base[applicable].sum()
        if applicable_weight == 0:
            # Nothing stated in the posting: neutral overall
            effective = np.zeros_like(base)
            total = NEUTRAL_SCORE
        else:
            effective = np.where(applicable, base / applicable_weight, 0.0)
            total = float(np.clip(np.dot(effective, values), 0.0, 1.0))

        criteria = [
            CriterionScore(
                criterion=name,
                score=float(np.clip(values[i], 0.0, 1.0)),
                weight=float(effective[i]),
                applicable=bool(applicable[i])
            )
            for i, name in enumerate(names)
        ]
        logger.debug(f"Score for {candidate.student_id} ({target_type.value}): {total:.4f}")
        return ScoreBreakdown(total=total, criteria=criteria)

    def score(
        self,
        candidate: Candidate,
        requirement: Requirement,
        target_type: TargetType = TargetType.course
    ) -> float:
        """Normalized score in [0, 1]."""
        return self.breakdown(candidate, requirement, target_type).total


def get_score_calculator() -> ScoreCalculator:
    """Get score calculator instance."""
    return ScoreCalculator()
