"""
Requirement Checker - hard eligibility gate.

Independent of the score: an ineligible candidate is never admitted or
waitlisted, however well they score. All failed requirements are reported
so the student sees every reason at once.
"""

from typing import Any, List, Optional, Tuple

from placement_engine.schemas.schemas import Candidate, Requirement
from placement_engine.services.scoring_service import matched_items


def _numeric(grade: Any) -> Optional[float]:
    try:
        return float(grade)
    except (TypeError, ValueError):
        return None


class RequirementChecker:
    """Pure function object: (candidate, requirement) -> (eligible, reasons)."""

    def is_eligible(self, candidate: Candidate, requirement: Requirement) -> Tuple[bool, List[str]]:
        reasons: List[str] = []

        # Minimum GPA against the best GPA on record
        if requirement.min_gpa is not None:
            gpa = candidate.best_gpa
            if gpa is None or gpa < requirement.min_gpa:
                shown = "none" if gpa is None else f"{gpa:g}"
                reasons.append(
                    f"Minimum GPA requirement not met (required: {requirement.min_gpa:g}, have: {shown})"
                )

        # Required subjects must appear in at least one academic record
        if requirement.required_subjects:
            grades = candidate.subject_grades()
            missing = [s for s in requirement.required_subjects if s.strip().lower() not in grades]
            if missing:
                reasons.append(f"Missing required subjects: {', '.join(missing)}")

            if requirement.min_subject_grade is not None:
                low = []
                for subject in requirement.required_subjects:
                    numeric = [
                        g for g in (_numeric(x) for x in grades.get(subject.strip().lower(), []))
                        if g is not None
                    ]
                    # Non-numeric grades cannot be compared and do not fail the gate
                    if numeric and max(numeric) < requirement.min_subject_grade:
                        low.append(subject)
                if low:
                    reasons.append(
                        f"Grade below {requirement.min_subject_grade:g} in: {', '.join(low)}"
                    )

        # Required skills must each be matched by some candidate skill
        if requirement.required_skills:
            wanted = [s for s in requirement.required_skills if s and s.strip()]
            have = set(matched_items(candidate.skills, wanted))
            missing = [s for s in wanted if s not in have]
            if missing:
                reasons.append(f"Missing required skills: {', '.join(missing)}")

        return (not reasons, reasons)


def get_requirement_checker() -> RequirementChecker:
    return RequirementChecker()
