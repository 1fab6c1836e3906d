"""
Schemas module - engine inputs, records and decisions.

- Inputs: Candidate, Requirement, Target
- Records: Application (status + history)
- Outputs: Decision, Notification, MatchResult
"""
from placement_engine.schemas.schemas import (
    Application,
    ApplicationStatus,
    Candidate,
    Decision,
    MatchResult,
    Notification,
    NotificationKind,
    Outcome,
    Requirement,
    Target,
    TargetType,
)

__all__ = [
    "Application",
    "ApplicationStatus",
    "Candidate",
    "Decision",
    "MatchResult",
    "Notification",
    "NotificationKind",
    "Outcome",
    "Requirement",
    "Target",
    "TargetType",
]
