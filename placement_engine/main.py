"""
Placement Engine - Main Application

Wires the engine to its collaborators:
- Repository (MongoDB by default, any Repository for embedding/tests)
- AllocationEngine + AdmissionArbiter for seat decisions
- MatchingService for rankings and recommendations
- Notifier that receives the notifications of every committed decision

Usage:
    app = create_app()
    decision = app.submit("student-1", "course-42")
"""

import logging
from typing import Iterable, List, Optional, Tuple

from pymongo.errors import PyMongoError

from placement_engine.core.config import get_settings, Settings
from placement_engine.core.log_config import configure_logging
from placement_engine.db.mongodb import init_mongo_indexes, test_mongo_connection
from placement_engine.db.repository import Repository
from placement_engine.schemas.schemas import (
    ApplicationStatus,
    Candidate,
    Decision,
    MatchResult,
    Notification,
    Target,
)
from placement_engine.services.allocation_service import AllocationEngine
from placement_engine.services.arbiter_service import AdmissionArbiter
from placement_engine.services.matching_service import MatchingService
from placement_engine.services.notification_service import (
    Notifier,
    dispatch_notifications,
    get_notifier,
)

logger = logging.getLogger(__name__)


class PlacementApp:
    """
    Facade over the engine services. Every operation commits first and
    only then hands its notifications to the notifier.
    """

    def __init__(
        self,
        repository: Repository,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        engine: Optional[AllocationEngine] = None
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.notifier = notifier or get_notifier()
        self.engine = engine or AllocationEngine(repository, self.settings)
        self.arbiter = AdmissionArbiter(self.engine)
        self.matcher = MatchingService(self.settings)

    def _deliver(self, decision: Decision) -> Decision:
        if decision.notifications:
            dispatch_notifications(decision.notifications, self.notifier)
        return decision

    # ---------- students ----------

    def submit(self, student_id: str, target_id: str, priority: int = 0) -> Decision:
        return self._deliver(self.engine.submit_for(student_id, target_id, priority))

    def withdraw(self, student_id: str, application_id: str) -> Decision:
        return self._deliver(self.engine.withdraw(student_id, application_id))

    def confirm_choice(self, student_id: str, application_id: str) -> Decision:
        return self._deliver(self.arbiter.confirm_choice(student_id, application_id))

    # ---------- institutions ----------

    def decide(
        self,
        application_id: str,
        status: ApplicationStatus,
        institution_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Decision:
        return self._deliver(self.engine.decide(application_id, status, institution_id, reason))

    def promote_next(self, target_id: str) -> Decision:
        return self._deliver(self.engine.promote_next(target_id))

    # ---------- matching ----------

    def rank_candidates(self, target: Target, candidates: Iterable[Candidate]) -> List[MatchResult]:
        return self.matcher.rank_candidates(target, candidates)

    def recommend(self, candidate: Candidate, targets: Iterable[Target]) -> Tuple[List[MatchResult], List[Notification]]:
        """Matching postings for a student; recommendations are delivered."""
        matches, notifications = self.matcher.find_matching_targets(candidate, targets)
        dispatch_notifications(notifications, self.notifier)
        return matches, notifications


def create_app(
    repository: Optional[Repository] = None,
    settings: Optional[Settings] = None,
    notifier: Optional[Notifier] = None
) -> PlacementApp:
    """
    Build the application. Without a repository the configured MongoDB is
    used and its indexes are created.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    if repository is None:
        from placement_engine.services.mongo_service import MongoRepository

        repository = MongoRepository()
        try:
            init_mongo_indexes(repository.db)
        except PyMongoError as e:
            logger.warning(f"MongoDB index initialization failed: {e}")

    return PlacementApp(repository, settings=settings, notifier=notifier)


def health_check() -> dict:
    """Detailed health check."""
    return {
        "status": "healthy",
        "mongodb": "connected" if test_mongo_connection() else "disconnected"
    }
