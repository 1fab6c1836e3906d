"""
Persistence collaborator interface.

The engine never talks to a database directly. It reads through a
Repository and writes exclusively through atomic_transition(), which
applies a TransitionBatch all-or-nothing:

- every StatusChange is a compare-and-set on the current status
- every CountGuard is checked against the state the batch would produce
- any failure raises TransactionAborted (CapacityRaceLost for seat
  guards) and leaves the store untouched

InMemoryRepository is the reference implementation used by the tests;
MongoRepository (services/mongo_service.py) is the pymongo adapter.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from placement_engine.core.errors import TransactionAborted, error_for
from placement_engine.schemas.schemas import (
    Application,
    ApplicationFilter,
    Candidate,
    Requirement,
    StatusChange,
    StatusEvent,
    Target,
    TransitionBatch,
)

logger = logging.getLogger(__name__)


def apply_status_change(app: Application, change: StatusChange, at: datetime) -> Application:
    """Return a copy of `app` with `change` applied and the event appended."""
    updated = app.model_copy(deep=True)
    if change.new_status != app.status:
        updated.status = change.new_status
        updated.reason = change.reason
        updated.history.append(StatusEvent(status=change.new_status, at=at, reason=change.reason))
    if change.confirm:
        updated.confirmed = True
    updated.updated_at = at
    return updated


class Repository(ABC):
    """Abstract persistence collaborator."""

    @abstractmethod
    def fetch_candidate(self, student_id: str) -> Optional[Candidate]:
        ...

    @abstractmethod
    def fetch_target(self, target_id: str) -> Optional[Target]:
        ...

    def fetch_requirement(self, target_id: str) -> Optional[Tuple[Requirement, int]]:
        """Requirement and seat capacity of a target."""
        target = self.fetch_target(target_id)
        if target is None:
            return None
        return target.requirement, target.capacity

    @abstractmethod
    def get_application(self, application_id: str) -> Optional[Application]:
        ...

    @abstractmethod
    def list_applications(self, scope: ApplicationFilter) -> List[Application]:
        """Applications matching `scope`, ordered by (created_at, seq)."""

    def count_applications(self, scope: ApplicationFilter) -> int:
        return len(self.list_applications(scope))

    @abstractmethod
    def atomic_transition(self, batch: TransitionBatch) -> List[Application]:
        """
        Apply `batch` all-or-nothing.

        Returns the created and changed applications as committed.
        Raises TransactionAborted (or CapacityRaceLost) without side effects.
        """


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory store.

    A single lock serialises commits, which gives the same isolation a
    serializable transaction would. Reads return copies, so callers can
    never mutate stored records.
    """

    def __init__(
        self,
        candidates: Iterable[Candidate] = (),
        targets: Iterable[Target] = ()
    ):
        self._lock = threading.RLock()
        self._candidates: Dict[str, Candidate] = {c.student_id: c for c in candidates}
        self._targets: Dict[str, Target] = {t.target_id: t for t in targets}
        self._applications: Dict[str, Application] = {}
        self._seq = itertools.count(1)
        self.commits = 0
        self.aborts = 0

    # ---------- setup helpers ----------

    def add_candidate(self, candidate: Candidate) -> None:
        with self._lock:
            self._candidates[candidate.student_id] = candidate

    def add_target(self, target: Target) -> None:
        with self._lock:
            self._targets[target.target_id] = target

    # ---------- reads ----------

    def fetch_candidate(self, student_id: str) -> Optional[Candidate]:
        with self._lock:
            candidate = self._candidates.get(student_id)
            return candidate.model_copy(deep=True) if candidate else None

    def fetch_target(self, target_id: str) -> Optional[Target]:
        with self._lock:
            target = self._targets.get(target_id)
            return target.model_copy(deep=True) if target else None

    def get_application(self, application_id: str) -> Optional[Application]:
        with self._lock:
            app = self._applications.get(application_id)
            return app.model_copy(deep=True) if app else None

    def list_applications(self, scope: ApplicationFilter) -> List[Application]:
        with self._lock:
            found = [a.model_copy(deep=True) for a in self._applications.values() if scope.matches(a)]
        found.sort(key=lambda a: a.waitlist_key())
        return found

    def count_applications(self, scope: ApplicationFilter) -> int:
        with self._lock:
            return sum(1 for a in self._applications.values() if scope.matches(a))

    # ---------- writes ----------

    def atomic_transition(self, batch: TransitionBatch) -> List[Application]:
        with self._lock:
            try:
                staged, committed = self._stage(batch)
            except TransactionAborted:
                self.aborts += 1
                raise
            self._applications = staged
            self.commits += 1
        return [a.model_copy(deep=True) for a in committed]

    def _stage(self, batch: TransitionBatch):
        staged = dict(self._applications)
        committed: List[Application] = []

        for app in batch.creates:
            if app.id in staged:
                raise TransactionAborted(f"Application {app.id} already exists")
            created = app.model_copy(deep=True)
            created.seq = next(self._seq)
            staged[created.id] = created
            committed.append(created)

        for change in batch.changes:
            current = staged.get(change.application_id)
            if current is None:
                raise TransactionAborted(f"Application {change.application_id} not found")
            if current.status != change.expected_status:
                raise TransactionAborted(
                    f"Application {current.id} is {current.status.value}, "
                    f"expected {change.expected_status.value}"
                )
            updated = apply_status_change(current, change, batch.at)
            staged[updated.id] = updated
            committed.append(updated)

        for guard in batch.guards:
            count = sum(1 for a in staged.values() if guard.scope.matches(a))
            if not guard.check(count):
                logger.debug(f"Guard {guard.lock_key} failed: count={count}")
                raise error_for(
                    guard.error,
                    f"Guard on {guard.lock_key} failed (count={count}, "
                    f"min={guard.min_count}, max={guard.max_count})"
                )

        return staged, committed
