"""
MongoDB Service - Repository implementation on MongoDB.

Collections used (see db/mongodb.py):
1. candidates    - student profiles, keyed by student_id
2. targets       - courses / jobs with capacity and requirement
3. applications  - application records, _id = Application.id
4. seat_locks    - serialisation tokens, one per student / target
5. counters      - insertion sequence for FIFO tie-breaking

HOW atomic_transition WORKS:
Everything runs in one multi-document transaction. Before reading, the
transaction bumps the token of every student/target its guards cover, so
two writers touching the same seat pool or the same student always
write-conflict and one of them aborts. Status changes are applied with the
expected status in the update filter; guards are counted inside the
transaction. Any store error becomes TransactionAborted and nothing is
written.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from placement_engine.core.errors import AllocationError, TransactionAborted, error_for
from placement_engine.db.mongodb import COLLECTIONS, get_collection, get_mongo_db
from placement_engine.db.repository import Repository, apply_status_change
from placement_engine.schemas.schemas import (
    Application,
    ApplicationFilter,
    Candidate,
    Target,
    TransitionBatch,
)

logger = logging.getLogger(__name__)

WAITLIST_SORT = [("created_at", ASCENDING), ("seq", ASCENDING)]


# ============================================================
# HELPERS: documents <-> models
# ============================================================

def _plain(value: Any) -> Any:
    """Enums to their values, recursively (BSON has no enum type)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """MongoDB document without its _id."""
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


def application_to_doc(app: Application) -> dict:
    doc = _plain(app.model_dump())
    doc["_id"] = doc.pop("id")
    return doc


def doc_to_application(doc: Optional[dict]) -> Optional[Application]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = doc.pop("_id")
    return Application.model_validate(doc)


def filter_to_query(scope: ApplicationFilter) -> Dict[str, Any]:
    """Translate an ApplicationFilter into a MongoDB query."""
    query: Dict[str, Any] = {}
    for field in ("student_id", "target_id", "institution_id", "confirmed"):
        value = getattr(scope, field)
        if value is not None:
            query[field] = value
    if scope.statuses is not None:
        query["status"] = {"$in": [s.value for s in scope.statuses]}
    return query


# ============================================================
# REPOSITORY
# ============================================================

class MongoRepository(Repository):
    """
    Repository backed by MongoDB multi-document transactions.

    Args:
        db: database to use (defaults to the configured one)
    """

    def __init__(self, db: Optional[Database] = None):
        self.db = db if db is not None else get_mongo_db()
        self.client = self.db.client
        self.candidates: Collection = get_collection(COLLECTIONS["candidates"], self.db)
        self.targets: Collection = get_collection(COLLECTIONS["targets"], self.db)
        self.applications: Collection = get_collection(COLLECTIONS["applications"], self.db)
        self.seat_locks: Collection = get_collection(COLLECTIONS["seat_locks"], self.db)
        self.counters: Collection = get_collection(COLLECTIONS["counters"], self.db)

    # ---------- profile / posting storage ----------

    def save_candidate(self, candidate: Candidate) -> None:
        """Insert or replace a student profile."""
        self.candidates.replace_one(
            {"student_id": candidate.student_id},
            _plain(candidate.model_dump()),
            upsert=True
        )

    def save_target(self, target: Target) -> None:
        """Insert or replace a course / job."""
        self.targets.replace_one(
            {"target_id": target.target_id},
            _plain(target.model_dump()),
            upsert=True
        )

    # ---------- reads ----------

    def fetch_candidate(self, student_id: str) -> Optional[Candidate]:
        doc = serialize_doc(self.candidates.find_one({"student_id": student_id}))
        return Candidate.model_validate(doc) if doc else None

    def fetch_target(self, target_id: str) -> Optional[Target]:
        doc = serialize_doc(self.targets.find_one({"target_id": target_id}))
        return Target.model_validate(doc) if doc else None

    def get_application(self, application_id: str) -> Optional[Application]:
        return doc_to_application(self.applications.find_one({"_id": application_id}))

    def list_applications(self, scope: ApplicationFilter) -> List[Application]:
        cursor = self.applications.find(filter_to_query(scope)).sort(WAITLIST_SORT)
        return [doc_to_application(doc) for doc in cursor]

    def count_applications(self, scope: ApplicationFilter) -> int:
        return self.applications.count_documents(filter_to_query(scope))

    # ---------- writes ----------

    def atomic_transition(self, batch: TransitionBatch) -> List[Application]:
        try:
            with self.client.start_session() as session:
                with session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority")
                ):
                    return self._apply(batch, session)
        except AllocationError:
            raise
        except PyMongoError as e:
            logger.warning(f"MongoDB transaction aborted: {e}")
            raise TransactionAborted(f"Transaction aborted by store: {e}") from e

    def _touch_tokens(self, batch: TransitionBatch, session: ClientSession) -> None:
        # Sorted so concurrent writers bump shared tokens in the same order
        for key in sorted({guard.lock_key for guard in batch.guards}):
            self.seat_locks.update_one(
                {"_id": key},
                {"$inc": {"rev": 1}},
                upsert=True,
                session=session
            )

    def _next_seq(self, session: ClientSession) -> int:
        counter = self.counters.find_one_and_update(
            {"_id": "applications"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=session
        )
        return counter["seq"]

    def _apply(self, batch: TransitionBatch, session: ClientSession) -> List[Application]:
        self._touch_tokens(batch, session)
        committed: List[Application] = []

        for app in batch.creates:
            created = app.model_copy(deep=True)
            created.seq = self._next_seq(session)
            self.applications.insert_one(application_to_doc(created), session=session)
            committed.append(created)

        for change in batch.changes:
            current = doc_to_application(
                self.applications.find_one({"_id": change.application_id}, session=session)
            )
            if current is None:
                raise TransactionAborted(f"Application {change.application_id} not found")
            if current.status != change.expected_status:
                raise TransactionAborted(
                    f"Application {current.id} is {current.status.value}, "
                    f"expected {change.expected_status.value}"
                )

            updated = apply_status_change(current, change, batch.at)
            result = self.applications.replace_one(
                {"_id": current.id, "status": change.expected_status.value},
                application_to_doc(updated),
                session=session
            )
            if result.matched_count == 0:
                raise TransactionAborted(f"Application {current.id} changed concurrently")
            committed.append(updated)

        for guard in batch.guards:
            count = self.applications.count_documents(filter_to_query(guard.scope), session=session)
            if not guard.check(count):
                raise error_for(
                    guard.error,
                    f"Guard on {guard.lock_key} failed (count={count}, "
                    f"min={guard.min_count}, max={guard.max_count})"
                )

        return committed


def get_mongo_repository() -> MongoRepository:
    """Get repository on the configured database."""
    return MongoRepository()
