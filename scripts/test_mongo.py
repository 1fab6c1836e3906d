"""
MongoDB integration tests

Runs the engine against a real MongoDB (MONGODB_URI, default localhost).
Transactions need a replica set; the module is skipped when none is
reachable.

Run: pytest scripts/test_mongo.py
"""

import pytest
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from conftest import make_candidate, make_target

from placement_engine.core.config import Settings
from placement_engine.db.mongodb import COLLECTIONS, init_mongo_indexes
from placement_engine.schemas.schemas import ApplicationFilter, ApplicationStatus, Outcome
from placement_engine.services.allocation_service import AllocationEngine
from placement_engine.services.arbiter_service import AdmissionArbiter
from placement_engine.services.mongo_service import MongoRepository

TEST_DB = "placement_engine_test"


def _replica_set_client():
    client = MongoClient(Settings(_env_file=None).mongodb_uri, serverSelectionTimeoutMS=500, tz_aware=True)
    try:
        if not client.admin.command("hello").get("setName"):
            client.close()
            return None
    except PyMongoError:
        client.close()
        return None
    return client


@pytest.fixture(scope="module")
def mongo_client():
    client = _replica_set_client()
    if client is None:
        pytest.skip("MongoDB replica set not available")
    yield client
    client.drop_database(TEST_DB)
    client.close()


@pytest.fixture()
def mongo_repo(mongo_client):
    mongo_client.drop_database(TEST_DB)
    db = mongo_client[TEST_DB]
    init_mongo_indexes(db)
    # Collections must exist before they are used inside a transaction
    for name in COLLECTIONS.values():
        if name not in db.list_collection_names():
            db.create_collection(name)
    return MongoRepository(db=db)


def test_profiles_round_trip(mongo_repo):
    mongo_repo.save_candidate(make_candidate("s1", skills=["Python"]))
    mongo_repo.save_target(make_target("c1", capacity=2))

    assert mongo_repo.fetch_candidate("s1").skills == ["Python"]
    assert mongo_repo.fetch_requirement("c1")[1] == 2
    assert mongo_repo.fetch_target("missing") is None


def test_submit_and_waitlist(mongo_repo, settings):
    engine = AllocationEngine(mongo_repo, settings=settings)
    target = make_target("c1", capacity=1)
    mongo_repo.save_target(target)

    first = engine.submit(make_candidate("s1"), target)
    second = engine.submit(make_candidate("s2"), target)

    assert first.outcome == Outcome.pending
    assert second.outcome == Outcome.waiting
    assert second.application.seq > first.application.seq
    assert mongo_repo.get_application(first.application.id).created_at.tzinfo is not None


def test_confirm_choice_in_one_transaction(mongo_repo, settings):
    engine = AllocationEngine(mongo_repo, settings=settings)
    arbiter = AdmissionArbiter(engine)
    course_x = make_target("X", institution_id="inst-A")
    course_y = make_target("Y", institution_id="inst-B")
    mongo_repo.save_target(course_x)
    mongo_repo.save_target(course_y)

    student = make_candidate("s1")
    app_x = engine.submit(student, course_x).application
    app_y = engine.submit(student, course_y).application
    waiting = engine.submit(make_candidate("s2"), course_x).application
    engine.decide(app_x.id, ApplicationStatus.admitted)
    engine.decide(app_y.id, ApplicationStatus.admitted)

    decision = arbiter.confirm_choice("s1", app_y.id)

    assert decision.ok
    assert mongo_repo.get_application(app_x.id).status == ApplicationStatus.rejected
    assert mongo_repo.get_application(waiting.id).status == ApplicationStatus.admitted
    assert mongo_repo.count_applications(
        ApplicationFilter(student_id="s1", statuses=[ApplicationStatus.admitted])
    ) == 1
