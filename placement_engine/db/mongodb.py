"""
MongoDB Connection Utility

MongoDB stores:
- candidates: student profiles (read-only to the engine)
- targets: courses and jobs with capacity and requirements
- applications: the only records the engine writes
- seat_locks: per-student / per-target serialisation tokens
- counters: insertion sequence for FIFO tie-breaking

Multi-document transactions need a replica set (a single-node replica set
is enough for development).
"""
import logging
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from placement_engine.core.config import get_settings

logger = logging.getLogger(__name__)

# Global client (connection pooling handled internally by pymongo)
_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        _client = MongoClient(get_settings().mongodb_uri, tz_aware=True)
    return _client


def get_mongo_db() -> Database:
    """Get the engine database"""
    global _db
    if _db is None:
        _db = get_mongo_client()[get_settings().mongodb_db]
    return _db


def get_collection(name: str, db: Optional[Database] = None) -> Collection:
    """Get a specific collection, from `db` or the default database."""
    return (db if db is not None else get_mongo_db())[name]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        # ping command checks connection
        get_mongo_client().admin.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"MongoDB connection failed: {e}")
        return False


# Collection name constants (avoid typos)
COLLECTIONS = {
    "candidates": "candidates",
    "targets": "targets",
    "applications": "applications",
    "seat_locks": "seat_locks",
    "counters": "counters",
}


def init_mongo_indexes(db: Optional[Database] = None):
    """
    Create indexes for the engine's queries.
    Call this once during app startup.
    """
    db = db if db is not None else get_mongo_db()

    db[COLLECTIONS["candidates"]].create_index("student_id", unique=True)
    db[COLLECTIONS["targets"]].create_index("target_id", unique=True)

    apps = db[COLLECTIONS["applications"]]
    # Seat counts and waitlist order per target
    apps.create_index([("target_id", ASCENDING), ("status", ASCENDING), ("created_at", ASCENDING), ("seq", ASCENDING)])
    # Ledger lookups per student
    apps.create_index([("student_id", ASCENDING), ("institution_id", ASCENDING), ("status", ASCENDING)])

    logger.info("MongoDB indexes created successfully")
