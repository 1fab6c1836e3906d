"""
Database module - repository contract and MongoDB connection.
"""
from placement_engine.db.repository import Repository, InMemoryRepository
from placement_engine.db.mongodb import get_mongo_db, test_mongo_connection

__all__ = [
    "Repository",
    "InMemoryRepository",
    "get_mongo_db",
    "test_mongo_connection"
]
