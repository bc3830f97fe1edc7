import os

import pytest
from dotenv import load_dotenv

from mongodb_manager import build_filter

load_dotenv()


def test_build_filter_equality_and_ranges():
    filt = build_filter([
        ("classId", "==", "c1"),
        ("date", ">=", "2024-11-01"),
        ("date", "<=", "2024-11-30"),
    ])
    assert filt == {"classId": "c1", "date": {"$gte": "2024-11-01", "$lte": "2024-11-30"}}


def test_build_filter_in_and_not_equal():
    filt = build_filter([("classId", "in", ("c1", "c2")), ("status", "!=", "excused")])
    assert filt == {"classId": {"$in": ["c1", "c2"]}, "status": {"$ne": "excused"}}


def test_build_filter_repeated_equality():
    filt = build_filter([("month", "==", "2024-11"), ("month", "==", "2024-12")])
    assert filt == {"month": "2024-11", "$and": [{"month": "2024-12"}]}


def test_build_filter_rejects_unknown_operator():
    with pytest.raises(ValueError):
        build_filter([("date", "~", "2024")])


def test_mongodb_connection():
    """Test MongoDB connection and basic operations"""
    mongo_uri = os.getenv("MONGO_URI")
    if not mongo_uri:
        pytest.skip("MONGO_URI not set")

    from mongodb_manager import MongoDBManager

    mongo_db_name = os.getenv("MONGO_DB_NAME", "tutor_attendance_db")
    print(f"Testing MongoDB connection...")
    print(f"Database: {mongo_db_name}")

    db = MongoDBManager(mongo_uri=mongo_uri, db_name=mongo_db_name)

    stats = db.get_database_stats()
    print("\n📊 Database Statistics:")
    for key, value in stats.items():
        print(f"  {key}: {value}")

    doc_id = db.insert("users", {"name": "connection check"})
    try:
        assert db.get_by_id("users", doc_id)["name"] == "connection check"
    finally:
        assert db.delete("users", doc_id) is True
