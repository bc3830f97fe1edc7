from typing import Optional, Dict, Any, List
from pymongo import MongoClient, ASCENDING

from classroom_store import ClassroomStore, Condition, COLLECTIONS, generate_id

_OPERATORS = {
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
}


def build_filter(conditions) -> Dict[str, Any]:
    """Translate (field, op, value) conditions into a MongoDB filter"""
    filt: Dict[str, Any] = {}
    for field, op, value in conditions:
        if op == "==":
            clause: Any = value
        elif op in _OPERATORS:
            clause = {_OPERATORS[op]: list(value) if op == "in" else value}
        else:
            raise ValueError(f"Unsupported query operator: {op}")

        existing = filt.get(field)
        if isinstance(existing, dict) and isinstance(clause, dict):
            existing.update(clause)
        elif field in filt:
            filt.setdefault("$and", []).append({field: clause})
        else:
            filt[field] = clause
    return filt


class MongoDBManager(ClassroomStore):
    """Manages MongoDB document storage for the tutor attendance backend"""

    def __init__(self, mongo_uri: str, db_name: str = "tutor_attendance_db"):
        """
        Initialize MongoDB connection

        Args:
            mongo_uri: MongoDB connection URI
            db_name: Name of the database to use
        """
        try:
            self.client = MongoClient(mongo_uri)
            self.db = self.client[db_name]

            # Create indexes for better performance
            self._create_indexes()

            print("✅ MongoDB connection established successfully")
        except Exception as e:
            print(f"❌ Failed to connect to MongoDB: {e}")
            raise

    def _create_indexes(self):
        """Create database indexes for efficient queries"""
        def _ensure_index(collection, keys, *, unique: bool = False):
            try:
                collection.create_index(keys, unique=unique)
            except Exception as create_err:
                # Existing duplicates must not keep the app from starting
                print(f"⚠️ Warning: Could not create index {keys} (unique={unique}): {create_err}")

        for name in COLLECTIONS:
            _ensure_index(self.db[name], [("id", ASCENDING)], unique=True)

        _ensure_index(self.db["classes"], [("teacherId", ASCENDING)])
        _ensure_index(self.db["enrollments"], [("classId", ASCENDING)])
        _ensure_index(self.db["attendance"], [("classId", ASCENDING), ("date", ASCENDING)])
        _ensure_index(self.db["paymentStatus"], [("teacherId", ASCENDING), ("month", ASCENDING)])

        print("✅ MongoDB indexes ensured")

    def _collection(self, collection: str):
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return self.db[collection]

    # ==================== DOCUMENT OPERATIONS ====================

    def query_where(self, collection: str, *conditions: Condition) -> List[Dict[str, Any]]:
        return list(self._collection(collection).find(build_filter(conditions), {"_id": 0}))

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._collection(collection).find_one({"id": doc_id}, {"_id": 0})

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = generate_id()
        self._collection(collection).insert_one({**data, "id": doc_id})
        return doc_id

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._collection(collection).replace_one({"id": doc_id}, {**data, "id": doc_id}, upsert=True)

    def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        result = self._collection(collection).update_one({"id": doc_id}, {"$set": updates})
        if result.matched_count == 0:
            raise KeyError(f"{collection}/{doc_id} not found")

    def delete(self, collection: str, doc_id: str) -> bool:
        result = self._collection(collection).delete_one({"id": doc_id})
        return result.deleted_count > 0

    def replace_matching(self, collection: str, conditions: List[Condition], documents: List[Dict[str, Any]]) -> List[str]:
        """
        Delete-then-insert inside one multi-document transaction.

        Transactions need a replica set or sharded cluster (Atlas always is one).
        """
        coll = self._collection(collection)
        new_docs = [{**data, "id": generate_id()} for data in documents]
        filt = build_filter(conditions)

        def _apply(session):
            coll.delete_many(filt, session=session)
            if new_docs:
                # insert_many adds _id to the dicts it is given
                coll.insert_many([doc.copy() for doc in new_docs], session=session)

        with self.client.start_session() as session:
            session.with_transaction(_apply)

        return [doc["id"] for doc in new_docs]

    def count(self, collection: str) -> int:
        return self._collection(collection).count_documents({})
