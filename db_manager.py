import json
import os
from typing import Optional, Dict, Any, List

from classroom_store import ClassroomStore, Condition, COLLECTIONS, generate_id, matches


class DatabaseManager(ClassroomStore):
    """Manages file-based document storage, one JSON file per collection"""

    def __init__(self, base_dir: str = "data"):
        self.base_dir = base_dir
        self._ensure_directories()

    def _ensure_directories(self):
        """Ensure the base directory exists"""
        os.makedirs(self.base_dir, exist_ok=True)

    def get_collection_file(self, collection: str) -> str:
        """Get collection json file path"""
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return os.path.join(self.base_dir, f"{collection}.json")

    def read_json(self, file_path: str) -> Optional[Dict[Any, Any]]:
        """Read JSON file; None when the file does not exist yet"""
        if not os.path.exists(file_path):
            return None
        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def write_json(self, file_path: str, data: Dict[Any, Any]):
        """Write JSON file through a temp file so readers never see a partial write"""
        tmp_path = f"{file_path}.tmp"
        try:
            os.makedirs(os.path.dirname(file_path), exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, file_path)
        except Exception as e:
            print(f"Error writing {file_path}: {e}")
            raise

    def _load(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.read_json(self.get_collection_file(collection)) or {}

    def _save(self, collection: str, docs: Dict[str, Dict[str, Any]]):
        self.write_json(self.get_collection_file(collection), docs)

    # ==================== DOCUMENT OPERATIONS ====================

    def query_where(self, collection: str, *conditions: Condition) -> List[Dict[str, Any]]:
        docs = self._load(collection)
        return [dict(doc) for doc in docs.values() if matches(doc, conditions)]

    def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._load(collection).get(doc_id)
        return dict(doc) if doc else None

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        docs = self._load(collection)
        doc_id = generate_id()
        docs[doc_id] = {**data, "id": doc_id}
        self._save(collection, docs)
        return doc_id

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        docs = self._load(collection)
        docs[doc_id] = {**data, "id": doc_id}
        self._save(collection, docs)

    def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        docs = self._load(collection)
        if doc_id not in docs:
            raise KeyError(f"{collection}/{doc_id} not found")
        docs[doc_id].update(updates)
        self._save(collection, docs)

    def delete(self, collection: str, doc_id: str) -> bool:
        docs = self._load(collection)
        if doc_id not in docs:
            return False
        del docs[doc_id]
        self._save(collection, docs)
        return True

    def replace_matching(self, collection: str, conditions: List[Condition], documents: List[Dict[str, Any]]) -> List[str]:
        """Delete-then-insert applied in memory and written back in a single file replace"""
        docs = self._load(collection)
        remaining = {
            doc_id: doc for doc_id, doc in docs.items()
            if not matches(doc, tuple(conditions))
        }

        ids = []
        for data in documents:
            doc_id = generate_id()
            remaining[doc_id] = {**data, "id": doc_id}
            ids.append(doc_id)

        self._save(collection, remaining)
        return ids

    def count(self, collection: str) -> int:
        return len(self._load(collection))
