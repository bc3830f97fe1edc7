import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# main.py picks its store at import time
os.environ["DB_TYPE"] = "file"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="tutor-attendance-"))

from db_manager import DatabaseManager


class FailingWrites(DatabaseManager):
    """A file store whose writes are rejected, like a store that lost its connection"""

    def set(self, collection, doc_id, data):
        raise OSError("write rejected")

    def update(self, collection, doc_id, updates):
        raise OSError("write rejected")

    def replace_matching(self, collection, conditions, documents):
        raise OSError("write rejected")


class FailingQueries(DatabaseManager):
    def query_where(self, collection, *conditions):
        raise OSError("query rejected")


@pytest.fixture
def store(tmp_path):
    return DatabaseManager(base_dir=str(tmp_path / "data"))


@pytest.fixture
def client(store, monkeypatch):
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setattr(main, "db", store)
    with TestClient(main.app) as c:
        yield c


def make_headers(uid="teacher-1", email="teacher1@gmail.com", name="Teacher One"):
    import main

    token = main.create_access_token({"sub": uid, "email": email, "name": name})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return make_headers()


@pytest.fixture
def other_headers():
    return make_headers(uid="teacher-2", email="teacher2@gmail.com", name="Teacher Two")
