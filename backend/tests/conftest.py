"""
Pytest configuration and shared test helpers for backend tests.
"""
import copy
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("JWT_SECRET", "test-secret")

from fastapi.testclient import TestClient
from auth import create_access_token
from routes.form_config import get_form_config_store
from server import app
from services.form_config_store import FormConfigStore


def _matches(doc, query):
    # Equality filters only; a None value also matches a missing key, as in MongoDB
    return all(doc.get(key) == value for key, value in query.items())


def make_form_config_db(docs=None):
    """
    MagicMock database whose collections keep documents in plain lists.

    Supports the calls FormConfigStore makes: find/find_one/insert_one/
    update_one/create_index, including the _id and active-global unique keys.
    """
    docs = [] if docs is None else docs
    history = []
    audit = []

    async def find_one(query, *args, **kwargs):
        for doc in docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(query, *args, **kwargs):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(
            side_effect=lambda length=None: [copy.deepcopy(d) for d in docs if _matches(d, query)][:length]
        )
        return cursor

    async def insert_one(doc):
        if any(d.get("_id") == doc.get("_id") for d in docs):
            raise DuplicateKeyError("E11000 duplicate key", 11000, {"keyPattern": {"_id": 1}})
        if doc.get("isGlobal") and doc.get("isActive") and any(d.get("isGlobal") and d.get("isActive") for d in docs):
            raise DuplicateKeyError("E11000 duplicate key", 11000, {"keyPattern": {"isGlobal": 1, "isActive": 1}})
        docs.append(copy.deepcopy(doc))
        return MagicMock(inserted_id=doc.get("_id"))

    async def update_one(query, update, *args, **kwargs):
        for doc in docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return MagicMock(matched_count=1, modified_count=1)
        return MagicMock(matched_count=0, modified_count=0)

    configs = MagicMock()
    configs.find_one = AsyncMock(side_effect=find_one)
    configs.find = MagicMock(side_effect=find)
    configs.insert_one = AsyncMock(side_effect=insert_one)
    configs.update_one = AsyncMock(side_effect=update_one)
    configs.create_index = AsyncMock()

    def history_find(query, *args, **kwargs):
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(
            side_effect=lambda length=None: sorted(history, key=lambda h: -h["version"])[:length]
        )
        return cursor

    versions = MagicMock()
    versions.insert_one = AsyncMock(side_effect=lambda doc: history.append(copy.deepcopy(doc)))
    versions.find = MagicMock(side_effect=history_find)
    versions.create_index = AsyncMock()

    audit_logs = MagicMock()
    audit_logs.insert_one = AsyncMock(side_effect=lambda doc: audit.append(doc))

    collections = {
        "formconfigs": configs,
        "formconfig_versions": versions,
        "audit_logs": audit_logs,
    }
    db = MagicMock()
    db.__getitem__.side_effect = collections.__getitem__
    db.docs = docs
    db.history = history
    db.audit = audit
    return db


@pytest.fixture
def form_config_db():
    return make_form_config_db()


@pytest.fixture
def store(form_config_db):
    return FormConfigStore(form_config_db)


@pytest.fixture
def admin_headers():
    token = create_access_token({"portal_user_id": "admin-1", "role": "ROLE_ADMIN"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(form_config_db):
    """TestClient for the app with the form config store bound to the in-memory db."""
    app.dependency_overrides[get_form_config_store] = lambda: FormConfigStore(form_config_db)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
