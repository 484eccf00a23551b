"""
Form configuration store tests.

- Empty store yields the synthesized default without writing anything
- Upserts create once, then replace customFields/variants wholesale under a version compare-and-set
- Concurrent writers get one success and one VersionConflictError
- More than one active document is reported, never resolved by picking one
- Driver errors surface as StoreFault
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from conftest import make_form_config_db
from services.form_config_rules import ShapeViolationError
from services.form_config_store import (
    ConfigurationAmbiguityError,
    FormConfigNotFoundError,
    FormConfigStore,
    StoreFault,
    VersionConflictError,
)


def _payload(*names, form_name="QR Creation Form"):
    return {
        "formName": form_name,
        "customFields": [
            {"fieldName": n, "fieldLabel": n.title(), "fieldType": "text", "order": i}
            for i, n in enumerate(names, start=1)
        ],
        "variants": [{"variantName": "size", "variantLabel": "Size", "inputType": "text"}],
    }


class TestReads:

    @pytest.mark.asyncio
    async def test_empty_store_returns_default_without_persisting(self, store, form_config_db):
        config = await store.get_active_global_config()

        assert config.persisted is False
        assert config.version == 0
        assert config.form_name == "QR Creation Form"
        assert config.custom_fields == []
        assert config.static_fields.is_required("brand")
        assert form_config_db.docs == []
        form_config_db["formconfigs"].insert_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_two_active_documents_is_ambiguous(self):
        db = make_form_config_db([
            {"_id": "global", "isGlobal": True, "isActive": True, "formName": "A"},
            {"_id": "manual", "isGlobal": True, "isActive": True, "formName": "B"},
        ])

        with pytest.raises(ConfigurationAmbiguityError) as exc_info:
            await FormConfigStore(db).get_active_global_config()
        assert exc_info.value.count == 2

    def test_ambiguity_is_a_store_fault(self):
        assert issubclass(ConfigurationAmbiguityError, StoreFault)

    @pytest.mark.asyncio
    async def test_driver_error_becomes_store_fault(self, form_config_db):
        form_config_db["formconfigs"].find = MagicMock(side_effect=ServerSelectionTimeoutError("no servers"))

        with pytest.raises(StoreFault):
            await FormConfigStore(form_config_db).get_active_global_config()

    @pytest.mark.asyncio
    async def test_corrupt_stored_document_becomes_store_fault(self):
        db = make_form_config_db([{
            "_id": "global",
            "isGlobal": True,
            "isActive": True,
            "customFields": [{"fieldName": "size", "fieldLabel": "Size", "fieldType": "dropdown", "options": []}],
        }])

        with pytest.raises(StoreFault):
            await FormConfigStore(db).get_active_global_config()

    @pytest.mark.asyncio
    async def test_legacy_document_without_version_loads(self):
        db = make_form_config_db([{
            "_id": "global",
            "isGlobal": True,
            "isActive": True,
            "formName": "Legacy",
            "variants": [{"variantName": "model", "variantLabel": "Model"}],
        }])

        config = await FormConfigStore(db).get_active_global_config()
        assert config.persisted is True
        assert config.version == 0
        assert config.variants[0].input_type == "text"


class TestUpsert:

    @pytest.mark.asyncio
    async def test_first_upsert_creates_active_global_document(self, store, form_config_db):
        config = await store.upsert_global_config(_payload("sku", "batchNo"), actor="admin-1")

        assert config.persisted is True
        assert config.version == 1
        assert config.is_active is True
        assert config.created_by == "admin-1"
        assert len(form_config_db.docs) == 1
        stored = form_config_db.docs[0]
        assert stored["_id"] == "global"
        assert stored["isGlobal"] is True
        assert [f["fieldName"] for f in stored["customFields"]] == ["sku", "batchNo"]

    @pytest.mark.asyncio
    async def test_second_upsert_replaces_lists_wholesale(self, store, form_config_db):
        await store.upsert_global_config(_payload("sku", "batchNo", "mrp"), actor="admin-1")
        config = await store.upsert_global_config(
            {"formName": "Renamed", "customFields": [{"fieldName": "gtin", "fieldLabel": "GTIN", "fieldType": "text"}]},
            actor="admin-2",
        )

        assert len(form_config_db.docs) == 1
        assert config.version == 2
        assert config.form_name == "Renamed"
        assert [f.field_name for f in config.custom_fields] == ["gtin"]
        assert config.variants == []
        assert config.created_by == "admin-1"
        assert config.updated_by == "admin-2"

        reread = await store.get_active_global_config()
        assert [f.field_name for f in reread.custom_fields] == ["gtin"]
        assert reread.version == 2

    @pytest.mark.asyncio
    async def test_invalid_patch_rejected_before_store(self, store, form_config_db):
        with pytest.raises(ShapeViolationError):
            await store.upsert_global_config(_payload("sku", "sku"))

        form_config_db["formconfigs"].find_one.assert_not_called()
        assert form_config_db.docs == []

    @pytest.mark.asyncio
    async def test_stale_expected_version_conflicts(self, store, form_config_db):
        await store.upsert_global_config(_payload("sku"))
        await store.upsert_global_config(_payload("sku", "mrp"), expected_version=1)

        with pytest.raises(VersionConflictError) as exc_info:
            await store.upsert_global_config(_payload("batchNo"), expected_version=1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        assert [f["fieldName"] for f in form_config_db.docs[0]["customFields"]] == ["sku", "mrp"]

    @pytest.mark.asyncio
    async def test_expected_version_zero_means_must_not_exist(self, store):
        config = await store.upsert_global_config(_payload("sku"), expected_version=0)
        assert config.version == 1

        with pytest.raises(VersionConflictError):
            await store.upsert_global_config(_payload("mrp"), expected_version=0)

    @pytest.mark.asyncio
    async def test_expected_version_on_missing_document_conflicts(self, store):
        with pytest.raises(VersionConflictError) as exc_info:
            await store.upsert_global_config(_payload("sku"), expected_version=3)
        assert exc_info.value.actual is None

    @pytest.mark.asyncio
    async def test_sequential_concurrent_upserts_leave_one_document(self, store, form_config_db):
        await asyncio.gather(
            store.upsert_global_config(_payload("a"), actor="admin-1"),
            store.upsert_global_config(_payload("b"), actor="admin-2"),
        )

        assert len(form_config_db.docs) == 1
        assert form_config_db.docs[0]["version"] == 2

    @pytest.mark.asyncio
    async def test_racing_creates_one_wins_one_conflicts(self, store, form_config_db):
        # Both writers read "nothing stored" before either inserts
        form_config_db["formconfigs"].find_one = AsyncMock(return_value=None)

        results = await asyncio.gather(
            store.upsert_global_config(_payload("a")),
            store.upsert_global_config(_payload("b")),
            return_exceptions=True,
        )

        assert results[0].version == 1
        assert isinstance(results[1], VersionConflictError)
        assert len(form_config_db.docs) == 1
        assert form_config_db.docs[0]["customFields"][0]["fieldName"] == "a"

    @pytest.mark.asyncio
    async def test_racing_updates_one_wins_one_conflicts(self, store, form_config_db):
        await store.upsert_global_config(_payload("a"))
        snapshot = dict(form_config_db.docs[0])
        # Both writers read version 1
        form_config_db["formconfigs"].find_one = AsyncMock(side_effect=lambda *a, **k: dict(snapshot))

        await store.upsert_global_config(_payload("b"))
        with pytest.raises(VersionConflictError):
            await store.upsert_global_config(_payload("c"))

        assert form_config_db.docs[0]["version"] == 2
        assert form_config_db.docs[0]["customFields"][0]["fieldName"] == "b"

    @pytest.mark.asyncio
    async def test_legacy_active_document_updated_in_place(self):
        legacy_id = ObjectId()
        db = make_form_config_db([{
            "_id": legacy_id,
            "isGlobal": True,
            "isActive": True,
            "formName": "Old form",
            "customFields": [{"fieldName": "old", "fieldLabel": "Old", "fieldType": "text"}],
        }])

        config = await FormConfigStore(db).upsert_global_config(_payload("sku"), actor="admin-1")

        assert len(db.docs) == 1
        assert db.docs[0]["_id"] == legacy_id
        assert db.docs[0]["version"] == 1
        assert [f["fieldName"] for f in db.docs[0]["customFields"]] == ["sku"]
        assert config.id == str(legacy_id)
        assert config.is_active is True

    @pytest.mark.asyncio
    async def test_legacy_inactive_document_updated_in_place(self):
        legacy_id = ObjectId()
        db = make_form_config_db([{"_id": legacy_id, "isGlobal": True, "isActive": False, "formName": "Old form"}])
        store = FormConfigStore(db)

        found = await store.find_global_config()
        assert found.id == str(legacy_id)

        config = await store.upsert_global_config(_payload("sku"))

        assert len(db.docs) == 1
        assert db.docs[0]["_id"] == legacy_id
        assert config.is_active is False
        assert config.version == 1

    @pytest.mark.asyncio
    async def test_fixed_key_preferred_over_legacy_document(self):
        db = make_form_config_db([
            {"_id": "manual", "isGlobal": True, "isActive": False, "formName": "Old form"},
            {"_id": "global", "isGlobal": True, "isActive": True, "formName": "Current", "version": 4},
        ])

        config = await FormConfigStore(db).upsert_global_config(_payload("sku"), expected_version=4)

        assert config.id == "global"
        assert config.version == 5
        assert db.docs[0]["formName"] == "Old form"

    @pytest.mark.asyncio
    async def test_write_failure_becomes_store_fault(self, store, form_config_db):
        form_config_db["formconfigs"].insert_one = AsyncMock(side_effect=PyMongoError("write failed"))

        with pytest.raises(StoreFault):
            await store.upsert_global_config(_payload("sku"))

    @pytest.mark.asyncio
    async def test_history_and_audit_recorded(self, store, form_config_db):
        await store.upsert_global_config(_payload("sku"), actor="admin-1")
        await store.upsert_global_config(_payload("sku", "mrp"), actor="admin-1")

        versions = await store.list_versions()
        assert [v["version"] for v in versions] == [2, 1]
        assert versions[0]["action"] == "FORM_CONFIG_UPDATED"
        assert [f["fieldName"] for f in versions[1]["snapshot"]["customFields"]] == ["sku"]

        actions = [entry["action"] for entry in form_config_db.audit]
        assert actions == ["FORM_CONFIG_CREATED", "FORM_CONFIG_UPDATED"]
        assert form_config_db.audit[1]["resource_id"] == "global"
        assert form_config_db.audit[1]["metadata"]["diff"]["customFields"] == {"added": ["mrp"]}

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_write(self, store, form_config_db):
        form_config_db["formconfig_versions"].insert_one = AsyncMock(side_effect=PyMongoError("down"))
        form_config_db["audit_logs"].insert_one = AsyncMock(side_effect=PyMongoError("down"))

        config = await store.upsert_global_config(_payload("sku"))
        assert config.version == 1
        assert len(form_config_db.docs) == 1


class TestActivation:

    @pytest.mark.asyncio
    async def test_deactivate_falls_back_to_default_and_keeps_document(self, store, form_config_db):
        await store.upsert_global_config(_payload("sku"))

        config = await store.set_active(False, actor="admin-1")
        assert config.is_active is False
        assert config.version == 2

        active = await store.get_active_global_config()
        assert active.persisted is False
        assert active.custom_fields == []

        stored = await store.find_global_config()
        assert stored is not None
        assert [f.field_name for f in stored.custom_fields] == ["sku"]

    @pytest.mark.asyncio
    async def test_editable_config_includes_deactivated_document(self, store):
        assert (await store.get_editable_global_config()).persisted is False

        await store.upsert_global_config(_payload("sku"))
        await store.set_active(False)

        editable = await store.get_editable_global_config()
        assert editable.persisted is True
        assert editable.is_active is False
        assert editable.version == 2
        assert [f.field_name for f in editable.custom_fields] == ["sku"]

    @pytest.mark.asyncio
    async def test_reactivate(self, store):
        await store.upsert_global_config(_payload("sku"))
        await store.set_active(False)
        await store.set_active(True, expected_version=2)

        active = await store.get_active_global_config()
        assert active.persisted is True
        assert active.version == 3

    @pytest.mark.asyncio
    async def test_set_active_without_document(self, store):
        with pytest.raises(FormConfigNotFoundError):
            await store.set_active(True)


class TestIndexes:

    @pytest.mark.asyncio
    async def test_partial_unique_index_on_active_global(self, store, form_config_db):
        await store.ensure_indexes()

        args, kwargs = form_config_db["formconfigs"].create_index.call_args
        assert args[0] == [("isGlobal", 1), ("isActive", 1)]
        assert kwargs["unique"] is True
        assert kwargs["partialFilterExpression"] == {"isGlobal": True, "isActive": True}

    @pytest.mark.asyncio
    async def test_index_failure_becomes_store_fault(self, store, form_config_db):
        form_config_db["formconfigs"].create_index = AsyncMock(side_effect=PyMongoError("denied"))

        with pytest.raises(StoreFault):
            await store.ensure_indexes()
