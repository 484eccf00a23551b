"""Form Configuration Store

Persistence for the single global form configuration.

The global document lives under a fixed key (_id = "global"), so there is
structurally one configuration to read and write. A partial unique index on
(isGlobal, isActive) additionally stops any second document, such as one
inserted by hand, from becoming active alongside it; if that happens anyway
reads fail with ConfigurationAmbiguityError instead of picking one.
A global document saved before the fixed key existed is adopted in place:
when there is no "global" document, writes target the stored isGlobal
document under its own _id rather than creating a second one.

Every write is a compare-and-set on the version that was read. Two admins
saving at the same time get one success and one VersionConflictError rather
than a silent overwrite.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pydantic import ValidationError
from pymongo.errors import PyMongoError, DuplicateKeyError
import logging

from models.audit import AuditAction
from models.form_config import FormConfig, FormConfigPatch
from services.form_config_rules import parse_patch, validate
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

COLLECTION = "formconfigs"
VERSIONS_COLLECTION = "formconfig_versions"
GLOBAL_CONFIG_ID = "global"
ACTIVE_GLOBAL_FILTER = {"isGlobal": True, "isActive": True}

SNAPSHOT_KEYS = ("formName", "description", "customFields", "variants", "staticFields", "isActive")


class StoreFault(Exception):
    """The document store was unreachable, failed, or rejected a write."""


class ConfigurationAmbiguityError(StoreFault):
    """More than one active global configuration exists."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Found {count} active global form configurations; expected at most one")


class VersionConflictError(Exception):
    """The stored configuration changed since the caller read it."""

    def __init__(self, expected: Optional[int], actual: Optional[int]):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Form configuration version mismatch (expected {expected}, found {actual})")


class FormConfigNotFoundError(LookupError):
    """No global configuration has been persisted yet."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _snapshot(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    return {key: doc.get(key) for key in SNAPSHOT_KEYS}


class FormConfigStore:
    """Store for the global form configuration, bound to one database handle."""

    def __init__(self, db):
        self.db = db
        self.collection = db[COLLECTION]
        self.versions = db[VERSIONS_COLLECTION]

    async def ensure_indexes(self):
        try:
            await self.collection.create_index(
                [("isGlobal", 1), ("isActive", 1)],
                name="unique_active_global",
                unique=True,
                partialFilterExpression=ACTIVE_GLOBAL_FILTER,
            )
            await self.versions.create_index([("configId", 1), ("version", -1)])
        except PyMongoError as e:
            raise StoreFault(f"Could not create form config indexes: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, doc: Dict[str, Any]) -> FormConfig:
        try:
            return FormConfig.model_validate(doc)
        except ValidationError as e:
            # Only reachable for documents edited outside this store
            result = validate(doc)
            logger.error(
                "Stored form configuration %s is invalid: %s",
                doc.get("_id"),
                [(v.path, v.code) for v in result.violations] or str(e),
            )
            raise StoreFault("Stored form configuration is invalid") from e

    async def _find_raw(self) -> Optional[Dict[str, Any]]:
        """The global document: the fixed key first, then any isGlobal document.

        Documents written before the fixed key was introduced carry an
        ObjectId _id; they are read and updated under their own _id.
        """
        try:
            doc = await self.collection.find_one({"_id": GLOBAL_CONFIG_ID})
            if doc is None:
                doc = await self.collection.find_one(
                    {"isGlobal": True},
                    sort=[("isActive", -1), ("updatedAt", -1)],
                )
            return doc
        except PyMongoError as e:
            raise StoreFault(f"Failed to read form configuration: {e}") from e

    async def get_active_global_config(self) -> FormConfig:
        """
        Return the active global configuration.

        When nothing is stored, a default configuration is synthesized and
        returned without being persisted; its `persisted` flag is False and
        its version is 0.
        """
        try:
            docs = await self.collection.find(ACTIVE_GLOBAL_FILTER).to_list(length=2)
        except PyMongoError as e:
            raise StoreFault(f"Failed to read form configuration: {e}") from e

        if len(docs) > 1:
            logger.error("Multiple active global form configurations found")
            raise ConfigurationAmbiguityError(len(docs))
        if not docs:
            logger.info("No active global form configuration stored, using default")
            return FormConfig.synthesized_default()
        return self._load(docs[0])

    async def find_global_config(self) -> Optional[FormConfig]:
        """Return the stored global configuration whether or not it is active."""
        doc = await self._find_raw()
        return self._load(doc) if doc else None

    async def get_editable_global_config(self) -> FormConfig:
        """
        The configuration an admin edits: the stored one, active or not, or
        the synthesized default when nothing has been saved yet.
        """
        return await self.find_global_config() or FormConfig.synthesized_default()

    async def list_versions(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get history snapshots, newest first."""
        try:
            cursor = self.versions.find(
                {"configId": GLOBAL_CONFIG_ID},
                {"_id": 0}
            ).sort("version", -1).limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise StoreFault(f"Failed to read form configuration history: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_global_config(
        self,
        patch,
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> FormConfig:
        """
        Create or replace the global configuration.

        formName, description, customFields, variants and staticFields are
        replaced wholesale. Pass expected_version to make the write
        conditional on the version the caller read (0 = must not exist yet).

        Raises ShapeViolationError before touching the store if the patch is
        invalid, VersionConflictError if the document changed underneath,
        StoreFault on driver errors.
        """
        parsed: FormConfigPatch = parse_patch(patch)
        fields = parsed.to_document()
        now = _now()

        existing = await self._find_raw()
        if existing is None:
            if expected_version not in (None, 0):
                raise VersionConflictError(expected_version, None)
            doc = {
                "_id": GLOBAL_CONFIG_ID,
                **fields,
                "isGlobal": True,
                "isActive": True,
                "version": 1,
                "createdBy": actor,
                "updatedBy": actor,
                "createdAt": now,
                "updatedAt": now,
            }
            await self._insert(doc)
            action = AuditAction.FORM_CONFIG_CREATED
        else:
            update = {**fields, "updatedBy": actor, "updatedAt": now}
            doc = await self._compare_and_set(existing, update, expected_version)
            action = AuditAction.FORM_CONFIG_UPDATED

        await self._record_history(doc, existing, action, actor)
        logger.info(f"Form configuration {action.value} at version {doc['version']} by {actor}")
        return self._load(doc)

    async def set_active(
        self,
        is_active: bool,
        actor: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> FormConfig:
        """Activate or deactivate the stored configuration (it is never deleted)."""
        existing = await self._find_raw()
        if existing is None:
            raise FormConfigNotFoundError("No global form configuration has been saved")

        update = {"isActive": is_active, "updatedBy": actor, "updatedAt": _now()}
        doc = await self._compare_and_set(existing, update, expected_version)

        action = AuditAction.FORM_CONFIG_ACTIVATED if is_active else AuditAction.FORM_CONFIG_DEACTIVATED
        await self._record_history(doc, existing, action, actor)
        logger.info(f"Form configuration {action.value} at version {doc['version']} by {actor}")
        return self._load(doc)

    async def _insert(self, doc: Dict[str, Any]):
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            key_pattern = (e.details or {}).get("keyPattern") or {}
            if "_id" in key_pattern:
                # Another writer created the document first
                raise VersionConflictError(0, None) from e
            raise StoreFault("Another active global form configuration already exists") from e
        except PyMongoError as e:
            raise StoreFault(f"Failed to create form configuration: {e}") from e

    async def _compare_and_set(
        self,
        existing: Dict[str, Any],
        update: Dict[str, Any],
        expected_version: Optional[int],
    ) -> Dict[str, Any]:
        read_version = existing.get("version")
        current = read_version or 0
        if expected_version is not None and expected_version != current:
            raise VersionConflictError(expected_version, current)

        update = {**update, "version": current + 1}
        try:
            result = await self.collection.update_one(
                {"_id": existing["_id"], "version": read_version},
                {"$set": update},
            )
        except DuplicateKeyError as e:
            raise StoreFault("Another active global form configuration already exists") from e
        except PyMongoError as e:
            raise StoreFault(f"Failed to update form configuration: {e}") from e

        if result.matched_count == 0:
            logger.warning(f"Form configuration changed during update (read version {current})")
            raise VersionConflictError(current, None)
        return {**existing, **update}

    async def _record_history(
        self,
        doc: Dict[str, Any],
        before: Optional[Dict[str, Any]],
        action: AuditAction,
        actor: Optional[str],
    ):
        try:
            await self.versions.insert_one({
                "configId": GLOBAL_CONFIG_ID,
                "version": doc["version"],
                "action": action.value,
                "snapshot": _snapshot(doc),
                "createdAt": doc.get("updatedAt") or _now(),
                "createdBy": actor,
            })
        except PyMongoError as e:
            # The write itself has already succeeded
            logger.error(f"Failed to record form configuration history: {e}")

        await create_audit_log(
            self.db,
            action=action,
            actor_id=actor,
            resource_type="form_config",
            resource_id=GLOBAL_CONFIG_ID,
            before_state=_snapshot(before),
            after_state=_snapshot(doc),
            metadata={"version": doc["version"]},
        )
