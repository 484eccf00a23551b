"""
Form Configuration Routes

Admin endpoints to read, validate and save the global QR creation form, plus
the consumer endpoints that serve the active form and check product records
against it.

Configuration payloads use the document shape (customFields, variants,
staticFields...). customFields and variants are always returned sorted by
their display order.
"""
from fastapi import APIRouter, HTTPException, Depends, Request, Body
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
import logging

from middleware import admin_route_guard, actor_id
from services.form_config_rules import (
    ShapeViolationError,
    UnknownFieldPolicy,
    ordered_document,
    validate,
    validate_record,
)
from services.form_config_store import (
    ConfigurationAmbiguityError,
    FormConfigNotFoundError,
    FormConfigStore,
    StoreFault,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/form-config", tags=["form-config"])
admin_router = APIRouter(prefix="/api/admin/form-config", tags=["admin-form-config"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class RecordValidationRequest(BaseModel):
    """Product record to check against the active form."""
    model_config = ConfigDict(populate_by_name=True)

    record: Dict[str, Any] = Field(default_factory=dict)
    unknown_fields: UnknownFieldPolicy = Field(default=UnknownFieldPolicy.IGNORE, alias="unknownFields")


# ============================================================================
# HELPERS
# ============================================================================

def get_form_config_store(request: Request) -> FormConfigStore:
    """Store bound to the connection opened by the app lifespan."""
    try:
        db = request.app.state.database.get_db()
    except (AttributeError, StoreFault) as e:
        logger.error(f"Form config store unavailable: {e}")
        raise HTTPException(status_code=503, detail="Form configuration store unavailable")
    return FormConfigStore(db)


def _raise_http(e: Exception):
    if isinstance(e, ShapeViolationError):
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "violations": [v.model_dump() for v in e.violations]},
        )
    if isinstance(e, VersionConflictError):
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "expected_version": e.expected, "current_version": e.actual},
        )
    if isinstance(e, FormConfigNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConfigurationAmbiguityError):
        logger.error(f"Form configuration read failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    if isinstance(e, StoreFault):
        logger.error(f"Form configuration store error: {e}")
        raise HTTPException(status_code=503, detail="Form configuration store unavailable")
    raise e


# ============================================================================
# CONSUMER ENDPOINTS
# ============================================================================

@router.get("")
async def get_form_config(store: FormConfigStore = Depends(get_form_config_store)):
    """Active global form configuration, fields and variants in display order."""
    try:
        config = await store.get_active_global_config()
    except StoreFault as e:
        _raise_http(e)
    return {"formConfig": ordered_document(config)}


@router.post("/validate-record")
async def check_record(
    request: RecordValidationRequest,
    store: FormConfigStore = Depends(get_form_config_store),
):
    """Validate a product record against the active form."""
    try:
        config = await store.get_active_global_config()
    except StoreFault as e:
        _raise_http(e)

    result = validate_record(config, request.record, unknown_fields=request.unknown_fields)
    if not result.valid:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Record does not match the form configuration",
                "violations": [v.model_dump() for v in result.violations],
            },
        )
    return result.model_dump()


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@admin_router.get("")
async def admin_get_form_config(
    current_user: dict = Depends(admin_route_guard),
    store: FormConfigStore = Depends(get_form_config_store),
):
    """
    Get the global form configuration for editing, including a deactivated one.
    `persisted` is false while the built-in default is being shown; `version`
    is the value to send back as expectedVersion.
    """
    try:
        config = await store.get_editable_global_config()
    except StoreFault as e:
        _raise_http(e)
    return {
        "formConfig": ordered_document(config),
        "persisted": config.persisted,
        "version": config.version,
    }


@admin_router.post("")
async def admin_save_form_config(
    payload: Dict[str, Any] = Body(...),
    current_user: dict = Depends(admin_route_guard),
    store: FormConfigStore = Depends(get_form_config_store),
):
    """
    Save the global form configuration.
    customFields and variants replace the stored lists wholesale. Include
    expectedVersion to reject the save if someone else changed the form since
    it was loaded.
    """
    payload = dict(payload)
    expected_version = payload.pop("expectedVersion", None)
    if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
        raise HTTPException(status_code=422, detail="expectedVersion must be an integer")
    try:
        config = await store.upsert_global_config(
            payload,
            actor=actor_id(current_user),
            expected_version=expected_version,
        )
    except (ShapeViolationError, VersionConflictError, StoreFault) as e:
        _raise_http(e)
    return {
        "message": "Form configuration saved",
        "formConfig": ordered_document(config),
    }


@admin_router.post("/validate")
async def admin_validate_form_config(
    payload: Dict[str, Any] = Body(...),
    current_user: dict = Depends(admin_route_guard),
):
    """Dry-run structural validation without saving."""
    return validate(payload).model_dump()


@admin_router.post("/activate")
async def admin_activate_form_config(
    expected_version: Optional[int] = None,
    current_user: dict = Depends(admin_route_guard),
    store: FormConfigStore = Depends(get_form_config_store),
):
    try:
        config = await store.set_active(True, actor=actor_id(current_user), expected_version=expected_version)
    except (FormConfigNotFoundError, VersionConflictError, StoreFault) as e:
        _raise_http(e)
    return {"message": "Form configuration activated", "formConfig": ordered_document(config)}


@admin_router.post("/deactivate")
async def admin_deactivate_form_config(
    expected_version: Optional[int] = None,
    current_user: dict = Depends(admin_route_guard),
    store: FormConfigStore = Depends(get_form_config_store),
):
    """Deactivate the stored form; consumers fall back to the default form."""
    try:
        config = await store.set_active(False, actor=actor_id(current_user), expected_version=expected_version)
    except (FormConfigNotFoundError, VersionConflictError, StoreFault) as e:
        _raise_http(e)
    return {"message": "Form configuration deactivated", "formConfig": ordered_document(config)}


@admin_router.get("/versions")
async def admin_list_form_config_versions(
    limit: int = 20,
    current_user: dict = Depends(admin_route_guard),
    store: FormConfigStore = Depends(get_form_config_store),
):
    """History of saved versions, newest first."""
    try:
        versions = await store.list_versions(limit=min(max(limit, 1), 100))
    except StoreFault as e:
        _raise_http(e)
    return {"versions": versions, "total": len(versions)}
