from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid


class AuditAction(str, Enum):
    # Form configuration
    FORM_CONFIG_CREATED = "FORM_CONFIG_CREATED"
    FORM_CONFIG_UPDATED = "FORM_CONFIG_UPDATED"
    FORM_CONFIG_ACTIVATED = "FORM_CONFIG_ACTIVATED"
    FORM_CONFIG_DEACTIVATED = "FORM_CONFIG_DEACTIVATED"


class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
