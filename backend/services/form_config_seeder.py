"""Default form configuration seeding.

Installs the known-good QR creation form: eight product fields, three
variant axes and all static fields enabled and mandatory. Running it again
overwrites the stored form with the same defaults, so it is idempotent.
"""

from dataclasses import dataclass
from typing import Optional, List, Dict, Any
import logging

from models.form_config import DEFAULT_FORM_NAME, FormConfig
from services.form_config_store import FormConfigStore

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Default form for creating QR codes with product information"

DEFAULT_CUSTOM_FIELDS: List[Dict[str, Any]] = [
    {
        "fieldName": "productName",
        "fieldLabel": "Product Name",
        "fieldType": "text",
        "isMandatory": True,
        "placeholder": "e.g. Premium Widget",
        "order": 1,
    },
    {
        "fieldName": "productImage",
        "fieldLabel": "Product Image",
        "fieldType": "image",
        "isMandatory": False,
        "order": 2,
    },
    {
        "fieldName": "sku",
        "fieldLabel": "SKU/Model Number",
        "fieldType": "text",
        "isMandatory": False,
        "placeholder": "e.g. SKU-12345",
        "order": 3,
    },
    {
        "fieldName": "batchNo",
        "fieldLabel": "Batch Number",
        "fieldType": "text",
        "isMandatory": True,
        "placeholder": "e.g. BATCH-001",
        "order": 4,
    },
    {
        "fieldName": "mrp",
        "fieldLabel": "MRP (Maximum Retail Price)",
        "fieldType": "number",
        "isMandatory": False,
        "placeholder": "e.g. 999",
        "order": 5,
    },
    {
        "fieldName": "manufacturedBy",
        "fieldLabel": "Manufactured By",
        "fieldType": "text",
        "isMandatory": False,
        "placeholder": "Company name",
        "order": 6,
    },
    {
        "fieldName": "marketedBy",
        "fieldLabel": "Marketed By",
        "fieldType": "text",
        "isMandatory": False,
        "placeholder": "Company name",
        "order": 7,
    },
    {
        "fieldName": "quantity",
        "fieldLabel": "Product Quantity",
        "fieldType": "number",
        "isMandatory": True,
        "placeholder": "0",
        "order": 8,
    },
]

DEFAULT_VARIANTS: List[Dict[str, Any]] = [
    {"variantName": "color", "variantLabel": "Color", "inputType": "color", "order": 1},
    {"variantName": "size", "variantLabel": "Size", "inputType": "text", "order": 2},
    {"variantName": "model", "variantLabel": "Model/Series", "inputType": "text", "order": 3},
]

DEFAULT_STATIC_FIELDS: Dict[str, Any] = {
    "brand": {"enabled": True, "isMandatory": True},
    "mfdOn": {"enabled": True, "isMandatory": True},
    "bestBefore": {"enabled": True, "isMandatory": True},
}


def default_form_config() -> Dict[str, Any]:
    """Fresh copy of the default configuration document."""
    return {
        "formName": DEFAULT_FORM_NAME,
        "description": DEFAULT_DESCRIPTION,
        "customFields": [dict(f) for f in DEFAULT_CUSTOM_FIELDS],
        "variants": [dict(v) for v in DEFAULT_VARIANTS],
        "staticFields": {k: dict(v) for k, v in DEFAULT_STATIC_FIELDS.items()},
    }


@dataclass
class SeedResult:
    action: str  # "created" or "updated"
    config: FormConfig

    def summary(self) -> List[str]:
        return [
            f"Form Name: {self.config.form_name}",
            f"Custom Fields: {len(self.config.custom_fields)}",
            f"Variants: {len(self.config.variants)}",
            f"Version: {self.config.version}",
        ]


async def seed_default_form_config(store: FormConfigStore, actor: Optional[str] = None) -> SeedResult:
    """Create the global form configuration, or overwrite it with the defaults."""
    existing = await store.find_global_config()
    if existing:
        logger.info("Global form config already exists, updating with defaults")
    config = await store.upsert_global_config(default_form_config(), actor=actor)
    return SeedResult(action="updated" if existing else "created", config=config)
