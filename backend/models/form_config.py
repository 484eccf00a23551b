"""QR Form Configuration Models

The global form configuration drives the QR creation form: custom fields,
repeatable variant axes (Color, Size, Model...) and the three static fields
(brand, manufactured-on date, best-before date).

Documents use the camelCase keys the admin UI and existing store documents
use (fieldName, isMandatory, customFields...). Attributes are snake_case and
mapped through aliases.

Field and variant descriptors are tagged by fieldType / inputType. Each tag
only carries the attributes that make sense for it, so a dropdown without
options or a number field with min > max cannot be constructed.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal, Union, Any, Dict, Annotated
from datetime import datetime
from enum import Enum
import re
import uuid


DEFAULT_FORM_NAME = "QR Creation Form"
STATIC_FIELD_NAMES = ("brand", "mfdOn", "bestBefore")


class FieldType(str, Enum):
    """Custom field input types"""
    TEXT = "text"
    NUMBER = "number"
    DROPDOWN = "dropdown"
    FILE = "file"
    IMAGE = "image"
    TEXTAREA = "textarea"
    DATE = "date"
    EMAIL = "email"
    PHONE = "phone"


TEXT_LIKE_TYPES = {"text", "textarea", "email", "phone"}


class VariantInputType(str, Enum):
    """Variant input widgets"""
    COLOR = "color"
    TEXT = "text"
    DROPDOWN = "dropdown"


def _new_entry_id() -> str:
    return uuid.uuid4().hex


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ============================================================================
# VALIDATION RULES
# ============================================================================

class LengthRules(_Document):
    """Rules for text-like fields."""
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    pattern: Optional[str] = None

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value):
        if value:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid pattern: {e}")
        return value or None

    @model_validator(mode="after")
    def _bounds_ordered(self):
        if self.min_length is not None and self.max_length is not None and self.min_length > self.max_length:
            raise ValueError("minLength must not exceed maxLength")
        return self


class NumericRules(_Document):
    """Rules for number fields."""
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def _bounds_ordered(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


# ============================================================================
# FIELD DESCRIPTORS
# ============================================================================

class _FieldBase(_Document):
    entry_id: str = Field(default_factory=_new_entry_id, alias="_id")
    field_name: str = Field(min_length=1)
    field_label: str
    is_mandatory: bool = False
    placeholder: str = ""
    order: Union[int, float] = 0

    @field_validator("entry_id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        # Legacy documents carry ObjectId sub-document ids
        return str(value) if value is not None else _new_entry_id()

    @field_validator("placeholder", mode="before")
    @classmethod
    def _placeholder_text(cls, value):
        return value or ""


class TextLikeField(_FieldBase):
    field_type: Literal["text", "textarea", "email", "phone"]
    validation: Optional[LengthRules] = None


class NumberField(_FieldBase):
    field_type: Literal["number"]
    validation: Optional[NumericRules] = None


class DropdownField(_FieldBase):
    field_type: Literal["dropdown"]
    options: List[str] = Field(min_length=1)


class DateField(_FieldBase):
    field_type: Literal["date"]


class UploadField(_FieldBase):
    field_type: Literal["file", "image"]


FieldDescriptor = Annotated[
    Union[TextLikeField, NumberField, DropdownField, DateField, UploadField],
    Field(discriminator="field_type"),
]


# ============================================================================
# VARIANT DESCRIPTORS
# ============================================================================

class _VariantBase(_Document):
    entry_id: str = Field(default_factory=_new_entry_id, alias="_id")
    variant_name: str = Field(min_length=1)
    variant_label: str
    order: Union[int, float] = 0

    @field_validator("entry_id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else _new_entry_id()


class PlainVariant(_VariantBase):
    input_type: Literal["color", "text"]


class DropdownVariant(_VariantBase):
    input_type: Literal["dropdown"]
    options: List[str] = Field(min_length=1)


VariantDescriptor = Annotated[
    Union[PlainVariant, DropdownVariant],
    Field(discriminator="input_type"),
]


# ============================================================================
# STATIC FIELDS
# ============================================================================

class StaticFieldToggle(_Document):
    enabled: bool = True
    is_mandatory: bool = True

    @property
    def required(self) -> bool:
        return self.enabled and self.is_mandatory


class StaticFields(_Document):
    """Toggles for the three always-known fields."""
    brand: StaticFieldToggle = Field(default_factory=StaticFieldToggle)
    mfd_on: StaticFieldToggle = Field(default_factory=StaticFieldToggle)
    best_before: StaticFieldToggle = Field(default_factory=StaticFieldToggle)

    def toggle(self, name: str) -> StaticFieldToggle:
        """Look up a toggle by its record key (brand, mfdOn, bestBefore)."""
        if name not in STATIC_FIELD_NAMES:
            raise KeyError(name)
        return getattr(self, _STATIC_ATTRS[name])

    def toggles(self):
        return [(name, self.toggle(name)) for name in STATIC_FIELD_NAMES]

    def is_enabled(self, name: str) -> bool:
        return self.toggle(name).enabled

    def is_required(self, name: str) -> bool:
        return self.toggle(name).required

    @property
    def expiry_inputs_enabled(self) -> bool:
        """Both date inputs needed to derive an expiry date are on the form."""
        return self.mfd_on.enabled and self.best_before.enabled


_STATIC_ATTRS = {"brand": "brand", "mfdOn": "mfd_on", "bestBefore": "best_before"}


# ============================================================================
# FORM CONFIGURATION
# ============================================================================

def _default_input_type(items):
    # inputType was optional in stored documents and defaulted to text
    if not isinstance(items, list):
        return items
    normalised = []
    for item in items:
        if isinstance(item, dict) and not item.get("inputType") and not item.get("input_type"):
            item = {**item, "inputType": VariantInputType.TEXT.value}
        normalised.append(item)
    return normalised


class FormConfigPatch(_Document):
    """Mutable part of the global configuration, replaced wholesale on save."""
    form_name: str = DEFAULT_FORM_NAME
    description: str = ""
    custom_fields: List[FieldDescriptor] = Field(default_factory=list)
    variants: List[VariantDescriptor] = Field(default_factory=list)
    static_fields: StaticFields = Field(default_factory=StaticFields)

    @field_validator("variants", mode="before")
    @classmethod
    def _variants_default_input_type(cls, value):
        return _default_input_type(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, value):
        return value or ""

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class FormConfig(FormConfigPatch):
    """The global form configuration document."""
    id: Optional[str] = Field(default=None, alias="_id")
    is_global: bool = True
    is_active: bool = True
    version: int = 0
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", "created_by", "updated_by", mode="before")
    @classmethod
    def _stringify_ref(cls, value):
        return str(value) if value is not None else None

    @property
    def persisted(self) -> bool:
        """False for the synthesized default returned when nothing is stored."""
        return self.id is not None

    def patch(self) -> FormConfigPatch:
        return FormConfigPatch.model_validate(
            self.model_dump(include=set(FormConfigPatch.model_fields))
        )

    @classmethod
    def synthesized_default(cls) -> "FormConfig":
        return cls(
            is_global=True,
            is_active=True,
            form_name=DEFAULT_FORM_NAME,
            custom_fields=[],
            variants=[],
            static_fields=StaticFields(),
        )
