"""
Form Configuration Rules

Rules that operate on the global form configuration:
1. Structural validation of a configuration document before it is stored
2. Display ordering of custom fields and variants
3. Validation of a product record submitted against a configuration

Structural validation works on raw documents (dicts as they come from the
admin UI or straight out of the store) and never raises for data-shape
problems; it returns a ValidationResult listing every violation in document
order. parse_patch() is the strict entry point used before persisting.
"""
from typing import Dict, List, Any, Optional, Tuple, Union
from enum import Enum
from datetime import date, datetime
from pydantic import BaseModel, Field, ValidationError
import logging
import math
import re

from models.form_config import (
    FieldType,
    VariantInputType,
    FormConfig,
    FormConfigPatch,
    STATIC_FIELD_NAMES,
    TEXT_LIKE_TYPES,
)

logger = logging.getLogger(__name__)

FIELD_TYPE_VALUES = {t.value for t in FieldType}
VARIANT_INPUT_VALUES = {t.value for t in VariantInputType}
DATE_STATIC_FIELDS = ("mfdOn", "bestBefore")


class UnknownFieldPolicy(str, Enum):
    """What validate_record does with record keys the configuration does not declare."""
    IGNORE = "ignore"
    REJECT = "reject"


class Violation(BaseModel):
    path: str
    code: str
    message: str


class ValidationResult(BaseModel):
    valid: bool = True
    violations: List[Violation] = Field(default_factory=list)

    @classmethod
    def from_violations(cls, violations: List[Violation]) -> "ValidationResult":
        return cls(valid=not violations, violations=violations)


class ShapeViolationError(ValueError):
    """A configuration document failed structural validation."""

    def __init__(self, violations: List[Violation]):
        self.violations = violations
        super().__init__(f"Form configuration has {len(violations)} violation(s)")


# ============================================================================
# HELPERS
# ============================================================================

def _pick(doc: Dict[str, Any], camel: str, snake: str) -> Any:
    if camel in doc:
        return doc[camel]
    return doc.get(snake)


def _tag(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _as_document(config: Union[Dict[str, Any], BaseModel, None]) -> Dict[str, Any]:
    if config is None:
        return {}
    if isinstance(config, BaseModel):
        return config.model_dump(by_alias=True, mode="json")
    return config


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _has_options(entry: Dict[str, Any]) -> bool:
    options = entry.get("options") or []
    return isinstance(options, list) and any(str(o).strip() for o in options)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _error_path(loc: Tuple[Any, ...]) -> str:
    path = ""
    previous = None
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif isinstance(previous, int) and (part in FIELD_TYPE_VALUES or part in VARIANT_INPUT_VALUES):
            # discriminated unions report the tag as an extra path segment
            pass
        else:
            path += f".{part}" if path else str(part)
        previous = part
    return path


# ============================================================================
# STRUCTURAL VALIDATION
# ============================================================================

def _check_rules(rules: Any, path: str) -> List[Violation]:
    violations = []
    if rules is None:
        return violations
    if not isinstance(rules, dict):
        return [Violation(path=path, code="invalid_value", message="Validation rules must be an object")]

    pattern = rules.get("pattern")
    if pattern:
        try:
            re.compile(pattern)
        except (re.error, TypeError) as e:
            violations.append(Violation(
                path=f"{path}.pattern",
                code="invalid_pattern",
                message=f"Pattern is not a valid regular expression: {e}",
            ))

    for low_key, high_key, low_snake, high_snake in (
        ("minLength", "maxLength", "min_length", "max_length"),
        ("min", "max", "min", "max"),
    ):
        low = _as_number(_pick(rules, low_key, low_snake))
        high = _as_number(_pick(rules, high_key, high_snake))
        if low is not None and high is not None and low > high:
            violations.append(Violation(
                path=f"{path}.{low_key}",
                code="inverted_bounds",
                message=f"{low_key} ({low:g}) is greater than {high_key} ({high:g})",
            ))
    return violations


def _check_custom_fields(fields: Any) -> List[Violation]:
    if fields is None:
        return []
    if not isinstance(fields, list):
        return [Violation(path="customFields", code="invalid_value", message="customFields must be a list")]

    violations = []
    seen: Dict[str, int] = {}
    for index, field in enumerate(fields):
        path = f"customFields[{index}]"
        if not isinstance(field, dict):
            violations.append(Violation(path=path, code="invalid_entry", message="Field must be an object"))
            continue

        name = _pick(field, "fieldName", "field_name")
        if not isinstance(name, str) or not name.strip():
            violations.append(Violation(path=f"{path}.fieldName", code="missing_name", message="fieldName is required"))
        else:
            seen[name] = seen.get(name, 0) + 1
            if seen[name] == 2:
                violations.append(Violation(
                    path=f"{path}.fieldName",
                    code="duplicate_name",
                    message=f"fieldName '{name}' is used more than once",
                ))

        field_type = _tag(_pick(field, "fieldType", "field_type"))
        if not isinstance(field_type, str) or field_type not in FIELD_TYPE_VALUES:
            violations.append(Violation(
                path=f"{path}.fieldType",
                code="unknown_type",
                message=f"Unsupported fieldType: {field_type}",
            ))
        elif field_type == FieldType.DROPDOWN.value and not _has_options(field):
            violations.append(Violation(
                path=f"{path}.options",
                code="missing_options",
                message="Dropdown fields need at least one option",
            ))

        violations.extend(_check_rules(field.get("validation"), f"{path}.validation"))
    return violations


def _check_variants(variants: Any) -> List[Violation]:
    if variants is None:
        return []
    if not isinstance(variants, list):
        return [Violation(path="variants", code="invalid_value", message="variants must be a list")]

    violations = []
    seen: Dict[str, int] = {}
    for index, variant in enumerate(variants):
        path = f"variants[{index}]"
        if not isinstance(variant, dict):
            violations.append(Violation(path=path, code="invalid_entry", message="Variant must be an object"))
            continue

        name = _pick(variant, "variantName", "variant_name")
        if not isinstance(name, str) or not name.strip():
            violations.append(Violation(path=f"{path}.variantName", code="missing_name", message="variantName is required"))
        else:
            seen[name] = seen.get(name, 0) + 1
            if seen[name] == 2:
                violations.append(Violation(
                    path=f"{path}.variantName",
                    code="duplicate_name",
                    message=f"variantName '{name}' is used more than once",
                ))

        input_type = _tag(_pick(variant, "inputType", "input_type")) or VariantInputType.TEXT.value
        if not isinstance(input_type, str) or input_type not in VARIANT_INPUT_VALUES:
            violations.append(Violation(
                path=f"{path}.inputType",
                code="unknown_type",
                message=f"Unsupported inputType: {input_type}",
            ))
        elif input_type == VariantInputType.DROPDOWN.value and not _has_options(variant):
            violations.append(Violation(
                path=f"{path}.options",
                code="missing_options",
                message="Dropdown variants need at least one option",
            ))
    return violations


def _validate(config) -> Tuple[List[Violation], Optional[FormConfigPatch]]:
    doc = _as_document(config)
    if not isinstance(doc, dict):
        return [Violation(path="", code="invalid_value", message="Configuration must be an object")], None

    violations = _check_custom_fields(_pick(doc, "customFields", "custom_fields"))
    violations.extend(_check_variants(doc.get("variants")))
    if violations:
        return violations, None

    # Type-level checks (labels present, booleans, integers...) come from the models
    try:
        patch = FormConfigPatch.model_validate(doc)
    except ValidationError as e:
        return [
            Violation(path=_error_path(err["loc"]), code="invalid_value", message=err["msg"])
            for err in e.errors()
        ], None
    return [], patch


def validate(config) -> ValidationResult:
    """
    Check a configuration document for structural problems.

    Reports duplicate fieldName/variantName (once per name), dropdowns without
    options, patterns that do not compile and inverted min/max bounds.
    """
    violations, _ = _validate(config)
    return ValidationResult.from_violations(violations)


def parse_patch(config) -> FormConfigPatch:
    """Validate and build the typed patch, raising ShapeViolationError on any problem."""
    violations, patch = _validate(config)
    if violations:
        logger.info(f"Rejected form configuration with {len(violations)} violation(s)")
        raise ShapeViolationError(violations)
    return patch


# ============================================================================
# ORDERING
# ============================================================================

def ordered_fields(config: FormConfigPatch) -> list:
    """Custom fields by ascending order; equal orders keep their stored position."""
    return sorted(config.custom_fields, key=lambda f: f.order)


def ordered_variants(config: FormConfigPatch) -> list:
    return sorted(config.variants, key=lambda v: v.order)


def ordered_document(config: FormConfig) -> Dict[str, Any]:
    """Document shape handed to renderers, with fields and variants pre-sorted."""
    doc = config.model_dump(by_alias=True, mode="json")
    doc["customFields"] = [f.model_dump(by_alias=True, mode="json") for f in ordered_fields(config)]
    doc["variants"] = [v.model_dump(by_alias=True, mode="json") for v in ordered_variants(config)]
    return doc


# ============================================================================
# RECORD VALIDATION
# ============================================================================

def _check_value(field, value: Any) -> List[Violation]:
    key = field.field_name
    label = field.field_label or key
    field_type = _tag(field.field_type)

    if field_type == FieldType.NUMBER.value:
        number = _as_number(value.strip() if isinstance(value, str) else value)
        if number is None:
            return [Violation(path=key, code="not_a_number", message=f"{label} must be a number")]
        rules = field.validation
        if rules and rules.min is not None and number < rules.min:
            return [Violation(path=key, code="below_min", message=f"{label} must be at least {rules.min:g}")]
        if rules and rules.max is not None and number > rules.max:
            return [Violation(path=key, code="above_max", message=f"{label} must be at most {rules.max:g}")]
        return []

    if field_type in TEXT_LIKE_TYPES:
        text = value if isinstance(value, str) else str(value)
        rules = field.validation
        if not rules:
            return []
        violations = []
        if rules.min_length is not None and len(text) < rules.min_length:
            violations.append(Violation(
                path=key, code="too_short",
                message=f"{label} must be at least {rules.min_length} characters",
            ))
        if rules.max_length is not None and len(text) > rules.max_length:
            violations.append(Violation(
                path=key, code="too_long",
                message=f"{label} must be at most {rules.max_length} characters",
            ))
        if rules.pattern and not re.search(rules.pattern, text):
            violations.append(Violation(path=key, code="pattern_mismatch", message=f"{label} has an invalid format"))
        return violations

    if field_type == FieldType.DROPDOWN.value:
        if value not in field.options:
            return [Violation(
                path=key, code="not_an_option",
                message=f"{label} must be one of: {', '.join(field.options)}",
            )]
        return []

    if field_type == FieldType.DATE.value:
        if _parse_date(value) is None:
            return [Violation(path=key, code="invalid_date", message=f"{label} must be a valid date")]
        return []

    # file / image: presence is all that is checked
    return []


def validate_record(
    config: FormConfig,
    record: Dict[str, Any],
    unknown_fields: UnknownFieldPolicy = UnknownFieldPolicy.IGNORE,
) -> ValidationResult:
    """
    Validate a product record against a configuration.

    Enabled, mandatory static fields and mandatory custom fields must be present
    and non-empty; populated custom fields get their type-specific checks.
    Keys the configuration does not declare are ignored unless the REJECT
    policy is requested.
    """
    violations: List[Violation] = []
    record = record or {}

    for name, toggle in config.static_fields.toggles():
        if not toggle.enabled:
            continue
        value = record.get(name)
        if _is_blank(value):
            if toggle.is_mandatory:
                violations.append(Violation(path=name, code="required", message=f"{name} is required"))
            continue
        if name in DATE_STATIC_FIELDS and _parse_date(value) is None:
            violations.append(Violation(path=name, code="invalid_date", message=f"{name} must be a valid date"))

    for field in ordered_fields(config):
        value = record.get(field.field_name)
        if _is_blank(value):
            if field.is_mandatory:
                violations.append(Violation(
                    path=field.field_name,
                    code="required",
                    message=f"{field.field_label or field.field_name} is required",
                ))
            continue
        violations.extend(_check_value(field, value))

    if unknown_fields == UnknownFieldPolicy.REJECT:
        known = set(STATIC_FIELD_NAMES)
        known.update(f.field_name for f in config.custom_fields)
        known.update(v.variant_name for v in config.variants)
        known.add("variants")
        for key in record:
            if key not in known:
                violations.append(Violation(path=key, code="unknown_field", message=f"{key} is not part of the form"))

    return ValidationResult.from_violations(violations)
