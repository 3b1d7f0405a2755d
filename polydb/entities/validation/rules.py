"""
Validation Rules - Declarative Field Rule Models

📐 Inspectable Schemas:
A schema maps field names to FieldRule objects. Bounds, patterns and flags
are plain data; callables (custom, async_custom, compare, when.check) are
either captured at model-definition time or referenced by name from a
ValidatorRegistry, so a schema stays serializable when it only uses names.

Schemas can be written as nested dictionaries using either snake_case or
camelCase keys (`required_when` / `requiredWhen`) and are frozen once built.
"""

from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple, Union
from datetime import date, datetime
import re

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .formats import parse_time_of_day

ValidatorRef = Union[str, Callable[..., Any]]

FIELD_TYPES = (
    "string", "number", "bigint", "decimal", "boolean", "date", "timestamp",
    "array", "object", "json", "enum", "uuid", "text", "binary", "any",
)

FORMATS = ("email", "url", "ip", "ipv4", "ipv6", "uuid", "date", "datetime", "time")

FieldType = Literal[
    "string", "number", "bigint", "decimal", "boolean", "date", "timestamp",
    "array", "object", "json", "enum", "uuid", "text", "binary", "any",
]

CompareOperator = Literal["=", ">", ">=", "<", "<="]


class _RuleModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


class Condition(_RuleModel):
    """
    Gate on another field of the same record.

    Exactly one of `is`, `is_not` or `check` is normally given; with none of
    them the condition holds when the other field is truthy.
    """
    field: str
    is_: Any = Field(default=None, alias="is")
    is_not: Any = Field(default=None, alias="isNot")
    check: Optional[ValidatorRef] = None

    @property
    def has_is(self) -> bool:
        return "is_" in self.model_fields_set

    @property
    def has_is_not(self) -> bool:
        return "is_not" in self.model_fields_set


class CompareValueRule(_RuleModel):
    target_field: str = Field(alias="targetField")
    compare: CompareOperator = "="
    target_model: Any = Field(default=None, alias="targetModel")
    where: Optional[Dict[str, Any]] = None


class UniqueRule(_RuleModel):
    where: Optional[Dict[str, Any]] = None
    exclude: Optional[Dict[str, Any]] = None


class ExistsRule(_RuleModel):
    collection: Optional[str] = None
    where: Optional[Dict[str, Any]] = None


class PasswordStrengthRule(_RuleModel):
    min_length: Optional[int] = Field(default=None, alias="minLength")
    require_uppercase: bool = Field(default=False, alias="requireUppercase")
    require_lowercase: bool = Field(default=False, alias="requireLowercase")
    require_numbers: bool = Field(default=False, alias="requireNumbers")
    require_symbols: bool = Field(default=False, alias="requireSymbols")


class ArrayRule(_RuleModel):
    type: Optional[FieldType] = None
    min: Optional[int] = None
    max: Optional[int] = None
    length: Optional[int] = None
    unique_items: bool = Field(default=False, alias="uniqueItems")
    items: Optional['ValidateOptions'] = None


class ValidateOptions(_RuleModel):
    """Every rule that can be attached to one field"""

    # Gate / presence
    required: bool = False
    required_when: Optional[Condition] = Field(default=None, alias="requiredWhen")
    when: Optional[Condition] = None

    # Type and coercions
    type: Optional[FieldType] = None
    trim: bool = False
    to_lower_case: bool = Field(default=False, alias="toLowerCase")
    to_upper_case: bool = Field(default=False, alias="toUpperCase")

    # Scalar constraints
    min: Optional[float] = None
    max: Optional[float] = None
    length: Optional[int] = None
    range: Optional[Tuple[float, float]] = None
    integer: bool = False
    positive: bool = False
    negative: bool = False
    multiple_of: Optional[float] = Field(default=None, alias="multipleOf")
    pattern: Optional[Union[str, re.Pattern]] = None
    alphanumeric: bool = False
    numeric: bool = False
    alpha: bool = False
    lowercase: bool = False
    uppercase: bool = False
    starts_with: Optional[str] = Field(default=None, alias="startsWith")
    ends_with: Optional[str] = Field(default=None, alias="endsWith")
    contains: Optional[str] = None
    format: Optional[Literal["email", "url", "ip", "ipv4", "ipv6", "uuid", "date", "datetime", "time"]] = None
    before: Optional[Union[datetime, date, str]] = None
    after: Optional[Union[datetime, date, str]] = None
    before_time: Optional[str] = Field(default=None, alias="beforeTime")
    after_time: Optional[str] = Field(default=None, alias="afterTime")

    # Enumeration
    enum: Optional[List[Any]] = None

    # Cross-field
    equals: Optional[str] = None
    not_equals: Optional[str] = Field(default=None, alias="notEquals")
    compare: Optional[ValidatorRef] = None
    compare_value: Optional[CompareValueRule] = Field(default=None, alias="compareValue")

    # Store lookups
    unique: Union[bool, UniqueRule] = False
    exists: Union[bool, ExistsRule] = False
    not_exists: Union[bool, ExistsRule] = Field(default=False, alias="notExists")

    # Composite
    array: Optional[ArrayRule] = None
    password_strength: Optional[PasswordStrengthRule] = Field(default=None, alias="passwordStrength")

    # Custom
    custom: Optional[ValidatorRef] = None
    async_custom: Optional[ValidatorRef] = Field(default=None, alias="asyncCustom")

    groups: Optional[List[str]] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def _check_consistency(self):
        if self.range is not None and self.range[0] > self.range[1]:
            raise ValueError(f"range lower bound {self.range[0]} exceeds upper bound {self.range[1]}")
        if self.multiple_of is not None and self.multiple_of == 0:
            raise ValueError("multiple_of must not be zero")
        if isinstance(self.pattern, str):
            re.compile(self.pattern)
        for label, bound in (("before_time", self.before_time), ("after_time", self.after_time)):
            if bound is not None and parse_time_of_day(bound) is None:
                raise ValueError(f"{label} must be a time of day like HH:MM[:SS], got {bound!r}")
        return self

    @property
    def has_io_rules(self) -> bool:
        """True when the rules need a database adapter"""
        return bool(self.unique or self.exists or self.not_exists
                    or (self.compare_value is not None and self.compare_value.target_model is not None))


ArrayRule.model_rebuild()


class FieldRule(_RuleModel):
    """
    Definition of one schema field.

    Args:
        type: Declared value type (also checked during validation)
        enum: Allowed values when type is "enum"
        default: Value, or zero-argument factory, applied on create
        convert: Convert incoming values to `type` before validation
        rules: Validation options (written as `validate` in dict schemas)
    """
    type: Optional[FieldType] = None
    enum: Optional[List[Any]] = None
    default: Any = None
    convert: bool = False
    rules: Optional[ValidateOptions] = Field(default=None, alias="validate")

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set


Schema = Dict[str, FieldRule]


def build_schema(definition: Mapping[str, Any]) -> Schema:
    """
    Build a frozen schema from a mapping of field name to FieldRule or dict.

    Raises:
        pydantic.ValidationError: If a rule is malformed
    """
    schema: Schema = {}
    for field_name, rule in definition.items():
        if isinstance(rule, FieldRule):
            schema[field_name] = rule
        elif isinstance(rule, ValidateOptions):
            schema[field_name] = FieldRule(rules=rule)
        else:
            schema[field_name] = FieldRule.model_validate(rule)
    return schema


# Export main components
__all__ = [
    "FieldRule", "ValidateOptions", "Condition", "CompareValueRule", "UniqueRule",
    "ExistsRule", "PasswordStrengthRule", "ArrayRule", "Schema", "ValidatorRef",
    "FIELD_TYPES", "FORMATS", "build_schema"
]
