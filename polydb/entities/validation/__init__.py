"""
PolyDB Validation

Declarative field rules, the aggregating validation engine and the
registry of named validator callables.
"""

from .engine import RuleContext, ValidationContext, ValidationEngine, Violation
from .formats import check_format, check_type, convert_value
from .registry import ValidatorNotFoundError, ValidatorRegistry, default_registry, validator
from .rules import (
    ArrayRule, CompareValueRule, Condition, ExistsRule, FieldRule, PasswordStrengthRule,
    Schema, UniqueRule, ValidateOptions, build_schema,
)

__all__ = [
    # Engine
    'ValidationEngine',
    'ValidationContext',
    'RuleContext',
    'Violation',

    # Rules
    'FieldRule',
    'ValidateOptions',
    'Condition',
    'CompareValueRule',
    'UniqueRule',
    'ExistsRule',
    'PasswordStrengthRule',
    'ArrayRule',
    'Schema',
    'build_schema',

    # Named validators
    'ValidatorRegistry',
    'ValidatorNotFoundError',
    'default_registry',
    'validator',

    # Matchers
    'check_format',
    'check_type',
    'convert_value',
]
