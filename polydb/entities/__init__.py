"""
PolyDB Entities

Schema-bound models and the declarative validation engine they run
before every write.
"""

from .model import Model, ModelBuilder, ModelConfig, define_model
from .validation import (
    FieldRule, RuleContext, ValidateOptions, ValidationContext, ValidationEngine,
    ValidatorRegistry, Violation, build_schema, validator,
)

__all__ = [
    'Model',
    'ModelBuilder',
    'ModelConfig',
    'define_model',
    'ValidationEngine',
    'ValidationContext',
    'RuleContext',
    'Violation',
    'FieldRule',
    'ValidateOptions',
    'ValidatorRegistry',
    'build_schema',
    'validator',
]
