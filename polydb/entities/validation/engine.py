"""
Validation Engine - Aggregating Rule Evaluation

✅ All Violations At Once:
The engine evaluates a declarative schema against a record and collects
every violation instead of stopping at the first. Rules of one field run in
a fixed order; rules that consult the store (unique, exists, notExists,
compareValue) read through the adapter of the validation context, so a
validation started inside a transaction sees that transaction's writes.

Key Features:
- Conditional gating with `when` / `required_when`
- Coercions (trim, case) returned on success
- Store-backed uniqueness that ignores the record being updated
- Rule groups and provided-fields-only validation for partial updates
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from decimal import Decimal
import inspect
import json
import logging
import operator
import re

from .formats import (
    check_format, check_type, comparable_datetimes, is_empty, is_number,
    parse_datetime, parse_time_of_day,
)
from .registry import ValidatorRegistry, default_registry
from .rules import (
    ArrayRule, CompareValueRule, Condition, ExistsRule, PasswordStrengthRule,
    Schema, UniqueRule, ValidateOptions,
)
from ...persistence.errors import (
    AggregateValidationError, ConfigurationError, DatabaseError, NotConnectedError,
)

logger = logging.getLogger(__name__)

_MISSING = object()

_COMPARATORS = {
    "=": (operator.eq, "equal to"),
    ">": (operator.gt, "greater than"),
    ">=": (operator.ge, "greater than or equal to"),
    "<": (operator.lt, "less than"),
    "<=": (operator.le, "less than or equal to"),
}

_ALPHANUMERIC = re.compile(r"^[a-zA-Z0-9]+$")
_NUMERIC = re.compile(r"^[0-9]+$")
_ALPHA = re.compile(r"^[a-zA-Z]+$")


@dataclass
class Violation:
    """One failed rule"""
    field: str
    rule: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "rule": self.rule, "message": self.message}


@dataclass
class ValidationContext:
    """
    Where a validation runs.

    Args:
        adapter: Adapter (or transaction view) used by store-backed rules
        collection: Table/collection the record belongs to
        primary_key: Primary key field of that collection
        instance_id: Id of the record being updated, excluded from uniqueness
        model: Model the record belongs to, passed to async validators
    """
    adapter: Any = None
    collection: Optional[str] = None
    primary_key: str = "id"
    instance_id: Any = None
    model: Any = None
    record: Dict[str, Any] = field(default_factory=dict)

    @property
    def session(self) -> Any:
        return getattr(self.adapter, "session", None)


@dataclass
class RuleContext:
    """Second argument of `async_custom` validators"""
    field_name: str
    record: Dict[str, Any]
    instance_id: Any = None
    model: Any = None
    adapter: Any = None


def _fmt(number: Any) -> str:
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def _root_of(adapter: Any) -> Any:
    return getattr(adapter, "root", adapter)


class ValidationEngine:
    """
    Evaluates schemas against records.

    Args:
        registry: Registry used to resolve validators referenced by name
    """

    def __init__(self, registry: Optional[ValidatorRegistry] = None):
        self.registry = registry or default_registry

    async def validate(self, record: Mapping[str, Any], schema: Schema,
                       groups: Optional[Iterable[str]] = None,
                       context: Optional[ValidationContext] = None,
                       only_provided: bool = False,
                       provided_fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Validate a record.

        Args:
            record: Field values to validate
            schema: Field name to FieldRule mapping
            groups: Only rules without groups or sharing one of these run;
                None runs every rule
            context: Adapter, collection and instance for store-backed rules
            only_provided: Validate only fields present in the record
            provided_fields: Explicit set of provided fields (implies only_provided)

        Returns:
            Copy of the record with coercions applied

        Raises:
            AggregateValidationError: One or more rules failed
        """
        ctx = context or ValidationContext()
        raw = dict(record)
        ctx.record = raw
        values = dict(raw)
        active_groups = set(groups) if groups is not None else None
        provided = set(provided_fields) if provided_fields is not None else (
            set(raw) if only_provided else None
        )

        violations: List[Violation] = []
        for field_name, field_rule in schema.items():
            if provided is not None and field_name not in provided:
                continue
            opts = field_rule.rules or ValidateOptions()
            if active_groups is not None and opts.groups and not active_groups.intersection(opts.groups):
                continue

            field_violations, value = await self._validate_value(
                field_name, raw.get(field_name), opts, ctx,
                declared_type=field_rule.type, declared_enum=field_rule.enum,
            )
            violations.extend(field_violations)
            if field_name in raw:
                values[field_name] = value

        if violations:
            logger.debug(f"Validation failed with {len(violations)} violation(s) "
                         f"on {sorted({v.field for v in violations})}")
            raise AggregateValidationError(violations)
        return values

    async def _validate_value(self, name: str, value: Any, opts: ValidateOptions,
                              ctx: ValidationContext, declared_type: Optional[str] = None,
                              declared_enum: Optional[List[Any]] = None,
                              allow_io: bool = True) -> Tuple[List[Violation], Any]:
        violations: List[Violation] = []
        raw = ctx.record

        def fail(rule: str, default: str, field_name: str = name):
            violations.append(Violation(field_name, rule, opts.message or default))

        # 1. gating and presence
        if opts.when is not None and not self._condition_holds(opts.when, raw):
            return violations, value

        required, required_rule = opts.required, "required"
        if not required and opts.required_when is not None and self._condition_holds(opts.required_when, raw):
            required, required_rule = True, "requiredWhen"

        if is_empty(value):
            if required:
                fail(required_rule, f"{name} is required")
            return violations, value

        # 2. type and coercions
        field_type = declared_type or opts.type
        if field_type and not check_type(value, field_type):
            fail("type", f"{name} must be of type {field_type}")

        if isinstance(value, str):
            if opts.trim:
                value = value.strip()
            if opts.to_lower_case:
                value = value.lower()
            if opts.to_upper_case:
                value = value.upper()

        # 3. scalar constraints
        if isinstance(value, str):
            self._check_string(name, value, opts, fail)
        elif is_number(value):
            self._check_number(name, value, opts, fail)
        if opts.format and not check_format(value, opts.format):
            fail("format", f"{name} format is invalid (expected: {opts.format})")
        self._check_temporal(name, value, opts, fail)

        # 4. enum
        allowed_sets = []
        if field_type == "enum" and declared_enum is not None:
            allowed_sets.append(declared_enum)
        if opts.enum is not None and opts.enum is not declared_enum:
            allowed_sets.append(opts.enum)
        for allowed in allowed_sets:
            if value not in allowed:
                fail("enum", f"{name} must be one of: {', '.join(str(a) for a in allowed)}")
                break

        # 5. cross-field comparisons
        if opts.equals is not None and opts.equals in raw and raw[opts.equals] is not None:
            if value != raw[opts.equals]:
                fail("equals", f"{name} must equal {opts.equals}")
        if opts.not_equals is not None and opts.not_equals in raw and raw[opts.not_equals] is not None:
            if value == raw[opts.not_equals]:
                fail("notEquals", f"{name} must not equal {opts.not_equals}")
        if opts.compare is not None:
            await self._run_compare(name, value, opts, raw, fail)

        if allow_io:
            # 6. comparison against a stored value
            if opts.compare_value is not None:
                await self._check_compare_value(name, value, opts.compare_value, ctx, fail)

            # 7. uniqueness
            if opts.unique:
                rule = opts.unique if isinstance(opts.unique, UniqueRule) else UniqueRule()
                await self._check_unique(name, value, rule, ctx, fail)

            # 8. referential checks
            if opts.exists:
                rule = opts.exists if isinstance(opts.exists, ExistsRule) else ExistsRule()
                await self._check_exists(name, value, rule, ctx, fail, expect=True)
            if opts.not_exists:
                rule = opts.not_exists if isinstance(opts.not_exists, ExistsRule) else ExistsRule()
                await self._check_exists(name, value, rule, ctx, fail, expect=False)

        # 9. arrays
        if opts.array is not None:
            value = await self._check_array(name, value, opts.array, ctx, violations, fail)

        # 10. password strength
        if opts.password_strength is not None and isinstance(value, str):
            self._check_password(name, value, opts.password_strength, fail)

        # 11. custom validators
        if opts.custom is not None:
            await self._run_custom("custom", opts.custom, name, value, raw, fail)
        if opts.async_custom is not None:
            rule_ctx = RuleContext(
                field_name=name,
                record=raw,
                instance_id=ctx.instance_id,
                model=ctx.model,
                adapter=ctx.adapter,
            )
            await self._run_custom("asyncCustom", opts.async_custom, name, value, rule_ctx, fail)

        return violations, value

    # Conditions
    def _condition_holds(self, condition: Condition, raw: Mapping[str, Any]) -> bool:
        other = raw.get(condition.field)
        if condition.check is not None:
            return bool(self.registry.resolve(condition.check)(other, raw))
        if condition.has_is:
            return other == condition.is_
        if condition.has_is_not:
            return other != condition.is_not
        return bool(other)

    # Scalar rules
    def _check_string(self, name: str, value: str, opts: ValidateOptions, fail):
        if opts.length is not None and len(value) != opts.length:
            fail("length", f"{name} must be exactly {opts.length} characters")
        if opts.min is not None and len(value) < opts.min:
            fail("min", f"{name} must be at least {_fmt(opts.min)} characters")
        if opts.max is not None and len(value) > opts.max:
            fail("max", f"{name} must be at most {_fmt(opts.max)} characters")
        if opts.pattern is not None and not re.search(opts.pattern, value):
            fail("pattern", f"{name} format is invalid")
        if opts.alphanumeric and not _ALPHANUMERIC.match(value):
            fail("alphanumeric", f"{name} must contain only alphanumeric characters")
        if opts.numeric and not _NUMERIC.match(value):
            fail("numeric", f"{name} must contain only numbers")
        if opts.alpha and not _ALPHA.match(value):
            fail("alpha", f"{name} must contain only letters")
        if opts.lowercase and value != value.lower():
            fail("lowercase", f"{name} must be lowercase")
        if opts.uppercase and value != value.upper():
            fail("uppercase", f"{name} must be uppercase")
        if opts.starts_with is not None and not value.startswith(opts.starts_with):
            fail("startsWith", f'{name} must start with "{opts.starts_with}"')
        if opts.ends_with is not None and not value.endswith(opts.ends_with):
            fail("endsWith", f'{name} must end with "{opts.ends_with}"')
        if opts.contains is not None and opts.contains not in value:
            fail("contains", f'{name} must contain "{opts.contains}"')

    def _check_number(self, name: str, value: Any, opts: ValidateOptions, fail):
        if opts.min is not None and value < opts.min:
            fail("min", f"{name} must be at least {_fmt(opts.min)}")
        if opts.max is not None and value > opts.max:
            fail("max", f"{name} must be at most {_fmt(opts.max)}")
        if opts.range is not None:
            low, high = opts.range
            if not low <= value <= high:
                fail("range", f"{name} must be between {_fmt(low)} and {_fmt(high)}")
        if opts.integer and value % 1 != 0:
            fail("integer", f"{name} must be an integer")
        if opts.positive and not value > 0:
            fail("positive", f"{name} must be positive")
        if opts.negative and not value < 0:
            fail("negative", f"{name} must be negative")
        if opts.multiple_of is not None:
            step = Decimal(str(opts.multiple_of)) if isinstance(value, Decimal) else opts.multiple_of
            if value % step != 0:
                fail("multipleOf", f"{name} must be a multiple of {_fmt(opts.multiple_of)}")

    def _check_temporal(self, name: str, value: Any, opts: ValidateOptions, fail):
        if opts.before is not None or opts.after is not None:
            moment = parse_datetime(value)
            if moment is not None:
                for rule, bound_value, holds in (
                    ("before", opts.before, lambda m, b: m < b),
                    ("after", opts.after, lambda m, b: m > b),
                ):
                    bound = parse_datetime(bound_value) if bound_value is not None else None
                    if bound is None:
                        continue
                    left, right = comparable_datetimes(moment, bound)
                    if not holds(left, right):
                        fail(rule, f"{name} must be {rule} {bound_value}")

        if opts.before_time is not None or opts.after_time is not None:
            seconds = parse_time_of_day(value)
            if seconds is not None:
                if opts.before_time is not None and not seconds < parse_time_of_day(opts.before_time):
                    fail("beforeTime", f"{name} must be before {opts.before_time}")
                if opts.after_time is not None and not seconds > parse_time_of_day(opts.after_time):
                    fail("afterTime", f"{name} must be after {opts.after_time}")

    def _check_password(self, name: str, value: str, rule: PasswordStrengthRule, fail):
        if rule.min_length is not None and len(value) < rule.min_length:
            fail("passwordStrength", f"{name} must be at least {rule.min_length} characters")
        if rule.require_uppercase and not re.search(r"[A-Z]", value):
            fail("passwordStrength", f"{name} must contain at least one uppercase letter")
        if rule.require_lowercase and not re.search(r"[a-z]", value):
            fail("passwordStrength", f"{name} must contain at least one lowercase letter")
        if rule.require_numbers and not re.search(r"[0-9]", value):
            fail("passwordStrength", f"{name} must contain at least one number")
        if rule.require_symbols and not re.search(r"[^a-zA-Z0-9]", value):
            fail("passwordStrength", f"{name} must contain at least one symbol")

    async def _check_array(self, name: str, value: Any, rule: ArrayRule, ctx: ValidationContext,
                           violations: List[Violation], fail) -> Any:
        if not isinstance(value, (list, tuple)):
            fail("array", f"{name} must be an array")
            return value

        if rule.length is not None and len(value) != rule.length:
            fail("length", f"{name} array length must be {rule.length}")
        if rule.min is not None and len(value) < rule.min:
            fail("min", f"{name} array length must be at least {rule.min}")
        if rule.max is not None and len(value) > rule.max:
            fail("max", f"{name} array length must be at most {rule.max}")
        if rule.unique_items:
            keys = [json.dumps(item, sort_keys=True, default=str) for item in value]
            if len(set(keys)) != len(keys):
                fail("uniqueItems", f"{name} array items must be unique, duplicate found")

        items = list(value)
        for index, item in enumerate(items):
            item_name = f"{name}[{index}]"
            if rule.type and not check_type(item, rule.type):
                fail("type", f"{item_name} must be of type {rule.type}", field_name=item_name)
            if rule.items is not None:
                item_violations, items[index] = await self._validate_value(
                    item_name, item, rule.items, ctx, allow_io=False,
                )
                violations.extend(item_violations)
        return items

    # Callables
    async def _call(self, fn: Any, *args) -> Any:
        result = fn(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run_compare(self, name: str, value: Any, opts: ValidateOptions,
                           raw: Mapping[str, Any], fail):
        fn = self.registry.resolve(opts.compare)
        try:
            result = await self._call(fn, value, raw)
        except KeyError:
            # the callable referenced a field the record does not carry
            return
        except DatabaseError:
            raise
        except Exception as e:
            fail("compare", f"{name} validation error: {e}")
            return
        if result is not True:
            fail("compare", result if isinstance(result, str) else f"{name} validation failed")

    async def _run_custom(self, rule: str, ref: Any, name: str, value: Any, extra: Any, fail):
        fn = self.registry.resolve(ref)
        try:
            result = await self._call(fn, value, extra)
        except DatabaseError:
            raise
        except Exception as e:
            logger.warning(f"Validator for {name} raised: {e}")
            fail(rule, f"{name} validation error: {e}")
            return
        if result is not True:
            fail(rule, result if isinstance(result, str) else f"{name} validation failed")

    # Store-backed rules
    def _store(self, ctx: ValidationContext, rule: str) -> Any:
        if ctx.adapter is None:
            raise NotConnectedError(f"The {rule} rule requires a database adapter")
        return ctx.adapter

    def _collection(self, ctx: ValidationContext, rule: str, collection: Optional[str] = None) -> str:
        collection = collection or ctx.collection
        if not collection:
            raise ConfigurationError(f"The {rule} rule requires a collection")
        return collection

    async def _check_unique(self, name: str, value: Any, rule: UniqueRule,
                            ctx: ValidationContext, fail):
        adapter = self._store(ctx, "unique")
        collection = self._collection(ctx, "unique")
        where: Dict[str, Any] = {name: value, **(rule.where or {})}
        for key, excluded in (rule.exclude or {}).items():
            where[key] = {"$ne": excluded}

        # at most one match can be the instance itself
        rows = await adapter.find(collection, where, limit=2)
        if ctx.instance_id is not None:
            rows = [r for r in rows if str(r.get(ctx.primary_key)) != str(ctx.instance_id)]
        if rows:
            fail("unique", f"{name} already exists, must be unique")

    async def _check_exists(self, name: str, value: Any, rule: ExistsRule,
                            ctx: ValidationContext, fail, expect: bool):
        rule_name = "exists" if expect else "notExists"
        adapter = self._store(ctx, rule_name)
        collection = self._collection(ctx, rule_name, rule.collection)

        where = dict(rule.where or {})
        placeholders = [key for key, v in where.items() if v is None]
        for key in placeholders:
            where[key] = value
        if not placeholders:
            where.setdefault(name, value)

        found = await adapter.exists(collection, where)
        if expect and not found:
            fail(rule_name, f"{name} does not exist in {collection}")
        elif not expect and found:
            fail(rule_name, f"{name} already exists in {collection}")

    def _target_store(self, target: Any, ctx: ValidationContext) -> Tuple[Any, str]:
        """Adapter and collection of a compareValue target model"""
        if isinstance(target, str):
            return self._store(ctx, "compareValue"), target

        collection = getattr(target, "collection", None)
        adapter = getattr(target, "adapter", None)
        if collection is None:
            raise ConfigurationError(f"compareValue target {target!r} has no collection")
        if adapter is None or (ctx.adapter is not None and _root_of(ctx.adapter) is _root_of(adapter)):
            adapter = self._store(ctx, "compareValue")
        return adapter, collection

    async def _check_compare_value(self, name: str, value: Any, rule: CompareValueRule,
                                   ctx: ValidationContext, fail):
        raw = ctx.record
        target_value = _MISSING

        if rule.target_model is None:
            if raw.get(rule.target_field) is not None:
                target_value = raw[rule.target_field]
            elif ctx.instance_id is not None and ctx.adapter is not None and ctx.collection:
                stored = await ctx.adapter.find_one(ctx.collection, {ctx.primary_key: ctx.instance_id})
                if stored is not None and stored.get(rule.target_field) is not None:
                    target_value = stored[rule.target_field]
        else:
            adapter, collection = self._target_store(rule.target_model, ctx)
            stored = await adapter.find_one(collection, rule.where or {})
            if stored is None:
                fail("compareValue", f"{name} validation failed: no matching record in {collection}")
                return
            if stored.get(rule.target_field) is not None:
                target_value = stored[rule.target_field]

        if target_value is _MISSING:
            logger.debug(f"compareValue on {name} skipped: {rule.target_field} is not available")
            return

        compare, label = _COMPARATORS[rule.compare]
        try:
            holds = compare(value, target_value)
        except TypeError:
            holds = False
        if not holds:
            fail("compareValue", f"{name} must be {label} {rule.target_field} ({target_value})")


# Export main components
__all__ = ["ValidationEngine", "ValidationContext", "RuleContext", "Violation"]
