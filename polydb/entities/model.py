"""
Model Layer - Schema-Bound Collections

🏗️ Models Without Subclassing:
A model is a plain ModelConfig (schema, virtual-field computers, scope
predicates, lifecycle hooks) bound to a collection/table name and an adapter
by a ModelBuilder. Every create and update runs the ValidationEngine first; a
record that fails validation never reaches the adapter.

    users = (ModelBuilder("users")
             .schema({"email": {"validate": {"required": True, "format": "email", "unique": True}}})
             .virtual("domain", lambda r: r["email"].split("@")[1])
             .scope("active", {"active": True})
             .hook("before_create", lambda r: r.setdefault("source", "web"))
             .soft_delete()
             .bind(adapter))

    user = await users.create({"email": "a@b.com", "active": True})
    active = await users.scope("active").find()

Key Features:
- Lifecycle hooks around validation and every write (sync or async)
- Soft delete with with_deleted() / only_deleted() reads, restore and force_delete
- Primary key defaults to the adapter's native key ("_id" on MongoDB)
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
import copy
import inspect
import logging

from .validation.engine import ValidationContext, ValidationEngine
from .validation.formats import convert_value
from .validation.registry import ValidatorRegistry
from .validation.rules import FieldRule, Schema, build_schema
from ..persistence.access import DatabaseContext, get_default_context
from ..persistence.adapters.interface import DatabaseAdapter, Record
from ..persistence.errors import ConfigurationError
from ..persistence.manager import DEFAULT_CONNECTION

logger = logging.getLogger(__name__)

VirtualField = Callable[[Record], Any]
ScopePredicate = Union[Mapping[str, Any], Callable[..., Mapping[str, Any]]]
LifecycleHook = Callable[[Dict[str, Any]], Optional[Awaitable[None]]]

CREATE_GROUP = "create"
UPDATE_GROUP = "update"

HOOK_EVENTS = (
    "before_validate", "after_validate",
    "before_create", "after_create",
    "before_update", "after_update",
    "before_save", "after_save",
    "before_delete", "after_delete",
)


@dataclass
class ModelConfig:
    """
    Static definition of a model.

    Args:
        name: Model name
        collection: Table/collection name (defaults to name)
        schema: Field name to FieldRule mapping
        primary_key: Primary key field; the adapter's native key when None
        virtuals: Computed fields attached to every returned record
        scopes: Named where-mappings, or callables returning one
        timestamps: Maintain created_at / updated_at
        hooks: Lifecycle event name to callables receiving the record
        soft_delete: delete() stamps `deleted_at_field` instead of removing
        deleted_at_field: Column holding the soft-delete timestamp
    """
    name: str
    collection: Optional[str] = None
    schema: Schema = field(default_factory=dict)
    primary_key: Optional[str] = None
    virtuals: Dict[str, VirtualField] = field(default_factory=dict)
    scopes: Dict[str, ScopePredicate] = field(default_factory=dict)
    timestamps: bool = False
    hooks: Dict[str, List[LifecycleHook]] = field(default_factory=dict)
    soft_delete: bool = False
    deleted_at_field: str = "deleted_at"

    def __post_init__(self):
        if self.collection is None:
            self.collection = self.name
        clashes = set(self.virtuals) & set(self.schema)
        if clashes:
            raise ConfigurationError(f"Virtual fields shadow schema fields: {', '.join(sorted(clashes))}")
        unknown = set(self.hooks) - set(HOOK_EVENTS)
        if unknown:
            raise ConfigurationError(f"Unknown lifecycle hooks: {', '.join(sorted(unknown))}")


class Model:
    """
    A ModelConfig bound to an adapter.

    When no adapter is bound, the connection named `connection` is looked
    up on the database context at call time.
    """

    def __init__(self, config: ModelConfig, adapter: Optional[DatabaseAdapter] = None,
                 engine: Optional[ValidationEngine] = None,
                 context: Optional[DatabaseContext] = None,
                 connection: str = DEFAULT_CONNECTION):
        self.config = config
        self.engine = engine or ValidationEngine()
        self.connection = connection
        self._adapter = adapter
        self._context = context
        self._base_where: Dict[str, Any] = {}
        self._trashed = "exclude"

    def __repr__(self):
        return f"Model({self.name!r}, collection={self.collection!r})"

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def collection(self) -> str:
        return self.config.collection

    @property
    def schema(self) -> Schema:
        return self.config.schema

    @property
    def primary_key(self) -> str:
        return self.config.primary_key or self.adapter.native_primary_key

    @property
    def adapter(self) -> DatabaseAdapter:
        if self._adapter is not None:
            return self._adapter
        context = self._context or get_default_context()
        return context.get_database(self.connection)

    def _derive(self, **changes) -> 'Model':
        derived = copy.copy(self)
        derived._base_where = dict(self._base_where)
        for key, value in changes.items():
            setattr(derived, key, value)
        return derived

    def with_session(self, adapter: DatabaseAdapter) -> 'Model':
        """Same model bound to a transaction view"""
        return self._derive(_adapter=adapter)

    async def transaction(self, fn: Callable[['Model'], Awaitable[Any]]) -> Any:
        """Run fn with this model bound to a new transaction"""
        return await self.adapter.transaction(lambda tx: fn(self.with_session(tx)))

    def scope(self, name: str, *args, **kwargs) -> 'Model':
        """Model whose reads are restricted by a named scope; scopes chain"""
        predicate = self.config.scopes.get(name)
        if predicate is None:
            raise KeyError(f"Model '{self.name}' has no scope '{name}'")
        where = predicate(*args, **kwargs) if callable(predicate) else predicate
        derived = self._derive()
        derived._base_where.update(where)
        return derived

    def with_deleted(self) -> 'Model':
        """Model whose reads include soft-deleted records"""
        return self._derive(_trashed="include")

    def only_deleted(self) -> 'Model':
        """Model whose reads return soft-deleted records only"""
        return self._derive(_trashed="only")

    # Record processing
    def _prepare(self, data: Mapping[str, Any], apply_defaults: bool) -> Dict[str, Any]:
        record = {k: v for k, v in data.items() if k not in self.config.virtuals}
        for field_name, rule in self.schema.items():
            if apply_defaults and record.get(field_name) is None and rule.has_default:
                default = rule.default
                record[field_name] = default() if callable(default) else copy.deepcopy(default)
            if rule.convert and field_name in record:
                record[field_name] = convert_value(record[field_name], rule.type)
        return record

    def _present(self, record: Optional[Record]) -> Optional[Record]:
        if record is None:
            return None
        result = dict(record)
        for name, compute in self.config.virtuals.items():
            result[name] = compute(result)
        return result

    def _trash_filter(self, where: Mapping[str, Any]) -> Dict[str, Any]:
        where = dict(where)
        deleted_at = self.config.deleted_at_field
        if not self.config.soft_delete or deleted_at in where:
            return where
        if self._trashed == "exclude":
            where[deleted_at] = None
        elif self._trashed == "only":
            where[deleted_at] = {"$ne": None}
        return where

    def _where(self, where: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        return self._trash_filter({**self._base_where, **(where or {})})

    async def _run_hooks(self, event: str, record: Dict[str, Any]):
        for hook in self.config.hooks.get(event, ()):
            result = hook(record)
            if inspect.isawaitable(result):
                await result

    async def validate(self, data: Mapping[str, Any], groups: Optional[Iterable[str]] = None,
                       instance_id: Any = None, only_provided: bool = False) -> Dict[str, Any]:
        """
        Validate data against the schema through this model's adapter.

        Returns:
            The record with coercions applied

        Raises:
            AggregateValidationError: One or more rules failed
        """
        context = ValidationContext(
            adapter=self.adapter,
            collection=self.collection,
            primary_key=self.primary_key,
            instance_id=instance_id,
            model=self,
        )
        return await self.engine.validate(
            data, self.schema, groups=groups, context=context, only_provided=only_provided
        )

    async def _validate_with_hooks(self, record: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        await self._run_hooks("before_validate", record)
        record = await self.validate(record, **kwargs)
        await self._run_hooks("after_validate", record)
        return record

    # Writes
    async def create(self, data: Mapping[str, Any],
                     groups: Optional[Iterable[str]] = (CREATE_GROUP,)) -> Record:
        """
        Validate and insert a record.

        Hooks run in the order before_validate, after_validate,
        before_create, before_save, then after_create and after_save once
        the insert succeeded. Changes a hook makes to the record are kept.

        Returns:
            The stored record (with its primary key and virtual fields)

        Raises:
            AggregateValidationError: Validation failed; nothing was written
            IntegrityError: The backend rejected the insert
        """
        record = self._prepare(data, apply_defaults=True)
        record = await self._validate_with_hooks(record, groups=groups)
        await self._run_hooks("before_create", record)
        await self._run_hooks("before_save", record)
        if self.config.timestamps:
            now = datetime.now()
            record.setdefault("created_at", now)
            record["updated_at"] = now

        primary_key = self.primary_key
        result = await self.adapter.insert(self.collection, record, primary_key=primary_key)
        if result.inserted_id is not None:
            record[primary_key] = result.inserted_id
        logger.debug(f"Created {self.name} {record.get(primary_key)}")

        await self._run_hooks("after_create", record)
        await self._run_hooks("after_save", record)
        return self._present(record)

    async def update(self, record_id: Any, data: Mapping[str, Any],
                     groups: Optional[Iterable[str]] = (UPDATE_GROUP,)) -> Optional[Record]:
        """
        Validate the provided fields and update one record.

        before_* hooks receive the changes; after_update and after_save
        receive the updated record.

        Returns:
            The updated record, or None when no record has that id
        """
        primary_key = self.primary_key
        changes = self._prepare(data, apply_defaults=False)
        changes.pop(primary_key, None)
        changes = await self._validate_with_hooks(
            changes, groups=groups, instance_id=record_id, only_provided=True
        )
        await self._run_hooks("before_update", changes)
        await self._run_hooks("before_save", changes)
        if self.config.timestamps:
            changes["updated_at"] = datetime.now()
        if not changes:
            return await self.find_by_id(record_id)

        result = await self.adapter.update(self.collection, self._trash_filter({primary_key: record_id}), changes)
        if result.affected_rows == 0:
            logger.debug(f"Update of {self.name} {record_id} matched no record")
            return None
        updated = await self.find_by_id(record_id)
        if updated is not None:
            await self._run_hooks("after_update", updated)
            await self._run_hooks("after_save", updated)
        return updated

    async def delete(self, record_id: Any) -> bool:
        """
        Delete one record, or stamp it as deleted when soft delete is on.

        Returns:
            False when no (live) record has that id
        """
        return await self._delete(record_id, force=False)

    async def force_delete(self, record_id: Any) -> bool:
        """Remove a record for good, soft-deleted or not"""
        return await self.with_deleted()._delete(record_id, force=True)

    async def _delete(self, record_id: Any, force: bool) -> bool:
        primary_key = self.primary_key
        existing = await self.find_by_id(record_id)
        if existing is None:
            return False
        await self._run_hooks("before_delete", existing)

        if self.config.soft_delete and not force:
            where = {primary_key: record_id, self.config.deleted_at_field: None}
            result = await self.adapter.update(
                self.collection, where, {self.config.deleted_at_field: datetime.now()}
            )
        else:
            result = await self.adapter.delete(self.collection, {primary_key: record_id})

        deleted = result.affected_rows > 0
        if deleted:
            await self._run_hooks("after_delete", existing)
        return deleted

    async def restore(self, record_id: Any) -> Optional[Record]:
        """
        Clear the soft-delete stamp of a record.

        Returns:
            The restored record, or None when no soft-deleted record has that id

        Raises:
            ConfigurationError: The model does not use soft delete
        """
        if not self.config.soft_delete:
            raise ConfigurationError(f"Model '{self.name}' does not use soft delete")
        deleted_at = self.config.deleted_at_field
        where = {self.primary_key: record_id, deleted_at: {"$ne": None}}
        result = await self.adapter.update(self.collection, where, {deleted_at: None})
        if result.affected_rows == 0:
            return None
        return await self.with_deleted().find_by_id(record_id)

    # Reads
    async def find_by_id(self, record_id: Any) -> Optional[Record]:
        return await self.find_one({self.primary_key: record_id})

    async def find(self, where: Optional[Mapping[str, Any]] = None,
                   limit: Optional[int] = None) -> List[Record]:
        rows = await self.adapter.find(self.collection, self._where(where), limit=limit)
        return [self._present(row) for row in rows]

    async def find_one(self, where: Optional[Mapping[str, Any]] = None) -> Optional[Record]:
        rows = await self.adapter.find(self.collection, self._where(where), limit=1)
        return self._present(rows[0]) if rows else None

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        return len(await self.adapter.find(self.collection, self._where(where)))


class ModelBuilder:
    """Fluent construction of a ModelConfig and its bound Model"""

    def __init__(self, name: str, collection: Optional[str] = None):
        self._name = name
        self._collection = collection
        self._schema: Schema = {}
        self._primary_key: Optional[str] = None
        self._virtuals: Dict[str, VirtualField] = {}
        self._scopes: Dict[str, ScopePredicate] = {}
        self._timestamps = False
        self._hooks: Dict[str, List[LifecycleHook]] = {}
        self._soft_delete = False
        self._deleted_at_field = "deleted_at"
        self._registry: Optional[ValidatorRegistry] = None

    def schema(self, definition: Mapping[str, Any]) -> 'ModelBuilder':
        self._schema.update(build_schema(definition))
        return self

    def field(self, name: str, rule: Any = None, **options) -> 'ModelBuilder':
        if isinstance(rule, FieldRule):
            self._schema[name] = rule
        else:
            self._schema.update(build_schema({name: rule if rule is not None else options}))
        return self

    def virtual(self, name: str, compute: VirtualField) -> 'ModelBuilder':
        self._virtuals[name] = compute
        return self

    def scope(self, name: str, predicate: ScopePredicate) -> 'ModelBuilder':
        self._scopes[name] = predicate
        return self

    def primary_key(self, name: str) -> 'ModelBuilder':
        self._primary_key = name
        return self

    def timestamps(self, enabled: bool = True) -> 'ModelBuilder':
        self._timestamps = enabled
        return self

    def hook(self, event: str, fn: LifecycleHook) -> 'ModelBuilder':
        """Register a lifecycle hook; several hooks per event run in registration order"""
        if event not in HOOK_EVENTS:
            raise ConfigurationError(f"Unknown lifecycle hook: {event}")
        self._hooks.setdefault(event, []).append(fn)
        return self

    def soft_delete(self, enabled: bool = True, field_name: str = "deleted_at") -> 'ModelBuilder':
        self._soft_delete = enabled
        self._deleted_at_field = field_name
        return self

    def validators(self, registry: ValidatorRegistry) -> 'ModelBuilder':
        """Resolve named validators against this registry instead of the default one"""
        self._registry = registry
        return self

    def build(self) -> ModelConfig:
        return ModelConfig(
            name=self._name,
            collection=self._collection,
            schema=dict(self._schema),
            primary_key=self._primary_key,
            virtuals=dict(self._virtuals),
            scopes=dict(self._scopes),
            timestamps=self._timestamps,
            hooks={event: list(fns) for event, fns in self._hooks.items()},
            soft_delete=self._soft_delete,
            deleted_at_field=self._deleted_at_field,
        )

    def bind(self, adapter: Optional[DatabaseAdapter] = None,
             context: Optional[DatabaseContext] = None,
             connection: str = DEFAULT_CONNECTION) -> Model:
        """Build the config and bind it to an adapter (or a named connection)"""
        return Model(
            self.build(),
            adapter=adapter,
            engine=ValidationEngine(self._registry),
            context=context,
            connection=connection,
        )


def define_model(name: str, schema: Mapping[str, Any], adapter: Optional[DatabaseAdapter] = None,
                 **options) -> Model:
    """Shorthand for ModelBuilder(name).schema(schema).bind(adapter)"""
    builder = ModelBuilder(name, options.pop("collection", None)).schema(schema)
    if "primary_key" in options:
        builder.primary_key(options.pop("primary_key"))
    if options.pop("timestamps", False):
        builder.timestamps()
    if options.pop("soft_delete", False):
        builder.soft_delete()
    for virtual_name, compute in options.pop("virtuals", {}).items():
        builder.virtual(virtual_name, compute)
    for scope_name, predicate in options.pop("scopes", {}).items():
        builder.scope(scope_name, predicate)
    for event, fns in options.pop("hooks", {}).items():
        for fn in (fns if isinstance(fns, (list, tuple)) else [fns]):
            builder.hook(event, fn)
    if options:
        raise TypeError(f"Unexpected model options: {', '.join(sorted(options))}")
    return builder.bind(adapter)


# Export main components
__all__ = [
    "Model", "ModelConfig", "ModelBuilder", "define_model", "CREATE_GROUP", "UPDATE_GROUP",
    "HOOK_EVENTS", "LifecycleHook",
]
