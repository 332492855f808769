"""
Entity Lifecycle Engine

compile_entity() turns a compiled Schema into an Entity subclass named after the
entity. The subclass carries one Attribute descriptor per schema property, so
``user.email`` reads and writes the underlying attribute map; the class is built once
and cached by the registry.

Lifecycle:
    New (constructed) --save()--> Persisted --delete()--> Deleted
    Hydrated (get/find) is equivalent to Persisted.

save() runs, in order: relation resolution, validation, unique-index checks,
timestamps, optimistic versioning, the create guard and a conditional PutItem. The
unique-index check is a Query followed by the PutItem; it is not atomic, so two
concurrent saves can both pass the check. Only the conditional write itself is
enforced by DynamoDB.
"""

import functools
import logging
import operator
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, Union

from boto3.dynamodb.conditions import Attr, Key

from ..core import bulk, pagination
from ..core.pagination import FindResult
from ..exceptions import (
    ConfigurationError,
    MissingIndexValueError,
    RelationNotFoundError,
    UniqueConstraintViolation,
    ValidationError,
)
from ..utils import coerce_datetime, dumps, to_epoch_millis, to_jsonable, utc_now
from .schema import CREATED_AT, UPDATED_AT, IndexDefinition, Schema, related_value, to_store_value
from .update import UpdateAction, UpdateSpec

logger = logging.getLogger(__name__)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _store_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return to_epoch_millis(value)
    return to_store_value(value)


def _and_all(conditions: List[Any]):
    return functools.reduce(operator.and_, conditions)


class Attribute:
    """Data descriptor exposing one schema property of an entity."""

    def __init__(self, name: str):
        self.name = name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance._data.get(self.name)

    def __set__(self, instance, value):
        instance._data[self.name] = value

    def __delete__(self, instance):
        instance._data.pop(self.name, None)


class Entity:
    """
    Base class of every compiled entity.

    Wraps a mutable attribute map, the ``is_new`` flag and a read-only snapshot of the
    attributes as they were when the instance was constructed or last saved.
    """

    schema: ClassVar[Schema]
    registry: ClassVar[Any]

    def __init__(self, data: Optional[Mapping[str, Any]] = None, is_new: bool = True):
        self._data: Dict[str, Any] = dict(data or {})
        self._is_new = is_new
        self._deleted = False
        self._snapshot = MappingProxyType(dict(self._data))

        for name, prop in self.schema.properties.items():
            if self._data.get(name) is None and prop.has_default:
                self._data[name] = prop.default_value()

    # ------------------------------------------------------------------
    # Attribute access
    # ------------------------------------------------------------------

    @property
    def is_new(self) -> bool:
        return self._is_new

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def snapshot(self) -> Mapping[str, Any]:
        """Attributes as loaded, constructed or last saved (read-only)."""
        return self._snapshot

    def __getitem__(self, name: str) -> Any:
        return self._data[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._data[name] = value

    def __contains__(self, name: str) -> bool:
        return name in self._data

    def to_dict(self) -> Dict[str, Any]:
        """Shallow copy of the attribute map."""
        return dict(self._data)

    def to_json(self) -> Dict[str, Any]:
        """JSON-compatible form (datetimes as ISO strings, nested entities as dicts)."""
        return to_jsonable(self._data)

    def to_json_string(self, **kwargs) -> str:
        return dumps(self._data, **kwargs)

    def to_record(self) -> Dict[str, Any]:
        """DynamoDB record form of this entity."""
        return self.schema.to_record(self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r}, is_new={self._is_new})"

    @property
    def client(self):
        return self.registry.client

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def hydrate(cls, record: Mapping[str, Any]) -> 'Entity':
        """Build a persisted entity from a DynamoDB record."""
        return cls(cls.schema.from_record(dict(record)), is_new=False)

    @classmethod
    def from_json(cls, text: str) -> 'Entity':
        """Build a new entity from JSON text, reviving ISO-8601 strings into datetimes."""
        return cls(cls.schema.parse_json(text))

    # ------------------------------------------------------------------
    # save / delete
    # ------------------------------------------------------------------

    def save(self) -> 'Entity':
        """
        Validate and persist this entity with a conditional PutItem.

        Returns:
            self, now persisted

        Raises:
            RelationNotFoundError: A relation value does not resolve to a stored entity
            ValidationError: The entity fails schema validation
            MissingIndexValueError: A unique index key value is empty
            UniqueConstraintViolation: Another record holds the unique index values
            UnsupportedVersionTypeError: The version property type is not supported
            ConstraintViolation: The create guard or the version check failed
            StoreError: Any other store failure
        """
        schema = self.schema

        self._resolve_relations()

        errors = schema.validate_data(self._data)
        if errors:
            logger.debug(f"Validation failed for {schema.name}: {errors}")
            raise ValidationError(f"{schema.name} failed validation", errors=errors)

        for index in schema.indexes.values():
            if index.unique:
                self._check_unique(index)

        now = utc_now()
        if schema.timestamps:
            if self._is_new:
                self._data[CREATED_AT] = now
                self._data[UPDATED_AT] = now
            else:
                # updatedAt is restored, not advanced
                self._data[CREATED_AT] = self._snapshot.get(CREATED_AT)
                self._data[UPDATED_AT] = self._snapshot.get(UPDATED_AT)

        item = schema.to_record(self._data)
        conditions = []

        version = schema.version
        if version:
            kind = schema.version_kind
            previous = self._snapshot.get(version)
            new_version = None
            if previous is not None:
                if kind == 'integer':
                    conditions.append(Attr(version).eq(previous))
                    new_version = previous + 1
                else:
                    conditions.append(Attr(version).eq(to_epoch_millis(coerce_datetime(previous))))
                    new_version = now
            elif item.get(version) is None:
                new_version = 1 if kind == 'integer' else now
            if new_version is not None:
                self._data[version] = new_version
                item[version] = _store_value(new_version)

        if self._is_new:
            for field in schema.key.get_key_fields():
                conditions.append(Attr(field).not_exists())

        params: Dict[str, Any] = {'TableName': schema.table_name, 'Item': item}
        if conditions:
            params['ConditionExpression'] = _and_all(conditions)

        self.client.put(**params)
        logger.info(f"Saved {schema.name} {schema.project_key(self._data)}")

        self._is_new = False
        self._snapshot = MappingProxyType(dict(self._data))
        return self

    def delete(self) -> None:
        """Delete this entity by primary key; store errors propagate."""
        key = self.schema.project_key(self._data)
        self.client.delete(TableName=self.schema.table_name, Key=key)
        self._deleted = True
        logger.info(f"Deleted {self.schema.name} {key}")

    def _resolve_relations(self) -> None:
        for name, relation in self.schema.relations.items():
            value = self._data.get(name)
            if not value or isinstance(value, Entity):
                continue
            ref_cls = self.registry.model(relation.ref)
            resolved = ref_cls.get(value)
            if resolved is None:
                raise RelationNotFoundError(self.schema.name, name, value)
            self._data[name] = resolved

    def _index_value(self, attribute: str) -> Tuple[str, Any]:
        """Record attribute name and value backing an index key."""
        prop = self.schema.properties[attribute]
        if prop.relation:
            value = related_value(self._data.get(attribute), prop.relation.foreign_key, len(prop.relation.join) == 1)
            return prop.relation.local_key, _store_value(value)
        return attribute, _store_value(self._data.get(attribute))

    def _check_unique(self, index: IndexDefinition) -> None:
        hash_attr, hash_value = self._index_value(index.hash_key)
        if _is_empty(hash_value):
            raise MissingIndexValueError(index.name, hash_attr, 'hashKey')
        key_condition = Key(hash_attr).eq(hash_value)
        values = {hash_attr: hash_value}

        if index.range_key:
            range_attr, range_value = self._index_value(index.range_key)
            if _is_empty(range_value):
                raise MissingIndexValueError(index.name, range_attr, 'rangeKey')
            key_condition = key_condition & Key(range_attr).eq(range_value)
            values[range_attr] = range_value

        params: Dict[str, Any] = {
            'TableName': self.schema.table_name,
            'IndexName': index.name,
            'KeyConditionExpression': key_condition,
        }
        if not self._is_new:
            own_key = [
                Attr(field).eq(_store_value(self._data.get(field)))
                for field in self.schema.key.get_key_fields()
            ]
            params['FilterExpression'] = ~_and_all(own_key)

        response = self.client.query(**params)
        count = response.get('Count', len(response.get('Items', [])))
        if count:
            raise UniqueConstraintViolation(index.name, values)

    # ------------------------------------------------------------------
    # Class-level operations
    # ------------------------------------------------------------------

    @classmethod
    def get(cls, key: Any, fields: Sequence[str] = ()) -> Optional['Entity']:
        """
        Fetch one entity by primary key.

        Args:
            key: Mapping (extra attributes are ignored) or the hash key value
            fields: Relation properties to resolve

        Returns:
            Hydrated entity, or None when no record exists
        """
        key = cls.schema.project_key(key)
        response = cls.registry.client.get(TableName=cls.schema.table_name, Key=key)
        item = response.get('Item')
        if not item:
            return None

        cls.populate(fields, [item])
        return cls.hydrate(item)

    @classmethod
    def find(cls, params: Optional[Mapping[str, Any]] = None, fields: Sequence[str] = (), **options) -> FindResult:
        """
        Query (with KeyConditionExpression) or scan this entity's table.

        Args:
            params: DynamoDB Query/Scan parameters; TableName is filled in
            fields: Relation properties to resolve on every returned item
            **options: filter_fn, map_fn, reduce_fn, initial_value

        Returns:
            FindResult whose items are hydrated entities (or the reduced accumulator)

        Example:
            result = User.find({
                'IndexName': 'email-index',
                'KeyConditionExpression': Key('email').eq('a@x.com'),
            })
        """
        query = dict(params or {})
        query['TableName'] = cls.schema.table_name
        options.setdefault('max_workers', cls.registry.config.map_max_workers)

        result = pagination.find(cls.registry.client, query, **options)
        if options.get('reduce_fn') is not None:
            return result

        records = [item for item in result.items if isinstance(item, Mapping)]
        cls.populate(fields, records)
        result.items = [
            cls.hydrate(item) if isinstance(item, Mapping) else item
            for item in result.items
        ]
        return result

    @classmethod
    def populate(cls, fields: Iterable[str], items: List[Dict[str, Any]]) -> None:
        """
        Resolve relation fields across raw records with one batched fetch.

        Each distinct foreign key is requested once per referenced table. Matching
        referenced entities are attached to the records under the field name; fields
        that are not relations and values that resolve to nothing are left as they are.
        """
        fields = list(fields or [])
        if not fields or not items:
            return

        plan = []
        table_keys: Dict[str, List[Dict[str, Any]]] = {}
        seen = set()
        for field in fields:
            prop = cls.schema.properties.get(field)
            if prop is None or prop.relation is None:
                continue
            ref_cls = cls.registry.model(prop.relation.ref)
            table_name = ref_cls.schema.table_name
            local, foreign = prop.relation.local_key, prop.relation.foreign_key
            plan.append((field, local, foreign, ref_cls))
            for item in items:
                value = item.get(local)
                if value is None:
                    continue
                marker = (table_name, foreign, value)
                if marker in seen:
                    continue
                seen.add(marker)
                table_keys.setdefault(table_name, []).append({foreign: value})

        if not table_keys:
            return

        records = bulk.batch_get_keys(
            cls.registry.client, table_keys, cls.registry.config.batch_retry_policy
        )

        for field, local, foreign, ref_cls in plan:
            candidates = records.get(ref_cls.schema.table_name, [])
            for item in items:
                value = item.get(local)
                if value is None:
                    continue
                match = next((r for r in candidates if r.get(foreign) == value), None)
                if match is not None:
                    item[field] = ref_cls.hydrate(match)

    @classmethod
    def batch_put(cls, entities: Iterable[Union['Entity', Mapping[str, Any]]]) -> None:
        """Write many entities with BatchWriteItem (no validation, versioning or conditions)."""
        records = [
            entity.to_record() if isinstance(entity, Entity) else cls.schema.to_record(dict(entity))
            for entity in entities
        ]
        bulk.batch_write_puts(
            cls.registry.client, {cls.schema.table_name: records}, cls.registry.config.batch_retry_policy
        )

    @classmethod
    def batch_delete(cls, keys: Iterable[Any]) -> None:
        """Delete many entities by primary key with BatchWriteItem."""
        projected = [cls.schema.project_key(key) for key in keys]
        bulk.batch_write_deletes(
            cls.registry.client, {cls.schema.table_name: projected}, cls.registry.config.batch_retry_policy
        )

    @classmethod
    def update(cls, key: Any, update: Union[UpdateSpec, Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Apply a partial update with UpdateItem.

        Primary key attributes are never updated. When the schema has a version
        property it is always advanced; a value supplied for it in the update is the
        expected current version and becomes the condition of the write.

        Args:
            key: Primary key (mapping or hash key value)
            update: UpdateSpec or ``{"$SET" | "$ADD" | "$DELETE": {attr: value}}``

        Returns:
            The record attributes after the update (ALL_NEW)

        Raises:
            ConfigurationError: Invalid update verbs or nothing to update
            ConstraintViolation: The expected version did not match
        """
        schema = cls.schema
        spec = UpdateSpec.coerce(update)
        key = schema.project_key(key)
        attributes = dict(spec.attributes)
        for field in key:
            attributes.pop(field, None)

        names: Dict[str, str] = {}
        values: Dict[str, Any] = {}
        set_parts: List[str] = []
        action_parts: List[str] = []
        params: Dict[str, Any] = {
            'TableName': schema.table_name,
            'Key': key,
            'ReturnValues': 'ALL_NEW',
        }

        version = schema.version
        if version:
            kind = schema.version_kind
            expected = attributes.pop(version, None)
            names['#ver'] = version
            if kind == 'integer':
                set_parts.append('#ver = if_not_exists(#ver, :ver_zero) + :ver_one')
                values[':ver_zero'] = 0
                values[':ver_one'] = 1
            else:
                set_parts.append('#ver = :ver')
                values[':ver'] = to_epoch_millis(utc_now())
            if expected is not None:
                if kind == 'date-time':
                    expected = to_epoch_millis(coerce_datetime(expected))
                params['ConditionExpression'] = Attr(version).eq(expected)

        for position, (name, value) in enumerate(cls._update_attributes(attributes)):
            name_ref, value_ref = f"#u{position}", f":u{position}"
            names[name_ref] = name
            values[value_ref] = value
            if spec.action == UpdateAction.SET:
                set_parts.append(f"{name_ref} = {value_ref}")
            else:
                action_parts.append(f"{name_ref} {value_ref}")

        clauses = []
        if set_parts:
            clauses.append("SET " + ", ".join(set_parts))
        if action_parts:
            clauses.append(f"{spec.action.value} " + ", ".join(action_parts))
        if not clauses:
            raise ConfigurationError(f"Update on {schema.name} has no attributes to change")

        params['UpdateExpression'] = " ".join(clauses)
        params['ExpressionAttributeNames'] = names
        params['ExpressionAttributeValues'] = values

        response = cls.registry.client.update(**params)
        logger.info(f"Updated {schema.name} {key}: {list(attributes)}")
        return response.get('Attributes', {})

    @classmethod
    def _update_attributes(cls, attributes: Mapping[str, Any]) -> List[Tuple[str, Any]]:
        """Record attribute names and values for an update body."""
        result = []
        for name, value in attributes.items():
            prop = cls.schema.properties.get(name)
            if prop is None:
                result.append((name, _store_value(value)))
            elif prop.relation is not None:
                result.extend(cls.schema.to_record({name: value}).items())
            else:
                result.append((name, cls.schema.to_record({name: value}).get(name, value)))
        return result


RESERVED_NAMES = frozenset(dir(Entity)) | {'schema', 'registry', '_data', '_is_new', '_deleted', '_snapshot'}


def compile_entity(name: str, schema: Schema, registry) -> Type[Entity]:
    """
    Generate the Entity subclass for a compiled schema.

    Args:
        name: Entity name, used as the class name
        schema: Compiled schema
        registry: Owning registry (store client, config and related entities)

    Returns:
        Entity subclass with one Attribute descriptor per property
    """
    namespace: Dict[str, Any] = {
        'schema': schema,
        'registry': registry,
        '__module__': __name__,
        '__doc__': f"{name} entity stored in table {schema.table_name}.",
    }
    for prop_name in schema.properties:
        if prop_name in RESERVED_NAMES or not prop_name.isidentifier():
            logger.warning(f"Property {name}.{prop_name} has no attribute accessor; use item access")
            continue
        namespace[prop_name] = Attribute(prop_name)
    return type(name, (Entity,), namespace)
