"""
Schema Compiler

Compiles one entity definition out of a shared schema document into a Schema:
primary key, secondary indexes, version/owner/timestamp markers, relation joins, a
jsonschema validator and the record transforms.

The schema document is a JSON-Schema style mapping of definitions. Relations point at
another definition with ``$ref`` and describe the join as local -> foreign attribute
names:

```python
document = {
    "definitions": {
        "User": {
            "$id": "User",
            "tableName": "users",
            "timestamps": True,
            "indexes": {"email-index": {"hashKey": "email", "unique": True}},
            "properties": {
                "id": {"type": "string", "hashKey": True},
                "email": {"type": "string", "format": "email"},
            },
            "required": ["id", "email"],
        },
        "Post": {
            "$id": "Post",
            "tableName": "posts",
            "properties": {
                "id": {"type": "string", "hashKey": True},
                "author": {"$ref": "User", "join": {"authorId": "id"}, "required": ["id"]},
            },
        },
    }
}
```

Compilation works on a deep copy of the document:

1. ``required`` on a relation property is moved onto the referenced definition (it
   lists the referenced entity's required fields).
2. Properties of a referenced definition that point back at the compiled definition
   are dropped, so the validator never sees a two-entity cycle. Only this one-hop
   back reference is pruned; longer cycles are left to jsonschema's ``$ref`` handling.
3. Relation pointers are rewritten to ``#/definitions/<name>`` and the result is
   compiled with ``jsonschema.Draft7Validator``. Custom keywords such as ``hashKey``
   or ``join`` are ignored by the validator.
"""

import copy
import logging
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import SchemaDefinitionError, SchemaNotFoundError, UnsupportedVersionTypeError
from ..utils import coerce_datetime, loads_with_dates, to_epoch_millis, to_jsonable, utc_now

logger = logging.getLogger(__name__)

DATE_FORMATS = ('date', 'date-time')
CREATED_AT = 'createdAt'
UPDATED_AT = 'updatedAt'


# =============================================================================
# Descriptor Models
# =============================================================================

class RelationDescriptor(BaseModel):
    """Reference to another entity type joined on one or more attribute pairs."""

    ref: str = Field(..., description="Name of the referenced entity")
    join: Dict[str, str] = Field(..., description="Local attribute -> foreign attribute")

    model_config = ConfigDict(frozen=True)

    @property
    def local_key(self) -> str:
        """First local join attribute (the one stored on the record)."""
        return next(iter(self.join))

    @property
    def foreign_key(self) -> str:
        """Foreign attribute matching local_key."""
        return self.join[self.local_key]


class PropertyDescriptor(BaseModel):
    """One property of an entity definition."""

    name: str
    type: Optional[Union[str, List[str]]] = None
    format: Optional[str] = None
    has_default: bool = False
    default: Any = None
    hash_key: bool = False
    range_key: bool = False
    version: bool = False
    owner: bool = False
    relation: Optional[RelationDescriptor] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_schema(cls, name: str, raw: Dict[str, Any]) -> 'PropertyDescriptor':
        """Build a descriptor from a raw property schema."""
        relation = None
        if raw.get('$ref'):
            if not raw.get('join'):
                raise SchemaDefinitionError(f"Relation property {name} requires a join mapping")
            relation = RelationDescriptor(ref=raw['$ref'], join=dict(raw['join']))
        return cls(
            name=name,
            type=raw.get('type'),
            format=raw.get('format'),
            has_default='default' in raw,
            default=raw.get('default'),
            hash_key=bool(raw.get('hashKey')),
            range_key=bool(raw.get('rangeKey')),
            version=bool(raw.get('version')),
            owner=bool(raw.get('owner')),
            relation=relation,
        )

    @property
    def is_date(self) -> bool:
        return self.format in DATE_FORMATS

    def default_value(self) -> Any:
        """Resolve the declared default; ``"now"`` on date-time strings means the current time."""
        if self.type == 'string' and self.format == 'date-time':
            if self.default == 'now':
                return utc_now()
            return coerce_datetime(self.default)
        return copy.deepcopy(self.default)


class KeySchema(BaseModel):
    """Primary key of a table: hash key plus optional range key."""

    hash_key: str
    range_key: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def get_key_fields(self) -> List[str]:
        """Return the attribute names that form the item key."""
        fields = [self.hash_key]
        if self.range_key:
            fields.append(self.range_key)
        return fields


class IndexDefinition(BaseModel):
    """Secondary index, optionally enforcing uniqueness of its key values."""

    name: str
    hash_key: str
    range_key: Optional[str] = None
    unique: bool = False

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Compiled Schema
# =============================================================================

def related_value(value: Any, attribute: str, single_join: bool = True) -> Any:
    """Read a foreign attribute off a relation value (entity, dict stub or bare key)."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get(attribute)
    if hasattr(value, 'to_dict'):
        return value.to_dict().get(attribute)
    return value if single_join else None


def to_store_value(value: Any) -> Any:
    """Convert a value for boto3: floats (also nested) become Decimal."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_store_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_store_value(v) for v in value]
    return value


class Schema(BaseModel):
    """Compiled entity schema: keys, indexes, markers, validator and record transforms."""

    name: str
    definition_name: str
    table_name: str
    properties: Dict[str, PropertyDescriptor]
    key: KeySchema
    indexes: Dict[str, IndexDefinition] = Field(default_factory=dict)
    timestamps: bool = False
    version: Optional[str] = None
    owner: Optional[str] = None
    validator: Any = Field(default=None, exclude=True, repr=False)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def relations(self) -> Dict[str, RelationDescriptor]:
        """Relation properties by name."""
        return {
            name: prop.relation
            for name, prop in self.properties.items()
            if prop.relation is not None
        }

    @property
    def version_kind(self) -> Optional[str]:
        """``'integer'`` or ``'date-time'`` for the version property, None without one.

        Raises:
            UnsupportedVersionTypeError: For any other declared type
        """
        if not self.version:
            return None
        prop = self.properties[self.version]
        if prop.type == 'integer':
            return 'integer'
        if prop.type == 'string' and prop.format == 'date-time':
            return 'date-time'
        raise UnsupportedVersionTypeError(self.version, prop.type)

    def project_key(self, key: Any) -> Dict[str, Any]:
        """Keep only the primary key attributes of ``key``.

        A non-mapping value is taken as the hash key value.
        """
        if isinstance(key, Mapping) or hasattr(key, 'to_dict'):
            return {
                field: related_value(key, field)
                for field in self.key.get_key_fields()
            }
        return {self.key.hash_key: key}

    def validate_data(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Validate entity data, returning the validator's error list (empty when valid)."""
        instance = to_jsonable(data)
        errors = sorted(
            self.validator.iter_errors(instance),
            key=lambda e: "/".join(str(p) for p in e.absolute_path)
        )
        return [
            {
                'path': "/".join(str(p) for p in error.absolute_path),
                'message': error.message,
                'validator': error.validator,
            }
            for error in errors
        ]

    def to_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Project entity data onto a flat DynamoDB record.

        - Unknown attributes and None values are dropped
        - datetimes become epoch milliseconds
        - floats become Decimal
        - relation values are flattened to their join attributes
        """
        record: Dict[str, Any] = {}
        for name, prop in self.properties.items():
            value = data.get(name)
            if value is None:
                continue
            if prop.relation:
                single = len(prop.relation.join) == 1
                for local, foreign in prop.relation.join.items():
                    fk = related_value(value, foreign, single)
                    if fk is None:
                        continue
                    if isinstance(fk, (datetime, date)):
                        fk = to_epoch_millis(fk)
                    record[local] = to_store_value(fk)
            elif isinstance(value, (datetime, date)):
                record[name] = to_epoch_millis(value)
            else:
                record[name] = to_store_value(value)
        return record

    def from_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convert a DynamoDB record back into entity data.

        Relation properties use a nested value stored under the property name when
        present, otherwise a stub ``{foreign: value}`` is built from the join
        attributes for lazy resolution. date/date-time properties are parsed from epoch
        milliseconds or ISO-8601 strings.
        """
        data: Dict[str, Any] = {}
        for name, prop in self.properties.items():
            if prop.relation:
                if record.get(name) is not None:
                    data[name] = record[name]
                    continue
                if record.get(prop.relation.local_key) is None:
                    continue
                data[name] = {
                    foreign: record[local]
                    for local, foreign in prop.relation.join.items()
                    if record.get(local) is not None
                }
            elif name in record:
                value = record[name]
                if prop.is_date and value is not None:
                    value = coerce_datetime(value)
                data[name] = value
        return data

    def parse_json(self, text: str) -> Any:
        """Parse JSON text, reviving ISO-8601 strings into datetimes."""
        return loads_with_dates(text)


# =============================================================================
# Compiler
# =============================================================================

def _locate(name: str, definitions: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    for definition_name, definition in definitions.items():
        if isinstance(definition, dict) and definition.get('$id') == name:
            return definition_name, definition
    if isinstance(definitions.get(name), dict):
        return name, definitions[name]
    raise SchemaNotFoundError(name)


def _for_validation(node: Any) -> Any:
    """Rewrite relation pointers to local definition refs and drop ``$id``."""
    if isinstance(node, dict):
        result = {}
        for k, v in node.items():
            if k == '$id':
                continue
            if k == '$ref' and isinstance(v, str) and not v.startswith('#'):
                result[k] = f"#/definitions/{v}"
            else:
                result[k] = _for_validation(v)
        return result
    elif isinstance(node, list):
        return [_for_validation(v) for v in node]
    return node


def _single(properties: Dict[str, PropertyDescriptor], flag: str, entity: str) -> Optional[str]:
    names = [name for name, prop in properties.items() if getattr(prop, flag)]
    if len(names) > 1:
        raise SchemaDefinitionError(f"Only one {flag} property is allowed, found {names}", entity)
    return names[0] if names else None


def compile_schema(name: str, document: Dict[str, Any], table_prefix: str = "") -> Schema:
    """
    Compile the definition of entity ``name`` out of the shared schema document.

    Args:
        name: Entity name (matched against each definition's ``$id``, then its key)
        document: Shared schema document with a ``definitions`` mapping; not mutated
        table_prefix: Prefix applied to the definition's tableName

    Returns:
        Compiled Schema

    Raises:
        SchemaNotFoundError: No definition (or referenced definition) matches
        SchemaDefinitionError: The definition is malformed
    """
    doc = copy.deepcopy(document or {})
    definitions = doc.get('definitions') or {}
    definition_name, definition = _locate(name, definitions)
    raw_properties = definition.get('properties') or {}

    for prop_name, prop in raw_properties.items():
        ref = prop.get('$ref')
        if not ref or 'required' not in prop:
            continue
        if ref not in definitions:
            raise SchemaNotFoundError(ref)
        definitions[ref]['required'] = prop.pop('required')

    properties = {
        prop_name: PropertyDescriptor.from_schema(prop_name, prop)
        for prop_name, prop in raw_properties.items()
    }

    for prop in properties.values():
        if prop.relation is None:
            continue
        ref_definition = definitions.get(prop.relation.ref)
        if ref_definition is None:
            raise SchemaNotFoundError(prop.relation.ref)
        ref_properties = ref_definition.get('properties') or {}
        for ref_prop_name in [
            k for k, v in ref_properties.items()
            if isinstance(v, dict) and v.get('$ref') in (definition_name, name)
        ]:
            logger.debug(f"Pruning back reference {prop.relation.ref}.{ref_prop_name} -> {name}")
            del ref_properties[ref_prop_name]

    root = _for_validation(definition)
    root['definitions'] = _for_validation(definitions)
    try:
        Draft7Validator.check_schema(root)
    except SchemaError as e:
        raise SchemaDefinitionError(f"Invalid schema for {name}: {e.message}", name, e) from e
    validator = Draft7Validator(root)

    hash_key = _single(properties, 'hash_key', name)
    if not hash_key:
        raise SchemaDefinitionError(f"Schema {name} has no hashKey property", name)
    range_key = _single(properties, 'range_key', name)

    indexes = {
        index_name: IndexDefinition(
            name=index_name,
            hash_key=index['hashKey'],
            range_key=index.get('rangeKey'),
            unique=bool(index.get('unique')),
        )
        for index_name, index in (definition.get('indexes') or {}).items()
    }
    for index in indexes.values():
        for attribute in filter(None, (index.hash_key, index.range_key)):
            if attribute not in properties:
                raise SchemaDefinitionError(
                    f"Index {index.name} references unknown property {attribute}", name
                )

    table_name = definition.get('tableName')
    if not table_name:
        raise SchemaDefinitionError(f"Schema {name} has no tableName", name)

    schema = Schema(
        name=name,
        definition_name=definition_name,
        table_name=f"{table_prefix}{table_name}",
        properties=properties,
        key=KeySchema(hash_key=hash_key, range_key=range_key),
        indexes=indexes,
        timestamps=bool(definition.get('timestamps')),
        version=_single(properties, 'version', name),
        owner=_single(properties, 'owner', name),
        validator=validator,
    )
    logger.debug(f"Compiled schema {name} for table {schema.table_name}")
    return schema
