# Schema compiler and entity lifecycle
from .schema import (
    CREATED_AT,
    UPDATED_AT,
    IndexDefinition,
    KeySchema,
    PropertyDescriptor,
    RelationDescriptor,
    Schema,
    compile_schema,
)
from .update import UpdateAction, UpdateSpec
from .entity import Attribute, Entity, compile_entity

__all__ = [
    # Schema
    "CREATED_AT",
    "UPDATED_AT",
    "IndexDefinition",
    "KeySchema",
    "PropertyDescriptor",
    "RelationDescriptor",
    "Schema",
    "compile_schema",

    # Updates
    "UpdateAction",
    "UpdateSpec",

    # Entities
    "Attribute",
    "Entity",
    "compile_entity",
]
