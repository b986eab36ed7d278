"""Map proto field kinds to JSON Schema types.

``map_kind`` is the base mapping. The ``*_config`` builders on top of it turn
one field into a ``FieldSchemaConfig``, the intermediate form the synthesizer
renders. They never look at the surrounding message and never inline another
message's structure: message-typed values become a ``MessageRef``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from protoc_jsonschema.errors import UnresolvedReferenceError, UnsupportedFieldKindError
from protoc_jsonschema.models import INTEGER_KINDS, Field, FieldKind, Message

# JSON Schema Draft 2020-12 primitive type names.
JS_ARRAY = "array"
JS_BOOLEAN = "boolean"
JS_INTEGER = "integer"
JS_NUMBER = "number"
JS_OBJECT = "object"
JS_STRING = "string"

# Map keys are always JSON strings; non-string keys get a format check.
INTEGER_KEY_PATTERN = "^-?[0-9]+$"
BOOLEAN_KEY_PATTERN = "^(true|false)$"

_KIND_TYPE_NAMES: Dict[FieldKind, str] = {
    FieldKind.BOOL: JS_BOOLEAN,
    FieldKind.INT32: JS_INTEGER,
    FieldKind.SINT32: JS_INTEGER,
    FieldKind.UINT32: JS_INTEGER,
    FieldKind.FIXED32: JS_INTEGER,
    FieldKind.SFIXED32: JS_INTEGER,
    FieldKind.INT64: JS_INTEGER,
    FieldKind.SINT64: JS_INTEGER,
    FieldKind.UINT64: JS_INTEGER,
    FieldKind.FIXED64: JS_INTEGER,
    FieldKind.SFIXED64: JS_INTEGER,
    FieldKind.FLOAT: JS_NUMBER,
    FieldKind.DOUBLE: JS_NUMBER,
    FieldKind.STRING: JS_STRING,
    # base64 text; callers add contentEncoding.
    FieldKind.BYTES: JS_STRING,
    # The numeric value, so plain json round-trips need no name table.
    FieldKind.ENUM: JS_INTEGER,
    FieldKind.MESSAGE: JS_OBJECT,
    FieldKind.GROUP: JS_OBJECT,
}

_MESSAGE_KINDS = (FieldKind.MESSAGE, FieldKind.GROUP)


def map_kind(kind: FieldKind, field_name: str = "") -> str:
    """Return the JSON Schema type name for a field kind."""
    try:
        return _KIND_TYPE_NAMES[kind]
    except (KeyError, TypeError):
        raise UnsupportedFieldKindError(f"unsupported field kind: {kind!r}", field_name=field_name) from None


@dataclass(eq=False)
class MessageRef:
    """A reference to the schema of another message, resolved by the caller."""

    message: Message

    @property
    def full_name(self) -> str:
        return self.message.full_name


@dataclass
class FieldSchemaConfig:
    """How one field (or one array item / map value) renders.

    Exactly one render mode applies: ``type_name`` when set, otherwise
    ``message_ref``. ``nested`` is only set for arrays (items) and maps
    (additionalProperties).
    """

    field_name: str = ""
    title: str = ""
    description: str = ""
    type_name: str = ""
    format: str = ""
    pattern: str = ""
    property_names_pattern: str = ""
    enum_values: List[int] = field(default_factory=list)
    is_bytes: bool = False
    message_ref: Optional[MessageRef] = None
    nested: Optional[FieldSchemaConfig] = None


def message_config(message: Message) -> FieldSchemaConfig:
    return FieldSchemaConfig(message_ref=MessageRef(message))


def _element_config(f: Field) -> FieldSchemaConfig:
    """Config for an array element or map value of the given field's kind."""
    if f.kind in _MESSAGE_KINDS:
        return message_config(_referenced_message(f))
    type_name = map_kind(f.kind, f.name)
    if f.kind == FieldKind.ENUM:
        return FieldSchemaConfig(type_name=type_name, enum_values=enum_values(f))
    if f.kind == FieldKind.BYTES:
        return FieldSchemaConfig(type_name=type_name, is_bytes=True)
    return FieldSchemaConfig(type_name=type_name)


def _referenced_message(f: Field) -> Message:
    if f.message is None:
        raise UnresolvedReferenceError(f"message type '{f.type_name}' is not linked", field_name=f.name)
    return f.message


def enum_values(f: Field) -> List[int]:
    if f.enum is None:
        return []
    return list(f.enum.values.values())


def scalar_config(f: Field, title: str = "", description: str = "") -> FieldSchemaConfig:
    """Config for singular fields, including singular message fields."""
    cfg = FieldSchemaConfig(
        field_name=f.name,
        title=title,
        description=description,
        type_name=map_kind(f.kind, f.name),
    )

    if f.kind in _MESSAGE_KINDS:
        ref_cfg = message_config(_referenced_message(f))
        cfg.type_name = ref_cfg.type_name
        cfg.format = ref_cfg.format
        cfg.pattern = ref_cfg.pattern
        cfg.message_ref = ref_cfg.message_ref
        cfg.nested = ref_cfg.nested
        if not cfg.description and ref_cfg.description:
            cfg.description = ref_cfg.description
    elif f.kind == FieldKind.ENUM:
        cfg.enum_values = enum_values(f)
    elif f.kind == FieldKind.BYTES:
        cfg.is_bytes = True

    return cfg


def array_config(f: Field, title: str = "", description: str = "") -> FieldSchemaConfig:
    """Config for repeated (non-map) fields: an array of the element kind."""
    return FieldSchemaConfig(
        field_name=f.name,
        title=title,
        description=description,
        type_name=JS_ARRAY,
        nested=_element_config(f),
    )


def map_config(f: Field, title: str = "", description: str = "") -> FieldSchemaConfig:
    """Config for map fields: an object whose additionalProperties are the values."""
    cfg = FieldSchemaConfig(
        field_name=f.name,
        title=title,
        description=description,
        type_name=JS_OBJECT,
    )

    key = f.map_key()
    if key is not None:
        if key.kind in INTEGER_KINDS:
            cfg.property_names_pattern = INTEGER_KEY_PATTERN
        elif key.kind == FieldKind.BOOL:
            cfg.property_names_pattern = BOOLEAN_KEY_PATTERN

    value = f.map_value()
    if value is not None:
        cfg.nested = _element_config(value)

    return cfg


def field_config(f: Field, title: str = "", description: str = "") -> FieldSchemaConfig:
    """Route a field to the array, map or scalar builder by cardinality."""
    if f.is_list:
        return array_config(f, title, description)
    if f.is_map:
        return map_config(f, title, description)
    return scalar_config(f, title, description)
