import pytest

from protoc_jsonschema.errors import UnresolvedReferenceError, UnsupportedFieldKindError
from protoc_jsonschema.models import Cardinality, EnumType, Field, FieldKind, Message
from protoc_jsonschema.type_mapper import (
    BOOLEAN_KEY_PATTERN,
    INTEGER_KEY_PATTERN,
    MessageRef,
    array_config,
    field_config,
    map_config,
    map_kind,
    scalar_config,
)


def _map_field(name: str, key: Field, value: Field) -> Field:
    entry = Message(name="Entry", full_name="demo.Holder.Entry", fields=[key, value], is_map_entry=True)
    return Field(name=name, number=1, kind=FieldKind.MESSAGE, cardinality=Cardinality.MAP, message=entry)


class TestMapKind:
    @pytest.mark.parametrize(
        "kind,expected",
        [
            (FieldKind.BOOL, "boolean"),
            (FieldKind.INT32, "integer"),
            (FieldKind.SFIXED64, "integer"),
            (FieldKind.UINT64, "integer"),
            (FieldKind.FLOAT, "number"),
            (FieldKind.DOUBLE, "number"),
            (FieldKind.STRING, "string"),
            (FieldKind.BYTES, "string"),
            (FieldKind.ENUM, "integer"),
            (FieldKind.MESSAGE, "object"),
            (FieldKind.GROUP, "object"),
        ],
    )
    def test_kinds(self, kind, expected):
        assert map_kind(kind) == expected

    def test_unknown_kind(self):
        with pytest.raises(UnsupportedFieldKindError) as excinfo:
            map_kind(None, "weird")
        assert excinfo.value.field_name == "weird"


class TestScalarConfig:
    def test_string(self):
        cfg = scalar_config(Field(name="id", number=1, kind=FieldKind.STRING), "Id", "The id")
        assert cfg.type_name == "string"
        assert cfg.title == "Id"
        assert cfg.description == "The id"
        assert cfg.message_ref is None
        assert cfg.nested is None

    def test_bytes_flag(self):
        cfg = scalar_config(Field(name="blob", number=1, kind=FieldKind.BYTES))
        assert cfg.type_name == "string"
        assert cfg.is_bytes is True

    def test_enum_values(self):
        status = EnumType(name="Status", full_name="demo.Status", values={"UNKNOWN": 0, "ACTIVE": 1, "GONE": 5})
        cfg = scalar_config(Field(name="status", number=1, kind=FieldKind.ENUM, enum=status))
        assert cfg.type_name == "integer"
        assert cfg.enum_values == [0, 1, 5]

    def test_message_is_pure_reference(self):
        address = Message(name="Address", full_name="demo.Address")
        cfg = scalar_config(Field(name="home", number=1, kind=FieldKind.MESSAGE, message=address))
        assert cfg.type_name == ""
        assert isinstance(cfg.message_ref, MessageRef)
        assert cfg.message_ref.full_name == "demo.Address"

    def test_unlinked_message(self):
        with pytest.raises(UnresolvedReferenceError):
            scalar_config(Field(name="home", number=1, kind=FieldKind.MESSAGE, type_name="demo.Address"))


class TestArrayConfig:
    def test_scalar_items(self):
        cfg = array_config(Field(name="tags", number=1, kind=FieldKind.STRING, cardinality=Cardinality.REPEATED))
        assert cfg.type_name == "array"
        assert cfg.nested.type_name == "string"

    def test_message_items(self):
        item = Message(name="Item", full_name="demo.Item")
        cfg = array_config(
            Field(name="items", number=1, kind=FieldKind.MESSAGE, cardinality=Cardinality.REPEATED, message=item)
        )
        assert cfg.nested.message_ref.message is item
        assert cfg.nested.type_name == ""


class TestMapConfig:
    def test_string_keys(self):
        cfg = map_config(
            _map_field(
                "labels",
                Field(name="key", number=1, kind=FieldKind.STRING),
                Field(name="value", number=2, kind=FieldKind.STRING),
            )
        )
        assert cfg.type_name == "object"
        assert cfg.property_names_pattern == ""
        assert cfg.nested.type_name == "string"

    def test_integer_keys(self):
        cfg = map_config(
            _map_field(
                "counts",
                Field(name="key", number=1, kind=FieldKind.INT64),
                Field(name="value", number=2, kind=FieldKind.INT32),
            )
        )
        assert cfg.property_names_pattern == INTEGER_KEY_PATTERN
        assert cfg.nested.type_name == "integer"

    def test_bool_keys_and_message_values(self):
        target = Message(name="Target", full_name="demo.Target")
        cfg = map_config(
            _map_field(
                "flags",
                Field(name="key", number=1, kind=FieldKind.BOOL),
                Field(name="value", number=2, kind=FieldKind.MESSAGE, message=target),
            )
        )
        assert cfg.property_names_pattern == BOOLEAN_KEY_PATTERN
        assert cfg.nested.message_ref.message is target


class TestFieldConfig:
    def test_routes_by_cardinality(self):
        assert field_config(Field(name="a", number=1, kind=FieldKind.INT32)).type_name == "integer"
        repeated = Field(name="a", number=1, kind=FieldKind.INT32, cardinality=Cardinality.REPEATED)
        assert field_config(repeated).type_name == "array"
        as_map = _map_field(
            "m",
            Field(name="key", number=1, kind=FieldKind.STRING),
            Field(name="value", number=2, kind=FieldKind.BOOL),
        )
        cfg = field_config(as_map)
        assert cfg.type_name == "object"
        assert cfg.nested.type_name == "boolean"
