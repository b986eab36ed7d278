"""JSON Schema options attached to files, messages and fields.

Options are written in proto sources as extensions of the descriptor option
messages (see ``proto/jsonschema/options.proto``)::

    option (jsonschema.file) = { generate: true };

    message User {
      option (jsonschema.message) = { generate: false };
      string name = 1 [(jsonschema.field) = { min_length: 1, max_length: 64 }];
    }

Front ends hand the raw ``key -> value`` pairs to the ``*_from_dict``
builders below, which validate them against the pydantic models. The three
scopes are independent: there is no cascading here, callers combine the
results themselves.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from protoc_jsonschema.errors import MalformedOptionError

if TYPE_CHECKING:
    from protoc_jsonschema.models import Field as ProtoField, Message, ProtoFile

# Extension names as written in proto sources.
FILE_EXTENSION = "jsonschema.file"
MESSAGE_EXTENSION = "jsonschema.message"
FIELD_EXTENSION = "jsonschema.field"

# Include directory holding jsonschema/options.proto.
OPTIONS_PROTO_DIR = str(Path(__file__).resolve().parent / "proto")
OPTIONS_PROTO_FILE = "jsonschema/options.proto"


class _OptionsModel(BaseModel):
    """Shared settings: immutable, no unknown keys, no type coercion."""

    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)


class FileJsonSchemaOptions(_OptionsModel):
    generate: Optional[bool] = None


class MessageJsonSchemaOptions(_OptionsModel):
    generate: Optional[bool] = None


class FieldJsonSchemaOptions(_OptionsModel):
    ignore: bool = False
    title: str = ""
    description: str = ""
    format: str = ""
    pattern: str = ""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    min_items: Optional[int] = Field(default=None, ge=0)
    max_items: Optional[int] = Field(default=None, ge=0)
    unique_items: bool = False
    min_properties: Optional[int] = Field(default=None, ge=0)
    max_properties: Optional[int] = Field(default=None, ge=0)
    content_encoding: str = ""
    content_media_type: str = ""

    @model_validator(mode="after")
    def check_bounds(self) -> "FieldJsonSchemaOptions":
        for low, high in (
            ("minimum", "maximum"),
            ("min_length", "max_length"),
            ("min_items", "max_items"),
            ("min_properties", "max_properties"),
        ):
            low_value = getattr(self, low)
            high_value = getattr(self, high)
            if low_value is not None and high_value is not None and low_value > high_value:
                raise ValueError(f"option '{low}' ({low_value}) is greater than '{high}' ({high_value})")
        if self.exclusive_minimum and self.minimum is None:
            raise ValueError("option 'exclusive_minimum' requires 'minimum'")
        if self.exclusive_maximum and self.maximum is None:
            raise ValueError("option 'exclusive_maximum' requires 'maximum'")
        return self


# pydantic error type -> what the option expected
_EXPECTATIONS = {
    "bool_type": "expects true or false",
    "string_type": "expects a string",
    "float_type": "expects a number",
    "int_type": "expects a non-negative integer",
    "greater_than_equal": "expects a non-negative integer",
}

_Options = TypeVar("_Options", bound=_OptionsModel)


def _reason(error: Dict[str, Any], model: Type[_OptionsModel]) -> str:
    name = ".".join(str(part) for part in error["loc"])
    if error["type"] == "extra_forbidden":
        return f"unknown option '{name}' (expected one of: {', '.join(sorted(model.model_fields))})"
    if error["type"] == "value_error":
        return str(error["ctx"]["error"])
    expectation = _EXPECTATIONS.get(error["type"], error["msg"])
    return f"option '{name}' {expectation}, got {error['input']!r}"


def _validate(model: Type[_Options], values: Mapping[str, Any], where: str) -> _Options:
    try:
        return model.model_validate(dict(values))
    except ValidationError as e:
        raise MalformedOptionError(_reason(e.errors()[0], model), where) from e


def file_options_from_dict(values: Mapping[str, Any], where: str = "") -> FileJsonSchemaOptions:
    return _validate(FileJsonSchemaOptions, values, where)


def message_options_from_dict(values: Mapping[str, Any], where: str = "") -> MessageJsonSchemaOptions:
    return _validate(MessageJsonSchemaOptions, values, where)


def field_options_from_dict(values: Mapping[str, Any], where: str = "") -> FieldJsonSchemaOptions:
    """Build validated field options.

    Raises MalformedOptionError for unknown keys, wrongly typed values,
    min above max, and an exclusive flag without its bound.
    """
    return _validate(FieldJsonSchemaOptions, values, where)


# -- resolver lookups --


def get_file_options(proto_file: ProtoFile) -> Optional[FileJsonSchemaOptions]:
    return proto_file.options


def get_message_options(message: Message) -> Optional[MessageJsonSchemaOptions]:
    return message.options


def get_field_options(field: ProtoField) -> Optional[FieldJsonSchemaOptions]:
    return field.options


def file_generates_by_default(proto_file: ProtoFile) -> bool:
    """The file-level default for messages without their own generate option."""
    opts = get_file_options(proto_file)
    return bool(opts is not None and opts.generate)


def is_ignored(field: ProtoField) -> bool:
    opts = get_field_options(field)
    return opts is not None and opts.ignore
