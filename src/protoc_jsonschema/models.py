"""Descriptor model shared by every front end.

The schema engine only ever reads these objects. The native parser and the
protoc descriptor loader both produce them, so either source can feed the
selection and synthesis steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional

from protoc_jsonschema.errors import UnresolvedReferenceError
from protoc_jsonschema.options import (
    FieldJsonSchemaOptions,
    FileJsonSchemaOptions,
    MessageJsonSchemaOptions,
)


class FieldKind(Enum):
    BOOL = auto()
    INT32 = auto()
    SINT32 = auto()
    UINT32 = auto()
    FIXED32 = auto()
    SFIXED32 = auto()
    INT64 = auto()
    SINT64 = auto()
    UINT64 = auto()
    FIXED64 = auto()
    SFIXED64 = auto()
    FLOAT = auto()
    DOUBLE = auto()
    STRING = auto()
    BYTES = auto()
    ENUM = auto()
    MESSAGE = auto()
    GROUP = auto()


class Cardinality(Enum):
    SINGULAR = auto()
    REPEATED = auto()
    MAP = auto()


# Proto scalar type keywords -> field kind.
SCALAR_KINDS: Dict[str, FieldKind] = {
    "bool": FieldKind.BOOL,
    "int32": FieldKind.INT32,
    "sint32": FieldKind.SINT32,
    "uint32": FieldKind.UINT32,
    "fixed32": FieldKind.FIXED32,
    "sfixed32": FieldKind.SFIXED32,
    "int64": FieldKind.INT64,
    "sint64": FieldKind.SINT64,
    "uint64": FieldKind.UINT64,
    "fixed64": FieldKind.FIXED64,
    "sfixed64": FieldKind.SFIXED64,
    "float": FieldKind.FLOAT,
    "double": FieldKind.DOUBLE,
    "string": FieldKind.STRING,
    "bytes": FieldKind.BYTES,
}

INTEGER_KINDS = frozenset({
    FieldKind.INT32, FieldKind.SINT32, FieldKind.UINT32,
    FieldKind.FIXED32, FieldKind.SFIXED32,
    FieldKind.INT64, FieldKind.SINT64, FieldKind.UINT64,
    FieldKind.FIXED64, FieldKind.SFIXED64,
})

MAP_KEY_NUMBER = 1
MAP_VALUE_NUMBER = 2


@dataclass
class EnumType:
    name: str
    full_name: str
    values: Dict[str, int] = field(default_factory=dict)
    leading_comments: str = ""


@dataclass
class Oneof:
    name: str
    # proto3 `optional` fields live in a synthetic oneof of their own.
    is_synthetic: bool = False


@dataclass
class Field:
    name: str
    number: int
    kind: FieldKind
    cardinality: Cardinality = Cardinality.SINGULAR
    type_name: str = ""
    message: Optional[Message] = field(default=None, repr=False)
    enum: Optional[EnumType] = field(default=None, repr=False)
    oneof: Optional[Oneof] = None
    # `optional` label (proto2) or proto3 explicit presence.
    has_optional_keyword: bool = False
    json_name: str = ""
    leading_comments: str = ""
    options: Optional[FieldJsonSchemaOptions] = None

    @property
    def is_list(self) -> bool:
        return self.cardinality == Cardinality.REPEATED

    @property
    def is_map(self) -> bool:
        return self.cardinality == Cardinality.MAP

    def map_key(self) -> Optional[Field]:
        return self._map_entry_field(MAP_KEY_NUMBER)

    def map_value(self) -> Optional[Field]:
        return self._map_entry_field(MAP_VALUE_NUMBER)

    def _map_entry_field(self, number: int) -> Optional[Field]:
        if not self.is_map or self.message is None:
            return None
        for entry_field in self.message.fields:
            if entry_field.number == number:
                return entry_field
        return None


@dataclass(eq=False)
class Message:
    name: str
    full_name: str
    fields: List[Field] = field(default_factory=list)
    nested_messages: List[Message] = field(default_factory=list)
    enums: List[EnumType] = field(default_factory=list)
    oneofs: List[Oneof] = field(default_factory=list)
    is_map_entry: bool = False
    leading_comments: str = ""
    options: Optional[MessageJsonSchemaOptions] = None
    source_file: str = ""
    package: str = ""

    @property
    def nested_path(self) -> List[str]:
        """Names from the outermost message down to this one."""
        local = self.full_name[len(self.package) + 1:] if self.package else self.full_name
        return local.split(".")


@dataclass
class ProtoFile:
    path: str
    package: str = ""
    dependencies: List[str] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    enums: List[EnumType] = field(default_factory=list)
    options: Optional[FileJsonSchemaOptions] = None
    # Every file linked together with this one, by path. Set by link_files.
    linked_files: Dict[str, ProtoFile] = field(default_factory=dict, repr=False, compare=False)

    @property
    def stem(self) -> str:
        base = self.path.rsplit("/", 1)[-1]
        return base[: -len(".proto")] if base.endswith(".proto") else base


def iter_messages(messages: List[Message]) -> Iterator[Message]:
    """Yield every message depth-first, parents before their nested types."""
    for message in messages:
        yield message
        yield from iter_messages(message.nested_messages)


def iter_enums(proto_file: ProtoFile) -> Iterator[EnumType]:
    yield from proto_file.enums
    for message in iter_messages(proto_file.messages):
        yield from message.enums


def link_files(files: List[ProtoFile]) -> None:
    """Point every message/enum field at the object named by its type_name.

    Raises UnresolvedReferenceError for the first name that matches nothing.
    """
    files_by_path = {proto_file.path: proto_file for proto_file in files}
    for proto_file in files:
        proto_file.linked_files = files_by_path

    messages_by_name: Dict[str, Message] = {}
    enums_by_name: Dict[str, EnumType] = {}
    for proto_file in files:
        for message in iter_messages(proto_file.messages):
            messages_by_name[message.full_name] = message
        for enum in iter_enums(proto_file):
            enums_by_name[enum.full_name] = enum

    for proto_file in files:
        for message in iter_messages(proto_file.messages):
            for f in message.fields:
                if f.kind in (FieldKind.MESSAGE, FieldKind.GROUP):
                    if f.type_name not in messages_by_name:
                        raise UnresolvedReferenceError(
                            f"unknown message type '{f.type_name}'", message.full_name, f.name
                        )
                    f.message = messages_by_name[f.type_name]
                elif f.kind == FieldKind.ENUM:
                    if f.type_name not in enums_by_name:
                        raise UnresolvedReferenceError(
                            f"unknown enum type '{f.type_name}'", message.full_name, f.name
                        )
                    f.enum = enums_by_name[f.type_name]
