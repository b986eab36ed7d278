"""AST node definitions for protobuf (.proto) files."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ProtoOption:
    """An option assignment.

    ``name`` is the option or extension name without parentheses. A
    sub-field assignment such as ``(ext).sub = 1`` is stored as
    ``ProtoOption("ext", {"sub": 1})``.
    """

    name: str
    value: Any
    is_extension: bool = False
    line: int = 0


@dataclass
class ProtoField:
    """A field declaration: [label] Type name = number [options];

    Map fields carry ``key_type``/``value_type``; groups carry the group's
    message body in ``group``.
    """

    type_name: str
    field_name: str
    field_number: int
    label: str = ""
    key_type: str = ""
    value_type: str = ""
    options: List[ProtoOption] = field(default_factory=list)
    oneof_name: str = ""
    group: Optional[ProtoMessage] = None
    comments: str = ""
    line: int = 0

    @property
    def is_repeated(self) -> bool:
        return self.label == "repeated"

    @property
    def is_map(self) -> bool:
        return bool(self.key_type)


@dataclass
class ProtoEnum:
    name: str
    values: Dict[str, int] = field(default_factory=dict)
    comments: str = ""


@dataclass
class ProtoMessage:
    """A message definition, possibly containing nested messages."""

    name: str
    fields: List[ProtoField] = field(default_factory=list)
    nested_messages: List[ProtoMessage] = field(default_factory=list)
    enums: List[ProtoEnum] = field(default_factory=list)
    oneofs: List[str] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    comments: str = ""
    line: int = 0


@dataclass
class ProtoFile:
    """Top-level parsed representation of a .proto file."""

    syntax: str = "proto2"
    package: str = ""
    imports: List[str] = field(default_factory=list)
    options: List[ProtoOption] = field(default_factory=list)
    messages: List[ProtoMessage] = field(default_factory=list)
    enums: List[ProtoEnum] = field(default_factory=list)
