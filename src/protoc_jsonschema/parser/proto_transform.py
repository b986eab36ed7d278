"""Transform proto AST nodes into the descriptor model.

Type references are kept as written by ``transform_proto`` and resolved to
fully-qualified names afterwards by ``resolve_type_names``, once every file
they may point into has been loaded.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from protoc_jsonschema.errors import MalformedOptionError
from protoc_jsonschema.models import (
    MAP_KEY_NUMBER,
    MAP_VALUE_NUMBER,
    SCALAR_KINDS,
    Cardinality,
    EnumType,
    Field,
    FieldKind,
    Message,
    Oneof,
    ProtoFile,
    iter_messages,
)
from protoc_jsonschema.options import (
    FIELD_EXTENSION,
    FILE_EXTENSION,
    MESSAGE_EXTENSION,
    field_options_from_dict,
    file_options_from_dict,
    message_options_from_dict,
)

from . import proto_ast as ast
from .proto_ast_parser import ProtoParseError


def map_entry_name(field_name: str) -> str:
    """Name protoc gives the synthetic entry message of a map field."""
    result = []
    capitalize_next = True
    for ch in field_name:
        if ch == "_":
            capitalize_next = True
        elif capitalize_next:
            result.append(ch.upper())
            capitalize_next = False
        else:
            result.append(ch)
    return "".join(result) + "Entry"


def _qualify(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


def _extension_values(options: List[ast.ProtoOption], name: str, where: str) -> Optional[Dict[str, Any]]:
    """Merge every assignment to extension ``name``; None when it is never set."""
    values: Optional[Dict[str, Any]] = None
    for opt in options:
        if not opt.is_extension or opt.name != name:
            continue
        if not isinstance(opt.value, dict):
            raise MalformedOptionError(f"option ({name}) expects a message value, got {opt.value!r}", where)
        values = {**(values or {}), **opt.value}
    return values


def transform_proto(node: ast.ProtoFile, path: str) -> ProtoFile:
    """Transform a ProtoFile AST into a model ProtoFile.

    Message and enum field types are left unresolved; see resolve_type_names.
    """
    file_values = _extension_values(node.options, FILE_EXTENSION, path)
    proto_file = ProtoFile(
        path=path,
        package=node.package,
        dependencies=list(node.imports),
        options=file_options_from_dict(file_values, path) if file_values is not None else None,
    )
    proto3 = node.syntax == "proto3"

    for enum_node in node.enums:
        proto_file.enums.append(_transform_enum(enum_node, node.package))
    for msg_node in node.messages:
        proto_file.messages.append(_transform_message(msg_node, node.package, path, node.package, proto3))
    return proto_file


def _transform_enum(node: ast.ProtoEnum, scope: str) -> EnumType:
    return EnumType(
        name=node.name,
        full_name=_qualify(scope, node.name),
        values=dict(node.values),
        leading_comments=node.comments,
    )


def _transform_message(node: ast.ProtoMessage, scope: str, path: str, package: str, proto3: bool) -> Message:
    full_name = _qualify(scope, node.name)
    message_values = _extension_values(node.options, MESSAGE_EXTENSION, full_name)
    msg = Message(
        name=node.name,
        full_name=full_name,
        leading_comments=node.comments,
        options=message_options_from_dict(message_values, full_name) if message_values is not None else None,
        source_file=path,
        package=package,
    )

    oneofs = {name: Oneof(name) for name in node.oneofs}
    msg.oneofs.extend(oneofs.values())
    synthetic: List[Oneof] = []

    for nested_node in node.nested_messages:
        msg.nested_messages.append(_transform_message(nested_node, full_name, path, package, proto3))
    for enum_node in node.enums:
        msg.enums.append(_transform_enum(enum_node, full_name))

    for field_node in node.fields:
        if field_node.is_map:
            entry = _map_entry(field_node, full_name, path, package)
            msg.nested_messages.append(entry)
            f = Field(
                name=field_node.field_name,
                number=field_node.field_number,
                kind=FieldKind.MESSAGE,
                cardinality=Cardinality.MAP,
                type_name="." + entry.full_name,
            )
        else:
            f = _scalar_or_reference(field_node.type_name, field_node.field_name, field_node.field_number)
            if field_node.group is not None:
                f.kind = FieldKind.GROUP
            if field_node.is_repeated:
                f.cardinality = Cardinality.REPEATED
            if field_node.oneof_name:
                f.oneof = oneofs[field_node.oneof_name]
            elif field_node.label == "optional":
                f.has_optional_keyword = True
                if proto3:
                    # protoc wraps each proto3 optional field in a oneof of its own.
                    f.oneof = Oneof(f"_{f.name}", is_synthetic=True)
                    synthetic.append(f.oneof)

        f.leading_comments = field_node.comments
        where = f"{full_name}.{f.name}"
        for opt in field_node.options:
            if not opt.is_extension and opt.name == "json_name":
                if not isinstance(opt.value, str):
                    raise MalformedOptionError(f"json_name expects a string, got {opt.value!r}", where)
                f.json_name = opt.value
        field_values = _extension_values(field_node.options, FIELD_EXTENSION, where)
        if field_values is not None:
            f.options = field_options_from_dict(field_values, where)
        msg.fields.append(f)

    msg.oneofs.extend(synthetic)
    return msg


def _scalar_or_reference(type_name: str, name: str, number: int) -> Field:
    kind = SCALAR_KINDS.get(type_name)
    if kind is not None:
        return Field(name=name, number=number, kind=kind)
    # MESSAGE until resolution tells message and enum apart.
    return Field(name=name, number=number, kind=FieldKind.MESSAGE, type_name=type_name)


def _map_entry(node: ast.ProtoField, scope: str, path: str, package: str) -> Message:
    name = map_entry_name(node.field_name)
    entry = Message(
        name=name,
        full_name=_qualify(scope, name),
        is_map_entry=True,
        source_file=path,
        package=package,
    )
    key = _scalar_or_reference(node.key_type, "key", MAP_KEY_NUMBER)
    if key.type_name:
        raise ProtoParseError(f"Line {node.line}: map key type must be a scalar, got {node.key_type!r}")
    entry.fields.append(key)
    entry.fields.append(_scalar_or_reference(node.value_type, "value", MAP_VALUE_NUMBER))
    return entry


# -- name resolution --


def _scope_names(symbols: Dict[str, FieldKind]) -> Set[str]:
    """Every declared type plus every package and parent scope enclosing one."""
    names: Set[str] = set()
    for full_name in symbols:
        parts = full_name.split(".")
        for i in range(1, len(parts) + 1):
            names.add(".".join(parts[:i]))
    return names


def _resolve_name(name: str, scope: str, symbols: Dict[str, FieldKind], scopes: Set[str]) -> Optional[str]:
    """Resolve ``name`` seen inside ``scope``, searching the innermost scope first.

    Only the first component of a dotted name is searched for. Once it
    matches, the rest must exist under that match: an inner ``Foo`` hides an
    outer ``Foo`` even when only the outer one declares ``Bar``.
    """
    if name.startswith("."):
        return name[1:] if name[1:] in symbols else None
    first, _, rest = name.partition(".")
    parts = scope.split(".") if scope else []
    while True:
        candidate = ".".join(parts + [first])
        if candidate in scopes:
            resolved = f"{candidate}.{rest}" if rest else candidate
            return resolved if resolved in symbols else None
        if not parts:
            return None
        parts.pop()


def collect_symbols(files: List[ProtoFile]) -> Dict[str, FieldKind]:
    """Full name -> MESSAGE or ENUM for every type declared in ``files``."""
    symbols: Dict[str, FieldKind] = {}
    for proto_file in files:
        for enum in proto_file.enums:
            symbols[enum.full_name] = FieldKind.ENUM
        for message in iter_messages(proto_file.messages):
            symbols[message.full_name] = FieldKind.MESSAGE
            for enum in message.enums:
                symbols[enum.full_name] = FieldKind.ENUM
    return symbols


def resolve_type_names(targets: List[ProtoFile], symbols: Dict[str, FieldKind]) -> None:
    """Rewrite the type names of ``targets`` to fully-qualified names.

    Fields whose name resolves to an enum switch to kind ENUM. Raises
    ProtoParseError for names that match nothing.
    """
    scopes = _scope_names(symbols)
    for proto_file in targets:
        for message in iter_messages(proto_file.messages):
            for f in message.fields:
                if not f.type_name:
                    continue
                resolved = _resolve_name(f.type_name, message.full_name, symbols, scopes)
                if resolved is None:
                    raise ProtoParseError(
                        f"{proto_file.path}: unknown type '{f.type_name}' for field {message.full_name}.{f.name}"
                    )
                f.type_name = resolved
                if symbols[resolved] == FieldKind.ENUM:
                    if f.kind == FieldKind.GROUP or f.is_map:
                        raise ProtoParseError(
                            f"{proto_file.path}: '{f.type_name}' is an enum, not a message "
                            f"({message.full_name}.{f.name})"
                        )
                    f.kind = FieldKind.ENUM
