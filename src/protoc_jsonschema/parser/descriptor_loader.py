"""Build the descriptor model from protoc output.

Used three ways: compiling a .proto with protoc (``parse_proto_via_descriptor``),
reading a saved descriptor set (``load_descriptor_set``), and mapping the
FileDescriptorProtos a protoc plugin receives (``files_from_descriptors``).
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from typing import Any, Dict, Iterable, List, Optional, Sequence

from google.protobuf import descriptor_pb2 as d2
from google.protobuf import descriptor_pool, message_factory

from protoc_jsonschema.errors import UnsupportedFieldKindError
from protoc_jsonschema.models import (
    Cardinality,
    EnumType,
    Field,
    FieldKind,
    Message,
    Oneof,
    ProtoFile,
    link_files,
)
from protoc_jsonschema.options import (
    FIELD_EXTENSION,
    FILE_EXTENSION,
    MESSAGE_EXTENSION,
    OPTIONS_PROTO_DIR,
    OPTIONS_PROTO_FILE,
    field_options_from_dict,
    file_options_from_dict,
    message_options_from_dict,
)

logger = logging.getLogger(__name__)

_FDP = d2.FieldDescriptorProto

_TYPE_KINDS: Dict[int, FieldKind] = {
    _FDP.TYPE_BOOL: FieldKind.BOOL,
    _FDP.TYPE_INT32: FieldKind.INT32,
    _FDP.TYPE_SINT32: FieldKind.SINT32,
    _FDP.TYPE_UINT32: FieldKind.UINT32,
    _FDP.TYPE_FIXED32: FieldKind.FIXED32,
    _FDP.TYPE_SFIXED32: FieldKind.SFIXED32,
    _FDP.TYPE_INT64: FieldKind.INT64,
    _FDP.TYPE_SINT64: FieldKind.SINT64,
    _FDP.TYPE_UINT64: FieldKind.UINT64,
    _FDP.TYPE_FIXED64: FieldKind.FIXED64,
    _FDP.TYPE_SFIXED64: FieldKind.SFIXED64,
    _FDP.TYPE_FLOAT: FieldKind.FLOAT,
    _FDP.TYPE_DOUBLE: FieldKind.DOUBLE,
    _FDP.TYPE_STRING: FieldKind.STRING,
    _FDP.TYPE_BYTES: FieldKind.BYTES,
    _FDP.TYPE_ENUM: FieldKind.ENUM,
    _FDP.TYPE_MESSAGE: FieldKind.MESSAGE,
    _FDP.TYPE_GROUP: FieldKind.GROUP,
}

# Field numbers inside descriptor.proto, used in SourceCodeInfo paths.
_FILE_MESSAGE_TYPE = 4
_FILE_ENUM_TYPE = 5
_MESSAGE_FIELD = 2
_MESSAGE_NESTED_TYPE = 3
_MESSAGE_ENUM_TYPE = 4


class _OptionReader:
    """Reads the jsonschema extensions out of descriptor option messages.

    Option messages parsed by descriptor_pb2 keep unknown extensions as raw
    bytes, so they are re-parsed against a pool that knows the extensions.
    """

    def __init__(self, file_protos: Sequence[d2.FileDescriptorProto]):
        self._pool: Optional[descriptor_pool.DescriptorPool] = None
        if any(fdp.name == OPTIONS_PROTO_FILE for fdp in file_protos):
            self._pool = descriptor_pool.DescriptorPool()
            # Dependencies come first in descriptor sets and plugin requests.
            for fdp in file_protos:
                self._pool.AddSerializedFile(fdp.SerializeToString())

    def read(self, options: Any, extension_name: str) -> Optional[Dict[str, Any]]:
        if self._pool is None:
            return None
        extension = self._pool.FindExtensionByName(extension_name)
        options_class = message_factory.GetMessageClass(extension.containing_type)
        parsed = options_class.FromString(options.SerializeToString())
        if not parsed.HasExtension(extension):
            return None
        value = parsed.Extensions[extension]
        return {fd.name: v for fd, v in value.ListFields()}


class _CommentIndex:
    def __init__(self, fdp: d2.FileDescriptorProto):
        self._comments: Dict[tuple, str] = {
            tuple(location.path): location.leading_comments
            for location in fdp.source_code_info.location
            if location.leading_comments
        }

    def get(self, path: Sequence[int]) -> str:
        return self._comments.get(tuple(path), "")


def file_from_descriptor(fdp: d2.FileDescriptorProto, reader: Optional[_OptionReader] = None) -> ProtoFile:
    """Map one FileDescriptorProto to a (not yet linked) model ProtoFile."""
    reader = reader or _OptionReader([])
    comments = _CommentIndex(fdp)
    file_values = reader.read(fdp.options, FILE_EXTENSION)
    proto_file = ProtoFile(
        path=fdp.name,
        package=fdp.package,
        dependencies=list(fdp.dependency),
        options=file_options_from_dict(file_values, fdp.name) if file_values is not None else None,
    )
    proto2 = fdp.syntax in ("", "proto2")

    for i, enum_desc in enumerate(fdp.enum_type):
        proto_file.enums.append(_build_enum(enum_desc, fdp.package, comments.get([_FILE_ENUM_TYPE, i])))
    for i, msg_desc in enumerate(fdp.message_type):
        proto_file.messages.append(
            _build_message(msg_desc, fdp, fdp.package, [_FILE_MESSAGE_TYPE, i], comments, reader, proto2)
        )
    return proto_file


def _qualify(scope: str, name: str) -> str:
    return f"{scope}.{name}" if scope else name


def _build_enum(desc: d2.EnumDescriptorProto, scope: str, comments: str) -> EnumType:
    return EnumType(
        name=desc.name,
        full_name=_qualify(scope, desc.name),
        values={v.name: v.number for v in desc.value},
        leading_comments=comments,
    )


def _build_message(
    desc: d2.DescriptorProto,
    fdp: d2.FileDescriptorProto,
    scope: str,
    path: List[int],
    comments: _CommentIndex,
    reader: _OptionReader,
    proto2: bool,
) -> Message:
    full_name = _qualify(scope, desc.name)
    message_values = reader.read(desc.options, MESSAGE_EXTENSION)
    msg = Message(
        name=desc.name,
        full_name=full_name,
        is_map_entry=desc.options.map_entry,
        leading_comments=comments.get(path),
        options=message_options_from_dict(message_values, full_name) if message_values is not None else None,
        source_file=fdp.name,
        package=fdp.package,
    )

    for i, nested in enumerate(desc.nested_type):
        msg.nested_messages.append(
            _build_message(nested, fdp, full_name, path + [_MESSAGE_NESTED_TYPE, i], comments, reader, proto2)
        )
    for i, enum_desc in enumerate(desc.enum_type):
        msg.enums.append(_build_enum(enum_desc, full_name, comments.get(path + [_MESSAGE_ENUM_TYPE, i])))

    synthetic = {f.oneof_index for f in desc.field if f.proto3_optional and f.HasField("oneof_index")}
    msg.oneofs = [Oneof(o.name, is_synthetic=i in synthetic) for i, o in enumerate(desc.oneof_decl)]
    map_entries = {m.full_name for m in msg.nested_messages if m.is_map_entry}

    for i, field_desc in enumerate(desc.field):
        kind = _TYPE_KINDS.get(field_desc.type)
        if kind is None:
            raise UnsupportedFieldKindError(
                f"unsupported field type number {field_desc.type}", full_name, field_desc.name
            )
        type_name = field_desc.type_name.lstrip(".")
        cardinality = Cardinality.SINGULAR
        if field_desc.label == _FDP.LABEL_REPEATED:
            cardinality = Cardinality.MAP if type_name in map_entries else Cardinality.REPEATED

        f = Field(
            name=field_desc.name,
            number=field_desc.number,
            kind=kind,
            cardinality=cardinality,
            type_name=type_name,
            oneof=msg.oneofs[field_desc.oneof_index] if field_desc.HasField("oneof_index") else None,
            has_optional_keyword=field_desc.proto3_optional or (proto2 and field_desc.label == _FDP.LABEL_OPTIONAL),
            json_name=field_desc.json_name,
            leading_comments=comments.get(path + [_MESSAGE_FIELD, i]),
        )
        field_values = reader.read(field_desc.options, FIELD_EXTENSION)
        if field_values is not None:
            f.options = field_options_from_dict(field_values, f"{full_name}.{f.name}")
        msg.fields.append(f)

    return msg


def files_from_descriptors(file_protos: Iterable[d2.FileDescriptorProto]) -> List[ProtoFile]:
    """Map and link a dependency-ordered list of FileDescriptorProtos."""
    file_protos = list(file_protos)
    reader = _OptionReader(file_protos)
    files = [file_from_descriptor(fdp, reader) for fdp in file_protos]
    link_files(files)
    return files


def load_descriptor_set(path: str) -> List[ProtoFile]:
    """Read a FileDescriptorSet written by ``protoc --descriptor_set_out``."""
    fds = d2.FileDescriptorSet()
    with open(path, "rb") as f:
        fds.ParseFromString(f.read())
    return files_from_descriptors(fds.file)


def run_protoc(proto_path: str, include_paths: Optional[Sequence[str]] = None) -> d2.FileDescriptorSet:
    """Compile ``proto_path`` with protoc into a FileDescriptorSet with imports and comments."""
    includes = list(include_paths or []) or [os.path.dirname(os.path.abspath(proto_path))]
    includes.append(OPTIONS_PROTO_DIR)

    # de-dup while preserving order
    seen = set()
    inc_args: List[str] = []
    for inc in includes:
        if inc and inc not in seen:
            seen.add(inc)
            inc_args.extend(["-I", inc])

    with tempfile.TemporaryDirectory() as td:
        desc_path = os.path.join(td, "descriptor_set.pb")
        cmd = [
            "protoc",
            "--include_imports",
            "--include_source_info",
            f"--descriptor_set_out={desc_path}",
        ] + inc_args + [proto_path]
        logger.debug("Running %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except FileNotFoundError as e:
            raise RuntimeError("'protoc' not found. Please install Protocol Buffers compiler and ensure it is in PATH.") from e
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"protoc failed: {e.stderr.decode('utf-8', errors='ignore')}") from e

        fds = d2.FileDescriptorSet()
        with open(desc_path, "rb") as f:
            fds.ParseFromString(f.read())
    return fds


def parse_proto_via_descriptor(proto_path: str, include_paths: Optional[Sequence[str]] = None) -> ProtoFile:
    """Parse a .proto by invoking protoc to get a descriptor set and mapping it into the model."""
    fds = run_protoc(proto_path, include_paths)
    files = files_from_descriptors(fds.file)

    # protoc lists the requested file last; match by path suffix to be safe.
    normalized = proto_path.replace(os.sep, "/")
    for proto_file in reversed(files):
        if normalized == proto_file.path or normalized.endswith("/" + proto_file.path):
            return proto_file
    names = ", ".join(f.path for f in files)
    raise RuntimeError(f"Could not locate target file '{proto_path}' in descriptor set. Found: {names}")
