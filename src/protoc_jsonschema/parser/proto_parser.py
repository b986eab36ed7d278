"""Load .proto files with the native parser, imports included.

Imports are looked up on the include paths, then in the directory shipping
``jsonschema/options.proto``. ``google/protobuf/*.proto`` imports that are
not on disk come from the descriptors compiled into the protobuf runtime.
"""

from __future__ import annotations

import importlib
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

from google.protobuf import descriptor_pb2, descriptor_pool

from protoc_jsonschema.models import ProtoFile, link_files
from protoc_jsonschema.options import OPTIONS_PROTO_DIR

from .descriptor_loader import file_from_descriptor
from .proto_ast_parser import ProtoParseError, parse_proto_text
from .proto_transform import collect_symbols, resolve_type_names, transform_proto

logger = logging.getLogger(__name__)

_BUILTIN_PREFIX = "google/protobuf/"


class ProtoLoader:
    """Parses files and their imports, keyed by import name (``pkg/file.proto``)."""

    def __init__(self, include_paths: Optional[Sequence[str]] = None):
        self._include_paths = [os.path.abspath(p) for p in include_paths or []]
        self._include_paths.append(OPTIONS_PROTO_DIR)
        self._files: Dict[str, ProtoFile] = {}
        self._unresolved: List[ProtoFile] = []
        self._loading: Set[str] = set()

    def load(self, proto_path: str) -> ProtoFile:
        """Parse the file at ``proto_path`` and everything it imports."""
        return self._load(self.import_name(proto_path), proto_path)

    def import_name(self, proto_path: str) -> str:
        """Path of ``proto_path`` relative to the first include path containing it."""
        abs_path = os.path.abspath(proto_path)
        for root in self._include_paths:
            rel = os.path.relpath(abs_path, root)
            if not rel.startswith(".."):
                return rel.replace(os.sep, "/")
        return os.path.basename(abs_path)

    def link(self) -> List[ProtoFile]:
        """Resolve type names and link fields across every loaded file."""
        files = list(self._files.values())
        resolve_type_names(self._unresolved, collect_symbols(files))
        self._unresolved = []
        link_files(files)
        return files

    def _load(self, name: str, disk_path: str) -> ProtoFile:
        if name in self._files:
            return self._files[name]
        if name in self._loading:
            raise ProtoParseError(f"{name}: import cycle")

        self._loading.add(name)
        try:
            text = Path(disk_path).read_text(encoding="utf-8")
            try:
                node = parse_proto_text(text)
            except ProtoParseError as e:
                raise ProtoParseError(f"{name}: {e}") from e
            proto_file = transform_proto(node, name)
            for dependency in node.imports:
                self._load_import(dependency, name)
        finally:
            self._loading.discard(name)

        logger.debug("Parsed %s (%d message(s))", name, len(proto_file.messages))
        self._files[name] = proto_file
        self._unresolved.append(proto_file)
        return proto_file

    def _load_import(self, name: str, importer: str) -> None:
        if name in self._files:
            return
        for root in self._include_paths:
            candidate = os.path.join(root, name)
            if os.path.isfile(candidate):
                self._load(name, candidate)
                return
        if name.startswith(_BUILTIN_PREFIX):
            self._load_builtin(name)
            return
        raise ProtoParseError(
            f"{importer}: import '{name}' not found in include paths: {', '.join(self._include_paths)}"
        )

    def _load_builtin(self, name: str) -> None:
        module = name[: -len(".proto")].replace("/", ".") + "_pb2"
        try:
            # Importing the generated module registers the file in the default pool.
            importlib.import_module(module)
            descriptor = descriptor_pool.Default().FindFileByName(name)
        except (ImportError, KeyError) as e:
            raise ProtoParseError(f"import '{name}' is not bundled with the protobuf runtime") from e

        fdp = descriptor_pb2.FileDescriptorProto()
        descriptor.CopyToProto(fdp)
        logger.debug("Loaded %s from the protobuf runtime", name)
        self._files[name] = file_from_descriptor(fdp)
        for dependency in fdp.dependency:
            self._load_import(dependency, name)


def load_proto_files(paths: Sequence[str], include_paths: Optional[Sequence[str]] = None) -> List[ProtoFile]:
    """Parse ``paths`` sharing one loader; return their linked models in order."""
    loader = ProtoLoader(include_paths)
    files = [loader.load(p) for p in paths]
    loader.link()
    return files


def parse_proto_file(file_path: str, include_paths: Optional[Sequence[str]] = None) -> ProtoFile:
    """Parse a .proto file and its imports into a linked model ProtoFile.

    Without include paths the file's own directory is the only one.
    """
    if not include_paths:
        include_paths = [os.path.dirname(os.path.abspath(file_path))]
    return load_proto_files([file_path], include_paths)[0]
