from __future__ import annotations

import json
import os
import posixpath
from pathlib import Path
from typing import Any, Dict, Optional

from protoc_jsonschema.models import ProtoFile
from protoc_jsonschema.selection import select_file_messages
from protoc_jsonschema.synthesizer import SCHEMA_DIALECT, Registry, SchemaSynthesizer


def build_json_bundle(proto_file: ProtoFile) -> Optional[Dict[str, Any]]:
    """All selected schemas of a file as one ``{"$schema", "$defs"}`` document.

    Definitions of messages from other files are included, so the document
    is self-contained. Returns None when the file selects no message.
    """
    selection = select_file_messages(proto_file)
    if selection.is_empty:
        return None

    synthesizer = SchemaSynthesizer(selected=selection.full_names)
    defs: Registry = {}
    for message in selection.local + selection.external:
        synthesizer.json_schema_with_defs(message, defs)
    return {"$schema": SCHEMA_DIALECT, "$defs": defs}


def json_schema_path(proto_path: str) -> str:
    """``users/v1/user.proto`` -> ``users/v1/user.schema.json``; mirrors the proto layout."""
    base = proto_path[: -len(".proto")] if proto_path.endswith(".proto") else proto_path
    return posixpath.normpath(base + ".schema.json")


def dumps_bundle(bundle: Dict[str, Any]) -> str:
    return json.dumps(bundle, indent=2, sort_keys=True) + "\n"


def generate_json_schema(proto_file: ProtoFile, out_dir: str) -> Optional[str]:
    """Write the JSON bundle of the file; return its path, or None if nothing was selected."""
    bundle = build_json_bundle(proto_file)
    if bundle is None:
        return None
    file_path = os.path.join(out_dir, json_schema_path(proto_file.path))
    os.makedirs(os.path.dirname(file_path), exist_ok=True)
    Path(file_path).write_text(dumps_bundle(bundle), encoding="utf-8")
    return file_path
