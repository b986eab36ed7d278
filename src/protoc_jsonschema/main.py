from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, Sequence

from protoc_jsonschema.errors import JsonSchemaError
from protoc_jsonschema.generator.json_schema_writer import generate_json_schema
from protoc_jsonschema.generator.python_module_generator import write_python_module
from protoc_jsonschema.models import ProtoFile
from protoc_jsonschema.parser.descriptor_loader import parse_proto_via_descriptor
from protoc_jsonschema.parser.proto_ast_parser import ProtoParseError
from protoc_jsonschema.parser.proto_parser import parse_proto_file
from protoc_jsonschema.version import get_version

FORMAT_PYTHON = "python"
FORMAT_JSON = "json"
PARSER_NATIVE = "native"
PARSER_PROTOC = "protoc"


def _find_proto_files(root: str) -> List[str]:
    files: List[str] = []
    for dirpath, _, filenames in os.walk(root):
        for fn in filenames:
            if fn.lower().endswith(".proto"):
                files.append(os.path.join(dirpath, fn))
    # Sort for deterministic output
    files.sort()
    return files


def load_proto(proto_path: str, include_paths: Sequence[str], parser: str = PARSER_NATIVE) -> ProtoFile:
    if parser == PARSER_PROTOC:
        return parse_proto_via_descriptor(proto_path, include_paths)
    return parse_proto_file(proto_path, include_paths)


def generate(
    proto_path: str,
    out_dir: str,
    include_paths: Optional[Sequence[str]] = None,
    output_format: str = FORMAT_PYTHON,
    parser: str = PARSER_NATIVE,
) -> Optional[str]:
    """Generate the schema output for one .proto file.

    Returns the written path, or None when the file selects no message.
    """
    include_paths = list(include_paths or []) or [os.path.dirname(os.path.abspath(proto_path))]
    proto_file = load_proto(proto_path, include_paths, parser)
    if output_format == FORMAT_JSON:
        return generate_json_schema(proto_file, out_dir)
    return write_python_module(proto_file, out_dir, get_version())


def run(
    inputs: List[str],
    out_dir: str,
    include_paths: Sequence[str],
    output_format: str = FORMAT_PYTHON,
    parser: str = PARSER_NATIVE,
) -> int:
    """Generate every input; a failing file does not stop the others.

    Returns the process exit code: 1 if any file failed, else 0.
    """
    failed = 0
    for proto_path in inputs:
        try:
            out_path = generate(proto_path, out_dir, include_paths, output_format, parser)
        except (ProtoParseError, JsonSchemaError, RuntimeError, OSError) as e:
            print(f"FATAL: {proto_path}: {e}", file=sys.stderr)
            failed += 1
            continue
        if out_path is None:
            print(f"Skipped: {proto_path} (no messages selected)")
        else:
            print(f"Generated: {out_path}")
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="proto-jsonschema",
        description="Generate JSON Schema (Draft 2020-12) builders from .proto files",
    )
    parser.add_argument("--proto", required=True, help="Path to a .proto file or a directory containing .proto files (recursively)")
    parser.add_argument("--out", required=True, help="Output directory for generated file(s)")
    parser.add_argument(
        "-I",
        "--proto_path",
        dest="include_paths",
        action="append",
        default=[],
        help="Directory to search for imports (repeatable; defaults to the --proto directory)",
    )
    parser.add_argument(
        "--format",
        choices=(FORMAT_PYTHON, FORMAT_JSON),
        default=FORMAT_PYTHON,
        help="Emit Python schema modules (default) or .schema.json bundles",
    )
    parser.add_argument(
        "--parser",
        choices=(PARSER_NATIVE, PARSER_PROTOC),
        default=PARSER_NATIVE,
        help="Parse sources with the built-in parser (default) or with protoc",
    )
    parser.add_argument("--verbose", action="store_true", help="Log selection and synthesis steps")
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    include_paths: List[str] = args.include_paths
    if os.path.isdir(args.proto):
        inputs = _find_proto_files(args.proto)
        if not inputs:
            print(f"No .proto files found under directory: {args.proto}")
            return
        if not include_paths:
            include_paths = [args.proto]
    else:
        inputs = [args.proto]

    code = run(inputs, args.out, include_paths, args.format, args.parser)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
