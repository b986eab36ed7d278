"""protoc plugin entry point.

Install the package and run::

    protoc --plugin=protoc-gen-pyjsonschema --pyjsonschema_out=gen \\
        --pyjsonschema_opt=format=json -I . users/v1/user.proto

Parameters are comma-separated ``key=value`` pairs. The only key is
``format`` (``python``, the default, or ``json``).
"""

from __future__ import annotations

import logging
import sys
from typing import Dict

from google.protobuf.compiler import plugin_pb2

from protoc_jsonschema.errors import JsonSchemaError
from protoc_jsonschema.generator.json_schema_writer import build_json_bundle, dumps_bundle, json_schema_path
from protoc_jsonschema.generator.python_module_generator import generate_python_module, module_path
from protoc_jsonschema.parser.descriptor_loader import files_from_descriptors
from protoc_jsonschema.version import get_version

logger = logging.getLogger(__name__)

_PARAMETER_VALUES = {
    "format": ("python", "json"),
}


class PluginParameterError(ValueError):
    """The plugin parameter string could not be understood."""


def parse_parameter(parameter: str) -> Dict[str, str]:
    params = {"format": "python"}
    for item in parameter.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        key, value = key.strip(), value.strip()
        if not sep:
            raise PluginParameterError(f"plugin parameter '{item}' is not key=value")
        if key not in _PARAMETER_VALUES:
            raise PluginParameterError(
                f"unknown plugin parameter '{key}' (expected one of: {', '.join(sorted(_PARAMETER_VALUES))})"
            )
        if value not in _PARAMETER_VALUES[key]:
            raise PluginParameterError(
                f"plugin parameter '{key}' must be one of: {', '.join(_PARAMETER_VALUES[key])}, got '{value}'"
            )
        params[key] = value
    return params


def generate_response(request: plugin_pb2.CodeGeneratorRequest) -> plugin_pb2.CodeGeneratorResponse:
    """Build the plugin response; any failure is reported in ``response.error`` with no files."""
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL

    try:
        params = parse_parameter(request.parameter)
    except PluginParameterError as e:
        response.error = str(e)
        return response

    version = get_version()
    try:
        files = {f.path: f for f in files_from_descriptors(request.proto_file)}
    except JsonSchemaError as e:
        response.error = str(e)
        return response

    for name in request.file_to_generate:
        proto_file = files[name]
        try:
            if params["format"] == "json":
                bundle = build_json_bundle(proto_file)
                content = dumps_bundle(bundle) if bundle is not None else None
                out_name = json_schema_path(name)
            else:
                content = generate_python_module(proto_file, version)
                out_name = module_path(name)
        except JsonSchemaError as e:
            response.error = f"{name}: {e}"
            del response.file[:]
            return response

        if content is None:
            logger.info("%s: no messages selected, skipping", name)
            continue
        out = response.file.add()
        out.name = out_name
        out.content = content

    return response


def main() -> None:
    request = plugin_pb2.CodeGeneratorRequest.FromString(sys.stdin.buffer.read())
    response = generate_response(request)
    sys.stdout.buffer.write(response.SerializeToString())


if __name__ == "__main__":
    main()
