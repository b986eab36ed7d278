import ast
import importlib
import os
import shutil
import sys
import tempfile

import pytest

from protoc_jsonschema.errors import JsonSchemaError, UnresolvedReferenceError
from protoc_jsonschema.generator.python_module_generator import (
    generate_python_module,
    generate_python_modules,
    module_alias,
    module_name,
    module_path,
    render_literal,
    write_python_module,
)
from protoc_jsonschema.models import Message, ProtoFile
from protoc_jsonschema.options import FileJsonSchemaOptions
from protoc_jsonschema.parser.proto_parser import load_proto_files, parse_proto_file
from protoc_jsonschema.synthesizer import SchemaSynthesizer
from protoc_jsonschema.type_mapper import MessageRef


def _write_temp_proto(content: str) -> str:
    fd, path = tempfile.mkstemp(suffix=".proto")
    os.write(fd, content.encode())
    os.close(fd)
    return path


def _load(content: str):
    path = _write_temp_proto(content)
    try:
        return parse_proto_file(path)
    finally:
        os.unlink(path)


def _exec_module(source: str) -> dict:
    namespace: dict = {}
    exec(compile(source, "<generated>", "exec"), namespace)
    return namespace


def _call_for(ref: MessageRef) -> str:
    return f"{ref.message.name}_json_schema_with_defs(defs)"


class TestModuleNames:
    def test_nested_path(self):
        assert module_name("users/v1/common.proto") == "users.v1.common_jsonschema"
        assert module_path("users/v1/common.proto") == "users/v1/common_jsonschema.py"
        assert module_alias("users/v1/common.proto") == "users_v1_common_jsonschema"

    def test_top_level(self):
        assert module_name("user.proto") == "user_jsonschema"
        assert module_path("user.proto") == "user_jsonschema.py"

    def test_non_identifier_parts(self):
        assert module_name("my-api/v1.0/user.proto") == "my_api.v1_0.user_jsonschema"
        assert module_name("2fa/class.proto") == "_2fa._class_jsonschema"


class TestRenderLiteral:
    def test_scalars(self):
        assert render_literal("a\"b", _call_for) == '"a\\"b"'
        assert render_literal(True, _call_for) == "True"
        assert render_literal(None, _call_for) == "None"
        assert render_literal(3, _call_for) == "3"
        assert render_literal(0.5, _call_for) == "0.5"
        assert render_literal(float("inf"), _call_for) == 'float("inf")'
        assert render_literal(float("-inf"), _call_for) == 'float("-inf")'

    def test_containers(self):
        assert render_literal({}, _call_for) == "{}"
        assert render_literal([], _call_for) == "[]"
        assert render_literal({"type": "array", "items": {"type": "string"}}, _call_for) == (
            '{"type": "array", "items": {"type": "string"}}'
        )

    def test_message_references(self):
        ref = MessageRef(Message(name="Address", full_name="demo.Address"))
        assert render_literal(ref, _call_for) == "Address_json_schema_with_defs(defs)"
        assert render_literal({"$ref": ref, "description": "Home"}, _call_for) == (
            '{**Address_json_schema_with_defs(defs), "description": "Home"}'
        )
        assert render_literal({"type": "array", "items": ref}, _call_for) == (
            '{"type": "array", "items": Address_json_schema_with_defs(defs)}'
        )

    def test_long_values_are_split(self):
        value = {"enum": list(range(40)), "description": "x" * 30}
        text = render_literal(value, _call_for)
        assert "\n" in text
        assert ast.literal_eval(text) == value


class TestGeneratePythonModule:
    PROTO = """\
syntax = "proto3";
package demo;
option (jsonschema.file) = { generate: true };

// User
//
// Somebody with an account.
message User {
  string id = 1;
  repeated string tags = 2;
  Address profile = 3 [(jsonschema.field) = { description: "Where mail goes." }];
  map<int64, Address> previous = 4;
  User referrer = 5;
  oneof contact {
    string email = 6 [(jsonschema.field) = { format: "email" }];
    string phone = 7;
  }
  message Settings { bool dark = 1; }
  Settings settings = 8;
}

message Address {
  string city = 1 [(jsonschema.field) = { min_length: 1 }];
}
"""

    def test_header(self):
        source = generate_python_module(_load(self.PROTO), "1.2.3")
        assert source.startswith("# Code generated by proto-jsonschema. DO NOT EDIT.\n")
        assert "# Generator version: 1.2.3\n" in source
        assert "# Source: " in source

    def test_source_compiles(self):
        source = generate_python_module(_load(self.PROTO))
        compile(source, "<generated>", "exec")

    def test_function_names(self):
        namespace = _exec_module(generate_python_module(_load(self.PROTO)))
        for name in ("User", "Address", "User_Settings"):
            assert callable(namespace[f"{name}_json_schema"])
            assert callable(namespace[f"{name}_json_schema_with_defs"])

    def test_matches_in_memory_synthesis(self):
        proto_file = _load(self.PROTO)
        namespace = _exec_module(generate_python_module(proto_file))
        synthesizer = SchemaSynthesizer()
        for message in proto_file.messages:
            assert namespace[f"{message.name}_json_schema"]() == synthesizer.json_schema(message)

    def test_self_reference_at_runtime(self):
        namespace = _exec_module(generate_python_module(_load(self.PROTO)))
        root = namespace["User_json_schema"]()
        user = root["$defs"]["demo.User"]
        assert root["$ref"] == "#/$defs/demo.User"
        assert user["properties"]["referrer"] == {"$ref": "#/$defs/demo.User"}
        assert user["properties"]["profile"] == {"$ref": "#/$defs/demo.Address", "description": "Where mail goes."}
        assert user["oneOf"] == [{"required": ["email"]}, {"required": ["phone"]}]
        assert root["$defs"]["demo.User.Settings"]["properties"]["dark"] == {"type": "boolean"}

    def test_shared_defs(self):
        namespace = _exec_module(generate_python_module(_load(self.PROTO)))
        defs = {}
        assert namespace["Address_json_schema_with_defs"](defs) == {"$ref": "#/$defs/demo.Address"}
        assert list(defs) == ["demo.Address"]
        namespace["User_json_schema_with_defs"](defs)
        assert set(defs) == {"demo.Address", "demo.User", "demo.User.Settings"}

    def test_nothing_selected(self):
        assert generate_python_module(_load('syntax = "proto3";\nmessage A { string x = 1; }\n')) is None

    def test_well_known_types_are_inlined(self):
        source = generate_python_module(_load("""\
syntax = "proto3";
package demo;
import "google/protobuf/timestamp.proto";
option (jsonschema.file) = { generate: true };
message Event { google.protobuf.Timestamp at = 1; }
"""))
        namespace = _exec_module(source)
        root = namespace["Event_json_schema"]()
        assert root["$defs"]["demo.Event"]["properties"]["at"] == {"$ref": "#/$defs/google.protobuf.Timestamp"}
        assert root["$defs"]["google.protobuf.Timestamp"]["properties"] == {
            "seconds": {"type": "integer"},
            "nanos": {"type": "integer"},
        }
        assert "\nimport " not in source

    def test_colliding_function_names_fail(self):
        proto_file = _load("""\
syntax = "proto3";
option (jsonschema.file) = { generate: true };
message Outer {
  message Inner { string a = 1; }
  Inner i = 1;
}
message Outer_Inner { int32 b = 1; }
""")
        with pytest.raises(JsonSchemaError) as excinfo:
            generate_python_module(proto_file)
        assert excinfo.value.message_name == "Outer_Inner"
        assert "Outer_Inner_json_schema" in excinfo.value.reason
        assert "'Outer.Inner' and 'Outer_Inner'" in excinfo.value.reason

    def test_source_path_is_quoted(self):
        path = 'odd """ \\ dir/x.proto'
        proto_file = ProtoFile(
            path=path,
            options=FileJsonSchemaOptions(generate=True),
            messages=[Message(name="A", full_name="A", source_file=path)],
        )
        namespace = _exec_module(generate_python_module(proto_file))
        assert namespace["__doc__"] == f'JSON Schema (Draft 2020-12) builders for the messages of "{path}".'
        assert namespace["A_json_schema"]()["$ref"] == "#/$defs/A"


class TestCrossFileModules:
    def setup_method(self):
        self.root = tempfile.mkdtemp()
        self.out = tempfile.mkdtemp()

    def teardown_method(self):
        for name in list(sys.modules):
            if name == "crossfile" or name.startswith("crossfile."):
                del sys.modules[name]
        if self.out in sys.path:
            sys.path.remove(self.out)
        shutil.rmtree(self.root)
        shutil.rmtree(self.out)

    def _write(self, rel_path: str, content: str) -> str:
        path = os.path.join(self.root, rel_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)
        return path

    def test_imported_messages_are_called_through_their_module(self):
        common = self._write("crossfile/common.proto", """\
syntax = "proto3";
package crossfile;
option (jsonschema.file) = { generate: true };
message Address { string city = 1; }
""")
        user = self._write("crossfile/user.proto", """\
syntax = "proto3";
package crossfile;
import "crossfile/common.proto";
option (jsonschema.file) = { generate: true };
message User { Address home = 1; }
""")
        proto_files = load_proto_files([common, user], [self.root])
        written = generate_python_modules(proto_files, self.out)
        assert written == [
            os.path.join(self.out, "crossfile/common_jsonschema.py"),
            os.path.join(self.out, "crossfile/user_jsonschema.py"),
        ]

        with open(written[1]) as f:
            source = f.read()
        assert "import crossfile.common_jsonschema as crossfile_common_jsonschema\n" in source
        assert "crossfile_common_jsonschema.Address_json_schema_with_defs(defs)" in source

        sys.path.insert(0, self.out)
        importlib.invalidate_caches()
        user_module = importlib.import_module("crossfile.user_jsonschema")
        root = user_module.User_json_schema()
        assert root == {
            "$ref": "#/$defs/crossfile.User",
            "$defs": {
                "crossfile.User": {
                    "type": "object",
                    "properties": {"home": {"$ref": "#/$defs/crossfile.Address"}},
                    "required": ["home"],
                },
                "crossfile.Address": {
                    "type": "object",
                    "properties": {"city": {"type": "string"}},
                    "required": ["city"],
                },
            },
        }

    def test_import_not_generated_by_its_file_fails(self):
        self._write("crossfile/common.proto", """\
syntax = "proto3";
package crossfile;
message Address { string city = 1; }
""")
        user = self._write("crossfile/user.proto", """\
syntax = "proto3";
package crossfile;
import "crossfile/common.proto";
option (jsonschema.file) = { generate: true };
message User { Address home = 1; }
""")
        with pytest.raises(UnresolvedReferenceError) as excinfo:
            generate_python_module(parse_proto_file(user, [self.root]))
        assert excinfo.value.message_name == "crossfile.User"
        assert excinfo.value.field_name == "home"
        assert "crossfile/common.proto does not generate" in excinfo.value.reason

    def test_import_opted_out_in_its_file_fails(self):
        self._write("crossfile/common.proto", """\
syntax = "proto3";
package crossfile;
option (jsonschema.file) = { generate: true };
message Address {
  option (jsonschema.message) = { generate: false };
  string city = 1;
}
""")
        user = self._write("crossfile/user.proto", """\
syntax = "proto3";
package crossfile;
import "crossfile/common.proto";
option (jsonschema.file) = { generate: true };
message User { Address home = 1; }
""")
        with pytest.raises(UnresolvedReferenceError):
            generate_python_module(parse_proto_file(user, [self.root]))

    def test_write_skips_empty_files(self):
        path = self._write("crossfile/empty.proto", 'syntax = "proto3";\nmessage A {}\n')
        assert write_python_module(parse_proto_file(path, [self.root]), self.out) is None
        assert os.listdir(self.out) == []
