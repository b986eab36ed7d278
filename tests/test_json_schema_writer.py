import json
import os
import shutil
import tempfile

from protoc_jsonschema.generator.json_schema_writer import (
    build_json_bundle,
    dumps_bundle,
    generate_json_schema,
    json_schema_path,
)
from protoc_jsonschema.parser.proto_parser import parse_proto_file


class TestJsonSchemaPath:
    def test_mirrors_proto_layout(self):
        assert json_schema_path("users/v1/user.proto") == "users/v1/user.schema.json"
        assert json_schema_path("user.proto") == "user.schema.json"


class TestGenerateJsonSchema:
    def setup_method(self):
        self.root = tempfile.mkdtemp()
        self.out = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.root)
        shutil.rmtree(self.out)

    def _write(self, rel_path: str, content: str) -> str:
        path = os.path.join(self.root, rel_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)
        return path

    def test_bundle_is_self_contained(self):
        self._write("shop/common.proto", """\
syntax = "proto3";
package shop;
message Money {
  string currency = 1;
  int64 units = 2;
}
""")
        path = self._write("shop/order.proto", """\
syntax = "proto3";
package shop;
import "shop/common.proto";
import "google/protobuf/timestamp.proto";
option (jsonschema.file) = { generate: true };
message Order {
  Money total = 1;
  google.protobuf.Timestamp placed_at = 2;
  repeated Line lines = 3;
  message Line { string sku = 1; }
}
""")
        bundle = build_json_bundle(parse_proto_file(path, [self.root]))
        assert bundle["$schema"] == "https://json-schema.org/draft/2020-12/schema"
        assert set(bundle["$defs"]) == {
            "shop.Order",
            "shop.Order.Line",
            "shop.Money",
            "google.protobuf.Timestamp",
        }
        order = bundle["$defs"]["shop.Order"]
        assert order["properties"]["total"] == {"$ref": "#/$defs/shop.Money"}
        assert order["properties"]["lines"] == {"type": "array", "items": {"$ref": "#/$defs/shop.Order.Line"}}

    def test_written_file(self):
        path = self._write("shop/order.proto", """\
syntax = "proto3";
package shop;
option (jsonschema.file) = { generate: true };
message Order { string id = 1; }
""")
        proto_file = parse_proto_file(path, [self.root])
        out_path = generate_json_schema(proto_file, self.out)
        assert out_path == os.path.join(self.out, "shop/order.schema.json")
        with open(out_path) as f:
            text = f.read()
        assert text == dumps_bundle(build_json_bundle(proto_file))
        assert text.endswith("}\n")
        assert json.loads(text)["$defs"]["shop.Order"]["required"] == ["id"]

    def test_nothing_selected(self):
        path = self._write("plain.proto", 'syntax = "proto3";\nmessage Plain { string x = 1; }\n')
        assert generate_json_schema(parse_proto_file(path, [self.root]), self.out) is None
        assert os.listdir(self.out) == []
