"""Shared builders for tests that feed FileDescriptorProtos directly.

Plugin requests and descriptor sets carry the jsonschema options as raw
extension bytes; ``set_option`` writes them the same way protoc does.
"""

import pytest
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

FDP = descriptor_pb2.FieldDescriptorProto


def build_options_file() -> descriptor_pb2.FileDescriptorProto:
    """A trimmed-down jsonschema/options.proto with the three extensions."""
    fdp = descriptor_pb2.FileDescriptorProto(
        name="jsonschema/options.proto",
        package="jsonschema",
        syntax="proto2",
        dependency=["google/protobuf/descriptor.proto"],
    )
    for name in ("FileSchemaOptions", "MessageSchemaOptions"):
        message = fdp.message_type.add(name=name)
        message.field.add(name="generate", number=1, label=FDP.LABEL_OPTIONAL, type=FDP.TYPE_BOOL)

    field_options = fdp.message_type.add(name="FieldSchemaOptions")
    for name, number, kind in (
        ("ignore", 1, FDP.TYPE_BOOL),
        ("title", 2, FDP.TYPE_STRING),
        ("format", 4, FDP.TYPE_STRING),
        ("minimum", 6, FDP.TYPE_DOUBLE),
        ("min_length", 10, FDP.TYPE_UINT64),
        ("max_length", 11, FDP.TYPE_UINT64),
    ):
        field_options.field.add(name=name, number=number, label=FDP.LABEL_OPTIONAL, type=kind)

    for name, number, target, extendee in (
        ("file", 51001, "FileSchemaOptions", "FileOptions"),
        ("message", 51002, "MessageSchemaOptions", "MessageOptions"),
        ("field", 51003, "FieldSchemaOptions", "FieldOptions"),
    ):
        fdp.extension.add(
            name=name,
            number=number,
            label=FDP.LABEL_OPTIONAL,
            type=FDP.TYPE_MESSAGE,
            type_name=f".jsonschema.{target}",
            extendee=f".google.protobuf.{extendee}",
        )
    return fdp


def build_descriptor_file() -> descriptor_pb2.FileDescriptorProto:
    return descriptor_pb2.FileDescriptorProto.FromString(descriptor_pb2.DESCRIPTOR.serialized_pb)


class OptionSetter:
    """Sets jsonschema extensions on descriptor option messages."""

    def __init__(self):
        self._pool = descriptor_pool.DescriptorPool()
        self._pool.AddSerializedFile(build_descriptor_file().SerializeToString())
        self._pool.AddSerializedFile(build_options_file().SerializeToString())

    def __call__(self, options, extension_name: str, **values) -> None:
        extension = self._pool.FindExtensionByName(extension_name)
        options_class = message_factory.GetMessageClass(extension.containing_type)
        holder = options_class()
        for key, value in values.items():
            setattr(holder.Extensions[extension], key, value)
        options.MergeFromString(holder.SerializeToString())


@pytest.fixture
def set_option():
    return OptionSetter()


@pytest.fixture
def options_files():
    """descriptor.proto and options.proto, in dependency order."""
    return [build_descriptor_file(), build_options_file()]
