"""Errors raised while turning descriptors into JSON Schema.

All of them abort generation for the proto file being processed. They carry
the message and field names so the offending declaration can be found.
"""

from __future__ import annotations


class JsonSchemaError(Exception):
    """Base class for schema generation failures."""

    def __init__(self, message: str, message_name: str = "", field_name: str = ""):
        self.reason = message
        self.message_name = message_name
        self.field_name = field_name
        location = message_name
        if field_name:
            location = f"{message_name}.{field_name}" if message_name else field_name
        if location:
            super().__init__(f"{location}: {message}")
        else:
            super().__init__(message)


class UnsupportedFieldKindError(JsonSchemaError):
    """Raised when a field kind has no JSON Schema mapping."""


class UnresolvedReferenceError(JsonSchemaError):
    """Raised when a field references a message that was not selected for generation."""


class MalformedOptionError(JsonSchemaError):
    """Raised when a jsonschema option value cannot be interpreted."""
